"""Core configuration, logging and resilience helpers."""
