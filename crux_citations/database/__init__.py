"""Database models, sessions and repositories for the embedded content store."""
