"""Service layer: fetching, crawling, LLM access and auditing."""
