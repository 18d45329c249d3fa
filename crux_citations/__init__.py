"""Source fetching and citation auditing for wiki content."""

__version__ = "0.1.0"
