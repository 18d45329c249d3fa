"""External service clients."""

from .wiki_server_client import ApiResult, WikiServerClient

__all__ = ["ApiResult", "WikiServerClient"]
