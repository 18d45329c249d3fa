"""Resource catalog services."""

from .catalog import InMemoryResourceCatalog, ResourceCatalog, normalize_url

__all__ = [
    "InMemoryResourceCatalog",
    "ResourceCatalog",
    "normalize_url",
]
