"""Short-link mapping store: allocates short codes for URLs and resolves them back."""

from shortlinks.store import MappingStore

__version__ = "0.1.0"

__all__ = ["MappingStore"]
