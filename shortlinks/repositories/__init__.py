"""Repository layer for the short-link mapping store.

This module provides repository classes that abstract database operations
and implement the Repository pattern for clean separation of concerns.
"""

from shortlinks.repositories.base import (
    BaseRepository,
    RepositoryError,
    DuplicateEntityError
)
from shortlinks.repositories.url_repository import UrlMappingRepository

__all__ = [
    # Base classes and exceptions
    "BaseRepository",
    "RepositoryError",
    "DuplicateEntityError",

    # Concrete repositories
    "UrlMappingRepository",
]
