"""
Data models for the short-link mapping store.

This module imports and exports all SQLModel models used in the application.
"""

# First import SQLModel itself to ensure metadata is initialized
from sqlmodel import SQLModel

from shortlinks.models.url import (
    UrlMapping,
    UrlMappingBase,
    UrlMappingCreate,
    UrlMappingRead,
)

__all__ = [
    "SQLModel",
    "UrlMapping",
    "UrlMappingBase",
    "UrlMappingCreate",
    "UrlMappingRead",
]
