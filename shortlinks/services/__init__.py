"""Service layer for the short-link mapping store."""

from shortlinks.services.cache import MappingCache
from shortlinks.services.code_generator import (
    CodeGenerator,
    CodeSpaceExhaustedError,
    CounterCodeGenerator,
    HashCodeGenerator,
    build_code_generator,
)
from shortlinks.services.exceptions import (
    AllocationExhaustedError,
    InvalidURLError,
    MappingError,
    MappingNotFoundError,
    ServiceError,
    StorageUnavailableError,
)
from shortlinks.services.shortener import ShortenerService

__all__ = [
    "MappingCache",
    "CodeGenerator",
    "CodeSpaceExhaustedError",
    "CounterCodeGenerator",
    "HashCodeGenerator",
    "build_code_generator",
    "AllocationExhaustedError",
    "InvalidURLError",
    "MappingError",
    "MappingNotFoundError",
    "ServiceError",
    "StorageUnavailableError",
    "ShortenerService",
]
