"""Exceptions for the short-link service layer.

This module contains the exception hierarchy for the service layer,
providing domain-specific exceptions that abstract underlying implementation details.
Uniqueness conflicts never appear here: they are handled inside the service.
"""


class ServiceError(Exception):
    """Base exception for all service-level errors."""
    pass


class MappingError(ServiceError):
    """Base exception for mapping-related errors."""
    pass


class InvalidURLError(MappingError):
    """The URL cannot be shortened (empty input)."""
    pass


class MappingNotFoundError(MappingError):
    """No mapping exists for the given short code or URL."""
    pass


class AllocationExhaustedError(MappingError):
    """No free short code was found within the retry budget.

    This is an operational signal: the code space, the alphabet or the
    attempt budget needs enlarging.
    """

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class StorageUnavailableError(ServiceError):
    """Persistence failed for reasons unrelated to uniqueness."""
    pass
