"""Short link service for the mapping store.

This module contains the ShortenerService class which implements the
allocation protocol: idempotent lookup, candidate generation, insert attempt,
collision retry and fallback on a lost race for the same URL.

No lock is held across a ``shorten`` call. The two unique constraints on
``short_urls`` decide every race; the losing insert is rolled back and the
service either retries with the next candidate (short code taken) or returns
the mapping the winner committed (URL taken).
"""

import logging
from typing import Optional, Tuple

from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.core.config import settings
from shortlinks.core.telemetry import AllocationMetrics, get_tracer
from shortlinks.db.session import db_transaction
from shortlinks.models.url import UrlMapping, UrlMappingRead
from shortlinks.repositories.base import STORAGE_ERRORS, DuplicateEntityError, RepositoryError
from shortlinks.repositories.url_repository import UrlMappingRepository
from shortlinks.services.cache import MappingCache
from shortlinks.services.code_generator import CodeGenerator, CodeSpaceExhaustedError
from shortlinks.services.exceptions import (
    AllocationExhaustedError,
    InvalidURLError,
    MappingNotFoundError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)


class ShortenerService:
    """
    Service for short link allocation and resolution.

    The service holds no per-call state and may be shared by any number of
    concurrent callers, each with its own database session.
    """

    def __init__(
        self,
        url_repository: UrlMappingRepository,
        code_generator: CodeGenerator,
        cache: Optional[MappingCache] = None,
        max_attempts: int = settings.SHORT_CODE_MAX_ATTEMPTS,
        metrics: Optional[AllocationMetrics] = None,
    ):
        """
        Initialize the short link service.

        Args:
            url_repository: Repository for mapping data access
            code_generator: Produces candidate codes for a seed and attempt
            cache: Optional read cache for resolve
            max_attempts: Insert attempts before giving up on a URL
            metrics: Allocation counters; created from the global meter if omitted
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.url_repository = url_repository
        self.code_generator = code_generator
        self.cache = cache
        self.max_attempts = max_attempts
        self.metrics = metrics or AllocationMetrics()
        self.tracer = get_tracer(__name__)

    async def shorten(self, db: AsyncSession, original_url: str) -> UrlMappingRead:
        """
        Return the mapping for ``original_url``, creating it if needed.

        Calling this again with the same URL returns the same mapping, also
        when the calls race each other.

        Args:
            db: Database session
            original_url: The URL to shorten, stored exactly as given

        Returns:
            UrlMappingRead: The new or existing mapping

        Raises:
            InvalidURLError: If the URL is empty
            AllocationExhaustedError: If no free code was found
            StorageUnavailableError: On storage failures
        """
        if not original_url:
            raise InvalidURLError("URL must not be empty")

        with self.tracer.start_as_current_span("shortlinks.shorten") as span:
            try:
                mapping, created = await self._allocate(db, original_url)
            except (RepositoryError, *STORAGE_ERRORS) as e:
                # Commit failures from db_transaction arrive unwrapped
                logger.error(f"Storage failure while shortening URL: {e}")
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise StorageUnavailableError(f"Failed to shorten URL: {e}") from e

            result = UrlMappingRead.model_validate(mapping)
            span.set_attribute("shortlinks.short_code", result.short_code)
            span.set_attribute("shortlinks.created", created)

        if created:
            self.metrics.created.add(1)
            logger.info(f"Created short code '{result.short_code}' (id={result.id})")
            if self.cache is not None:
                await self.cache.put(result)
        else:
            self.metrics.reused.add(1)
            logger.debug(f"Reusing short code '{result.short_code}' for existing URL")

        return result

    async def resolve(self, db: AsyncSession, short_code: str) -> UrlMappingRead:
        """
        Find the mapping for an exact short code.

        Args:
            db: Database session
            short_code: The code to resolve (case-sensitive)

        Returns:
            UrlMappingRead: The mapping

        Raises:
            MappingNotFoundError: If no mapping has this code
            StorageUnavailableError: On storage failures
        """
        with self.tracer.start_as_current_span("shortlinks.resolve") as span:
            span.set_attribute("shortlinks.short_code", short_code)

            # Such codes cannot be stored, so skip the round-trip
            if not short_code or len(short_code) > self.code_generator.max_length:
                logger.debug(f"Rejected short code of length {len(short_code)}")
                raise MappingNotFoundError(f"No mapping with code '{short_code}'")

            if self.cache is not None:
                cached = await self.cache.get(short_code)
                if cached is not None:
                    span.set_attribute("shortlinks.cache_hit", True)
                    return cached

            try:
                mapping = await self.url_repository.get_by_short_code(db, short_code)
            except RepositoryError as e:
                logger.error(f"Storage failure while resolving '{short_code}': {e}")
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise StorageUnavailableError(f"Failed to resolve '{short_code}': {e}") from e

            if mapping is None:
                logger.debug(f"No mapping with code '{short_code}'")
                raise MappingNotFoundError(f"No mapping with code '{short_code}'")

            result = UrlMappingRead.model_validate(mapping)

        if self.cache is not None:
            await self.cache.put(result)
        return result

    async def lookup_by_url(self, db: AsyncSession, original_url: str) -> UrlMappingRead:
        """
        Find the mapping for an exact original URL.

        Raises:
            MappingNotFoundError: If the URL has not been shortened
            StorageUnavailableError: On storage failures
        """
        try:
            mapping = await self.url_repository.get_by_original_url(db, original_url)
        except RepositoryError as e:
            logger.error(f"Storage failure while looking up URL: {e}")
            raise StorageUnavailableError(f"Failed to look up URL: {e}") from e

        if mapping is None:
            logger.debug("No mapping for URL")
            raise MappingNotFoundError(f"No mapping for URL '{original_url}'")
        return UrlMappingRead.model_validate(mapping)

    @db_transaction(db_param_name="db")
    async def _allocate(self, db: AsyncSession, original_url: str) -> Tuple[UrlMapping, bool]:
        """
        Run the allocation protocol and commit the result.

        Returns:
            Tuple of the mapping and whether this call created it

        Raises:
            AllocationExhaustedError: If every attempt collided or the code space ran out
            RepositoryError: On storage failures other than uniqueness conflicts
        """
        existing = await self.url_repository.get_by_original_url(db, original_url)
        if existing is not None:
            return existing, False

        for attempt in range(self.max_attempts):
            try:
                mapping = await self._insert_candidate(db, original_url, attempt)
                return mapping, True
            except CodeSpaceExhaustedError as e:
                self.metrics.exhausted.add(1)
                logger.error(f"Short code space exhausted: {e}")
                raise AllocationExhaustedError(str(e), attempts=attempt + 1) from e
            except DuplicateEntityError as e:
                # A caller committing the same URL can trip either constraint first
                existing = await self.url_repository.get_by_original_url(db, original_url)
                if existing is not None:
                    return existing, False
                if e.field_name == "original_url":
                    logger.warning("URL conflict reported but no mapping found, retrying")
                    continue
                self.metrics.collisions.add(1)
                logger.debug(f"Short code '{e.value}' taken on attempt {attempt}")

        self.metrics.exhausted.add(1)
        logger.error(f"No free short code after {self.max_attempts} attempts")
        raise AllocationExhaustedError(
            f"Failed to allocate a short code after {self.max_attempts} attempts",
            attempts=self.max_attempts,
        )

    async def _insert_candidate(self, db: AsyncSession, original_url: str, attempt: int) -> UrlMapping:
        if self.code_generator.seeded_by_id:
            mapping = await self.url_repository.insert_provisional(db, original_url)
            code = self.code_generator.next_candidate(mapping.id, attempt)
            return await self.url_repository.assign_short_code(db, mapping, code)

        code = self.code_generator.next_candidate(original_url, attempt)
        return await self.url_repository.insert_mapping(db, original_url, code)
