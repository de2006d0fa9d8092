"""URL mapping repository for the short-link mapping store.

This module provides the UrlMappingRepository class, the only component that
issues SQL against the ``short_urls`` table. Inserts are not preceded by an
existence check: the unique constraints decide races, and the resulting
IntegrityError is surfaced as a DuplicateEntityError naming the field.
"""

import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.models.url import UrlMapping, UrlMappingCreate
from shortlinks.repositories.base import STORAGE_ERRORS, BaseRepository, RepositoryError

# Codes handed out by the generators never contain this character
PROVISIONAL_CODE_PREFIX = "~"


def provisional_code() -> str:
    """Placeholder short code used while a counter-derived code is pending."""
    return PROVISIONAL_CODE_PREFIX + secrets.token_hex(5)[:9]


class UrlMappingRepository(BaseRepository[UrlMapping, UrlMappingCreate]):
    """
    Repository for UrlMapping database operations.

    Rows are created and read; there is no update or delete here.
    """

    def __init__(self):
        """Initialize the repository with the UrlMapping model type."""
        super().__init__(UrlMapping)

    async def get_by_short_code(self, db: AsyncSession, short_code: str) -> Optional[UrlMapping]:
        """
        Find a mapping by its exact short code.

        Args:
            db: Database session
            short_code: The short code to look up (case-sensitive)

        Returns:
            The UrlMapping if found, None otherwise

        Raises:
            RepositoryError: On database errors
        """
        try:
            query = select(self.model_type).where(self.model_type.short_code == short_code)
            result = await db.execute(query)
            return result.scalar_one_or_none()
        except STORAGE_ERRORS as e:
            raise RepositoryError(f"Error retrieving mapping by short code: {e}") from e

    async def get_by_original_url(self, db: AsyncSession, original_url: str) -> Optional[UrlMapping]:
        """
        Find a mapping by its exact original URL.

        No normalization is applied; the comparison is byte-exact.

        Args:
            db: Database session
            original_url: The original URL to look up

        Returns:
            The UrlMapping if found, None otherwise

        Raises:
            RepositoryError: On database errors
        """
        try:
            query = select(self.model_type).where(self.model_type.original_url == original_url)
            result = await db.execute(query)
            return result.scalar_one_or_none()
        except STORAGE_ERRORS as e:
            raise RepositoryError(f"Error retrieving mapping by original URL: {e}") from e

    async def insert_mapping(self, db: AsyncSession, original_url: str, short_code: str) -> UrlMapping:
        """
        Insert a new mapping.

        Args:
            db: Database session
            original_url: The original URL
            short_code: The candidate short code

        Returns:
            The inserted UrlMapping with its assigned id and created_at

        Raises:
            DuplicateEntityError: With field_name ``original_url`` or ``short_code``
            RepositoryError: On other database errors
        """
        return await self.create(
            db, UrlMappingCreate(original_url=original_url, short_code=short_code)
        )

    async def insert_provisional(self, db: AsyncSession, original_url: str) -> UrlMapping:
        """
        Insert a mapping under a placeholder code to reserve its id.

        Used by the counter strategy, whose code is derived from the id.
        The caller must call ``assign_short_code`` before committing.

        Raises:
            DuplicateEntityError: If the URL (or, improbably, the placeholder) is taken
            RepositoryError: On other database errors
        """
        return await self.create(
            db, {"original_url": original_url, "short_code": provisional_code()}
        )

    async def assign_short_code(self, db: AsyncSession, mapping: UrlMapping, short_code: str) -> UrlMapping:
        """
        Give a provisionally inserted mapping its final short code.

        Only valid inside the transaction that inserted ``mapping``; committed
        mappings are never modified.

        Raises:
            DuplicateEntityError: If ``short_code`` is already in use
            RepositoryError: On other database errors
        """
        if not mapping.short_code.startswith(PROVISIONAL_CODE_PREFIX):
            raise RepositoryError(
                f"Mapping {mapping.id} already has short code '{mapping.short_code}'"
            )
        mapping.short_code = short_code
        return await self.flush_or_raise(db, mapping)
