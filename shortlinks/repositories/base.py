"""Base repository implementation for the short-link mapping store.

This module provides a generic BaseRepository class that follows the Repository pattern
for database operations, serving as a foundation for more specific repositories.
Repositories only create and read; stored rows are never updated in place.
"""

from typing import Any, Dict, Generic, Optional, Type, TypeVar, Union
import logging
import re

from pydantic import BaseModel
from sqlalchemy import UniqueConstraint, select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import SQLModel

# Type variable for model types
T = TypeVar("T", bound=SQLModel)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)

logger = logging.getLogger(__name__)

# SQLite: "UNIQUE constraint failed: short_urls.short_code"
_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: (?:\w+\.)?(\w+)")
# PostgreSQL: 'duplicate key value violates unique constraint "uq_short_urls_short_code"'
_POSTGRES_UNIQUE = re.compile(r'unique constraint "(\w+)"')

# asyncpg raises OSError subclasses, unwrapped, when the server cannot be reached
STORAGE_ERRORS = (SQLAlchemyError, OSError)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateEntityError(RepositoryError):
    """Exception raised when a unique constraint is violated."""

    def __init__(self, model_type: Type[SQLModel], field_name: str, value: Any):
        self.model_type = model_type
        self.field_name = field_name
        self.value = value
        model_name = getattr(model_type, "__name__", "Entity")
        super().__init__(f"{model_name} with {field_name}={value} already exists")


def _constraint_name(error: IntegrityError) -> Optional[str]:
    """Pull the violated constraint name out of the driver exception, if exposed."""
    candidates = [error.orig, getattr(error.orig, "__cause__", None)]
    for exc in candidates:
        if exc is None:
            continue
        # asyncpg
        name = getattr(exc, "constraint_name", None)
        if name:
            return name
        # psycopg
        diag = getattr(exc, "diag", None)
        if diag is not None and getattr(diag, "constraint_name", None):
            return diag.constraint_name
    return None


class BaseRepository(Generic[T, CreateSchemaType]):
    """
    Base repository implementing common create/read operations for SQLModel entities.

    Type parameters:
        T: The SQLModel type this repository manages
        CreateSchemaType: The model type used for creation operations
    """

    def __init__(self, model_type: Type[T]):
        """
        Initialize the repository with a specific model type.

        Args:
            model_type: The SQLModel class this repository will work with
        """
        self.model_type = model_type
        self._unique_constraints = self._collect_unique_constraints()

    def _collect_unique_constraints(self) -> Dict[str, str]:
        """Map unique constraint names (and column names) to the guarded field."""
        mapping: Dict[str, str] = {}
        table = getattr(self.model_type, "__table__", None)
        if table is None:
            return mapping
        for constraint in table.constraints:
            if isinstance(constraint, UniqueConstraint):
                columns = [column.name for column in constraint.columns]
                if len(columns) == 1:
                    if constraint.name:
                        mapping[constraint.name] = columns[0]
                    mapping[columns[0]] = columns[0]
        return mapping

    def unique_field_for(self, error: IntegrityError) -> Optional[str]:
        """
        Work out which unique field an IntegrityError was raised for.

        Args:
            error: The IntegrityError raised by flush

        Returns:
            The field name, or None if the error is not a known uniqueness violation
        """
        name = _constraint_name(error)
        if name is None:
            # Only the first line: PostgreSQL appends a DETAIL line quoting the value
            message = str(error.orig).splitlines()[0] if error.orig is not None else str(error)
            match = _POSTGRES_UNIQUE.search(message) or _SQLITE_UNIQUE.search(message)
            if match:
                name = match.group(1)
        if name is None:
            return None
        return self._unique_constraints.get(name)

    async def flush_or_raise(self, db: AsyncSession, entity: T) -> T:
        """
        Flush pending changes for ``entity`` and translate failures.

        On any error the session is rolled back, so the caller starts its
        next statement in a clean transaction.

        Raises:
            DuplicateEntityError: On a unique constraint violation
            RepositoryError: On other database errors
        """
        # Captured up front: rollback detaches the entity
        values = {field: getattr(entity, field, None) for field in set(self._unique_constraints.values())}
        try:
            await db.flush()
            await db.refresh(entity)
            return entity
        except IntegrityError as e:
            await db.rollback()
            field_name = self.unique_field_for(e)
            if field_name is not None:
                raise DuplicateEntityError(self.model_type, field_name, values.get(field_name)) from e
            logger.error(f"Integrity error writing {self.model_type.__name__}: {e}")
            raise RepositoryError(f"Database integrity error: {e}") from e
        except STORAGE_ERRORS as e:
            await db.rollback()
            logger.error(f"Error writing {self.model_type.__name__}: {e}")
            raise RepositoryError(f"Database error writing entity: {e}") from e

    async def get_by_id(self, db: AsyncSession, id: Any) -> Optional[T]:
        """
        Get an entity by its ID.

        Args:
            db: Database session
            id: Entity ID

        Returns:
            The entity if found, None otherwise
        """
        try:
            return await db.get(self.model_type, id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error retrieving {self.model_type.__name__} with id {id}: {e}")
            raise RepositoryError(f"Database error retrieving entity: {e}") from e

    async def create(self, db: AsyncSession, data: Union[CreateSchemaType, Dict[str, Any]]) -> T:
        """
        Create a new entity.

        Args:
            db: Database session
            data: Entity data (either as a Pydantic model or dictionary)

        Returns:
            The created entity with its generated ID

        Raises:
            DuplicateEntityError: If a unique constraint is violated
            RepositoryError: On other database errors
        """
        if isinstance(data, BaseModel):
            data_dict = data.model_dump(exclude_unset=True)
        else:
            data_dict = data

        entity = self.model_type(**data_dict)
        db.add(entity)
        return await self.flush_or_raise(db, entity)

    async def count(self, db: AsyncSession, **filters) -> int:
        """
        Count entities, optionally restricted by field=value filters.

        Args:
            db: Database session
            **filters: Field=value pairs to filter by

        Returns:
            Number of matching entities

        Raises:
            RepositoryError: On database errors
        """
        try:
            conditions = [getattr(self.model_type, field) == value for field, value in filters.items()]
            query = select(func.count()).select_from(self.model_type)
            if conditions:
                query = query.where(*conditions)
            result = await db.execute(query)
            return result.scalar_one()
        except STORAGE_ERRORS as e:
            logger.error(f"Error counting {self.model_type.__name__} records: {e}")
            raise RepositoryError(f"Database error counting entities: {e}") from e

    async def exists(self, db: AsyncSession, **kwargs) -> bool:
        """
        Check if an entity exists with the given filters.

        Args:
            db: Database session
            **kwargs: Field=value pairs to filter by

        Returns:
            True if entity exists, False otherwise

        Raises:
            RepositoryError: On database errors
        """
        if not kwargs:
            raise ValueError("No conditions provided for exists check")
        return await self.count(db, **kwargs) > 0
