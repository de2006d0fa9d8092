"""Session management for database operations.

This module provides utilities for handling SQLAlchemy async sessions
with proper lifecycle management, error handling, and transaction support.
"""

from typing import Awaitable, Callable, Optional, TypeVar
import logging
import inspect
from functools import wraps

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

# Generic return type for function decorators
T = TypeVar("T")


def db_transaction(db_param_name: Optional[str] = None) -> Callable:
    """Decorator to wrap coroutines in a database transaction.

    Finds the database session parameter, commits on success or rolls back
    on error. The session is located by name when ``db_param_name`` is given,
    otherwise by the first parameter annotated as ``AsyncSession``.

    Args:
        db_param_name: Optional name of the database session parameter.
            The convention throughout the code base is ``db``.

    Returns:
        Callable: Decorator function

    Example:
        ```python
        @db_transaction(db_param_name="db")
        async def allocate(self, db: AsyncSession, url: str) -> UrlMapping:
            ...
        ```

    Raises:
        ValueError: If no database session is passed at call time
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        # Resolve the parameter position once, at decoration time
        parameters = inspect.signature(func).parameters
        db_param_pos = None
        db_param_key = None

        for i, (param_name, param) in enumerate(parameters.items()):
            annotation = param.annotation
            is_async_session = annotation is AsyncSession or annotation == "AsyncSession"

            if db_param_name and param_name == db_param_name:
                db_param_pos = i
                db_param_key = param_name
                break
            elif is_async_session and db_param_name is None:
                db_param_pos = i
                db_param_key = param_name
                break

        if db_param_key is None:
            logger.warning(
                f"Unable to find database session parameter in function '{func.__name__}'"
            )

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            db = None

            if db_param_pos is not None and len(args) > db_param_pos:
                db = args[db_param_pos]
            elif db_param_key is not None and db_param_key in kwargs:
                db = kwargs[db_param_key]
            else:
                db = next(
                    (value for value in (*args, *kwargs.values()) if isinstance(value, AsyncSession)),
                    None,
                )

            if db is None:
                raise ValueError(
                    f"Database session not found in function arguments for '{func.__name__}'. "
                    f"Ensure a parameter of type AsyncSession is passed to the function."
                )

            try:
                result = await func(*args, **kwargs)
                await db.commit()
                return result
            except SQLAlchemyError:
                await db.rollback()
                logger.exception(f"Transaction failed in '{func.__name__}'")
                raise
            except Exception as e:
                await db.rollback()
                logger.warning(f"Transaction rolled back in '{func.__name__}': {e!r}")
                raise

        return wrapper
    return decorator
