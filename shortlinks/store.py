"""Mapping store entry point.

``MappingStore`` wires the repository, code generator, optional cache and
telemetry together and gives every call its own database session. It is the
only surface callers need::

    store = MappingStore()
    await store.startup()
    mapping = await store.shorten("https://example.com/some/long/path")
    assert (await store.resolve(mapping.short_code)).original_url == mapping.original_url
    await store.shutdown()
"""

import asyncio
from typing import Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortlinks.core.alembic import run_migrations
from shortlinks.core.config import Settings, settings
from shortlinks.core.logging import setup_logging
from shortlinks.core.redis import RedisClientManager
from shortlinks.core.telemetry import AllocationMetrics, get_meter, instrument_storage, setup_telemetry
from shortlinks.db import base as db_base
from shortlinks.db.base import DatabaseHealthCheck, get_session, get_session_factory
from shortlinks.models.url import UrlMappingRead
from shortlinks.repositories.url_repository import UrlMappingRepository
from shortlinks.services.cache import MappingCache
from shortlinks.services.code_generator import build_code_generator
from shortlinks.services.shortener import ShortenerService


class MappingStore:
    """
    Shared, concurrency-safe store of URL -> short code mappings.

    Args:
        engine: Async engine; defaults to the engine built from settings
        session_factory: Session factory; defaults to one bound to ``engine``
        config: Settings to read strategy, cache and migration options from
        redis_manager: Redis connection for the resolve cache. When omitted a
            manager is created only if ``CACHE_ENABLED`` is set.
    """

    def __init__(
        self,
        engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        config: Settings = settings,
        redis_manager: Optional[RedisClientManager] = None,
    ):
        self.config = config

        if engine is None and session_factory is None:
            engine = db_base.engine
            session_factory = db_base.async_session_factory
        elif session_factory is None:
            session_factory = get_session_factory(engine)
        elif engine is None:
            engine = session_factory.kw.get("bind")
        self.engine = engine
        self.session_factory = session_factory

        if redis_manager is None and config.CACHE_ENABLED:
            redis_manager = RedisClientManager(config.REDIS_URI)
        self.redis_manager = redis_manager
        self.cache = (
            MappingCache(redis_manager, config.CACHE_TIMEOUT, config.CACHE_KEY_PREFIX)
            if redis_manager is not None
            else None
        )

        self.service = ShortenerService(
            url_repository=UrlMappingRepository(),
            code_generator=build_code_generator(config),
            cache=self.cache,
            max_attempts=config.SHORT_CODE_MAX_ATTEMPTS,
            metrics=AllocationMetrics(get_meter(f"{config.OTEL_SERVICE_NAME}.allocation")),
        )

    async def __aenter__(self) -> "MappingStore":
        await self.startup()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.shutdown()

    async def startup(self) -> None:
        """Configure logging and telemetry, migrate if asked to, and connect the cache."""
        setup_logging(self.config)
        logger.info(f"Starting {self.config.APP_NAME} v{self.config.APP_VERSION}")
        logger.info(f"Environment: {self.config.ENVIRONMENT.value}")
        logger.info(f"Short code strategy: {self.config.SHORT_CODE_STRATEGY.value}")

        if self.config.DB_RUN_MIGRATIONS_ON_STARTUP and self.engine is not None:
            logger.info("Applying database migrations")
            database_url = self.engine.url.render_as_string(hide_password=False)
            await asyncio.to_thread(run_migrations, database_url)

        setup_telemetry(self.config)
        instrument_storage(
            self.engine, redis_enabled=self.redis_manager is not None, config=self.config
        )

        if self.redis_manager is not None:
            if await self.redis_manager.ping():
                logger.info("Resolve cache connected")
            else:
                logger.warning("Resolve cache unreachable, reads will go to the database")

    async def shutdown(self) -> None:
        """Release the cache connection pool and the database engine."""
        logger.info(f"Shutting down {self.config.APP_NAME}")
        if self.redis_manager is not None:
            await self.redis_manager.close()
        if self.engine is not None:
            await self.engine.dispose()

    async def shorten(self, original_url: str) -> UrlMappingRead:
        """Return the mapping for ``original_url``, creating it on first use."""
        async with get_session(self.session_factory) as db:
            return await self.service.shorten(db, original_url)

    async def resolve(self, short_code: str) -> UrlMappingRead:
        """Return the mapping for an exact ``short_code``."""
        async with get_session(self.session_factory) as db:
            return await self.service.resolve(db, short_code)

    async def lookup_by_url(self, original_url: str) -> UrlMappingRead:
        """Return the existing mapping for ``original_url`` without creating one."""
        async with get_session(self.session_factory) as db:
            return await self.service.lookup_by_url(db, original_url)

    async def health(self) -> Dict:
        """Report database (and, if configured, cache) reachability."""
        result = await DatabaseHealthCheck.check_connection(self.session_factory)
        if self.redis_manager is not None:
            cache_ok = await self.redis_manager.ping()
            result["cache"] = "healthy" if cache_ok else "unhealthy"
        return result
