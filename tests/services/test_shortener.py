"""Tests for the short link service."""

import pytest
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.repositories.base import RepositoryError
from shortlinks.repositories.url_repository import PROVISIONAL_CODE_PREFIX, UrlMappingRepository
from shortlinks.services.cache import MappingCache
from shortlinks.services.code_generator import CounterCodeGenerator, HashCodeGenerator, encode_base
from shortlinks.services.exceptions import (
    AllocationExhaustedError,
    InvalidURLError,
    MappingNotFoundError,
    StorageUnavailableError,
)
from shortlinks.services.shortener import ShortenerService
from tests.utils import create_test_mapping, random_url


@pytest.fixture
def url_repository():
    """Return URL mapping repository instance."""
    return UrlMappingRepository()


@pytest.fixture
def hash_generator():
    return HashCodeGenerator()


@pytest.fixture
def service(url_repository, hash_generator, allocation_metrics):
    """Hash-strategy service without a cache."""
    return ShortenerService(
        url_repository=url_repository,
        code_generator=hash_generator,
        metrics=allocation_metrics,
    )


@pytest.mark.service
class TestShorten:
    """Tests for allocating mappings."""

    @pytest.mark.asyncio
    async def test_shorten_new_url(self, test_db, service, allocation_metrics):
        url = random_url()

        mapping = await service.shorten(test_db, url)

        assert mapping.original_url == url
        assert mapping.id is not None
        assert mapping.created_at.tzinfo is not None
        assert service.code_generator.is_valid_code(mapping.short_code)
        allocation_metrics.created.add.assert_called_once_with(1)

        resolved = await service.resolve(test_db, mapping.short_code)
        assert resolved == mapping

    @pytest.mark.asyncio
    async def test_shorten_is_idempotent(self, test_db, service, url_repository, allocation_metrics):
        url = random_url()

        first = await service.shorten(test_db, url)
        second = await service.shorten(test_db, url)

        assert second == first
        assert await url_repository.count(test_db) == 1
        allocation_metrics.reused.add.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_distinct_urls_get_distinct_codes(self, test_db, service):
        mappings = [await service.shorten(test_db, random_url()) for _ in range(25)]

        assert len({m.short_code for m in mappings}) == 25
        assert len({m.id for m in mappings}) == 25

    @pytest.mark.asyncio
    async def test_url_is_stored_verbatim(self, test_db, service):
        plain = await service.shorten(test_db, "https://example.com/path")
        trailing = await service.shorten(test_db, "https://example.com/path/")

        assert plain.short_code != trailing.short_code
        assert trailing.original_url == "https://example.com/path/"

    @pytest.mark.asyncio
    async def test_empty_url_rejected(self, test_db, service, url_repository):
        with pytest.raises(InvalidURLError):
            await service.shorten(test_db, "")

        assert await url_repository.count(test_db) == 0

    @pytest.mark.asyncio
    async def test_code_collision_retries_next_attempt(
        self, test_db, service, hash_generator, url_repository, allocation_metrics
    ):
        url = random_url()
        taken = hash_generator.next_candidate(url, 0)
        await create_test_mapping(test_db, short_code=taken)

        mapping = await service.shorten(test_db, url)

        assert mapping.short_code == hash_generator.next_candidate(url, 1)
        assert await url_repository.count(test_db) == 2
        allocation_metrics.collisions.add.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_allocation_exhausted(self, test_db, url_repository, hash_generator, allocation_metrics):
        service = ShortenerService(
            url_repository=url_repository,
            code_generator=hash_generator,
            max_attempts=2,
            metrics=allocation_metrics,
        )
        url = random_url()
        await create_test_mapping(test_db, short_code=hash_generator.next_candidate(url, 0))
        await create_test_mapping(test_db, short_code=hash_generator.next_candidate(url, 1))

        with pytest.raises(AllocationExhaustedError) as excinfo:
            await service.shorten(test_db, url)

        assert excinfo.value.attempts == 2
        assert await url_repository.get_by_original_url(test_db, url) is None
        assert await url_repository.count(test_db) == 2
        allocation_metrics.exhausted.add.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_lost_url_race_returns_winner(self, test_db, service, url_repository, allocation_metrics):
        """An insert beaten by a concurrent writer of the same URL returns that writer's mapping."""
        url = random_url()
        await create_test_mapping(test_db, original_url=url, short_code="winner1")

        real_lookup = url_repository.get_by_original_url
        calls = []

        async def stale_first_lookup(db, original_url):
            calls.append(original_url)
            if len(calls) == 1:
                return None
            return await real_lookup(db, original_url)

        with patch.object(url_repository, "get_by_original_url", side_effect=stale_first_lookup):
            mapping = await service.shorten(test_db, url)

        assert mapping.short_code == "winner1"
        assert len(calls) == 2
        assert await url_repository.count(test_db) == 1
        allocation_metrics.reused.add.assert_called_once_with(1)
        allocation_metrics.created.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_url_race_on_code_constraint_returns_winner(
        self, test_db, service, hash_generator, url_repository, allocation_metrics
    ):
        """A concurrent writer of the same URL already holds the code this call picks."""
        url = random_url()
        winner = await create_test_mapping(
            test_db, original_url=url, short_code=hash_generator.next_candidate(url, 0)
        )
        winner_id = winner.id

        real_lookup = url_repository.get_by_original_url
        calls = []

        async def stale_first_lookup(db, original_url):
            calls.append(original_url)
            if len(calls) == 1:
                return None
            return await real_lookup(db, original_url)

        with patch.object(url_repository, "get_by_original_url", side_effect=stale_first_lookup):
            mapping = await service.shorten(test_db, url)

        assert mapping.id == winner_id
        assert await url_repository.count(test_db) == 1
        allocation_metrics.collisions.add.assert_not_called()
        allocation_metrics.reused.add.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_storage_failure(self, test_db, service, url_repository):
        with patch.object(url_repository, "get_by_original_url", side_effect=RepositoryError("db down")):
            with pytest.raises(StorageUnavailableError):
                await service.shorten(test_db, random_url())

    @pytest.mark.asyncio
    async def test_commit_failure(self, test_db, service, url_repository):
        url = random_url()
        failure = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with patch.object(AsyncSession, "commit", new=AsyncMock(side_effect=failure)):
            with pytest.raises(StorageUnavailableError):
                await service.shorten(test_db, url)

        assert await url_repository.get_by_original_url(test_db, url) is None

    @pytest.mark.asyncio
    async def test_unreachable_database(self, test_db, service):
        refused = ConnectionRefusedError(111, "Connect call failed")

        with patch.object(AsyncSession, "execute", new=AsyncMock(side_effect=refused)):
            with pytest.raises(StorageUnavailableError):
                await service.shorten(test_db, random_url())
            with pytest.raises(StorageUnavailableError):
                await service.resolve(test_db, "abc")
            with pytest.raises(StorageUnavailableError):
                await service.lookup_by_url(test_db, random_url())

    def test_rejects_non_positive_attempts(self, url_repository, hash_generator):
        with pytest.raises(ValueError):
            ShortenerService(url_repository, hash_generator, max_attempts=0)


@pytest.mark.service
class TestCounterStrategy:
    """Tests for id-derived codes."""

    @pytest.fixture
    def counter_service(self, url_repository, allocation_metrics):
        return ShortenerService(
            url_repository=url_repository,
            code_generator=CounterCodeGenerator(),
            metrics=allocation_metrics,
        )

    @pytest.mark.asyncio
    async def test_code_encodes_id(self, test_db, counter_service):
        mapping = await counter_service.shorten(test_db, random_url())

        assert mapping.short_code == encode_base(mapping.id)
        assert (await counter_service.resolve(test_db, mapping.short_code)).id == mapping.id

    @pytest.mark.asyncio
    async def test_no_provisional_code_is_committed(self, test_db, counter_service, url_repository):
        for _ in range(5):
            await counter_service.shorten(test_db, random_url())

        for mapping_id in range(1, 6):
            mapping = await url_repository.get_by_id(test_db, mapping_id)
            assert not mapping.short_code.startswith(PROVISIONAL_CODE_PREFIX)

    @pytest.mark.asyncio
    async def test_idempotent(self, test_db, counter_service, url_repository):
        url = random_url()

        first = await counter_service.shorten(test_db, url)
        second = await counter_service.shorten(test_db, url)

        assert first == second
        assert await url_repository.count(test_db) == 1

    @pytest.mark.asyncio
    async def test_collision_with_existing_code(self, test_db, counter_service, url_repository, allocation_metrics):
        # Occupies id 1 with the code id 2 would get
        await create_test_mapping(test_db, short_code=encode_base(2))

        mapping = await counter_service.shorten(test_db, random_url())

        assert mapping.short_code != encode_base(2)
        assert not mapping.short_code.startswith(PROVISIONAL_CODE_PREFIX)
        assert await url_repository.count(test_db) == 2
        allocation_metrics.collisions.add.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_code_space_exhausted(self, test_db, url_repository, allocation_metrics):
        service = ShortenerService(
            url_repository=url_repository,
            code_generator=CounterCodeGenerator(alphabet="ab", max_length=1),
            metrics=allocation_metrics,
        )

        first = await service.shorten(test_db, random_url())
        assert first.short_code == "b"

        with pytest.raises(AllocationExhaustedError):
            await service.shorten(test_db, random_url())

        assert await url_repository.count(test_db) == 1
        allocation_metrics.exhausted.add.assert_called_once_with(1)


@pytest.mark.service
class TestResolve:
    """Tests for resolving codes and looking up URLs."""

    @pytest.mark.asyncio
    async def test_resolve_unknown_code(self, test_db, service):
        with pytest.raises(MappingNotFoundError):
            await service.resolve(test_db, "nope123")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "x" * 11])
    async def test_resolve_impossible_code_skips_storage(self, test_db, service, url_repository, code):
        with patch.object(url_repository, "get_by_short_code", new=AsyncMock()) as lookup:
            with pytest.raises(MappingNotFoundError):
                await service.resolve(test_db, code)

        lookup.assert_not_called()

    @pytest.mark.asyncio
    async def test_resolve_is_case_sensitive(self, test_db, service):
        await create_test_mapping(test_db, short_code="AbCd")

        assert (await service.resolve(test_db, "AbCd")).short_code == "AbCd"
        with pytest.raises(MappingNotFoundError):
            await service.resolve(test_db, "abcd")

    @pytest.mark.asyncio
    async def test_resolve_storage_failure(self, test_db, service, url_repository):
        with patch.object(url_repository, "get_by_short_code", side_effect=RepositoryError("db down")):
            with pytest.raises(StorageUnavailableError):
                await service.resolve(test_db, "abc")

    @pytest.mark.asyncio
    async def test_lookup_by_url(self, test_db, service):
        url = random_url()

        with pytest.raises(MappingNotFoundError):
            await service.lookup_by_url(test_db, url)

        created = await service.shorten(test_db, url)

        assert await service.lookup_by_url(test_db, url) == created

    @pytest.mark.asyncio
    async def test_lookup_by_url_storage_failure(self, test_db, service, url_repository):
        with patch.object(url_repository, "get_by_original_url", side_effect=RepositoryError("db down")):
            with pytest.raises(StorageUnavailableError):
                await service.lookup_by_url(test_db, random_url())


@pytest.mark.service
class TestCachedResolve:
    """Tests for the service with a resolve cache attached."""

    @pytest.fixture
    def cached_service(self, url_repository, hash_generator, allocation_metrics, mock_redis_manager):
        return ShortenerService(
            url_repository=url_repository,
            code_generator=hash_generator,
            cache=MappingCache(mock_redis_manager, key_prefix="test:"),
            metrics=allocation_metrics,
        )

    @pytest.mark.asyncio
    async def test_shorten_writes_through(self, test_db, cached_service, url_repository, mock_redis):
        mapping = await cached_service.shorten(test_db, random_url())

        assert f"test:{mapping.short_code}" in mock_redis.data

        with patch.object(url_repository, "get_by_short_code", new=AsyncMock()) as lookup:
            assert await cached_service.resolve(test_db, mapping.short_code) == mapping

        lookup.assert_not_called()

    @pytest.mark.asyncio
    async def test_resolve_miss_fills_cache(self, test_db, cached_service, mock_redis):
        await create_test_mapping(test_db, short_code="filled")

        await cached_service.resolve(test_db, "filled")

        assert "test:filled" in mock_redis.data
