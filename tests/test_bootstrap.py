import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import fakeredis
import pytest
from fakeredis import aioredis as fake_aioredis

from theme_service import main as main_module
from theme_service.bootstrap import BOOTSTRAP_ATTEMPTS, ensure_bootstrapped
from theme_service.config import Settings, settings
from theme_service.errors import (
    InvariantRepairError,
    ThemeConflictError,
    ThemeNotFoundError,
    ThemeServiceError,
    ThemeValidationError,
    TokenValidationError,
)
from theme_service.models.schemas import ThemeRecord
from theme_service.service.manager import ThemeManager
from theme_service.service.normalizer import DEFAULT_TOKENS
from theme_service.storage import InMemoryThemeRepository, RedisThemeRepository, build_repository


@pytest.mark.asyncio
async def test_bootstrap_creates_default_theme():
    manager = ThemeManager(InMemoryThemeRepository())
    theme = await ensure_bootstrapped(manager, owner_id="OWNER")
    assert theme.name == settings.DEFAULT_THEME_NAME
    assert theme.is_default is True
    assert theme.tokens == DEFAULT_TOKENS


@pytest.mark.asyncio
async def test_bootstrap_is_idempotent():
    manager = ThemeManager(InMemoryThemeRepository())
    first = await ensure_bootstrapped(manager, owner_id="OWNER", theme_name="House")
    second = await ensure_bootstrapped(manager, owner_id="OWNER", theme_name="House")
    assert first.id == second.id
    assert len(await manager.list_themes("OWNER")) == 1


@pytest.mark.asyncio
async def test_bootstrap_repairs_existing_themes():
    repo = InMemoryThemeRepository()
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    await repo.create_theme(
        ThemeRecord(
            id="legacy",
            name="Legacy",
            tokens=DEFAULT_TOKENS,
            is_default=False,
            owner_id="OWNER",
            created_at=stamp,
            updated_at=stamp,
        )
    )
    theme = await ensure_bootstrapped(ThemeManager(repo), owner_id="OWNER")
    assert theme.id == "legacy"
    assert theme.is_default is True


@pytest.mark.asyncio
async def test_build_repository_defaults_to_memory():
    repo = await build_repository(Settings(STORE_BACKEND="memory"))
    assert isinstance(repo, InMemoryThemeRepository)


@pytest.mark.asyncio
async def test_build_repository_redis_backend():
    client = AsyncMock()
    with patch("theme_service.storage.connect_redis", new=AsyncMock(return_value=client)) as connect:
        repo = await build_repository(
            Settings(STORE_BACKEND="redis", REDIS_URL="redis://cache:6380/2", REDIS_KEY_PREFIX="blog")
        )
    assert isinstance(repo, RedisThemeRepository)
    connect.assert_awaited_once()
    await repo.close()
    client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_main_bootstraps_configured_owner():
    repo = InMemoryThemeRepository()
    with patch.object(main_module, "build_repository", new=AsyncMock(return_value=repo)):
        await main_module.main()
    themes = await repo.find_themes_by_owner(settings.OWNER_ID)
    assert [theme.name for theme in themes] == [settings.DEFAULT_THEME_NAME]
    assert themes[0].is_default is True


def test_error_codes_are_stable():
    assert ThemeValidationError().code == "THEME_INVALID"
    assert ThemeConflictError().code == "THEME_NAME_CONFLICT"
    assert ThemeNotFoundError().code == "THEME_NOT_FOUND"
    assert InvariantRepairError().code == "INVARIANT_REPAIR_FAILED"
    assert issubclass(ThemeValidationError, ValueError)
    assert issubclass(ThemeNotFoundError, LookupError)

    error = TokenValidationError(["type.basePx: too small"])
    assert isinstance(error, ThemeServiceError)
    assert error.to_dict() == {
        "code": "TOKENS_INVALID",
        "message": TokenValidationError.default_message,
        "details": {"issues": ["type.basePx: too small"]},
    }


@pytest.mark.asyncio
async def test_concurrent_bootstraps_share_one_theme():
    repo = InMemoryThemeRepository()
    workers = [ThemeManager(repo), ThemeManager(repo)]
    first, second = await asyncio.gather(*(ensure_bootstrapped(worker, owner_id="OWNER") for worker in workers))
    assert first.id == second.id
    assert len(await repo.find_themes_by_owner("OWNER")) == 1


@pytest.mark.asyncio
async def test_concurrent_bootstraps_over_shared_redis():
    server = fakeredis.FakeServer()
    workers = [
        ThemeManager(RedisThemeRepository(fake_aioredis.FakeRedis(server=server, decode_responses=True)))
        for _ in range(3)
    ]
    results = await asyncio.gather(*(ensure_bootstrapped(worker, owner_id="OWNER") for worker in workers))
    assert len({theme.id for theme in results}) == 1
    assert len(await workers[0].list_themes("OWNER")) == 1


@pytest.mark.asyncio
async def test_bootstrap_falls_back_to_winner_after_name_conflict():
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    winner = ThemeRecord(
        id="winner",
        name="Plain",
        tokens=DEFAULT_TOKENS,
        is_default=True,
        owner_id="OWNER",
        created_at=stamp,
        updated_at=stamp,
    )
    manager = Mock()
    manager.repair_defaults = AsyncMock(side_effect=[None, winner])
    manager.create_theme = AsyncMock(side_effect=ThemeConflictError())

    assert await ensure_bootstrapped(manager, owner_id="OWNER") is winner
    manager.create_theme.assert_awaited_once()


@pytest.mark.asyncio
async def test_bootstrap_gives_up_when_no_default_can_be_established():
    manager = Mock()
    manager.repair_defaults = AsyncMock(return_value=None)
    manager.create_theme = AsyncMock(side_effect=ThemeConflictError())

    with pytest.raises(InvariantRepairError):
        await ensure_bootstrapped(manager, owner_id="OWNER")
    assert manager.create_theme.await_count == BOOTSTRAP_ATTEMPTS
