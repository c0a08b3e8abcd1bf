"""Redis-backed theme store."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import redis.asyncio as aioredis
from redis.asyncio.lock import Lock

from ..config import settings
from ..errors import ThemeConflictError, ThemeNotFoundError
from ..models.schemas import ThemeRecord
from ..service.normalizer import load_tokens
from .base import apply_update, sort_by_creation

logger = logging.getLogger(settings.SERVICE_NAME + ".redis_store")


class RedisThemeRepository:
    """
    Stores theme records in Redis.

    Key layout (``p`` is the key prefix):
      p:theme:<id>            JSON record (camelCase keys)
      p:owner:<owner>:ids     set of the owner's theme ids
      p:owner:<owner>:names   hash name -> id, claimed with HSETNX for uniqueness
      p:theme:<id>:refs       set of entity ids referencing the theme
      p:ref:<entity>          theme id referenced by an entity
      p:owner:<owner>:lock    owner-scoped writer lock

    Multi-key writes of one call go through a MULTI/EXEC pipeline. There is no
    transaction spanning several calls, so callers must treat follow-up writes
    as compensating steps. Writers sharing the store across processes exclude
    each other per owner with ``owner_lock``.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        key_prefix: Optional[str] = None,
        lock_timeout: Optional[float] = None,
        lock_blocking_timeout: Optional[float] = None,
    ) -> None:
        self._redis = client
        self._prefix = key_prefix or settings.REDIS_KEY_PREFIX
        self._lock_timeout = lock_timeout or settings.REDIS_LOCK_TIMEOUT
        self._lock_blocking_timeout = lock_blocking_timeout or settings.REDIS_LOCK_BLOCKING_TIMEOUT

    def owner_lock(self, owner_id: str) -> Lock:
        """
        Distributed lock serializing writers of one owner across processes.

        Expires after ``lock_timeout`` seconds so a crashed holder cannot block
        the owner forever. Raises redis LockError when it cannot be acquired
        within ``lock_blocking_timeout``.
        """
        return self._redis.lock(
            self._owner_lock_key(owner_id),
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_blocking_timeout,
        )

    # --- keys ---

    def _theme_key(self, theme_id: str) -> str:
        return f"{self._prefix}:theme:{theme_id}"

    def _owner_ids_key(self, owner_id: str) -> str:
        return f"{self._prefix}:owner:{owner_id}:ids"

    def _owner_names_key(self, owner_id: str) -> str:
        return f"{self._prefix}:owner:{owner_id}:names"

    def _owner_lock_key(self, owner_id: str) -> str:
        return f"{self._prefix}:owner:{owner_id}:lock"

    def _refs_key(self, theme_id: str) -> str:
        return f"{self._prefix}:theme:{theme_id}:refs"

    def _ref_key(self, entity_id: str) -> str:
        return f"{self._prefix}:ref:{entity_id}"

    # --- encoding ---

    @staticmethod
    def _encode(record: ThemeRecord) -> str:
        return record.model_dump_json(by_alias=True)

    @staticmethod
    def _decode(raw: Union[str, bytes]) -> ThemeRecord:
        data = json.loads(raw)
        # Stored tokens are re-normalized on read, so records written by an
        # older schema still come back complete.
        data["tokens"] = load_tokens(data.get("tokens"))
        return ThemeRecord.model_validate(data)

    async def _load(self, theme_id: str) -> Optional[ThemeRecord]:
        raw = await self._redis.get(self._theme_key(theme_id))
        if raw is None:
            return None
        return self._decode(raw)

    # --- reads ---

    async def find_themes_by_owner(self, owner_id: str) -> List[ThemeRecord]:
        theme_ids = await self._redis.smembers(self._owner_ids_key(owner_id))
        if not theme_ids:
            return []
        raws = await self._redis.mget([self._theme_key(theme_id) for theme_id in sorted(theme_ids)])
        return sort_by_creation([self._decode(raw) for raw in raws if raw is not None])

    async def find_theme_by_id(self, theme_id: str) -> Optional[ThemeRecord]:
        return await self._load(theme_id)

    async def get_theme_reference(self, entity_id: str) -> Optional[str]:
        value = await self._redis.get(self._ref_key(entity_id))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    # --- writes ---

    async def create_theme(self, record: ThemeRecord) -> ThemeRecord:
        names_key = self._owner_names_key(record.owner_id)
        claimed = await self._redis.hsetnx(names_key, record.name, record.id)
        if not claimed:
            raise ThemeConflictError(
                f"Theme name {record.name!r} already exists.",
                details={"owner_id": record.owner_id, "name": record.name},
            )
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._theme_key(record.id), self._encode(record))
                pipe.sadd(self._owner_ids_key(record.owner_id), record.id)
                await pipe.execute()
        except Exception:
            # Release the name so a retry is not blocked by a record that never landed.
            await self._redis.hdel(names_key, record.name)
            raise
        logger.debug(f"Stored theme {record.id} for owner {record.owner_id}")
        return record

    async def update_theme(self, theme_id: str, fields: Dict[str, Any]) -> ThemeRecord:
        current = await self._load(theme_id)
        if current is None:
            raise ThemeNotFoundError(details={"theme_id": theme_id})
        updated = apply_update(current, fields)
        names_key = self._owner_names_key(current.owner_id)
        renamed = updated.name != current.name
        if renamed:
            claimed = await self._redis.hsetnx(names_key, updated.name, theme_id)
            if not claimed:
                raise ThemeConflictError(
                    f"Theme name {updated.name!r} already exists.",
                    details={"owner_id": current.owner_id, "name": updated.name},
                )
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._theme_key(theme_id), self._encode(updated))
                if renamed:
                    pipe.hdel(names_key, current.name)
                await pipe.execute()
        except Exception:
            if renamed:
                # The record still carries the old name; give the new one back.
                await self._redis.hdel(names_key, updated.name)
            raise
        return updated

    async def delete_theme(self, theme_id: str) -> None:
        current = await self._load(theme_id)
        if current is None:
            return
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._theme_key(theme_id))
            pipe.srem(self._owner_ids_key(current.owner_id), theme_id)
            pipe.hdel(self._owner_names_key(current.owner_id), current.name)
            await pipe.execute()
        logger.debug(f"Deleted theme {theme_id}")

    async def demote_all_except(
        self, owner_id: str, keep_id: Optional[str], *, updated_at: datetime
    ) -> None:
        records = await self.find_themes_by_owner(owner_id)
        stale = [record for record in records if record.is_default and record.id != keep_id]
        if not stale:
            return
        async with self._redis.pipeline(transaction=True) as pipe:
            for record in stale:
                demoted = record.model_copy(update={"is_default": False, "updated_at": updated_at})
                pipe.set(self._theme_key(record.id), self._encode(demoted))
            await pipe.execute()
        logger.debug(f"Demoted {len(stale)} theme(s) for owner {owner_id}")

    async def clear_theme_references(self, theme_id: str) -> None:
        refs_key = self._refs_key(theme_id)
        entity_ids = await self._redis.smembers(refs_key)
        async with self._redis.pipeline(transaction=True) as pipe:
            for entity_id in entity_ids:
                pipe.delete(self._ref_key(entity_id))
            pipe.delete(refs_key)
            await pipe.execute()

    async def set_theme_reference(self, entity_id: str, theme_id: Optional[str]) -> None:
        previous = await self.get_theme_reference(entity_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            if previous is not None:
                pipe.srem(self._refs_key(previous), entity_id)
            if theme_id is None:
                pipe.delete(self._ref_key(entity_id))
            else:
                pipe.set(self._ref_key(entity_id), theme_id)
                pipe.sadd(self._refs_key(theme_id), entity_id)
            await pipe.execute()

    async def close(self) -> None:
        await self._redis.aclose()
