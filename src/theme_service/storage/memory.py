"""In-process theme store with snapshot transactions."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from ..config import settings
from ..errors import ThemeConflictError, ThemeNotFoundError
from ..models.schemas import ThemeRecord
from .base import apply_update, sort_by_creation

logger = logging.getLogger(settings.SERVICE_NAME + ".memory_store")


class InMemoryThemeRepository:
    """
    Keeps theme records and entity->theme references in dictionaries.

    ``transaction()`` serializes writers and restores the previous state when
    the block raises, so a write and its demotion pass commit together.
    """

    def __init__(self) -> None:
        self._themes: Dict[str, ThemeRecord] = {}
        self._references: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["InMemoryThemeRepository"]:
        async with self._lock:
            # Records are replaced, never mutated, so shallow copies are enough.
            snapshot = (dict(self._themes), dict(self._references))
            try:
                yield self
            except BaseException:
                self._themes, self._references = snapshot
                logger.warning("Transaction rolled back")
                raise

    async def find_themes_by_owner(self, owner_id: str) -> List[ThemeRecord]:
        return sort_by_creation([t for t in self._themes.values() if t.owner_id == owner_id])

    async def find_theme_by_id(self, theme_id: str) -> Optional[ThemeRecord]:
        return self._themes.get(theme_id)

    async def create_theme(self, record: ThemeRecord) -> ThemeRecord:
        if record.id in self._themes:
            raise ThemeConflictError(f"Theme id {record.id!r} already exists.")
        self._check_name(record.owner_id, record.name, exclude_id=None)
        self._themes[record.id] = record
        return record

    async def update_theme(self, theme_id: str, fields: Dict[str, Any]) -> ThemeRecord:
        current = self._themes.get(theme_id)
        if current is None:
            raise ThemeNotFoundError(details={"theme_id": theme_id})
        updated = apply_update(current, fields)
        if updated.name != current.name:
            self._check_name(updated.owner_id, updated.name, exclude_id=theme_id)
        self._themes[theme_id] = updated
        return updated

    async def delete_theme(self, theme_id: str) -> None:
        self._themes.pop(theme_id, None)

    async def demote_all_except(
        self, owner_id: str, keep_id: Optional[str], *, updated_at: datetime
    ) -> None:
        for theme_id, record in list(self._themes.items()):
            if record.owner_id == owner_id and record.is_default and theme_id != keep_id:
                self._themes[theme_id] = record.model_copy(
                    update={"is_default": False, "updated_at": updated_at}
                )

    async def clear_theme_references(self, theme_id: str) -> None:
        for entity_id in [e for e, t in self._references.items() if t == theme_id]:
            del self._references[entity_id]

    async def set_theme_reference(self, entity_id: str, theme_id: Optional[str]) -> None:
        if theme_id is None:
            self._references.pop(entity_id, None)
        else:
            self._references[entity_id] = theme_id

    async def get_theme_reference(self, entity_id: str) -> Optional[str]:
        return self._references.get(entity_id)

    async def close(self) -> None:
        return None

    def _check_name(self, owner_id: str, name: str, *, exclude_id: Optional[str]) -> None:
        for record in self._themes.values():
            if record.owner_id == owner_id and record.name == name and record.id != exclude_id:
                raise ThemeConflictError(
                    f"Theme name {name!r} already exists.",
                    details={"owner_id": owner_id, "name": name},
                )
