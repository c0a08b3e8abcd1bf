"""Persistence interface the theme manager relies on."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from ..models.schemas import ThemeRecord

UPDATABLE_FIELDS = frozenset({"name", "tokens", "is_default", "updated_at"})


class ThemeRepository(Protocol):
    """
    Read/write operations over theme records.

    Implementations raise ThemeConflictError when a name is already used by
    another theme of the same owner and ThemeNotFoundError when updating an
    unknown id. A repository that can span several calls in one atomic unit
    additionally exposes ``transaction()`` as an async context manager. A
    repository shared by several processes exposes ``owner_lock(owner_id)``,
    an async context manager that excludes other writers for that owner.
    """

    async def find_themes_by_owner(self, owner_id: str) -> List[ThemeRecord]: ...

    async def find_theme_by_id(self, theme_id: str) -> Optional[ThemeRecord]: ...

    async def create_theme(self, record: ThemeRecord) -> ThemeRecord: ...

    async def update_theme(self, theme_id: str, fields: Dict[str, Any]) -> ThemeRecord: ...

    async def delete_theme(self, theme_id: str) -> None: ...

    async def demote_all_except(
        self, owner_id: str, keep_id: Optional[str], *, updated_at: datetime
    ) -> None: ...

    async def clear_theme_references(self, theme_id: str) -> None: ...

    async def set_theme_reference(self, entity_id: str, theme_id: Optional[str]) -> None: ...

    async def get_theme_reference(self, entity_id: str) -> Optional[str]: ...

    async def close(self) -> None: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def apply_update(record: ThemeRecord, fields: Dict[str, Any]) -> ThemeRecord:
    """Return a copy of record with fields applied; id and owner are never rewritten."""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported theme fields: {', '.join(sorted(unknown))}")
    return record.model_copy(update=fields)


def sort_by_creation(records: List[ThemeRecord]) -> List[ThemeRecord]:
    return sorted(records, key=lambda record: (record.created_at, record.id))
