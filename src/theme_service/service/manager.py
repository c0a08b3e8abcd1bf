import asyncio
import logging
import uuid
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar

from ..config import settings
from ..errors import (
    InvariantRepairError,
    ThemeConflictError,
    ThemeNotFoundError,
    ThemeValidationError,
    TokenValidationError,
)
from ..models.schemas import ThemeDeleteResult, ThemeRecord, ThemeTokens
from ..storage.base import ThemeRepository, sort_by_creation, utcnow
from .normalizer import DEFAULT_TOKENS, merge_tokens, try_normalize

logger = logging.getLogger(settings.SERVICE_NAME + ".manager")

T = TypeVar("T")


class ThemeManager:
    """
    Keeps at most one default theme per owner across create, update and delete.

    Every mutation is one unit of work. When the repository exposes
    ``transaction()`` the primary write and the demotion/promotion pass share
    a transaction. Otherwise the pass runs right after the write and a failure
    there is raised as InvariantRepairError instead of reporting success.
    Repositories shared by several workers also hold their ``owner_lock`` for
    the whole unit.
    """

    def __init__(
        self,
        repository: ThemeRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        name_max_length: Optional[int] = None,
    ) -> None:
        self._repo = repository
        self._clock = clock or utcnow
        self._last_timestamp: Optional[datetime] = None
        self._name_max_length = name_max_length or settings.THEME_NAME_MAX_LENGTH
        # Entries vanish once no operation holds or awaits the owner's lock.
        self._owner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @property
    def repository(self) -> ThemeRepository:
        return self._repo

    # --- reads ---

    async def list_themes(self, owner_id: str) -> List[ThemeRecord]:
        """Return the owner's themes, earliest created first."""
        return sort_by_creation(await self._repo.find_themes_by_owner(owner_id))

    async def get_theme(self, owner_id: str, theme_id: str) -> ThemeRecord:
        return await self._owned(owner_id, theme_id)

    async def get_default_theme(self, owner_id: str) -> Optional[ThemeRecord]:
        themes = await self.list_themes(owner_id)
        return next((theme for theme in themes if theme.is_default), None)

    async def resolve_tokens(self, owner_id: str, theme_id: Optional[str] = None) -> ThemeTokens:
        """
        Tokens the rendering layer should use for an owner.

        An explicitly referenced theme wins when it exists and belongs to the
        owner; otherwise the owner's default theme; otherwise DEFAULT_TOKENS.
        """
        if theme_id is not None:
            record = await self._repo.find_theme_by_id(theme_id)
            if record is not None and record.owner_id == owner_id:
                return record.tokens
            logger.debug(f"Theme {theme_id} unavailable for owner {owner_id}, using default")
        default = await self.get_default_theme(owner_id)
        if default is None:
            return DEFAULT_TOKENS
        return default.tokens

    async def resolve_entity_tokens(self, owner_id: str, entity_id: str) -> ThemeTokens:
        """Tokens for a piece of content, honoring its theme override if any."""
        theme_id = await self._repo.get_theme_reference(entity_id)
        return await self.resolve_tokens(owner_id, theme_id)

    # --- writes ---

    async def create_theme(
        self,
        owner_id: str,
        name: str,
        tokens: Any = None,
        *,
        is_default: bool = False,
        strict: bool = False,
    ) -> ThemeRecord:
        """
        Create a theme for an owner.

        Args:
            owner_id: Owning identity.
            name: Theme name, unique within the owner's themes.
            tokens: Raw token object; None means DEFAULT_TOKENS.
            is_default: Make the new theme the owner's default.
            strict: Reject tokens that are incomplete or needed any correction.

        Returns:
            The stored record. The owner's first theme is always the default.

        Raises:
            ThemeValidationError, TokenValidationError, ThemeConflictError,
            InvariantRepairError.
        """
        cleaned = self._clean_name(name)
        normalized = self._prepare_tokens(tokens, base=DEFAULT_TOKENS, strict=strict, require_complete=True)

        async with self._unit_of_work(owner_id) as transactional:
            siblings = await self._repo.find_themes_by_owner(owner_id)
            self._ensure_name_available(siblings, cleaned, exclude_id=None)
            make_default = is_default or not any(theme.is_default for theme in siblings)
            now = self._now()
            record = ThemeRecord(
                id=uuid.uuid4().hex,
                name=cleaned,
                tokens=normalized,
                is_default=make_default,
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
            )
            created = await self._repo.create_theme(record)
            if created.is_default:
                await self._reconcile(
                    lambda: self._repo.demote_all_except(owner_id, created.id, updated_at=self._now()),
                    transactional=transactional,
                    action="demote sibling themes",
                    theme_id=created.id,
                )

        logger.info(f"Created theme {created.id} ({created.name!r}) for owner {owner_id}, default={created.is_default}")
        return created

    async def update_theme(
        self,
        owner_id: str,
        theme_id: str,
        *,
        name: Optional[str] = None,
        tokens: Any = None,
        is_default: Optional[bool] = None,
        strict: bool = False,
    ) -> ThemeRecord:
        """
        Rename a theme, merge a token override onto its current tokens, or make
        it the default. ``is_default=False`` on the current default is ignored:
        the default only moves when another theme is promoted.
        """
        cleaned = self._clean_name(name) if name is not None else None

        async with self._unit_of_work(owner_id) as transactional:
            current = await self._owned(owner_id, theme_id)
            fields: Dict[str, Any] = {}
            if cleaned is not None and cleaned != current.name:
                siblings = await self._repo.find_themes_by_owner(owner_id)
                self._ensure_name_available(siblings, cleaned, exclude_id=theme_id)
                fields["name"] = cleaned
            if tokens is not None:
                fields["tokens"] = self._prepare_tokens(
                    tokens, base=current.tokens, strict=strict, require_complete=False
                )
            if is_default and not current.is_default:
                fields["is_default"] = True
            elif is_default is False and current.is_default:
                logger.info(f"Ignoring demotion of default theme {theme_id}; promote another theme instead")

            updated = current
            if fields:
                fields["updated_at"] = self._now()
                updated = await self._repo.update_theme(theme_id, fields)

            # Runs on a repeated promotion too, so a retry after a failed pass converges.
            if updated.is_default and (is_default or "is_default" in fields):
                await self._reconcile(
                    lambda: self._repo.demote_all_except(owner_id, theme_id, updated_at=self._now()),
                    transactional=transactional,
                    action="demote sibling themes",
                    theme_id=theme_id,
                )

        logger.info(f"Updated theme {theme_id} for owner {owner_id}: {sorted(fields)}")
        return updated

    async def set_default_theme(self, owner_id: str, theme_id: str) -> ThemeRecord:
        return await self.update_theme(owner_id, theme_id, is_default=True)

    async def delete_theme(self, owner_id: str, theme_id: str) -> ThemeDeleteResult:
        """
        Delete a theme. Content referencing it falls back to the default, and
        if it was the default the earliest-created remaining theme is promoted.
        """
        async with self._unit_of_work(owner_id) as transactional:
            current = await self._owned(owner_id, theme_id)
            await self._repo.clear_theme_references(theme_id)
            await self._repo.delete_theme(theme_id)
            promoted_id = None
            if current.is_default:
                promoted_id = await self._reconcile(
                    lambda: self._promote_successor(owner_id),
                    transactional=transactional,
                    action="promote a successor default theme",
                    theme_id=theme_id,
                )

        if promoted_id:
            logger.info(f"Deleted default theme {theme_id}; promoted {promoted_id} for owner {owner_id}")
        else:
            logger.info(f"Deleted theme {theme_id} for owner {owner_id}")
        return ThemeDeleteResult(deleted_id=theme_id, promoted_id=promoted_id)

    async def assign_theme(self, owner_id: str, entity_id: str, theme_id: Optional[str]) -> None:
        """Point a piece of content at one of the owner's themes, or back to the default with None."""
        async with self._unit_of_work(owner_id):
            if theme_id is not None:
                await self._owned(owner_id, theme_id)
            await self._repo.set_theme_reference(entity_id, theme_id)

    async def repair_defaults(self, owner_id: str) -> Optional[ThemeRecord]:
        """
        Restore exactly one default for an owner with themes: with no default
        the earliest theme is promoted, with several the earliest default stays.
        """
        async with self._unit_of_work(owner_id):
            themes = await self.list_themes(owner_id)
            if not themes:
                return None
            defaults = [theme for theme in themes if theme.is_default]
            if len(defaults) == 1:
                return defaults[0]

            keeper = defaults[0] if defaults else themes[0]
            logger.warning(f"Owner {owner_id} had {len(defaults)} default themes; keeping {keeper.id}")
            if not keeper.is_default:
                keeper = await self._repo.update_theme(
                    keeper.id, {"is_default": True, "updated_at": self._now()}
                )
            await self._repo.demote_all_except(owner_id, keeper.id, updated_at=self._now())
            return keeper

    # --- helpers ---

    @asynccontextmanager
    async def _unit_of_work(self, owner_id: str) -> AsyncIterator[bool]:
        """
        Serialize an owner's mutations; yields True when a repository transaction is open.

        The in-process lock orders this manager's own coroutines. A repository
        shared between processes additionally provides ``owner_lock``, held for
        the whole unit so no other writer interleaves with the demotion pass.
        """
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[owner_id] = lock
        async with lock, AsyncExitStack() as stack:
            owner_lock = getattr(self._repo, "owner_lock", None)
            if owner_lock is not None:
                await stack.enter_async_context(owner_lock(owner_id))
            transaction = getattr(self._repo, "transaction", None)
            if transaction is not None:
                await stack.enter_async_context(transaction())
            yield transaction is not None

    async def _reconcile(
        self,
        step: Callable[[], Awaitable[T]],
        *,
        transactional: bool,
        action: str,
        theme_id: str,
    ) -> T:
        try:
            return await step()
        except Exception as e:
            logger.error(f"Failed to {action} after writing theme {theme_id}: {e}", exc_info=True)
            raise InvariantRepairError(
                f"Theme {theme_id} was written but the service failed to {action}.",
                details={"theme_id": theme_id, "rolled_back": transactional},
            ) from e

    async def _promote_successor(self, owner_id: str) -> Optional[str]:
        remaining = sort_by_creation(await self._repo.find_themes_by_owner(owner_id))
        if not remaining:
            return None
        successor = remaining[0]
        if not successor.is_default:
            await self._repo.update_theme(successor.id, {"is_default": True, "updated_at": self._now()})
        await self._repo.demote_all_except(owner_id, successor.id, updated_at=self._now())
        return successor.id

    async def _owned(self, owner_id: str, theme_id: str) -> ThemeRecord:
        record = await self._repo.find_theme_by_id(theme_id)
        # Another owner's theme is reported exactly like a missing one.
        if record is None or record.owner_id != owner_id:
            raise ThemeNotFoundError(f"Theme {theme_id!r} not found.", details={"theme_id": theme_id})
        return record

    def _prepare_tokens(
        self, raw: Any, *, base: ThemeTokens, strict: bool, require_complete: bool
    ) -> ThemeTokens:
        if raw is None:
            return base
        if strict:
            result = try_normalize(raw, base=base, require_complete=require_complete)
            if not result.valid:
                raise TokenValidationError(result.issues)
            return result.tokens
        return merge_tokens(base, raw)

    def _clean_name(self, name: Any) -> str:
        if not isinstance(name, str):
            raise ThemeValidationError("Theme name must be a string.")
        cleaned = name.strip()
        if not cleaned:
            raise ThemeValidationError("Theme name must not be empty.")
        if len(cleaned) > self._name_max_length:
            raise ThemeValidationError(
                f"Theme name exceeds max length {self._name_max_length}.",
                details={"max_length": self._name_max_length},
            )
        if any(ch in cleaned for ch in ("\n", "\r", "\t")):
            raise ThemeValidationError("Theme name must be a single line.")
        return cleaned

    @staticmethod
    def _ensure_name_available(
        siblings: List[ThemeRecord], name: str, *, exclude_id: Optional[str]
    ) -> None:
        if any(theme.name == name and theme.id != exclude_id for theme in siblings):
            raise ThemeConflictError(f"Theme name {name!r} already exists.", details={"name": name})

    def _now(self) -> datetime:
        """Clock reading that never repeats, so creation order is always total."""
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now
