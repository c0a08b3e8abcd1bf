import logging
from typing import Optional

from .config import settings
from .errors import InvariantRepairError, ThemeConflictError
from .models.schemas import ThemeRecord
from .service.manager import ThemeManager
from .service.normalizer import DEFAULT_TOKENS

logger = logging.getLogger(settings.SERVICE_NAME + ".bootstrap")

BOOTSTRAP_ATTEMPTS = 3


async def ensure_bootstrapped(
    manager: ThemeManager,
    owner_id: Optional[str] = None,
    theme_name: Optional[str] = None,
) -> ThemeRecord:
    """
    Make sure the owner has a default theme.

    An owner without themes gets one named DEFAULT_THEME_NAME holding
    DEFAULT_TOKENS. An owner with themes has its default repaired if needed.
    Safe to call on every startup, including from several workers at once:
    losing the race to create the theme falls back to the winner's theme.
    """
    owner_id = owner_id or settings.OWNER_ID
    theme_name = theme_name or settings.DEFAULT_THEME_NAME

    for attempt in range(1, BOOTSTRAP_ATTEMPTS + 1):
        default = await manager.repair_defaults(owner_id)
        if default is not None:
            logger.debug(f"Owner {owner_id} already bootstrapped with default theme {default.id}")
            return default

        logger.info(f"Owner {owner_id} has no themes; creating {theme_name!r}")
        try:
            return await manager.create_theme(owner_id, theme_name, DEFAULT_TOKENS, is_default=True)
        except ThemeConflictError:
            logger.info(
                f"Theme {theme_name!r} for owner {owner_id} was created concurrently "
                f"(attempt {attempt}/{BOOTSTRAP_ATTEMPTS})"
            )

    raise InvariantRepairError(
        f"Could not establish a default theme for owner {owner_id}.",
        details={"owner_id": owner_id, "attempts": BOOTSTRAP_ATTEMPTS},
    )
