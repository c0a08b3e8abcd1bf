import asyncio
import logging

from .bootstrap import ensure_bootstrapped
from .config import settings
from .service.css_vars import derive_variables, format_declarations
from .service.manager import ThemeManager
from .storage import build_repository

logger = logging.getLogger(settings.SERVICE_NAME + ".main")


async def main() -> None:
    """Seed the configured owner and log the CSS variables of its default theme."""
    logger.info(f"Starting {settings.SERVICE_NAME} with {settings.STORE_BACKEND} store...")
    repository = await build_repository()
    try:
        manager = ThemeManager(repository)
        default = await ensure_bootstrapped(manager)
        variables = derive_variables(default.tokens, settings.DEFAULT_COLOR_MODE)
        logger.info(f"Default theme for {settings.OWNER_ID}: {default.name!r} ({default.id})")
        logger.info(f"CSS variables ({settings.DEFAULT_COLOR_MODE}): {format_declarations(variables)}")
    finally:
        await repository.close()
        logger.info("Theme store closed.")


if __name__ == "__main__":
    asyncio.run(main())
