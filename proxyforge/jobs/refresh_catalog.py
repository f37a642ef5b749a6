"""
Refresh the local Scryfall bulk snapshot.

Run this job to download the latest printings into the local card index
without starting the web server. Can be run as a standalone script or
called from a scheduler.
"""

import asyncio
import logging

from proxyforge.config import Settings, settings
from proxyforge.services.resolution_service import ResolutionService

logger = logging.getLogger(__name__)


async def run_refresh(config: Settings = settings) -> int:
    """
    Bring the bulk snapshot up to date.

    Returns:
        Number of printings in the index afterwards

    Raises:
        KnownError: If no usable snapshot could be produced
    """
    logger.info("Refreshing card catalog in %s...", config.catalog_data_dir)

    service = await ResolutionService.create(config, load_catalog=False)
    try:
        await service.store.initialize()
        count = service.store.card_count
        logger.info("Card catalog ready: %d printings", count)
        return count
    except Exception as e:
        logger.error("Failed to refresh card catalog: %s", e)
        raise
    finally:
        await service.aclose()


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_refresh())


if __name__ == "__main__":
    main()
