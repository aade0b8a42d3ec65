# copytrader/background.py
import logging

from copytrader.errors import PersistenceError

logger = logging.getLogger(__name__)


def start_background_tasks(services):
    try:
        services.ledger.resolve_stale_pending(services.config.PENDING_TIMEOUT)
    except PersistenceError as e:
        logger.error(f"Pending ledger sweep failed: {e}")
    services.sweeper.start()
    if services.config.WATCHER_ENABLED:
        services.watcher.start()
        logger.info("Background tasks started: transaction watcher")
    else:
        logger.info("Transaction watcher disabled")


async def stop_background_tasks(services):
    await services.aclose()
    logger.info("Background tasks stopped")
