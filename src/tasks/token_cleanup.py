"""
Expired token cleanup.

Tokens are already swept every time one is read; this task also reaps them
when nobody reads any token for a while. It runs periodically inside the API
process and can be run on its own as a cron job.

Usage:
    python -m tasks.token_cleanup
"""
import asyncio
import logging
from datetime import datetime

from core.config import get_settings
from services.token_store import TokenStore

logger = logging.getLogger(__name__)


async def run_token_cleanup(tokens: TokenStore, now: datetime | None = None) -> int:
    """
    Delete tokens older than the store's retention window.

    Args:
        tokens: Token store to sweep.
        now: Current time for cutoff calculation. Defaults to datetime.now(UTC).

    Returns:
        Number of token files deleted.
    """
    deleted = await tokens.sweep_expired(now=now)
    remaining = await asyncio.to_thread(tokens.count)
    logger.info("Token cleanup complete: deleted=%d remaining=%d", deleted, remaining)
    return deleted


async def run_periodic_token_cleanup(tokens: TokenStore, interval_seconds: float) -> None:
    """Sweep expired tokens every interval_seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_token_cleanup(tokens)
        except Exception:
            logger.exception("Periodic token cleanup failed")


def main() -> None:
    """Entry point for running token cleanup as a script."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_token_cleanup(TokenStore(settings.token_dir, settings.token_retention)))


if __name__ == "__main__":
    main()
