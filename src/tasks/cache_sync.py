"""
Startup warm-up of the identity cache.

Loads every member the central registry knows about into the in-process
identity cache, so the first email validations after a restart are answered
without a registry round trip. Runs once, in the background, when the API
starts.

Best-effort: a registry that is unreachable, unconfigured or answers with an
unknown shape leaves the cache empty and the service keeps working, falling
back to per-request registry lookups.
"""
import logging
from dataclasses import dataclass

from core.identity_cache import IdentityCache
from services.registry_client import RegistryClient

logger = logging.getLogger(__name__)


@dataclass
class CacheSyncStats:
    """Statistics from a warm-up run."""

    fetched: int = 0
    cached: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to simple dict for logging."""
        return {"fetched": self.fetched, "cached": self.cached, "skipped": self.skipped}


async def sync_identity_cache(cache: IdentityCache, registry: RegistryClient) -> CacheSyncStats:
    """
    Copy registry members carrying an email and identity code into the cache.

    Never raises; failures are logged and reported as an empty run.
    """
    stats = CacheSyncStats()
    if not registry.is_configured:
        logger.warning("Registry not configured, skipping identity cache warm-up")
        return stats

    logger.info("Starting identity cache warm-up")
    try:
        identities = await registry.list_all()
        stats.fetched = len(identities)
        for identity in identities:
            if not identity.email or not identity.has_identity_code:
                stats.skipped += 1
                continue
            cache.update_with_full_record(
                identity.email,
                identity.to_identity_record(identity.email, identity.store or cache.default_store),
            )
            stats.cached += 1
    except Exception:
        logger.exception("Identity cache warm-up failed")
        return stats

    logger.info("Identity cache warm-up complete: %s (total=%d)", stats.to_dict(), cache.count)
    return stats
