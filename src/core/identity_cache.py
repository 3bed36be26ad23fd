"""In-process email cache for registration lookups."""
import logging
import threading
from dataclasses import replace

from schemas.identity import IdentityRecord, normalize_email

logger = logging.getLogger(__name__)

# Number of lock stripes. Mutations of one email always take the same lock,
# mutations of different emails rarely contend.
LOCK_STRIPES = 64


class IdentityCache:
    """
    Process-lifetime cache mapping normalized email to IdentityRecord.

    The cache is the first place the verification flow looks to decide whether
    an email already belongs to a member, so the central registry is not hit
    on every request. There is no TTL and no eviction: entries live until they
    are removed explicitly or the process stops.

    Safe for concurrent use from the event loop and from worker threads.
    Records are immutable and swapped in whole; read-modify-write operations
    hold the lock stripe of their key only.
    """

    def __init__(self, default_store: str = "NE001") -> None:
        """Initialize an empty cache."""
        self._default_store = default_store
        self._entries: dict[str, IdentityRecord] = {}
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        logger.info("Identity cache initialized (default_store=%s)", default_store)

    @property
    def default_store(self) -> str:
        """Store code used when a caller supplies none."""
        return self._default_store

    @property
    def count(self) -> int:
        """Current number of cached emails."""
        return len(self._entries)

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % LOCK_STRIPES]

    def exists(self, email: str | None) -> bool:
        """Check whether an email is cached. Blank input is never cached."""
        key = normalize_email(email)
        if not key:
            return False
        found = key in self._entries
        logger.debug("identity_cache_exists email=%s found=%s", key, found)
        return found

    def get(self, email: str | None) -> IdentityRecord | None:
        """Get the cached record for an email, None on miss."""
        key = normalize_email(email)
        if not key:
            return None
        return self._entries.get(key)

    def add(self, email: str | None, store: str | None = None) -> bool:
        """
        Insert a provisional entry if the email is not cached yet.

        Never overwrites an existing entry, complete or not.

        Returns:
            True if a new entry was inserted, False if one already existed.
        """
        key = normalize_email(email)
        if not key:
            return False
        record = IdentityRecord(email=key, store=store or self._default_store)
        added = self._entries.setdefault(key, record) is record
        if added:
            logger.info(
                "Email '%s' added to cache (store=%s), total=%d", key, record.store, self.count,
            )
        else:
            logger.debug("Email '%s' already cached, not added", key)
        return added

    def update_with_identity_code(self, email: str | None, identity_code: str) -> IdentityRecord | None:
        """
        Record the identity code assigned to an email.

        Marks an existing entry complete, or creates a minimal complete entry
        under the default store when the email is not cached.
        """
        key = normalize_email(email)
        if not key or not identity_code:
            return None
        with self._lock_for(key):
            current = self._entries.get(key)
            if current is None:
                record = IdentityRecord(
                    email=key,
                    store=self._default_store,
                    identity_code=identity_code,
                    is_complete=True,
                )
            else:
                record = replace(current, identity_code=identity_code, is_complete=True)
            self._entries[key] = record
        logger.info("Email '%s' marked complete with identity_code=%s", key, identity_code)
        return record

    def update_with_full_record(self, email: str | None, record: IdentityRecord) -> IdentityRecord | None:
        """
        Merge a full profile into the cache.

        Incoming non-empty fields win; an identity code already in the cache
        is kept when the incoming record has none.
        """
        key = normalize_email(email)
        if not key:
            return None
        incoming = replace(record, email=key)
        with self._lock_for(key):
            current = self._entries.get(key)
            if current is None:
                merged = replace(incoming, is_complete=bool(incoming.identity_code))
            else:
                merged = current.merged_with(incoming)
            self._entries[key] = merged
        logger.info(
            "Email '%s' cached with full record (identity_code=%s)", key, merged.identity_code,
        )
        return merged

    def remove(self, email: str | None) -> bool:
        """Remove an email from the cache. Returns False if it was not cached."""
        key = normalize_email(email)
        if not key:
            return False
        with self._lock_for(key):
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info("Email '%s' removed from cache, total=%d", key, self.count)
        return removed

    def entries(self) -> list[IdentityRecord]:
        """Snapshot of all cached records."""
        return list(self._entries.values())
