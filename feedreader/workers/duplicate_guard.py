"""
Feed Reader - Duplicate Guard

Tracks which (feed, filename) pairs have already been processed, using a
shared TTL store. Entries live for CACHE_TTL_HOURS from the time the file
completed; after that the same filename is processed again.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from feedreader.clients.protocols import TTLStore
from feedreader.workers.models import FileRecord, cache_key

logger = logging.getLogger(__name__)

CACHE_TTL_HOURS = 48
CACHE_TTL = timedelta(hours=CACHE_TTL_HOURS)


class DuplicateGuard:
    """
    Duplicate check and completion record for one feed.

    Lookups only happen when duplicate checking is enabled for the feed.
    Completions are always written so other feeds and processes can see them.
    """

    def __init__(self, store: TTLStore, check_enabled: bool, ttl: timedelta = CACHE_TTL) -> None:
        self._store = store
        self._check_enabled = check_enabled
        self._ttl_seconds = int(ttl.total_seconds())

    @property
    def check_enabled(self) -> bool:
        return self._check_enabled

    def is_duplicate(self, data_feed: str, filename: str) -> bool:
        """
        True if duplicate checking is on and a live entry exists for the pair.

        A store failure is logged and treated as "not a duplicate" so one
        unreachable lookup does not halt selection.
        """
        if not self._check_enabled:
            return False

        key = cache_key(data_feed, filename)
        try:
            entry = self._store.get(key)
        except Exception as e:
            logger.warning("Duplicate lookup failed for key=%s, treating as new file: %s", key, e)
            return False

        if entry is not None:
            logger.warning("Found duplicate file key=%s entry=%s", key, entry)
            return True
        return False

    def record_completion(self, file_record: FileRecord) -> None:
        """Write the completed file record under its cache key. Errors propagate."""
        key = file_record.cache_key
        self._store.put(key, file_record.to_payload(), self._ttl_seconds)
        logger.debug("Cached file with key=%s ttl=%ds", key, self._ttl_seconds)
