from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..db.base import TradeStore
from ..models.config_models import DuplicatePolicy, ImportConfig
from ..models.trade import DedupKey

"""Duplicate detection for valid candidates.

The check consults two sources: trades already in the store, and rows already
accepted earlier in the same file. Both compare the dedup key with the entry
date matched according to the DuplicatePolicy (exact or ± tolerance).

This is a pre-check only. Rows are persisted in parallel, so the store's
unique constraint remains the authoritative guard and a DuplicateKeyError at
insert time is also treated as a duplicate by the executor.
"""

__all__ = [
    "DEFAULT_TOLERANCE",
    "DuplicateDetector",
]

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = timedelta(minutes=5)


class DuplicateDetector:
    """Per-import duplicate pre-check. Create one instance per preview/execute pass."""

    def __init__(
        self,
        store: TradeStore,
        policy: DuplicatePolicy = DuplicatePolicy.TOLERANCE_WINDOW,
        tolerance: timedelta = DEFAULT_TOLERANCE,
    ) -> None:
        self.store = store
        self.window = timedelta(0) if policy is DuplicatePolicy.EXACT else tolerance
        self._accepted: dict[tuple, list[datetime]] = {}

    @classmethod
    def from_config(cls, store: TradeStore, config: ImportConfig) -> DuplicateDetector:
        return cls(store, config.duplicate_policy, timedelta(seconds=config.duplicate_window_seconds))

    def _within(self, a: datetime, b: datetime) -> bool:
        return abs(a - b) <= self.window

    def seen_in_file(self, key: DedupKey) -> bool:
        return any(self._within(d, key.entry_date) for d in self._accepted.get(key.bucket, ()))

    def is_duplicate(self, key: DedupKey) -> bool:
        if self.seen_in_file(key):
            logger.debug("duplicate within file symbol=%s entry=%s", key.symbol, key.entry_date)
            return True
        existing = self.store.find_by_dedup_key(key, self.window)
        if existing is not None:
            logger.debug("duplicate of stored trade id=%s symbol=%s", existing.id, key.symbol)
            return True
        return False

    def remember(self, key: DedupKey) -> None:
        """Register a row accepted in this pass so later rows of the same file are compared to it."""
        self._accepted.setdefault(key.bucket, []).append(key.entry_date)
