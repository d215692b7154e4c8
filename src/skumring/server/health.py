"""Per-item playback health tracking.

Each library item carries a health status and a consecutive-failure
counter. During playback the tracker owns those values: the
PlaybackController reports every attempt outcome and the tracker pushes
the updated record upward through ``on_change`` so the library store can
save it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable

from skumring.server.models import HealthStatus, LibraryItem

logger = logging.getLogger(__name__)

FAILING_THRESHOLD = 3


@dataclass
class HealthRecord:
    """Health of one item. ``failing`` iff fail_count >= threshold."""

    status: HealthStatus = HealthStatus.UNKNOWN
    fail_count: int = 0

    def to_dict(self) -> dict:
        return {"status": self.status.value, "fail_count": self.fail_count}


class HealthTracker:
    """Consecutive-failure counter and status per item id.

    Only mutated from the controller's command thread, so no locking.
    """

    def __init__(
        self,
        threshold: int = FAILING_THRESHOLD,
        on_change: Callable[[str, HealthRecord], None] | None = None,
    ):
        self.threshold = threshold
        self._on_change = on_change
        self._records: dict[str, HealthRecord] = {}

    def seed(self, item: LibraryItem):
        """Adopt the health values stored on an item, if not tracked yet."""
        if item.id in self._records:
            return
        count = max(0, item.fail_count)
        status = item.health_status
        if count >= self.threshold:
            status = HealthStatus.FAILING
        elif status == HealthStatus.FAILING:
            status = HealthStatus.UNKNOWN
        self._records[item.id] = HealthRecord(status, count)

    def get(self, item_id: str) -> HealthRecord:
        """Current record (a copy). Untracked items are unknown."""
        record = self._records.get(item_id)
        return replace(record) if record else HealthRecord()

    def is_failing(self, item_id: str) -> bool:
        return self.get(item_id).status == HealthStatus.FAILING

    def record_success(self, item_id: str) -> HealthRecord:
        """Playback started: status ok, counter reset."""
        return self._update(item_id, HealthRecord(HealthStatus.OK, 0))

    def record_failure(self, item_id: str) -> HealthRecord:
        """One more consecutive failure; failing once the threshold is hit."""
        current = self._records.get(item_id) or HealthRecord()
        count = current.fail_count + 1
        status = HealthStatus.FAILING if count >= self.threshold else current.status
        record = self._update(item_id, HealthRecord(status, count))
        if status == HealthStatus.FAILING and current.status != HealthStatus.FAILING:
            logger.warning("Item %s is now failing (%d consecutive failures)", item_id, count)
        return record

    def reset_for_retry(self, item_id: str) -> HealthRecord:
        """Manual retry: counter cleared, status back to unknown (not yet re-verified)."""
        return self._update(item_id, HealthRecord(HealthStatus.UNKNOWN, 0))

    def snapshot(self) -> dict[str, dict]:
        return {item_id: r.to_dict() for item_id, r in self._records.items()}

    def _update(self, item_id: str, record: HealthRecord) -> HealthRecord:
        previous = self._records.get(item_id)
        self._records[item_id] = record
        if previous != record and self._on_change:
            self._on_change(item_id, replace(record))
        return replace(record)
