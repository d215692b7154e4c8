"""Queue manager for Skumring.

Holds the play sequence for the current session: item ids in stored
order, a cursor, repeat/shuffle policy and, when shuffle is on, a
separate play order. Items themselves live with the PlaybackController;
the queue only deals in ids.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum

from skumring.server.models import RepeatMode, ShuffleMode

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


@dataclass
class QueueState:
    """Snapshot of the queue."""

    items: list[str] = field(default_factory=list)
    current_index: int | None = None
    repeat_mode: RepeatMode = RepeatMode.OFF
    shuffle_mode: ShuffleMode = ShuffleMode.OFF
    order: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "items": list(self.items),
            "current_index": self.current_index,
            "repeat_mode": self.repeat_mode.value,
            "shuffle_mode": self.shuffle_mode.value,
            "order": list(self.order),
        }


class QueueManager:
    """Ordered play sequence with repeat and shuffle.

    ``_order`` is the effective sequence of indices into ``_items``
    (identity when shuffle is off) and ``_position`` the cursor into it.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        repeat_mode: RepeatMode = RepeatMode.OFF,
        shuffle_mode: ShuffleMode = ShuffleMode.OFF,
    ):
        self._rng = rng or random.Random()
        self._items: list[str] = []
        self._order: list[int] = []
        self._position: int | None = None
        self._repeat_mode = repeat_mode
        self._shuffle_mode = shuffle_mode

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[str]:
        return list(self._items)

    @property
    def repeat_mode(self) -> RepeatMode:
        return self._repeat_mode

    @property
    def shuffle_mode(self) -> ShuffleMode:
        return self._shuffle_mode

    @property
    def current_index(self) -> int | None:
        """Index of the current item in stored order."""
        if self._position is None:
            return None
        return self._order[self._position]

    @property
    def current_id(self) -> str | None:
        index = self.current_index
        return self._items[index] if index is not None else None

    def set_queue(self, item_ids: list[str], start_index: int = 0):
        """Replace the queue wholesale and put the cursor on start_index."""
        if not item_ids:
            self.clear()
            return
        if not 0 <= start_index < len(item_ids):
            raise IndexError(f"start index {start_index} out of range for {len(item_ids)} items")
        self._items = list(item_ids)
        self._build_order(start_index)
        logger.info("Queue set: %d items, starting at %d", len(self._items), start_index)

    def clear(self):
        self._items = []
        self._order = []
        self._position = None

    def select(self, item_id: str) -> bool:
        """Move the cursor to the first occurrence of item_id."""
        try:
            index = self._items.index(item_id)
        except ValueError:
            return False
        self._position = self._order.index(index)
        return True

    def advance(self, direction: Direction = Direction.FORWARD) -> str | None:
        """Move the cursor and return the new current item id.

        Returns None (cursor unchanged) at a boundary with repeat off.
        """
        if self._position is None:
            return None
        if self._repeat_mode == RepeatMode.ONE:
            return self.current_id

        step = 1 if direction == Direction.FORWARD else -1
        position = self._position + step
        if not 0 <= position < len(self._order):
            if self._repeat_mode != RepeatMode.ALL:
                return None
            position = 0 if step > 0 else len(self._order) - 1
        self._position = position
        return self.current_id

    def upcoming(self) -> list[str]:
        """Ids that follow the current item in play order (no wrap-around)."""
        if self._position is None:
            return []
        return [self._items[i] for i in self._order[self._position + 1:]]

    def set_repeat_mode(self, mode: RepeatMode):
        self._repeat_mode = RepeatMode(mode)
        logger.info("Repeat mode: %s", self._repeat_mode.value)

    def set_shuffle_mode(self, mode: ShuffleMode):
        """Change shuffle; the play order is only rebuilt when the mode changes."""
        mode = ShuffleMode(mode)
        if mode == self._shuffle_mode:
            return
        self._shuffle_mode = mode
        if self._items:
            self._build_order(self.current_index)
        logger.info("Shuffle mode: %s", mode.value)

    def state(self) -> QueueState:
        return QueueState(
            items=list(self._items),
            current_index=self.current_index,
            repeat_mode=self._repeat_mode,
            shuffle_mode=self._shuffle_mode,
            order=list(self._order),
        )

    def _build_order(self, current: int | None):
        indices = list(range(len(self._items)))
        if self._shuffle_mode == ShuffleMode.OFF:
            self._order = indices
            self._position = current
            return

        # Current item goes first so the next advance never replays it
        others = [i for i in indices if i != current]
        self._rng.shuffle(others)
        if current is None:
            self._order = others
            self._position = 0 if others else None
        else:
            self._order = [current] + others
            self._position = 0
