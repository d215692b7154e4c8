"""Media engine interface.

The engine is the opaque decode/render facility: it is told to load a
URL and play, pause, stop or seek, and reports elapsed time, duration,
unexpected drops and end-of-media through callbacks. The base class is a
silent engine that accepts every command, used when no player is
attached (tests, ``--no-player``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


class MediaEngineError(Exception):
    """The engine could not start or control playback."""


@dataclass
class EngineCallbacks:
    """Inbound notifications from the engine. May fire on any thread."""

    on_time_update: Callable[[float], None] | None = None
    on_duration_known: Callable[[float], None] | None = None
    on_playback_dropped: Callable[[str], None] | None = None
    on_reached_end: Callable[[], None] | None = None


class MediaEngine:
    """Base media engine. Subclasses drive a real player."""

    name = "null"

    def __init__(self):
        self.callbacks = EngineCallbacks()

    def bind(self, callbacks: EngineCallbacks):
        self.callbacks = callbacks

    def load(self, url: str, is_live: bool):
        """Start decoding ``url``. Raises MediaEngineError on failure."""
        logger.debug("%s engine: load %s (live=%s)", self.name, url, is_live)

    def play(self):
        pass

    def pause(self):
        pass

    def stop(self):
        pass

    def seek(self, position: float):
        pass

    def set_volume(self, volume: float):
        """Set volume, 0.0 (mute) to 1.0."""

    def close(self):
        pass

    # Helpers for subclasses

    def _notify_time(self, position: float):
        if self.callbacks.on_time_update:
            self.callbacks.on_time_update(position)

    def _notify_duration(self, duration: float):
        if self.callbacks.on_duration_known:
            self.callbacks.on_duration_known(duration)

    def _notify_dropped(self, reason: str):
        if self.callbacks.on_playback_dropped:
            self.callbacks.on_playback_dropped(reason)

    def _notify_end(self):
        if self.callbacks.on_reached_end:
            self.callbacks.on_reached_end()
