"""Core data types for the playback subsystem.

Library items arrive from the (external) library store, media sources are
produced by the source handlers, and playback states are owned by the
PlaybackController. None of these are persisted here.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum


class ItemKind(str, Enum):
    """What a library item points at."""

    STREAM = "stream"        # internet radio, 24/7 streams (live)
    YOUTUBE = "youtube"      # YouTube video id
    AUDIO_URL = "audio_url"  # direct audio file (finite)


class HealthStatus(str, Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    FAILING = "failing"


class RepeatMode(str, Enum):
    OFF = "off"
    ONE = "one"
    ALL = "all"


class ShuffleMode(str, Enum):
    OFF = "off"
    ON = "on"


@dataclass
class LibraryItem:
    """A single entry of the user's library."""

    id: str
    kind: ItemKind
    title: str = ""
    subtitle: str = ""
    url: str = ""
    youtube_id: str = ""
    health_status: HealthStatus = HealthStatus.UNKNOWN
    fail_count: int = 0

    @property
    def is_live(self) -> bool:
        return self.kind == ItemKind.STREAM

    @property
    def has_source(self) -> bool:
        if self.kind == ItemKind.YOUTUBE:
            return bool(self.youtube_id or self.url)
        return bool(self.url)

    @property
    def display_title(self) -> str:
        return self.title or self.url or self.youtube_id or self.id

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["health_status"] = self.health_status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LibraryItem":
        """Build an item from its dict form.

        Raises ValueError for a missing id or an unknown kind/health status.
        """
        item_id = str(data.get("id", "")).strip()
        if not item_id:
            raise ValueError("item id required")
        return cls(
            id=item_id,
            kind=ItemKind(data.get("kind", ItemKind.STREAM.value)),
            title=data.get("title", "") or "",
            subtitle=data.get("subtitle", "") or "",
            url=(data.get("url", "") or "").strip(),
            youtube_id=(data.get("youtube_id", "") or "").strip(),
            health_status=HealthStatus(data.get("health_status", HealthStatus.UNKNOWN.value)),
            fail_count=int(data.get("fail_count", 0) or 0),
        )


@dataclass(frozen=True)
class MediaSource:
    """A resolved, directly playable reference."""

    url: str
    is_live: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class StateKind(str, Enum):
    STOPPED = "stopped"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    RECONNECTING = "reconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class PlaybackState:
    """Transport state of the player.

    A tagged value: ``attempt``/``max_attempts`` are only meaningful for
    RECONNECTING and ``message`` only for ERROR. Use the constructors
    below rather than building instances by hand.
    """

    kind: StateKind = StateKind.STOPPED
    attempt: int = 0
    max_attempts: int = 0
    message: str = ""

    @classmethod
    def stopped(cls) -> "PlaybackState":
        return cls(StateKind.STOPPED)

    @classmethod
    def loading(cls) -> "PlaybackState":
        return cls(StateKind.LOADING)

    @classmethod
    def playing(cls) -> "PlaybackState":
        return cls(StateKind.PLAYING)

    @classmethod
    def paused(cls) -> "PlaybackState":
        return cls(StateKind.PAUSED)

    @classmethod
    def reconnecting(cls, attempt: int, max_attempts: int) -> "PlaybackState":
        return cls(StateKind.RECONNECTING, attempt=attempt, max_attempts=max_attempts)

    @classmethod
    def error(cls, message: str) -> "PlaybackState":
        return cls(StateKind.ERROR, message=message)

    @property
    def is_busy(self) -> bool:
        """True while a resolution or retry is in flight."""
        return self.kind in (StateKind.LOADING, StateKind.RECONNECTING)

    def to_dict(self) -> dict:
        data = {"state": self.kind.value}
        if self.kind == StateKind.RECONNECTING:
            data["attempt"] = self.attempt
            data["max_attempts"] = self.max_attempts
        elif self.kind == StateKind.ERROR:
            data["message"] = self.message
        return data

    def __str__(self) -> str:
        if self.kind == StateKind.RECONNECTING:
            return f"reconnecting({self.attempt}/{self.max_attempts})"
        if self.kind == StateKind.ERROR:
            return f"error({self.message})"
        return self.kind.value
