"""Playback controller - the player state machine.

All state transitions happen on one command thread. Public methods only
enqueue commands, so callers (HTTP handlers, engine callbacks, timers)
never block on network work and never race each other:

    play(item) -> [command thread] -> resolve on a worker thread
                                   -> "resolved" command -> engine.load()

Every asynchronous operation (a resolution attempt, a backoff wait, an
attempt timeout) carries a token. Starting a new operation, or a
superseding command such as play/next/previous/stop, invalidates the
previous token and sets its cancellation event, so late results are
dropped without touching state.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from skumring.config import PlaybackConfig
from skumring.server.engine import EngineCallbacks, MediaEngine, MediaEngineError
from skumring.server.health import HealthTracker
from skumring.server.models import (
    LibraryItem,
    MediaSource,
    PlaybackState,
    RepeatMode,
    ShuffleMode,
    StateKind,
)
from skumring.server.playlist_resolver import ResolutionCancelled, ResolutionError
from skumring.server.queue_manager import Direction, QueueManager
from skumring.server.sources import ResolutionResult, SourceRegistry

if TYPE_CHECKING:
    from skumring.server.events import EventBus

logger = logging.getLogger(__name__)

_SHUTDOWN = object()
_ACTIVE = (StateKind.PLAYING, StateKind.PAUSED)


@dataclass(frozen=True)
class PlayerSnapshot:
    """Everything observers may read, replaced as a whole on each change."""

    state: PlaybackState = field(default_factory=PlaybackState.stopped)
    current_item: LibraryItem | None = None
    current_time: float | None = None
    duration: float | None = None
    is_live: bool = False
    volume: float = 1.0
    repeat_mode: RepeatMode = RepeatMode.OFF
    shuffle_mode: ShuffleMode = ShuffleMode.OFF
    upcoming_items: tuple = ()

    def to_dict(self) -> dict:
        data = self.state.to_dict()
        data.update({
            "current_item": self.current_item.to_dict() if self.current_item else None,
            "current_time": self.current_time,
            "duration": self.duration,
            "is_live": self.is_live,
            "volume": self.volume,
            "repeat_mode": self.repeat_mode.value,
            "shuffle_mode": self.shuffle_mode.value,
            "upcoming_items": [item.to_dict() for item in self.upcoming_items],
        })
        return data


class PlaybackController:
    """Drives playback: resolution, transport, queue advance and reconnection.

    State machine:
        stopped/paused/error --play--> loading
        loading --resolved--> playing          (health: success)
        loading --failed--> reconnecting(1, max) or error
        reconnecting(n) --retry ok--> playing
        reconnecting(n) --retry failed--> reconnecting(n+1) ... error
        playing --pause--> paused --resume--> playing (same source)
        playing --stream dropped--> reconnecting(1, max)
        playing/paused --stop--> stopped
    """

    def __init__(
        self,
        engine: MediaEngine,
        registry: SourceRegistry,
        health: HealthTracker | None = None,
        queue_manager: QueueManager | None = None,
        config: PlaybackConfig | None = None,
        event_bus: "EventBus | None" = None,
    ):
        self.engine = engine
        self.registry = registry
        self.health = health or HealthTracker()
        self.queue = queue_manager or QueueManager()
        self.config = config or PlaybackConfig()
        self.event_bus = event_bus

        self._commands: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._running = False

        self._snapshot_lock = threading.Lock()
        self._snapshot = PlayerSnapshot(
            volume=self.config.default_volume,
            repeat_mode=self.queue.repeat_mode,
            shuffle_mode=self.queue.shuffle_mode,
        )

        # Command-thread state
        self._items: dict[str, LibraryItem] = {}
        self._current: LibraryItem | None = None
        self._source: MediaSource | None = None
        self._attempt = 0            # reconnection attempts used so far
        self._playing_since: float | None = None
        self._token = 0
        self._cancel: threading.Event | None = None
        self._timer: threading.Timer | None = None

        engine.bind(EngineCallbacks(
            on_time_update=lambda t: self._submit("time_update", t),
            on_duration_known=lambda d: self._submit("duration_known", d),
            on_playback_dropped=lambda reason: self._submit("dropped", reason),
            on_reached_end=lambda: self._submit("reached_end"),
        ))

    # --- Lifecycle ---

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start the command thread."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._loop, daemon=True, name="playback-controller")
        self._thread.start()
        logger.info("Playback controller started")

    def shutdown(self, timeout: float = 5.0):
        """Cancel pending work and stop the command thread."""
        if not self._running:
            return
        self._commands.put(_SHUTDOWN)
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._running = False
        logger.info("Playback controller stopped")

    def flush(self, timeout: float = 5.0) -> bool:
        """Block until every command submitted before this call was handled."""
        done = threading.Event()
        self._submit("flush", done)
        return done.wait(timeout)

    # --- Observables ---

    def snapshot(self) -> PlayerSnapshot:
        return self._snapshot

    @property
    def state(self) -> PlaybackState:
        return self._snapshot.state

    @property
    def current_item(self) -> LibraryItem | None:
        return self._snapshot.current_item

    @property
    def current_time(self) -> float | None:
        return self._snapshot.current_time

    @property
    def duration(self) -> float | None:
        return self._snapshot.duration

    @property
    def volume(self) -> float:
        return self._snapshot.volume

    @property
    def repeat_mode(self) -> RepeatMode:
        return self._snapshot.repeat_mode

    @property
    def shuffle_mode(self) -> ShuffleMode:
        return self._snapshot.shuffle_mode

    @property
    def upcoming_items(self) -> list[LibraryItem]:
        return list(self._snapshot.upcoming_items)

    # --- Commands ---

    def play(self, item: LibraryItem | None = None):
        """Play ``item``; without an item, resume the current one."""
        if item is None:
            self._submit("resume")
        else:
            self._submit("play", item)

    def play_queue(self, items: list[LibraryItem], start_index: int = 0):
        """Replace the queue with ``items`` and play from ``start_index``."""
        if not items:
            return
        if not 0 <= start_index < len(items):
            raise IndexError(f"start index {start_index} out of range for {len(items)} items")
        self._submit("play_queue", list(items), start_index)

    def pause(self):
        self._submit("pause")

    def resume(self):
        self._submit("resume")

    def toggle_play_pause(self):
        self._submit("toggle")

    def stop(self):
        self._submit("stop")

    def next(self):
        self._submit("next")

    def previous(self):
        self._submit("previous")

    def seek(self, position: float):
        self._submit("seek", float(position))

    def set_volume(self, volume: float):
        self._submit("set_volume", max(0.0, min(1.0, float(volume))))

    def set_shuffle_mode(self, mode: ShuffleMode):
        self._submit("set_shuffle_mode", ShuffleMode(mode))

    def set_repeat_mode(self, mode: RepeatMode):
        self._submit("set_repeat_mode", RepeatMode(mode))

    def retry(self):
        """Manual retry of the current item after an error."""
        self._submit("retry")

    def reset_health(self, item_id: str):
        self._submit("reset_health", item_id)

    # --- Command thread ---

    def _submit(self, name: str, *args):
        self._commands.put((name, args))

    def _loop(self):
        while True:
            cmd = self._commands.get()
            if cmd is _SHUTDOWN:
                self._cancel_pending()
                break
            name, args = cmd
            try:
                getattr(self, f"_on_{name}")(*args)
            except Exception:
                logger.exception("Command %s failed", name)

    def _on_flush(self, done: threading.Event):
        done.set()

    def _on_play(self, item: LibraryItem):
        current = self._current
        kind = self._snapshot.state.kind
        if current is not None and current.id == item.id:
            if kind == StateKind.PAUSED and self._source is not None:
                self._on_resume()
                return
            if kind == StateKind.ERROR:
                self.health.reset_for_retry(item.id)

        self.health.seed(item)
        if item.id in self._items and self.queue.select(item.id):
            self._items[item.id] = item
        else:
            self._items = {item.id: item}
            self.queue.set_queue([item.id])
            self._emit_queue()
        self._start_item(item)

    def _on_play_queue(self, items: list[LibraryItem], start_index: int):
        self._items = {item.id: item for item in items}
        for item in items:
            self.health.seed(item)
        self.queue.set_queue([item.id for item in items], start_index)
        self._emit_queue()
        self._start_item(self._items[self.queue.current_id])

    def _on_pause(self):
        if self._snapshot.state.kind != StateKind.PLAYING:
            return
        self.engine.pause()
        self._publish(state=PlaybackState.paused())

    def _on_resume(self):
        kind = self._snapshot.state.kind
        if kind == StateKind.PAUSED:
            if self._source is None:
                # Stream went away while paused
                self._start_item(self._current)
                return
            try:
                self.engine.play()
            except MediaEngineError as e:
                self._source = None
                self._attempt = 0
                self._attempt_failed("Playback failed to resume", str(e))
                return
            self._publish(state=PlaybackState.playing())
        elif kind == StateKind.ERROR and self._current is not None:
            self.health.reset_for_retry(self._current.id)
            self._start_item(self._current)

    def _on_toggle(self):
        kind = self._snapshot.state.kind
        if kind == StateKind.PLAYING:
            self._on_pause()
        elif kind in (StateKind.PAUSED, StateKind.ERROR):
            self._on_resume()

    def _on_stop(self):
        self._stop_playback()

    def _on_next(self):
        if self._current is None:
            return
        self._advance(Direction.FORWARD)

    def _on_previous(self):
        if self._current is None:
            return
        position = self._snapshot.current_time
        if (self._can_seek() and position is not None
                and position > self.config.previous_restart_seconds):
            self._on_seek(0.0)
            return
        self._advance(Direction.BACKWARD)

    def _on_seek(self, position: float):
        if not self._can_seek():
            logger.debug("Seek ignored (live source or nothing playing)")
            return
        position = max(0.0, position)
        duration = self._snapshot.duration
        if duration is not None:
            position = min(position, duration)
        self.engine.seek(position)
        self._publish(notify=False, current_time=position)

    def _on_set_volume(self, volume: float):
        self.engine.set_volume(volume)
        self._publish(volume=volume)

    def _on_set_shuffle_mode(self, mode: ShuffleMode):
        self.queue.set_shuffle_mode(mode)
        self._emit_queue()
        self._publish(shuffle_mode=mode)

    def _on_set_repeat_mode(self, mode: RepeatMode):
        self.queue.set_repeat_mode(mode)
        self._emit_queue()
        self._publish(repeat_mode=mode)

    def _on_retry(self):
        kind = self._snapshot.state.kind
        if self._current is None or kind not in (StateKind.ERROR, StateKind.RECONNECTING):
            return
        self.health.reset_for_retry(self._current.id)
        self._start_item(self._current)

    def _on_reset_health(self, item_id: str):
        self.health.reset_for_retry(item_id)

    # --- Attempts ---

    def _start_item(self, item: LibraryItem):
        """Cancel whatever is in flight and begin loading ``item``."""
        self._cancel_pending()
        self.engine.stop()
        self._current = item
        self._source = None
        self._attempt = 0
        self._playing_since = None
        logger.info("Loading: %s", item.display_title)
        self._emit("playback", f"Loading: {item.display_title}", item.url, item.id)
        self._publish(
            state=PlaybackState.loading(),
            current_item=item,
            current_time=None,
            duration=None,
            is_live=item.is_live,
        )
        self._launch_attempt()

    def _new_token(self) -> tuple[int, threading.Event]:
        self._cancel_pending()
        self._cancel = threading.Event()
        return self._token, self._cancel

    def _cancel_pending(self):
        """Invalidate the in-flight attempt or backoff wait, if any."""
        if self._cancel is not None:
            self._cancel.set()
            self._cancel = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._token += 1

    def _launch_attempt(self):
        token, cancel = self._new_token()
        item = self._current
        worker = threading.Thread(
            target=self._run_attempt, args=(token, item, cancel),
            daemon=True, name=f"resolve-{token}",
        )
        worker.start()
        if self.config.attempt_timeout > 0:
            self._timer = threading.Timer(
                self.config.attempt_timeout, self._submit, args=("attempt_timeout", token),
            )
            self._timer.daemon = True
            self._timer.start()

    def _run_attempt(self, token: int, item: LibraryItem, cancel: threading.Event):
        """Worker thread: resolve and hand the result back to the command thread."""
        try:
            result = self.registry.resolve(item, cancel)
        except ResolutionCancelled:
            logger.debug("Resolution of %s cancelled", item.display_title)
            return
        except Exception as e:
            logger.exception("Unexpected error resolving %s", item.display_title)
            result = ResolutionResult.failure(ResolutionError(str(e)))
        if cancel.is_set():
            return
        self._submit("resolved", token, result)

    def _on_resolved(self, token: int, result: ResolutionResult):
        if token != self._token:
            logger.debug("Discarding stale resolution result (token %d)", token)
            return
        # The attempt is over; a timeout already queued behind us is now stale
        self._cancel_pending()
        if result.ok:
            self._begin_playback(result.source)
        else:
            self._attempt_failed(result.error.user_message, str(result.error))

    def _on_attempt_timeout(self, token: int):
        if token != self._token:
            return
        logger.warning(
            "Attempt timed out after %.0fs: %s",
            self.config.attempt_timeout, self._current.display_title,
        )
        self._cancel_pending()
        self._attempt_failed("Connection timed out", "attempt timeout")

    def _begin_playback(self, source: MediaSource):
        item = self._current
        try:
            self.engine.load(source.url, source.is_live)
            self.engine.set_volume(self._snapshot.volume)
            self.engine.play()
        except MediaEngineError as e:
            logger.warning("Engine failed to start %s: %s", source.url, e)
            self._attempt_failed("Playback failed to start", str(e))
            return

        self._source = source
        self._attempt = 0
        self._playing_since = time.monotonic()
        self.health.record_success(item.id)
        logger.info("Playing: %s", item.display_title)
        self._emit("playback", f"Playing: {item.display_title}", source.url, item.id)
        self._publish(state=PlaybackState.playing(), is_live=source.is_live)

    def _attempt_failed(self, message: str, detail: str = "", min_delay: float = 0.0):
        """Record a failed attempt and either schedule a retry or give up.

        min_delay stretches the backoff before the next retry.
        """
        item = self._current
        if item is None:
            return
        self.health.record_failure(item.id)
        max_attempts = self.config.max_reconnect_attempts

        if self._attempt < max_attempts:
            self._attempt += 1
            delay = max(self.config.backoff_delay(self._attempt), min_delay)
            logger.warning(
                "Attempt failed for %s (%s); reconnecting %d/%d in %.1fs",
                item.display_title, detail or message, self._attempt, max_attempts, delay,
            )
            self._emit(
                "retry",
                f"Reconnecting ({self._attempt}/{max_attempts}): {item.display_title}",
                detail or message,
                item.id,
            )
            self._publish(state=PlaybackState.reconnecting(self._attempt, max_attempts))
            self._schedule_retry(delay)
            return

        if max_attempts:
            text = f"{message} - all {max_attempts} reconnection attempts failed"
        else:
            text = message
        self._cancel_pending()
        self._source = None
        self.engine.stop()
        logger.warning("Giving up on %s: %s", item.display_title, detail or message)
        self._emit("failed", f"Failed: {item.display_title}", detail or message, item.id)
        self._publish(state=PlaybackState.error(text), current_time=None)

    def _schedule_retry(self, delay: float):
        token, cancel = self._new_token()
        waiter = threading.Thread(
            target=self._wait_then_retry, args=(token, cancel, delay),
            daemon=True, name=f"backoff-{token}",
        )
        waiter.start()

    def _wait_then_retry(self, token: int, cancel: threading.Event, delay: float):
        if cancel.wait(delay):
            return
        self._submit("retry_attempt", token)

    def _on_retry_attempt(self, token: int):
        if token != self._token:
            return
        logger.info(
            "Reconnecting %d/%d: %s",
            self._attempt, self.config.max_reconnect_attempts, self._current.display_title,
        )
        self._launch_attempt()

    # --- Engine callbacks (already on the command thread) ---

    def _on_time_update(self, position: float):
        if self._snapshot.state.kind in _ACTIVE:
            self._publish(notify=False, current_time=position)

    def _on_duration_known(self, duration: float):
        if self._source is not None and not self._source.is_live:
            self._publish(duration=duration)

    def _on_dropped(self, reason: str):
        kind = self._snapshot.state.kind
        if kind == StateKind.PAUSED:
            logger.info("Source dropped while paused (%s); will reload on resume", reason)
            self._source = None
            return
        if kind != StateKind.PLAYING or self._current is None:
            logger.debug("Ignoring drop in state %s: %s", kind.value, reason)
            return

        rapid = (self._playing_since is not None
                 and time.monotonic() - self._playing_since < self.config.min_play_seconds)
        logger.warning(
            "Playback dropped%s: %s (%s)",
            " right after starting" if rapid else "", self._current.display_title, reason,
        )
        self._attempt = 0
        self._playing_since = None
        self._source = None
        self.engine.stop()
        # Streams that die right after connecting wait longer before reconnecting
        min_delay = self.config.min_play_seconds if rapid else 0.0
        self._attempt_failed("Connection lost", reason, min_delay=min_delay)

    def _on_reached_end(self):
        if self._snapshot.state.kind != StateKind.PLAYING or self._current is None:
            return
        logger.info("Finished: %s", self._current.display_title)
        self._emit("playback", f"Finished: {self._current.display_title}", item_id=self._current.id)
        self._advance(Direction.FORWARD)

    # --- Helpers ---

    def _can_seek(self) -> bool:
        return (self._source is not None and not self._source.is_live
                and self._snapshot.state.kind in _ACTIVE)

    def _advance(self, direction: Direction):
        target = self.queue.advance(direction)
        if target is None:
            if direction == Direction.FORWARD:
                logger.info("End of queue")
                self._stop_playback()
            elif self._can_seek():
                self._on_seek(0.0)
            else:
                self._start_item(self._current)
            return
        self._start_item(self._items[target])

    def _stop_playback(self):
        self._cancel_pending()
        self.engine.stop()
        self._current = None
        self._source = None
        self._attempt = 0
        self._playing_since = None
        self._items = {}
        if len(self.queue):
            self.queue.clear()
            self._emit_queue()
        self._publish(
            state=PlaybackState.stopped(),
            current_item=None,
            current_time=None,
            duration=None,
            is_live=False,
        )

    def _upcoming(self) -> tuple:
        return tuple(self._items[i] for i in self.queue.upcoming() if i in self._items)

    def _publish(self, notify: bool = True, **changes):
        """Replace the snapshot atomically and announce the change."""
        changes.setdefault("upcoming_items", self._upcoming())
        with self._snapshot_lock:
            previous = self._snapshot
            self._snapshot = replace(previous, **changes)
            snapshot = self._snapshot
        if snapshot.state != previous.state:
            logger.info("State: %s -> %s", previous.state, snapshot.state)
        if notify and snapshot != previous:
            self._emit("state", str(snapshot.state), data=snapshot.to_dict())

    def _emit_queue(self):
        self._emit("queue", "Queue changed", data=self.queue.state().to_dict())

    def _emit(self, event_type: str, title: str = "", detail: str = "",
              item_id: str | None = None, data: dict | None = None):
        """Emit an event if an event bus is attached."""
        if self.event_bus:
            self.event_bus.emit(event_type, title, detail, item_id, data)
