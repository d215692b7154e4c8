"""Shared test fixtures for the Skumring test suite."""

import random
import threading
import time

import httpx
import pytest

from skumring.config import Config, PlaybackConfig, ServerConfig
from skumring.server.app import create_app
from skumring.server.engine import MediaEngine, MediaEngineError
from skumring.server.events import EventBus
from skumring.server.health import HealthTracker
from skumring.server.models import ItemKind, LibraryItem, MediaSource, PlaybackState, StateKind
from skumring.server.player import PlaybackController
from skumring.server.playlist_resolver import NoValidURLError, ResolutionCancelled, ResolutionError
from skumring.server.queue_manager import QueueManager
from skumring.server.sources import ResolutionResult


class FakeEngine(MediaEngine):
    """Records every command. Tests fire engine events by hand."""

    name = "fake"

    def __init__(self):
        super().__init__()
        self.calls = []
        self.load_failures = 0
        self.volume_delay = 0.0

    def load(self, url, is_live):
        self.calls.append(("load", url, is_live))
        if self.load_failures:
            self.load_failures -= 1
            raise MediaEngineError("decoder refused the stream")

    def play(self):
        self.calls.append(("play",))

    def pause(self):
        self.calls.append(("pause",))

    def stop(self):
        self.calls.append(("stop",))

    def seek(self, position):
        self.calls.append(("seek", position))

    def set_volume(self, volume):
        self.calls.append(("volume", volume))
        if self.volume_delay:
            time.sleep(self.volume_delay)

    def commands(self, name):
        return [c for c in self.calls if c[0] == name]

    def loaded_urls(self):
        return [c[1] for c in self.commands("load")]

    # Simulated engine events
    def tick(self, position):
        self._notify_time(position)

    def drop(self, reason="stream went away"):
        self._notify_dropped(reason)

    def end(self):
        self._notify_end()


class ScriptedRegistry:
    """Stand-in for SourceRegistry with scripted per-item outcomes.

    Outcomes are consumed in order: a MediaSource, a ResolutionError, or a
    block created with ``block()``. Unscripted attempts succeed with the
    item's own URL.
    """

    def __init__(self):
        self.calls = []
        self._scripts = {}
        self._lock = threading.Lock()

    def script(self, item_id, *outcomes):
        with self._lock:
            self._scripts.setdefault(item_id, []).extend(outcomes)

    def block(self, item_id, honour_cancel=True):
        """Make the next attempt for item_id wait until the returned event is set."""
        release = threading.Event()
        self.script(item_id, ("block", release, honour_cancel))
        return release

    def count(self, item_id):
        with self._lock:
            return self.calls.count(item_id)

    def resolve(self, item, cancel=None):
        with self._lock:
            self.calls.append(item.id)
            script = self._scripts.get(item.id)
            outcome = script.pop(0) if script else None
        if not item.has_source:
            return ResolutionResult.failure(NoValidURLError())

        if isinstance(outcome, tuple):
            _, release, honour_cancel = outcome
            while not release.wait(0.01):
                if honour_cancel and cancel is not None and cancel.is_set():
                    raise ResolutionCancelled()
            outcome = None

        if isinstance(outcome, ResolutionError):
            return ResolutionResult.failure(outcome)
        if outcome is None:
            outcome = MediaSource(item.url, item.is_live)
        return ResolutionResult.success(outcome)


def _wait_for(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds (or the timeout passes)."""
    return _wait_for


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def health():
    return HealthTracker()


@pytest.fixture
def queue_manager():
    """QueueManager with a seeded RNG so shuffle orders are reproducible."""
    return QueueManager(rng=random.Random(42))


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def registry():
    return ScriptedRegistry()


@pytest.fixture
def make_item():
    """Factory for library items. Streams and audio URLs get a default URL."""
    def _make(item_id, kind=ItemKind.STREAM, url=None, **kwargs):
        if url is None:
            url = f"https://radio.example/{item_id}.mp3"
        return LibraryItem(id=item_id, kind=kind, title=item_id.title(), url=url, **kwargs)
    return _make


@pytest.fixture
def make_controller(engine, registry, health, event_bus):
    """Build started controllers with instant backoff. All are shut down afterwards."""
    created = []

    def _make(**overrides):
        settings = {
            "reconnect_base_delay": 0.0,
            "attempt_timeout": 5.0,
            "min_play_seconds": 0.0,
        }
        settings.update(overrides)
        controller = PlaybackController(
            engine, registry,
            health=health,
            queue_manager=QueueManager(rng=random.Random(42)),
            config=PlaybackConfig(**settings),
            event_bus=event_bus,
        )
        controller.start()
        created.append(controller)
        return controller

    yield _make
    for controller in created:
        controller.shutdown()


@pytest.fixture
def controller(make_controller):
    return make_controller()


@pytest.fixture
def state_history(event_bus):
    """Distinct consecutive playback states, oldest first, as strings."""
    def _history():
        states = []
        for event in reversed(event_bus.recent(1000, "state")):
            data = event["data"]
            label = str(PlaybackState(
                StateKind(data["state"]),
                data.get("attempt", 0),
                data.get("max_attempts", 0),
                data.get("message", ""),
            ))
            if not states or states[-1] != label:
                states.append(label)
        return states
    return _history


# --- HTTP fixtures ---

PLAYLIST_ROUTES = {
    "/station.pls": (
        "audio/x-scpls",
        "[playlist]\nNumberOfEntries=1\nFile1=https://stream.example/live.mp3\nTitle1=Night Radio\n",
    ),
    "/station.m3u": ("audio/x-mpegurl", "#EXTM3U\n#EXTINF:-1,Night Radio\nhttps://stream.example/live.mp3\n"),
    "/empty.m3u": ("audio/x-mpegurl", "#EXTM3U\n# nothing to see here\n"),
}


def _playlist_handler(request: httpx.Request) -> httpx.Response:
    route = PLAYLIST_ROUTES.get(request.url.path)
    if route is None:
        return httpx.Response(404, text="not found")
    content_type, body = route
    return httpx.Response(200, headers={"content-type": content_type}, text=body)


@pytest.fixture
def mock_http():
    """httpx client serving a few canned playlists; everything else is 404."""
    client = httpx.Client(transport=httpx.MockTransport(_playlist_handler), follow_redirects=True)
    yield client
    client.close()


@pytest.fixture
def app(mock_http):
    """Flask test app with the silent engine and canned playlists."""
    config = Config(
        server=ServerConfig(engine="null"),
        playback=PlaybackConfig(reconnect_base_delay=0.0, min_play_seconds=0.0),
    )
    app = create_app(config, http_client=mock_http)
    app.config["TESTING"] = True
    yield app
    app.controller.shutdown()


@pytest.fixture
def client(app):
    """Create a Flask test client."""
    return app.test_client()
