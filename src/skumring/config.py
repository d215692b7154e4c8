"""Configuration loader for Skumring."""

from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python 3.10 fallback

BACKOFF_MODES = ("exponential", "fixed")
ENGINES = ("mpv", "null")


@dataclass
class ServerConfig:
    """HTTP API and media engine settings."""

    host: str = "127.0.0.1"
    port: int = 5060
    engine: str = "mpv"                  # "mpv" or "null" (no audio output)
    mpv_socket: str = "/tmp/skumring-mpv-socket"
    mpv_hwdec: str = "auto"
    audio_only: bool = True              # focus music: no video window

    def __post_init__(self):
        if self.engine not in ENGINES:
            raise ValueError(f"engine must be one of {ENGINES}, got {self.engine!r}")


@dataclass
class PlaybackConfig:
    """Reconnection and transport policy for the PlaybackController."""

    max_reconnect_attempts: int = 3
    reconnect_backoff: str = "exponential"   # or "fixed"
    reconnect_base_delay: float = 1.0        # seconds; 1s, 2s, 4s... when exponential
    reconnect_max_delay: float = 30.0
    attempt_timeout: float = 30.0            # one resolution attempt, counts as a failure
    min_play_seconds: float = 5.0            # drops sooner than this wait at least as long to reconnect
    previous_restart_seconds: float = 3.0    # previous() restarts the item past this point
    default_volume: float = 1.0

    def __post_init__(self):
        if self.reconnect_backoff not in BACKOFF_MODES:
            raise ValueError(
                f"reconnect_backoff must be one of {BACKOFF_MODES}, got {self.reconnect_backoff!r}"
            )
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")
        self.default_volume = max(0.0, min(1.0, self.default_volume))

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnection attempt ``attempt`` (1-based)."""
        if self.reconnect_backoff == "fixed":
            delay = self.reconnect_base_delay
        else:
            delay = self.reconnect_base_delay * (2 ** max(0, attempt - 1))
        return min(delay, self.reconnect_max_delay)


@dataclass
class ResolverConfig:
    """Playlist resolver limits."""

    timeout: float = 10.0
    max_depth: int = 3
    max_playlist_bytes: int = 512 * 1024


@dataclass
class Config:
    """Top-level Skumring configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)


def load_config(path: str | None = None) -> Config:
    """Load configuration from skumring.toml.

    Search order:
    1. Explicit path argument
    2. ./skumring.toml
    3. ~/.config/skumring/skumring.toml
    4. Defaults
    """
    search_paths = []
    if path:
        search_paths.append(Path(path))
    search_paths.extend([
        Path("skumring.toml"),
        Path.home() / ".config" / "skumring" / "skumring.toml",
    ])

    for p in search_paths:
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            return _parse_config(data)

    return Config()


def _parse_config(data: dict) -> Config:
    """Parse a TOML dict into Config."""
    config = Config()

    if "server" in data:
        s = data["server"]
        config.server = ServerConfig(
            host=s.get("host", config.server.host),
            port=s.get("port", config.server.port),
            engine=s.get("engine", config.server.engine),
            mpv_socket=s.get("mpv_socket", config.server.mpv_socket),
            mpv_hwdec=s.get("mpv_hwdec", config.server.mpv_hwdec),
            audio_only=s.get("audio_only", config.server.audio_only),
        )

    if "playback" in data:
        p = data["playback"]
        d = config.playback
        config.playback = PlaybackConfig(
            max_reconnect_attempts=p.get("max_reconnect_attempts", d.max_reconnect_attempts),
            reconnect_backoff=p.get("reconnect_backoff", d.reconnect_backoff),
            reconnect_base_delay=float(p.get("reconnect_base_delay", d.reconnect_base_delay)),
            reconnect_max_delay=float(p.get("reconnect_max_delay", d.reconnect_max_delay)),
            attempt_timeout=float(p.get("attempt_timeout", d.attempt_timeout)),
            min_play_seconds=float(p.get("min_play_seconds", d.min_play_seconds)),
            previous_restart_seconds=float(p.get("previous_restart_seconds", d.previous_restart_seconds)),
            default_volume=float(p.get("default_volume", d.default_volume)),
        )

    if "resolver" in data:
        r = data["resolver"]
        config.resolver = ResolverConfig(
            timeout=float(r.get("timeout", config.resolver.timeout)),
            max_depth=r.get("max_depth", config.resolver.max_depth),
            max_playlist_bytes=r.get("max_playlist_bytes", config.resolver.max_playlist_bytes),
        )

    return config
