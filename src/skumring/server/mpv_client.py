"""mpv JSON IPC client.

Talks to a running mpv over its Unix domain socket using the JSON IPC
protocol. Only the handful of commands the MpvEngine needs are wrapped.
Ref: https://mpv.io/manual/master/#json-ipc
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import time

logger = logging.getLogger(__name__)


def _ok(resp: dict | None) -> bool:
    return resp is not None and resp.get("error") == "success"


class MPVClient:
    """Client for mpv's JSON IPC protocol over a Unix socket.

    Failures are reported by return value (None/False/default) so the
    engine's watcher can poll without try/except around every call.

    Usage:
        client = MPVClient("/tmp/skumring-mpv-socket")
        client.connect()
        client.load("https://radio.example/stream")
        pos = client.get_property("time-pos")
    """

    def __init__(self, socket_path: str = "/tmp/skumring-mpv-socket", response_timeout: float = 5.0):
        self.socket_path = socket_path
        self.response_timeout = response_timeout
        self._sock: socket.socket | None = None
        self._lock = threading.Lock()
        self._request_id = 0
        self._buffer = b""

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self, timeout: float = 5.0) -> bool:
        """Connect to the IPC socket. Returns False if mpv isn't listening yet."""
        with self._lock:
            if self._sock is not None:
                return True
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.settimeout(timeout)
            try:
                sock.connect(self.socket_path)
            except (FileNotFoundError, ConnectionRefusedError):
                sock.close()
                logger.debug("mpv socket not available at %s", self.socket_path)
                return False
            except OSError as e:
                sock.close()
                logger.warning("Failed to connect to mpv: %s", e)
                return False
            self._sock = sock
            self._buffer = b""
            logger.info("Connected to mpv at %s", self.socket_path)
            return True

    def disconnect(self):
        with self._lock:
            self._close_locked()

    def _close_locked(self):
        if self._sock:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None
            self._buffer = b""

    def command(self, *args) -> dict | None:
        """Send a command and return mpv's reply, or None if unreachable.

        Examples:
            client.command("loadfile", url, "replace")
            client.command("seek", 30, "absolute")
        """
        if not self.connected and not self.connect():
            return None
        with self._lock:
            if self._sock is None:
                return None
            self._request_id += 1
            request_id = self._request_id
            msg = json.dumps({"command": list(args), "request_id": request_id}) + "\n"
            try:
                self._sock.sendall(msg.encode("utf-8"))
            except OSError:
                self._close_locked()
                return None
            return self._read_reply(request_id)

    def _read_reply(self, request_id: int) -> dict | None:
        """Read lines until the reply for request_id arrives. Events are skipped."""
        deadline = time.monotonic() + self.response_timeout
        while time.monotonic() < deadline:
            while b"\n" in self._buffer:
                line, self._buffer = self._buffer.split(b"\n", 1)
                if not line.strip():
                    continue
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if "event" not in msg and msg.get("request_id") == request_id:
                    return msg

            try:
                self._sock.settimeout(max(0.1, deadline - time.monotonic()))
                chunk = self._sock.recv(4096)
            except socket.timeout:
                break
            except OSError:
                self._close_locked()
                return None
            if not chunk:
                self._close_locked()
                return None
            self._buffer += chunk
        logger.debug("No reply from mpv for request %d", request_id)
        return None

    def get_property(self, name: str, default=None):
        """Get a property (time-pos, duration, pause, idle-active, eof-reached...)."""
        resp = self.command("get_property", name)
        if _ok(resp):
            return resp.get("data", default)
        return default

    def set_property(self, name: str, value) -> bool:
        return _ok(self.command("set_property", name, value))

    def load(self, url: str) -> bool:
        """Replace whatever is loaded with ``url``."""
        return _ok(self.command("loadfile", url, "replace"))

    def pause(self) -> bool:
        return self.set_property("pause", True)

    def resume(self) -> bool:
        return self.set_property("pause", False)

    def stop(self) -> bool:
        return _ok(self.command("stop"))

    def seek(self, seconds: float) -> bool:
        return _ok(self.command("seek", seconds, "absolute"))

    def set_volume(self, level: int) -> bool:
        """Set volume (0-100)."""
        return self.set_property("volume", max(0, min(100, int(level))))

    def poll_playback(self) -> dict:
        """Read the properties the engine watcher needs in one go."""
        if not self.connected and not self.connect(timeout=0.5):
            return {"connected": False}
        return {
            "connected": True,
            "idle": bool(self.get_property("idle-active", True)),
            "eof": bool(self.get_property("eof-reached", False)),
            "position": self.get_property("time-pos"),
            "duration": self.get_property("duration"),
        }

    def quit(self) -> bool:
        resp = self.command("quit")
        self.disconnect()
        return resp is not None
