"""mpv-backed media engine.

Runs a single long-lived ``mpv --idle`` process and drives it over the
JSON IPC socket. A watcher thread polls playback properties and turns
them into engine callbacks: elapsed time, duration, end of a finite
file, and unexpected drops (process exit, stream going idle, load that
never starts).
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time

from skumring.server.engine import MediaEngine, MediaEngineError
from skumring.server.mpv_client import MPVClient

logger = logging.getLogger(__name__)

SOCKET_WAIT_SECONDS = 10
LOAD_TIMEOUT_SECONDS = 30


class MpvEngine(MediaEngine):
    """MediaEngine implementation on top of an mpv subprocess."""

    name = "mpv"

    def __init__(
        self,
        socket_path: str = "/tmp/skumring-mpv-socket",
        hwdec: str = "auto",
        audio_only: bool = True,
        poll_interval: float = 0.5,
        load_timeout: float = LOAD_TIMEOUT_SECONDS,
        client: MPVClient | None = None,
    ):
        super().__init__()
        self.socket_path = socket_path
        self.hwdec = hwdec
        self.audio_only = audio_only
        self.poll_interval = poll_interval
        self.load_timeout = load_timeout
        self.client = client or MPVClient(socket_path)
        self._process: subprocess.Popen | None = None
        self._watcher: threading.Thread | None = None
        self._running = False
        self._lock = threading.Lock()

        # Per-load watch state, guarded by _lock
        self._loaded = False
        self._is_live = False
        self._started = False
        self._duration_sent = False
        self._load_deadline = 0.0

    def build_command(self) -> list[str]:
        cmd = [
            "mpv",
            f"--input-ipc-server={self.socket_path}",
            f"--hwdec={self.hwdec}",
            "--idle=yes",
            "--no-terminal",
            "--cache=yes",
            "--demuxer-max-bytes=50MiB",
        ]
        if self.audio_only:
            cmd.extend(["--no-video", "--ytdl-format=bestaudio/best"])
        else:
            cmd.append("--force-window=immediate")
        return cmd

    def start(self):
        """Launch mpv (if needed) and the watcher thread."""
        if self._process is None or self._process.poll() is not None:
            self._launch()
        if not self._running:
            self._running = True
            self._watcher = threading.Thread(target=self._watch, daemon=True, name="mpv-watcher")
            self._watcher.start()

    def _launch(self):
        self.client.disconnect()
        if os.path.exists(self.socket_path):
            try:
                os.remove(self.socket_path)
                logger.info("Removed stale mpv socket: %s", self.socket_path)
            except OSError:
                pass

        try:
            self._process = subprocess.Popen(
                self.build_command(),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise MediaEngineError("mpv not found. Install it: sudo apt install mpv") from e
        except OSError as e:
            raise MediaEngineError(f"Failed to start mpv: {e}") from e

        # mpv needs a moment to create the IPC socket
        deadline = time.monotonic() + SOCKET_WAIT_SECONDS
        while time.monotonic() < deadline:
            if self.client.connect():
                logger.info("mpv started (pid %d)", self._process.pid)
                return
            if self._process.poll() is not None:
                break
            time.sleep(0.5)
        raise MediaEngineError(f"mpv IPC socket never appeared at {self.socket_path}")

    def load(self, url: str, is_live: bool):
        self.start()
        if not self.client.load(url):
            raise MediaEngineError(f"mpv rejected loadfile for {url}")
        with self._lock:
            self._loaded = True
            self._is_live = is_live
            self._started = False
            self._duration_sent = False
            self._load_deadline = time.monotonic() + self.load_timeout
        logger.info("mpv loading %s (live=%s)", url, is_live)

    def play(self):
        if not self.client.resume():
            raise MediaEngineError("mpv did not accept unpause")

    def pause(self):
        self.client.pause()

    def stop(self):
        with self._lock:
            self._loaded = False
        if self.client.connected:
            self.client.stop()

    def seek(self, position: float):
        self.client.seek(position)

    def set_volume(self, volume: float):
        self.client.set_volume(round(max(0.0, min(1.0, volume)) * 100))

    def close(self):
        """Quit mpv and stop the watcher."""
        self._running = False
        with self._lock:
            self._loaded = False
        if self.client.connected:
            self.client.quit()
        if self._process and self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
        self._process = None
        if self._watcher:
            self._watcher.join(timeout=5)
            self._watcher = None
        logger.info("mpv engine closed")

    def _watch(self):
        while self._running:
            time.sleep(self.poll_interval)
            try:
                self.poll_once()
            except Exception:
                logger.exception("mpv watcher poll failed")

    def poll_once(self):
        """Check mpv once and fire whatever callbacks are due."""
        with self._lock:
            if not self._loaded:
                return

        if self._process is not None and self._process.poll() is not None:
            self._finish_load()
            self._notify_dropped(f"mpv exited with code {self._process.returncode}")
            return

        status = self.client.poll_playback()
        if not status.get("connected"):
            self._finish_load()
            self._notify_dropped("lost connection to mpv")
            return

        with self._lock:
            started = self._started
            is_live = self._is_live
            deadline = self._load_deadline

        if not status["idle"] and not status["eof"]:
            if not started:
                with self._lock:
                    self._started = True
                logger.info("mpv playback started")
            position = status.get("position")
            if position is not None:
                self._notify_time(float(position))
            duration = status.get("duration")
            if duration and not is_live:
                with self._lock:
                    send = not self._duration_sent
                    self._duration_sent = True
                if send:
                    self._notify_duration(float(duration))
            return

        if started:
            self._finish_load()
            if is_live:
                self._notify_dropped("stream ended")
            else:
                self._notify_end()
        elif time.monotonic() > deadline:
            self._finish_load()
            self._notify_dropped("playback never started")

    def _finish_load(self):
        with self._lock:
            self._loaded = False
