"""Tests for MpvEngine.

The mpv client is a MagicMock and the watcher thread is never started;
tests call poll_once() directly to drive the callbacks.
"""

from unittest.mock import MagicMock, patch

import pytest

from skumring.server.engine import EngineCallbacks, MediaEngineError
from skumring.server.mpv_engine import MpvEngine


def status(idle=False, eof=False, position=None, duration=None):
    return {"connected": True, "idle": idle, "eof": eof, "position": position, "duration": duration}


@pytest.fixture
def mpv():
    client = MagicMock()
    client.connected = True
    client.load.return_value = True
    client.resume.return_value = True
    return client


@pytest.fixture
def events():
    return []


@pytest.fixture
def mpv_engine(mpv, events):
    engine = MpvEngine(client=mpv, load_timeout=30)
    engine.bind(EngineCallbacks(
        on_time_update=lambda t: events.append(("time", t)),
        on_duration_known=lambda d: events.append(("duration", d)),
        on_playback_dropped=lambda r: events.append(("dropped", r)),
        on_reached_end=lambda: events.append(("end",)),
    ))
    with patch.object(engine, "start"):
        yield engine


class TestCommand:
    def test_audio_only(self):
        cmd = MpvEngine(socket_path="/tmp/s", client=MagicMock()).build_command()
        assert "--input-ipc-server=/tmp/s" in cmd
        assert "--idle=yes" in cmd
        assert "--no-video" in cmd
        assert "--force-window=immediate" not in cmd

    def test_video_window(self):
        cmd = MpvEngine(audio_only=False, client=MagicMock()).build_command()
        assert "--force-window=immediate" in cmd
        assert "--no-video" not in cmd


class TestTransport:
    def test_load(self, mpv_engine, mpv):
        mpv_engine.load("https://stream.example/live.mp3", is_live=True)
        mpv.load.assert_called_once_with("https://stream.example/live.mp3")

    def test_load_rejected(self, mpv_engine, mpv):
        mpv.load.return_value = False
        with pytest.raises(MediaEngineError):
            mpv_engine.load("https://stream.example/live.mp3", is_live=True)

    def test_play_rejected(self, mpv_engine, mpv):
        mpv.resume.return_value = False
        with pytest.raises(MediaEngineError):
            mpv_engine.play()

    def test_volume_scaled(self, mpv_engine, mpv):
        mpv_engine.set_volume(0.42)
        mpv.set_volume.assert_called_once_with(42)

    def test_seek_and_pause(self, mpv_engine, mpv):
        mpv_engine.seek(12.0)
        mpv_engine.pause()
        mpv.seek.assert_called_once_with(12.0)
        mpv.pause.assert_called_once()

    def test_launch_without_mpv(self, mpv):
        engine = MpvEngine(socket_path="/tmp/nonexistent-skumring-socket", client=mpv)
        with patch("skumring.server.mpv_engine.subprocess.Popen", side_effect=FileNotFoundError):
            with pytest.raises(MediaEngineError):
                engine.start()


class TestWatcher:
    def test_nothing_loaded(self, mpv_engine, mpv, events):
        mpv_engine.poll_once()
        mpv.poll_playback.assert_not_called()
        assert events == []

    def test_time_and_duration_for_finite(self, mpv_engine, mpv, events):
        mpv_engine.load("https://files.example/a.mp3", is_live=False)
        mpv.poll_playback.return_value = status(position=3.0, duration=180.0)
        mpv_engine.poll_once()
        mpv.poll_playback.return_value = status(position=3.5, duration=180.0)
        mpv_engine.poll_once()
        assert events == [("time", 3.0), ("duration", 180.0), ("time", 3.5)]

    def test_no_duration_for_live(self, mpv_engine, mpv, events):
        mpv_engine.load("https://stream.example/live.mp3", is_live=True)
        mpv.poll_playback.return_value = status(position=3.0, duration=7.0)
        mpv_engine.poll_once()
        assert events == [("time", 3.0)]

    def test_finite_end(self, mpv_engine, mpv, events):
        mpv_engine.load("https://files.example/a.mp3", is_live=False)
        mpv.poll_playback.return_value = status(position=1.0)
        mpv_engine.poll_once()
        mpv.poll_playback.return_value = status(idle=True, eof=True)
        mpv_engine.poll_once()
        assert events[-1] == ("end",)
        # Watch state cleared; later polls are quiet
        mpv_engine.poll_once()
        assert events.count(("end",)) == 1

    def test_live_stream_going_idle_is_a_drop(self, mpv_engine, mpv, events):
        mpv_engine.load("https://stream.example/live.mp3", is_live=True)
        mpv.poll_playback.return_value = status(position=1.0)
        mpv_engine.poll_once()
        mpv.poll_playback.return_value = status(idle=True)
        mpv_engine.poll_once()
        assert events[-1] == ("dropped", "stream ended")

    def test_lost_connection(self, mpv_engine, mpv, events):
        mpv_engine.load("https://stream.example/live.mp3", is_live=True)
        mpv.poll_playback.return_value = {"connected": False}
        mpv_engine.poll_once()
        assert events == [("dropped", "lost connection to mpv")]

    def test_never_started(self, mpv, events):
        engine = MpvEngine(client=mpv, load_timeout=-1)
        engine.bind(EngineCallbacks(on_playback_dropped=lambda r: events.append(("dropped", r))))
        with patch.object(engine, "start"):
            engine.load("https://stream.example/dead.mp3", is_live=True)
        mpv.poll_playback.return_value = status(idle=True)
        engine.poll_once()
        assert events == [("dropped", "playback never started")]

    def test_stop_silences_watcher(self, mpv_engine, mpv, events):
        mpv_engine.load("https://stream.example/live.mp3", is_live=True)
        mpv_engine.stop()
        mpv.poll_playback.return_value = {"connected": False}
        mpv_engine.poll_once()
        assert events == []
        mpv.stop.assert_called_once()

    def test_process_exit(self, mpv_engine, mpv, events):
        mpv_engine.load("https://stream.example/live.mp3", is_live=True)
        process = MagicMock()
        process.poll.return_value = 1
        process.returncode = 1
        mpv_engine._process = process
        mpv_engine.poll_once()
        assert events == [("dropped", "mpv exited with code 1")]
