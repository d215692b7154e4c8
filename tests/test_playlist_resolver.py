"""Tests for PlaylistResolver and the M3U/PLS parsers."""

import threading

import httpx
import pytest

from skumring.server.playlist_resolver import (
    MaxDepthExceededError,
    NetworkError,
    NoValidURLError,
    ParseError,
    PlaylistResolver,
    ResolutionCancelled,
    ResolverTimeout,
    is_http_url,
    parse_m3u,
    parse_pls,
    playlist_format,
)

STREAM = "https://stream.example/live.mp3"


def make_resolver(routes, **kwargs):
    """Resolver over a mock transport. ``routes`` maps path -> response or exception.

    Returns (resolver, requested_paths).
    """
    requested = []

    def handler(request):
        requested.append(request.url.path)
        route = routes.get(request.url.path)
        if route is None:
            return httpx.Response(404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, httpx.Response):
            return route
        content_type, body = route
        return httpx.Response(200, headers={"content-type": content_type}, content=body)

    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
    return PlaylistResolver(client, **kwargs), requested


class TestPlaylistFormat:
    def test_extensions(self):
        assert playlist_format("https://r.example/a.m3u") == "m3u"
        assert playlist_format("https://r.example/a.M3U8") == "m3u"
        assert playlist_format("https://r.example/listen.pls?sid=1") == "pls"

    def test_non_playlist(self):
        assert playlist_format("https://r.example/stream.mp3") is None
        assert playlist_format("https://r.example/") is None
        assert playlist_format("https://r.example/pls") is None

    def test_is_http_url(self):
        assert is_http_url("http://a.example/x")
        assert is_http_url("HTTPS://a.example")
        assert not is_http_url("ftp://a.example/x")
        assert not is_http_url("relative/path.mp3")
        assert not is_http_url("https://")


class TestParseM3U:
    def test_first_url_wins(self):
        text = "#EXTM3U\n#EXTINF:-1,Station\nhttps://a.example/1\nhttps://a.example/2\n"
        assert parse_m3u(text) == "https://a.example/1"

    def test_skips_blank_comment_and_relative_lines(self):
        text = "\n\n# comment\nstream.mp3\nfile:///tmp/x.mp3\n  http://a.example/live  \n"
        assert parse_m3u(text) == "http://a.example/live"

    def test_no_url(self):
        with pytest.raises(NoValidURLError):
            parse_m3u("#EXTM3U\n# only comments\nrelative.mp3\n")


class TestParsePLS:
    def test_basic(self):
        text = "[playlist]\nNumberOfEntries=1\nFile1=https://a.example/1\nTitle1=One\nVersion=2\n"
        assert parse_pls(text) == "https://a.example/1"

    def test_lowest_index_wins_regardless_of_position(self):
        text = "[playlist]\nFile3=https://a.example/3\nFile2=https://a.example/2\n"
        assert parse_pls(text) == "https://a.example/2"

    def test_case_insensitive(self):
        text = "[PlayList]\nfile1=https://a.example/1\n"
        assert parse_pls(text) == "https://a.example/1"

    def test_invalid_entries_skipped(self):
        text = "[playlist]\nFile0=https://a.example/0\nFile1=not a url\nFile2=https://a.example/2\n"
        assert parse_pls(text) == "https://a.example/2"

    def test_other_sections_ignored(self):
        text = "[meta]\nFile1=https://wrong.example/1\n[playlist]\nFile5=https://a.example/5\n"
        assert parse_pls(text) == "https://a.example/5"

    def test_no_entries(self):
        with pytest.raises(NoValidURLError):
            parse_pls("[playlist]\nNumberOfEntries=0\n")


class TestResolve:
    def test_non_playlist_returned_without_fetch(self):
        resolver, requested = make_resolver({})
        assert resolver.resolve(STREAM) == STREAM
        assert requested == []

    def test_pls(self):
        resolver, _ = make_resolver({
            "/station.pls": ("audio/x-scpls", f"[playlist]\nFile1={STREAM}\n".encode()),
        })
        assert resolver.resolve("https://r.example/station.pls") == STREAM

    def test_m3u8(self):
        resolver, _ = make_resolver({
            "/station.m3u8": ("application/vnd.apple.mpegurl", f"#EXTM3U\n{STREAM}\n".encode()),
        })
        assert resolver.resolve("https://r.example/station.m3u8") == STREAM

    def test_utf8_bom(self):
        resolver, _ = make_resolver({
            "/station.m3u": ("text/plain", b"\xef\xbb\xbf" + STREAM.encode() + b"\n"),
        })
        assert resolver.resolve("https://r.example/station.m3u") == STREAM

    def test_redirect_followed(self):
        resolver, requested = make_resolver({
            "/old.pls": httpx.Response(302, headers={"location": "https://r.example/new.pls"}),
            "/new.pls": ("audio/x-scpls", f"[playlist]\nFile1={STREAM}\n".encode()),
        })
        assert resolver.resolve("https://r.example/old.pls") == STREAM
        assert requested == ["/old.pls", "/new.pls"]

    def test_three_nested_playlists_resolve(self):
        resolver, requested = make_resolver({
            "/a.m3u": ("audio/x-mpegurl", b"https://r.example/b.pls\n"),
            "/b.pls": ("audio/x-scpls", b"[playlist]\nFile1=https://r.example/c.m3u\n"),
            "/c.m3u": ("audio/x-mpegurl", f"{STREAM}\n".encode()),
        })
        assert resolver.resolve("https://r.example/a.m3u") == STREAM
        assert requested == ["/a.m3u", "/b.pls", "/c.m3u"]

    def test_fourth_nested_playlist_fails_without_fetch(self):
        resolver, requested = make_resolver({
            "/a.m3u": ("audio/x-mpegurl", b"https://r.example/b.m3u\n"),
            "/b.m3u": ("audio/x-mpegurl", b"https://r.example/c.m3u\n"),
            "/c.m3u": ("audio/x-mpegurl", b"https://r.example/d.m3u\n"),
            "/d.m3u": ("audio/x-mpegurl", f"{STREAM}\n".encode()),
        })
        with pytest.raises(MaxDepthExceededError):
            resolver.resolve("https://r.example/a.m3u")
        assert "/d.m3u" not in requested

    def test_self_referencing_playlist_terminates(self):
        resolver, requested = make_resolver({
            "/loop.m3u": ("audio/x-mpegurl", b"https://r.example/loop.m3u\n"),
        })
        with pytest.raises(MaxDepthExceededError):
            resolver.resolve("https://r.example/loop.m3u")
        assert len(requested) == 3

    def test_http_error(self):
        resolver, _ = make_resolver({})
        with pytest.raises(NetworkError) as exc:
            resolver.resolve("https://r.example/missing.pls")
        assert "404" in str(exc.value)
        assert exc.value.kind == "network_error"

    def test_transport_error(self):
        resolver, _ = make_resolver({
            "/down.m3u": httpx.ConnectError("connection refused"),
        })
        with pytest.raises(NetworkError):
            resolver.resolve("https://r.example/down.m3u")

    def test_timeout(self):
        resolver, _ = make_resolver({
            "/slow.pls": httpx.ReadTimeout("read timed out"),
        })
        with pytest.raises(ResolverTimeout) as exc:
            resolver.resolve("https://r.example/slow.pls")
        assert exc.value.user_message == "Connection timed out"

    def test_audio_content_type_passes_through(self):
        resolver, _ = make_resolver({
            "/live.m3u": ("audio/mpeg", b"\xff\xfb\x90\x00" * 16),
        })
        assert resolver.resolve("https://r.example/live.m3u") == "https://r.example/live.m3u"

    def test_binary_body_passes_through(self):
        resolver, _ = make_resolver({
            "/live.pls": ("application/octet-stream", b"\xff\xfe\xfd\x00\x81"),
        })
        assert resolver.resolve("https://r.example/live.pls") == "https://r.example/live.pls"

    def test_oversized_body(self):
        resolver, _ = make_resolver(
            {"/huge.m3u": ("audio/x-mpegurl", b"#" * 4096)},
            max_bytes=1024,
        )
        with pytest.raises(ParseError):
            resolver.resolve("https://r.example/huge.m3u")

    def test_binary_stream_behind_playlist_url(self):
        served = []

        def endless_mp3():
            for _ in range(2048):
                served.append(1)
                yield b"\xff\xfb\x90\x64" * 256

        resolver, _ = make_resolver({
            "/live.pls": httpx.Response(
                200, headers={"content-type": "application/octet-stream"}, content=endless_mp3(),
            ),
        })
        assert resolver.resolve("https://r.example/live.pls") == "https://r.example/live.pls"
        assert len(served) < 2048

    def test_oversized_text_is_still_a_parse_error(self):
        resolver, _ = make_resolver(
            {"/big.pls": ("application/octet-stream", b"[playlist]\n" + b"Title=x\n" * 200_000)},
        )
        with pytest.raises(ParseError):
            resolver.resolve("https://r.example/big.pls")

    def test_playlist_without_urls(self):
        resolver, _ = make_resolver({
            "/empty.m3u": ("audio/x-mpegurl", b"#EXTM3U\n"),
        })
        with pytest.raises(NoValidURLError):
            resolver.resolve("https://r.example/empty.m3u")

    def test_cancelled_before_fetch(self):
        resolver, requested = make_resolver({
            "/station.pls": ("audio/x-scpls", f"[playlist]\nFile1={STREAM}\n".encode()),
        })
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ResolutionCancelled):
            resolver.resolve("https://r.example/station.pls", cancel)
        assert requested == []

    def test_cancel_does_not_affect_direct_urls(self):
        resolver, _ = make_resolver({})
        cancel = threading.Event()
        cancel.set()
        assert resolver.resolve(STREAM, cancel) == STREAM


class TestErrors:
    def test_parse_and_no_url_share_user_message(self):
        assert ParseError("bad").user_message == NoValidURLError().user_message

    def test_kinds_are_distinct(self):
        kinds = {
            NetworkError("x").kind,
            ParseError("x").kind,
            NoValidURLError().kind,
            ResolverTimeout().kind,
            MaxDepthExceededError().kind,
        }
        assert len(kinds) == 5

    def test_network_error_keeps_underlying(self):
        cause = OSError("boom")
        assert NetworkError(cause).underlying is cause
