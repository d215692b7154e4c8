"""Playlist resolver for internet radio URLs.

Radio stations are usually published as small playlist files (M3U, M3U8,
PLS) that point at the real stream. The resolver fetches such files,
picks the first usable http(s) entry and follows it until it reaches a
URL that is not a playlist. Anything else is returned untouched.

The resolver keeps no per-call state, so a single instance can be shared
by concurrent resolution threads. It never retries; retry policy lives in
the PlaybackController.
"""

from __future__ import annotations

import codecs
import logging
import posixpath
import re
import threading
import time
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
MAX_DEPTH = 3
MAX_PLAYLIST_BYTES = 512 * 1024
SNIFF_BYTES = 4096

# Path extension -> playlist format
PLAYLIST_EXTENSIONS = {
    ".m3u": "m3u",
    ".m3u8": "m3u",
    ".pls": "pls",
}

# audio/* types that are playlists rather than media
PLAYLIST_MIME_TYPES = {
    "audio/mpegurl",
    "audio/x-mpegurl",
    "audio/scpls",
    "audio/x-scpls",
    "application/vnd.apple.mpegurl",
    "application/x-mpegurl",
    "application/pls+xml",
}

_PLS_ENTRY_RE = re.compile(r"^file(\d+)\s*=(.*)$", re.IGNORECASE)
_INI_SECTION_RE = re.compile(r"^\[([^\]]*)\]$")


class ResolutionError(Exception):
    """Base class for failed resolutions."""

    kind = "resolution"
    user_message = "Could not resolve stream"


class NetworkError(ResolutionError):
    kind = "network_error"
    user_message = "Network error"

    def __init__(self, underlying):
        self.underlying = underlying
        super().__init__(f"Network error: {underlying}")


class ParseError(ResolutionError):
    kind = "parse_error"
    user_message = "No playable stream found"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Parse error: {detail}")


class NoValidURLError(ResolutionError):
    kind = "no_valid_url"
    user_message = "No playable stream found"

    def __init__(self, detail: str = "No valid stream URL found in playlist"):
        super().__init__(detail)


class ResolverTimeout(ResolutionError):
    kind = "timeout"
    user_message = "Connection timed out"

    def __init__(self, url: str = ""):
        self.url = url
        super().__init__(f"Request timed out: {url}" if url else "Request timed out")


class MaxDepthExceededError(ResolutionError):
    kind = "max_depth_exceeded"
    user_message = "Too many nested playlists"

    def __init__(self, url: str = ""):
        self.url = url
        super().__init__("Maximum playlist recursion depth exceeded")


class ResolutionCancelled(Exception):
    """Raised when the caller's cancellation token is set mid-resolution."""


def playlist_format(url: str) -> str | None:
    """Return "m3u" or "pls" if the URL path names a playlist file, else None."""
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    ext = posixpath.splitext(path)[1].lower()
    return PLAYLIST_EXTENSIONS.get(ext)


def is_http_url(value: str) -> bool:
    """True for absolute http:// or https:// URLs with a host."""
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme.lower() in ("http", "https") and bool(parsed.netloc)


def parse_m3u(text: str) -> str:
    """Return the first absolute http(s) URL in an M3U/M3U8 body."""
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if is_http_url(line):
            return line
        logger.debug("Skipping M3U line: %r", line[:120])
    raise NoValidURLError()


def parse_pls(text: str) -> str:
    """Return the lowest-numbered valid FileN entry of a PLS body.

    Entries are ordered by N, not by position in the file. Entries inside
    a section other than [playlist] are ignored; entries before any
    section header are accepted.
    """
    entries: list[tuple[int, str]] = []
    in_playlist = True
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith((";", "#")):
            continue
        section = _INI_SECTION_RE.match(line)
        if section:
            in_playlist = section.group(1).strip().lower() == "playlist"
            continue
        if not in_playlist:
            continue
        match = _PLS_ENTRY_RE.match(line)
        if not match:
            continue  # Title, Length, NumberOfEntries, Version...
        index = int(match.group(1))
        value = match.group(2).strip()
        if index >= 1 and is_http_url(value):
            entries.append((index, value))

    if not entries:
        raise NoValidURLError()
    return min(entries, key=lambda e: e[0])[1]


class PlaylistResolver:
    """Follows playlist indirections down to a playable media URL.

    Usage:
        resolver = PlaylistResolver()
        url = resolver.resolve("https://radio.example/station.pls")
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_depth: int = MAX_DEPTH,
        max_bytes: int = MAX_PLAYLIST_BYTES,
    ):
        self._client = client or httpx.Client(follow_redirects=True)
        self._owns_client = client is None
        self.timeout = timeout
        self.max_depth = max_depth
        self.max_bytes = max_bytes

    def close(self):
        if self._owns_client:
            self._client.close()

    def resolve(self, url: str, cancel: threading.Event | None = None) -> str:
        """Resolve a URL to the media URL it ultimately points at.

        Raises a ResolutionError subclass on failure, or ResolutionCancelled
        if ``cancel`` is set before the chain completes.
        """
        return self._resolve(url, 0, cancel)

    def _resolve(self, url: str, depth: int, cancel: threading.Event | None) -> str:
        fmt = playlist_format(url)
        if fmt is None:
            return url

        # depth = indirections already followed
        if depth >= self.max_depth:
            logger.warning("Playlist chain deeper than %d at %s", self.max_depth, url)
            raise MaxDepthExceededError(url)

        text = self._fetch(url, cancel)
        if text is None:
            return url

        candidate = parse_m3u(text) if fmt == "m3u" else parse_pls(text)
        logger.debug("Playlist %s (depth %d) -> %s", url, depth, candidate)
        return self._resolve(candidate, depth + 1, cancel)

    def _fetch(self, url: str, cancel: threading.Event | None) -> str | None:
        """Fetch a playlist body as text.

        Returns None when the response is media rather than a playlist
        (audio/video content type, or a body that isn't UTF-8). The head
        of the body is checked before the size cap applies, so an endless
        binary stream behind a playlist-looking URL passes through instead
        of failing as an oversized playlist. Text bodies over the cap raise
        ParseError.
        """
        _check_cancel(cancel)
        deadline = time.monotonic() + self.timeout
        try:
            with self._client.stream("GET", url, timeout=self.timeout) as resp:
                if not 200 <= resp.status_code < 300:
                    raise NetworkError(f"HTTP {resp.status_code} for {url}")

                content_type = resp.headers.get("content-type", "").split(";")[0].strip().lower()
                if (content_type.startswith(("audio/", "video/"))
                        and content_type not in PLAYLIST_MIME_TYPES):
                    logger.info("%s is served as %s, treating as direct media", url, content_type)
                    return None

                chunks = []
                total = 0
                sniffed = False
                for chunk in resp.iter_bytes():
                    _check_cancel(cancel)
                    if time.monotonic() > deadline:
                        raise ResolverTimeout(url)
                    chunks.append(chunk)
                    total += len(chunk)
                    if not sniffed and total >= SNIFF_BYTES:
                        sniffed = True
                        if not _looks_like_text(b"".join(chunks)[:SNIFF_BYTES]):
                            logger.info("%s starts with binary data, treating as direct media", url)
                            return None
                    if total > self.max_bytes:
                        raise ParseError(f"playlist larger than {self.max_bytes} bytes: {url}")
        except httpx.TimeoutException as e:
            raise ResolverTimeout(url) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkError(e) from e

        body = b"".join(chunks)
        try:
            return body.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.info("%s body is not UTF-8 text, treating as direct media", url)
            return None


def _looks_like_text(head: bytes) -> bool:
    """True if the start of a body is UTF-8; a cut-off last character is fine."""
    try:
        codecs.getincrementaldecoder("utf-8")().decode(head, final=False)
    except UnicodeDecodeError:
        return False
    return True


def _check_cancel(cancel: threading.Event | None):
    if cancel is not None and cancel.is_set():
        raise ResolutionCancelled()
