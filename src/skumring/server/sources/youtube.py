"""YouTube source handler."""

from __future__ import annotations

import logging
import re
from urllib.parse import parse_qs, urlparse

from skumring.server.models import ItemKind, MediaSource
from skumring.server.playlist_resolver import NoValidURLError
from skumring.server.sources.base import SourceHandler

logger = logging.getLogger(__name__)

VIDEO_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def extract_video_id(url: str) -> str | None:
    """Extract a YouTube video ID from a URL by string parsing (no API calls).

    Handles youtube.com/watch?v=, music.youtube.com/watch?v=, youtu.be/,
    youtube.com/shorts/, /embed/, /live/. A bare 11-character ID is
    returned as-is. Returns None for anything else.
    """
    url = url.strip()
    if VIDEO_ID_RE.match(url):
        return url
    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
    except ValueError:
        return None

    vid = None
    if host == "youtu.be" or host.endswith(".youtu.be"):
        vid = parsed.path.lstrip("/").split("/")[0]
    elif host == "youtube.com" or host.endswith(".youtube.com") or host.endswith("youtube-nocookie.com"):
        if parsed.path == "/watch":
            ids = parse_qs(parsed.query).get("v", [])
            vid = ids[0] if ids else None
        else:
            for prefix in ("/shorts/", "/embed/", "/live/"):
                if parsed.path.startswith(prefix):
                    vid = parsed.path[len(prefix):].split("/")[0]
                    break

    if vid and VIDEO_ID_RE.match(vid):
        return vid
    return None


class YouTubeSource(SourceHandler):
    """Handler for YouTube items.

    The media engine plays the canonical watch URL (mpv hands it to
    yt-dlp), so resolution is only id validation.
    """

    kind = ItemKind.YOUTUBE

    def resolve(self, item, cancel=None) -> MediaSource:
        video_id = item.youtube_id or extract_video_id(item.url or "")
        if not video_id or not VIDEO_ID_RE.match(video_id):
            raise NoValidURLError(f"Invalid YouTube video id: {video_id or item.url!r}")
        return MediaSource(url=watch_url(video_id), is_live=False)
