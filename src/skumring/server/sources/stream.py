"""Internet radio stream source handler."""

import logging

from skumring.server.models import ItemKind, MediaSource
from skumring.server.playlist_resolver import PlaylistResolver
from skumring.server.sources.base import SourceHandler

logger = logging.getLogger(__name__)


class StreamSource(SourceHandler):
    """Handler for live streams.

    Station URLs are often M3U/PLS pointers; they are followed through the
    PlaylistResolver before playback. The result is always live.
    """

    kind = ItemKind.STREAM
    is_live = True

    def __init__(self, resolver: PlaylistResolver):
        self.resolver = resolver

    def resolve(self, item, cancel=None) -> MediaSource:
        url = self.resolver.resolve(item.url, cancel)
        if url != item.url:
            logger.info("Resolved %s -> %s", item.url, url)
        return MediaSource(url=url, is_live=self.is_live)
