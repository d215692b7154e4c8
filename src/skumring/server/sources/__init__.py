"""Source handlers for Skumring.

Each item kind (radio stream, direct audio URL, YouTube video) has a
handler that knows how to turn it into a playable MediaSource.
"""

from skumring.server.playlist_resolver import PlaylistResolver
from skumring.server.sources.audio import AudioURLSource
from skumring.server.sources.base import ResolutionResult, SourceHandler, SourceRegistry
from skumring.server.sources.stream import StreamSource
from skumring.server.sources.youtube import YouTubeSource, extract_video_id

__all__ = [
    "ResolutionResult",
    "SourceHandler",
    "SourceRegistry",
    "StreamSource",
    "AudioURLSource",
    "YouTubeSource",
    "extract_video_id",
    "default_registry",
]


def default_registry(resolver: PlaylistResolver) -> SourceRegistry:
    """Registry with the stream, audio URL and YouTube handlers."""
    registry = SourceRegistry()
    registry.register(StreamSource(resolver))
    registry.register(AudioURLSource(resolver))
    registry.register(YouTubeSource())
    return registry
