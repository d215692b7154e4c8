"""Direct audio file source handler."""

from skumring.server.models import ItemKind
from skumring.server.sources.stream import StreamSource


class AudioURLSource(StreamSource):
    """Handler for direct audio URLs (mp3, aac, m4a, HLS).

    Same resolution as streams, but the media has a finite duration so
    seeking and end-of-track advance apply.
    """

    kind = ItemKind.AUDIO_URL
    is_live = False
