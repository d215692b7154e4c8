"""Base source handler and registry."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from skumring.server.models import ItemKind, LibraryItem, MediaSource
from skumring.server.playlist_resolver import NoValidURLError, ResolutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one resolution attempt: a MediaSource or an error."""

    source: MediaSource | None = None
    error: ResolutionError | None = None

    @property
    def ok(self) -> bool:
        return self.source is not None

    @classmethod
    def success(cls, source: MediaSource) -> "ResolutionResult":
        return cls(source=source)

    @classmethod
    def failure(cls, error: ResolutionError) -> "ResolutionResult":
        return cls(error=error)


class SourceHandler:
    """Base class for source handlers.

    A handler turns one kind of library item into a MediaSource.
    """

    kind: ItemKind | None = None

    def matches(self, item: LibraryItem) -> bool:
        """Return True if this handler can resolve the given item."""
        return item.kind == self.kind

    def resolve(self, item: LibraryItem, cancel: threading.Event | None = None) -> MediaSource:
        """Resolve an item to a playable source. Raises ResolutionError."""
        raise NotImplementedError


class SourceRegistry:
    """Registry of source handlers, looked up by item kind."""

    def __init__(self):
        self._handlers: list[SourceHandler] = []

    def register(self, handler: SourceHandler):
        """Register a source handler."""
        self._handlers.append(handler)
        logger.info("Registered source handler: %s", handler.kind.value if handler.kind else "?")

    def get_handler(self, item: LibraryItem) -> SourceHandler | None:
        """Get the handler that matches an item."""
        for handler in self._handlers:
            if handler.matches(item):
                return handler
        return None

    def resolve(self, item: LibraryItem, cancel: threading.Event | None = None) -> ResolutionResult:
        """Resolve an item, folding resolution errors into the result.

        ResolutionCancelled is not folded: a cancelled attempt has no result.
        """
        handler = self.get_handler(item)
        if handler is None or not item.has_source:
            logger.warning("No playable source for item %s (%s)", item.id, item.kind.value)
            return ResolutionResult.failure(NoValidURLError(f"Item {item.id} has no playable source"))
        try:
            return ResolutionResult.success(handler.resolve(item, cancel))
        except ResolutionError as e:
            logger.warning("Resolution failed for %s [%s]: %s", item.display_title, e.kind, e)
            return ResolutionResult.failure(e)

    def list_sources(self) -> list[str]:
        """List registered item kinds."""
        return [h.kind.value for h in self._handlers if h.kind]
