"""Skumring - focus-music player core."""

from skumring.__about__ import __version__

__all__ = ["__version__"]
