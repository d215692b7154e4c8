"""Playback server: stream resolution, playback control, queue and HTTP API."""
