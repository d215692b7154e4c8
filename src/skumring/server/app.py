"""Flask REST API for Skumring.

Exposes the PlaybackController's commands and observables over HTTP,
plus a Server-Sent Events stream of player events. Library items are
passed in by the caller (the library store lives elsewhere); the API
only needs enough of each item to play it.
"""

import json
import logging
import queue

import httpx
from flask import Flask, Response, jsonify, request

from skumring.__about__ import __version__
from skumring.config import Config
from skumring.server.engine import MediaEngine
from skumring.server.events import EventBus
from skumring.server.health import HealthRecord, HealthTracker
from skumring.server.models import ItemKind, LibraryItem, RepeatMode, ShuffleMode
from skumring.server.mpv_engine import MpvEngine
from skumring.server.player import PlaybackController
from skumring.server.playlist_resolver import PlaylistResolver, ResolutionCancelled, ResolutionError
from skumring.server.queue_manager import QueueManager
from skumring.server.sources import default_registry, extract_video_id

logger = logging.getLogger(__name__)


def _item_from_request(data: dict) -> LibraryItem:
    """Build a LibraryItem from a request body.

    A bare ``url`` is enough: the kind is inferred (YouTube links become
    YouTube items, anything else a stream) and the URL doubles as the id.
    Raises ValueError for unusable input.
    """
    data = dict(data)
    url = (data.get("url") or "").strip()
    if "kind" not in data:
        video_id = extract_video_id(url) if url else None
        if video_id:
            data["kind"] = ItemKind.YOUTUBE.value
            data.setdefault("youtube_id", video_id)
        else:
            data["kind"] = ItemKind.STREAM.value
    if not data.get("id"):
        data["id"] = url or data.get("youtube_id", "")
    return LibraryItem.from_dict(data)


def create_app(
    config: Config | None = None,
    engine: MediaEngine | None = None,
    http_client: httpx.Client | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Full configuration. Uses defaults if None.
        engine: Media engine to drive. Built from ``config.server.engine`` if None.
        http_client: httpx client for playlist fetches (tests pass a mock transport).
    """
    if config is None:
        config = Config()

    app = Flask(__name__)
    app.config["SKUMRING"] = config

    # Event bus for SSE push notifications
    event_bus = EventBus()

    def _health_changed(item_id: str, record: HealthRecord):
        event_bus.emit(
            "health", f"{item_id}: {record.status.value}",
            item_id=item_id, data=record.to_dict(),
        )

    resolver = PlaylistResolver(
        http_client,
        timeout=config.resolver.timeout,
        max_depth=config.resolver.max_depth,
        max_bytes=config.resolver.max_playlist_bytes,
    )
    sources = default_registry(resolver)
    health = HealthTracker(on_change=_health_changed)

    if engine is None:
        if config.server.engine == "mpv":
            engine = MpvEngine(
                config.server.mpv_socket,
                hwdec=config.server.mpv_hwdec,
                audio_only=config.server.audio_only,
            )
        else:
            engine = MediaEngine()
    logger.info("Using %s media engine", engine.name)

    controller = PlaybackController(
        engine, sources,
        health=health,
        queue_manager=QueueManager(),
        config=config.playback,
        event_bus=event_bus,
    )

    # Start the command loop
    controller.start()

    # Global JSON error handler - prevents bare HTML 500s
    @app.errorhandler(Exception)
    def handle_exception(e):
        from werkzeug.exceptions import HTTPException
        if isinstance(e, HTTPException):
            return e  # Let Flask handle normal HTTP errors (400, 404, etc.)
        logger.exception("Unhandled error: %s", e)
        return jsonify({"error": str(e)}), 500

    # Allow cross-origin requests (desktop shell, browser extension)
    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    # Store on app for access in routes and tests
    app.engine = engine
    app.event_bus = event_bus
    app.resolver = resolver
    app.sources = sources
    app.health = health
    app.controller = controller

    @app.route("/api/health")
    def api_health():
        return jsonify({"status": "ok", "version": __version__})

    # --- Player Control Endpoints ---

    @app.route("/api/status")
    def status():
        """Full player snapshot."""
        return jsonify(controller.snapshot().to_dict())

    @app.route("/api/play", methods=["POST"])
    def play():
        """Play one item now. Without a body, resume the current item."""
        data = request.get_json(silent=True) or {}
        if not data:
            controller.play()
            return jsonify({"ok": True})
        try:
            item = _item_from_request(data)
        except (ValueError, TypeError, AttributeError) as e:
            return jsonify({"error": str(e)}), 400
        if not item.has_source:
            return jsonify({"error": "url or youtube_id required"}), 400
        controller.play(item)
        return jsonify({"ok": True, "message": f"Playing: {item.display_title}"})

    @app.route("/api/pause", methods=["POST"])
    def pause():
        controller.pause()
        return jsonify({"ok": True})

    @app.route("/api/resume", methods=["POST"])
    def resume():
        controller.resume()
        return jsonify({"ok": True})

    @app.route("/api/toggle", methods=["POST"])
    def toggle():
        controller.toggle_play_pause()
        return jsonify({"ok": True})

    @app.route("/api/stop", methods=["POST"])
    def stop():
        controller.stop()
        return jsonify({"ok": True})

    @app.route("/api/next", methods=["POST"])
    def next_item():
        controller.next()
        return jsonify({"ok": True})

    @app.route("/api/previous", methods=["POST"])
    def previous_item():
        controller.previous()
        return jsonify({"ok": True})

    @app.route("/api/retry", methods=["POST"])
    def retry():
        controller.retry()
        return jsonify({"ok": True})

    @app.route("/api/seek", methods=["POST"])
    def seek():
        data = request.get_json(silent=True) or {}
        position = data.get("position")
        if position is None:
            return jsonify({"error": "position required"}), 400
        try:
            controller.seek(float(position))
        except (TypeError, ValueError):
            return jsonify({"error": "position must be a number"}), 400
        return jsonify({"ok": True})

    @app.route("/api/volume", methods=["POST"])
    def volume():
        data = request.get_json(silent=True) or {}
        level = data.get("volume")
        if level is None:
            return jsonify({"error": "volume required"}), 400
        try:
            controller.set_volume(float(level))
        except (TypeError, ValueError):
            return jsonify({"error": "volume must be a number"}), 400
        return jsonify({"ok": True})

    @app.route("/api/shuffle", methods=["POST"])
    def shuffle():
        data = request.get_json(silent=True) or {}
        try:
            controller.set_shuffle_mode(ShuffleMode(data.get("mode", "")))
        except ValueError:
            return jsonify({"error": "mode must be 'off' or 'on'"}), 400
        return jsonify({"ok": True})

    @app.route("/api/repeat", methods=["POST"])
    def repeat():
        data = request.get_json(silent=True) or {}
        try:
            controller.set_repeat_mode(RepeatMode(data.get("mode", "")))
        except ValueError:
            return jsonify({"error": "mode must be 'off', 'one' or 'all'"}), 400
        return jsonify({"ok": True})

    # --- Queue Endpoints ---

    @app.route("/api/queue")
    def get_queue():
        snap = controller.snapshot()
        return jsonify({
            "current_item": snap.current_item.to_dict() if snap.current_item else None,
            "upcoming_items": [item.to_dict() for item in snap.upcoming_items],
            "repeat_mode": snap.repeat_mode.value,
            "shuffle_mode": snap.shuffle_mode.value,
        })

    @app.route("/api/queue", methods=["POST"])
    def play_queue():
        """Replace the queue and start playing it."""
        data = request.get_json(silent=True) or {}
        raw_items = data.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            return jsonify({"error": "items required"}), 400
        try:
            items = [_item_from_request(d) for d in raw_items]
            start_index = int(data.get("start_index", 0))
            controller.play_queue(items, start_index)
        except IndexError as e:
            return jsonify({"error": str(e)}), 400
        except (ValueError, TypeError, AttributeError) as e:
            return jsonify({"error": f"invalid item: {e}"}), 400
        return jsonify({"ok": True, "count": len(items)})

    # --- Health Endpoints ---

    @app.route("/api/items/<item_id>/health")
    def item_health(item_id):
        return jsonify(health.get(item_id).to_dict())

    @app.route("/api/items/<item_id>/health/reset", methods=["POST"])
    def item_health_reset(item_id):
        controller.reset_health(item_id)
        return jsonify({"ok": True})

    # --- Diagnostics ---

    @app.route("/api/resolve", methods=["POST"])
    def resolve():
        """Resolve a URL through the playlist resolver without playing it."""
        data = request.get_json(silent=True) or {}
        url = (data.get("url") or "").strip()
        if not url:
            return jsonify({"error": "url required"}), 400
        try:
            resolved = resolver.resolve(url)
        except ResolutionError as e:
            return jsonify({
                "error": e.user_message,
                "kind": e.kind,
                "detail": str(e),
            }), 422
        except ResolutionCancelled:
            return jsonify({"error": "cancelled"}), 422
        return jsonify({"url": url, "resolved": resolved})

    # --- Events (SSE) ---

    @app.route("/api/events")
    def events_stream():
        """SSE stream of real-time events."""
        def generate():
            q = event_bus.subscribe()
            try:
                while True:
                    try:
                        event = q.get(timeout=30)
                        data = json.dumps(event)
                        yield f"event: {event['type']}\ndata: {data}\n\n"
                    except queue.Empty:
                        # Timeout - send keepalive heartbeat
                        yield ": heartbeat\n\n"
            finally:
                event_bus.unsubscribe(q)

        return Response(generate(), mimetype="text/event-stream")

    @app.route("/api/events/recent")
    def events_recent():
        """Get recent events, optionally filtered by ?type=."""
        try:
            limit = int(request.args.get("limit", 20))
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400
        return jsonify(event_bus.recent(limit, request.args.get("type")))

    return app
