"""CLI entry points for Skumring.

skumring-server: Runs the playback API (mpv engine by default)
skumring-resolve: Resolves a radio/playlist URL and prints the media URL
"""

import argparse
import logging
import sys


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def run_server():
    """Entry point for skumring-server command."""
    parser = argparse.ArgumentParser(
        description="Skumring playback server - focus music player REST API"
    )
    parser.add_argument(
        "--host", default=None, help="Host to bind to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--port", type=int, default=None, help="Port to listen on (default: 5060)"
    )
    parser.add_argument(
        "--config", default=None, help="Path to skumring.toml config file"
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)"
    )
    parser.add_argument(
        "--no-player", action="store_true",
        help="Use the silent engine instead of mpv (API testing)"
    )
    parser.add_argument(
        "--quiet", action="store_true",
        help="Suppress per-request werkzeug logs"
    )
    args = parser.parse_args()

    _configure_logging(args.log_level)
    log = logging.getLogger("skumring")

    from skumring.config import load_config
    from skumring.server.app import create_app

    config = load_config(args.config)

    # CLI args override config file
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.no_player:
        config.server.engine = "null"
        log.info("Player disabled (--no-player), using silent engine")

    app = create_app(config)

    # Suppress per-request werkzeug logs if --quiet
    if args.quiet:
        logging.getLogger("werkzeug").setLevel(logging.WARNING)

    log.info("Skumring server starting on %s:%d", config.server.host, config.server.port)
    try:
        app.run(
            host=config.server.host,
            port=config.server.port,
            threaded=True,  # SSE streams hold a request thread each
            use_reloader=False,  # Don't reload - we have background threads
        )
    finally:
        app.controller.shutdown()
        app.engine.close()
        app.resolver.close()
        log.info("Skumring server stopped")


def run_resolve():
    """Entry point for skumring-resolve command."""
    parser = argparse.ArgumentParser(
        description="Resolve an internet radio URL (M3U/M3U8/PLS) to its stream URL"
    )
    parser.add_argument("url", help="Station or playlist URL")
    parser.add_argument(
        "--config", default=None, help="Path to skumring.toml config file"
    )
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: WARNING)"
    )
    args = parser.parse_args()

    _configure_logging(args.log_level)

    from skumring.config import load_config
    from skumring.server.playlist_resolver import PlaylistResolver, ResolutionError

    config = load_config(args.config)
    resolver = PlaylistResolver(
        timeout=config.resolver.timeout,
        max_depth=config.resolver.max_depth,
        max_bytes=config.resolver.max_playlist_bytes,
    )
    try:
        print(resolver.resolve(args.url))
    except ResolutionError as e:
        print(f"{e.user_message}: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        resolver.close()
