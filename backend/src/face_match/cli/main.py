"""
face-match CLI: index event photos and search them by selfie.

Usage:
    face-match serve [--host HOST] [--port PORT] [--debug]
    face-match drain [--event-id ID] [--batch-size N] [--concurrency N]
    face-match worker [--event-id ID]
    face-match search <event_id> <image> [--threshold T] [--max-results N]
    face-match setup-event <event_id>
    face-match reset-collection <event_id>
    face-match stats [--event-id ID]
    face-match init
    face-match version
"""

from __future__ import annotations

import json
import logging
import signal
import sys
from pathlib import Path

import click

from face_match import __version__


def _services():
    from face_match.services import Services

    return Services.from_config()


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (default: from config or INFO)",
)
def cli(log_level: str | None) -> None:
    """face-match: find yourself in event photos."""
    if log_level is None:
        from face_match.config import get_config

        log_level = get_config().get("logging", {}).get("level", "INFO")

    logging.basicConfig(
        level=getattr(logging, str(log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
def version() -> None:
    """Print the installed version."""
    click.echo(f"face-match {__version__}")


@cli.command()
def init() -> None:
    """Create ~/.face-match/ with a default configuration."""
    from face_match.config import get_default_config
    from face_match.paths import ensure_data_home, get_data_home

    data_home = ensure_data_home()
    click.echo(f"Data directory: {data_home}")

    config_path = get_data_home() / "config.json"
    if config_path.exists():
        click.echo(f"Config already exists: {config_path}")
    else:
        # Write default config with absolute paths
        default_config = get_default_config()
        default_config["database"]["url"] = f"sqlite:///{data_home / 'face_match.db'}"
        default_config["storage"]["local_root"] = str(data_home / "data" / "photos")
        config_path.write_text(json.dumps(default_config, indent=2), encoding="utf-8")
        click.echo(f"Config created: {config_path}")

    click.echo("Initialization complete.")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: from config or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Port (default: from config or 5050)")
@click.option("--debug", is_flag=True, default=False, help="Enable Flask debug mode")
def serve(host: str | None, port: int | None, debug: bool) -> None:
    """Start the HTTP API."""
    from face_match.config import get_config

    # Try importing from installed package first, then fall back to dev mode
    try:
        from face_match_frontend.app import create_app
    except ImportError:
        # Dev mode fallback, frontend/ not installed as a package
        from face_match.paths import get_repo_root

        repo_root = get_repo_root()
        if repo_root is not None:
            frontend_dir = str(repo_root / "frontend")
            if frontend_dir not in sys.path:
                sys.path.insert(0, frontend_dir)
        try:
            from app import create_app  # type: ignore[no-redef]
        except ImportError:
            click.echo(
                "Error: Cannot find the face-match frontend.\n"
                "Either install with `pip install face-match` or "
                "run from the repo root.",
                err=True,
            )
            raise SystemExit(1)

    server_config = get_config().get("server", {})

    final_host = host or server_config.get("host", "0.0.0.0")
    final_port = port or server_config.get("port", 5050)
    final_debug = debug or server_config.get("debug", False)

    click.echo(f"Starting face-match API on {final_host}:{final_port}")
    create_app().run(host=final_host, port=final_port, debug=final_debug)


@cli.command()
@click.option("--event-id", default=None, help="Only drain this event (default: all events)")
@click.option("--batch-size", default=None, type=click.IntRange(min=1), help="Photos per batch (default: from config)")
@click.option("--concurrency", default=None, type=click.IntRange(min=1), help="Photos in flight (default: from config)")
@click.option("--all", "until_empty", is_flag=True, default=False, help="Keep draining until the queue is empty")
def drain(event_id: str | None, batch_size: int | None, concurrency: int | None, until_empty: bool) -> None:
    """Index one batch of pending photos."""
    from face_match.face import DrainStats
    from face_match.trigger import drain_until_empty

    services = _services()
    indexing = services.config.get("indexing", {})
    if batch_size is None:
        batch_size = int(indexing.get("batch_size", 50))
    if concurrency is None:
        concurrency = int(indexing.get("concurrency", 5))

    if until_empty:
        outcomes = drain_until_empty(
            services.drainer,
            event_id=event_id,
            batch_size=batch_size,
            concurrency=concurrency,
            show_progress=True,
        )
    else:
        outcomes = services.drainer.drain(
            event_id=event_id,
            batch_size=batch_size,
            concurrency=concurrency,
            show_progress=True,
        )

    if not outcomes:
        click.echo("No photos to process")
        return

    stats = DrainStats.from_outcomes(outcomes)
    click.echo(
        f"Processed {stats.total_photos} photo(s): {stats.succeeded} indexed, "
        f"{stats.failed} failed, {stats.total_faces_indexed} faces"
    )
    for outcome in outcomes:
        if not outcome.ok:
            click.echo(f"  failed {outcome.photo_id}: {outcome.error}", err=True)

    if stats.failed:
        raise SystemExit(1)


@cli.command()
@click.option("--event-id", default=None, help="Only drain this event (default: from config or all)")
@click.option("--idle-backoff", default=None, type=float, help="Seconds to wait when the queue is empty")
def worker(event_id: str | None, idle_backoff: float | None) -> None:
    """Drain the queue continuously until interrupted."""
    services = _services()
    overrides = {}
    if idle_backoff is not None:
        overrides["idle_backoff"] = idle_backoff
    loop = services.trigger_loop(event_id=event_id, **overrides)

    def _handle_signal(signum, frame):
        click.echo("Stopping worker after the current batch...")
        loop.stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)

    click.echo(f"Worker started (event={loop.event_id or 'all'}). Press Ctrl-C to stop.")
    try:
        stats = loop.run()
    except KeyboardInterrupt:
        loop.stop_event.set()
        stats = loop.stats

    _echo_json(stats.to_dict())


@cli.command()
@click.argument("event_id")
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--threshold", default=None, type=float, help="Minimum similarity 0-100 (default: from config)")
@click.option("--max-results", default=None, type=click.IntRange(min=1), help="Maximum raw matches (default: from config)")
def search(event_id: str, image: Path, threshold: float | None, max_results: int | None) -> None:
    """Find the photos of EVENT_ID that contain the face in IMAGE."""
    services = _services()
    outcome = services.aggregator.search(
        event_id,
        image.read_bytes(),
        threshold=threshold,
        max_results=max_results,
    )

    if outcome.no_collection:
        click.echo(f"No photos indexed yet for event {event_id}")
        return

    if not outcome.matches:
        click.echo("No matches found")
        return

    click.echo(f"Found {len(outcome.matches)} photo(s):")
    for rank, match in enumerate(outcome.matches, start=1):
        click.echo(f"  {rank:3d}. {match.photo_id}  {match.similarity:6.2f}%  {match.image_url or ''}")


@cli.command("setup-event")
@click.argument("event_id")
@click.option("--batch-size", default=None, type=click.IntRange(min=1), help="Photos per batch (default: from config)")
@click.option("--concurrency", default=None, type=click.IntRange(min=1), help="Photos in flight (default: from config)")
def setup_event_command(event_id: str, batch_size: int | None, concurrency: int | None) -> None:
    """Create EVENT_ID's collection and index all of its pending photos."""
    from face_match._operations import EventNotReady, setup_event

    services = _services()
    try:
        summary = setup_event(
            services,
            event_id,
            batch_size=batch_size,
            concurrency=concurrency,
            show_progress=True,
        )
    except EventNotReady as e:
        click.echo(f"Error: {e.reason}", err=True)
        raise SystemExit(1)

    _echo_json(summary)


@cli.command("reset-collection")
@click.argument("event_id")
@click.confirmation_option(prompt="This deletes every indexed face of the event. Continue?")
def reset_collection(event_id: str) -> None:
    """Delete and recreate EVENT_ID's face collection."""
    services = _services()
    key = services.provisioner.reset_collection(event_id)
    click.echo(f"Collection {key} reset")


@cli.command()
@click.option("--event-id", default=None, help="Only count this event's photos")
def stats(event_id: str | None) -> None:
    """Show photo processing counts."""
    services = _services()
    result = services.store.get_stats(event_id=event_id)
    if event_id is not None:
        result["collection"] = services.provisioner.describe(event_id)
    _echo_json(result)


if __name__ == "__main__":
    cli()
