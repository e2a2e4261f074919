#!/usr/bin/env python3
"""Command-line interface for dual-stream athlete video analysis."""

import json
import sys
from pathlib import Path
from urllib.parse import urlparse

import click
import yaml


def load_config(config_path: str = "config/config.yaml") -> dict:
    """Load configuration from YAML file."""
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            return yaml.safe_load(f) or {}
    return {}


def _coordinator(ctx: click.Context):
    from vision_engine.pipeline import PipelineConfig, PipelineCoordinator
    from vision_engine.sampling import FrameSampler, SamplingPolicy, StreamKind

    cfg = ctx.obj["config"]
    policies = {}
    for kind in StreamKind:
        section = (cfg.get("sampling") or {}).get(kind.value)
        if section:
            policies[kind] = SamplingPolicy(
                rules=tuple((float(limit), int(stride)) for limit, stride in section["rules"]),
                max_frames=int(section["max_frames"]),
            )

    return PipelineCoordinator(
        PipelineConfig.from_dict(cfg),
        sampler=FrameSampler(policies),
    )


def _setup_logging(ctx: click.Context) -> None:
    from vision_engine.utils.logging_config import LoggingSettings, setup_logging

    setup_logging(LoggingSettings.from_dict(ctx.obj["config"].get("logging")), ctx.obj["verbose"])


def _echo_json(data, output: str = None) -> None:
    text = json.dumps(data, indent=2, default=str)
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text, encoding="utf-8")
        click.echo(f"Written to {output}")
    else:
        click.echo(text)


def _finish(coordinator, session_id: str, timeout: float, output: str) -> None:
    click.echo(f"Session {session_id} accepted, waiting for analysis...")
    status = coordinator.wait(session_id, timeout=timeout)

    click.echo(f"Status: {status['status']}")
    if status["status"] == "completed":
        report = coordinator.get_report(session_id)
        scores = report["composite_scores"]
        click.echo(f"  Championship readiness: {scores['championship_readiness']:.1f} ({scores['readiness_level']})")
        click.echo(f"  Overall score: {scores['overall_score']:.1f}")
        click.echo(f"  Critical moments: {len(report['critical_moments'])}")
        click.echo(f"  Insights: {len(report['insights'])}")
        if output:
            _echo_json(report, output)
    elif status["status"] == "failed":
        click.echo(f"Error: {status['error_message']}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    default="config/config.yaml",
    help="Path to configuration file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool) -> None:
    """Vision Engine.

    Analyze athlete videos with parallel biomechanical and behavioral
    streams and synthesize a championship-readiness report.
    """
    ctx.ensure_object(dict)

    cfg = load_config(config)
    ctx.obj["config"] = cfg
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("video")
@click.option("--subject", "-s", required=True, help="Athlete (subject) id")
@click.option(
    "--sport",
    type=click.Choice(["baseball", "football", "basketball"]),
    default="baseball",
    help="Sport of the session",
)
@click.option(
    "--session-type",
    "-t",
    type=click.Choice(["training", "game", "historical"]),
    default="training",
    help="Type of session",
)
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the result")
@click.option("--output", "-o", help="Write the final report JSON to this file")
@click.pass_context
def analyze(
    ctx: click.Context,
    video: str,
    subject: str,
    sport: str,
    session_type: str,
    timeout: float,
    output: str,
) -> None:
    """Analyze a local video file or URL."""
    from vision_engine.errors import ValidationError, VisionEngineError
    from vision_engine.utils.video_utils import get_video_info

    _setup_logging(ctx)

    with _coordinator(ctx) as coordinator:
        local_path = video
        if urlparse(video).scheme in ("http", "https", "file"):
            try:
                local_path = coordinator.fetcher.fetch(video)
            except VisionEngineError as e:
                click.echo(f"Error: {e}", err=True)
                sys.exit(1)

        info = get_video_info(local_path)
        if info is None:
            click.echo(f"Error: Could not read video {video}", err=True)
            sys.exit(1)

        payload = {
            "secure_url": local_path,
            "public_id": Path(local_path).stem,
            "resource_type": "video",
            "format": Path(local_path).suffix.lstrip(".").lower(),
            "duration": info.duration_seconds,
            "width": info.width,
            "height": info.height,
            "frame_rate": info.fps or None,
            "context": {"custom": {"player_id": subject, "sport": sport, "session_type": session_type}},
        }

        try:
            accepted = coordinator.ingest(payload)
        except ValidationError as e:
            click.echo("Video rejected:", err=True)
            for error in e.errors:
                click.echo(f"  - {error}", err=True)
            sys.exit(1)

        _finish(coordinator, accepted["session_id"], timeout, output)


@cli.command()
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the result")
@click.option("--output", "-o", help="Write the final report JSON to this file")
@click.pass_context
def ingest(ctx: click.Context, payload_file: str, timeout: float, output: str) -> None:
    """Ingest an upload notification (JSON body) and run the analysis."""
    from vision_engine.errors import ValidationError

    _setup_logging(ctx)

    with open(payload_file, encoding="utf-8") as f:
        payload = json.load(f)

    with _coordinator(ctx) as coordinator:
        try:
            accepted = coordinator.ingest(payload)
        except ValidationError as e:
            _echo_json(e.to_dict())
            sys.exit(1)

        _finish(coordinator, accepted["session_id"], timeout, output)


@cli.command()
@click.argument("session_id")
@click.pass_context
def status(ctx: click.Context, session_id: str) -> None:
    """Show the status of a session."""
    with _coordinator(ctx) as coordinator:
        result = coordinator.get_status(session_id)
        if result is None:
            click.echo(f"Session {session_id} not found", err=True)
            sys.exit(1)

        click.echo(f"Session: {result['session_id']} ({result['subject_id']})")
        click.echo(f"  Sport: {result['sport']} / {result['session_type']}")
        click.echo(f"  Status: {result['status']}")
        for stream, info in result["streams"].items():
            line = f"  {stream}: {info['status']} (attempts: {info['attempts']})"
            if info["error"]:
                line += f" - {info['error']}"
            click.echo(line)
        if result["error_message"]:
            click.echo(f"  Error: {result['error_message']}")


@cli.command()
@click.argument("session_id")
@click.option("--output", "-o", help="Write the report JSON to this file")
@click.pass_context
def report(ctx: click.Context, session_id: str, output: str) -> None:
    """Print the final report of a completed session."""
    with _coordinator(ctx) as coordinator:
        result = coordinator.get_report(session_id)
        if result is None:
            click.echo(f"No report for session {session_id}", err=True)
            sys.exit(1)
        _echo_json(result, output)


@cli.command()
@click.argument("subject_id")
@click.option("--days", "-d", type=int, default=30, help="Look-back window in days (0 for all)")
@click.pass_context
def history(ctx: click.Context, subject_id: str, days: int) -> None:
    """Show a subject's sessions and progression."""
    with _coordinator(ctx) as coordinator:
        result = coordinator.get_subject_history(subject_id, days=days or None)

    click.echo(f"Subject {subject_id}: {len(result['sessions'])} sessions")
    for entry in result["sessions"]:
        readiness = entry["scores"]["championship_readiness"] if entry["scores"] else None
        suffix = f" readiness={readiness:.1f}" if readiness is not None else ""
        click.echo(f"  {entry['created_at']}  {entry['session_id']}  {entry['status']}{suffix}")

    metrics = result["progression"]["metrics"]
    if metrics:
        click.echo("Progression:")
        for name, values in metrics.items():
            click.echo(
                f"  {name}: {values['first']:.1f} -> {values['last']:.1f} "
                f"({values['improvement_pct']:+.1f}%, {values['trend']})"
            )


@cli.command()
@click.argument("session_id")
@click.pass_context
def cancel(ctx: click.Context, session_id: str) -> None:
    """Cancel a session that has not reached synthesis."""
    with _coordinator(ctx) as coordinator:
        if coordinator.cancel(session_id):
            click.echo(f"Session {session_id} cancelled")
        else:
            click.echo(f"Session {session_id} cannot be cancelled", err=True)
            sys.exit(1)


@cli.group()
def db() -> None:
    """Database management commands."""
    pass


@db.command("init")
@click.pass_context
def db_init(ctx: click.Context) -> None:
    """Initialize the database (create tables)."""
    from vision_engine.database.schema import DEFAULT_DATABASE_URL, init_db

    cfg = ctx.obj["config"]
    db_url = (cfg.get("database") or {}).get("url", DEFAULT_DATABASE_URL)

    click.echo(f"Initializing database: {db_url}")
    init_db(db_url).dispose()
    click.echo("Database initialized successfully!")


@db.command("stats")
@click.pass_context
def db_stats(ctx: click.Context) -> None:
    """Show database statistics."""
    with _coordinator(ctx) as coordinator:
        stats = coordinator.db_ops.get_database_stats()

    click.echo("Database Statistics:")
    for key, value in stats.items():
        click.echo(f"  {key.replace('_', ' ').capitalize()}: {value}")


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    from vision_engine import __version__

    click.echo("Vision Engine")
    click.echo(f"Version: {__version__}")


if __name__ == "__main__":
    cli()
