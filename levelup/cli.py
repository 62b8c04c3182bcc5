"""CLI entrypoint for LevelUp."""

from __future__ import annotations

import json
import logging
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator
from uuid import UUID

import click
from pydantic import BaseModel

from levelup.core.exceptions import InvalidStateError, LevelUpError, NotFoundError


def _setup_logging(verbose: bool = False, config_dir: Path | None = None, env: str | None = None) -> None:
    """Apply logging configuration from config/default.yaml."""
    from levelup.core.config import load_config

    try:
        config = load_config(config_dir=config_dir, env=env)
        level_name = config.logging.level
        fmt = config.logging.format
    except LevelUpError:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option(
    "--config-dir",
    required=False,
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Config directory (default: project root/config).",
)
@click.option("--env", required=False, default=None, help="Optional config overlay environment.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: Path | None, env: str | None) -> None:
    """LevelUp progression engine command line interface."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_dir"] = config_dir
    ctx.obj["env"] = env
    _setup_logging(verbose=verbose, config_dir=config_dir, env=env)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_component_factory():
    from levelup.core.factory import ComponentFactory

    return ComponentFactory


@contextmanager
def _bundle(ctx: click.Context, initialize_schema: bool = False) -> Iterator[Any]:
    """Yield a ComponentBundle; an injected ``ctx.obj['bundle']`` is reused and left open."""
    injected = ctx.obj.get("bundle") if ctx.obj else None
    if injected is not None:
        yield injected
        return

    factory = _load_component_factory()
    try:
        bundle = factory.create(
            config_dir=ctx.obj.get("config_dir"),
            env=ctx.obj.get("env"),
            initialize_schema=initialize_schema,
        )
    except LevelUpError as exc:
        raise click.ClickException(str(exc)) from exc
    try:
        yield bundle
    finally:
        factory.close(bundle)


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except (NotFoundError, InvalidStateError) as exc:
        raise click.ClickException(str(exc)) from exc


def _parse_uuid(raw: str | None, field_name: str) -> UUID:
    if raw is None:
        raise click.ClickException(f"Missing required UUID value for {field_name}")
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise click.ClickException(f"Invalid UUID for {field_name}: {raw}") from exc


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=True))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database schema (idempotent)."""
    with _bundle(ctx, initialize_schema=True) as bundle:
        backend = bundle.config.database.backend
    click.echo(f"Schema ready ({backend} backend)")


@cli.command("create-subject")
@click.argument("name")
@click.pass_context
def create_subject(ctx: click.Context, name: str) -> None:
    """Create a new subject at rank E, level 1."""
    with _bundle(ctx) as bundle:
        subject = bundle.subjects.create_subject(name)
        _echo_json({"subject": _dump(subject)})


@cli.command("status")
@click.argument("subject_id")
@click.pass_context
def status(ctx: click.Context, subject_id: str) -> None:
    """Show rank, level, attributes and active sanctions."""
    subject_uuid = _parse_uuid(subject_id, "subject_id")
    with _bundle(ctx) as bundle, _domain_errors():
        _echo_json(_dump(bundle.subjects.get_status(subject_uuid)))


@cli.command("generate")
@click.argument("subject_id")
@click.pass_context
def generate(ctx: click.Context, subject_id: str) -> None:
    """Generate the next task for a subject."""
    subject_uuid = _parse_uuid(subject_id, "subject_id")
    with _bundle(ctx) as bundle, _domain_errors():
        task = bundle.tasks.generate(subject_uuid)
        _echo_json({"task": _dump(task)})


@cli.command("submit")
@click.argument("task_id")
@click.argument("subject_id")
@click.option("--evidence", required=True, help="What was done, as specifically as possible.")
@click.option("--judge/--no-judge", "judge_now", default=False, show_default=True,
              help="Judge the submission immediately.")
@click.pass_context
def submit(ctx: click.Context, task_id: str, subject_id: str, evidence: str, judge_now: bool) -> None:
    """Submit evidence for a task."""
    task_uuid = _parse_uuid(task_id, "task_id")
    subject_uuid = _parse_uuid(subject_id, "subject_id")
    if not evidence.strip():
        raise click.ClickException("Evidence must not be empty")
    with _bundle(ctx) as bundle, _domain_errors():
        submission = bundle.tasks.submit(task_uuid, subject_uuid, evidence.strip())
        if judge_now:
            submission = bundle.tasks.judge_and_resolve(submission.id)
        _echo_json({"submission": _dump(submission)})


@cli.command("judge")
@click.argument("submission_id")
@click.pass_context
def judge(ctx: click.Context, submission_id: str) -> None:
    """Judge a pending submission and apply its rewards."""
    submission_uuid = _parse_uuid(submission_id, "submission_id")
    with _bundle(ctx) as bundle, _domain_errors():
        submission = bundle.tasks.judge_and_resolve(submission_uuid)
        subject = bundle.repository.get_subject(submission.subject_id)
        _echo_json({"submission": _dump(submission), "subject": _dump(subject)})


@cli.command("tasks")
@click.argument("subject_id")
@click.option("--history", is_flag=True, default=False, help="List every submission, newest first.")
@click.option("--stats", is_flag=True, default=False, help="Show overall and recent counts.")
@click.pass_context
def tasks(ctx: click.Context, subject_id: str, history: bool, stats: bool) -> None:
    """List a subject's active tasks."""
    subject_uuid = _parse_uuid(subject_id, "subject_id")
    with _bundle(ctx) as bundle, _domain_errors():
        payload: dict[str, Any] = {
            "active": [_dump(t) for t in bundle.tasks.get_active_tasks(subject_uuid)],
        }
        if history:
            payload["history"] = [
                {"submission": _dump(s), "task": _dump(t)}
                for s, t in bundle.tasks.get_task_history(subject_uuid)
            ]
        if stats:
            task_stats = bundle.tasks.get_task_stats(subject_uuid)
            payload["stats"] = {
                "overall": {**_dump(task_stats.overall), "success_rate": task_stats.overall.success_rate},
                "recent": {**_dump(task_stats.recent), "success_rate": task_stats.recent.success_rate},
            }
        _echo_json(payload)


@cli.command("run-daily")
@click.pass_context
def run_daily(ctx: click.Context) -> None:
    """Run the daily pipeline once over every subject."""
    with _bundle(ctx) as bundle:
        report = bundle.orchestrator.run_once()
        _echo_json(
            {
                **_dump(report),
                "success_count": report.success_count,
                "error_count": report.error_count,
                "duration_seconds": report.duration_seconds,
            }
        )
    if report.error_count:
        sys.exit(1)


@cli.command("cleanup-sanctions")
@click.pass_context
def cleanup_sanctions(ctx: click.Context) -> None:
    """Delete expired sanctions."""
    with _bundle(ctx) as bundle:
        removed = bundle.penalties.cleanup_expired_sanctions()
    click.echo(f"Removed {removed} expired sanction(s)")


@cli.command("serve")
@click.option("--max-runs", required=False, type=int, default=None,
              help="Stop after this many runs (default: run until interrupted).")
@click.pass_context
def serve(ctx: click.Context, max_runs: int | None) -> None:
    """Run the daily pipeline on the configured schedule."""
    from levelup.orchestrator.scheduler import Scheduler

    with _bundle(ctx) as bundle:
        scheduler = Scheduler(bundle.config.schedule, bundle.orchestrator.run_once)

        def _stop(signum: int, frame: Any) -> None:
            click.echo(click.style("Interrupted, stopping scheduler.", fg="yellow"), err=True)
            scheduler.stop()

        signal.signal(signal.SIGINT, _stop)
        click.echo(
            f"Scheduler started: every {bundle.config.schedule.interval_hours}h "
            f"from {bundle.config.schedule.run_at} UTC"
        )
        runs = scheduler.run_forever(max_runs=max_runs)
    click.echo(f"Scheduler stopped after {runs} run(s)")


def main() -> None:
    """Entry point used by `levelup` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent.parent / ".env", override=True)
    cli()


if __name__ == "__main__":
    main()
