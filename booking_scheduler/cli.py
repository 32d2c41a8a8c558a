"""
Booking scheduler CLI - operator commands.

Usage:
    booking-scheduler --help                 Show all commands
    booking-scheduler run-once               Process bookings since the watermark, inline
    booking-scheduler sweep-stale            Mark abandoned runs as failed
    booking-scheduler history --limit 20     Show recent executions
    booking-scheduler migrate                Apply database migrations
    booking-scheduler serve                  Start the API server
"""

import asyncio

import typer

from booking_scheduler.core.exceptions import SchedulerError

app = typer.Typer(
    name="booking-scheduler",
    help="Booking scheduler CLI - operator commands",
    no_args_is_help=True,
)

CLI_TRIGGER_NAME = "CLI"
CLI_TRIGGER_GROUP = "MANUAL"


def _print_success(message: str) -> None:
    typer.echo(f"  ✅ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


async def _run_once() -> int:
    from booking_scheduler.services.orchestrator import build_orchestrator

    orchestrator = build_orchestrator()
    await orchestrator.ensure_config()
    return await orchestrator.on_run(CLI_TRIGGER_NAME, CLI_TRIGGER_GROUP)


async def _sweep_stale(threshold_minutes: int | None) -> int:
    from booking_scheduler.services.orchestrator import build_orchestrator

    orchestrator = build_orchestrator()
    return await orchestrator.sweep_stale(threshold_minutes)


async def _latest(limit: int):
    from booking_scheduler.services.orchestrator import build_orchestrator

    orchestrator = build_orchestrator()
    return await orchestrator.get_latest(limit)


@app.command("run-once")
def run_once():
    """Run the booking processor once, recording it in the history."""
    from booking_scheduler.core.logging import setup_logging

    setup_logging()
    try:
        processed = asyncio.run(_run_once())
    except SchedulerError as e:
        _print_error(str(e))
        raise typer.Exit(code=1) from e
    _print_success(f"Processed {processed} bookings")


@app.command("sweep-stale")
def sweep_stale(
    threshold_minutes: int | None = typer.Option(
        None,
        "--threshold-minutes",
        "-t",
        help="Age after which a STARTED run is considered abandoned",
    ),
):
    """Mark runs left in STARTED state by a dead process as FAILED."""
    from booking_scheduler.core.logging import setup_logging

    setup_logging()
    try:
        swept = asyncio.run(_sweep_stale(threshold_minutes))
    except SchedulerError as e:
        _print_error(str(e))
        raise typer.Exit(code=1) from e
    _print_success(f"Marked {swept} stale runs as failed")


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of executions to show"),
):
    """Show the most recent executions."""
    try:
        page = asyncio.run(_latest(limit))
    except SchedulerError as e:
        _print_error(str(e))
        raise typer.Exit(code=1) from e

    typer.echo(f"{page.total_count} executions in total")
    for execution in page.executions:
        processed = execution.records_processed if execution.records_processed is not None else "-"
        line = (
            f"  #{execution.id} {execution.start_time:%Y-%m-%d %H:%M:%S} "
            f"{execution.status.value:<11} processed={processed}"
        )
        if execution.error_message:
            line += f" error={execution.error_message}"
        typer.echo(line)


@app.command()
def migrate():
    """Apply database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server, which owns the scheduling engine."""
    import subprocess

    cmd = ["uvicorn", "booking_scheduler.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
