"""
Jobwatch CLI - maintenance commands for job executions.

Usage:
    jobwatch --help                          Show all commands
    jobwatch archive-old --days 90           Archive finished executions
    jobwatch cleanup-archived --dry-run      Preview retention cleanup
    jobwatch partitions                      Show monthly partitions
    jobwatch retry-failed 42 --days-back 7   Signal retries for a job
"""

import asyncio

import typer

app = typer.Typer(
    name="jobwatch",
    help="Jobwatch CLI - job execution maintenance",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    typer.echo(f"  ✅ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


def _run(coro_factory) -> None:
    """Run a coroutine against a fresh session with logging configured."""
    from jobwatch.core.database import AsyncSessionLocal
    from jobwatch.core.errors import ExecutionError
    from jobwatch.core.logging import setup_logging

    setup_logging()

    async def run():
        async with AsyncSessionLocal() as db:
            await coro_factory(db)

    try:
        asyncio.run(run())
    except ExecutionError as e:
        _print_error(e.message)
        raise typer.Exit(1) from e


@app.command("archive-old")
def archive_old(
    days: int = typer.Option(90, "--days", "-d", help="Archive executions older than this"),
    job_id: int | None = typer.Option(None, "--job-id", "-j", help="Only this job"),
):
    """Archive finished executions completed more than N days ago."""
    from jobwatch.services.retention import RetentionManager

    async def run(db):
        archived, cutoff = await RetentionManager(db).archive_old(days, job_id=job_id)
        _print_success(f"Archived {archived} executions completed before {cutoff:%Y-%m-%d}")

    _run(run)


@app.command("cleanup-archived")
def cleanup_archived(
    days: int = typer.Option(365, "--days", "-d", help="Delete archived rows older than this"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Count without deleting"),
):
    """Permanently delete archived executions past retention."""
    from jobwatch.services.retention import RetentionManager

    async def run(db):
        result = await RetentionManager(db).cleanup_archived(days, dry_run=dry_run)
        for partition in result["partitions"]:
            line = f"  {partition['partition_name']}: {partition['eligible']} eligible"
            if not dry_run:
                line += f", {partition['deleted']} deleted"
            if partition["error"]:
                line += f" (error: {partition['error']})"
            typer.echo(line)
        verb = "Would delete" if dry_run else "Deleted"
        count = result["eligible"] if dry_run else result["deleted"]
        _print_success(f"{verb} {count} archived executions")
        if any(p["error"] for p in result["partitions"]):
            raise typer.Exit(1)

    _run(run)


@app.command()
def partitions():
    """Show monthly partitions with row counts and estimated size."""
    from jobwatch.services.retention import RetentionManager

    async def run(db):
        report = await RetentionManager(db).partitions()
        if not report:
            typer.echo("No executions recorded")
            return
        for partition in report:
            typer.echo(
                f"{partition['partition_name']}  rows={partition['row_count']}"
                f"  archived={partition['archived_count']}  size_mb={partition['size_mb']}"
            )

    _run(run)


@app.command("retry-failed")
def retry_failed(
    job_id: int = typer.Argument(..., help="Job whose failed executions should rerun"),
    days_back: int = typer.Option(7, "--days-back", "-d", help="Look back this many days"),
):
    """Ask the scheduler to rerun failed executions of a job."""
    from jobwatch.services.bulk_retry import BulkRetryOrchestrator

    async def run(db):
        result = await BulkRetryOrchestrator(db).retry_failed(job_id, days_back)
        _print_success(
            f"Signalled {result['signalled']}/{result['matched']} failed executions"
        )

    _run(run)


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "jobwatch.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
