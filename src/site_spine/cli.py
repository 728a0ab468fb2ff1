"""CLI for Site Spine."""

import csv
import json
import time
from pathlib import Path
from typing import Optional

import structlog
import typer

from site_spine.config import get_settings
from site_spine.errors import SiteSpineError
from site_spine.observability import configure_logging

app = typer.Typer(
    name="site-spine",
    help="Site Spine - campaign deployment pipeline",
    no_args_is_help=True,
)

logger = structlog.get_logger()


def setup():
    """Initialize application."""
    configure_logging()
    from site_spine.context import get_context

    return get_context()


def teardown():
    """Cleanup application."""
    if get_settings().repository_type == "postgres":
        from site_spine.db import close_pool

        close_pool()


def _fail(error: SiteSpineError) -> None:
    typer.echo(f"Error: {error.message}", err=True)
    details = getattr(error, "details", None)
    if details:
        typer.echo(json.dumps(details, indent=2), err=True)
    raise typer.Exit(1)


# =============================================================================
# Database Commands
# =============================================================================

db_app = typer.Typer(help="Database operations")
app.add_typer(db_app, name="db")


@db_app.command("migrate")
def db_migrate(
    migrations_dir: Optional[Path] = typer.Option(None, help="Directory containing migration files"),
):
    """Run database migrations."""
    from site_spine.db import close_pool, init_db

    configure_logging()
    try:
        applied = init_db(migrations_dir)
    except FileNotFoundError as e:
        typer.echo(str(e))
        raise typer.Exit(1)
    finally:
        close_pool()

    for filename in applied:
        typer.echo(f"  [apply] {filename}")
    typer.echo("Migrations complete" if applied else "Database is up to date")


@db_app.command("status")
def db_status(
    migrations_dir: Optional[Path] = typer.Option(None, help="Directory containing migration files"),
):
    """List migrations not yet applied."""
    from site_spine.db import close_pool, find_migrations_dir, get_connection, pending_migrations

    try:
        with get_connection() as conn:
            pending = pending_migrations(conn, migrations_dir or find_migrations_dir())
            conn.commit()
    except FileNotFoundError as e:
        typer.echo(str(e))
        raise typer.Exit(1)
    finally:
        close_pool()

    for path in pending:
        typer.echo(f"  [pending] {path.name}")
    typer.echo(f"{len(pending)} pending migrations")


# =============================================================================
# Template Commands
# =============================================================================

template_app = typer.Typer(help="Template seeding")
app.add_typer(template_app, name="templates")


@template_app.command("add")
def template_add(
    name: str = typer.Option(..., help="Template name"),
    prompt_file: Path = typer.Option(..., exists=True, dir_okay=False, help="File with the prompt body"),
    required: str = typer.Option("", help="Comma-separated required row fields"),
    mode: str = typer.Option("placeholder", help="placeholder or structured"),
):
    """Add a template."""
    from site_spine.models import PromptMode, Template

    ctx = setup()
    try:
        template = Template(
            name=name,
            system_prompt=prompt_file.read_text(encoding="utf-8"),
            required_fields=[f for f in required.split(",") if f.strip()],
            prompt_mode=PromptMode(mode),
        )
        ctx.repos.templates.add(template)
        typer.echo(f"Template created: {template.id}")
    finally:
        teardown()


@template_app.command("list")
def template_list():
    """List templates."""
    ctx = setup()
    try:
        for t in ctx.repos.templates.list_all():
            typer.echo(f"  {t.id} | {t.name:<30} | {t.prompt_mode.value:<11} | {', '.join(t.required_fields)}")
    finally:
        teardown()


# =============================================================================
# Campaign Commands
# =============================================================================

campaign_app = typer.Typer(help="Campaign operations")
app.add_typer(campaign_app, name="campaign")


def read_rows(csv_path: Path) -> list[dict[str, str]]:
    """Read a CSV batch; header names are trimmed, values kept as strings."""
    with csv_path.open(newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        return [
            {(k or "").strip(): (v or "") for k, v in row.items() if k is not None}
            for row in reader
        ]


@campaign_app.command("start")
def campaign_start(
    csv_path: Path = typer.Option(..., "--csv", exists=True, dir_okay=False, help="CSV batch, one row per site"),
    user: str = typer.Option(..., help="Owner user id"),
    name: str = typer.Option(..., help="Campaign name"),
    template: str = typer.Option(..., help="Template id"),
    platform: str = typer.Option(..., help="Platform tag, e.g. aws_s3, netlify, custom_domain"),
    credential: Optional[str] = typer.Option(None, help="Credential id"),
    bucket: Optional[str] = typer.Option(None, help="Bucket name (S3 variants)"),
    root_folder: Optional[str] = typer.Option(None, help="Root folder inside the bucket"),
    domain: Optional[str] = typer.Option(None, help="Domain (custom_domain, single mode)"),
    dynamic_domain: bool = typer.Option(False, "--dynamic-domain", help="Take each row's domain column"),
    wait: bool = typer.Option(False, "--wait", help="Run the queued jobs in this process"),
):
    """Validate a CSV batch and enqueue its deploy jobs."""
    from site_spine.models import Destination
    from site_spine.orchestrator import CampaignRequest

    ctx = setup()
    try:
        result = ctx.orchestrator.start_campaign(
            user,
            CampaignRequest(
                name=name,
                template_id=template,
                platform=platform,
                rows=read_rows(csv_path),
                credential_id=credential,
                destination=Destination(
                    bucket_name=bucket,
                    root_folder=root_folder,
                    domain_name=domain,
                    use_dynamic_domain=dynamic_domain,
                ),
            ),
        )
        typer.echo(f"Campaign {result.campaign_id}: total={result.total} queued={result.queued} skipped={len(result.skipped)}")
        for skipped in result.skipped:
            extra = f" ({', '.join(skipped.missing)})" if skipped.missing else ""
            typer.echo(f"  [skip] row {skipped.index}: {skipped.reason}{extra}")

        if wait:
            counts = ctx.worker_pool().run_until_idle()
            typer.echo(f"Processed {counts['processed']} jobs, {counts['failed']} failed")
    except SiteSpineError as e:
        _fail(e)
    finally:
        teardown()


# =============================================================================
# Deployment Commands
# =============================================================================

deployments_app = typer.Typer(help="Deployment record operations")
app.add_typer(deployments_app, name="deployments")


@deployments_app.command("list")
def deployments_list(
    user: str = typer.Option(..., help="Owner user id"),
    status: Optional[str] = typer.Option(None, help="Pending, Live or Failed"),
):
    """List deployment records."""
    from site_spine.models import DeploymentStatus

    ctx = setup()
    try:
        records = ctx.repos.deployments.list_for_user(
            user, status=DeploymentStatus(status) if status else None
        )
        if not records:
            typer.echo("No deployments found")
            return

        typer.echo(f"\nDeployments ({len(records)}):")
        typer.echo("-" * 80)
        for r in records:
            typer.echo(f"  {r.id} | {r.status.value:<7} | {r.platform.value:<13} | {r.slug:<20} | {r.url or '-'}")
    finally:
        teardown()


@deployments_app.command("redeploy")
def deployments_redeploy(
    record_id: str = typer.Argument(..., help="Deployment record id"),
    user: str = typer.Option(..., help="Owner user id"),
    header_file: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="New header snippet"),
):
    """Republish a record, optionally with a new header snippet."""
    ctx = setup()
    try:
        header_code = header_file.read_text(encoding="utf-8") if header_file else None
        record = ctx.pipeline.redeploy(record_id, user, header_code=header_code)
        typer.echo(f"{record.id}: {record.status.value} {record.url}")
    except SiteSpineError as e:
        _fail(e)
    finally:
        teardown()


# =============================================================================
# Queue Commands
# =============================================================================

queue_app = typer.Typer(help="Job queue and dead-letter operations")
app.add_typer(queue_app, name="queue")


@queue_app.command("stats")
def queue_stats():
    """Show job counts by state."""
    ctx = setup()
    try:
        for state, count in ctx.queue.stats().items():
            typer.echo(f"  {state:<8} {count}")
    finally:
        teardown()


@queue_app.command("failed")
def queue_failed(
    limit: int = typer.Option(50, help="Maximum items to show"),
):
    """List jobs in the failed (dead-letter) list."""
    ctx = setup()
    try:
        items = ctx.queue.list_failed(limit)
        if not items:
            typer.echo("No failed jobs")
            return

        typer.echo(f"\nFailed jobs ({len(items)}):")
        typer.echo("-" * 80)
        for item in items:
            typer.echo(
                f"  {item.job.id} | {item.job.slug:<20} | "
                f"attempts: {item.job.attempts} | {item.error_message[:60]}"
            )
    finally:
        teardown()


@queue_app.command("retry")
def queue_retry(
    job_id: Optional[str] = typer.Argument(None, help="Job id to retry"),
    all_failed: bool = typer.Option(False, "--all", help="Retry every failed job"),
):
    """Put failed jobs back on the queue."""
    if not job_id and not all_failed:
        typer.echo("Give a job id or --all")
        raise typer.Exit(1)

    ctx = setup()
    try:
        job_ids = [job_id] if job_id else [f.job.id for f in ctx.queue.list_failed(limit=1000)]
        retried = [jid for jid in job_ids if ctx.queue.retry_failed(jid)]
        for jid in retried:
            typer.echo(f"  [retry] {jid}")
        if job_id and not retried:
            typer.echo(f"Cannot retry job: {job_id}")
            raise typer.Exit(1)
        typer.echo(f"Retried {len(retried)} jobs")
    finally:
        teardown()


@queue_app.command("reclaim")
def queue_reclaim():
    """Requeue jobs whose claim outlived its lease."""
    ctx = setup()
    try:
        stale = ctx.queue.requeue_stale()
        for jid in stale:
            typer.echo(f"  [requeue] {jid}")
        typer.echo(f"Requeued {len(stale)} stale jobs")
    finally:
        teardown()


# =============================================================================
# Worker Commands
# =============================================================================

worker_app = typer.Typer(help="Worker management")
app.add_typer(worker_app, name="worker")


@worker_app.command("start")
def worker_start(
    concurrency: Optional[int] = typer.Option(None, help="Number of concurrent jobs"),
    loglevel: str = typer.Option("INFO", help="Log level (celery backend)"),
    beat: bool = typer.Option(True, "--beat/--no-beat", help="Run the stale-job reaper schedule (celery backend)"),
):
    """Start the worker pool for the configured backend."""
    settings = get_settings()

    if settings.backend_type == "celery":
        import subprocess
        import sys

        cmd = [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "site_spine.celery_app",
            "worker",
            f"--concurrency={concurrency or settings.worker_max_concurrent}",
            f"--queues={settings.celery_task_default_queue}",
            f"--loglevel={loglevel}",
        ]
        if beat:
            cmd.append("--beat")
        typer.echo(f"Starting worker: {' '.join(cmd)}")
        subprocess.run(cmd)
        return

    ctx = setup()
    pool = ctx.worker_pool(max_concurrent=concurrency)
    pool.start()
    typer.echo(f"Worker pool started ({pool.max_concurrent} slots). Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        typer.echo("Stopping...")
    finally:
        pool.stop()
        teardown()


# =============================================================================
# Server Commands
# =============================================================================


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind"),
    port: Optional[int] = typer.Option(None, help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "site_spine.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


# =============================================================================
# Main
# =============================================================================


def main():
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
