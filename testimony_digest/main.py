"""
Main application entry point for the testimony digest.

Provides CLI interface for delivery cycles, previews and the HTTP trigger.
"""

import sys
from datetime import datetime, timezone
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from testimony_digest.core.config import (
    get_settings,
    print_configuration_summary,
    validate_required_settings,
)
from testimony_digest.core.exceptions import ConfigurationError, DigestError
from testimony_digest.core.logging import set_correlation_id, setup_logging

console = Console()


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise click.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--dry-run", is_flag=True, help="Run in dry-run mode (no emails queued, no schedule updates)")
@click.option("--json-logs", is_flag=True, help="Emit JSON logs instead of rich console output")
@click.option("--correlation-id", help="Set correlation ID for request tracing")
@click.pass_context
def main(ctx, debug: bool, dry_run: bool, json_logs: bool, correlation_id: Optional[str]):
    """Testimony digest delivery.

    Builds digests of new testimony on followed bills and users and queues
    them for email delivery.
    """
    ctx.ensure_object(dict)

    setup_logging(debug=debug, rich_output=not json_logs)

    if correlation_id:
        set_correlation_id(correlation_id)

    ctx.obj["debug"] = debug
    ctx.obj["dry_run"] = dry_run
    ctx.obj["correlation_id"] = correlation_id


@main.command()
@click.option("--date", "date_str", help="Reference date (YYYY-MM-DD), defaults to today")
@click.option("--skip-validation", is_flag=True, help="Skip configuration validation")
@click.pass_context
def deliver(ctx, date_str: Optional[str], skip_validation: bool):
    """Run one digest delivery cycle for every due recipient."""
    try:
        if not skip_validation:
            missing = validate_required_settings()
            if missing:
                console.print("[red]Configuration Error:[/red]")
                for item in missing:
                    console.print(f"  • Missing: {item}")
                sys.exit(1)

        from testimony_digest.workflows.deliver_notifications import run_delivery_cycle

        reference = _parse_date(date_str)

        console.print("[blue]Starting digest delivery cycle[/blue]")
        if ctx.obj["dry_run"] or get_settings().dry_run:
            console.print("[yellow]DRY RUN MODE - No emails will be queued[/yellow]")

        result = run_delivery_cycle(
            reference_instant=reference,
            dry_run=ctx.obj["dry_run"],
            correlation_id=ctx.obj["correlation_id"],
        )

        _display_cycle_result(result)

        ok = _get_status_value(result.status) == "completed" and result.failed_count == 0
        sys.exit(0 if ok else 1)

    except click.BadParameter:
        raise
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        sys.exit(1)
    except DigestError as e:
        console.print(f"[red]Workflow Error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected Error:[/red] {e}")
        if ctx.obj["debug"]:
            import traceback

            console.print(traceback.format_exc())
        sys.exit(1)


@main.command()
@click.option("--user-id", required=True, help="Recipient profile ID")
@click.option("--frequency", help="Frequency override (Daily, Weekly, Monthly)")
@click.option("--date", "date_str", help="Reference date (YYYY-MM-DD), defaults to today")
@click.option("--output", help="Write rendered HTML to this file")
@click.pass_context
def preview(
    ctx, user_id: str, frequency: Optional[str], date_str: Optional[str], output: Optional[str]
):
    """Render one recipient's digest without queueing or rescheduling."""
    try:
        from testimony_digest.services.window_service import parse_frequency, start_of_day
        from testimony_digest.workflows.deliver_notifications import create_delivery_workflow

        settings = get_settings()
        workflow = create_delivery_workflow(settings, correlation_id=ctx.obj["correlation_id"])

        if not frequency:
            profile = workflow.recipient_store.get_recipient(user_id)
            frequency = profile.notification_frequency if profile else None

        parsed = parse_frequency(frequency)
        if parsed is None:
            console.print(f"[red]No notification frequency for {user_id}[/red]")
            sys.exit(1)

        now = start_of_day(_parse_date(date_str) or datetime.now(timezone.utc))
        digest = workflow.build_recipient_digest(user_id, parsed, now)

        table = Table(title=f"Digest Preview for {user_id}")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Frequency", parsed.value)
        table.add_row("Window", f"{digest.start_date:%Y-%m-%d} → {digest.end_date:%Y-%m-%d}")
        table.add_row("Bills with new testimony", str(digest.num_bills_with_new_testimony))
        table.add_row("Users with new testimony", str(digest.num_users_with_new_testimony))
        console.print(table)

        for bill in digest.bills:
            console.print(
                f"  • {bill.bill_id}: {bill.endorse_count} endorse, "
                f"{bill.neutral_count} neutral, {bill.oppose_count} oppose"
            )
        for user in digest.users:
            console.print(f"  • {user.user_name or user.user_id}: {user.new_testimony_count} new")

        if digest.is_empty:
            console.print("[yellow]Nothing new - no email would be sent[/yellow]")
            sys.exit(0)

        html = workflow.renderer.render_digest(digest)
        if output:
            with open(output, "w", encoding="utf-8") as f:
                f.write(html)
            console.print(f"[green]HTML saved to: {output}[/green]")
        else:
            console.print(f"HTML rendered: {len(html)} characters")

        sys.exit(0)

    except click.BadParameter:
        raise
    except DigestError as e:
        console.print(f"[red]Preview Error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected Error:[/red] {e}")
        if ctx.obj["debug"]:
            import traceback

            console.print(traceback.format_exc())
        sys.exit(1)


@main.command("init-db")
def init_db_command():
    """Create the database tables."""
    from testimony_digest.data.db import create_engine_for_url, init_db

    settings = get_settings()
    try:
        init_db(create_engine_for_url(settings.database.url, echo=settings.database.echo))
    except Exception as e:
        console.print(f"[red]Database Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]Database ready:[/green] {settings.database.url}")


@main.command()
def config():
    """Display current configuration."""
    console.print("[blue]Testimony Digest Configuration[/blue]")

    missing = validate_required_settings()
    if missing:
        console.print("[red]Configuration Issues:[/red]")
        for item in missing:
            console.print(f"  • Missing: {item}")
        console.print()
    else:
        console.print("[green]Configuration Valid[/green]")
        console.print()

    print_configuration_summary()
    sys.exit(0 if not missing else 1)


@main.command()
@click.option("--host", help="Bind host (defaults to API_HOST)")
@click.option("--port", type=int, help="Bind port (defaults to API_PORT)")
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int]):
    """Serve the HTTP delivery trigger."""
    import uvicorn

    from testimony_digest.api import build_app

    settings = get_settings()
    if ctx.obj["dry_run"]:
        settings = settings.model_copy(update={"dry_run": True})

    uvicorn.run(
        build_app(settings),
        host=host or settings.api.host,
        port=port or settings.api.port,
    )


def _get_status_value(status) -> str:
    """Safely extract status value from enum or string."""
    if hasattr(status, "value"):
        return status.value
    return str(status) if status else "unknown"


def _display_cycle_result(result) -> None:
    """Display delivery cycle results."""
    status_value = _get_status_value(result.status)

    if status_value == "completed" and result.failed_count == 0:
        console.print("[green]Digest delivery completed successfully[/green]")
    elif status_value == "completed":
        console.print(f"[yellow]Digest delivery completed with {result.failed_count} failures[/yellow]")
    else:
        console.print("[red]Digest delivery failed[/red]")

    table = Table(title="Digest Delivery Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Status", status_value)
    table.add_row("Reference", result.reference_instant.strftime("%Y-%m-%d"))
    table.add_row(
        "Duration", f"{result.duration_seconds:.2f}s" if result.duration_seconds else "N/A"
    )
    table.add_row("Recipients", str(result.total_recipients))
    table.add_row("Sent", str(result.sent_count))
    table.add_row("No Activity", str(result.no_activity_count))
    table.add_row("Skipped", str(result.skipped_count))
    table.add_row("Failed", str(result.failed_count))
    if result.dry_run:
        table.add_row("Dry Run", str(result.dry_run_count))

    if result.error_message:
        table.add_row(
            "Error",
            (
                result.error_message[:100] + "..."
                if len(result.error_message) > 100
                else result.error_message
            ),
        )

    console.print(table)

    failed = [o for o in result.outcomes if _get_status_value(o.status) == "failed"]
    for outcome in failed[:10]:
        console.print(f"  [red]•[/red] {outcome.recipient_id}: {outcome.error_message}")


if __name__ == "__main__":
    main()
