"""Command-line interface for Swap Station."""

import asyncio

import click
from rich.console import Console
from rich.table import Table

console = Console()

ROLE_CHOICE = click.Choice(["DRIVER", "STAFF", "ADMIN"], case_sensitive=False)


def get_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create an event loop."""
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.new_event_loop()


def run_async(coro):
    """Run an async coroutine."""
    loop = get_event_loop()
    return loop.run_until_complete(coro)


def load_settings(config_path: str | None = None):
    """Load and validate settings.

    Args:
        config_path: Optional path to .env file.

    Returns:
        Validated Settings object.
    """
    from swapstation.config.settings import Settings, get_settings

    # Clear cached settings to pick up a new env file
    get_settings.cache_clear()

    try:
        from swapstation.config.logging import configure_logging

        settings = Settings(_env_file=config_path) if config_path else get_settings()
        configure_logging(settings)
        return settings
    except Exception as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        console.print("\n[yellow]Hint:[/yellow] Settings are read from SWAP_* environment variables or a .env file")
        raise SystemExit(1) from None


def make_identity(user_id: int, role: str):
    from swapstation.db.models.enums import UserRole
    from swapstation.services.identity import Identity

    return Identity(user_id=user_id, role=UserRole(role.upper()))


def fail(action: str, error: Exception, logger) -> None:
    """Report a failed command and exit with status 1."""
    from swapstation.utils.exceptions import SwapStationError

    if isinstance(error, SwapStationError):
        console.print(f"[red]{action} failed ({error.error_code}):[/red] {error.message}")
    else:
        console.print(f"[red]{action} failed:[/red] {error}")
    logger.error(f"{action} failed", error=str(error))
    raise SystemExit(1) from None


def format_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to .env configuration file",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None) -> None:
    """Swap Station - battery swap reservations, exchanges and reconciliation."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config


@cli.command()
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Initialize the database schema."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, create_tables

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    console.print("[bold]Initializing database...[/bold]")

    try:
        engine = create_engine(settings)
        create_tables(engine)
        console.print("[green]Database initialized successfully![/green]")
        logger.info("Database initialized", url=settings.database_url)
    except Exception as e:
        fail("Database initialization", e, logger)


@cli.group()
@click.pass_context
def scheduler(ctx: click.Context) -> None:
    """Run the reconciliation jobs."""
    pass


def print_sweep_results(results) -> None:
    table = Table(title="Sweep Results")
    table.add_column("Job", style="cyan")
    table.add_column("Found")
    table.add_column("Changed")
    table.add_column("Skipped")
    table.add_column("Notified")
    table.add_column("Errors")
    table.add_column("Duration")

    for stats in results:
        errors = f"[red]{len(stats.errors)}[/red]" if stats.errors else "0"
        table.add_row(
            stats.job_name,
            str(stats.items_found),
            str(stats.items_changed),
            str(stats.items_skipped),
            str(stats.notifications_sent),
            errors,
            f"{stats.duration_seconds:.2f}s",
        )
    console.print(table)

    for stats in results:
        if stats.errors:
            console.print(f"\n[red]Errors in {stats.job_name}:[/red]")
            for error in stats.errors:
                console.print(f"  - {error}")


@scheduler.command("run")
@click.option("--once", is_flag=True, help="Run every job once and exit")
@click.pass_context
def scheduler_run(ctx: click.Context, once: bool) -> None:
    """Run all jobs on their configured intervals."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, create_tables
    from swapstation.scheduler.runner import ReconciliationScheduler
    from swapstation.services.notifications import build_notifier

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    engine = create_engine(settings)
    create_tables(engine)
    runner = ReconciliationScheduler(engine, settings, build_notifier(settings))

    if once:
        print_sweep_results(run_async(runner.run_all()))
        return

    console.print(f"[bold]Scheduler running jobs:[/bold] {', '.join(runner.job_names)}")
    console.print("Press Ctrl+C to stop.")
    try:
        run_async(runner.run_forever())
    except KeyboardInterrupt:
        runner.stop()
        console.print("\n[yellow]Scheduler stopped[/yellow]")
        logger.info("Scheduler interrupted")


@scheduler.command("run-job")
@click.argument("name", type=click.Choice(["booking-expiry", "auto-charge", "health-check", "approval-timeout"]))
@click.pass_context
def scheduler_run_job(ctx: click.Context, name: str) -> None:
    """Run a single job once."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine
    from swapstation.scheduler.runner import ReconciliationScheduler
    from swapstation.services.notifications import build_notifier

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    try:
        engine = create_engine(settings)
        runner = ReconciliationScheduler(engine, settings, build_notifier(settings))
        stats = run_async(runner.run_job(name))
    except Exception as e:
        fail(f"Job {name}", e, logger)

    if stats is not None:
        print_sweep_results([stats])


@cli.group()
@click.pass_context
def booking(ctx: click.Context) -> None:
    """Manage booking reservations."""
    pass


def print_booking(b) -> None:
    table = Table(title=f"Booking {b.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", b.status.value)
    table.add_row("Driver", str(b.driver_id))
    table.add_row("Vehicle", str(b.vehicle_id))
    table.add_row("Station", str(b.station_id))
    table.add_row("Code", b.confirmation_code or "-")
    table.add_row("Battery", str(b.reserved_battery_id or "-"))
    table.add_row("Expires", format_time(b.reservation_expiry))
    console.print(table)


@booking.command("confirm")
@click.argument("booking_id", type=int)
@click.option("--staff-id", required=True, type=int, help="Confirming staff member")
@click.option("--role", type=ROLE_CHOICE, default="STAFF", help="Role of the confirming user")
@click.pass_context
def booking_confirm(ctx: click.Context, booking_id: int, staff_id: int, role: str) -> None:
    """Confirm a booking, reserve a battery and issue its code."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, get_session
    from swapstation.services.bookings import BookingManager
    from swapstation.services.notifications import Outbox, build_notifier

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)
    outbox = Outbox()

    try:
        engine = create_engine(settings)
        with get_session(engine) as session:
            manager = BookingManager(session, settings, outbox=outbox)
            confirmed = manager.confirm(booking_id, make_identity(staff_id, role))
    except Exception as e:
        fail("Confirmation", e, logger)

    run_async(outbox.flush(build_notifier(settings)))
    console.print(f"[green]Booking confirmed, code[/green] [bold]{confirmed.confirmation_code}[/bold]")
    print_booking(confirmed)


@booking.command("cancel")
@click.argument("booking_id", type=int)
@click.option("--user-id", required=True, type=int, help="Cancelling user")
@click.option("--role", type=ROLE_CHOICE, default="DRIVER", help="Role of the cancelling user")
@click.option("--force", is_flag=True, help="Cancel a CONFIRMED booking and free its battery (staff)")
@click.option("--reason", type=str, help="Reason recorded on a forced cancellation")
@click.pass_context
def booking_cancel(
    ctx: click.Context, booking_id: int, user_id: int, role: str, force: bool, reason: str | None
) -> None:
    """Cancel a booking."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, get_session
    from swapstation.services.bookings import BookingManager
    from swapstation.services.notifications import Outbox, build_notifier

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)
    outbox = Outbox()
    actor = make_identity(user_id, role)

    try:
        engine = create_engine(settings)
        with get_session(engine) as session:
            manager = BookingManager(session, settings, outbox=outbox)
            if force:
                cancelled = manager.force_cancel(booking_id, actor, reason)
            else:
                cancelled = manager.cancel(booking_id, actor)
    except Exception as e:
        fail("Cancellation", e, logger)

    run_async(outbox.flush(build_notifier(settings)))
    console.print("[green]Booking cancelled[/green]")
    print_booking(cancelled)


@booking.command("list")
@click.option("--station", "station_id", required=True, type=int, help="Station ID")
@click.option("--staff-id", required=True, type=int, help="Requesting staff member")
@click.pass_context
def booking_list(ctx: click.Context, station_id: int, staff_id: int) -> None:
    """List bookings waiting for confirmation at a station."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, get_session
    from swapstation.services.bookings import BookingManager

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    try:
        engine = create_engine(settings)
        with get_session(engine) as session:
            pending = BookingManager(session, settings).list_pending_for_station(
                station_id, make_identity(staff_id, "STAFF")
            )
    except Exception as e:
        fail("Listing", e, logger)

    if not pending:
        console.print("[yellow]No pending bookings.[/yellow]")
        return

    table = Table(title=f"Pending bookings at station {station_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Driver")
    table.add_column("Vehicle")
    table.add_column("Requested")
    for b in pending:
        table.add_row(str(b.id), str(b.driver_id), str(b.vehicle_id), format_time(b.created_at))
    console.print(table)


@cli.command()
@click.argument("code")
@click.pass_context
def redeem(ctx: click.Context, code: str) -> None:
    """Redeem a confirmation code and execute the battery exchange."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, get_session
    from swapstation.services.swaps import SwapEngine

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    try:
        engine = create_engine(settings)
        with get_session(engine) as session:
            transaction = SwapEngine(session, settings).redeem(code)
    except Exception as e:
        fail("Redemption", e, logger)

    table = Table(title=f"Swap transaction {transaction.id}")
    table.add_column("", style="cyan")
    table.add_column("Battery")
    table.add_column("Model")
    table.add_column("Charge (%)")
    table.add_column("Health (%)")
    table.add_row(
        "Out (mounted)",
        str(transaction.swap_out_battery_id),
        transaction.swap_out_battery_model or "-",
        f"{transaction.swap_out_battery_charge_level:.1f}",
        f"{transaction.swap_out_battery_health:.1f}",
    )
    if transaction.swap_in_battery_id is not None:
        table.add_row(
            "In (returned)",
            str(transaction.swap_in_battery_id),
            transaction.swap_in_battery_model or "-",
            f"{transaction.swap_in_battery_charge_level:.1f}",
            f"{transaction.swap_in_battery_health:.1f}",
        )
    console.print(table)
    console.print("[green]Swap completed[/green]")


@cli.group()
@click.pass_context
def battery(ctx: click.Context) -> None:
    """Inspect and maintain battery units."""
    pass


@battery.command("list")
@click.option("--station", "station_id", type=int, help="Filter by station ID")
@click.option(
    "--status",
    type=click.Choice(["AVAILABLE", "PENDING", "IN_USE", "CHARGING", "MAINTENANCE"], case_sensitive=False),
    help="Filter by status",
)
@click.pass_context
def battery_list(ctx: click.Context, station_id: int | None, status: str | None) -> None:
    """List battery units with charge, health and location."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, get_session
    from swapstation.db.models.enums import BatteryStatus
    from swapstation.db.repositories.battery import BatteryRepository
    from swapstation.services.battery_store import classify_health, estimated_minutes_to_full

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    try:
        engine = create_engine(settings)
        with get_session(engine) as session:
            repo = BatteryRepository(session)
            if status:
                units = repo.list_by_status(BatteryStatus(status.upper()), station_id=station_id)
            else:
                units = [u for u in repo.get_all() if station_id is None or u.current_station_id == station_id]
    except Exception as e:
        fail("Listing", e, logger)

    if not units:
        console.print("[yellow]No batteries found.[/yellow]")
        return

    table = Table(title="Batteries")
    table.add_column("ID", style="cyan")
    table.add_column("Serial")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Charge (%)")
    table.add_column("Health (%)")
    table.add_column("Band")
    table.add_column("Location")
    table.add_column("To full")

    for u in units:
        if u.mounted_vehicle_id is not None:
            location = f"vehicle {u.mounted_vehicle_id}"
        elif u.current_station_id is not None:
            location = f"station {u.current_station_id}"
        else:
            location = "-"
        table.add_row(
            str(u.id),
            u.serial_number,
            u.battery_type,
            u.status.value,
            f"{u.charge_level:.1f}",
            f"{u.state_of_health:.1f}",
            classify_health(u.state_of_health, settings).value,
            location,
            f"{estimated_minutes_to_full(u, settings)} min" if u.charge_level < 100 else "-",
        )
    console.print(table)


@battery.command("complete-maintenance")
@click.argument("battery_id", type=int)
@click.argument("state_of_health", type=float)
@click.option("--staff-id", required=True, type=int, help="Operator who did the maintenance")
@click.pass_context
def battery_complete_maintenance(
    ctx: click.Context, battery_id: int, state_of_health: float, staff_id: int
) -> None:
    """Record a maintenance result for a battery."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, get_session
    from swapstation.services.battery_store import BatteryStore

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    try:
        engine = create_engine(settings)
        with get_session(engine) as session:
            unit = BatteryStore(session, settings).complete_maintenance(
                battery_id, state_of_health, make_identity(staff_id, "STAFF")
            )
    except Exception as e:
        fail("Maintenance", e, logger)

    console.print(f"[green]Battery {unit.id} is now {unit.status.value}[/green] (health {unit.state_of_health:.1f}%)")


@cli.group()
@click.pass_context
def credit(ctx: click.Context) -> None:
    """Inspect and grant subscription credit."""
    pass


@credit.command("show")
@click.argument("driver_id", type=int)
@click.pass_context
def credit_show(ctx: click.Context, driver_id: int) -> None:
    """Show a driver's active subscription credit."""
    from swapstation.db.engine import create_engine, get_session
    from swapstation.services.ledger import CreditLedger

    settings = load_settings(ctx.obj.get("config_path"))
    engine = create_engine(settings)
    with get_session(engine) as session:
        active = CreditLedger(session).get_active(driver_id)

    if active is None:
        console.print(f"[yellow]Driver {driver_id} has no active subscription.[/yellow]")
        return
    console.print(
        f"Driver {driver_id}: [bold]{active.remaining_swaps}[/bold] swaps left, "
        f"valid {active.start_date} to {active.end_date}"
    )


@credit.command("grant")
@click.argument("driver_id", type=int)
@click.option("--package-id", required=True, type=int, help="Purchased package")
@click.option("--swaps", required=True, type=int, help="Number of swaps in the package")
@click.option("--days", "duration_days", required=True, type=int, help="Validity in days")
@click.pass_context
def credit_grant(ctx: click.Context, driver_id: int, package_id: int, swaps: int, duration_days: int) -> None:
    """Open a subscription credit after a package purchase."""
    from swapstation.config.logging import get_logger
    from swapstation.db.engine import create_engine, get_session
    from swapstation.services.ledger import CreditLedger

    settings = load_settings(ctx.obj.get("config_path"))
    logger = get_logger(__name__)

    try:
        engine = create_engine(settings)
        with get_session(engine) as session:
            granted = CreditLedger(session).grant(driver_id, package_id, swaps, duration_days)
    except Exception as e:
        fail("Grant", e, logger)

    console.print(f"[green]Granted {granted.remaining_swaps} swaps until {granted.end_date}[/green]")


@cli.command()
@click.option("--host", type=str, help="Bind address (defaults to SWAP_API_HOST)")
@click.option("--port", type=int, help="Port (defaults to SWAP_API_PORT)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from swapstation.api.app import create_app

    settings = load_settings(ctx.obj.get("config_path"))
    app = create_app(settings)
    uvicorn.run(app, host=host or settings.api_host, port=port or settings.api_port)


if __name__ == "__main__":
    cli()
