"""CLI for the trip dispatcher."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path

import click

from trip_dispatcher import __version__
from trip_dispatcher.config import DEFAULT_CONFIG_PATH, ConfigError, DispatcherConfig, load_config
from trip_dispatcher.core.logging import configure_logging
from trip_dispatcher.errors import MalformedSchedule, StoreError
from trip_dispatcher.models import TripDraft, parse_schedule

logger = logging.getLogger(__name__)

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path to the dispatcher TOML config",
)


def _load(config_path: Path) -> DispatcherConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Trip dispatcher: passenger and driver trip lifecycle over chat."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")


@cli.command()
@config_option
def run(config_path: Path) -> None:
    """Start the dispatcher daemon until SIGINT/SIGTERM."""
    config = _load(config_path)
    click.echo(f"Starting dispatcher {config.name} from {config_path}")
    asyncio.run(_run_daemon(config, config_path))


async def _run_daemon(config: DispatcherConfig, config_path: Path) -> None:
    from trip_dispatcher.daemon import DispatcherDaemon

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    daemon = DispatcherDaemon(config, config_path=config_path)
    try:
        await daemon.start()
        click.echo(
            f"Dispatcher {config.name} running; webhook on port {config.channel.webhook_port}"
        )
        await shutdown_event.wait()
    finally:
        await daemon.shutdown()


@cli.command()
@config_option
def sweep(config_path: Path) -> None:
    """Run a single sweep tick and exit."""
    config = _load(config_path)
    configure_logging(config.logging, dispatcher_name=config.name)
    report = asyncio.run(_sweep_once(config))
    click.echo(
        f"Sweep {report.outcome}: {report.active}/{report.loaded} active trips, "
        f"{report.transitions} transition(s), {report.skipped} skipped"
    )
    if report.outcome != "ok":
        raise SystemExit(1)


async def _sweep_once(config: DispatcherConfig):
    from trip_dispatcher.daemon import open_backends
    from trip_dispatcher.dispatcher import DispatchContext, Dispatcher

    async with open_backends(config) as backends:
        dispatcher = Dispatcher(
            DispatchContext(store=backends.store, channel=backends.channel, tz=config.tz),
            name=config.name,
            max_inflight=config.max_inflight,
        )
        return await dispatcher.sweep()


@cli.command("add-trip")
@config_option
@click.option("--passenger-name", required=True)
@click.option("--passenger-phone", required=True)
@click.option("--date", "scheduled_date", required=True, help="YYYY-MM-DD or DD/MM/YYYY")
@click.option("--time", "scheduled_time", required=True, help="HH:MM")
@click.option("--origin", required=True)
@click.option("--destination", required=True)
@click.option("--driver-name", default=None)
@click.option("--driver-phone", default=None)
def add_trip(
    config_path: Path,
    passenger_name: str,
    passenger_phone: str,
    scheduled_date: str,
    scheduled_time: str,
    origin: str,
    destination: str,
    driver_name: str | None,
    driver_phone: str | None,
) -> None:
    """Append a new trip to the record store."""
    config = _load(config_path)
    try:
        parse_schedule(scheduled_date, scheduled_time, config.tz)
    except MalformedSchedule as exc:
        raise click.BadParameter(str(exc), param_hint="--date/--time") from exc

    draft = TripDraft(
        passenger_name=passenger_name,
        passenger_phone=passenger_phone,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        origin=origin,
        destination=destination,
        driver_name=driver_name,
        driver_phone=driver_phone,
    )
    configure_logging(config.logging, dispatcher_name=config.name)
    try:
        trip_id = asyncio.run(_append(config, draft))
    except StoreError as exc:
        raise click.ClickException(f"Could not add trip: {exc}") from exc
    click.echo(f"Added trip {trip_id}")


async def _append(config: DispatcherConfig, draft: TripDraft) -> str:
    from trip_dispatcher.daemon import open_backends

    async with open_backends(config) as backends:
        trip = await backends.store.append(draft)
        return trip.id


@cli.command("check-config")
@config_option
def check_config(config_path: Path) -> None:
    """Validate the config file and print a summary."""
    config = _load(config_path)
    click.echo(f"Config OK: {config_path}")
    click.echo(f"  dispatcher:   {config.name} ({config.timezone})")
    click.echo(f"  sweep cron:   {config.sweep_cron}")
    click.echo(
        f"  inbound:      {config.inbound.worker_count} worker(s), "
        f"capacity {config.inbound.queue_capacity}"
    )
    store = config.store
    where = f"{store.db_name}.{store.table}" if store.type == "postgres" else "process memory"
    click.echo(f"  store:        {store.type} ({where})")
    click.echo(f"  channel:      {config.channel.type} via {config.channel.base_url}")
    click.echo(
        f"  webhook:      {config.channel.webhook_host}:{config.channel.webhook_port}"
    )


if __name__ == "__main__":
    cli()
