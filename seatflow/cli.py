"""
CLI interface for seatflow.

Provides commands to inspect the seat inventory, reserve seats through
the orchestrations, approve pending batches, and inspect persisted
instance history.
"""

import json
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from rich.table import Table

from seatflow import __version__
from seatflow.config import CONFIG_FILENAME, SeatflowConfig, get_seatflow_home, load_config
from seatflow.errors import InstanceNotFoundError, InvalidReservationError, SeatflowError
from seatflow.utils import console, setup_logging


def _get_config(ctx: click.Context) -> SeatflowConfig:
    return ctx.obj["config"]


def _build_service(ctx: click.Context):
    from seatflow.service import ReservationService, create_runtime

    config = _get_config(ctx)
    runtime = create_runtime(config)
    return ReservationService(runtime, wait_seconds=config.completion_wait_seconds)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


def _require_store(ctx: click.Context) -> None:
    if not _get_config(ctx).store_dir:
        click.echo("✗ This command needs store_dir set in config.yaml", err=True)
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="seatflow")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Path to config.yaml (default: $SEATFLOW_HOME/config.yaml)")
@click.option("--store-dir", type=click.Path(file_okay=False, path_type=Path),
              help="Persist instance history in this directory")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, config_path: Optional[Path], store_dir: Optional[Path], verbose: bool):
    """
    seatflow - Durable seat reservation orchestrations.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except FileNotFoundError:
        # No config yet: run with defaults, `seatflow init` writes one
        config = SeatflowConfig()
    except SeatflowError as e:
        if ctx.invoked_subcommand != "init":
            click.echo(f"✗ Invalid configuration: {e}", err=True)
            raise SystemExit(1)
        config = SeatflowConfig()

    if store_dir is not None:
        config.store_dir = str(store_dir)
    if verbose:
        config.log_level = "DEBUG"

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=Path(config.log_file) if config.log_file else None,
    )
    ctx.obj["config"] = config


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize seatflow configuration."""
    home = get_seatflow_home()
    home.mkdir(parents=True, exist_ok=True)

    cfg_path = home / CONFIG_FILENAME
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = SeatflowConfig(store_dir=str(home / "history")).to_dict()
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))
    click.echo(f"Initialized seatflow config at {cfg_path}")


@main.command("seats")
@click.pass_context
def seats(ctx):
    """Show the seat inventory."""
    from seatflow.inventory import load_inventory

    inventory = load_inventory(_get_config(ctx).inventory_file)

    table = Table(title="Seat inventory")
    table.add_column("Seat")
    table.add_column("Partition")
    table.add_column("Available")
    for seat in inventory.all_seats():
        table.add_row(seat.code, seat.partition.value, "yes" if seat.available else "no")
    console.print(table)


@main.command("reserve")
@click.option("--id", "requester_id", required=True, help="Requester id")
@click.option("--name", "requester_name", required=True, help="Requester name")
@click.option("--preference", type=click.Choice(["aisle", "middle", "window"]), required=True,
              help="Seat location preference")
@click.pass_context
def reserve(ctx, requester_id: str, requester_name: str, preference: str):
    """
    Reserve one seat.

    Examples:

        seatflow reserve --id 1 --name Ana --preference window
    """
    service = _build_service(ctx)
    try:
        ack = service.submit_reservation(
            {"id": requester_id, "name": requester_name, "locationPreference": preference}
        )
        _echo_json(ack.to_dict())
    finally:
        service.runtime.shutdown(wait=False)


def _load_batch(path: Path) -> list[Any]:
    text = path.read_text()
    data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    if isinstance(data, dict) and "reservations" in data:
        data = data["reservations"]
    if not isinstance(data, list):
        raise click.UsageError(f"{path} must contain a list of reservations")
    return data


@main.command("reserve-batch")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--approve-as", help="Approve the batch immediately as this approver")
@click.option("--no-wait", is_flag=True, help="Return as soon as the batch is scheduled")
@click.pass_context
def reserve_batch(ctx, file: Path, approve_as: Optional[str], no_wait: bool):
    """
    Reserve seats for a batch held for approval.

    FILE is a YAML or JSON list of {id, name, locationPreference}.

    Examples:

        seatflow reserve-batch batch.yaml --approve-as supervisor

        seatflow --store-dir ./history reserve-batch batch.yaml --no-wait
    """
    service = _build_service(ctx)
    try:
        ack = service.submit_batch(_load_batch(file), wait=False)
        if approve_as:
            ack = service.submit_approval(ack.instance_id, approve_as, wait=not no_wait)
        elif not no_wait:
            ack = service.acknowledge(ack.instance_id, ack.message)
        _echo_json(ack.to_dict())
    except InvalidReservationError as e:
        click.echo(f"✗ Invalid batch: {e}", err=True)
        raise SystemExit(1)
    finally:
        service.runtime.shutdown(wait=False)


@main.command("approve")
@click.argument("instance_id")
@click.option("--approver", required=True, help="Approver identity")
@click.pass_context
def approve(ctx, instance_id: str, approver: str):
    """Approve a persisted batch and wait for its result."""
    _require_store(ctx)
    service = _build_service(ctx)
    try:
        ack = service.submit_approval(instance_id, approver, wait=True)
        _echo_json(ack.to_dict())
    except InstanceNotFoundError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    finally:
        service.runtime.shutdown(wait=False)


@main.command("status")
@click.argument("instance_id")
@click.pass_context
def status(ctx, instance_id: str):
    """Show a persisted instance."""
    from seatflow.engine import FileHistoryStore

    _require_store(ctx)
    instance = FileHistoryStore(_get_config(ctx).store_dir).get_instance(instance_id)
    if instance is None:
        click.echo(f"✗ Orchestration instance not found: {instance_id}", err=True)
        raise SystemExit(1)
    _echo_json(instance.to_dict())


@main.command("history")
@click.argument("instance_id")
@click.pass_context
def history(ctx, instance_id: str):
    """Show the persisted history of an instance."""
    from seatflow.engine import FileHistoryStore

    _require_store(ctx)
    store = FileHistoryStore(_get_config(ctx).store_dir)
    if store.get_instance(instance_id) is None:
        click.echo(f"✗ Orchestration instance not found: {instance_id}", err=True)
        raise SystemExit(1)

    table = Table(title=f"History {instance_id}")
    table.add_column("#", justify="right")
    table.add_column("Event")
    table.add_column("Task")
    table.add_column("Name")
    table.add_column("Detail")
    for n, event in enumerate(store.get_history(instance_id)):
        detail = event.result if event.result is not None else (event.error or event.input)
        table.add_row(
            str(n),
            event.event_type.value,
            "" if event.task_id is None else str(event.task_id),
            event.name or "",
            "" if detail is None else json.dumps(detail),
        )
    console.print(table)


if __name__ == "__main__":
    main()
