#!/usr/bin/env python3
"""
goal-escrow command line tooling.

Deploys, seeds, inspects and drives a goal escrow ledger, either through a
local state file or through a running HTTP node (``--endpoint``).
"""

import asyncio
import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import click

from .client import LedgerClient
from .config import COIN_VALUE, LedgerConfig
from .errors import EscrowError
from .ledger import EscrowLedger
from .seed import description_hash, genesis_state, seed_ledger
from .state_io import event_to_json, goal_to_json, load_state, save_state, state_lock
from .test_accounts import lookup, name_of
from .types import Call, CallType, CreateGoalPayload, Event, Goal, GoalRef
from .yaml_dump import dump_yaml

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


# --- helpers ---


def parse_amount(text: str) -> int:
    """Parse a decimal coin amount ("0.05") into base units."""
    try:
        value = Decimal(text) * COIN_VALUE
    except InvalidOperation:
        raise click.BadParameter(f"not a decimal amount: {text}")
    if value != value.to_integral_value():
        raise click.BadParameter(f"too many decimals: {text}")
    return int(value)


def format_amount(amount: int) -> str:
    return f"{Decimal(amount) / COIN_VALUE:f}"


def _address(text: str) -> bytes:
    try:
        return lookup(text)
    except ValueError:
        raise click.BadParameter(f"unknown account or bad hex address: {text}")


@contextmanager
def _locked(config: LedgerConfig) -> Iterator[None]:
    """Serialize load-modify-save cycles on the local state file."""
    try:
        with state_lock(Path(config.state_path), config.lock_timeout):
            yield
    except TimeoutError as exc:
        raise click.ClickException(str(exc))


def _write_deploy_file(config: LedgerConfig) -> None:
    path = Path(config.deploy_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    record = {"state_path": str(Path(config.state_path).resolve())}
    if config.endpoint:
        record["endpoint"] = config.endpoint
    path.write_text(json.dumps(record, indent=2))
    logger.info(f"Ledger location written to {path}")


def _resolve_location(config: LedgerConfig, explicit_state: bool) -> None:
    """Fill state_path / endpoint from the deploy file unless given explicitly."""
    path = Path(config.deploy_file)
    if explicit_state or config.endpoint or not path.exists():
        return
    record = json.loads(path.read_text())
    config.state_path = record.get("state_path", config.state_path)
    config.endpoint = record.get("endpoint", config.endpoint)


def _load_ledger(config: LedgerConfig) -> EscrowLedger:
    path = Path(config.state_path)
    if not path.exists():
        raise click.ClickException(
            f"Ledger state not found at {path}. "
            "Run 'goal-escrow deploy' or 'goal-escrow seed' first."
        )
    try:
        return EscrowLedger(load_state(path))
    except ValueError as exc:
        raise click.ClickException(f"Ledger state at {path} is inconsistent: {exc}")


def _goal_view(goal: Goal) -> Dict[str, Any]:
    view = goal_to_json(goal)
    view["escrow_amount"] = format_amount(goal.escrow_amount)
    view["status"] = f"{goal.status.label} ({int(goal.status)})"
    view["expiry_utc"] = datetime.fromtimestamp(goal.expiry, tz=timezone.utc).isoformat()
    return view


def _print_goal_text(goal: Goal) -> None:
    expiry = datetime.fromtimestamp(goal.expiry, tz=timezone.utc).isoformat()
    click.echo(f"\n--- Goal ID: {goal.id} ---")
    click.echo(f"  Creator: {name_of(goal.creator)}")
    click.echo(f"  Referee: {name_of(goal.referee)}")
    click.echo(f"  Success Recipient: {name_of(goal.success_recipient)}")
    click.echo(f"  Failure Recipient: {name_of(goal.failure_recipient)}")
    click.echo(f"  Escrow Amount: {format_amount(goal.escrow_amount)}")
    click.echo(f"  Goal Hash: 0x{goal.description_hash.hex()}")
    click.echo(f"  Expiry: {expiry} (Unix: {goal.expiry})")
    click.echo(f"  Status: {goal.status.label} ({int(goal.status)})")


def _print_events(events: List[Event]) -> None:
    for event in events:
        click.echo(json.dumps(event_to_json(event)))


def _submit(config: LedgerConfig, call: Call) -> List[Event]:
    """Execute a call remotely or against the local state file."""
    if config.endpoint:
        async def run() -> List[Event]:
            async with LedgerClient(config.endpoint) as client:
                return await client.execute(call)

        return asyncio.run(run())

    with _locked(config):
        ledger = _load_ledger(config)
        events = ledger.execute(call)
        save_state(Path(config.state_path), ledger.snapshot())
    return events


# --- commands ---


@click.group()
@click.option("--state", "state_path", default=None, help="Ledger state file")
@click.option("--network", default=None, help="Network name for the deploy record")
@click.option("--deploy-dir", default=None, help="Directory holding deploy records")
@click.option("--endpoint", default=None, help="URL of a running ledger node")
@click.option("--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(
    ctx: click.Context,
    state_path: Optional[str],
    network: Optional[str],
    deploy_dir: Optional[str],
    endpoint: Optional[str],
    verbose: bool,
) -> None:
    """Goal escrow ledger tooling."""
    # Load config from environment, then override with CLI args
    config = LedgerConfig.from_env()
    if state_path:
        config.state_path = state_path
    if network:
        config.network = network
    if deploy_dir:
        config.deploy_dir = deploy_dir
    if endpoint:
        config.endpoint = endpoint
    if verbose or config.verbose:
        config.verbose = True
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.obj = config
    # Deploy-style commands choose their own location.
    if ctx.invoked_subcommand not in ("deploy", "seed"):
        _resolve_location(config, explicit_state=bool(state_path or os.environ.get("GOAL_ESCROW_STATE")))


@main.command()
@click.option("--timestamp", type=int, default=None, help="Genesis time (default: now)")
@click.pass_obj
def deploy(config: LedgerConfig, timestamp: Optional[int]) -> None:
    """Create an empty ledger with funded test accounts."""
    state = genesis_state(timestamp if timestamp is not None else int(time.time()))
    with _locked(config):
        save_state(Path(config.state_path), state)
    _write_deploy_file(config)
    click.echo(f"Ledger deployed to: {config.state_path}")


@main.command()
@click.option("--timestamp", type=int, default=None, help="Genesis time (default: now)")
@click.pass_obj
def seed(config: LedgerConfig, timestamp: Optional[int]) -> None:
    """Deploy a ledger and populate it with demo goals."""
    ledger = EscrowLedger(genesis_state(timestamp if timestamp is not None else int(time.time())))
    try:
        seeded = seed_ledger(ledger)
    except EscrowError as exc:
        raise click.ClickException(str(exc))
    with _locked(config):
        save_state(Path(config.state_path), ledger.snapshot())
    _write_deploy_file(config)
    for s in seeded:
        goal = ledger.get_goal(s.goal_id)
        click.echo(f"[{s.scenario}] Goal {s.goal_id} \"{s.description}\": {goal.status.label}")
    click.echo(f"Total goals created: {ledger.goal_count()}")


@main.command()
@click.option(
    "--format", "fmt",
    type=click.Choice(["text", "json", "yaml"]),
    default="text",
    help="Output format",
)
@click.pass_obj
def read(config: LedgerConfig, fmt: str) -> None:
    """Enumerate and print every goal."""
    if config.endpoint:
        async def fetch() -> List[Goal]:
            async with LedgerClient(config.endpoint) as client:
                return await client.list_goals()

        try:
            goals = asyncio.run(fetch())
        except EscrowError as exc:
            raise click.ClickException(str(exc))
    else:
        ledger = _load_ledger(config)
        goals = [ledger.get_goal(i) for i in range(ledger.goal_count())]

    if fmt == "json":
        click.echo(json.dumps([_goal_view(g) for g in goals], indent=2))
        return
    if fmt == "yaml":
        click.echo(dump_yaml({"goals": [_goal_view(g) for g in goals]}), nl=False)
        return

    click.echo(f"--- Found {len(goals)} goals ---")
    if not goals:
        click.echo("No goals found. The ledger might not be seeded yet.")
    for goal in goals:
        _print_goal_text(goal)


@main.command()
@click.option("--as", "caller", required=True, help="Creator account name or hex address")
@click.option("--referee", required=True)
@click.option("--success", "success_recipient", required=True)
@click.option("--failure", "failure_recipient", required=True)
@click.option("--amount", required=True, help="Escrow amount in coins, e.g. 0.05")
@click.option("--value", default=None, help="Deposited value (defaults to --amount)")
@click.option("--description", required=True, help="Goal terms; only their digest is stored")
@click.option("--expires-in", type=int, default=None, help="Seconds from the ledger's current time")
@click.option("--expiry", type=int, default=None, help="Absolute expiry timestamp")
@click.pass_obj
def create(
    config: LedgerConfig,
    caller: str,
    referee: str,
    success_recipient: str,
    failure_recipient: str,
    amount: str,
    value: Optional[str],
    description: str,
    expires_in: Optional[int],
    expiry: Optional[int],
) -> None:
    """Create and fund a goal."""
    if (expires_in is None) == (expiry is None):
        raise click.UsageError("exactly one of --expires-in / --expiry is required")
    if expiry is None:
        if config.endpoint:
            raise click.UsageError("--expires-in needs a local ledger; use --expiry")
        expiry = _load_ledger(config).now + expires_in

    escrow_amount = parse_amount(amount)
    payload = CreateGoalPayload(
        referee=_address(referee),
        success_recipient=_address(success_recipient),
        failure_recipient=_address(failure_recipient),
        escrow_amount=escrow_amount,
        description_hash=description_hash(description),
        expiry=expiry,
    )
    call = Call(
        caller=_address(caller),
        call_type=CallType.CREATE_GOAL,
        payload=payload,
        value=parse_amount(value) if value is not None else escrow_amount,
    )
    try:
        events = _submit(config, call)
    except EscrowError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Goal {events[0].goal_id} created")
    if config.verbose:
        _print_events(events)


def _resolve(config: LedgerConfig, caller: str, goal_id: int, call_type: CallType) -> List[Event]:
    call = Call(caller=_address(caller), call_type=call_type, payload=GoalRef(goal_id))
    try:
        return _submit(config, call)
    except EscrowError as exc:
        raise click.ClickException(str(exc))


@main.command()
@click.option("--as", "caller", required=True, help="Referee account name or hex address")
@click.argument("goal_id", type=int)
@click.pass_obj
def attest(config: LedgerConfig, caller: str, goal_id: int) -> None:
    """Attest success of a goal and pay the success recipient."""
    events = _resolve(config, caller, goal_id, CallType.ATTEST_SUCCESS)
    click.echo(f"Goal {goal_id} met, funds withdrawn")
    _print_events(events)


@main.command()
@click.option("--as", "caller", required=True, help="Failure recipient account name or hex address")
@click.argument("goal_id", type=int)
@click.pass_obj
def claim(config: LedgerConfig, caller: str, goal_id: int) -> None:
    """Claim an expired, unattested goal for the failure recipient."""
    events = _resolve(config, caller, goal_id, CallType.CLAIM_ON_FAILURE)
    click.echo(f"Goal {goal_id} failed, funds withdrawn")
    _print_events(events)


@main.command("advance-time")
@click.option("--seconds", type=int, default=None, help="Seconds to move forward")
@click.option("--to", "target", type=int, default=None, help="Absolute timestamp")
@click.pass_obj
def advance_time(config: LedgerConfig, seconds: Optional[int], target: Optional[int]) -> None:
    """Move the ledger clock forward."""
    if (seconds is None) == (target is None):
        raise click.UsageError("exactly one of --seconds / --to is required")
    if config.endpoint:
        if target is None:
            raise click.UsageError("--seconds needs a local ledger; use --to")

        async def run() -> int:
            async with LedgerClient(config.endpoint) as client:
                return await client.advance_time(target)

        try:
            now = asyncio.run(run())
        except EscrowError as exc:
            raise click.ClickException(str(exc))
    else:
        with _locked(config):
            ledger = _load_ledger(config)
            try:
                ledger.advance_time(target if target is not None else ledger.now + seconds)
            except EscrowError as exc:
                raise click.ClickException(str(exc))
            save_state(Path(config.state_path), ledger.snapshot())
        now = ledger.now
    click.echo(f"Ledger time: {now}")


@main.command()
@click.pass_obj
def digest(config: LedgerConfig) -> None:
    """Print the canonical state digest."""
    if config.endpoint:
        async def run() -> str:
            async with LedgerClient(config.endpoint) as client:
                return await client.get_state_digest()

        try:
            click.echo(asyncio.run(run()))
        except EscrowError as exc:
            raise click.ClickException(str(exc))
        return
    click.echo(_load_ledger(config).digest())


@main.command()
@click.pass_obj
def events(config: LedgerConfig) -> None:
    """Print the ledger's event log, one JSON object per line."""
    if config.endpoint:
        async def run() -> List[Event]:
            async with LedgerClient(config.endpoint) as client:
                return await client.events()

        try:
            log = asyncio.run(run())
        except EscrowError as exc:
            raise click.ClickException(str(exc))
    else:
        log = _load_ledger(config).events()
    _print_events(log)


@main.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", type=int, default=None, help="Bind port")
@click.pass_obj
def serve(config: LedgerConfig, host: Optional[str], port: Optional[int]) -> None:
    """Serve the ledger state file over HTTP."""
    from .server import run

    ledger = _load_ledger(config)
    run(ledger, host or config.host, port or config.port, state_path=config.state_path)


if __name__ == "__main__":
    main()
