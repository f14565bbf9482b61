"""CLI specs (deploy / seed / read / create / attest / claim)."""

from __future__ import annotations

import fcntl
import json
import os
import threading
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from goal_escrow.cli import _submit, format_amount, main, parse_amount
from goal_escrow.config import COIN_VALUE, LedgerConfig
from goal_escrow.errors import EscrowError
from goal_escrow.state_io import load_state
from goal_escrow.test_accounts import CAROL, EVE, GRACE
from goal_escrow.types import Call, CallType, GoalRef, GoalStatus

T = 1_700_000_000


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in (
        "GOAL_ESCROW_STATE",
        "GOAL_ESCROW_ENDPOINT",
        "GOAL_ESCROW_DEPLOY_DIR",
        "GOAL_ESCROW_LOCK_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def _invoke(workdir: Path, *args: str):
    base = ["--deploy-dir", str(workdir / "deployed")]
    return CliRunner().invoke(main, base + list(args))


def _seed(workdir: Path) -> Path:
    state = workdir / "ledger.json"
    result = _invoke(workdir, "--state", str(state), "seed", "--timestamp", str(T))
    assert result.exit_code == 0, result.output
    return state


def test_seed_writes_state_and_deploy_record(workdir: Path) -> None:
    state = _seed(workdir)
    record = json.loads((workdir / "deployed" / "localhost.json").read_text())
    assert Path(record["state_path"]) == state.resolve()
    assert load_state(state).goal_count() == 6


def test_read_uses_deploy_record(workdir: Path) -> None:
    _seed(workdir)
    result = _invoke(workdir, "read")
    assert result.exit_code == 0, result.output
    assert "Found 6 goals" in result.output
    assert "Withdrawn (Success) (4)" in result.output
    assert "Withdrawn (Failure/Expired) (5)" in result.output


def test_read_yaml_and_json(workdir: Path) -> None:
    _seed(workdir)
    result = _invoke(workdir, "read", "--format", "yaml")
    assert result.exit_code == 0, result.output
    goals = yaml.safe_load(result.output)["goals"]
    assert len(goals) == 6
    assert goals[0]["escrow_amount"] == "0.05"

    result = _invoke(workdir, "read", "--format", "json")
    assert json.loads(result.output)[1]["status"] == "Withdrawn (Success) (4)"


def test_read_without_ledger(workdir: Path) -> None:
    result = _invoke(workdir, "--state", str(workdir / "missing.json"), "read")
    assert result.exit_code != 0
    assert "Ledger state not found" in result.output


def test_create_attest_claim(workdir: Path) -> None:
    state = _seed(workdir)

    result = _invoke(
        workdir, "create",
        "--as", "alice", "--referee", "bob", "--success", "carol", "--failure", "dave",
        "--amount", "0.5", "--description", "Run a marathon", "--expires-in", "3600",
    )
    assert result.exit_code == 0, result.output
    assert "Goal 6 created" in result.output

    carol_before = load_state(state).accounts[CAROL].balance

    result = _invoke(workdir, "attest", "--as", "dave", "6")
    assert result.exit_code != 0
    assert "NOT_REFEREE" in result.output

    result = _invoke(workdir, "attest", "--as", "bob", "6")
    assert result.exit_code == 0, result.output
    assert "FundsWithdrawn" in result.output

    result = _invoke(workdir, "attest", "--as", "bob", "6")
    assert result.exit_code != 0
    assert "NOT_PENDING" in result.output

    # Goal 2 (scenario C) is expired and unclaimed.
    grace_before = load_state(state).accounts[GRACE].balance
    result = _invoke(workdir, "claim", "--as", "grace", "2")
    assert result.exit_code == 0, result.output

    after = load_state(state)
    assert after.accounts[CAROL].balance == carol_before + COIN_VALUE // 2
    assert after.accounts[GRACE].balance == grace_before + after.goals[2].escrow_amount
    assert after.goals[2].status == GoalStatus.WITHDRAWN_FAILURE
    assert after.goals[6].status == GoalStatus.WITHDRAWN_SUCCESS


def test_create_rejects_mismatched_value(workdir: Path) -> None:
    _seed(workdir)
    result = _invoke(
        workdir, "create",
        "--as", "alice", "--referee", "bob", "--success", "carol", "--failure", "dave",
        "--amount", "1", "--value", "0.5", "--description", "x", "--expires-in", "60",
    )
    assert result.exit_code != 0
    assert "INCORRECT_ESCROW_AMOUNT" in result.output


def test_claim_before_expiry_then_advance(workdir: Path) -> None:
    _seed(workdir)
    result = _invoke(workdir, "claim", "--as", "grace", "0")
    assert result.exit_code != 0
    assert "NOT_YET_EXPIRED" in result.output

    result = _invoke(workdir, "advance-time", "--seconds", str(31 * 86_400))
    assert result.exit_code == 0, result.output

    result = _invoke(workdir, "claim", "--as", "grace", "0")
    assert result.exit_code == 0, result.output


def test_advance_time_and_digest(workdir: Path) -> None:
    _seed(workdir)
    first = _invoke(workdir, "digest").output.strip()
    assert len(first) == 64

    result = _invoke(workdir, "advance-time", "--to", str(T))
    assert result.exit_code != 0
    assert "TIMESTAMP_REGRESSION" in result.output

    result = _invoke(workdir, "advance-time", "--seconds", "10")
    assert result.exit_code == 0
    assert _invoke(workdir, "digest").output.strip() != first


def test_amount_parsing() -> None:
    assert parse_amount("0.05") == COIN_VALUE * 5 // 100
    assert parse_amount("1") == COIN_VALUE
    assert format_amount(COIN_VALUE * 3 // 100) == "0.03"


def test_events_command(workdir: Path) -> None:
    _seed(workdir)
    result = _invoke(workdir, "events")
    assert result.exit_code == 0, result.output
    kinds = [json.loads(line)["event"] for line in result.output.splitlines()]
    assert kinds[0] == "GoalCreated"
    assert kinds.count("GoalCreated") == 6
    assert kinds.count("FundsWithdrawn") == 2


def test_inconsistent_custody_is_rejected(workdir: Path) -> None:
    state = _seed(workdir)
    data = json.loads(state.read_text())
    data["custody"] = "0"
    state.write_text(json.dumps(data))

    result = _invoke(workdir, "claim", "--as", "grace", "2")
    assert result.exit_code != 0
    assert "inconsistent" in result.output


def test_held_lock_blocks_local_calls(workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    state = _seed(workdir)
    before = state.read_text()
    monkeypatch.setenv("GOAL_ESCROW_LOCK_TIMEOUT", "0.05")

    fd = os.open(str(state.with_name(state.name + ".lock")), os.O_CREAT | os.O_RDWR)
    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    try:
        result = _invoke(workdir, "attest", "--as", "carol", "2")
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)

    assert result.exit_code != 0
    assert "locked by another process" in result.output
    assert state.read_text() == before

    result = _invoke(workdir, "attest", "--as", "carol", "2")
    assert result.exit_code == 0, result.output


def test_concurrent_resolutions_on_state_file_pay_once(workdir: Path) -> None:
    """Referee and failure recipient race on the expired goal C; one wins."""
    state = _seed(workdir)
    config = LedgerConfig(state_path=str(state))
    start = load_state(state)
    barrier = threading.Barrier(2)
    outcomes: dict[str, object] = {}

    def submit(label: str, call: Call) -> None:
        barrier.wait()
        try:
            outcomes[label] = _submit(config, call)
        except EscrowError as exc:
            outcomes[label] = exc

    calls = {
        "attest": Call(caller=CAROL, call_type=CallType.ATTEST_SUCCESS, payload=GoalRef(2)),
        "claim": Call(caller=GRACE, call_type=CallType.CLAIM_ON_FAILURE, payload=GoalRef(2)),
    }
    threads = [threading.Thread(target=submit, args=item) for item in calls.items()]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [k for k, v in outcomes.items() if not isinstance(v, EscrowError)]
    assert len(winners) == 1

    after = load_state(state)
    amount = after.goals[2].escrow_amount
    paid_eve = after.accounts[EVE].balance - start.accounts[EVE].balance
    paid_grace = after.accounts[GRACE].balance - start.accounts[GRACE].balance
    if winners == ["attest"]:
        assert after.goals[2].status == GoalStatus.WITHDRAWN_SUCCESS
        assert (paid_eve, paid_grace) == (amount, 0)
    else:
        assert after.goals[2].status == GoalStatus.WITHDRAWN_FAILURE
        assert (paid_eve, paid_grace) == (0, amount)
    assert after.custody == start.custody - amount
