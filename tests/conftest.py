"""Pytest hooks to apply ledger calls and optionally record them as fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from goal_escrow.state_io import call_to_json, event_to_json, state_to_json
from goal_escrow.state_transition import TransitionResult, apply_call
from goal_escrow.types import Call, LedgerState

_STATE_CASES: dict[str, list[dict[str, Any]]] = {}

StateTestGroup = Callable[[str, str, LedgerState, Call], "tuple[LedgerState, TransitionResult]"]


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--output",
        action="store",
        default=None,
        help="Output directory for generated fixtures",
    )


@pytest.fixture
def state_test_group() -> StateTestGroup:
    """Apply a call, collect the case under a fixture path and return the outcome."""

    def _state_test_group(
        rel_path: str, name: str, pre_state: LedgerState, call: Call
    ) -> tuple[LedgerState, TransitionResult]:
        post_state, result = apply_call(pre_state, call)
        _STATE_CASES.setdefault(rel_path, []).append(
            {
                "name": name,
                "pre_state": state_to_json(pre_state),
                "call": call_to_json(call),
                "expected": {
                    "ok": result.ok,
                    "error": result.error.code.name if result.error else None,
                    "events": [event_to_json(e) for e in result.events],
                    "post_state": state_to_json(post_state),
                },
            }
        )
        return post_state, result

    return _state_test_group


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    output_dir = session.config.getoption("--output")
    if not output_dir:
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    for rel_path, cases in _STATE_CASES.items():
        if not cases:
            continue
        target = out / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps({"cases": cases}, indent=2))
