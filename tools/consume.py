"""Consume generated fixtures and validate them against the ledger specs."""

from __future__ import annotations

import json
from pathlib import Path

from goal_escrow.state_digest import compute_state_digest
from goal_escrow.state_io import call_from_json, event_to_json, state_from_json
from goal_escrow.state_transition import apply_call, verify_call

ROOT = Path(__file__).resolve().parent.parent


def _check_state_cases(path: Path) -> list[str]:
    failures: list[str] = []
    data = json.loads(path.read_text())

    for case in data.get("cases", []):
        pre_state = state_from_json(case["pre_state"])
        call = call_from_json(case["call"])
        checked = verify_call(pre_state, call)
        post_state, result = apply_call(pre_state, call)

        expected = case["expected"]
        if result.ok != expected["ok"]:
            failures.append(f"{case['name']}: ok_mismatch")
            continue

        actual_err = result.error.code.name if result.error else None
        if actual_err != expected["error"]:
            failures.append(f"{case['name']}: error_mismatch")
            continue

        # Payout rejections only surface when the transfer is applied.
        if not checked.ok and checked.error.code.name != actual_err:
            failures.append(f"{case['name']}: verify_mismatch")
            continue

        if [event_to_json(e) for e in result.events] != expected["events"]:
            failures.append(f"{case['name']}: events_mismatch")
            continue

        expected_state = state_from_json(expected["post_state"])
        if compute_state_digest(post_state) != compute_state_digest(expected_state):
            failures.append(f"{case['name']}: state_digest_mismatch")

    return failures


def main() -> None:
    fixtures = ROOT / "fixtures"

    failures: list[str] = []
    for path in sorted(fixtures.glob("**/*.json")):
        failures.extend(_check_state_cases(path))

    if failures:
        for f in failures:
            print("FAIL", f)
        raise SystemExit(1)

    print("All fixtures passed")


if __name__ == "__main__":
    main()
