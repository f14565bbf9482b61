"""HTTP node and client specs."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from aiohttp import test_utils

from goal_escrow.client import LedgerClient
from goal_escrow.config import GENESIS_TIMESTAMP
from goal_escrow.errors import ErrorCode, EscrowError
from goal_escrow.ledger import EscrowLedger
from goal_escrow.seed import description_hash, genesis_state
from goal_escrow.server import create_app
from goal_escrow.state_io import call_to_json, load_state
from goal_escrow.test_accounts import ALICE, BOB, CAROL, DAVE
from goal_escrow.types import Call, CallType, CreateGoalPayload, GoalRef, GoalStatus


def _create_call(amount: int = 100, expiry: int = GENESIS_TIMESTAMP + 60) -> Call:
    return Call(
        caller=ALICE,
        call_type=CallType.CREATE_GOAL,
        payload=CreateGoalPayload(
            referee=BOB,
            success_recipient=CAROL,
            failure_recipient=DAVE,
            escrow_amount=amount,
            description_hash=description_hash("ship it"),
            expiry=expiry,
        ),
        value=amount,
    )


def _run(coro_fn, ledger: EscrowLedger, state_path: str | None = None):
    async def main():
        app = create_app(ledger, state_path=state_path)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            return await coro_fn(client)

    return asyncio.run(main())


def test_execute_and_query() -> None:
    ledger = EscrowLedger(genesis_state())

    async def scenario(client: test_utils.TestClient):
        resp = await client.post("/call/execute", json=call_to_json(_create_call()))
        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        assert body["events"][0]["event"] == "GoalCreated"
        assert body["events"][0]["goal_id"] == 0

        resp = await client.get("/goals/count")
        assert (await resp.json())["count"] == 1

        resp = await client.get("/goals/0")
        goal = (await resp.json())["goal"]
        assert goal["status"] == int(GoalStatus.PENDING)
        assert goal["escrow_amount"] == "100"
        assert goal["referee"] == BOB.hex()

    _run(scenario, ledger)
    assert ledger.goal_count() == 1


def test_error_status_codes() -> None:
    ledger = EscrowLedger(genesis_state())
    ledger.create_goal(ALICE, BOB, CAROL, DAVE, 10, description_hash("a"), GENESIS_TIMESTAMP + 5, 10)

    async def scenario(client: test_utils.TestClient):
        resp = await client.get("/goals/9")
        assert resp.status == 404
        assert (await resp.json())["error"] == "GOAL_NOT_FOUND"

        wrong = Call(caller=DAVE, call_type=CallType.ATTEST_SUCCESS, payload=GoalRef(0))
        resp = await client.post("/call/execute", json=call_to_json(wrong))
        assert resp.status == 403
        assert (await resp.json())["error"] == "NOT_REFEREE"

        early = Call(caller=DAVE, call_type=CallType.CLAIM_ON_FAILURE, payload=GoalRef(0))
        resp = await client.post("/call/execute", json=call_to_json(early))
        assert resp.status == 409
        assert (await resp.json())["error"] == "NOT_YET_EXPIRED"

        resp = await client.post("/call/execute", json=call_to_json(_create_call(amount=0)))
        assert resp.status == 400
        assert (await resp.json())["error"] == "ZERO_ESCROW_AMOUNT"

        resp = await client.post("/call/execute", data="not json")
        assert resp.status == 400
        assert (await resp.json())["error"] == "INVALID_PAYLOAD"

        resp = await client.post("/call/execute", json={"call_type": "create_goal"})
        assert resp.status == 400

        resp = await client.get("/goals/abc")
        assert resp.status == 400

    _run(scenario, ledger)
    assert ledger.get_goal(0).status == GoalStatus.PENDING


def test_time_reset_digest_and_events(tmp_path: Path) -> None:
    ledger = EscrowLedger(genesis_state())
    genesis_digest = ledger.digest()
    state_file = tmp_path / "state.json"

    async def scenario(client: test_utils.TestClient):
        await client.post("/call/execute", json=call_to_json(_create_call(amount=7, expiry=GENESIS_TIMESTAMP + 1)))

        resp = await client.post("/time/advance", json={"timestamp": GENESIS_TIMESTAMP - 1})
        assert resp.status == 409
        assert (await resp.json())["error"] == "TIMESTAMP_REGRESSION"

        resp = await client.post("/time/advance", json={"timestamp": GENESIS_TIMESTAMP + 2})
        assert (await resp.json())["timestamp"] == GENESIS_TIMESTAMP + 2

        claim = Call(caller=DAVE, call_type=CallType.CLAIM_ON_FAILURE, payload=GoalRef(0))
        resp = await client.post("/call/execute", json=call_to_json(claim))
        assert resp.status == 200

        resp = await client.get("/events")
        kinds = [e["event"] for e in (await resp.json())["events"]]
        assert kinds == ["GoalCreated", "GoalStatusChanged", "FundsWithdrawn"]

        resp = await client.get("/state/digest")
        digest = (await resp.json())["state_digest"]
        assert digest != genesis_digest

        resp = await client.post("/state/reset")
        assert (await resp.json())["state_digest"] == genesis_digest

    _run(scenario, ledger, state_path=str(state_file))
    assert ledger.goal_count() == 0
    assert load_state(state_file).goal_count() == 0
    assert json.loads(state_file.read_text())["goals"] == []


def test_ledger_client_events_and_reset() -> None:
    ledger = EscrowLedger(genesis_state())
    genesis_digest = ledger.digest()

    async def main():
        app = create_app(ledger)
        async with test_utils.TestServer(app) as server:
            async with LedgerClient(str(server.make_url(""))) as client:
                await client.execute(_create_call())
                events = await client.events()
                assert [type(e).__name__ for e in events] == ["GoalCreated"]
                assert events[0].goal_id == 0

                assert await client.reset_state() == genesis_digest
                assert await client.events() == []
                assert await client.goal_count() == 0

    asyncio.run(main())


def test_ledger_client() -> None:
    ledger = EscrowLedger(genesis_state())

    async def main():
        app = create_app(ledger)
        async with test_utils.TestServer(app) as server:
            async with LedgerClient(str(server.make_url(""))) as client:
                events = await client.execute(_create_call())
                assert events[0].goal_id == 0
                await client.execute(
                    Call(caller=BOB, call_type=CallType.ATTEST_SUCCESS, payload=GoalRef(0))
                )
                goals = await client.list_goals()
                assert [g.status for g in goals] == [GoalStatus.WITHDRAWN_SUCCESS]
                assert await client.get_state_digest() == ledger.digest()
                try:
                    await client.get_goal(3)
                except EscrowError as exc:
                    assert exc.code == ErrorCode.GOAL_NOT_FOUND
                else:
                    raise AssertionError("missing goal must raise")

    asyncio.run(main())
    assert ledger.balance_of(CAROL) == 100
