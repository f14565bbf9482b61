"""
HTTP node exposing an ``EscrowLedger``.

Endpoints mirror the query surface external tooling needs: single-goal
lookup, the running goal count, call submission and a state digest.
"""

import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

from aiohttp import web

from .errors import ErrorCategory, ErrorCode, EscrowError
from .ledger import EscrowLedger
from .state_io import call_from_json, event_to_json, goal_to_json, save_state
from .types import LedgerState

logger = logging.getLogger(__name__)

LEDGER_KEY = web.AppKey("ledger", EscrowLedger)
GENESIS_KEY = web.AppKey("genesis", LedgerState)
STATE_PATH_KEY = web.AppKey("state_path", str)

_HTTP_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.RESOURCE: 409,
    ErrorCategory.STATE: 409,
    ErrorCategory.LOOKUP: 404,
}


def _ok(**fields: Any) -> web.Response:
    body: Dict[str, Any] = {"success": True}
    body.update(fields)
    return web.json_response(body)


def _error(exc: EscrowError) -> web.Response:
    status = _HTTP_STATUS.get(exc.category, 500)
    return web.json_response(
        {"success": False, "error": exc.code.name, "message": exc.message},
        status=status,
    )


def _persist(app: web.Application) -> None:
    path = app[STATE_PATH_KEY]
    if path:
        save_state(Path(path), app[LEDGER_KEY].snapshot())


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError as e:
        raise EscrowError(ErrorCode.INVALID_PAYLOAD, f"invalid JSON body: {e}")
    if not isinstance(data, dict):
        raise EscrowError(ErrorCode.INVALID_PAYLOAD, "JSON body must be an object")
    return data


async def handle_goal_count(request: web.Request) -> web.Response:
    return _ok(count=request.app[LEDGER_KEY].goal_count())


async def handle_get_goal(request: web.Request) -> web.Response:
    ledger = request.app[LEDGER_KEY]
    try:
        goal_id = int(request.match_info["goal_id"])
    except ValueError:
        return _error(EscrowError(ErrorCode.INVALID_PAYLOAD, "goal id must be an integer"))
    try:
        goal = ledger.get_goal(goal_id)
    except EscrowError as exc:
        return _error(exc)
    return _ok(goal=goal_to_json(goal))


async def handle_execute(request: web.Request) -> web.Response:
    ledger = request.app[LEDGER_KEY]
    try:
        data = await _read_json(request)
        try:
            call = call_from_json(data)
        except (KeyError, ValueError, TypeError) as e:
            raise EscrowError(ErrorCode.INVALID_PAYLOAD, f"malformed call: {e}")
        events = ledger.execute(call)
    except EscrowError as exc:
        logger.info(f"Call rejected: {exc}")
        return _error(exc)

    _persist(request.app)
    return _ok(events=[event_to_json(e) for e in events])


async def handle_advance_time(request: web.Request) -> web.Response:
    ledger = request.app[LEDGER_KEY]
    try:
        data = await _read_json(request)
        try:
            timestamp = int(data["timestamp"])
        except (KeyError, ValueError, TypeError):
            raise EscrowError(ErrorCode.INVALID_PAYLOAD, "timestamp must be an integer")
        ledger.advance_time(timestamp)
    except EscrowError as exc:
        return _error(exc)

    _persist(request.app)
    return _ok(timestamp=ledger.now)


async def handle_digest(request: web.Request) -> web.Response:
    return _ok(state_digest=request.app[LEDGER_KEY].digest())


async def handle_reset(request: web.Request) -> web.Response:
    ledger = request.app[LEDGER_KEY]
    ledger.reset(deepcopy(request.app[GENESIS_KEY]))
    _persist(request.app)
    logger.info("Ledger reset to genesis")
    return _ok(state_digest=ledger.digest())


async def handle_events(request: web.Request) -> web.Response:
    events = request.app[LEDGER_KEY].events()
    return _ok(events=[event_to_json(e) for e in events])


def create_app(
    ledger: EscrowLedger,
    genesis: Optional[LedgerState] = None,
    state_path: Optional[str] = None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        ledger: Ledger to serve
        genesis: State restored by ``POST /state/reset`` (defaults to the
            ledger's state at startup)
        state_path: If set, the state file rewritten after every mutation
    """
    app = web.Application()
    app[LEDGER_KEY] = ledger
    app[GENESIS_KEY] = genesis if genesis is not None else ledger.snapshot()
    app[STATE_PATH_KEY] = state_path or ""

    app.router.add_get("/goals/count", handle_goal_count)
    app.router.add_get("/goals/{goal_id}", handle_get_goal)
    app.router.add_post("/call/execute", handle_execute)
    app.router.add_post("/time/advance", handle_advance_time)
    app.router.add_get("/state/digest", handle_digest)
    app.router.add_post("/state/reset", handle_reset)
    app.router.add_get("/events", handle_events)
    return app


def run(ledger: EscrowLedger, host: str, port: int, state_path: Optional[str] = None) -> None:
    app = create_app(ledger, state_path=state_path)
    logger.info(f"Serving goal escrow ledger on http://{host}:{port}")
    web.run_app(app, host=host, port=port, print=None)
