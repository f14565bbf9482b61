"""
HTTP client for a remote goal escrow node.
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .errors import ErrorCode, EscrowError
from .state_io import call_to_json, event_from_json, goal_from_json
from .types import Call, Event, Goal

logger = logging.getLogger(__name__)


class LedgerClient:
    """HTTP client for a single ledger node."""

    def __init__(self, endpoint: str, timeout: float = 30.0):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Initialize HTTP session."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        self.session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        """Close HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "LedgerClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if self.session is None:
            raise RuntimeError("client is not connected")
        async with self.session.request(method, f"{self.endpoint}{path}", json=body) as resp:
            data = await resp.json()
        if not data.get("success", False):
            name = data.get("error", "UNKNOWN")
            code = ErrorCode.__members__.get(name, ErrorCode.UNKNOWN)
            raise EscrowError(code, data.get("message", f"HTTP {resp.status}"))
        return data

    async def goal_count(self) -> int:
        data = await self._request("GET", "/goals/count")
        return int(data["count"])

    async def get_goal(self, goal_id: int) -> Goal:
        data = await self._request("GET", f"/goals/{goal_id}")
        return goal_from_json(data["goal"])

    async def list_goals(self) -> List[Goal]:
        """Enumerate goals ``0..count-1``."""
        count = await self.goal_count()
        return [await self.get_goal(i) for i in range(count)]

    async def execute(self, call: Call) -> List[Event]:
        data = await self._request("POST", "/call/execute", call_to_json(call))
        return [event_from_json(e) for e in data.get("events", [])]

    async def advance_time(self, timestamp: int) -> int:
        data = await self._request("POST", "/time/advance", {"timestamp": timestamp})
        return int(data["timestamp"])

    async def get_state_digest(self) -> str:
        data = await self._request("GET", "/state/digest")
        return data["state_digest"]

    async def reset_state(self) -> str:
        data = await self._request("POST", "/state/reset")
        logger.info(f"Reset ledger at {self.endpoint}")
        return data["state_digest"]

    async def events(self) -> List[Event]:
        data = await self._request("GET", "/events")
        return [event_from_json(e) for e in data.get("events", [])]
