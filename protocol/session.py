"""Session state machine and request/response correlation.

States::

    unstarted -> awaiting_handshake -> ready -> (active <-> awaiting_response)* -> closed

Request ids come from one counter per machine and are never reused, so the
first session-creation request always gets id 1 and a relaunch after
``closed`` continues from the last id issued. Every tracked request resolves
exactly once: by its matching response, by its timeout, or by ``close``.
Whichever comes second is a no-op.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

from .jsonrpc import SESSION_REQUEST_ID

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNSTARTED = "unstarted"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    READY = "ready"
    ACTIVE = "active"
    AWAITING_RESPONSE = "awaiting_response"
    CLOSED = "closed"


class Session(BaseModel):
    """Per-process session data; cleared when the process exits"""
    session_id: Optional[str] = None
    initialized: bool = False
    instruction: str = ""

    def reset(self):
        self.session_id = None
        self.initialized = False


class RpcOutcome(BaseModel):
    """Resolution of a tracked request; errors and timeouts share this path"""
    request_id: Any = None
    result: Any = None
    error: Optional[Dict[str, Any]] = None
    timeout: bool = False

    @property
    def is_error(self) -> bool:
        return self.error is not None


class RequestIdCounter:
    """Monotonically increasing request ids"""

    def __init__(self):
        self.last = 0

    def next(self) -> int:
        self.last += 1
        return self.last


@dataclass
class PendingRequest:
    id: int
    method: str
    future: asyncio.Future
    timeout_handle: Optional[asyncio.TimerHandle] = None


class SessionStateMachine:
    """Owns session state, the id counter and the pending-request table"""

    def __init__(self, instruction: str = ""):
        self.state = SessionState.UNSTARTED
        self.session = Session(instruction=instruction)
        self.ids = RequestIdCounter()
        self.pending: Dict[int, PendingRequest] = {}
        self.session_request_id: Optional[int] = None
        self._ready: Optional[asyncio.Future] = None

    @property
    def is_ready(self) -> bool:
        return self.session.session_id is not None and self.state not in (
            SessionState.UNSTARTED, SessionState.AWAITING_HANDSHAKE, SessionState.CLOSED
        )

    def next_request_id(self) -> int:
        return self.ids.next()

    def begin(self) -> int:
        """Process launched; returns the id to use for session creation"""
        self.state = SessionState.AWAITING_HANDSHAKE
        self.session.reset()
        self._ready = asyncio.get_running_loop().create_future()
        self.session_request_id = self.next_request_id()
        if self.session_request_id != SESSION_REQUEST_ID:
            logger.info(f"Relaunched session uses request id {self.session_request_id}")
        return self.session_request_id

    def mark_initialized(self):
        self.session.initialized = True

    async def wait_ready(self, timeout: float) -> Optional[str]:
        """Session id once ready, None on timeout; raises if the process closed"""
        if self._ready is None:
            return self.session.session_id
        try:
            return await asyncio.wait_for(asyncio.shield(self._ready), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Session not ready after {timeout}s")
            return None

    def track(self, request_id: int, method: str, timeout: float) -> asyncio.Future:
        """Register a pending request; the future resolves to an RpcOutcome"""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        entry = PendingRequest(id=request_id, method=method, future=future)
        entry.timeout_handle = loop.call_later(timeout, self._expire, request_id)
        self.pending[request_id] = entry
        if self.state in (SessionState.READY, SessionState.ACTIVE):
            self.state = SessionState.AWAITING_RESPONSE
        return future

    def discard(self, request_id: int):
        """Drop a tracked request that never reached the agent"""
        entry = self.pending.pop(request_id, None)
        if entry is None:
            return
        if entry.timeout_handle:
            entry.timeout_handle.cancel()
        entry.future.cancel()
        if not self.pending and self.state == SessionState.AWAITING_RESPONSE:
            self.state = SessionState.ACTIVE

    def handle_response(self, message: Dict[str, Any]) -> bool:
        """Route a response/error envelope; False if nothing was waiting for it"""
        request_id = message.get("id")

        if request_id is not None and request_id == self.session_request_id:
            return self._session_created(message)

        entry = self.pending.pop(request_id, None) if request_id is not None else None
        if entry is None:
            logger.debug(f"Ignoring response for unknown or expired request {request_id}")
            return False

        self._settle(entry, RpcOutcome(
            request_id=request_id,
            result=message.get("result"),
            error=message.get("error")
        ))
        return True

    def close(self, error: BaseException):
        """Process gone: fail everything outstanding and forget the session"""
        self.state = SessionState.CLOSED
        self.session.reset()
        self.session_request_id = None

        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)
            # Mark retrieved; wait_ready re-raises it for anyone awaiting
            self._ready.exception()

        pending, self.pending = self.pending, {}
        for entry in pending.values():
            if entry.timeout_handle:
                entry.timeout_handle.cancel()
            if not entry.future.done():
                entry.future.set_exception(error)
                entry.future.exception()
        if pending:
            logger.warning(f"Failed {len(pending)} pending request(s): {error}")

    def _session_created(self, message: Dict[str, Any]) -> bool:
        result = message.get("result")
        session_id = result.get("sessionId") if isinstance(result, dict) else None
        self.session_request_id = None

        if not session_id:
            logger.error(f"Session creation failed: {message.get('error') or result}")
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(None)
            return True

        self.session.session_id = str(session_id)
        self.state = SessionState.READY
        logger.info(f"Session ready: {self.session.session_id}")
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(self.session.session_id)
        return True

    def _expire(self, request_id: int):
        entry = self.pending.pop(request_id, None)
        if entry is None:
            return
        logger.warning(f"Request {request_id} ({entry.method}) timed out")
        entry.timeout_handle = None
        self._settle(entry, RpcOutcome(request_id=request_id, timeout=True))

    def _settle(self, entry: PendingRequest, outcome: RpcOutcome):
        if entry.timeout_handle:
            entry.timeout_handle.cancel()
        if not entry.future.done():
            entry.future.set_result(outcome)
        if not self.pending and self.state == SessionState.AWAITING_RESPONSE:
            self.state = SessionState.ACTIVE
