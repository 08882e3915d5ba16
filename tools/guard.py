"""Invocation guard: the only path from an agent request to a tool handler"""
import inspect
import logging
from typing import Any, Dict, List, Optional

from core.errors import HandlerFailure, UnknownToolError, WhitelistViolation
from core.telemetry import Telemetry, telemetry as default_telemetry
from .models import CallRecord, CallStatus, RejectionRecord
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

REJECTION_REASON = "Not in whitelist"


class InvocationGuard:
    """
    Validates and executes tool invocations against a registry.

    Keeps two append-only audit logs: ``call_log`` (accepted invocations,
    each updated once in place to a terminal status) and ``rejection_log``.
    """

    def __init__(self, registry: ToolRegistry, telemetry: Optional[Telemetry] = None):
        self.registry = registry
        self.telemetry = telemetry or default_telemetry
        self.call_log: List[CallRecord] = []
        self.rejection_log: List[RejectionRecord] = []

    def validate(self, name: str) -> None:
        """Raise WhitelistViolation (and log it) unless name is whitelisted"""
        if self.registry.is_whitelisted(name):
            return

        available = self.registry.whitelist
        self.rejection_log.append(RejectionRecord(
            attempted_tool=name,
            reason=REJECTION_REASON,
            available_tools=available
        ))
        self.telemetry.tool_rejected(name, available)
        logger.warning(f"Rejected tool call: {name} (available: {available})")
        raise WhitelistViolation(name, available)

    async def invoke(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Run a whitelisted tool and return its result.

        Raises:
            WhitelistViolation: name is not whitelisted
            UnknownToolError: whitelisted but nothing registered under name
            HandlerFailure: the handler raised; the record is marked failed
        """
        params = dict(params or {})
        self.validate(name)

        record = CallRecord(tool_name=name, params=params)
        self.call_log.append(record)

        definition = self.registry.get(name)
        if definition is None:
            record.status = CallStatus.FAILED
            record.error = f"Unknown tool: {name}"
            logger.error(f"Whitelisted tool has no handler: {name}")
            raise UnknownToolError(name)

        async with self.telemetry.trace_task("tool.invoke", tool_name=name):
            try:
                result = definition.handler(params)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                record.status = CallStatus.FAILED
                record.error = str(e)
                logger.error(f"Tool {name} failed: {e}")
                raise HandlerFailure(name, e) from e

        record.status = CallStatus.COMPLETED
        record.result = result
        logger.info(f"Tool {name} completed")
        return result

    def recent_calls(self, limit: Optional[int] = None) -> List[CallRecord]:
        """Tail view of the call log"""
        return self._tail(self.call_log, limit)

    def recent_rejections(self, limit: Optional[int] = None) -> List[RejectionRecord]:
        """Tail view of the rejection log"""
        return self._tail(self.rejection_log, limit)

    @staticmethod
    def _tail(log: list, limit: Optional[int]) -> list:
        if limit is None:
            return list(log)
        if limit <= 0:
            return []
        return log[-limit:]
