"""Structured telemetry for prompt round-trips and tool invocations"""
import structlog
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Any, Dict, List


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class Telemetry:
    """Traces bridge operations and keeps per-outcome counters"""

    def __init__(self, name: str = "agent_bridge"):
        self.logger = structlog.get_logger(name)
        self.counters: Dict[str, int] = {}
        self.metrics: Dict[str, float] = {}

    def _count(self, key: str):
        self.counters[key] = self.counters.get(key, 0) + 1

    @asynccontextmanager
    async def trace_task(self, name: str, **context):
        """Time async operations with context"""
        start = perf_counter()
        self.logger.debug(f"{name}.start", **context)

        try:
            yield
        except Exception as e:
            self._count(f"{name}.failed")
            self.logger.error(
                f"{name}.failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((perf_counter() - start) * 1000, 2),
                **context
            )
            raise
        else:
            self._count(f"{name}.complete")
            self.logger.info(
                f"{name}.complete",
                duration_ms=round((perf_counter() - start) * 1000, 2),
                **context
            )

    def log_event(self, event_type: str, level: str = "info", **context: Any):
        """Count and log a named bridge event"""
        self._count(event_type)
        getattr(self.logger, level)(event_type, **context)

    def tool_rejected(self, tool_name: str, available_tools: List[str]):
        self.log_event(
            "tool.rejected",
            level="warning",
            tool_name=tool_name,
            available_tools=available_tools
        )

    def session_event(self, event_type: str, **context: Any):
        self.log_event(f"session.{event_type}", **context)

    def log_metric(self, metric_name: str, value: float, **context):
        """Log metric with context; the latest value is kept in ``metrics``"""
        self.metrics[metric_name] = value
        self.logger.info(
            "metric",
            metric_name=metric_name,
            value=value,
            **context
        )


# Global telemetry instance
telemetry = Telemetry()
