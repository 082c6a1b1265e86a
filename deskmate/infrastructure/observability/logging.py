import structlog
import logging
import sys
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Any, Optional
import os

def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "deskmate"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )

class AgentLogger:
    """Specialized logger for turn processing events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_turn_transition(
        self,
        session_id: str,
        from_status: Optional[str],
        to_status: str,
        reason: Optional[str] = None
    ):
        """Log agent status transitions within a session room"""

        self.logger.info(
            "turn_transition",
            session_id=session_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason
        )

    def log_action_dispatch(
        self,
        action_type: str,
        session_id: str,
        success: bool = True,
        duration_ms: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log the outcome of dispatching an action"""

        self.logger.info(
            "action_dispatch",
            action_type=action_type,
            session_id=session_id,
            success=success,
            duration_ms=duration_ms,
            details=details or {}
        )

    def log_memory_update(
        self,
        session_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log session memory writes"""

        self.logger.info(
            "memory_update",
            session_id=session_id,
            action=action,
            details=details or {}
        )

# Global logger instance
agent_logger = AgentLogger("deskmate")

@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avgMs": round(self.total_ms / self.count, 2) if self.count else 0.0,
            "minMs": round(self.min_ms or 0.0, 2),
            "maxMs": round(self.max_ms, 2),
        }


class MetricsCollector:
    """
    In-process turn metrics: latencies per stage (turn, pipeline, completion,
    action_dispatch), counters for turn outcomes and dispatched actions, and the
    active-connection gauge. Served as-is on /health; nothing is exported.
    """

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies[operation].add(duration_ms)
        agent_logger.logger.debug("metric", kind="latency", operation=operation, duration_ms=round(duration_ms, 2), **(tags or {}))

    def increment_counter(self, name: str, value: int = 1):
        self.counters[name] += value

    def set_gauge(self, name: str, value: float):
        self.gauges[name] = value

    def get_metrics_summary(self) -> Dict[str, Any]:
        return {
            "latency": {operation: stats.summary() for operation, stats in sorted(self.latencies.items())},
            "counters": dict(sorted(self.counters.items())),
            "gauges": dict(self.gauges),
        }


# Global metrics collector
metrics = MetricsCollector()
