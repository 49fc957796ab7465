"""
Structured logging context with trace IDs for reconciliation cycles.

Each cycle (reconcile, auction refresh, expiry scan) gets a trace_id so the
per-record log lines it produces can be correlated.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Optional

from marketsync.core.json_utils import dumps


class CycleContext:
    """Per-cycle context for structured logging with trace ID correlation."""

    def __init__(
        self,
        operation: str,
        trace_id: Optional[str] = None,
        parent_trace_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize context.

        Args:
            operation: cycle kind (e.g. 'reconcile', 'expiry_scan')
            trace_id: unique ID for this cycle (auto-generated if None)
            parent_trace_id: trace ID of the cycle that spawned this one
            logger: logger instance (defaults to the package logger)
        """
        self.operation = operation
        self.trace_id = trace_id or uuid.uuid4().hex[:12]
        self.parent_trace_id = parent_trace_id
        self.start_time = time.time()
        self.logger = logger or logging.getLogger("marketsync")
        self.tags: dict[str, Any] = {}

    def set_tag(self, key: str, value: Any) -> None:
        self.tags[key] = value

    def log(self, event: str, level: str = "info", **data: Any) -> None:
        payload = {
            "event": event,
            "op": self.operation,
            "trace_id": self.trace_id,
            **({"parent_trace_id": self.parent_trace_id} if self.parent_trace_id else {}),
            "elapsed_ms": round(self.elapsed_ms(), 1),
            **self.tags,
            **data,
        }
        log_func = getattr(self.logger, level, self.logger.info)
        log_func(dumps(payload))

    def debug(self, event: str, **data: Any) -> None:
        self.log(event, level="debug", **data)

    def info(self, event: str, **data: Any) -> None:
        self.log(event, level="info", **data)

    def warning(self, event: str, **data: Any) -> None:
        self.log(event, level="warning", **data)

    def error(self, event: str, **data: Any) -> None:
        self.log(event, level="error", **data)

    def child(self, sub_operation: str) -> "CycleContext":
        """Context for a follow-up cycle triggered by this one."""
        child = CycleContext(
            operation=sub_operation,
            parent_trace_id=self.trace_id,
            logger=self.logger,
        )
        return child

    def elapsed_ms(self) -> float:
        return (time.time() - self.start_time) * 1000.0
