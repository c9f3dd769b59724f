"""xrm_shared.tracing: leveled, timestamped, indentable trace lines.

TracerCore formats each line as ``timestamp + indentation + message`` and
hands it to a sink. Two sinks exist:

    PluginTracer  - the host's tracing service (plugin trace log)
    LoggingTracer - a stdlib ``logging`` logger (remote handlers, CloudWatch)
"""

from __future__ import annotations

import abc
import logging
import time
import traceback
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from .errors import InvalidPluginExecutionError

logger = logging.getLogger(__name__)


class TraceLevel(Enum):
    TRACE = "trace"
    DEBUG = "debug"
    INFORMATION = "information"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TraceTiming(Enum):
    NONE = "none"
    ELAPSED_SINCE_START = "elapsed_since_start"
    ELAPSED_SINCE_LAST = "elapsed_since_last"


_LOGGING_LEVELS = {
    TraceLevel.TRACE: logging.DEBUG,
    TraceLevel.DEBUG: logging.DEBUG,
    TraceLevel.INFORMATION: logging.INFO,
    TraceLevel.WARNING: logging.WARNING,
    TraceLevel.ERROR: logging.ERROR,
    TraceLevel.CRITICAL: logging.CRITICAL,
}


def smart_duration(seconds: float) -> str:
    """Human-scaled duration: ``250 ms``, ``3.2 s``, ``4 min 12 s``, ``1 h 5 min``."""
    if seconds < 1:
        return f"{int(round(seconds * 1000))} ms"
    if seconds < 60:
        return f"{seconds:.1f} s"
    if seconds < 3600:
        minutes, rest = divmod(int(seconds), 60)
        return f"{minutes} min {rest} s"
    hours, rest = divmod(int(seconds), 3600)
    return f"{hours} h {rest // 60} min"


class TracerCore(abc.ABC):
    """Base tracer; subclasses implement ``_trace_internal``."""

    def __init__(
        self,
        timing: TraceTiming = TraceTiming.NONE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timing = timing
        self._clock = clock
        self._started = clock()
        self._last = self._started
        self._indent = 0

    def _timestamp(self) -> str:
        now = self._clock()
        if self.timing is TraceTiming.ELAPSED_SINCE_START:
            elapsed = now - self._started
        elif self.timing is TraceTiming.ELAPSED_SINCE_LAST:
            elapsed = now - self._last
        else:
            self._last = now
            return ""
        self._last = now
        return f"{elapsed:8.3f} "

    @abc.abstractmethod
    def _trace_internal(
        self,
        message: str,
        timestamp: str,
        indent: int,
        level: TraceLevel = TraceLevel.INFORMATION,
    ) -> None:
        """Write one formatted line to the sink."""

    def trace(self, message: str, level: TraceLevel = TraceLevel.INFORMATION) -> None:
        self._trace_internal(message, self._timestamp(), self._indent, level)

    def trace_raw(self, message: str, level: TraceLevel = TraceLevel.INFORMATION) -> None:
        """Trace without timestamp or indentation."""
        self._trace_internal(message, "", 0, level)

    def trace_error(self, exc: BaseException) -> None:
        details = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self.trace(f"{type(exc).__name__}: {exc}\n{details}".rstrip(), TraceLevel.ERROR)

    def indent(self) -> None:
        self._indent += 1

    def dedent(self) -> None:
        self._indent = max(0, self._indent - 1)

    @contextmanager
    def indented(self) -> Iterator["TracerCore"]:
        self.indent()
        try:
            yield self
        finally:
            self.dedent()


class PluginTracer(TracerCore):
    """Writes to the host tracing service (any object with ``trace(str)``)."""

    def __init__(self, tracing_service: Any, clock: Callable[[], float] = time.monotonic) -> None:
        if tracing_service is None:
            raise InvalidPluginExecutionError("Failed to get tracing service")
        super().__init__(TraceTiming.ELAPSED_SINCE_LAST, clock)
        self.tracing_service = tracing_service

    def _trace_internal(self, message, timestamp, indent, level=TraceLevel.INFORMATION):
        self.tracing_service.trace(timestamp + "  " * indent + message)


class LoggingTracer(TracerCore):
    """Maps trace levels onto a stdlib logger; no timing prefix."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        super().__init__(TraceTiming.NONE)
        self.log = log or logger

    def _trace_internal(self, message, timestamp, indent, level=TraceLevel.INFORMATION):
        self.log.log(_LOGGING_LEVELS[level], "%s%s%s", timestamp, "  " * indent, message)


def trace_context(tracer: TracerCore, context: Any) -> None:
    """Trace one diagnostic block describing an execution context."""
    if context is None:
        tracer.trace("Context: <none>", TraceLevel.WARNING)
        return
    lines = [
        f"Message: {context.message_name}",
        f"Stage: {context.stage}",
        f"Entity: {context.primary_entity_name}",
        f"Depth: {context.depth}",
        f"User: {context.user_id}",
        f"Initiating user: {context.initiating_user_id}",
        f"Correlation: {context.correlation_id}",
        f"Input parameters: {', '.join(sorted(context.input_parameters or {})) or '-'}",
        f"Pre images: {', '.join(context.pre_entity_images or {}) or '-'}",
        f"Post images: {', '.join(context.post_entity_images or {}) or '-'}",
    ]
    if context.pre_entity_images_collection is not None:
        lines.append(f"Pre image collections: {len(context.pre_entity_images_collection)}")
    if context.post_entity_images_collection is not None:
        lines.append(f"Post image collections: {len(context.post_entity_images_collection)}")
    tracer.trace("Context\n" + "\n".join(f"  {line}" for line in lines), TraceLevel.DEBUG)
