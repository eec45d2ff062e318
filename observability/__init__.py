"""Observability: structured logging and optional Logfire tracing.

setup_logging:
    Console + rotating file handlers, text or JSON, with run/job context.

setup_tracing / trace_operation:
    Optional Logfire spans around dispatch cycles and digest runs.

Example:
    >>> from observability import setup_logging, trace_operation
    >>> setup_logging(config)
    >>> with trace_operation("dispatch_cycle"):
    ...     pass
"""

from observability.logging import (
    clear_context,
    set_job_context,
    set_run_context,
    setup_logging,
)
from observability.tracing import setup_tracing, trace_operation, TracingContext

__all__ = [
    "setup_logging",
    "set_run_context",
    "set_job_context",
    "clear_context",
    "setup_tracing",
    "trace_operation",
    "TracingContext",
]
