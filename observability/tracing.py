"""Optional tracing using Logfire/OpenTelemetry.

When enabled, Logfire instruments every PydanticAI agent call and
``trace_operation`` opens a span around a dispatch cycle or digest run.
When disabled (the default) spans are no-ops and only a debug timing line
is logged.

Requirements:
    pip install logfire

Enable via configuration:
    ENABLE_LOGFIRE=true
    LOGFIRE_TOKEN=your-token  # Optional for cloud dashboard
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator

logger = logging.getLogger(__name__)


@dataclass
class TracingContext:
    """Process-wide tracing state."""

    enabled: bool = False
    service_name: str = "saveflow"
    token: str = ""
    _logfire_configured: bool = field(default=False, init=False)


_context = TracingContext()


def setup_tracing(
    enabled: bool = False,
    service_name: str = "saveflow",
    token: str = "",
) -> TracingContext:
    """Configure Logfire and instrument PydanticAI.

    Tracing is an optional extra: a missing package or a configuration
    failure is logged and leaves tracing disabled.
    """
    _context.enabled = enabled
    _context.service_name = service_name
    _context.token = token

    if not enabled:
        logger.debug("Tracing disabled")
        return _context

    try:
        import logfire

        logfire.configure(service_name=service_name, token=token or None)
        logfire.instrument_pydantic_ai()
        _context._logfire_configured = True
        logger.info("Logfire tracing enabled | service=%s", service_name)

    except ImportError:
        logger.warning("Logfire not installed. Tracing disabled.")
        _context.enabled = False
    except Exception as e:
        logger.error("Failed to configure Logfire | error=%s", e, exc_info=True)
        _context.enabled = False

    return _context


def tracing_enabled() -> bool:
    return _context.enabled and _context._logfire_configured


@contextmanager
def trace_operation(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[dict[str, Any], None, None]:
    """Trace a block as one span.

    Yields a dict; keys added to it during the block are attached to the
    span as result attributes.

    Example:
        >>> with trace_operation("dispatch_cycle", {"run_id": run_id}) as attrs:
        ...     result = await dispatcher.dispatch_once()
        ...     attrs["processed"] = result.processed
    """
    start = time.monotonic()
    result_attrs: dict[str, Any] = {}
    try:
        if tracing_enabled():
            import logfire

            with logfire.span(name, **(attributes or {})) as span:
                yield result_attrs
                for key, value in result_attrs.items():
                    span.set_attribute(key, value)
        else:
            yield result_attrs
    finally:
        logger.debug("Operation complete | name=%s duration=%.2fs", name, time.monotonic() - start)
