"""Optional Logfire tracing.

When enabled, logfire is configured once and pydantic-ai agent calls are
instrumented automatically; `trace_operation` opens a span around each
pipeline stage. When disabled (the default) spans are no-ops that only
log the stage duration at DEBUG.

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
from typing import Any, Iterator

logger = logging.getLogger(__name__)


@dataclass
class TracingContext:
    """Process-wide tracing state."""
    enabled: bool = False
    service_name: str = "seo-intel"
    _logfire_configured: bool = field(default=False, init=False)


_context = TracingContext()


def setup_tracing(
    enabled: bool = False,
    service_name: str = "seo-intel",
    token: str = "",
) -> TracingContext:
    """Set up tracing with Logfire.

    Safe to call more than once; logfire is configured on the first
    enabled call only.
    """
    _context.enabled = enabled
    _context.service_name = service_name

    if not enabled:
        logger.debug("Tracing disabled")
        return _context
    if _context._logfire_configured:
        return _context

    try:
        import logfire

        logfire.configure(service_name=service_name, token=token or None)
        logfire.instrument_pydantic_ai()
        _context._logfire_configured = True
        logger.info("Logfire tracing enabled | service=%s", service_name)
    except ImportError:
        logger.warning("Logfire not installed, tracing disabled (pip install 'seo-intel[tracing]')")
        _context.enabled = False
    except Exception as e:
        logger.error("Failed to configure Logfire | error=%s", e)
        _context.enabled = False

    return _context


@contextmanager
def trace_operation(name: str, **attributes: Any) -> Iterator[dict[str, Any]]:
    """Span around an operation.

    Yields a dict; keys added to it during the operation are attached to
    the span when it closes.
    """
    start = time.monotonic()
    result_attrs: dict[str, Any] = {}
    try:
        if _context.enabled and _context._logfire_configured:
            import logfire

            with logfire.span(name, **attributes) as span:
                yield result_attrs
                for key, value in result_attrs.items():
                    span.set_attribute(key, value)
        else:
            yield result_attrs
    finally:
        logger.debug("Operation finished | name=%s duration=%.2fs", name, time.monotonic() - start)
