"""Logging and optional tracing.

setup_logging / set_run_context / clear_context:
    Console + rotating file logging, tagged with the running digest.

setup_tracing / trace_operation:
    Logfire spans around pipeline stages (no-op unless ENABLE_LOGFIRE=true).
"""

from observability.logging import clear_context, set_run_context, setup_logging
from observability.tracing import setup_tracing, trace_operation

__all__ = [
    "clear_context",
    "set_run_context",
    "setup_logging",
    "setup_tracing",
    "trace_operation",
]
