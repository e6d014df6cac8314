"""Logging and tracing for the Memory Jar service.

setup_logging / request_context:
    Console + rotating file logging, text or JSON, with every line tagged
    by request, owner and memory.

setup_tracing / span / traced:
    Optional Logfire spans (pip install logfire, ENABLE_LOGFIRE=true).

Example:
    >>> from observability import request_context, span
    >>> with request_context("u1"), span("find_similar_memories") as result:
    ...     result["results"] = 3
"""

from observability.logging import (
    bind_memory,
    clear_context,
    request_context,
    set_request_context,
    setup_logging,
)
from observability.tracing import setup_tracing, span, traced

__all__ = [
    "setup_logging",
    "set_request_context",
    "request_context",
    "bind_memory",
    "clear_context",
    "setup_tracing",
    "span",
    "traced",
]
