"""Optional Logfire spans around save, embed and recall.

setup_tracing() configures Logfire once per process (ENABLE_LOGFIRE=true,
pip install logfire). Without it span() still times the block and logs
the duration at DEBUG, so call sites never check whether tracing is on.

Spans pick up the owner, memory and request ids of the surrounding
request_context() as attributes.

Usage:
    >>> with span("find_similar_memories", limit=5) as result:
    ...     memories = store.match_memories(...)
    ...     result["results"] = len(memories)
"""

import logging
import time
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Iterator

from observability.logging import current_context

logger = logging.getLogger(__name__)

SERVICE_NAME = "fableforge"

# The logfire module once configured, else None
_logfire = None


def setup_tracing(enabled: bool = False, token: str = "", service_name: str = SERVICE_NAME) -> bool:
    """Configure Logfire.

    Returns:
        True if spans will be exported
    """
    global _logfire
    _logfire = None

    if not enabled:
        logger.debug("Tracing disabled")
        return False

    try:
        import logfire
    except ImportError:
        logger.warning("Logfire not installed, tracing disabled (pip install logfire)")
        return False

    try:
        logfire.configure(
            service_name=service_name,
            token=token or None,
            send_to_logfire="if-token-present",
        )
    except Exception as e:
        logger.error("Failed to configure Logfire: %s", e)
        return False

    _logfire = logfire
    logger.info("Logfire tracing enabled | service=%s", service_name)
    return True


def tracing_enabled() -> bool:
    return _logfire is not None


@contextmanager
def span(name: str, **attributes: Any) -> Iterator[dict[str, Any]]:
    """Time a block and, with Logfire on, record it as a span.

    Yields:
        Dict for result attributes (counts, fallback flags). Its contents
        are attached to the span and logged when the block exits.
    """
    attributes = {k: v for k, v in {**current_context(), **attributes}.items() if v is not None}
    result: dict[str, Any] = {}
    start = time.perf_counter()
    try:
        if _logfire is None:
            yield result
        else:
            with _logfire.span(name, **attributes) as active:
                try:
                    yield result
                finally:
                    for key, value in result.items():
                        active.set_attribute(key, value)
    finally:
        logger.debug("%s took %.3fs %s", name, time.perf_counter() - start, result or "")


def traced(name: str | None = None) -> Callable:
    """Run a coroutine function inside span()."""
    def decorator(func: Callable) -> Callable:
        span_name = name or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            with span(span_name):
                return await func(*args, **kwargs)

        return wrapper

    return decorator
