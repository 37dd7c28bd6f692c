"""Utilities for running fire-and-forget work off the request thread."""

from contextvars import copy_context
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import structlog
from structlog.contextvars import bind_contextvars, get_contextvars


_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="action-flows")


def _log_failure(future: Future, *, task_name: str) -> None:
    exc = future.exception()
    if exc is not None:
        structlog.get_logger().error("background_task_failed", task=task_name, error=str(exc))


def run_async(
    func: Callable[..., Any],
    /,
    *args: Any,
    trace_id: str | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to the shared thread pool and return a Future.

    The caller's contextvars (including any bound ``trace_id``) travel with the
    job so log lines emitted in the worker can be correlated with the request.
    """

    context = copy_context()

    if trace_id is not None:
        existing_trace = context.run(lambda: get_contextvars().get("trace_id"))
        if existing_trace != trace_id:
            context.run(lambda: bind_contextvars(trace_id=trace_id))

    def runner() -> Any:
        return context.run(func, *args, **kwargs)

    future = _executor.submit(runner)
    task_name = getattr(func, "__name__", repr(func))
    future.add_done_callback(lambda done: _log_failure(done, task_name=task_name))
    return future
