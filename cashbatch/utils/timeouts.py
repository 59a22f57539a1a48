"""Run blocking calls under a timeout.

External ERP queries are synchronous database calls that cannot be cancelled
from Python. Each call runs on its own daemon thread and reports through a
``concurrent.futures.Future``. When the timeout expires the caller gets control
back and the thread is abandoned: it is never joined, so a hung call does not
keep the process alive at exit.

The call runs in a copy of the caller's ``contextvars`` context, so the
correlation id bound by a batch run is present in the worker's log events.

Usage:
    rows = call_with_timeout(source.fetch_rows, customer_id, timeout=30.0)
"""

import concurrent.futures
import contextvars
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from cashbatch.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def call_with_timeout(
    func: Callable[..., T],
    *args: Any,
    timeout: float | None,
    **kwargs: Any,
) -> T:
    """Call ``func(*args, **kwargs)`` and wait at most ``timeout`` seconds.

    Args:
        func: Blocking callable
        *args: Positional arguments for ``func``
        timeout: Seconds to wait; ``None`` calls ``func`` inline without a thread
        **kwargs: Keyword arguments for ``func``

    Returns:
        The return value of ``func``

    Raises:
        TimeoutError: If the call did not finish in time
        Exception: Any exception raised by ``func``
    """
    if timeout is None:
        return func(*args, **kwargs)

    future: concurrent.futures.Future[T] = concurrent.futures.Future()
    context = contextvars.copy_context()

    def run() -> None:
        """Thread target function."""
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = context.run(func, *args, **kwargs)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    worker = threading.Thread(target=run, name="cashbatch-io", daemon=True)
    worker.start()

    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as e:
        logger.warning(
            "blocking_call_timeout",
            func=getattr(func, "__qualname__", repr(func)),
            timeout=timeout,
        )
        raise TimeoutError(f"Call did not complete within {timeout}s") from e
