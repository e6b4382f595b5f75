"""
Deadline helper

Races a blocking call against a timer. The tunneling client has no built-in
timeout; callers that need one wrap the call here and pass the same
CancellationToken to both.
"""

import concurrent.futures
import threading
from typing import Callable, Optional, TypeVar

from .cancel import CancellationToken
from .log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class OperationTimeout(TimeoutError):
    """The awaited call did not finish before the deadline"""
    pass


def with_timeout(
    func: Callable[..., T],
    timeout: float,
    *args,
    signal: Optional[CancellationToken] = None,
    **kwargs,
) -> T:
    """
    Run func(*args, **kwargs), failing if it takes longer than timeout.

    The call runs in a daemon worker thread. On expiry the worker is left
    running; it is only stopped if signal is given and func honours it.

    Args:
        func: Blocking callable
        timeout: Deadline in seconds
        signal: Token cancelled with reason "timeout" when the deadline passes

    Returns:
        Whatever func returns

    Raises:
        OperationTimeout: If the deadline passes first
        Exception: Whatever func raises before the deadline
    """
    future: concurrent.futures.Future = concurrent.futures.Future()

    def run():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(func(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)

    worker = threading.Thread(target=run, name=f"with_timeout-{getattr(func, '__name__', 'call')}", daemon=True)
    worker.start()

    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError:
        if future.done():
            # Finished at the deadline, or func raised a TimeoutError itself
            return future.result()
        logger.debug(f"Deadline of {timeout}s reached")
        if signal is not None:
            signal.cancel("timeout")
        raise OperationTimeout("Timeout reached when awaiting call completion!") from None
