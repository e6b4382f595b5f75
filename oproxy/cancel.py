"""
Cooperative cancellation

A CancellationToken is handed to a blocking call (the transport hop to the
relay, a with_timeout wrapper) and cancelled from another thread.
"""

import threading
from typing import Any, Callable, List, Optional


class TransportError(Exception):
    """Network failure or abort during a transport call"""
    pass


class RequestAborted(TransportError):
    """The transport call was cancelled through its CancellationToken"""

    def __init__(self, reason: Any = None):
        self.reason = reason
        message = "Request aborted"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)


class CancellationToken:
    """
    Thread-safe cancellation token.

    Example:
        token = CancellationToken()
        unregister = token.add_callback(lambda: sock.shutdown(socket.SHUT_RDWR))
        ...
        token.cancel("user pressed ctrl-c")
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self.reason: Any = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Any = None) -> None:
        """Cancel the token and run registered callbacks once"""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback to run on cancellation.

        Runs immediately if the token is already cancelled.

        Returns:
            Function that unregisters the callback
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def unregister():
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return unregister

        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestAborted(self.reason)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout, returning whether cancelled"""
        return self._event.wait(timeout)
