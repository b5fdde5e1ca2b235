"""Run-level cancellation token.

Cancelling stops the engine from dispatching new tasks. Tasks already in
flight finish or hit their own backend deadline; nothing is killed.
"""

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or timeout elapses; True if cancelled."""
        return self._event.wait(timeout)


@contextmanager
def cancel_on_signals(token: CancellationToken) -> Iterator[CancellationToken]:
    """Cancel token on SIGINT/SIGTERM for the duration of the block.

    On the first signal the token is cancelled and the default SIGINT
    handler is restored, so a second Ctrl-C force-kills via
    KeyboardInterrupt.

    Outside the main thread signal registration is skipped; the token still
    works when cancelled programmatically.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, frame: Any) -> None:
        token.cancel(f"received {signal.Signals(signum).name}")
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
