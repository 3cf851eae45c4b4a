"""
Cooperative cancellation for long-running discography and playlist work
"""

import threading

from sideman.errors import OperationCancelled


class CancellationToken:
    """
    Set once from any thread; checked by workers at every loop iteration and
    before every remote call.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelled()


def check_cancelled(token):
    """raise_if_cancelled() that tolerates a missing token"""
    if token is not None:
        token.raise_if_cancelled()
