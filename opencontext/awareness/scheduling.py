"""Deferred-callback schedulers for the observer's flush timer."""

import threading
from typing import Callable


class ThreadingScheduler:
    """Schedules callbacks on daemon ``threading.Timer`` threads.

    A daemon timer never keeps the interpreter alive; call
    ``Observer.close()`` at shutdown to flush what is buffered.
    """

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer
