import threading

from fluxpense.exception import OperationCancelled


class CancellationToken:
    """
    Handle passed into every network-bound stage of a capture session.
    Once cancelled, results that arrive afterwards are dropped by the caller.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = None

    def cancel(self, reason: str = "capture closed"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str = ""):
        if self.cancelled:
            where = f" during {stage}" if stage else ""
            raise OperationCancelled(f"Operation cancelled{where}: {self.reason}")
