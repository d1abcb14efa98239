"""
Cooperative cancellation for long-running scans and traversals.
"""

import threading
from enum import Enum


class ScanStatus(str, Enum):
    """Completion status of a scan, traversal or report."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CancellationToken:
    """
    Thread-safe cancellation flag.

    Checked by the scan pipeline before each file's extraction and by the
    impact analyzer at each BFS layer boundary.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token) -> bool:
    """True if token is set; a missing token never cancels."""
    return token is not None and token.cancelled
