"""
CASCADE - Toast notification bus.
Engines emit user-facing messages here; the Streamlit shell subscribes and renders them with st.toast.
"""

import logging
from typing import Callable, List

logger = logging.getLogger(__name__)

TOAST_STATUSES = ("success", "error", "warning", "info")

ToastListener = Callable[[str, str], None]


class ToastEvents:
    """Small listener bus: add_listener / remove_listener / emit(message, status)."""

    def __init__(self):
        self._listeners: List[ToastListener] = []

    def add_listener(self, listener: ToastListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that removes it again."""
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: ToastListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self) -> None:
        self._listeners = []

    def emit(self, message: str, status: str = "info") -> None:
        if status not in TOAST_STATUSES:
            logger.warning("Unknown toast status %r, using 'info'", status)
            status = "info"
        for listener in list(self._listeners):
            try:
                listener(message, status)
            except Exception:
                logger.exception("Toast listener failed for message: %s", message)


toast_events = ToastEvents()
