"""
CASCADE - Snapshot store base.
An engine owns exactly one immutable snapshot; every change commits a new one and
notifies subscribers. Readers never observe a half-built state.
"""

import logging
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from utils.errors import QueryError, SchemaMismatch
from utils.notifications import ToastEvents

logger = logging.getLogger(__name__)

S = TypeVar("S")


class StateStore(Generic[S]):
    def __init__(self, initial: S, toasts: Optional[ToastEvents] = None):
        self._state = initial
        self._listeners: List[Callable[[S], None]] = []
        self.toasts = toasts or ToastEvents()

    @property
    def state(self) -> S:
        return self._state

    def get_state(self) -> S:
        return self._state

    def subscribe(self, listener: Callable[[S], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, new_state: S) -> None:
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("State listener failed in %s", type(self).__name__)


async def guarded(
    awaitable: Awaitable[Any],
    context: str,
    default: Any,
    errors: List[str],
    toasts: ToastEvents,
    is_current: Optional[Callable[[], bool]] = None,
) -> Any:
    """Await one step of a fan-out; on failure log, record, toast, and return `default`.

    SchemaMismatch is a normal "nothing here" outcome: logged at info, not recorded.
    When `is_current` says the load was superseded, failures are only logged at debug.
    """
    try:
        return await awaitable
    except SchemaMismatch as e:
        logger.info("%s: %s", context, e)
        return default
    except Exception as e:
        if is_current is not None and not is_current():
            logger.debug("%s failed after being superseded: %s", context, e)
            return default
        if isinstance(e, QueryError):
            logger.error("%s failed: %s", context, e)
        else:
            logger.exception("%s failed unexpectedly", context)
        errors.append(f"{context}: {e}")
        toasts.emit(f"{context} failed: {e}", "error")
        return default
