from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Tuple

if TYPE_CHECKING:
    from .orders import Order


logger = logging.getLogger(__name__)

OrderListener = Callable[["OrderChange"], None]


@dataclass(frozen=True)
class OrderChange:
    order: Order
    changed: Tuple[str, ...]

    @property
    def id(self) -> int:
        return self.order.id

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self.order)
        payload["changed"] = list(self.changed)
        return payload


class OrderChangeBus:
    """
    Synchronous fan-out of order mutations.

    Listeners run in subscription order on the caller's thread. A listener that
    raises is logged and skipped so the mutation and the other listeners are
    never affected.
    """

    def __init__(self) -> None:
        self._listeners: List[OrderListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, fn: OrderListener) -> Callable[[], None]:
        if not callable(fn):
            raise TypeError("order change listener must be callable")
        if fn not in self._listeners:
            self._listeners.append(fn)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(fn)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, change: OrderChange) -> None:
        for fn in list(self._listeners):
            try:
                fn(change)
            except Exception:
                logger.exception("order change listener %r failed for order %s", fn, change.id)

    def clear(self) -> None:
        self._listeners.clear()
