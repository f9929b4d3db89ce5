from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol

from .chart_options import FROZEN_INTERACTION, InteractionOptions
from .orders import OrderRegistry


logger = logging.getLogger(__name__)

CURSOR_DEFAULT = ""
CURSOR_RESIZE = "ns-resize"


class ViewportPort(Protocol):
    def price_to_coordinate(self, price: float) -> Optional[float]: ...

    def coordinate_to_price(self, y: float) -> Optional[float]: ...

    def interaction(self) -> InteractionOptions: ...

    def apply_interaction(self, options: InteractionOptions) -> None: ...


class PointerSurface(Protocol):
    def set_cursor(self, cursor: str) -> None: ...

    def capture_pointer(self, pointer_id: Any = None) -> None: ...

    def release_pointer(self, pointer_id: Any = None) -> None: ...


@dataclass(frozen=True)
class DragSession:
    active: bool = False
    order_id: Optional[int] = None
    target: Optional[str] = None


IDLE = DragSession()


@dataclass(frozen=True)
class HandleHit:
    order_id: int
    target: str
    distance: float


def tick_snapper(tick: float) -> Callable[[float], float]:
    """Return a snap function rounding prices to the nearest multiple of `tick`."""
    if not tick > 0:
        raise ValueError(f"tick must be positive, got {tick!r}")
    exponent = Decimal(str(tick)).normalize().as_tuple().exponent
    decimals = max(0, -int(exponent)) if isinstance(exponent, int) else 0

    def snap(price: float) -> float:
        return round(round(price / tick) * tick, decimals)

    return snap


class ViewportFreeze:
    """
    Guard that disables pan/zoom while held.

    Only the first acquire takes effect; release restores the interaction that
    was active at that moment, then the guard can be acquired again.
    """

    def __init__(self, viewport: ViewportPort) -> None:
        self._viewport = viewport
        self._saved: Optional[InteractionOptions] = None
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def acquire(self) -> None:
        if self._frozen:
            return
        self._saved = self._viewport.interaction()
        self._frozen = True
        self._viewport.apply_interaction(FROZEN_INTERACTION)

    def release(self) -> None:
        if not self._frozen:
            return
        self._frozen = False
        saved, self._saved = self._saved, None
        if saved is not None:
            self._viewport.apply_interaction(saved)

    def __enter__(self) -> "ViewportFreeze":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class _NullSurface:
    def set_cursor(self, cursor: str) -> None:
        pass

    def capture_pointer(self, pointer_id: Any = None) -> None:
        pass

    def release_pointer(self, pointer_id: Any = None) -> None:
        pass


class DragController:
    """
    Pointer-driven editing of stop-loss/take-profit levels.

    Idle -> Dragging on a pointer-down near a level, Dragging -> Idle on
    pointer-up or pointer-leave. Prices are written back through the
    registry's update API only.
    """

    def __init__(
        self,
        registry: OrderRegistry,
        viewport: ViewportPort,
        surface: Optional[PointerSurface] = None,
        threshold_px: float = 6.0,
        snap: Optional[Callable[[float], float]] = None,
    ) -> None:
        if not threshold_px > 0:
            raise ValueError(f"threshold_px must be positive, got {threshold_px!r}")
        self._registry = registry
        self._viewport = viewport
        self._surface: PointerSurface = surface if surface is not None else _NullSurface()
        self._threshold_px = float(threshold_px)
        self._snap = snap
        self._freeze = ViewportFreeze(viewport)
        self._session = IDLE
        self._pointer_captured = False
        self._pointer_id: Any = None

    @property
    def session(self) -> DragSession:
        return self._session

    @property
    def dragging(self) -> bool:
        return self._session.active

    @property
    def frozen(self) -> bool:
        return self._freeze.frozen

    @property
    def threshold_px(self) -> float:
        return self._threshold_px

    def nearest_handle(self, y: float) -> Optional[HandleHit]:
        best: Optional[HandleHit] = None
        for order_id, target, price in self._registry.level_prices():
            line_y = self._viewport.price_to_coordinate(price)
            if line_y is None or not math.isfinite(line_y):
                continue
            dist = abs(line_y - y)
            if dist <= self._threshold_px and (best is None or dist < best.distance):
                best = HandleHit(order_id=order_id, target=target, distance=dist)
        return best

    def price_from_y(self, y: float) -> Optional[float]:
        price = self._viewport.coordinate_to_price(y)
        if not isinstance(price, (int, float)) or isinstance(price, bool) or not math.isfinite(price):
            return None
        if self._snap is not None:
            price = self._snap(float(price))
            if not math.isfinite(price):
                return None
        return float(price)

    def pointer_move(self, y: float) -> None:
        if not self._session.active:
            hit = self.nearest_handle(y)
            self._surface.set_cursor(CURSOR_RESIZE if hit else CURSOR_DEFAULT)
            return
        price = self.price_from_y(y)
        if price is None:
            return
        session = self._session
        if not self._registry.update_order(session.order_id, {session.target: price}):
            logger.debug("drag target order %s is gone", session.order_id)

    def pointer_down(self, y: float, pointer_id: Any = None) -> bool:
        if self._session.active:
            return False
        hit = self.nearest_handle(y)
        if hit is None:
            return False
        self._session = DragSession(active=True, order_id=hit.order_id, target=hit.target)
        self._surface.set_cursor(CURSOR_RESIZE)
        if not self._pointer_captured:
            self._surface.capture_pointer(pointer_id)
            self._pointer_captured = True
            self._pointer_id = pointer_id
        self._freeze.acquire()
        return True

    def pointer_up(self, pointer_id: Any = None) -> None:
        self._end_drag()

    def pointer_leave(self) -> None:
        self._end_drag()

    def _end_drag(self) -> None:
        try:
            if self._pointer_captured:
                self._pointer_captured = False
                pointer_id, self._pointer_id = self._pointer_id, None
                self._surface.release_pointer(pointer_id)
            if self._session.active:
                self._session = IDLE
                self._surface.set_cursor(CURSOR_DEFAULT)
        finally:
            self._freeze.release()

    def detach(self) -> None:
        self._end_drag()
