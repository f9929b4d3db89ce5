from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from .bars import coerce_number, to_seconds
from .order_events import OrderChange, OrderChangeBus, OrderListener


BUY = "buy"
SELL = "sell"
SIDES = (BUY, SELL)

LINE_SOLID = "solid"
LINE_DASHED = "dashed"

# Field order used when reporting what an update changed.
PATCH_FIELDS = ("price", "sl", "tp", "time", "side", "label")


class InvalidOrderError(ValueError):
    pass


@dataclass
class Order:
    id: int
    time: int
    price: float
    side: str = BUY
    sl: Optional[float] = None
    tp: Optional[float] = None
    label: Optional[str] = None


@dataclass
class Marker:
    time: int
    position: str
    color: str
    shape: str
    text: Optional[str] = None
    # Entry price, used when no bar exists at `time`.
    price: Optional[float] = None


class PriceLine(Protocol):
    def apply_options(self, **options: Any) -> None: ...


class OrderSurface(Protocol):
    """What the registry needs from the chart: price lines and series markers."""

    def create_price_line(self, **options: Any) -> PriceLine: ...

    def remove_price_line(self, line: PriceLine) -> None: ...

    def set_markers(self, markers: List[Marker]) -> None: ...


@dataclass
class _OrderRecord:
    order: Order
    marker: Marker
    entry_line: PriceLine
    sl_line: Optional[PriceLine] = None
    tp_line: Optional[PriceLine] = None


def _require_side(side: Any) -> str:
    value = str(side).strip().lower() if side is not None else ""
    if value not in SIDES:
        raise InvalidOrderError(f"side must be 'buy' or 'sell', got {side!r}")
    return value


def _require_price(name: str, value: Any) -> float:
    price = coerce_number(value)
    if price is None:
        raise InvalidOrderError(f"{name} must be a finite number, got {value!r}")
    return price


def _require_time(value: Any) -> int:
    ts = to_seconds(value)
    if ts is None:
        raise InvalidOrderError(f"time must be a timestamp, got {value!r}")
    return ts


class OrderRegistry:
    """
    Live order annotations and the chart handles they own.

    Each order owns one entry line, optional stop-loss/take-profit lines and
    one marker. Lines are created once and updated in place afterwards; they
    are only removed when the order is cancelled or the registry destroyed.
    """

    def __init__(
        self,
        surface: OrderSurface,
        bus: Optional[OrderChangeBus] = None,
        buy_color: str = "#22C55E",
        sell_color: str = "#EF4444",
    ) -> None:
        self._surface = surface
        self._bus = bus if bus is not None else OrderChangeBus()
        self._buy_color = buy_color
        self._sell_color = sell_color
        self._records: Dict[int, _OrderRecord] = {}
        self._markers: List[Marker] = []
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._records

    @property
    def bus(self) -> OrderChangeBus:
        return self._bus

    # ---- styling -------------------------------------------------------

    def _side_color(self, side: str) -> str:
        return self._buy_color if side == BUY else self._sell_color

    def _entry_title(self, order: Order) -> str:
        return order.label or ("BUY" if order.side == BUY else "SELL")

    def _style_marker(self, marker: Marker, side: str) -> None:
        marker.position = "belowBar" if side == BUY else "aboveBar"
        marker.shape = "arrowUp" if side == BUY else "arrowDown"
        marker.color = self._side_color(side)

    def _make_entry_line(self, order: Order) -> PriceLine:
        return self._surface.create_price_line(
            price=order.price,
            color=self._side_color(order.side),
            line_style=LINE_SOLID,
            line_width=2,
            axis_label_visible=True,
            title=self._entry_title(order),
        )

    def _make_sl_line(self, price: float) -> PriceLine:
        return self._surface.create_price_line(
            price=price,
            color=self._sell_color,
            line_style=LINE_DASHED,
            line_width=2,
            axis_label_visible=True,
            title="SL",
        )

    def _make_tp_line(self, price: float) -> PriceLine:
        return self._surface.create_price_line(
            price=price,
            color=self._buy_color,
            line_style=LINE_DASHED,
            line_width=2,
            axis_label_visible=True,
            title="TP",
        )

    def _apply_markers(self) -> None:
        # The surface expects markers in time order.
        self._markers.sort(key=lambda m: m.time)
        self._surface.set_markers([replace(m) for m in self._markers])

    def _emit(self, order: Order, changed: List[str]) -> None:
        self._bus.emit(OrderChange(order=replace(order), changed=tuple(changed)))

    # ---- public API ----------------------------------------------------

    def place_order(
        self,
        time: Any,
        price: Any,
        side: str = BUY,
        sl: Any = None,
        tp: Any = None,
        label: Optional[str] = None,
    ) -> int:
        if time is None or price is None:
            raise InvalidOrderError("place_order: time and price are required")
        order = Order(
            id=0,
            time=_require_time(time),
            price=_require_price("price", price),
            side=_require_side(side),
            sl=_require_price("sl", sl) if sl is not None else None,
            tp=_require_price("tp", tp) if tp is not None else None,
            label=str(label) if label else None,
        )
        order.id = self._next_id
        self._next_id += 1

        marker = Marker(time=order.time, position="", color="", shape="", text=order.label, price=order.price)
        self._style_marker(marker, order.side)
        self._markers.append(marker)
        self._apply_markers()

        record = _OrderRecord(order=order, marker=marker, entry_line=self._make_entry_line(order))
        if order.sl is not None:
            record.sl_line = self._make_sl_line(order.sl)
        if order.tp is not None:
            record.tp_line = self._make_tp_line(order.tp)
        self._records[order.id] = record
        return order.id

    def update_order(self, order_id: int, patch: Optional[Mapping[str, Any]] = None, **fields: Any) -> bool:
        record = self._records.get(order_id)
        if record is None:
            return False
        values = dict(patch or {})
        values.update(fields)

        # Validate everything before touching the record so a bad patch changes nothing.
        staged: Dict[str, Any] = {}
        for name in PATCH_FIELDS:
            value = values.get(name)
            if name == "label":
                if value:
                    staged[name] = str(value)
                continue
            if value is None:
                continue
            if name == "time":
                staged[name] = _require_time(value)
            elif name == "side":
                staged[name] = _require_side(value)
            else:
                staged[name] = _require_price(name, value)

        order = record.order
        marker = record.marker
        changed: List[str] = []
        markers_dirty = False

        if "price" in staged:
            order.price = staged["price"]
            marker.price = order.price
            record.entry_line.apply_options(price=order.price)
            markers_dirty = True
            changed.append("price")
        if "sl" in staged:
            self._set_level(record, "sl", staged["sl"])
            changed.append("sl")
        if "tp" in staged:
            self._set_level(record, "tp", staged["tp"])
            changed.append("tp")
        if "time" in staged:
            order.time = staged["time"]
            marker.time = order.time
            markers_dirty = True
            changed.append("time")
        if "side" in staged:
            order.side = staged["side"]
            self._style_marker(marker, order.side)
            record.entry_line.apply_options(color=self._side_color(order.side), title=self._entry_title(order))
            markers_dirty = True
            changed.append("side")
        if "label" in staged:
            order.label = staged["label"]
            marker.text = order.label
            record.entry_line.apply_options(title=order.label)
            markers_dirty = True
            changed.append("label")

        if markers_dirty:
            self._apply_markers()
        if changed:
            self._emit(order, changed)
        return True

    def _set_level(self, record: _OrderRecord, target: str, price: float) -> None:
        if target == "sl":
            if record.sl_line is None:
                record.sl_line = self._make_sl_line(price)
            else:
                record.sl_line.apply_options(price=price)
            record.order.sl = price
        else:
            if record.tp_line is None:
                record.tp_line = self._make_tp_line(price)
            else:
                record.tp_line.apply_options(price=price)
            record.order.tp = price

    def cancel_order(self, order_id: int) -> bool:
        record = self._records.get(order_id)
        if record is None:
            return False
        self._remove_handles(record)
        try:
            self._markers.remove(record.marker)
        except ValueError:
            pass
        self._apply_markers()
        del self._records[order_id]
        self._emit(record.order, ["cancel"])
        return True

    def _remove_handles(self, record: _OrderRecord) -> None:
        for line in (record.entry_line, record.sl_line, record.tp_line):
            if line is not None:
                self._surface.remove_price_line(line)
        record.sl_line = None
        record.tp_line = None

    def list_orders(self) -> List[Order]:
        return [replace(record.order) for record in self._records.values()]

    def get_order(self, order_id: int) -> Optional[Order]:
        record = self._records.get(order_id)
        return replace(record.order) if record is not None else None

    def level_prices(self) -> List[tuple]:
        """(order_id, target, price) for every draggable stop-loss/take-profit level."""
        out = []
        for order_id, record in self._records.items():
            if record.sl_line is not None and record.order.sl is not None and math.isfinite(record.order.sl):
                out.append((order_id, "sl", record.order.sl))
            if record.tp_line is not None and record.order.tp is not None and math.isfinite(record.order.tp):
                out.append((order_id, "tp", record.order.tp))
        return out

    def on_order_change(self, fn: OrderListener) -> Callable[[], None]:
        return self._bus.subscribe(fn)

    def destroy(self) -> None:
        for record in self._records.values():
            self._remove_handles(record)
        self._records.clear()
        if self._markers:
            self._markers.clear()
            self._surface.set_markers([])
        self._bus.clear()
