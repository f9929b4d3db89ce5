from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

import pyqtgraph as pg

from core.bars import Bar, BarMapping, normalize_bars, sort_bars, volume_point
from core.chart_options import ChartOptions
from core.drag import DragController, tick_snapper
from core.order_events import OrderChange
from core.orders import BUY, Order, OrderRegistry

from .candle_series import CandleSeriesItem, VolumeSeriesItem
from .order_overlay import OrderMarkerItem, PlotOrderSurface, PriceLineHandle
from .viewport import ChartViewport, PointerEventFilter, QtPointerSurface, create_plot_widget


logger = logging.getLogger(__name__)

# Scale margins used by reset_view: fraction of the price span kept free above/below.
TOP_MARGIN = 0.1
BOTTOM_MARGIN = 0.2


class OrderChart:
    """
    Candlestick chart with draggable order annotations.

    Owns the candle/volume series, the order registry and the drag controller
    for one plot widget. Independent instances share no state.
    """

    def __init__(self, plot_widget: Optional[pg.PlotWidget] = None, options: Optional[ChartOptions] = None) -> None:
        self.options = options or ChartOptions()
        self.options.validate()
        self.plot_widget = plot_widget if plot_widget is not None else create_plot_widget(self.options)
        self.plot_item = self.plot_widget.getPlotItem()
        self.view_box = self.plot_widget.getViewBox()
        self._mapping: BarMapping = self.options.bar_mapping()
        self._destroyed = False

        self.viewport = ChartViewport(self.plot_widget)
        self.viewport.apply_interaction(self.options.interaction)

        self.candles = CandleSeriesItem(self.options.up_color, self.options.down_color)
        self.volume = VolumeSeriesItem()
        self.volume.setZValue(-10)
        self.markers = OrderMarkerItem(self.candles.bar_at)
        self.plot_item.addItem(self.volume, ignoreBounds=True)
        self.plot_item.addItem(self.candles)
        self.plot_item.addItem(self.markers, ignoreBounds=True)

        self.surface = PlotOrderSurface(self.plot_item, self.markers)
        self.registry = OrderRegistry(
            self.surface,
            buy_color=self.options.buy_color,
            sell_color=self.options.sell_color,
        )
        snap = self.options.snap
        if snap is None and self.options.snap_tick is not None:
            snap = tick_snapper(self.options.snap_tick)
        self.pointer = QtPointerSurface(self.plot_widget)
        self.drag = DragController(
            self.registry,
            self.viewport,
            surface=self.pointer,
            threshold_px=self.options.drag_threshold_px,
            snap=snap,
        )
        self._event_filter = PointerEventFilter(self.plot_widget, self.drag)
        self.view_box.sigRangeChanged.connect(self._on_view_changed)

        if self.options.initial_data:
            self.set_data(self.options.initial_data)

    # ---- data ------------------------------------------------------------

    def set_data(self, rows: Iterable[Any]) -> List[Bar]:
        bars = sort_bars(normalize_bars(rows, self._mapping))
        self.candles.set_data(bars)
        self.volume.set_points([p for p in (volume_point(b) for b in bars) if p is not None])
        self._apply_left_edge()
        self.markers.refresh()
        return bars

    def update(self, row: Any) -> Optional[Bar]:
        mapping = BarMapping(
            data_mapping=self._mapping.data_mapping,
            array_mapping=self._mapping.array_mapping,
            skip_leading_header_rows=0,
        )
        normalized = normalize_bars([row], mapping)
        if not normalized:
            return None
        bar = normalized[0]
        follow = self.options.follow_latest_on_update == "always" or (
            self.options.follow_latest_on_update == "ifPinned" and self.is_pinned_right()
        )
        previous_last = self.candles.last_time
        if not self.candles.update_bar(bar):
            logger.debug("ignoring update for bar %s older than last bar %s", bar.time, previous_last)
            return None
        point = volume_point(bar)
        if point is not None:
            self.volume.update_point(point)
        else:
            # A replaced bar without volume must not keep the old histogram bar.
            self.volume.remove_point(bar.time)
        if previous_last is None:
            self._apply_left_edge()
        self.markers.refresh()
        if follow and previous_last is not None and bar.time > previous_last:
            self.scroll_to_real_time()
        return bar

    def _apply_left_edge(self) -> None:
        if not self.options.fix_left_edge:
            return
        first = self.candles.first_time
        if first is None:
            self.view_box.setLimits(xMin=None)
            return
        self.view_box.setLimits(xMin=first - self.candles.candle_width)

    def is_pinned_right(self) -> bool:
        last = self.candles.last_time
        if last is None:
            return False
        (_, x_max), _ = self.view_box.viewRange()
        return x_max >= last

    def scroll_to_real_time(self) -> None:
        last = self.candles.last_time
        if last is None:
            return
        (x_min, x_max), _ = self.view_box.viewRange()
        span = x_max - x_min
        right = last + self.candles.candle_width * 2
        self.view_box.setXRange(right - span, right, padding=0)

    def reset_view(self) -> None:
        first, last = self.candles.first_time, self.candles.last_time
        prices = self.candles.price_range()
        if first is None or last is None or prices is None:
            return
        pad = self.candles.candle_width
        self.view_box.setXRange(first - pad, last + pad, padding=0)
        y_min, y_max = prices
        span = y_max - y_min
        if span <= 0:
            span = abs(y_max) * 0.01 or 1.0
        self.view_box.setYRange(y_min - span * BOTTOM_MARGIN, y_max + span * TOP_MARGIN, padding=0)
        self._apply_left_edge()

    def _on_view_changed(self, *args) -> None:
        self.markers.refresh()
        try:
            self.volume.update()
        except RuntimeError:
            pass

    # ---- orders ----------------------------------------------------------

    def place_order(
        self,
        time: Any,
        price: Any,
        side: str = BUY,
        sl: Any = None,
        tp: Any = None,
        label: Optional[str] = None,
    ) -> int:
        return self.registry.place_order(time, price, side=side, sl=sl, tp=tp, label=label)

    def update_order(self, order_id: int, patch: Optional[Mapping[str, Any]] = None, **fields: Any) -> bool:
        return self.registry.update_order(order_id, patch, **fields)

    def cancel_order(self, order_id: int) -> bool:
        return self.registry.cancel_order(order_id)

    def list_orders(self) -> List[Order]:
        return self.registry.list_orders()

    def get_order(self, order_id: int) -> Optional[Order]:
        return self.registry.get_order(order_id)

    def on_order_change(self, fn: Callable[[OrderChange], None]) -> Callable[[], None]:
        return self.registry.on_order_change(fn)

    # ---- styling ---------------------------------------------------------

    def add_price_line(self, **options: Any) -> PriceLineHandle:
        """Free-standing price line, not owned by any order."""
        return self.surface.create_price_line(**options)

    def remove_price_line(self, line: PriceLineHandle) -> None:
        self.surface.remove_price_line(line)

    def set_colors(self, up: str = "#22C55E", down: str = "#EF4444") -> None:
        self.candles.set_colors(up, down)

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self.drag.detach()
        self._event_filter.detach()
        try:
            self.view_box.sigRangeChanged.disconnect(self._on_view_changed)
        except (TypeError, RuntimeError):
            pass
        self.registry.destroy()
        for item in (self.markers, self.candles, self.volume):
            try:
                self.plot_item.removeItem(item)
            except RuntimeError:
                pass
