from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pyqtgraph as pg
from PyQt6.QtCore import Qt

from core.bars import Bar
from core.orders import LINE_DASHED, LINE_SOLID, Marker


_PEN_STYLES = {
    LINE_SOLID: Qt.PenStyle.SolidLine,
    LINE_DASHED: Qt.PenStyle.DashLine,
    "dotted": Qt.PenStyle.DotLine,
}

_DEFAULT_LINE_OPTIONS: Dict[str, Any] = {
    "price": 0.0,
    "color": "#D6E2F0",
    "line_style": LINE_SOLID,
    "line_width": 1,
    "axis_label_visible": True,
    "title": "",
}

MARKER_SIZE_PX = 12
MARKER_GAP_PX = 10


class PriceLineHandle:
    """A horizontal price line with a title label; options change in place."""

    def __init__(self, **options: Any) -> None:
        self.options: Dict[str, Any] = dict(_DEFAULT_LINE_OPTIONS)
        self.options.update(options)
        self.line = pg.InfiniteLine(
            pos=float(self.options["price"]),
            angle=0,
            movable=False,
            pen=self._pen(),
            label=self._label_format(),
            labelOpts={"position": 0.97, "color": self.options["color"], "anchors": [(1, 1), (1, 1)]},
        )
        self.line.setZValue(40)
        self.line.label.setVisible(bool(self.options["axis_label_visible"]))

    @property
    def price(self) -> float:
        return float(self.options["price"])

    def _pen(self):
        style = _PEN_STYLES.get(self.options["line_style"], Qt.PenStyle.SolidLine)
        return pg.mkPen(color=self.options["color"], width=self.options["line_width"], style=style)

    def _label_format(self) -> str:
        title = str(self.options["title"] or "").replace("{", "{{").replace("}", "}}")
        return f"{title} {{value:.2f}}" if title else "{value:.2f}"

    def apply_options(self, **options: Any) -> None:
        self.options.update(options)
        try:
            if "price" in options:
                self.line.setValue(float(self.options["price"]))
            if {"color", "line_style", "line_width"} & options.keys():
                self.line.setPen(self._pen())
            if "color" in options:
                self.line.label.setColor(self.options["color"])
            if "title" in options:
                self.line.label.setFormat(self._label_format())
            if "axis_label_visible" in options:
                self.line.label.setVisible(bool(self.options["axis_label_visible"]))
        except RuntimeError:
            pass


class OrderMarkerItem(pg.ScatterPlotItem):
    """
    Directional order markers anchored to a bar.

    `belowBar` arrows sit a few pixels under the bar's low, `aboveBar` arrows
    over its high. Without a bar at the marker time the entry price is used.
    Pixel offsets depend on the zoom level, so `refresh()` runs on every
    range change.
    """

    def __init__(self, bar_at: Callable[[int], Optional[Bar]]) -> None:
        super().__init__(pxMode=True, size=MARKER_SIZE_PX)
        self.setZValue(45)
        self._bar_at = bar_at
        self.markers: List[Marker] = []
        self._labels: List[pg.TextItem] = []

    def set_markers(self, markers: List[Marker]) -> None:
        self.markers = list(markers)
        self.refresh()

    def _pixel_height(self) -> float:
        try:
            view_box = self.getViewBox()
            if view_box is not None:
                _, px_h = view_box.viewPixelSize()
                if px_h > 0:
                    return float(px_h)
        except Exception:
            pass
        return 0.0

    def _anchor(self, marker: Marker, px_h: float) -> Optional[float]:
        bar = self._bar_at(marker.time)
        if bar is None:
            return marker.price
        if marker.position == "belowBar":
            return bar.low - MARKER_GAP_PX * px_h
        return bar.high + MARKER_GAP_PX * px_h

    def refresh(self) -> None:
        px_h = self._pixel_height()
        spots = []
        for label in self._labels:
            label.setParentItem(None)
        self._labels = []
        for marker in self.markers:
            y = self._anchor(marker, px_h)
            if y is None:
                continue
            spots.append(
                {
                    "pos": (float(marker.time), float(y)),
                    "symbol": "t1" if marker.shape == "arrowUp" else "t",
                    "brush": pg.mkBrush(marker.color),
                    "pen": pg.mkPen(marker.color),
                    "data": marker,
                }
            )
            if marker.text:
                below = marker.position == "belowBar"
                label = pg.TextItem(marker.text, color=marker.color, anchor=(0.5, 0.0) if below else (0.5, 1.0))
                label.setParentItem(self)
                label.setPos(float(marker.time), float(y) - MARKER_SIZE_PX * px_h if below else float(y) + MARKER_SIZE_PX * px_h)
                self._labels.append(label)
        try:
            self.setData(spots)
        except RuntimeError:
            pass


class PlotOrderSurface:
    """Price lines and markers on a pyqtgraph plot item."""

    def __init__(self, plot_item: pg.PlotItem, markers: OrderMarkerItem) -> None:
        self.plot_item = plot_item
        self.markers = markers
        self.lines: List[PriceLineHandle] = []

    def create_price_line(self, **options: Any) -> PriceLineHandle:
        handle = PriceLineHandle(**options)
        self.plot_item.addItem(handle.line, ignoreBounds=True)
        self.lines.append(handle)
        return handle

    def remove_price_line(self, line: PriceLineHandle) -> None:
        try:
            self.plot_item.removeItem(line.line)
        except RuntimeError:
            pass
        try:
            self.lines.remove(line)
        except ValueError:
            pass

    def set_markers(self, markers: List[Marker]) -> None:
        self.markers.set_markers(markers)
