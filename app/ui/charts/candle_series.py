from bisect import bisect_left
from typing import Any, Dict, List, Optional

import numpy as np
import pyqtgraph as pg
from PyQt6.QtCore import QPointF, QRectF
from PyQt6.QtGui import QColor, QPainter, QPicture

from core.bars import Bar


VOLUME_HEIGHT_RATIO = 0.2


def bar_spacing(times: np.ndarray) -> float:
    if times is None or times.size < 2:
        return 60.0
    diffs = np.diff(times)
    diffs = diffs[diffs > 0]
    if diffs.size == 0:
        return 60.0
    return float(np.median(diffs))


class CandleSeriesItem(pg.GraphicsObject):
    def __init__(self, up_color: str, down_color: str) -> None:
        super().__init__()
        self.up_color = QColor(up_color)
        self.down_color = QColor(down_color)
        self.bars: List[Bar] = []
        self._times: List[int] = []
        self._x = np.empty(0, dtype=np.float64)
        self._low = np.empty(0, dtype=np.float64)
        self._high = np.empty(0, dtype=np.float64)
        self.picture = QPicture()
        self._cached_bounds = QRectF(0, 0, 1, 1)
        self.candle_width = 60.0 * 0.8

    def set_colors(self, up_color: str, down_color: str) -> None:
        self.up_color = QColor(up_color)
        self.down_color = QColor(down_color)
        self._rebuild()

    def set_data(self, bars: List[Bar]) -> None:
        self.bars = list(bars)
        self._rebuild()

    def update_bar(self, bar: Bar) -> bool:
        """Replace the last bar when times match, append a newer one; older bars are rejected."""
        if self.bars and bar.time < self.bars[-1].time:
            return False
        if self.bars and bar.time == self.bars[-1].time:
            self.bars[-1] = bar
        else:
            self.bars.append(bar)
        self._rebuild()
        return True

    def bar_at(self, ts: int) -> Optional[Bar]:
        idx = bisect_left(self._times, ts)
        if idx < len(self._times) and self._times[idx] == ts:
            return self.bars[idx]
        return None

    @property
    def first_time(self) -> Optional[int]:
        return self._times[0] if self._times else None

    @property
    def last_time(self) -> Optional[int]:
        return self._times[-1] if self._times else None

    def price_range(self) -> Optional[tuple]:
        if self._low.size == 0:
            return None
        return float(np.min(self._low)), float(np.max(self._high))

    def _rebuild(self) -> None:
        self._times = [bar.time for bar in self.bars]
        self._x = np.asarray(self._times, dtype=np.float64)
        self._low = np.asarray([bar.low for bar in self.bars], dtype=np.float64)
        self._high = np.asarray([bar.high for bar in self.bars], dtype=np.float64)
        self.candle_width = bar_spacing(self._x) * 0.8
        self.prepareGeometryChange()
        self._generate_picture()
        try:
            self.informViewBoundsChanged()
            self.update()
        except RuntimeError:
            pass

    def _generate_picture(self) -> None:
        self.picture = QPicture()
        if not self.bars:
            self._cached_bounds = QRectF(0, 0, 1, 1)
            return
        w = self.candle_width / 2.0
        painter = QPainter(self.picture)
        try:
            for bar in self.bars:
                color = self.down_color if bar.close < bar.open else self.up_color
                painter.setPen(pg.mkPen(color, width=1))
                painter.setBrush(pg.mkBrush(color))
                x = float(bar.time)
                high, low = max(bar.high, bar.low), min(bar.high, bar.low)
                if high != low:
                    painter.drawLine(QPointF(x, low), QPointF(x, high))
                body_top = max(bar.open, bar.close)
                body_bottom = min(bar.open, bar.close)
                if body_top > body_bottom:
                    painter.drawRect(QRectF(x - w, body_bottom, w * 2, body_top - body_bottom))
                else:
                    painter.drawLine(QPointF(x - w, bar.close), QPointF(x + w, bar.close))
        finally:
            painter.end()
        x_min = float(self._x[0]) - w
        x_max = float(self._x[-1]) + w
        y_min = float(np.min(self._low))
        y_max = float(np.max(self._high))
        self._cached_bounds = QRectF(x_min, y_min, max(x_max - x_min, 1e-9), max(y_max - y_min, 1e-9))

    def paint(self, painter: QPainter, option, widget) -> None:
        try:
            painter.drawPicture(0, 0, self.picture)
        except RuntimeError:
            pass

    def boundingRect(self) -> QRectF:
        return self._cached_bounds


class VolumeSeriesItem(pg.GraphicsObject):
    """Volume histogram drawn into the bottom slice of the price view."""

    def __init__(self, height_ratio: float = VOLUME_HEIGHT_RATIO) -> None:
        super().__init__()
        self._height_ratio = float(height_ratio)
        self._points: List[Dict[str, Any]] = []
        self._x = np.empty(0, dtype=np.float64)
        self._vol = np.empty(0, dtype=np.float64)
        self._bar_width = 60.0 * 0.8
        self._cached_bounds = QRectF(0, 0, 1, 1)

    @property
    def points(self) -> List[Dict[str, Any]]:
        return list(self._points)

    def set_points(self, points: List[Dict[str, Any]]) -> None:
        self._points = list(points)
        self._rebuild()

    def update_point(self, point: Dict[str, Any]) -> None:
        if self._points and self._points[-1]["time"] == point["time"]:
            self._points[-1] = point
        elif not self._points or point["time"] > self._points[-1]["time"]:
            self._points.append(point)
        else:
            return
        self._rebuild()

    def remove_point(self, time: int) -> bool:
        if not self._points or self._points[-1]["time"] != time:
            return False
        self._points.pop()
        self._rebuild()
        return True

    def _rebuild(self) -> None:
        self._x = np.asarray([p["time"] for p in self._points], dtype=np.float64)
        self._vol = np.asarray([p["value"] for p in self._points], dtype=np.float64)
        self._bar_width = bar_spacing(self._x) * 0.8
        self.prepareGeometryChange()
        if self._x.size:
            x_min = float(self._x[0])
            x_max = float(self._x[-1])
            self._cached_bounds = QRectF(x_min, 0, max(x_max - x_min, 1e-9), 1)
        else:
            self._cached_bounds = QRectF(0, 0, 1, 1)
        try:
            self.update()
        except RuntimeError:
            pass

    def boundingRect(self) -> QRectF:
        return self._cached_bounds

    def paint(self, painter: QPainter, option, widget) -> None:
        if self._x.size == 0:
            return
        try:
            view_box = self.getViewBox()
            (x_min, x_max), (y_min, y_max) = view_box.viewRange()
        except Exception:
            return
        start = max(0, int(np.searchsorted(self._x, x_min)) - 1)
        end = min(self._x.size, int(np.searchsorted(self._x, x_max, side="right")) + 1)
        visible = self._vol[start:end]
        if visible.size == 0:
            return
        volume_max = float(np.nanmax(visible)) if np.any(np.isfinite(visible)) else 0.0
        if volume_max <= 0:
            return
        max_height = max(1e-9, float(y_max - y_min)) * self._height_ratio
        w = self._bar_width / 2.0
        painter.setPen(pg.mkPen(None))
        for idx in range(start, end):
            vol = float(self._vol[idx])
            if not np.isfinite(vol) or vol <= 0:
                continue
            painter.setBrush(pg.mkBrush(self._points[idx]["color"]))
            height = (vol / volume_max) * max_height
            painter.drawRect(QRectF(float(self._x[idx]) - w, y_min, w * 2, height))
