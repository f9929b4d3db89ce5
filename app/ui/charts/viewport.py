from __future__ import annotations

import math
from typing import Any, Optional

import pyqtgraph as pg
from PyQt6.QtCore import QEvent, QObject, QPointF, Qt
from PyQt6.QtGui import QFont

from core.chart_options import ChartOptions, InteractionOptions
from core.drag import CURSOR_RESIZE, DragController


class InteractiveViewBox(pg.ViewBox):
    """
    ViewBox whose pan/zoom gestures follow an `InteractionOptions` object.

    Wheel zooms the time axis (scale.mouse_wheel), left-drag pans
    (scroll.pressed_mouse_move), other drag buttons zoom (scale.pinch).
    scroll.mouse_wheel, scroll.horz_touch_drag and scroll.vert_touch_drag have
    no pyqtgraph gesture to gate and are ignored here.
    """

    def __init__(self, *args, interaction: Optional[InteractionOptions] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.interaction = interaction or InteractionOptions()

    def wheelEvent(self, ev, axis=None) -> None:
        if ev is None:
            return
        if not self.interaction.handle_scale.mouse_wheel:
            ev.ignore()
            return
        try:
            delta = ev.angleDelta().y()
        except Exception:
            delta = ev.delta() if hasattr(ev, "delta") else 0
        if delta == 0:
            return
        scale = 1.06 ** (delta / 120.0)
        self.scaleBy((1.0 / scale, 1.0))
        ev.accept()

    def mouseDragEvent(self, ev, axis=None) -> None:
        if ev.button() == Qt.MouseButton.LeftButton:
            allowed = self.interaction.handle_scroll.pressed_mouse_move
        else:
            allowed = self.interaction.handle_scale.pinch
        if not allowed:
            ev.ignore()
            return
        super().mouseDragEvent(ev, axis=axis)


def _axis_drag_allowed(axis: pg.AxisItem, attr: str) -> bool:
    view = axis.linkedView()
    interaction = getattr(view, "interaction", None)
    if interaction is None:
        return True
    return bool(getattr(interaction.handle_scale, attr))


class PriceAxis(pg.AxisItem):
    def mouseDragEvent(self, ev) -> None:
        if ev.button() != Qt.MouseButton.LeftButton or not _axis_drag_allowed(self, "axis_price"):
            ev.ignore()
            return
        ev.accept()
        view = self.linkedView()
        if view is None:
            return
        dy = ev.pos().y() - ev.lastPos().y()
        scale = 1.01 ** dy
        try:
            center = view.mapSceneToView(ev.scenePos())
        except Exception:
            center = None
        if center is not None:
            view.scaleBy((1.0, scale), center=center)
        else:
            view.scaleBy((1.0, scale))


class TimeAxis(pg.DateAxisItem):
    def mouseDragEvent(self, ev) -> None:
        if ev.button() != Qt.MouseButton.LeftButton or not _axis_drag_allowed(self, "axis_time"):
            ev.ignore()
            return
        ev.accept()
        view = self.linkedView()
        if view is None:
            return
        dx = ev.pos().x() - ev.lastPos().x()
        view.scaleBy((1.01 ** -dx, 1.0))


def create_plot_widget(options: ChartOptions) -> pg.PlotWidget:
    view_box = InteractiveViewBox(interaction=options.interaction)
    price_axis = PriceAxis(orientation="right")
    time_axis = TimeAxis(orientation="bottom")
    plot_widget = pg.PlotWidget(viewBox=view_box, axisItems={"right": price_axis, "bottom": time_axis})
    plot_widget.setBackground(options.background)
    plot_widget.setMinimumHeight(int(options.height))
    plot_widget.showGrid(x=True, y=True, alpha=0.2)
    plot_widget.setClipToView(True)
    plot_widget.showAxis("right")
    plot_widget.hideAxis("left")
    plot_widget.setMenuEnabled(False)
    font = QFont()
    font.setPointSize(8)
    for axis_name in ("bottom", "right"):
        axis = plot_widget.getAxis(axis_name)
        axis.setPen(pg.mkPen(options.grid_color))
        axis.setTextPen(pg.mkPen(options.text_color))
        axis.setTickFont(font)
    price_axis.setWidth(60)
    view_box.enableAutoRange("x", False)
    view_box.enableAutoRange("y", False)
    return plot_widget


class ChartViewport:
    """
    Pixel/price conversion and interaction toggles for one plot widget.

    Pixel coordinates are in the plot widget's viewport, the same space as the
    mouse events it receives.
    """

    def __init__(self, plot_widget: pg.PlotWidget) -> None:
        self.plot_widget = plot_widget
        self.view_box = plot_widget.getViewBox()
        self._interaction = getattr(self.view_box, "interaction", None) or InteractionOptions()

    def _has_geometry(self) -> bool:
        rect = self.view_box.sceneBoundingRect()
        return rect.width() > 0 and rect.height() > 0

    def price_to_coordinate(self, price: float) -> Optional[float]:
        try:
            if not self._has_geometry():
                return None
            scene_pt = self.view_box.mapViewToScene(QPointF(0.0, float(price)))
            if scene_pt is None:
                return None
            y = self.plot_widget.viewportTransform().map(scene_pt).y()
        except (RuntimeError, TypeError, ValueError):
            return None
        return y if math.isfinite(y) else None

    def coordinate_to_price(self, y: float) -> Optional[float]:
        try:
            if not self._has_geometry():
                return None
            inverse, ok = self.plot_widget.viewportTransform().inverted()
            if not ok:
                return None
            scene_pt = inverse.map(QPointF(0.0, float(y)))
            view_pt = self.view_box.mapSceneToView(scene_pt)
            if view_pt is None:
                return None
            price = view_pt.y()
        except (RuntimeError, TypeError, ValueError):
            return None
        return price if math.isfinite(price) else None

    def interaction(self) -> InteractionOptions:
        return self._interaction

    def apply_interaction(self, options: InteractionOptions) -> None:
        self._interaction = options
        if isinstance(self.view_box, InteractiveViewBox):
            self.view_box.interaction = options
            return
        # Plain ViewBox: only an on/off per axis is available.
        enabled = options.handle_scroll.any_enabled() or options.handle_scale.mouse_wheel
        self.view_box.setMouseEnabled(x=enabled, y=enabled)


class QtPointerSurface:
    def __init__(self, plot_widget: pg.PlotWidget, default_cursor: Qt.CursorShape = Qt.CursorShape.CrossCursor) -> None:
        self.plot_widget = plot_widget
        self.default_cursor = default_cursor
        self.cursor = ""
        self._grabbed = False
        try:
            plot_widget.viewport().setCursor(default_cursor)
        except RuntimeError:
            pass

    def set_cursor(self, cursor: str) -> None:
        self.cursor = cursor
        shape = Qt.CursorShape.SizeVerCursor if cursor == CURSOR_RESIZE else self.default_cursor
        try:
            self.plot_widget.viewport().setCursor(shape)
        except RuntimeError:
            pass

    def capture_pointer(self, pointer_id: Any = None) -> None:
        try:
            self.plot_widget.viewport().grabMouse()
            self._grabbed = True
        except RuntimeError:
            pass

    def release_pointer(self, pointer_id: Any = None) -> None:
        if not self._grabbed:
            return
        self._grabbed = False
        try:
            self.plot_widget.viewport().releaseMouse()
        except RuntimeError:
            pass


class PointerEventFilter(QObject):
    """Feeds the plot viewport's mouse events to a DragController; never consumes them."""

    def __init__(self, plot_widget: pg.PlotWidget, controller: DragController) -> None:
        super().__init__(plot_widget)
        self.plot_widget = plot_widget
        self.controller = controller
        plot_widget.viewport().installEventFilter(self)

    def detach(self) -> None:
        try:
            self.plot_widget.viewport().removeEventFilter(self)
        except RuntimeError:
            pass

    def eventFilter(self, obj, event) -> bool:
        etype = event.type()
        if etype == QEvent.Type.MouseMove:
            self.controller.pointer_move(event.position().y())
        elif etype == QEvent.Type.MouseButtonPress:
            if event.button() == Qt.MouseButton.LeftButton:
                self.controller.pointer_down(event.position().y(), pointer_id=event.button())
        elif etype == QEvent.Type.MouseButtonRelease:
            if event.button() == Qt.MouseButton.LeftButton:
                self.controller.pointer_up(pointer_id=event.button())
        elif etype == QEvent.Type.Leave:
            self.controller.pointer_leave()
        return False
