from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .bars import BarMapping


FOLLOW_MODES = ("never", "ifPinned", "always")


@dataclass(frozen=True)
class ScrollOptions:
    mouse_wheel: bool = True
    pressed_mouse_move: bool = True
    horz_touch_drag: bool = True
    vert_touch_drag: bool = True

    def any_enabled(self) -> bool:
        return self.mouse_wheel or self.pressed_mouse_move or self.horz_touch_drag or self.vert_touch_drag


@dataclass(frozen=True)
class ScaleOptions:
    mouse_wheel: bool = True
    pinch: bool = True
    axis_time: bool = True
    axis_price: bool = True


@dataclass(frozen=True)
class InteractionOptions:
    """Scroll (pan) and scale (zoom) permissions, always applied as one object."""

    handle_scroll: ScrollOptions = field(default_factory=ScrollOptions)
    handle_scale: ScaleOptions = field(default_factory=ScaleOptions)


FROZEN_INTERACTION = InteractionOptions(
    handle_scroll=ScrollOptions(False, False, False, False),
    handle_scale=ScaleOptions(False, False, False, False),
)


@dataclass
class ChartOptions:
    height: int = 420
    background: str = "#000000"
    text_color: str = "#D6E2F0"
    grid_color: str = "#2D2D2D"
    up_color: str = "#22C55E"
    down_color: str = "#EF4444"
    buy_color: str = "#22C55E"
    sell_color: str = "#EF4444"
    data_mapping: Optional[Dict[str, Union[str, Sequence[str]]]] = None
    array_mapping: Optional[Dict[str, int]] = None
    skip_leading_header_rows: int = 0
    fix_left_edge: bool = True
    interaction: InteractionOptions = field(default_factory=InteractionOptions)
    drag_threshold_px: float = 6.0
    # Either a callable snapping a raw price or a tick size; the callable wins.
    snap: Optional[Callable[[float], float]] = None
    snap_tick: Optional[float] = None
    follow_latest_on_update: str = "ifPinned"
    initial_data: List[Any] = field(default_factory=list)

    def validate(self) -> None:
        if self.follow_latest_on_update not in FOLLOW_MODES:
            raise ValueError(
                f"follow_latest_on_update must be one of {FOLLOW_MODES}, got {self.follow_latest_on_update!r}"
            )
        if not self.drag_threshold_px > 0:
            raise ValueError(f"drag_threshold_px must be positive, got {self.drag_threshold_px!r}")
        if self.snap_tick is not None and not self.snap_tick > 0:
            raise ValueError(f"snap_tick must be positive, got {self.snap_tick!r}")
        if self.skip_leading_header_rows < 0:
            raise ValueError("skip_leading_header_rows cannot be negative")

    def bar_mapping(self) -> BarMapping:
        return BarMapping(
            data_mapping=self.data_mapping,
            array_mapping=self.array_mapping,
            skip_leading_header_rows=self.skip_leading_header_rows,
        )
