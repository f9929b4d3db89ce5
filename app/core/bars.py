from __future__ import annotations

import csv
import math
import numbers
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np


# Numbers above this are millisecond epochs. 1e11 ms is 1973-03-03, 1e11 s is
# year 5138, so any realistic seconds value stays below it and any ms value
# after 1973 stays above it. Heuristic only: seconds timestamps past year 5138
# or ms timestamps before 1973 are misread.
MS_EPOCH_THRESHOLD = 100_000_000_000

FIELDS = ("time", "open", "high", "low", "close", "volume")

DEFAULT_KEYS: Dict[str, tuple] = {
    "time": ("time", "t", "timestamp", "date", "datetime", "Datetime", "Date"),
    "open": ("open", "o", "Open"),
    "high": ("high", "h", "High"),
    "low": ("low", "l", "Low"),
    "close": ("close", "c", "Close", "Close/Last", "Price"),
    "volume": ("volume", "v", "vol", "Volume"),
}

# Positional rows without an explicit mapping: time, close, high, low, open, volume.
DEFAULT_ARRAY_MAPPING: Dict[str, int] = {"time": 0, "open": 4, "high": 2, "low": 3, "close": 1, "volume": 5}

_CURRENCY_PREFIX = re.compile(r"^([+-]?)[$€£¥]")
_STRIP_CHARS = re.compile(r"[\s,]")
_ISO_OFFSET = re.compile(r"(T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)([+-]\d{2}):?(\d{2})$")


@dataclass
class Bar:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass
class BarMapping:
    # field -> key (or keys) tried before the built-in defaults
    data_mapping: Optional[Dict[str, Union[str, Sequence[str]]]] = None
    # field -> column index for positional rows
    array_mapping: Optional[Dict[str, int]] = None
    skip_leading_header_rows: int = 0

    def candidate_keys(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        custom = self.data_mapping or {}
        for name in FIELDS:
            extra = custom.get(name)
            if extra is None:
                keys: List[str] = []
            elif isinstance(extra, str):
                keys = [extra]
            else:
                keys = list(extra)
            for key in DEFAULT_KEYS[name]:
                if key not in keys:
                    keys.append(key)
            out[name] = keys
        return out

    def column_indexes(self) -> Dict[str, int]:
        if not self.array_mapping:
            return dict(DEFAULT_ARRAY_MAPPING)
        return dict(self.array_mapping)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, (numbers.Real, Decimal))


def coerce_number(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if _is_number(value):
        num = float(value)
    elif isinstance(value, str):
        text = _STRIP_CHARS.sub("", value)
        text = _CURRENCY_PREFIX.sub(r"\1", text)
        if not text:
            return None
        try:
            num = float(text)
        except ValueError:
            return None
    else:
        return None
    return num if math.isfinite(num) else None


def _epoch_to_seconds(num: float) -> Optional[int]:
    if not math.isfinite(num):
        return None
    if num > MS_EPOCH_THRESHOLD:
        return math.floor(num / 1000)
    return math.floor(num)


def _datetime_to_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return math.floor(value.timestamp())


def _parse_time_string(text: str) -> Optional[int]:
    s = text.strip()
    if not s:
        return None
    s = s.replace(" ", "T", 1)
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    s = _ISO_OFFSET.sub(r"\1\2:\3", s)
    try:
        return _datetime_to_seconds(datetime.fromisoformat(s))
    except ValueError:
        pass
    try:
        return _epoch_to_seconds(float(text.strip()))
    except ValueError:
        return None


def to_seconds(value: Any) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if _is_number(value):
        return _epoch_to_seconds(float(value))
    if isinstance(value, str):
        return _parse_time_string(value)
    if isinstance(value, datetime):
        return _datetime_to_seconds(value)
    if isinstance(value, date):
        return _datetime_to_seconds(datetime(value.year, value.month, value.day))
    if isinstance(value, np.datetime64):
        if np.isnat(value):
            return None
        return int(value.astype("datetime64[s]").astype(np.int64))
    return None


def _first_key(row: Mapping[str, Any], candidates: Sequence[str]) -> Any:
    for key in candidates:
        if key in row:
            return row[key]
    return None


def _column(row: Sequence[Any], idx: Optional[int]) -> Any:
    if idx is None:
        return None
    try:
        return row[idx]
    except (IndexError, TypeError):
        return None


def normalize_bars(rows: Optional[Iterable[Any]], mapping: Optional[BarMapping] = None) -> List[Bar]:
    """
    Convert keyed or positional rows into canonical bars.

    Rows whose open/high/low/close are not all finite are dropped. A time that
    cannot be parsed becomes the bar's output index. The result keeps input
    order; batch loads sort it afterwards with `sort_bars`.
    """
    if rows is None or isinstance(rows, (str, bytes, Mapping)):
        return []
    try:
        rows = list(rows)
    except TypeError:
        return []
    mapping = mapping or BarMapping()
    keys = mapping.candidate_keys()
    columns = mapping.column_indexes()
    skip = max(0, int(mapping.skip_leading_header_rows or 0))

    out: List[Bar] = []
    for i, row in enumerate(rows):
        if i < skip:
            continue
        if isinstance(row, Bar):
            row = row.as_dict()
        if isinstance(row, Mapping):
            raw = {name: _first_key(row, keys[name]) for name in FIELDS}
        elif isinstance(row, (list, tuple, np.ndarray)):
            raw = {name: _column(row, columns.get(name)) for name in FIELDS}
        else:
            continue

        time_s = to_seconds(raw["time"])
        if time_s is None:
            time_s = len(out)
        o = coerce_number(raw["open"])
        h = coerce_number(raw["high"])
        lo = coerce_number(raw["low"])
        c = coerce_number(raw["close"])
        if o is None or h is None or lo is None or c is None:
            continue
        out.append(Bar(time=time_s, open=o, high=h, low=lo, close=c, volume=coerce_number(raw["volume"])))
    return out


def sort_bars(bars: Iterable[Bar]) -> List[Bar]:
    return sorted(bars, key=lambda bar: bar.time)


def volume_point(bar: Bar, up_color: str = "#22C55E73", down_color: str = "#EF444473") -> Optional[Dict[str, Any]]:
    if bar.volume is None:
        return None
    color = up_color if bar.close >= bar.open else down_color
    return {"time": bar.time, "value": bar.volume, "color": color}


def read_csv_rows(path: str) -> List[List[str]]:
    # Header lines are kept; skip them with BarMapping.skip_leading_header_rows.
    with open(path, "r", encoding="utf-8", newline="") as handle:
        return [row for row in csv.reader(handle) if row]
