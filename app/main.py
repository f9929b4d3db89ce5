import argparse
import faulthandler
import logging
import os
import sys
import time
import traceback

import numpy as np
from PyQt6.QtWidgets import QApplication, QMainWindow

from core.bars import read_csv_rows
from core.chart_options import ChartOptions
from ui.charts.order_chart import OrderChart

logger = logging.getLogger("order_chart")

_FAULT_LOG_HANDLE = None


def _install_exception_logging() -> None:
    log_path = os.path.join(os.path.dirname(__file__), "exception.log")

    def _hook(exc_type, exc_value, exc_tb):
        logger.critical("unhandled exception", exc_info=(exc_type, exc_value, exc_tb))
        try:
            with open(log_path, "a", encoding="utf-8") as handle:
                handle.write("\n=== Unhandled Exception ===\n")
                traceback.print_exception(exc_type, exc_value, exc_tb, file=handle)
        except OSError:
            pass

    sys.excepthook = _hook
    import threading

    def _thread_hook(args):
        _hook(args.exc_type, args.exc_value, args.exc_traceback)

    threading.excepthook = _thread_hook


def _demo_rows(count: int = 300, step_s: int = 60) -> list:
    rng = np.random.default_rng(7)
    start = int(time.time()) - count * step_s
    closes = 100.0 + np.cumsum(rng.normal(0.0, 0.4, count))
    rows = []
    prev = closes[0]
    for i, close in enumerate(closes):
        high = max(prev, close) + abs(rng.normal(0.0, 0.2))
        low = min(prev, close) - abs(rng.normal(0.0, 0.2))
        rows.append(
            {
                "time": start + i * step_s,
                "open": round(float(prev), 2),
                "high": round(float(high), 2),
                "low": round(float(low), 2),
                "close": round(float(close), 2),
                "volume": float(rng.integers(100, 5000)),
            }
        )
        prev = close
    return rows


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Candlestick chart with draggable order levels.")
    parser.add_argument("csv", nargs="?", help="OHLCV CSV file; demo data when omitted")
    parser.add_argument("--header-rows", type=int, default=1, help="leading CSV rows to skip")
    parser.add_argument("--tick", type=float, default=0.01, help="snap dragged prices to this tick")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv=None):
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        log_path = os.path.join(os.path.dirname(__file__), "faulthandler.log")
        # Keep the handle alive for the process lifetime; faulthandler may write later.
        global _FAULT_LOG_HANDLE
        _FAULT_LOG_HANDLE = open(log_path, "w", encoding="utf-8")
        _FAULT_LOG_HANDLE.write(f"pid={os.getpid()}\n")
        _FAULT_LOG_HANDLE.flush()
        faulthandler.enable(_FAULT_LOG_HANDLE, all_threads=True)
    except OSError:
        faulthandler.enable(all_threads=True)
    _install_exception_logging()

    app = QApplication(sys.argv[:1])
    options = ChartOptions(snap_tick=args.tick)
    if args.csv:
        rows = read_csv_rows(args.csv)
        options.skip_leading_header_rows = max(0, args.header_rows)
    else:
        rows = _demo_rows()

    window = QMainWindow()
    window.setWindowTitle("Order Chart")
    chart = OrderChart(options=options)
    window.setCentralWidget(chart.plot_widget)
    window.resize(1100, 600)

    bars = chart.set_data(rows)
    logger.info("loaded %d bars", len(bars))
    chart.on_order_change(lambda change: logger.info("order %s changed %s", change.id, list(change.changed)))
    if bars:
        last = bars[-1]
        chart.place_order(
            time=last.time,
            price=last.close,
            side="buy",
            sl=round(last.close * 0.99, 2),
            tp=round(last.close * 1.02, 2),
        )
    window.show()
    chart.reset_view()
    code = app.exec()
    chart.destroy()
    return code


if __name__ == "__main__":
    sys.exit(main())
