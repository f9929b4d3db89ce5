import os
import sys
import unittest

# Allow `import core.*` like the app does when running `python app/main.py`.
REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
APP_DIR = os.path.join(REPO_ROOT, "app")
if APP_DIR not in sys.path:
    sys.path.insert(0, APP_DIR)

from core.order_events import OrderChange, OrderChangeBus
from core.orders import Order


def _change(changed=("sl",)):
    return OrderChange(order=Order(id=7, time=1000, price=100.0, sl=95.0), changed=tuple(changed))


class OrderChangeBusTests(unittest.TestCase):
    def test_fan_out_in_subscription_order(self):
        bus = OrderChangeBus()
        calls = []
        bus.subscribe(lambda c: calls.append(("a", c.id)))
        bus.subscribe(lambda c: calls.append(("b", c.id)))
        bus.emit(_change())
        self.assertEqual(calls, [("a", 7), ("b", 7)])

    def test_failing_listener_is_isolated(self):
        bus = OrderChangeBus()
        calls = []

        def broken(change):
            raise RuntimeError("listener bug")

        bus.subscribe(broken)
        bus.subscribe(calls.append)
        with self.assertLogs("core.order_events", level="ERROR"):
            bus.emit(_change())
        self.assertEqual(len(calls), 1)

    def test_unsubscribe_is_idempotent(self):
        bus = OrderChangeBus()
        calls = []
        unsubscribe = bus.subscribe(calls.append)
        unsubscribe()
        unsubscribe()
        bus.emit(_change())
        self.assertEqual(calls, [])
        self.assertEqual(len(bus), 0)

    def test_same_listener_subscribed_once(self):
        bus = OrderChangeBus()
        calls = []
        bus.subscribe(calls.append)
        bus.subscribe(calls.append)
        bus.emit(_change())
        self.assertEqual(len(calls), 1)

    def test_unsubscribe_during_emit_keeps_current_round(self):
        bus = OrderChangeBus()
        calls = []
        holder = {}

        def first(change):
            calls.append("first")
            holder["unsub"]()

        bus.subscribe(first)
        holder["unsub"] = bus.subscribe(lambda c: calls.append("second"))
        bus.emit(_change())
        bus.emit(_change())
        self.assertEqual(calls, ["first", "second", "first"])

    def test_payload_as_dict(self):
        payload = _change(("sl", "tp")).as_dict()
        self.assertEqual(payload["id"], 7)
        self.assertEqual(payload["sl"], 95.0)
        self.assertIsNone(payload["tp"])
        self.assertEqual(payload["changed"], ["sl", "tp"])

    def test_rejects_non_callable(self):
        with self.assertRaises(TypeError):
            OrderChangeBus().subscribe("nope")


if __name__ == "__main__":
    unittest.main()
