import os
import sys
import unittest

# Allow `import core.*` like the app does when running `python app/main.py`.
REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
APP_DIR = os.path.join(REPO_ROOT, "app")
if APP_DIR not in sys.path:
    sys.path.insert(0, APP_DIR)

from core.orders import InvalidOrderError, OrderRegistry


class FakeLine:
    def __init__(self, **options):
        self.options = dict(options)
        self.applied = []

    def apply_options(self, **options):
        self.applied.append(dict(options))
        self.options.update(options)


class FakeSurface:
    def __init__(self):
        self.created = []
        self.removed = []
        self.marker_pushes = []

    def create_price_line(self, **options):
        line = FakeLine(**options)
        self.created.append(line)
        return line

    def remove_price_line(self, line):
        self.removed.append(line)

    def set_markers(self, markers):
        self.marker_pushes.append(list(markers))

    @property
    def live_lines(self):
        return [line for line in self.created if line not in self.removed]

    @property
    def markers(self):
        return self.marker_pushes[-1] if self.marker_pushes else []


class OrderRegistryTests(unittest.TestCase):
    def setUp(self):
        self.surface = FakeSurface()
        self.registry = OrderRegistry(self.surface, buy_color="green", sell_color="red")
        self.changes = []
        self.registry.on_order_change(self.changes.append)

    def test_place_then_get_returns_inputs(self):
        order_id = self.registry.place_order(time=1000, price=100, side="buy")
        order = self.registry.get_order(order_id)
        self.assertEqual((order.id, order.time, order.price, order.side), (order_id, 1000, 100, "buy"))
        self.assertIsNone(order.sl)
        self.assertIsNone(order.tp)
        self.assertIsNone(order.label)
        self.assertEqual(len(self.surface.created), 1)
        entry = self.surface.created[0]
        self.assertEqual(entry.options["title"], "BUY")
        self.assertEqual(entry.options["color"], "green")
        self.assertEqual(self.changes, [])

    def test_place_with_levels_creates_lines_and_marker(self):
        self.registry.place_order(time=1000, price=100, side="sell", sl=105, tp=90, label="short")
        titles = [line.options["title"] for line in self.surface.created]
        self.assertEqual(titles, ["short", "SL", "TP"])
        self.assertEqual([line.options["price"] for line in self.surface.created], [100, 105, 90])
        (marker,) = self.surface.markers
        self.assertEqual((marker.time, marker.position, marker.shape, marker.color), (1000, "aboveBar", "arrowDown", "red"))

    def test_place_requires_time_and_price(self):
        with self.assertRaises(InvalidOrderError):
            self.registry.place_order(time=None, price=100)
        with self.assertRaises(ValueError):
            self.registry.place_order(time=1000, price=None)
        with self.assertRaises(InvalidOrderError):
            self.registry.place_order(time=1000, price=float("nan"))
        with self.assertRaises(InvalidOrderError):
            self.registry.place_order(time=1000, price=100, side="hold")
        self.assertEqual(self.registry.list_orders(), [])
        self.assertEqual(self.surface.created, [])

    def test_ids_are_never_reused(self):
        first = self.registry.place_order(time=1, price=1)
        self.assertTrue(self.registry.cancel_order(first))
        second = self.registry.place_order(time=1, price=1)
        self.assertGreater(second, first)

    def test_registries_are_independent(self):
        other = OrderRegistry(FakeSurface())
        a = self.registry.place_order(time=1, price=1)
        b = other.place_order(time=1, price=1)
        self.assertEqual((a, b), (1, 1))
        self.assertEqual(len(other.list_orders()), 1)
        self.assertEqual(len(self.registry.list_orders()), 1)

    def test_unknown_ids_return_false(self):
        self.assertFalse(self.registry.cancel_order(12345))
        self.assertFalse(self.registry.update_order(12345, {"sl": 1}))
        self.assertIsNone(self.registry.get_order(12345))
        self.assertEqual(self.changes, [])

    def test_sl_line_created_once_then_updated_in_place(self):
        order_id = self.registry.place_order(time=1000, price=100)
        self.assertTrue(self.registry.update_order(order_id, {"sl": 95}))
        self.assertEqual(len(self.surface.created), 2)
        sl_line = self.surface.created[1]
        self.assertEqual(sl_line.options["title"], "SL")
        self.assertTrue(self.registry.update_order(order_id, {"sl": 96}))
        self.assertEqual(len(self.surface.created), 2)
        self.assertIs(self.surface.created[1], sl_line)
        self.assertEqual(sl_line.options["price"], 96)
        self.assertEqual(self.registry.get_order(order_id).sl, 96)
        self.assertEqual([c.changed for c in self.changes], [("sl",), ("sl",)])

    def test_update_reports_changed_fields_in_order(self):
        order_id = self.registry.place_order(time=1000, price=100)
        self.registry.update_order(order_id, label="L", tp=110, price=101)
        self.assertEqual(self.changes[-1].changed, ("price", "tp", "label"))
        change = self.changes[-1]
        self.assertEqual(change.id, order_id)
        self.assertEqual(change.order.price, 101)
        self.assertEqual(change.as_dict()["changed"], ["price", "tp", "label"])
        entry = self.surface.created[0]
        self.assertEqual(entry.options["title"], "L")
        self.assertEqual(entry.options["price"], 101)
        self.assertEqual(self.surface.markers[0].text, "L")

    def test_patch_without_recognized_fields_is_silent(self):
        order_id = self.registry.place_order(time=1000, price=100)
        self.assertTrue(self.registry.update_order(order_id, {"foo": 1, "sl": None}))
        self.assertTrue(self.registry.update_order(order_id))
        self.assertEqual(self.changes, [])

    def test_side_change_restyles_marker_and_entry(self):
        order_id = self.registry.place_order(time=1000, price=100, side="buy")
        self.registry.update_order(order_id, side="SELL")
        order = self.registry.get_order(order_id)
        self.assertEqual(order.side, "sell")
        marker = self.surface.markers[0]
        self.assertEqual((marker.position, marker.shape, marker.color), ("aboveBar", "arrowDown", "red"))
        entry = self.surface.created[0]
        self.assertEqual((entry.options["color"], entry.options["title"]), ("red", "SELL"))
        self.assertEqual(self.changes[-1].changed, ("side",))

    def test_time_change_resorts_markers(self):
        a = self.registry.place_order(time=100, price=1)
        self.registry.place_order(time=200, price=1)
        self.assertEqual([m.time for m in self.surface.markers], [100, 200])
        self.registry.update_order(a, time=300)
        self.assertEqual([m.time for m in self.surface.markers], [200, 300])
        self.assertEqual(self.changes[-1].changed, ("time",))

    def test_price_change_pushes_moved_marker(self):
        order_id = self.registry.place_order(time=5, price=103)
        pushed = self.surface.markers
        pushes = len(self.surface.marker_pushes)
        self.registry.update_order(order_id, price=120)
        self.assertEqual(len(self.surface.marker_pushes), pushes + 1)
        self.assertEqual([m.price for m in self.surface.markers], [120])
        # Earlier pushes are snapshots, not live views of registry state.
        self.assertEqual([m.price for m in pushed], [103])

    def test_list_orders_keeps_insertion_order(self):
        ids = [self.registry.place_order(time=t, price=1) for t in (300, 100, 200)]
        self.assertEqual([o.id for o in self.registry.list_orders()], ids)

    def test_returned_orders_are_copies(self):
        order_id = self.registry.place_order(time=1000, price=100)
        snapshot = self.registry.get_order(order_id)
        snapshot.price = 1.0
        self.registry.list_orders()[0].sl = 5.0
        order = self.registry.get_order(order_id)
        self.assertEqual(order.price, 100)
        self.assertIsNone(order.sl)

    def test_invalid_patch_changes_nothing(self):
        order_id = self.registry.place_order(time=1000, price=100)
        with self.assertRaises(InvalidOrderError):
            self.registry.update_order(order_id, {"price": 105, "side": "flat"})
        self.assertEqual(self.registry.get_order(order_id).price, 100)
        self.assertEqual(self.changes, [])

    def test_cancel_removes_handles_and_notifies_once(self):
        order_id = self.registry.place_order(time=1000, price=100, sl=95, tp=110)
        self.assertTrue(self.registry.cancel_order(order_id))
        self.assertEqual(self.surface.live_lines, [])
        self.assertEqual(len(self.surface.removed), 3)
        self.assertEqual(self.surface.markers, [])
        self.assertEqual(self.registry.list_orders(), [])
        self.assertEqual([c.changed for c in self.changes], [("cancel",)])
        self.assertEqual(self.changes[0].order.sl, 95)
        self.assertFalse(self.registry.cancel_order(order_id))
        self.assertEqual(len(self.changes), 1)

    def test_level_prices_only_lists_stop_and_target(self):
        a = self.registry.place_order(time=1, price=100, sl=95)
        b = self.registry.place_order(time=2, price=50, tp=60)
        self.assertEqual(self.registry.level_prices(), [(a, "sl", 95), (b, "tp", 60)])

    def test_destroy_releases_everything_without_notifying(self):
        self.registry.place_order(time=1, price=100, sl=95, tp=110)
        self.registry.place_order(time=2, price=100)
        self.registry.destroy()
        self.assertEqual(self.surface.live_lines, [])
        self.assertEqual(self.surface.markers, [])
        self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.changes, [])
        self.assertEqual(len(self.registry.bus), 0)


if __name__ == "__main__":
    unittest.main()
