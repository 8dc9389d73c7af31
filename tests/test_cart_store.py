# tests/test_cart_store.py

import json
import unittest

from helpers import TempStorage, make_menu, make_option

from pickup.cart_store import STORE_SWITCH_PROMPT, CartStore
from pickup.config import CART_STORAGE_KEY


def _accept(_message):
    return True


class CartStoreTests(unittest.TestCase):
    """
    Cart mutations and their persistence.

    GUARANTEES:
    - Lines merge only on the same menu AND the same option set
    - The total always equals the sum of (menu + options) x quantity
    - A cart holds one store; switching needs an explicit confirmation
    - An empty cart is stored as nothing at all
    """

    def setUp(self):
        self.tmp = TempStorage()
        self.storage = self.tmp.store
        self.prompts = []

        def record_and_decline(message):
            self.prompts.append(message)
            return False

        self.cart = CartStore(self.storage, confirm=record_and_decline)
        self.cart.load()

    def tearDown(self):
        self.tmp.cleanup()

    # ----------------------------------
    # Merging
    # ----------------------------------

    def test_same_menu_and_options_merge_into_one_line(self):
        menu = make_menu("m1")
        self.cart.add_item("s1", "Kimbap House", menu, 1)
        self.cart.add_item("s1", "Kimbap House", menu, 2)

        self.assertEqual(len(self.cart.cart.items), 1)
        self.assertEqual(self.cart.cart.items[0].quantity, 3)

    def test_option_order_does_not_split_lines(self):
        menu = make_menu("m1")
        cheese, egg = make_option("o1"), make_option("o2")
        self.cart.add_item("s1", "Kimbap House", menu, 1, [cheese, egg])
        self.cart.add_item("s1", "Kimbap House", menu, 1, [egg, cheese])

        self.assertEqual(len(self.cart.cart.items), 1)
        self.assertEqual(self.cart.cart.items[0].quantity, 2)

    def test_different_options_are_separate_lines(self):
        menu = make_menu("m1")
        self.cart.add_item("s1", "Kimbap House", menu, 1, [make_option("o1")])
        self.cart.add_item("s1", "Kimbap House", menu, 1)

        self.assertEqual(len(self.cart.cart.items), 2)

    # ----------------------------------
    # Totals
    # ----------------------------------

    def test_total_includes_options_times_quantity(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1", 5000), 2, [make_option("o1", 500)])
        self.cart.add_item("s1", "Kimbap House", make_menu("m2", 3000), 1)

        self.assertEqual(self.cart.get_total(), 2 * 5500 + 3000)
        self.assertEqual(self.cart.get_item_count(), 3)

    def test_empty_cart_totals_are_zero(self):
        self.assertIsNone(self.cart.cart)
        self.assertEqual(self.cart.get_total(), 0)
        self.assertEqual(self.cart.get_item_count(), 0)

    # ----------------------------------
    # Store switching
    # ----------------------------------

    def test_store_switch_declined_keeps_cart(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1"), 1)

        added = self.cart.add_item("s2", "Ramyun Bar", make_menu("m9"), 1)

        self.assertFalse(added)
        self.assertEqual(self.prompts, [STORE_SWITCH_PROMPT])
        self.assertEqual(self.cart.cart.store_id, "s1")
        self.assertEqual([i.menu.id for i in self.cart.cart.items], ["m1"])

    def test_store_switch_confirmed_replaces_cart(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1"), 1)

        added = self.cart.add_item("s2", "Ramyun Bar", make_menu("m9"), 2, confirm=_accept)

        self.assertTrue(added)
        self.assertEqual(self.cart.cart.store_id, "s2")
        self.assertEqual(self.cart.cart.store_name, "Ramyun Bar")
        self.assertEqual([(i.menu.id, i.quantity) for i in self.cart.cart.items], [("m9", 2)])

    def test_first_item_needs_no_confirmation(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1"), 1)
        self.assertEqual(self.prompts, [])

    # ----------------------------------
    # Input checks
    # ----------------------------------

    def test_quantity_below_one_is_rejected(self):
        with self.assertRaises(ValueError):
            self.cart.add_item("s1", "Kimbap House", make_menu("m1"), 0)
        self.assertIsNone(self.cart.cart)

    def test_menu_without_id_is_rejected(self):
        with self.assertRaises(ValueError):
            self.cart.add_item("s1", "Kimbap House", make_menu(""), 1)

    # ----------------------------------
    # Quantity / removal
    # ----------------------------------

    def test_update_quantity_to_zero_removes_line_and_empties_cart(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1"), 2)

        self.cart.update_quantity("m1", 0)

        self.assertIsNone(self.cart.cart)
        self.assertIsNone(self.storage.read(CART_STORAGE_KEY))

    def test_update_quantity_sets_new_value(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1", 4000), 1)
        self.cart.update_quantity("m1", 4)
        self.assertEqual(self.cart.get_total(), 16000)

    def test_remove_item_keeps_other_lines(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1"), 1)
        self.cart.add_item("s1", "Kimbap House", make_menu("m2"), 1)

        self.cart.remove_item("m1")

        self.assertEqual([i.menu.id for i in self.cart.cart.items], ["m2"])

    # ----------------------------------
    # Persistence
    # ----------------------------------

    def test_cart_survives_reload(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1", 5000), 2, [make_option("o1", 500)])

        reloaded = CartStore(self.storage)
        reloaded.load()

        self.assertTrue(reloaded.has_hydrated)
        self.assertEqual(reloaded.cart.store_id, "s1")
        self.assertEqual(reloaded.get_total(), 11000)
        self.assertEqual(reloaded.cart.items[0].option_key, frozenset({"o1"}))

    def test_clear_cart_purges_persisted_record(self):
        self.cart.add_item("s1", "Kimbap House", make_menu("m1"), 1)

        self.cart.clear_cart()

        self.assertIsNone(self.storage.read(CART_STORAGE_KEY))
        reloaded = CartStore(self.storage)
        self.assertIsNone(reloaded.load())

    def test_undecodable_record_is_discarded(self):
        self.storage.write_raw(CART_STORAGE_KEY, "{not json")

        cart = CartStore(self.storage)

        self.assertIsNone(cart.load())
        self.assertTrue(cart.has_hydrated)
        self.assertIsNone(self.storage.read(CART_STORAGE_KEY))

    def test_line_without_menu_id_discards_whole_cart(self):
        document = {
            "version": 1,
            "store_id": "s1",
            "store_name": "Kimbap House",
            "items": [
                {"menu": {"id": "m1", "name": "Tuna", "price": 4000}, "quantity": 1},
                {"menu": {"id": "", "name": "Ghost", "price": 0}, "quantity": 1},
            ],
        }
        self.storage.write_raw(CART_STORAGE_KEY, json.dumps(document))

        cart = CartStore(self.storage)

        self.assertIsNone(cart.load())
        self.assertIsNone(self.storage.read(CART_STORAGE_KEY))

    def test_unknown_snapshot_version_is_discarded(self):
        document = {
            "version": 99,
            "store_id": "s1",
            "store_name": "Kimbap House",
            "items": [{"menu": {"id": "m1", "name": "Tuna", "price": 4000}, "quantity": 1}],
        }
        self.storage.write_raw(CART_STORAGE_KEY, json.dumps(document))

        cart = CartStore(self.storage)

        self.assertIsNone(cart.load())
