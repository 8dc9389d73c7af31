# tests/test_resources.py

import asyncio
import unittest

from helpers import FakeTransport, TempStorage, build_backend, envelope, order_json, page_json

from pickup.api import HttpResponse
from pickup.config import MENU_PLACEHOLDER_IMAGE_URL, UNREADABLE_RESPONSE_MESSAGE
from pickup.errors import ApiError
from pickup.models import OrderStatus, PaymentMethod, Role


class ResourceTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = TempStorage()
        self.transport = FakeTransport()
        self.tokens, self.client, self.backend = build_backend(self.tmp.store, self.transport)
        self.tokens.set("access", "refresh")

    def tearDown(self):
        self.tmp.cleanup()

    def run_async(self, coro):
        return asyncio.run(coro)

    def last_call(self):
        return self.transport.calls[-1]


class StoreApiTests(ResourceTestCase):
    def test_search_sends_keyword(self):
        self.transport.add("GET", "/api/stores/search", HttpResponse(status=200, body=page_json([{"id": "s1", "name": "Kimbap House"}])))

        page = self.run_async(self.backend.stores.search_stores("kimbap"))

        self.assertEqual(page.content[0].name, "Kimbap House")
        self.assertEqual(self.last_call().query["keyword"], "kimbap")

    def test_stores_by_category_is_single_page(self):
        self.transport.add("GET", "/api/categories/Korean/stores", envelope([{"id": "s1", "name": "A"}, {"id": "s2", "name": "B"}]))

        page = self.run_async(self.backend.stores.stores_by_category("Korean"))

        self.assertEqual(page.total_elements, 2)
        self.assertEqual(page.total_pages, 1)

    def test_store_detail_and_my_stores(self):
        self.transport.add("GET", "/api/stores/s1", envelope({"id": "s1", "name": "A", "categories": [{"name": "Korean"}]}))
        self.transport.add("GET", "/api/stores/my", envelope([{"id": "s1", "name": "A"}]))

        store = self.run_async(self.backend.stores.get_store("s1"))
        mine = self.run_async(self.backend.stores.my_stores())

        self.assertEqual(store.category_names, ("Korean",))
        self.assertEqual([s.id for s in mine], ["s1"])


class MenuApiTests(ResourceTestCase):
    def test_blank_image_falls_back_to_placeholder(self):
        self.transport.add("POST", "/api/stores/s1/menus", envelope({"id": "m1", "name": "Tuna", "price": 4000}))
        self.transport.add("PUT", "/api/stores/s1/menus/m1", envelope(None))

        self.run_async(self.backend.menus.create_menu("s1", {"name": "Tuna", "price": 4000, "imageUrl": "  "}))
        self.assertEqual(self.last_call().body["imageUrl"], MENU_PLACEHOLDER_IMAGE_URL)

        self.run_async(self.backend.menus.update_menu("s1", "m1", {"name": "Tuna", "imageUrl": "https://img/x.png"}))
        self.assertEqual(self.last_call().body["imageUrl"], "https://img/x.png")

    def test_menu_detail_and_delete(self):
        self.transport.add("GET", "/api/stores/s1/menus/m1", envelope({"id": "m1", "name": "Tuna", "price": 4000, "options": [{"id": "o1", "optionName": "Cheese", "optionPrice": 500}]}))
        self.transport.add("DELETE", "/api/stores/s1/menus/m1", envelope(None))

        menu = self.run_async(self.backend.menus.get_menu("s1", "m1"))
        self.run_async(self.backend.menus.delete_menu("s1", "m1"))

        self.assertEqual(menu.options[0].name, "Cheese")
        self.assertEqual(menu.options[0].price, 500)
        self.assertEqual(self.last_call().method, "DELETE")

    def test_option_calls_reject_empty_menu_id(self):
        for call in (
            lambda: self.backend.menus.add_option("s1", "", "Cheese", "", 500),
            lambda: self.backend.menus.update_option("s1", "", "o1", {"optionPrice": 700}),
            lambda: self.backend.menus.delete_option("s1", "", "o1"),
        ):
            with self.assertRaises(ValueError):
                self.run_async(call())
        self.assertEqual(self.transport.calls, [])

    def test_option_lifecycle(self):
        self.transport.add("POST", "/api/stores/s1/menus/m1/options", envelope({"id": "o1", "optionName": "Cheese", "optionPrice": 500}))
        self.transport.add("PUT", "/api/stores/s1/menus/m1/options/o1", envelope(None))
        self.transport.add("DELETE", "/api/stores/s1/menus/m1/options/o1", envelope(None))

        option = self.run_async(self.backend.menus.add_option("s1", "m1", "Cheese", "sliced", 500))
        self.run_async(self.backend.menus.update_option("s1", "m1", "o1", {"optionPrice": 700}))
        self.run_async(self.backend.menus.delete_option("s1", "m1", "o1"))

        self.assertEqual(option.id, "o1")
        self.assertEqual(
            [c.method for c in self.transport.calls],
            ["POST", "PUT", "DELETE"],
        )


class MalformedResponseTests(ResourceTestCase):
    def test_unknown_order_status_is_reported_as_api_error(self):
        self.transport.add("POST", "/api/orders", envelope(order_json("o1", "CREATED")))

        with self.assertRaises(ApiError) as ctx:
            self.run_async(self.backend.orders.create_order({"storeId": "s1"}))

        self.assertEqual(ctx.exception.message, UNREADABLE_RESPONSE_MESSAGE)

    def test_list_where_page_expected_is_reported_as_api_error(self):
        self.transport.add("GET", "/api/orders/my", envelope([order_json("o1", "PENDING")]))

        with self.assertRaises(ApiError):
            self.run_async(self.backend.orders.my_orders())


class PaymentApiTests(ResourceTestCase):
    def test_confirm_payload(self):
        self.transport.add("POST", "/api/payments/ord-1/confirm", envelope({"status": "DONE"}))

        self.run_async(
            self.backend.payments.confirm_payment(
                "ord-1", title="t", content="c", user_id=7, payment_method=PaymentMethod.BANK_TRANSFER, amount=9000
            )
        )

        body = self.last_call().body
        self.assertEqual(body["paymentMethod"], "BANK_TRANSFER")
        self.assertEqual(body["paymentAmount"], 9000)


class ReviewApiTests(ResourceTestCase):
    def test_rating_outside_range_is_rejected(self):
        with self.assertRaises(ValueError):
            self.run_async(self.backend.reviews.create_review("s1", 6))
        with self.assertRaises(ValueError):
            self.run_async(self.backend.reviews.update_review("r1", rating=0))
        self.assertEqual(self.transport.calls, [])

    def test_review_lifecycle(self):
        review = {"id": "r1", "storeId": "s1", "userId": 7, "rating": 5, "content": "Great"}
        self.transport.add("POST", "/api/reviews", envelope(review))
        self.transport.add("PATCH", "/api/reviews/r1", envelope(dict(review, rating=4)))
        self.transport.add("DELETE", "/api/reviews/r1", envelope(None))

        created = self.run_async(self.backend.reviews.create_review("s1", 5, "Great"))
        updated = self.run_async(self.backend.reviews.update_review("r1", rating=4))
        self.run_async(self.backend.reviews.delete_review("r1"))

        self.assertEqual(created.rating, 5)
        self.assertEqual(updated.rating, 4)
        self.assertEqual(self.transport.calls[1].body, {"rating": 4})


class AdminApiTests(ResourceTestCase):
    def test_listing_pages(self):
        self.transport.add("GET", "/api/admin/users", envelope(page_json([{"id": 3, "username": "lee", "role": "OWNER"}])))
        self.transport.add("GET", "/api/admin/stores", envelope(page_json([{"id": "s1", "name": "A", "status": "PENDING"}])))

        users = self.run_async(self.backend.admin.users(page=1))
        stores = self.run_async(self.backend.admin.stores())

        self.assertEqual(users.content[0].role, Role.OWNER)
        self.assertEqual(self.transport.calls[0].query["page"], "1")
        self.assertEqual(stores.content[0].status, "PENDING")

    def test_user_management(self):
        self.transport.add("PATCH", "/api/admin/users/3/role", envelope(None))
        self.transport.add("DELETE", "/api/admin/users/3", envelope(None))

        self.run_async(self.backend.admin.update_user_role(3, Role.OWNER))
        self.assertEqual(self.last_call().body, {"role": "OWNER"})

        self.run_async(self.backend.admin.delete_user(3))
        self.assertEqual(self.last_call().path, "/api/admin/users/3")

    def test_order_status_change(self):
        self.transport.add("PATCH", "/api/orders/o1/status", envelope(None))

        self.run_async(self.backend.admin.update_order_status("o1", OrderStatus.READY))

        self.assertEqual(self.last_call().body, {"status": "READY"})

    def test_store_status_goes_in_query(self):
        self.transport.add("PATCH", "/api/stores/s1/status", envelope(None))
        self.transport.add("DELETE", "/api/admin/stores/s1", envelope(None))

        self.run_async(self.backend.admin.update_store_status("s1", "APPROVED"))
        self.assertEqual(self.last_call().query, {"status": "APPROVED"})
        self.assertIsNone(self.last_call().body)

        self.run_async(self.backend.admin.delete_store("s1"))
        self.assertEqual(self.last_call().method, "DELETE")

    def test_unknown_store_status_is_rejected(self):
        with self.assertRaises(ValueError):
            self.run_async(self.backend.admin.update_store_status("s1", "OPEN"))
        self.assertEqual(self.transport.calls, [])

    def test_stats_parse_order_breakdown(self):
        self.transport.add(
            "GET",
            "/api/admin/stats",
            envelope(
                {
                    "totalUsers": 10,
                    "totalOrders": 4,
                    "totalStores": 2,
                    "totalRevenue": 50000,
                    "orderStats": [{"status": "COMPLETED", "count": 3}, {"status": "CANCELLED", "count": 1}],
                }
            ),
        )

        stats = self.run_async(self.backend.admin.stats())

        self.assertEqual(stats.order_stats, {"COMPLETED": 3, "CANCELLED": 1})
        self.assertEqual(stats.total_revenue, 50000)
