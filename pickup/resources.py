"""Backend resources: one class per REST area, all sharing one ``ApiClient``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from pickup.api import ApiClient, unwrap
from pickup.config import MENU_PLACEHOLDER_IMAGE_URL, UNREADABLE_RESPONSE_MESSAGE
from pickup.errors import ApiError, AuthenticationError
from pickup.models import (
    AdminStats,
    Category,
    DailySales,
    Menu,
    MenuOption,
    Order,
    OrderStatus,
    Page,
    PaymentMethod,
    PopularMenu,
    Review,
    ReviewStats,
    Role,
    SalesSummary,
    Store,
    User,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STORE_STATUSES = ("PENDING", "APPROVED", "REJECTED")


def _parsed(parse: Callable[[Any], T], body: Any) -> T:
    """Run a model parser, reporting a malformed payload as an ``ApiError``."""
    try:
        return parse(body)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.error("response_parse_failed error=%s: %s", type(exc).__name__, exc)
        raise ApiError(UNREADABLE_RESPONSE_MESSAGE) from exc


def _rows(parse: Callable[[Any], T], body: Any) -> list[T]:
    return _parsed(lambda rows: [parse(row) for row in rows or []], body)


def _page(parse: Callable[[Any], T], body: Any) -> Page[T]:
    return _parsed(lambda data: Page.from_api(data or {}, parse), body)


@dataclass(frozen=True)
class LoginTokens:
    access_token: str
    refresh_token: str | None


class AuthApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def login(self, username: str, password: str) -> LoginTokens:
        try:
            response = await self.client.request(
                "POST", "/api/login", json_body={"username": username, "password": password}, auth=False
            )
        except ApiError as exc:
            if exc.status == 401:
                raise AuthenticationError(exc.message or "Invalid username or password.", status=401) from exc
            raise

        body = response.body if isinstance(response.body, dict) else {}
        access = body.get("accessToken")
        header = response.headers.get("authorization", "")
        if not access and header.startswith("Bearer "):
            access = header[len("Bearer ") :]
        if not access:
            raise AuthenticationError("Login response carried no access token.")

        self.client.tokens.set(access, body.get("refreshToken"))
        logger.info("login_succeeded username=%s", username)
        return LoginTokens(access_token=access, refresh_token=body.get("refreshToken"))

    async def join(
        self,
        *,
        username: str,
        password: str,
        nickname: str,
        email: str,
        role: Role = Role.CUSTOMER,
        age: int | None = None,
        male: bool | None = None,
        road_address: str = "",
        address_detail: str = "",
    ) -> None:
        await self.client.post(
            "/api/join",
            {
                "username": username,
                "password": password,
                "nickname": nickname,
                "email": email,
                "role": role.value,
                "age": age,
                "male": male,
                "roadAddress": road_address,
                "addressDetail": address_detail,
            },
            auth=False,
        )
        logger.info("join_succeeded username=%s role=%s", username, role.value)

    async def refresh(self) -> None:
        await self.client.refresh_tokens()

    async def logout(self) -> None:
        try:
            await self.client.post("/api/auth/logout")
        finally:
            self.client.tokens.clear()

    async def get_user(self, user_id: int) -> User:
        return _parsed(User.from_api, await self.client.get(f"/api/users/{user_id}"))


class StoreApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def list_stores(self, page: int = 0, size: int = 20) -> Page[Store]:
        body = await self.client.get("/api/stores", {"page": page, "size": size})
        return _page(Store.from_api, body)

    async def search_stores(self, keyword: str, page: int = 0, size: int = 20) -> Page[Store]:
        body = await self.client.get("/api/stores/search", {"keyword": keyword, "page": page, "size": size})
        return _page(Store.from_api, body)

    async def my_stores(self) -> list[Store]:
        """Stores owned by the logged-in owner."""
        body = await self.client.get("/api/stores/my")
        return _rows(Store.from_api, body.get("content", []) if isinstance(body, dict) else body)

    async def get_store(self, store_id: str) -> Store:
        return _parsed(Store.from_api, await self.client.get(f"/api/stores/{store_id}"))

    async def list_categories(self) -> list[Category]:
        return _rows(Category.from_api, await self.client.get("/api/categories"))

    async def stores_by_category(self, category_name: str) -> Page[Store]:
        # This endpoint answers with a bare list rather than a page.
        rows = _rows(Store.from_api, await self.client.get(f"/api/categories/{category_name}/stores"))
        return Page.single(rows)


def _menu_payload(data: dict[str, Any]) -> dict[str, Any]:
    payload = dict(data)
    payload["imageUrl"] = (payload.get("imageUrl") or "").strip() or MENU_PLACEHOLDER_IMAGE_URL
    return payload


class MenuApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def list_menus(self, store_id: str) -> list[Menu]:
        return _rows(Menu.from_api, await self.client.get(f"/api/stores/{store_id}/menus"))

    async def get_menu(self, store_id: str, menu_id: str) -> Menu:
        return _parsed(Menu.from_api, await self.client.get(f"/api/stores/{store_id}/menus/{menu_id}"))

    async def create_menu(self, store_id: str, data: dict[str, Any]) -> Menu:
        return _parsed(Menu.from_api, await self.client.post(f"/api/stores/{store_id}/menus", _menu_payload(data)))

    async def update_menu(self, store_id: str, menu_id: str, data: dict[str, Any]) -> None:
        await self.client.put(f"/api/stores/{store_id}/menus/{menu_id}", _menu_payload(data))

    async def delete_menu(self, store_id: str, menu_id: str) -> None:
        await self.client.delete(f"/api/stores/{store_id}/menus/{menu_id}")

    async def add_option(self, store_id: str, menu_id: str, name: str, detail: str, price: int) -> MenuOption:
        if not menu_id:
            raise ValueError(f"invalid menu id: {menu_id!r}")
        body = await self.client.post(
            f"/api/stores/{store_id}/menus/{menu_id}/options",
            {"optionName": name, "optionDetail": detail, "optionPrice": price},
        )
        return _parsed(MenuOption.from_api, body or {})

    async def update_option(self, store_id: str, menu_id: str, option_id: str, data: dict[str, Any]) -> None:
        if not menu_id:
            raise ValueError(f"invalid menu id: {menu_id!r}")
        await self.client.put(f"/api/stores/{store_id}/menus/{menu_id}/options/{option_id}", data)

    async def delete_option(self, store_id: str, menu_id: str, option_id: str) -> None:
        if not menu_id:
            raise ValueError(f"invalid menu id: {menu_id!r}")
        await self.client.delete(f"/api/stores/{store_id}/menus/{menu_id}/options/{option_id}")


class OrderApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def create_order(self, payload: dict[str, Any]) -> Order:
        return _parsed(Order.from_api, await self.client.post("/api/orders", payload))

    async def my_orders(self, page: int = 0, size: int = 20) -> Page[Order]:
        return _page(Order.from_api, await self.client.get("/api/orders/my", {"page": page, "size": size}))

    async def my_active_orders(self) -> list[Order]:
        return _rows(Order.from_api, await self.client.get("/api/orders/my/active"))

    async def customer_cancel(self, order_id: str, reason: str) -> Order:
        body = await self.client.patch(f"/api/orders/{order_id}/customer-cancel", {"reason": reason})
        return _parsed(Order.from_api, body)


class OwnerOrderApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def store_orders(
        self,
        *,
        customer_id: int | None = None,
        date: str | None = None,
        status: OrderStatus | None = None,
        page: int = 0,
        size: int = 20,
    ) -> Page[Order]:
        params = {
            "customerId": customer_id,
            "date": date,
            "status": status.value if status else None,
            "page": page,
            "size": size,
        }
        return _page(Order.from_api, await self.client.get("/api/orders/my-store", params))

    async def accept(self, order_id: str, estimated_time: int) -> Order:
        body = await self.client.patch(f"/api/orders/{order_id}/accept", {"estimatedTime": estimated_time})
        return _parsed(Order.from_api, body)

    async def reject(self, order_id: str, reason: str) -> Order:
        return _parsed(Order.from_api, await self.client.patch(f"/api/orders/{order_id}/reject", {"reason": reason}))

    async def store_cancel(self, order_id: str, reason: str) -> Order:
        body = await self.client.patch(f"/api/orders/{order_id}/store-cancel", {"reason": reason})
        return _parsed(Order.from_api, body)

    async def complete(self, order_id: str) -> Order:
        return _parsed(Order.from_api, await self.client.patch(f"/api/orders/{order_id}/complete"))


class PaymentApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def billing_key_exists(self) -> bool:
        return bool(await self.client.get("/api/payments/billing-key/exists"))

    async def save_billing_key(self, *, user_id: int, auth_key: str, customer_key: str) -> None:
        await self.client.post(
            "/api/payments/billing-key",
            {"userId": user_id, "authKey": auth_key, "customerKey": customer_key},
        )

    async def confirm_payment(
        self,
        order_id: str,
        *,
        title: str,
        content: str,
        user_id: int,
        payment_method: PaymentMethod,
        amount: int,
    ) -> dict[str, Any]:
        result = await self.client.post(
            f"/api/payments/{order_id}/confirm",
            {
                "title": title,
                "content": content,
                "userId": user_id,
                "orderId": order_id,
                "paymentMethod": payment_method.value,
                "paymentAmount": amount,
            },
        )
        return result or {}


class ReviewApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def store_reviews(self, store_id: str, page: int = 0, size: int = 10) -> Page[Review]:
        body = await self.client.get(f"/api/reviews/stores/{store_id}", {"page": page, "size": size})
        return _page(Review.from_api, body)

    async def store_stats(self, store_id: str) -> ReviewStats:
        return _parsed(ReviewStats.from_api, await self.client.get(f"/api/reviews/stores/{store_id}/stats") or {})

    async def create_review(self, store_id: str, rating: int, content: str = "") -> Review:
        if not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")
        body = {"storeId": store_id, "rating": rating}
        if content:
            body["content"] = content
        return _parsed(Review.from_api, await self.client.post("/api/reviews", body))

    async def update_review(self, review_id: str, *, rating: int | None = None, content: str | None = None) -> Review:
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")
        body = {k: v for k, v in {"rating": rating, "content": content}.items() if v is not None}
        return _parsed(Review.from_api, await self.client.patch(f"/api/reviews/{review_id}", body))

    async def delete_review(self, review_id: str) -> None:
        await self.client.delete(f"/api/reviews/{review_id}")


class SalesApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def summary(self, store_id: str, start_date: str | None = None, end_date: str | None = None) -> SalesSummary:
        body = await self.client.get(
            f"/api/stores/{store_id}/sales/summary", {"startDate": start_date, "endDate": end_date}
        )
        return _parsed(SalesSummary.from_api, body or {})

    async def daily(self, store_id: str, start_date: str | None = None, end_date: str | None = None) -> list[DailySales]:
        rows = await self.client.get(
            f"/api/stores/{store_id}/sales/daily", {"startDate": start_date, "endDate": end_date}
        )
        return _rows(DailySales.from_api, rows)

    async def popular_menus(
        self, store_id: str, start_date: str | None = None, end_date: str | None = None, limit: int = 10
    ) -> list[PopularMenu]:
        rows = await self.client.get(
            f"/api/stores/{store_id}/sales/popular-menus",
            {"startDate": start_date, "endDate": end_date, "limit": limit},
        )
        return _rows(PopularMenu.from_api, rows)


class AdminApi:
    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def users(self, page: int = 0, size: int = 20) -> Page[User]:
        return _page(User.from_api, await self.client.get("/api/admin/users", {"page": page, "size": size}))

    async def update_user_role(self, user_id: int, role: Role) -> None:
        await self.client.patch(f"/api/admin/users/{user_id}/role", {"role": role.value})

    async def delete_user(self, user_id: int) -> None:
        await self.client.delete(f"/api/admin/users/{user_id}")

    async def orders(self, page: int = 0, size: int = 20) -> Page[Order]:
        return _page(Order.from_api, await self.client.get("/api/admin/orders", {"page": page, "size": size}))

    async def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        await self.client.patch(f"/api/orders/{order_id}/status", {"status": status.value})

    async def cancel_order(self, order_id: str) -> None:
        await self.client.delete(f"/api/orders/{order_id}")

    async def stores(self, page: int = 0, size: int = 20) -> Page[Store]:
        return _page(Store.from_api, await self.client.get("/api/admin/stores", {"page": page, "size": size}))

    async def update_store_status(self, store_id: str, status: str) -> None:
        if status not in STORE_STATUSES:
            raise ValueError(f"unknown store status: {status}")
        response = await self.client.request("PATCH", f"/api/stores/{store_id}/status", params={"status": status})
        unwrap(response.body)

    async def delete_store(self, store_id: str) -> None:
        await self.client.delete(f"/api/admin/stores/{store_id}")

    async def stats(self) -> AdminStats:
        return _parsed(AdminStats.from_api, await self.client.get("/api/admin/stats") or {})


class Backend:
    """All resources over one shared client."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client
        self.auth = AuthApi(client)
        self.stores = StoreApi(client)
        self.menus = MenuApi(client)
        self.orders = OrderApi(client)
        self.owner_orders = OwnerOrderApi(client)
        self.payments = PaymentApi(client)
        self.reviews = ReviewApi(client)
        self.sales = SalesApi(client)
        self.admin = AdminApi(client)
