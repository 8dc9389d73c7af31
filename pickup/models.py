"""Domain models for the pickup-order client."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    OWNER = "OWNER"
    CHEF = "CHEF"
    MANAGER = "MANAGER"
    MASTER = "MASTER"


class OrderStatus(str, Enum):
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    COOKING = "COOKING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(float(value))


@dataclass(frozen=True)
class MenuOption:
    """A priced add-on for a menu."""

    id: str
    name: str
    price: int = 0
    detail: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MenuOption:
        return cls(
            id=_text(data.get("id") or data.get("optionId")),
            name=_text(data.get("name") or data.get("optionName")),
            price=_int(data.get("price", data.get("optionPrice"))),
            detail=_text(data.get("optionDetail")),
        )


@dataclass(frozen=True)
class Menu:
    """A store menu item as listed by the backend."""

    id: str
    name: str
    price: int
    store_id: str = ""
    category: str = ""
    description: str = ""
    image_url: str = ""
    is_available: bool = True
    is_hidden: bool = False
    options: tuple[MenuOption, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Menu:
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            price=_int(data.get("price")),
            store_id=_text(data.get("storeId")),
            category=_text(data.get("category")),
            description=_text(data.get("description")),
            image_url=_text(data.get("imageUrl")),
            is_available=bool(data.get("isAvailable", True)),
            is_hidden=bool(data.get("isHidden", False)),
            options=tuple(MenuOption.from_api(o) for o in data.get("options") or []),
        )


@dataclass
class CartItem:
    """One cart line: a menu, a quantity and the selected options."""

    menu: Menu
    quantity: int
    selected_options: list[MenuOption] = field(default_factory=list)

    @property
    def option_key(self) -> frozenset[str]:
        return frozenset(opt.id for opt in self.selected_options)

    @property
    def unit_price(self) -> int:
        return self.menu.price + sum(opt.price for opt in self.selected_options)

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


@dataclass
class Cart:
    """A single-store cart. An empty cart is represented as ``None``, never as this."""

    store_id: str
    store_name: str
    items: list[CartItem] = field(default_factory=list)


@dataclass(frozen=True)
class User:
    id: int
    username: str
    role: Role
    nickname: str = ""
    email: str = ""
    road_address: str = ""
    address_detail: str = ""
    age: int | None = None
    male: bool | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> User:
        age = data.get("age")
        return cls(
            id=_int(data.get("id")),
            username=_text(data.get("username")),
            role=Role(data.get("role") or Role.CUSTOMER.value),
            nickname=_text(data.get("nickname")),
            email=_text(data.get("email")),
            road_address=_text(data.get("roadAddress")),
            address_detail=_text(data.get("addressDetail")),
            age=_int(age) if age is not None else None,
            male=data.get("male"),
        )


@dataclass(frozen=True)
class Category:
    id: str
    name: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Category:
        return cls(id=_text(data.get("id")), name=_text(data.get("name")))


@dataclass(frozen=True)
class Store:
    id: str
    name: str
    road_address: str = ""
    address_detail: str = ""
    phone_number: str = ""
    open_time: str = ""
    close_time: str = ""
    status: str | None = None
    category_names: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Store:
        names = data.get("categoryNames")
        if names is None:
            names = [c.get("name") for c in data.get("categories") or [] if c.get("name")]
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            road_address=_text(data.get("roadAddress")),
            address_detail=_text(data.get("addressDetail")),
            phone_number=_text(data.get("phoneNumber")),
            open_time=_text(data.get("openTime")),
            close_time=_text(data.get("closeTime")),
            status=data.get("status"),
            category_names=tuple(_text(n) for n in names),
        )


@dataclass(frozen=True)
class OrderLineOption:
    option_id: str
    name: str
    value: str = ""


@dataclass(frozen=True)
class OrderLine:
    item_id: str
    menu_id: str
    menu_name: str
    quantity: int
    price: int
    subtotal: int
    options: tuple[OrderLineOption, ...] = ()


@dataclass(frozen=True)
class Order:
    """Read projection of a backend order. ``total_amount`` is authoritative."""

    id: str
    order_number: str
    store_id: str
    store_name: str
    status: OrderStatus
    total_amount: int
    items: tuple[OrderLine, ...] = ()
    user_id: int | None = None
    pickup_time: str = ""
    need_disposables: bool = False
    request: str = ""
    estimated_time: int | None = None
    reason: str | None = None
    cancelled_by: str | None = None
    created_at: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Order:
        items = []
        for raw in data.get("orderItems") or []:
            options = tuple(
                OrderLineOption(
                    option_id=_text(o.get("optionId")),
                    name=_text(o.get("optionName")),
                    value=_text(o.get("optionValue")),
                )
                for o in raw.get("orderItemOptions") or []
            )
            items.append(
                OrderLine(
                    item_id=_text(raw.get("itemId")),
                    menu_id=_text(raw.get("menuId")),
                    menu_name=_text(raw.get("menuName")),
                    quantity=_int(raw.get("quantity")),
                    price=_int(raw.get("price")),
                    subtotal=_int(raw.get("subtotal")),
                    options=options,
                )
            )
        estimated = data.get("estimatedTime")
        user_id = data.get("userId")
        return cls(
            id=_text(data.get("id")),
            order_number=_text(data.get("orderNumber")),
            store_id=_text(data.get("storeId")),
            store_name=_text(data.get("storeName")),
            status=OrderStatus(data.get("orderStatus")),
            total_amount=_int(data.get("totalAmount")),
            items=tuple(items),
            user_id=_int(user_id) if user_id is not None else None,
            pickup_time=_text(data.get("pickupTime")),
            need_disposables=bool(data.get("needDisposables", False)),
            request=_text(data.get("request")),
            estimated_time=_int(estimated) if estimated is not None else None,
            reason=data.get("reason"),
            cancelled_by=data.get("cancelledBy"),
            created_at=_text(data.get("createdAt")),
        )


@dataclass(frozen=True)
class Review:
    id: str
    store_id: str
    user_id: int
    rating: int
    content: str = ""
    store_name: str = ""
    user_nickname: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Review:
        return cls(
            id=_text(data.get("id")),
            store_id=_text(data.get("storeId")),
            user_id=_int(data.get("userId")),
            rating=_int(data.get("rating")),
            content=_text(data.get("content")),
            store_name=_text(data.get("storeName")),
            user_nickname=_text(data.get("userNickname")),
            created_at=_text(data.get("createdAt")),
            updated_at=_text(data.get("updatedAt")),
        )


@dataclass(frozen=True)
class ReviewStats:
    average_rating: float
    total_reviews: int

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ReviewStats:
        return cls(
            average_rating=float(data.get("averageRating") or 0.0),
            total_reviews=_int(data.get("totalReviews")),
        )


@dataclass(frozen=True)
class SalesSummary:
    total_revenue: int
    total_orders: int
    completed_orders: int
    cancelled_orders: int
    average_order_amount: float
    period_start: str = ""
    period_end: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> SalesSummary:
        return cls(
            total_revenue=_int(data.get("totalRevenue")),
            total_orders=_int(data.get("totalOrders")),
            completed_orders=_int(data.get("completedOrders")),
            cancelled_orders=_int(data.get("cancelledOrders")),
            average_order_amount=float(data.get("averageOrderAmount") or 0.0),
            period_start=_text(data.get("periodStart")),
            period_end=_text(data.get("periodEnd")),
        )


@dataclass(frozen=True)
class DailySales:
    date: str
    revenue: int
    order_count: int

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> DailySales:
        return cls(
            date=_text(data.get("date")),
            revenue=_int(data.get("revenue")),
            order_count=_int(data.get("orderCount")),
        )


@dataclass(frozen=True)
class PopularMenu:
    menu_id: str
    menu_name: str
    order_count: int
    total_revenue: int

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PopularMenu:
        return cls(
            menu_id=_text(data.get("menuId")),
            menu_name=_text(data.get("menuName")),
            order_count=_int(data.get("orderCount")),
            total_revenue=_int(data.get("totalRevenue")),
        )


@dataclass(frozen=True)
class AdminStats:
    total_users: int
    total_orders: int
    total_stores: int
    total_revenue: int
    order_stats: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> AdminStats:
        return cls(
            total_users=_int(data.get("totalUsers")),
            total_orders=_int(data.get("totalOrders")),
            total_stores=_int(data.get("totalStores")),
            total_revenue=_int(data.get("totalRevenue")),
            order_stats={
                _text(row.get("status")): _int(row.get("count")) for row in data.get("orderStats") or []
            },
        )


@dataclass(frozen=True)
class Page(Generic[T]):
    """A backend list page: ``{content, totalElements, totalPages, size, number}``."""

    content: list[T]
    total_elements: int = 0
    total_pages: int = 1
    size: int = 0
    number: int = 0

    @classmethod
    def from_api(cls, data: dict[str, Any], parse: Callable[[dict[str, Any]], T]) -> Page[T]:
        content = [parse(row) for row in data.get("content") or []]
        return cls(
            content=content,
            total_elements=_int(data.get("totalElements"), len(content)),
            total_pages=_int(data.get("totalPages"), 1),
            size=_int(data.get("size"), len(content)),
            number=_int(data.get("number")),
        )

    @classmethod
    def single(cls, content: list[T]) -> Page[T]:
        return cls(content=content, total_elements=len(content), total_pages=1, size=len(content), number=0)
