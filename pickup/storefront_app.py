"""Main Textual app class."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Type

from pydantic import BaseModel
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Static

from pickup.api import ApiClient, Transport
from pickup.cart_store import STORE_SWITCH_PROMPT, CartStore
from pickup.checkout import (
    ROUTE_BILLING,
    ROUTE_CART,
    ROUTE_ORDERS,
    BillingCallback,
    CheckoutOrchestrator,
    CheckoutStep,
    callback_route,
    classify_payment_failure,
    reconcile_billing_callback,
)
from pickup.errors import (
    ActionNotAllowedError,
    CartCorruptedError,
    CheckoutBusyError,
    CheckoutValidationError,
    EmptyCartError,
    FormError,
    PickupError,
    ProviderConfigError,
    PublicAccessDenied,
    UserNotLoadedError,
)
from pickup.forms import JoinForm, MenuForm, OptionForm, ReviewForm, parse_form
from pickup.modals import (
    CheckoutModal,
    ChoiceModal,
    ConfirmModal,
    FormField,
    FormModal,
    LoginModal,
    OptionsModal,
    PromptModal,
)
from pickup.models import (
    CartItem,
    Category,
    DailySales,
    Menu,
    MenuOption,
    Order,
    OrderStatus,
    PaymentMethod,
    Review,
    Role,
    Store,
    User,
)
from pickup.order_actions import CustomerOrderBoard, OwnerOrderBoard
from pickup.persistence import SnapshotStore
from pickup.provider import (
    BILLING_SUCCESS_ROUTE,
    PAYMENT_FAIL_ROUTE,
    BillingAuthRequest,
    BillingProvider,
    customer_key_for,
    fail_url,
    success_url,
)
from pickup.rendering import (
    format_admin_store_label,
    format_cart_line,
    format_category_label,
    format_menu_label,
    format_money,
    format_option_label,
    format_order_label,
    format_review_label,
    format_store_label,
    format_user_label,
)
from pickup.resources import Backend
from pickup.session import SessionStore, TokenRefresher, login, restore_user
from pickup.tokens import TokenStore

logger = logging.getLogger(__name__)

OWNER_ROLES = {Role.OWNER}
ADMIN_ROLES = {Role.MASTER, Role.MANAGER}
JOIN_ROLES = [(Role.CUSTOMER, "Customer"), (Role.OWNER, "Store owner"), (Role.CHEF, "Chef")]
STORE_REVIEW_STATUSES = ["APPROVED", "REJECTED"]

VIEW_TITLES = {
    "stores": "Stores",
    "categories": "Categories",
    "menus": "Menu",
    "reviews": "Reviews",
    "cart": "Cart",
    "orders": "My Orders",
    "owner": "Store Orders",
    "menu_admin": "Manage Menus",
    "options": "Menu Options",
    "sales": "Sales",
    "admin": "Admin: Orders",
    "admin_users": "Admin: Users",
    "admin_stores": "Admin: Stores",
    "billing": "Payment Method",
    "callback": "Payment",
}

# T cycles through related views.
NEXT_TAB = {
    "menus": "reviews",
    "reviews": "menus",
    "owner": "menu_admin",
    "menu_admin": "sales",
    "sales": "owner",
    "admin": "admin_users",
    "admin_users": "admin_stores",
    "admin_stores": "admin",
}

BACK_TO = {
    "menus": "stores",
    "reviews": "menus",
    "options": "menu_admin",
}


class StorefrontApp(App):
    """A Textual storefront for browsing stores, ordering ahead and managing orders."""

    TITLE = "Pickup Order"
    SUB_TITLE = "Order ahead, pick up fresh"

    CSS = """
    Screen {
        layout: vertical;
    }

    #main-layout {
        height: 1fr;
    }

    #list-pane {
        width: 3fr;
        border: round $primary;
        padding: 1;
    }

    #detail-pane {
        width: 2fr;
        border: round $secondary;
        padding: 1;
    }

    #status-bar {
        border: heavy $secondary;
        padding: 0 1;
        margin-bottom: 1;
        height: 4;
    }

    #detail {
        height: 1fr;
        border: tall $surface;
        padding: 0 1;
    }

    #rows {
        height: 1fr;
        border: tall $surface;
        padding: 0 1;
    }

    .pane-title {
        text-style: bold;
        margin-bottom: 1;
    }
    """

    active_view = reactive("stores")
    selected_index = reactive(0)

    BINDINGS = [
        ("j", "move(1)", "Next"),
        ("k", "move(-1)", "Previous"),
        ("down", "move(1)", "Next"),
        ("up", "move(-1)", "Previous"),
        ("enter", "select", "Open / edit"),
        ("escape", "back", "Back"),
        ("s", "navigate('stores')", "Stores"),
        ("g", "navigate('categories')", "Categories"),
        ("slash", "search", "Search"),
        ("c", "navigate('cart')", "Cart"),
        ("o", "navigate('orders')", "Orders"),
        ("w", "navigate('owner')", "My store"),
        ("a", "navigate('admin')", "Admin"),
        ("b", "navigate('billing')", "Card"),
        ("t", "next_tab", "Next tab"),
        ("i", "create", "New"),
        ("p", "manage_options", "Options"),
        ("h", "toggle_hidden", "Hide / show"),
        ("l", "login_or_logout", "Login"),
        ("u", "sign_up", "Sign up"),
        ("r", "reload", "Reload"),
        ("plus", "quantity(1)", "More"),
        ("minus", "quantity(-1)", "Less"),
        ("x", "remove_or_cancel", "Remove / cancel"),
        ("e", "clear_cart", "Empty cart"),
        ("y", "owner_accept", "Accept"),
        ("n", "owner_reject", "Reject"),
        ("d", "owner_complete", "Complete"),
        Binding("ctrl+s", "checkout", "Checkout", priority=True),
        ("ctrl+q", "quit", "Quit"),
    ]

    def __init__(
        self,
        storage: SnapshotStore | None = None,
        transport: Transport | None = None,
        provider: BillingProvider | None = None,
        callback_url: str | None = None,
    ) -> None:
        super().__init__()
        self.storage = storage or SnapshotStore()
        self.storage.bootstrap_schema()
        self.tokens = TokenStore(self.storage)
        self.session = SessionStore(self.storage, self.tokens)
        self.cart_store = CartStore(self.storage)
        self.client = ApiClient(self.tokens, transport=transport, on_auth_failure=self._on_session_expired)
        self.backend = Backend(self.client)
        self.provider = provider or BillingProvider()
        self.checkout = CheckoutOrchestrator(self.cart_store, self.session, self.backend, self.provider)
        self.refresher = TokenRefresher(self.session, self.backend, on_expired=self._on_session_expired)
        self.customer_board = CustomerOrderBoard(self.backend)
        self.owner_board = OwnerOrderBoard(self.backend)
        self.callback_url = callback_url

        self.rows: list[Any] = []
        self.current_store: Store | None = None
        self.store_filter: tuple[str, str] | None = None
        self.owned_store: Store | None = None
        self.managed_menu: Menu | None = None
        self.detail: Text | str = ""
        self.system_status = ""
        self._generation = 0
        self._login_prompt_open = False
        self.session.subscribe(self._on_user_changed)

    # ---------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="main-layout"):
            with Vertical(id="list-pane"):
                yield Static("Stores", id="list-title", classes="pane-title")
                yield Static("(loading)", id="rows")
            with Vertical(id="detail-pane"):
                yield Static(id="status-bar")
                yield Static(id="detail")
        yield Footer()

    def on_mount(self) -> None:
        self.session.load()
        self.cart_store.load()
        self._refresh_all()
        self._start(self._startup())

    def on_unmount(self) -> None:
        self.refresher.stop()

    async def _startup(self) -> None:
        await restore_user(self.session, self.backend)
        self._refresh_status()

        if self.callback_url:
            await self._handle_callback(self.callback_url)
            return
        await self._load_view("stores", self._generation)

    def _start(self, work: Awaitable[None]) -> None:
        self.run_worker(work, exit_on_error=False)

    def _on_session_expired(self) -> None:
        if self.session.user is not None or self.session.is_authenticated:
            self.session.logout()
        self.system_status = "Your session has expired. Please log in again."
        if self._login_prompt_open:
            self._refresh_status()
            return
        self._login_prompt_open = True
        self._navigate("stores")
        self._start(self._login_flow())

    def _on_user_changed(self, user: User | None) -> None:
        if user is not None:
            self.refresher.start()
        else:
            self.owned_store = None
        self._refresh_status()

    def _modal_open(self) -> bool:
        return isinstance(self.screen, ModalScreen)

    def _say(self, message: str) -> None:
        self.system_status = message
        self._refresh_status()

    # ---------------------------------------------------------
    # Navigation
    # ---------------------------------------------------------

    def action_navigate(self, view: str) -> None:
        if self._modal_open():
            return
        if view == "stores":
            self.store_filter = None
        self._navigate(view)

    def _navigate(self, view: str) -> None:
        # Responses still in flight for the previous view are dropped by generation.
        self._generation += 1
        self.active_view = view
        self.selected_index = 0
        self.rows = []
        self.detail = ""
        self._refresh_all()
        self._start(self._load_view(view, self._generation))

    def action_back(self) -> None:
        if self._modal_open():
            return
        self._navigate(BACK_TO.get(self.active_view, "stores"))

    def action_next_tab(self) -> None:
        if self._modal_open() or self.active_view not in NEXT_TAB:
            return
        self._navigate(NEXT_TAB[self.active_view])

    def action_reload(self) -> None:
        if self._modal_open():
            return
        self._start(self._load_view(self.active_view, self._generation))

    def action_search(self) -> None:
        if self._modal_open():
            return
        self._start(self._search_flow())

    async def _search_flow(self) -> None:
        keyword = await self.push_screen_wait(PromptModal("Search stores", "Store name or keyword", max_length=50))
        if keyword is None:
            return
        self.store_filter = ("search", keyword)
        self._navigate("stores")

    async def _load_view(self, view: str, generation: int) -> None:
        loaders: dict[str, Callable[[], Awaitable[tuple[list[Any], Text | str]]]] = {
            "stores": self._fetch_stores,
            "categories": self._fetch_categories,
            "menus": self._fetch_menus,
            "reviews": self._fetch_reviews,
            "cart": self._fetch_cart,
            "orders": self._fetch_customer_orders,
            "owner": self._fetch_owner_orders,
            "menu_admin": self._fetch_menu_admin,
            "options": self._fetch_options,
            "sales": self._fetch_sales,
            "admin": self._fetch_admin,
            "admin_users": self._fetch_admin_users,
            "admin_stores": self._fetch_admin_stores,
            "billing": self._fetch_billing,
        }
        loader = loaders.get(view)
        if loader is None:
            return
        try:
            rows, detail = await loader()
        except PublicAccessDenied:
            rows, detail = [], "Nothing to show here."
        except PickupError as exc:
            if generation == self._generation:
                self._say(f"Could not load {VIEW_TITLES[view].lower()}: {exc}")
            return
        if generation != self._generation:
            logger.debug("stale_response_dropped view=%s", view)
            return
        self.rows = rows
        self.detail = detail
        self._refresh_all()

    def _require_role(self, roles: set[Role], label: str) -> None:
        if not self.session.has_hydrated:
            raise ActionNotAllowedError("Checking your login...")
        if not self.session.has_role(roles):
            raise ActionNotAllowedError(f"{label} is only available to authorized accounts.")

    async def _fetch_stores(self) -> tuple[list[Any], Text | str]:
        if self.store_filter is None:
            page = await self.backend.stores.list_stores()
            categories = await self.backend.stores.list_categories()
            detail = Text("Categories\n", style="bold")
            detail.append(", ".join(c.name for c in categories) or "(none)")
            detail.append("\n\n/ search, G browse by category", style="dim")
            return page.content, detail

        kind, value = self.store_filter
        if kind == "search":
            page = await self.backend.stores.search_stores(value)
            detail = Text(f'Results for "{value}"\n', style="bold")
        else:
            page = await self.backend.stores.stores_by_category(value)
            detail = Text(f"Category: {value}\n", style="bold")
        detail.append(f"{page.total_elements} stores\n\nS show all stores", style="dim")
        return page.content, detail

    async def _fetch_categories(self) -> tuple[list[Any], Text | str]:
        categories = await self.backend.stores.list_categories()
        return categories, Text("Enter to list stores in a category", style="dim")

    async def _fetch_menus(self) -> tuple[list[Any], Text | str]:
        if self.current_store is None:
            return [], "Pick a store first."
        store = await self.backend.stores.get_store(self.current_store.id)
        menus = [m for m in await self.backend.menus.list_menus(store.id) if not m.is_hidden]
        detail = Text(f"{store.name}\n", style="bold")
        detail.append(f"{store.road_address} {store.address_detail}\n{store.phone_number}\n")
        try:
            stats = await self.backend.reviews.store_stats(store.id)
            reviews = await self.backend.reviews.store_reviews(store.id, size=3)
        except PickupError as exc:
            logger.info("store_reviews_unavailable store_id=%s error=%s", store.id, exc)
            return menus, detail
        detail.append(f"\n★ {stats.average_rating:.1f} ({stats.total_reviews} reviews)\n")
        for review in reviews.content:
            detail.append(f"\n{review.user_nickname}: {'★' * review.rating}\n{review.content}\n", style="dim")
        detail.append("\nT all reviews", style="dim")
        return menus, detail

    async def _fetch_reviews(self) -> tuple[list[Any], Text | str]:
        if self.current_store is None:
            return [], "Pick a store first."
        store = self.current_store
        page = await self.backend.reviews.store_reviews(store.id)
        stats = await self.backend.reviews.store_stats(store.id)
        detail = Text(f"{store.name}\n", style="bold")
        detail.append(f"★ {stats.average_rating:.1f} ({stats.total_reviews} reviews)\n")
        detail.append("\nI write a review, Enter edit yours, X delete yours", style="dim")
        return page.content, detail

    async def _fetch_cart(self) -> tuple[list[Any], Text | str]:
        cart = self.cart_store.cart
        if cart is None:
            return [], "Your cart is empty. Press S to browse stores."
        detail = Text(f"{cart.store_name}\n\n", style="bold")
        detail.append(f"Items: {self.cart_store.get_item_count()}\n")
        detail.append(f"Total: {format_money(self.cart_store.get_total())}\n", style="bold")
        detail.append("\n+/- quantity, X remove, E empty cart, Ctrl+S checkout", style="dim")
        return list(cart.items), detail

    async def _fetch_customer_orders(self) -> tuple[list[Any], Text | str]:
        if not self.session.is_authenticated:
            return [], "Log in to see your orders."
        orders = await self.customer_board.reload()
        detail = Text(f"Active orders: {len(self.customer_board.active)}\n", style="bold")
        detail.append("\nX cancel a pending order", style="dim")
        return orders, detail

    async def _fetch_owner_orders(self) -> tuple[list[Any], Text | str]:
        self._require_role(OWNER_ROLES, "Store order management")
        orders = await self.owner_board.reload()
        return orders, Text("Y accept, N reject, X cancel, D complete pickup\nT menus and sales", style="dim")

    async def _owner_store(self) -> Store | None:
        if self.owned_store is None:
            stores = await self.backend.stores.my_stores()
            self.owned_store = stores[0] if stores else None
        return self.owned_store

    async def _fetch_menu_admin(self) -> tuple[list[Any], Text | str]:
        self._require_role(OWNER_ROLES, "Menu management")
        store = await self._owner_store()
        if store is None:
            return [], "You have no registered stores."
        menus = await self.backend.menus.list_menus(store.id)
        detail = Text(f"{store.name}\n", style="bold")
        detail.append(f"{len(menus)} menus\n")
        detail.append("\nI new menu, Enter edit, H hide / show, X delete, P options", style="dim")
        return menus, detail

    async def _fetch_options(self) -> tuple[list[Any], Text | str]:
        self._require_role(OWNER_ROLES, "Menu management")
        store = await self._owner_store()
        if store is None or self.managed_menu is None:
            return [], "Pick a menu first."
        menu = await self.backend.menus.get_menu(store.id, self.managed_menu.id)
        self.managed_menu = menu
        detail = Text(f"{menu.name}\n", style="bold")
        detail.append("\nI new option, Enter edit, X delete, Esc back to menus", style="dim")
        return list(menu.options), detail

    async def _fetch_sales(self) -> tuple[list[Any], Text | str]:
        self._require_role(OWNER_ROLES, "The sales dashboard")
        store = await self._owner_store()
        if store is None:
            return [], "You have no registered stores."
        summary = await self.backend.sales.summary(store.id)
        popular = await self.backend.sales.popular_menus(store.id, limit=5)
        daily = await self.backend.sales.daily(store.id)

        detail = Text(f"{store.name}\n", style="bold")
        detail.append(f"Revenue: {format_money(summary.total_revenue)}\n")
        detail.append(f"Orders: {summary.total_orders} (completed {summary.completed_orders}, ")
        detail.append(f"cancelled {summary.cancelled_orders})\n")
        detail.append(f"Average order: {format_money(int(summary.average_order_amount))}\n\nPopular menus\n")
        for rank, item in enumerate(popular, start=1):
            detail.append(f"{rank}. {item.menu_name} x{item.order_count}  {format_money(item.total_revenue)}\n")
        return daily, detail

    async def _fetch_admin(self) -> tuple[list[Any], Text | str]:
        self._require_role(ADMIN_ROLES, "The admin console")
        stats = await self.backend.admin.stats()
        orders = await self.backend.admin.orders()
        detail = Text("Overview\n", style="bold")
        detail.append(f"Users: {stats.total_users}\nStores: {stats.total_stores}\n")
        detail.append(f"Orders: {stats.total_orders}\nRevenue: {format_money(stats.total_revenue)}\n")
        for status, count in stats.order_stats.items():
            detail.append(f"\n{status}: {count}", style="dim")
        detail.append("\n\nEnter change status, X cancel order, T users / stores", style="dim")
        return orders.content, detail

    async def _fetch_admin_users(self) -> tuple[list[Any], Text | str]:
        self._require_role(ADMIN_ROLES, "The admin console")
        page = await self.backend.admin.users()
        detail = Text(f"{page.total_elements} users\n", style="bold")
        detail.append("\nEnter change role, X delete user", style="dim")
        return page.content, detail

    async def _fetch_admin_stores(self) -> tuple[list[Any], Text | str]:
        self._require_role(ADMIN_ROLES, "The admin console")
        page = await self.backend.admin.stores()
        detail = Text(f"{page.total_elements} stores\n", style="bold")
        detail.append("\nEnter approve / reject, X delete store", style="dim")
        return page.content, detail

    async def _fetch_billing(self) -> tuple[list[Any], Text | str]:
        if not self.session.is_authenticated:
            return [], "Log in to manage your payment method."
        exists = await self.backend.payments.billing_key_exists()
        state = "A card is registered." if exists else "No card is registered yet."
        return [], Text(f"{state}\n\nEnter to register a card in your browser.")

    # ---------------------------------------------------------
    # Row actions
    # ---------------------------------------------------------

    def action_move(self, delta: int) -> None:
        if self._modal_open() or not self.rows:
            return
        self.selected_index = (self.selected_index + delta) % len(self.rows)
        self._refresh_rows()

    def _selected_row(self) -> Any | None:
        if not (0 <= self.selected_index < len(self.rows)):
            return None
        return self.rows[self.selected_index]

    def action_select(self) -> None:
        if self._modal_open():
            return
        row = self._selected_row()
        view = self.active_view
        if view == "stores" and isinstance(row, Store):
            self.current_store = row
            self._navigate("menus")
        elif view == "categories" and isinstance(row, Category):
            self.store_filter = ("category", row.name)
            self._navigate("stores")
        elif view == "menus" and isinstance(row, Menu):
            self._start(self._add_to_cart_flow(row))
        elif view == "reviews" and isinstance(row, Review):
            self._start(self._edit_review_flow(row))
        elif view == "menu_admin" and isinstance(row, Menu):
            self._start(self._menu_form_flow(row))
        elif view == "options" and isinstance(row, MenuOption):
            self._start(self._option_form_flow(row))
        elif view == "admin" and isinstance(row, Order):
            self._start(self._admin_order_status_flow(row))
        elif view == "admin_users" and isinstance(row, User):
            self._start(self._admin_role_flow(row))
        elif view == "admin_stores" and isinstance(row, Store):
            self._start(self._admin_store_status_flow(row))
        elif view == "billing":
            self._register_card()

    def action_create(self) -> None:
        if self._modal_open():
            return
        if self.active_view in {"menus", "reviews"}:
            self._start(self._write_review_flow())
        elif self.active_view == "menu_admin":
            self._start(self._menu_form_flow(None))
        elif self.active_view == "options":
            self._start(self._option_form_flow(None))

    async def _add_to_cart_flow(self, menu: Menu) -> None:
        store = self.current_store
        if store is None:
            return
        if not menu.is_available:
            self._say(f"{menu.name} is sold out.")
            return

        options: list = []
        if menu.options:
            picked = await self.push_screen_wait(OptionsModal(menu))
            if picked is None:
                return
            options = picked

        answer = True
        cart = self.cart_store.cart
        if cart is not None and cart.store_id != store.id:
            answer = bool(await self.push_screen_wait(ConfirmModal(STORE_SWITCH_PROMPT)))

        added = self.cart_store.add_item(store.id, store.name, menu, 1, options, confirm=lambda _msg: answer)
        self._say(f"Added {menu.name} to the cart." if added else "Kept your current cart.")

    def action_quantity(self, delta: int) -> None:
        if self._modal_open() or self.active_view != "cart":
            return
        row = self._selected_row()
        if row is None:
            return
        self.cart_store.update_quantity(row.menu.id, row.quantity + delta)
        self._start(self._load_view("cart", self._generation))

    def action_remove_or_cancel(self) -> None:
        if self._modal_open():
            return
        row = self._selected_row()
        if row is None:
            return
        view = self.active_view
        if view == "cart":
            self.cart_store.remove_item(row.menu.id)
            self._start(self._load_view("cart", self._generation))
        elif view == "orders":
            self._start(self._order_action(lambda reason: self.customer_board.cancel(row.id, reason), "Cancel reason"))
        elif view == "owner":
            self._start(self._order_action(lambda reason: self.owner_board.cancel(row.id, reason), "Cancel reason"))
        elif view == "admin" and isinstance(row, Order):
            self._start(self._admin_cancel(row))
        elif view == "reviews" and isinstance(row, Review):
            self._start(self._delete_review_flow(row))
        elif view == "menu_admin" and isinstance(row, Menu):
            self._start(self._delete_menu_flow(row))
        elif view == "options" and isinstance(row, MenuOption):
            self._start(self._delete_option_flow(row))
        elif view == "admin_users" and isinstance(row, User):
            self._start(
                self._confirmed_change(
                    f"Delete user {row.username}?",
                    lambda: self.backend.admin.delete_user(row.id),
                    "User deleted.",
                )
            )
        elif view == "admin_stores" and isinstance(row, Store):
            self._start(
                self._confirmed_change(
                    f"Delete store {row.name}?",
                    lambda: self.backend.admin.delete_store(row.id),
                    "Store deleted.",
                )
            )

    def action_owner_accept(self) -> None:
        row = self._selected_row()
        if self._modal_open() or self.active_view != "owner" or row is None:
            return
        self._start(
            self._order_action(
                lambda minutes: self.owner_board.accept(row.id, minutes),
                "Estimated cooking time (minutes)",
                digits_only=True,
            )
        )

    def action_owner_reject(self) -> None:
        row = self._selected_row()
        if self._modal_open() or self.active_view != "owner" or row is None:
            return
        self._start(self._order_action(lambda reason: self.owner_board.reject(row.id, reason), "Reject reason"))

    def action_owner_complete(self) -> None:
        row = self._selected_row()
        if self._modal_open() or self.active_view != "owner" or row is None:
            return
        self._start(self._order_action(lambda _: self.owner_board.complete(row.id), None))

    async def _order_action(
        self,
        call: Callable[[str], Awaitable[list[Order]]],
        prompt: str | None,
        *,
        digits_only: bool = False,
    ) -> None:
        generation = self._generation
        if prompt is None:
            if not await self.push_screen_wait(ConfirmModal("Has the order been picked up?")):
                return
            value = ""
        else:
            value = await self.push_screen_wait(PromptModal("Order", prompt, digits_only=digits_only))
            if value is None:
                return
        try:
            orders = await call(value)
        except PickupError as exc:
            self._say(f"Action failed: {exc}")
            return
        if generation != self._generation:
            return
        self.rows = orders
        self.system_status = "Order updated."
        self._refresh_all()

    async def _apply_change(self, call: Callable[[], Awaitable[Any]], success: str) -> bool:
        """Run one mutation, then reload the current view from the backend."""
        generation = self._generation
        try:
            await call()
        except PickupError as exc:
            self._say(f"Action failed: {exc}")
            return False
        self.system_status = success
        if generation == self._generation:
            await self._load_view(self.active_view, generation)
        else:
            self._refresh_status()
        return True

    async def _confirmed_change(self, question: str, call: Callable[[], Awaitable[Any]], success: str) -> None:
        if await self.push_screen_wait(ConfirmModal(question)):
            await self._apply_change(call, success)

    async def _admin_cancel(self, order: Order) -> None:
        await self._confirmed_change(
            f"Cancel order #{order.order_number}?",
            lambda: self.backend.admin.cancel_order(order.id),
            "Order cancelled.",
        )

    async def _admin_order_status_flow(self, order: Order) -> None:
        statuses = list(OrderStatus)
        picked = await self.push_screen_wait(
            ChoiceModal(f"Status for order #{order.order_number}", [s.value for s in statuses], statuses.index(order.status))
        )
        if picked is None or statuses[picked] is order.status:
            return
        status = statuses[picked]
        await self._confirmed_change(
            f"Change order #{order.order_number} to {status.value}?",
            lambda: self.backend.admin.update_order_status(order.id, status),
            "Order status changed.",
        )

    async def _admin_role_flow(self, user: User) -> None:
        roles = list(Role)
        picked = await self.push_screen_wait(
            ChoiceModal(f"Role for {user.username}", [r.value for r in roles], roles.index(user.role))
        )
        if picked is None or roles[picked] is user.role:
            return
        role = roles[picked]
        await self._confirmed_change(
            f"Change {user.username} to {role.value}?",
            lambda: self.backend.admin.update_user_role(user.id, role),
            "Role changed.",
        )

    async def _admin_store_status_flow(self, store: Store) -> None:
        picked = await self.push_screen_wait(
            ChoiceModal(f"Review {store.name}", ["Approve", "Reject"])
        )
        if picked is None:
            return
        status = STORE_REVIEW_STATUSES[picked]
        await self._confirmed_change(
            f"{'Approve' if status == 'APPROVED' else 'Reject'} {store.name}?",
            lambda: self.backend.admin.update_store_status(store.id, status),
            f"Store {status.lower()}.",
        )

    # ---------------------------------------------------------
    # Forms
    # ---------------------------------------------------------

    async def _form(self, title: str, fields: list[FormField], model: Type[BaseModel]) -> Any | None:
        """Show a form until it validates or is cancelled."""
        error = ""
        while True:
            values = await self.push_screen_wait(FormModal(title, fields, error))
            if values is None:
                return None
            try:
                return parse_form(model, values)
            except FormError as exc:
                error = str(exc)
                fields = [replace(f, value=values[f.name]) for f in fields]

    def _review_fields(self, review: Review | None = None) -> list[FormField]:
        return [
            FormField("rating", "Rating (1-5)", str(review.rating) if review else "", digits_only=True, max_length=1),
            FormField("content", "Review", review.content if review else "", max_length=500),
        ]

    def _owns(self, review: Review) -> bool:
        user = self.session.user
        return user is not None and review.user_id == user.id

    async def _write_review_flow(self) -> None:
        store = self.current_store
        if store is None:
            return
        if not self.session.is_authenticated:
            self._say("Log in to write a review.")
            return
        form = await self._form(f"Review {store.name}", self._review_fields(), ReviewForm)
        if form is None:
            return
        if self.active_view != "reviews":
            self._navigate("reviews")
        await self._apply_change(
            lambda: self.backend.reviews.create_review(store.id, form.rating, form.content),
            "Thanks for your review!",
        )

    async def _edit_review_flow(self, review: Review) -> None:
        if not self._owns(review):
            self._say("You can only edit your own reviews.")
            return
        form = await self._form("Edit review", self._review_fields(review), ReviewForm)
        if form is None:
            return
        await self._apply_change(
            lambda: self.backend.reviews.update_review(review.id, rating=form.rating, content=form.content),
            "Review updated.",
        )

    async def _delete_review_flow(self, review: Review) -> None:
        if not self._owns(review):
            self._say("You can only delete your own reviews.")
            return
        await self._confirmed_change(
            "Delete this review?", lambda: self.backend.reviews.delete_review(review.id), "Review deleted."
        )

    async def _menu_form_flow(self, menu: Menu | None) -> None:
        store = self.owned_store
        if store is None:
            return
        fields = [
            FormField("name", "Name", menu.name if menu else ""),
            FormField("category", "Category", menu.category if menu else ""),
            FormField("price", "Price (KRW)", str(menu.price) if menu else "", digits_only=True, max_length=9),
            FormField("description", "Description", menu.description if menu else "", max_length=500),
            FormField("image_url", "Image URL", menu.image_url if menu else "", max_length=500),
        ]
        form = await self._form("Edit menu" if menu else "New menu", fields, MenuForm)
        if form is None:
            return
        if menu is None:
            await self._apply_change(
                lambda: self.backend.menus.create_menu(store.id, form.to_payload()), f"Added {form.name}."
            )
        else:
            payload = form.to_payload(is_available=menu.is_available, is_hidden=menu.is_hidden)
            await self._apply_change(
                lambda: self.backend.menus.update_menu(store.id, menu.id, payload), f"Saved {form.name}."
            )

    def action_toggle_hidden(self) -> None:
        row = self._selected_row()
        store = self.owned_store
        if self._modal_open() or self.active_view != "menu_admin" or not isinstance(row, Menu) or store is None:
            return
        payload = {
            "name": row.name,
            "category": row.category,
            "price": row.price,
            "description": row.description,
            "imageUrl": row.image_url,
            "isAvailable": row.is_available,
            "isHidden": not row.is_hidden,
        }
        self._start(
            self._apply_change(
                lambda: self.backend.menus.update_menu(store.id, row.id, payload),
                f"{row.name} is now {'hidden' if not row.is_hidden else 'visible'}.",
            )
        )

    async def _delete_menu_flow(self, menu: Menu) -> None:
        store = self.owned_store
        if store is None:
            return
        await self._confirmed_change(
            f"Delete {menu.name}?", lambda: self.backend.menus.delete_menu(store.id, menu.id), "Menu deleted."
        )

    def action_manage_options(self) -> None:
        row = self._selected_row()
        if self._modal_open() or self.active_view != "menu_admin" or not isinstance(row, Menu):
            return
        self.managed_menu = row
        self._navigate("options")

    async def _option_form_flow(self, option: MenuOption | None) -> None:
        store, menu = self.owned_store, self.managed_menu
        if store is None or menu is None:
            return
        fields = [
            FormField("name", "Name", option.name if option else ""),
            FormField("detail", "Detail", option.detail if option else ""),
            FormField("price", "Price (KRW)", str(option.price) if option else "", digits_only=True, max_length=9),
        ]
        form = await self._form("Edit option" if option else "New option", fields, OptionForm)
        if form is None:
            return
        if option is None:
            await self._apply_change(
                lambda: self.backend.menus.add_option(store.id, menu.id, form.name, form.detail, form.price),
                f"Added option {form.name}.",
            )
        else:
            data = {"optionName": form.name, "optionDetail": form.detail, "optionPrice": form.price}
            await self._apply_change(
                lambda: self.backend.menus.update_option(store.id, menu.id, option.id, data),
                f"Saved option {form.name}.",
            )

    async def _delete_option_flow(self, option: MenuOption) -> None:
        store, menu = self.owned_store, self.managed_menu
        if store is None or menu is None:
            return
        await self._confirmed_change(
            f"Delete option {option.name}?",
            lambda: self.backend.menus.delete_option(store.id, menu.id, option.id),
            "Option deleted.",
        )

    def action_clear_cart(self) -> None:
        if self._modal_open() or self.active_view != "cart" or self.cart_store.cart is None:
            return
        self._start(self._clear_cart_flow())

    async def _clear_cart_flow(self) -> None:
        if await self.push_screen_wait(ConfirmModal("Empty your cart?")):
            self.cart_store.clear_cart()
            await self._load_view("cart", self._generation)

    def _register_card(self) -> None:
        user = self.session.user
        if user is None:
            self._say("Log in to register a card.")
            return
        request = BillingAuthRequest(
            customer_key=customer_key_for(user.id),
            customer_name=user.username,
            success_url=success_url(None, PaymentMethod.CREDIT_CARD),
            fail_url=fail_url(),
        )
        try:
            self.provider.request_billing_auth(request)
        except ProviderConfigError as exc:
            self.system_status = str(exc)
        else:
            self.system_status = "Finish card registration in your browser."
        self._refresh_status()

    # ---------------------------------------------------------
    # Session
    # ---------------------------------------------------------

    def action_login_or_logout(self) -> None:
        if self._modal_open():
            return
        self._start(self._login_flow())

    async def _login_flow(self) -> None:
        if self.session.is_authenticated:
            if await self.push_screen_wait(ConfirmModal("Log out?")):
                try:
                    await self.backend.auth.logout()
                except PickupError as exc:
                    logger.info("logout_request_failed error=%s", exc)
                self.session.logout()
            return

        self._login_prompt_open = True
        try:
            error = ""
            while True:
                creds = await self.push_screen_wait(LoginModal(error))
                if creds is None:
                    return
                try:
                    user = await login(self.session, self.backend, *creds)
                except PickupError as exc:
                    error = str(exc)
                    continue
                self._say(f"Welcome, {user.nickname or user.username}!")
                return
        finally:
            self._login_prompt_open = False

    def action_sign_up(self) -> None:
        if self._modal_open() or self.session.is_authenticated:
            return
        self._start(self._join_flow())

    async def _join_flow(self) -> None:
        picked = await self.push_screen_wait(ChoiceModal("Sign up as", [label for _, label in JOIN_ROLES]))
        if picked is None:
            return
        role = JOIN_ROLES[picked][0]
        fields = [
            FormField("username", "Username"),
            FormField("password", "Password", secret=True),
            FormField("nickname", "Nickname"),
            FormField("email", "Email"),
            FormField("age", "Age", digits_only=True, max_length=3),
            FormField("road_address", "Road address"),
            FormField("address_detail", "Address detail"),
        ]
        error = ""
        while True:
            values = await self.push_screen_wait(FormModal("Create account", fields, error))
            if values is None:
                return
            fields = [replace(f, value=values[f.name]) for f in fields]
            try:
                form = parse_form(JoinForm, values)
                await self.backend.auth.join(
                    username=form.username,
                    password=form.password,
                    nickname=form.nickname,
                    email=form.email,
                    role=role,
                    age=form.age,
                    road_address=form.road_address,
                    address_detail=form.address_detail,
                )
            except PickupError as exc:
                error = str(exc)
                continue
            break

        self._say("Account created. Log in to continue.")
        await self._login_flow()

    # ---------------------------------------------------------
    # Checkout
    # ---------------------------------------------------------

    def action_checkout(self) -> None:
        if self._modal_open():
            return
        if self.checkout.busy:
            self._say("Your order is already being submitted.")
            return
        self._start(self._checkout_flow())

    async def _checkout_flow(self) -> None:
        try:
            self.checkout.begin_review()
        except (UserNotLoadedError, EmptyCartError) as exc:
            self._say(str(exc))
            if not self.session.is_authenticated and self.session.has_hydrated:
                await self._login_flow()
            return

        error = ""
        while True:
            form = await self.push_screen_wait(CheckoutModal(self.cart_store.get_total(), error))
            if form is None:
                self.checkout.back_to_cart()
                return
            try:
                result = await self.checkout.submit(form)
            except CartCorruptedError as exc:
                if await self.push_screen_wait(ConfirmModal(str(exc))):
                    self.cart_store.clear_cart()
                self.checkout.back_to_cart()
                self._navigate("cart")
                return
            except CheckoutValidationError as exc:
                error = str(exc)
                continue
            except CheckoutBusyError as exc:
                self._say(str(exc))
                return
            break

        self.system_status = result.message
        if result.step is CheckoutStep.COMPLETED:
            self._navigate(ROUTE_ORDERS)
        elif result.step is CheckoutStep.AWAITING_BILLING_AUTH:
            self.detail = Text(
                "Waiting for card registration.\n\nThe order is paid automatically when your browser "
                "returns to this app.",
            )
            self._refresh_all()
        else:
            self._say(f"Order failed: {result.message}")

    # ---------------------------------------------------------
    # Redirect callbacks
    # ---------------------------------------------------------

    async def _handle_callback(self, url: str) -> None:
        route, params = callback_route(url)
        self.active_view = "callback"
        generation = self._generation

        if route == BILLING_SUCCESS_ROUTE:
            self.detail = "Saving your card and completing the payment..."
            self._refresh_all()
            result = await reconcile_billing_callback(BillingCallback.from_query(params), self.session, self.backend)
            if generation != self._generation:
                return
            if result.step is CheckoutStep.COMPLETED:
                self.detail = Text(f"{result.message}\n\nRedirecting in {result.redirect_delay:g} seconds...")
                next_route = result.next_route or ROUTE_ORDERS
                self.set_timer(result.redirect_delay, lambda: self._navigate(next_route))
            else:
                self.detail = Text(f"Processing failed\n\n{result.message}\n\nPress C to return to the cart.")
            self._refresh_all()
            return

        if route == PAYMENT_FAIL_ROUTE:
            failure = classify_payment_failure(params.get("code"), params.get("message"))
            detail = Text(f"{failure.title}\n\n", style="bold")
            detail.append(f"{failure.message}\n")
            if failure.code:
                detail.append(f"\nError code: {failure.code}\n", style="dim")
            if ROUTE_BILLING in failure.actions:
                detail.append("\nPress B to register your card again.")
            if ROUTE_CART in failure.actions:
                detail.append("\nPress C to return to the cart.")
            self.detail = detail
            self._refresh_all()
            return

        logger.warning("unknown_callback_route route=%s", route)
        self._navigate("stores")

    # ---------------------------------------------------------
    # Rendering
    # ---------------------------------------------------------

    def _refresh_all(self) -> None:
        self._refresh_rows()
        self._refresh_status()

    def _visible_rows(self, widget: Static) -> int:
        height = widget.size.height
        if height <= 0:
            return 8
        return max(1, height // 2)

    def _window_bounds(self, total: int, rows: int, selected: int | None) -> tuple[int, int]:
        if total <= 0:
            return (0, 0)

        rows = max(1, rows)
        if total <= rows:
            return (0, total)

        if selected is None:
            start = 0
        else:
            half = rows // 2
            start = selected - half
            start = max(0, start)
            start = min(start, total - rows)

        return (start, start + rows)

    def _format_row(self, row: Any) -> Text:
        if isinstance(row, Store):
            return format_admin_store_label(row) if self.active_view == "admin_stores" else format_store_label(row)
        if isinstance(row, Category):
            return format_category_label(row)
        if isinstance(row, Menu):
            return format_menu_label(row)
        if isinstance(row, MenuOption):
            return format_option_label(row)
        if isinstance(row, Review):
            return format_review_label(row, own=self._owns(row))
        if isinstance(row, User):
            return format_user_label(row)
        if isinstance(row, Order):
            return format_order_label(row, owner=self.active_view == "owner")
        if isinstance(row, CartItem):
            return format_cart_line(row)
        if isinstance(row, DailySales):
            return Text(f"{row.date}  {row.order_count} orders  {format_money(row.revenue)}")
        return Text(str(row))

    def _refresh_rows(self) -> None:
        try:
            title = self.query_one("#list-title", Static)
            rows_widget = self.query_one("#rows", Static)
            detail_widget = self.query_one("#detail", Static)
        except NoMatches:
            return

        heading = VIEW_TITLES.get(self.active_view, self.active_view.title())
        if self.active_view in {"menus", "reviews"} and self.current_store is not None:
            heading = f"{heading}: {self.current_store.name}"
        elif self.active_view == "options" and self.managed_menu is not None:
            heading = f"{heading}: {self.managed_menu.name}"
        title.update(heading)
        detail_widget.update(self.detail)

        if not self.rows:
            self.selected_index = 0
            rows_widget.update("(nothing here yet)")
            return

        if self.selected_index >= len(self.rows):
            self.selected_index = len(self.rows) - 1

        visible_rows = self._visible_rows(rows_widget)
        start, end = self._window_bounds(len(self.rows), visible_rows, self.selected_index)

        lines = Text()
        if start > 0:
            lines.append("⋮\n", style="dim")

        for idx in range(start, end):
            if idx > start:
                lines.append("\n")
            pointer = "➤ " if idx == self.selected_index else "  "
            lines.append(pointer)
            lines.append_text(self._format_row(self.rows[idx]))

        if end < len(self.rows):
            lines.append("\n⋮", style="dim")

        rows_widget.update(lines)

    def _refresh_status(self) -> None:
        try:
            bar = self.query_one("#status-bar", Static)
        except NoMatches:
            return
        user = self.session.user
        if not self.session.has_hydrated:
            who = "Checking login..."
        elif user is None:
            who = "Guest (L log in, U sign up)"
        else:
            who = f"{user.nickname or user.username} [{user.role.value}]"
        cart = f"Cart: {self.cart_store.get_item_count()} items, {format_money(self.cart_store.get_total())}"
        bar.update(f"{who}  |  {cart}\n{self.system_status or 'Ready'}")
