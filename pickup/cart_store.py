"""Persisted single-store shopping cart."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from pydantic import ValidationError

from pickup.config import CART_STORAGE_KEY
from pickup.models import Cart, CartItem, Menu, MenuOption
from pickup.persistence import SnapshotStore
from pickup.schemas import CartSnapshot

logger = logging.getLogger(__name__)

STORE_SWITCH_PROMPT = (
    "Your cart holds items from another store. Clear the cart and add this item instead?"
)


def _deny(_message: str) -> bool:
    return False


class CartStore:
    """Cart state owned by the app and persisted on every mutation.

    ``confirm`` is asked before a store switch wipes the current cart; it must
    return True for the destructive path to run.
    """

    def __init__(self, storage: SnapshotStore, confirm: Callable[[str], bool] = _deny) -> None:
        self.storage = storage
        self.confirm = confirm
        self.cart: Cart | None = None
        self.has_hydrated = False

    # ---------------------------------------------------------
    # Persistence boundary
    # ---------------------------------------------------------

    def load(self) -> Cart | None:
        """Rehydrate from storage, discarding the whole record on any corruption."""
        try:
            document = self.storage.read_json(CART_STORAGE_KEY)
            if document is None:
                self.cart = None
            else:
                self.cart = CartSnapshot.model_validate(document).to_cart()
        except (ValueError, ValidationError) as exc:
            # pydantic's ValidationError is a ValueError; json errors are too.
            logger.error("cart_corrupted key=%s error=%s", CART_STORAGE_KEY, exc)
            self.storage.delete(CART_STORAGE_KEY)
            self.cart = None
        self.has_hydrated = True
        return self.cart

    def _save(self) -> None:
        if self.cart is None or not self.cart.items:
            self.cart = None
            self.storage.delete(CART_STORAGE_KEY)
            return
        snapshot = CartSnapshot.from_cart(self.cart)
        self.storage.write(CART_STORAGE_KEY, snapshot.model_dump(mode="json"))

    # ---------------------------------------------------------
    # Mutations
    # ---------------------------------------------------------

    def add_item(
        self,
        store_id: str,
        store_name: str,
        menu: Menu,
        quantity: int = 1,
        options: Iterable[MenuOption] = (),
        *,
        confirm: Callable[[str], bool] | None = None,
    ) -> bool:
        """Add or merge a line. Returns False when a store switch was declined.

        ``confirm`` overrides the store-level prompt for this one call.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        if not str(menu.id or "").strip():
            raise ValueError("menu has no id")

        if self.cart is not None and self.cart.store_id != store_id:
            if not (confirm or self.confirm)(STORE_SWITCH_PROMPT):
                logger.info("store_switch_declined current=%s requested=%s", self.cart.store_id, store_id)
                return False
            logger.info("store_switch_confirmed previous=%s", self.cart.store_id)
            self.cart = None

        new_item = CartItem(menu=menu, quantity=quantity, selected_options=list(options))

        if self.cart is None:
            self.cart = Cart(store_id=store_id, store_name=store_name, items=[new_item])
            self._save()
            return True

        for item in self.cart.items:
            if item.menu.id == menu.id and item.option_key == new_item.option_key:
                item.quantity += quantity
                break
        else:
            self.cart.items.append(new_item)

        self._save()
        return True

    def remove_item(self, menu_id: str) -> None:
        if self.cart is None:
            return
        self.cart.items = [item for item in self.cart.items if item.menu.id != menu_id]
        if not self.cart.items:
            self.cart = None
        self._save()

    def update_quantity(self, menu_id: str, quantity: int) -> None:
        if self.cart is None:
            return
        if quantity <= 0:
            self.remove_item(menu_id)
            return
        for item in self.cart.items:
            if item.menu.id == menu_id:
                item.quantity = quantity
        self._save()

    def clear_cart(self) -> None:
        """Drop the cart and its persisted record so it cannot resurrect on reload."""
        self.cart = None
        self.storage.delete(CART_STORAGE_KEY)

    # ---------------------------------------------------------
    # Derived values
    # ---------------------------------------------------------

    def get_total(self) -> int:
        if self.cart is None:
            return 0
        return sum(item.line_total for item in self.cart.items)

    def get_item_count(self) -> int:
        if self.cart is None:
            return 0
        return sum(item.quantity for item in self.cart.items)

    def find_invalid_items(self) -> list[CartItem]:
        if self.cart is None:
            return []
        return [item for item in self.cart.items if item.menu is None or not str(item.menu.id or "").strip()]
