"""
Persisted snapshot schemas

Each durable record is a full JSON document carrying a ``version``. Anything
that does not validate against these models is corruption, never a partially
trusted object.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pickup.config import SNAPSHOT_VERSION
from pickup.models import Cart, CartItem, Menu, MenuOption, Role, User


class _Snapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")


class OptionSnapshot(_Snapshot):
    id: str = Field(..., min_length=1)
    name: str
    price: int = Field(0, ge=0)


class MenuSnapshot(_Snapshot):
    id: str = Field(..., min_length=1, description="Menu id; a blank id marks a corrupted line")
    name: str
    price: int = Field(..., ge=0)
    store_id: str = ""
    category: str = ""


class CartItemSnapshot(_Snapshot):
    menu: MenuSnapshot
    quantity: int = Field(..., ge=1)
    selected_options: list[OptionSnapshot] = Field(default_factory=list)


class CartSnapshot(_Snapshot):
    version: Literal[SNAPSHOT_VERSION] = SNAPSHOT_VERSION
    store_id: str = Field(..., min_length=1)
    store_name: str
    items: list[CartItemSnapshot] = Field(..., min_length=1)

    @classmethod
    def from_cart(cls, cart: Cart) -> CartSnapshot:
        return cls(
            store_id=cart.store_id,
            store_name=cart.store_name,
            items=[
                CartItemSnapshot(
                    menu=MenuSnapshot(
                        id=item.menu.id,
                        name=item.menu.name,
                        price=item.menu.price,
                        store_id=item.menu.store_id,
                        category=item.menu.category,
                    ),
                    quantity=item.quantity,
                    selected_options=[
                        OptionSnapshot(id=opt.id, name=opt.name, price=opt.price)
                        for opt in item.selected_options
                    ],
                )
                for item in cart.items
            ],
        )

    def to_cart(self) -> Cart:
        return Cart(
            store_id=self.store_id,
            store_name=self.store_name,
            items=[
                CartItem(
                    menu=Menu(
                        id=item.menu.id,
                        name=item.menu.name,
                        price=item.menu.price,
                        store_id=item.menu.store_id,
                        category=item.menu.category,
                    ),
                    quantity=item.quantity,
                    selected_options=[
                        MenuOption(id=opt.id, name=opt.name, price=opt.price) for opt in item.selected_options
                    ],
                )
                for item in self.items
            ],
        )


class UserSnapshot(_Snapshot):
    id: int
    username: str
    role: Role
    nickname: str = ""
    email: str = ""
    road_address: str = ""
    address_detail: str = ""
    age: Optional[int] = None
    male: Optional[bool] = None

    @classmethod
    def from_user(cls, user: User) -> UserSnapshot:
        return cls(
            id=user.id,
            username=user.username,
            role=user.role,
            nickname=user.nickname,
            email=user.email,
            road_address=user.road_address,
            address_detail=user.address_detail,
            age=user.age,
            male=user.male,
        )

    def to_user(self) -> User:
        return User(**self.model_dump())


class SessionSnapshot(_Snapshot):
    version: Literal[SNAPSHOT_VERSION] = SNAPSHOT_VERSION
    user: Optional[UserSnapshot] = None
    is_authenticated: bool = False

    @model_validator(mode="after")
    def _authenticated_matches_user(self) -> SessionSnapshot:
        if self.is_authenticated != (self.user is not None):
            raise ValueError("is_authenticated must be true exactly when a user is present")
        return self


class TokenSnapshot(_Snapshot):
    version: Literal[SNAPSHOT_VERSION] = SNAPSHOT_VERSION
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
