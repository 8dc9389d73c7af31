"""Shared fixtures for the client tests: a scripted transport, temp storage and sample data."""

from __future__ import annotations

import json
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlparse

import jwt

from pickup.api import ApiClient, HttpResponse
from pickup.models import Menu, MenuOption, Role, User
from pickup.persistence import SnapshotStore
from pickup.resources import Backend
from pickup.tokens import TokenStore

JWT_TEST_SECRET = "pickup-test-secret-with-enough-length-for-hs256"


@dataclass(frozen=True)
class RecordedCall:
    method: str
    path: str
    query: dict[str, str]
    headers: dict[str, str]
    body: Any


class FakeTransport:
    """Answers requests from per-route queues; the last queued response repeats."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[HttpResponse]] = {}
        self.calls: list[RecordedCall] = []

    def add(self, method: str, path: str, *responses: HttpResponse) -> None:
        self.routes.setdefault((method, path), []).extend(responses)

    def send(self, method: str, url: str, *, headers: dict[str, str], body: bytes | None) -> HttpResponse:
        parsed = urlparse(url)
        self.calls.append(
            RecordedCall(
                method=method,
                path=parsed.path,
                query=dict(parse_qsl(parsed.query)),
                headers=dict(headers),
                body=json.loads(body) if body else None,
            )
        )
        queue = self.routes.get((method, parsed.path))
        if not queue:
            return HttpResponse(status=404, body={"message": f"no route for {method} {parsed.path}"})
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    def calls_to(self, method: str, path: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.method == method and c.path == path]


def envelope(result: Any, status: int = 200) -> HttpResponse:
    return HttpResponse(
        status=status,
        body={"isSuccess": True, "code": "COMMON200", "message": "OK", "result": result},
    )


def failure(status: int, message: str = "failed", code: str | None = None) -> HttpResponse:
    return HttpResponse(status=status, body={"isSuccess": False, "code": code, "message": message})


def make_token(user_id: int = 7, *, expires_in_minutes: float | None = 60) -> str:
    claims: dict[str, Any] = {"userId": user_id, "sub": str(user_id)}
    if expires_in_minutes is not None:
        claims["exp"] = int(time.time() + expires_in_minutes * 60)
    return jwt.encode(claims, JWT_TEST_SECRET, algorithm="HS256")


class TempStorage:
    """A throwaway sqlite file per test."""

    def __init__(self) -> None:
        self._dir = tempfile.TemporaryDirectory()
        self.store = SnapshotStore(Path(self._dir.name) / "pickup-test.db")
        self.store.bootstrap_schema()

    def cleanup(self) -> None:
        self._dir.cleanup()


def build_backend(
    storage: SnapshotStore, transport: FakeTransport, on_auth_failure=None
) -> tuple[TokenStore, ApiClient, Backend]:
    tokens = TokenStore(storage)
    client = ApiClient(tokens, transport=transport, base_url="http://backend.test", on_auth_failure=on_auth_failure)
    return tokens, client, Backend(client)


def make_menu(menu_id: str = "m1", price: int = 5000, *, name: str | None = None, options=()) -> Menu:
    return Menu(id=menu_id, name=name or f"Menu {menu_id}", price=price, store_id="s1", options=tuple(options))


def make_option(option_id: str, price: int = 500) -> MenuOption:
    return MenuOption(id=option_id, name=f"Option {option_id}", price=price)


def make_user(user_id: int = 7, role: Role = Role.CUSTOMER) -> User:
    return User(id=user_id, username=f"user{user_id}", role=role, nickname=f"Nick {user_id}")


def order_json(
    order_id: str = "ord-1",
    status: str = "PAYMENT_PENDING",
    total: int = 11000,
    **extra: Any,
) -> dict[str, Any]:
    data = {
        "id": order_id,
        "orderNumber": f"A-{order_id}",
        "storeId": "s1",
        "storeName": "Kimbap House",
        "orderStatus": status,
        "totalAmount": total,
        "orderItems": [],
    }
    data.update(extra)
    return data


def page_json(rows: list[dict[str, Any]]) -> dict[str, Any]:
    return {"content": rows, "totalElements": len(rows), "totalPages": 1, "size": 20, "number": 0}
