"""Session/auth state, its persistence and the background token freshness check."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable

from pydantic import ValidationError

from pickup.config import AUTH_STORAGE_KEY, TOKEN_EXPIRY_THRESHOLD_MINUTES, TOKEN_REFRESH_INTERVAL_MINUTES
from pickup.errors import ApiError, PickupError, TransportError
from pickup.models import Role, User
from pickup.persistence import SnapshotStore
from pickup.resources import Backend
from pickup.schemas import SessionSnapshot, UserSnapshot
from pickup.tokens import TokenStore, token_expires_within, user_id_from_token

logger = logging.getLogger(__name__)


class SessionStore:
    """Current user and the authenticated flag, kept equal to ``user is not None``.

    Gating code must wait for ``has_hydrated`` before deciding the user is logged out.
    """

    def __init__(self, storage: SnapshotStore, tokens: TokenStore) -> None:
        self.storage = storage
        self.tokens = tokens
        self.user: User | None = None
        self.is_authenticated = False
        self.is_loading = True
        self.has_hydrated = False
        self._listeners: list[Callable[[User | None], None]] = []

    def subscribe(self, listener: Callable[[User | None], None]) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.user)

    def load(self) -> None:
        try:
            document = self.storage.read_json(AUTH_STORAGE_KEY)
            snapshot = SessionSnapshot.model_validate(document) if document is not None else SessionSnapshot()
        except (ValueError, ValidationError) as exc:
            logger.error("session_corrupted error=%s", exc)
            self.storage.delete(AUTH_STORAGE_KEY)
            snapshot = SessionSnapshot()
        self.tokens.load()
        self.user = snapshot.user.to_user() if snapshot.user else None
        self.is_authenticated = self.user is not None
        self.has_hydrated = True
        self.is_loading = False
        logger.debug("session_hydrated authenticated=%s", self.is_authenticated)

    def _save(self) -> None:
        snapshot = SessionSnapshot(
            user=UserSnapshot.from_user(self.user) if self.user else None,
            is_authenticated=self.is_authenticated,
        )
        self.storage.write(AUTH_STORAGE_KEY, snapshot.model_dump(mode="json"))

    def set_user(self, user: User | None) -> None:
        self.user = user
        self.is_authenticated = user is not None
        self.is_loading = False
        self._save()
        self._notify()

    def logout(self) -> None:
        logger.info("logout")
        self.user = None
        self.is_authenticated = False
        self.tokens.clear()
        self.storage.delete(AUTH_STORAGE_KEY)
        self._notify()

    def has_role(self, roles: Iterable[Role | str]) -> bool:
        if self.user is None:
            return False
        # Unknown role names simply never match.
        allowed = {r.value if isinstance(r, Role) else str(r) for r in roles}
        return self.user.role.value in allowed


async def restore_user(session: SessionStore, backend: Backend) -> User | None:
    """Resolve the full user record from the stored access token.

    A token that does not decode, or a user fetch that fails, ends the session.
    """
    token = session.tokens.access_token
    if not token:
        if session.user is not None:
            logger.info("restore_user reason=no_token")
            session.logout()
        return None

    user_id = user_id_from_token(token)
    if user_id is None:
        session.logout()
        return None

    try:
        user = await backend.auth.get_user(user_id)
    except PickupError as exc:
        logger.warning("restore_user_failed error=%s", exc)
        session.logout()
        return None
    session.set_user(user)
    return user


async def login(session: SessionStore, backend: Backend, username: str, password: str) -> User:
    await backend.auth.login(username, password)
    user = await restore_user(session, backend)
    if user is None:
        raise ApiError("Could not load your account after login.")
    return user


class TokenRefresher:
    """Periodically refreshes an access token that is about to expire.

    Runs as a background task while a user is present; a failed exchange logs
    the session out.
    """

    def __init__(
        self,
        session: SessionStore,
        backend: Backend,
        interval_minutes: float = TOKEN_REFRESH_INTERVAL_MINUTES,
        threshold_minutes: int = TOKEN_EXPIRY_THRESHOLD_MINUTES,
        on_expired: Callable[[], None] | None = None,
    ) -> None:
        self.session = session
        self.backend = backend
        self.interval_seconds = interval_minutes * 60
        self.threshold_minutes = threshold_minutes
        self.on_expired = on_expired
        self._task: asyncio.Task[None] | None = None
        session.subscribe(self._on_user_changed)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_and_refresh(self) -> bool:
        """Returns False when the session had to be logged out."""
        tokens = self.session.tokens
        if not tokens.access_token or not tokens.refresh_token:
            logger.info("token_check_failed reason=missing_tokens")
            self._expire()
            return False

        if not token_expires_within(tokens.access_token, self.threshold_minutes):
            return True

        try:
            await self.backend.auth.refresh()
        except (ApiError, TransportError) as exc:
            logger.warning("token_refresh_failed error=%s", exc)
            self._expire()
            return False
        return True

    def _expire(self) -> None:
        self.session.logout()
        if self.on_expired is not None:
            self.on_expired()

    async def _run(self) -> None:
        while self.session.user is not None:
            if not await self.check_and_refresh():
                return
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running or self.session.user is None:
            return
        self._task = asyncio.ensure_future(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _on_user_changed(self, user: User | None) -> None:
        if user is None:
            self.stop()
