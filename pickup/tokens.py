"""Access/refresh credential storage and JWT expiry checks."""

from __future__ import annotations

import logging
import time
from typing import Any

import jwt
from pydantic import ValidationError

from pickup.config import TOKEN_STORAGE_KEY
from pickup.persistence import SnapshotStore
from pickup.schemas import TokenSnapshot

logger = logging.getLogger(__name__)


def token_claims(token: str) -> dict[str, Any] | None:
    """Decode claims without verifying the signature; the backend owns the key."""
    try:
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError as exc:
        logger.warning("token_decode_failed error=%s", exc)
        return None


def user_id_from_token(token: str) -> int | None:
    claims = token_claims(token)
    if not claims:
        return None
    raw = claims.get("userId") or claims.get("sub")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def token_expires_within(token: str, threshold_minutes: int, *, now: float | None = None) -> bool:
    """True when the token expires within the threshold, has no ``exp`` or cannot be decoded."""
    claims = token_claims(token)
    if not claims or not claims.get("exp"):
        return True
    current = time.time() if now is None else now
    return int(claims["exp"]) - int(current) <= threshold_minutes * 60


class TokenStore:
    """In-memory credentials mirrored to durable storage."""

    def __init__(self, storage: SnapshotStore) -> None:
        self.storage = storage
        self.access_token: str | None = None
        self.refresh_token: str | None = None

    def load(self) -> None:
        try:
            document = self.storage.read_json(TOKEN_STORAGE_KEY)
            snapshot = TokenSnapshot.model_validate(document) if document is not None else TokenSnapshot()
        except (ValueError, ValidationError) as exc:
            logger.error("token_snapshot_corrupted error=%s", exc)
            self.storage.delete(TOKEN_STORAGE_KEY)
            snapshot = TokenSnapshot()
        self.access_token = snapshot.access_token
        self.refresh_token = snapshot.refresh_token

    def set(self, access_token: str | None, refresh_token: str | None = None) -> None:
        if access_token:
            self.access_token = access_token
        if refresh_token:
            self.refresh_token = refresh_token
        snapshot = TokenSnapshot(access_token=self.access_token, refresh_token=self.refresh_token)
        self.storage.write(TOKEN_STORAGE_KEY, snapshot.model_dump(mode="json"))

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.storage.delete(TOKEN_STORAGE_KEY)
