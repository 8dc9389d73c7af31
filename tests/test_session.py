# tests/test_session.py

import asyncio
import json
import time
import unittest

from helpers import FakeTransport, TempStorage, build_backend, envelope, failure, make_token, make_user

from pickup.api import HttpResponse
from pickup.config import AUTH_STORAGE_KEY, TOKEN_STORAGE_KEY
from pickup.models import Role
from pickup.session import SessionStore, TokenRefresher, login, restore_user
from pickup.tokens import token_expires_within, user_id_from_token


class TokenHelperTests(unittest.TestCase):
    def test_expiring_token_is_detected(self):
        self.assertTrue(token_expires_within(make_token(expires_in_minutes=2), 5))

    def test_fresh_token_is_not_expiring(self):
        self.assertFalse(token_expires_within(make_token(expires_in_minutes=30), 5))

    def test_token_without_exp_counts_as_expiring(self):
        self.assertTrue(token_expires_within(make_token(expires_in_minutes=None), 5))

    def test_garbage_token_counts_as_expiring(self):
        self.assertTrue(token_expires_within("not-a-jwt", 5))

    def test_expiry_uses_supplied_clock(self):
        token = make_token(expires_in_minutes=30)
        self.assertTrue(token_expires_within(token, 5, now=time.time() + 26 * 60))

    def test_user_id_from_token(self):
        self.assertEqual(user_id_from_token(make_token(42)), 42)
        self.assertIsNone(user_id_from_token("not-a-jwt"))


class SessionStoreTests(unittest.TestCase):
    """
    Session state and its persisted snapshot.

    GUARANTEES:
    - is_authenticated is true exactly when a user is present
    - Nothing is gated before hydration completes
    - Logout clears credentials and the persisted session
    """

    def setUp(self):
        self.tmp = TempStorage()
        self.storage = self.tmp.store
        self.transport = FakeTransport()
        self.tokens, self.client, self.backend = build_backend(self.storage, self.transport)
        self.session = SessionStore(self.storage, self.tokens)

    def tearDown(self):
        self.tmp.cleanup()

    def test_not_hydrated_before_load(self):
        self.assertFalse(self.session.has_hydrated)
        self.assertTrue(self.session.is_loading)

    def test_load_without_record_is_logged_out(self):
        self.session.load()

        self.assertTrue(self.session.has_hydrated)
        self.assertFalse(self.session.is_loading)
        self.assertIsNone(self.session.user)
        self.assertFalse(self.session.is_authenticated)

    def test_user_survives_reload(self):
        self.session.load()
        self.session.set_user(make_user(7, Role.OWNER))

        reloaded = SessionStore(self.storage, self.tokens)
        reloaded.load()

        self.assertTrue(reloaded.is_authenticated)
        self.assertEqual(reloaded.user.id, 7)
        self.assertEqual(reloaded.user.role, Role.OWNER)

    def test_inconsistent_snapshot_is_discarded(self):
        self.storage.write_raw(
            AUTH_STORAGE_KEY, json.dumps({"version": 1, "user": None, "is_authenticated": True})
        )

        self.session.load()

        self.assertFalse(self.session.is_authenticated)
        self.assertIsNone(self.storage.read(AUTH_STORAGE_KEY))

    def test_has_role(self):
        self.session.load()
        self.assertFalse(self.session.has_role([Role.CUSTOMER]))

        self.session.set_user(make_user(1, Role.MANAGER))

        self.assertTrue(self.session.has_role([Role.MASTER, Role.MANAGER]))
        self.assertTrue(self.session.has_role(["MANAGER"]))
        self.assertFalse(self.session.has_role([Role.OWNER]))

    def test_unknown_role_name_never_matches(self):
        self.session.load()
        self.session.set_user(make_user(1, Role.MANAGER))

        self.assertFalse(self.session.has_role(["SUPERUSER"]))
        self.assertTrue(self.session.has_role(["SUPERUSER", Role.MANAGER]))

    def test_logout_clears_tokens_and_record(self):
        self.session.load()
        self.tokens.set("a1", "r1")
        self.session.set_user(make_user())
        seen = []
        self.session.subscribe(seen.append)

        self.session.logout()

        self.assertIsNone(self.session.user)
        self.assertFalse(self.session.is_authenticated)
        self.assertIsNone(self.tokens.access_token)
        self.assertIsNone(self.storage.read(TOKEN_STORAGE_KEY))
        self.assertIsNone(self.storage.read(AUTH_STORAGE_KEY))
        self.assertEqual(seen, [None])

    def test_tokens_are_loaded_with_session(self):
        self.tokens.set("a1", "r1")

        fresh_tokens, _, _ = build_backend(self.storage, self.transport)
        SessionStore(self.storage, fresh_tokens).load()

        self.assertEqual((fresh_tokens.access_token, fresh_tokens.refresh_token), ("a1", "r1"))

    # ----------------------------------
    # Restoring the user
    # ----------------------------------

    def test_restore_user_fetches_record_for_token_subject(self):
        self.session.load()
        self.tokens.set(make_token(7), "r1")
        self.transport.add("GET", "/api/users/7", envelope({"id": 7, "username": "kim", "role": "CUSTOMER"}))

        user = asyncio.run(restore_user(self.session, self.backend))

        self.assertEqual(user.username, "kim")
        self.assertTrue(self.session.is_authenticated)

    def test_restore_user_failure_logs_out(self):
        self.session.load()
        self.session.set_user(make_user(7))
        self.tokens.set(make_token(7), "r1")
        self.transport.add("GET", "/api/users/7", failure(500, "boom"))

        user = asyncio.run(restore_user(self.session, self.backend))

        self.assertIsNone(user)
        self.assertIsNone(self.session.user)
        self.assertIsNone(self.tokens.access_token)

    def test_restore_without_token_drops_stale_user(self):
        self.session.load()
        self.session.set_user(make_user(7))

        asyncio.run(restore_user(self.session, self.backend))

        self.assertFalse(self.session.is_authenticated)

    def test_login_sets_user(self):
        self.session.load()
        token = make_token(9)
        self.transport.add("POST", "/api/login", HttpResponse(status=200, body={"accessToken": token, "refreshToken": "r9"}))
        self.transport.add("GET", "/api/users/9", envelope({"id": 9, "username": "lee", "role": "OWNER"}))

        user = asyncio.run(login(self.session, self.backend, "lee", "pw"))

        self.assertEqual(user.id, 9)
        self.assertTrue(self.session.has_role([Role.OWNER]))


class TokenRefresherTests(unittest.TestCase):
    def setUp(self):
        self.tmp = TempStorage()
        self.storage = self.tmp.store
        self.transport = FakeTransport()
        self.tokens, self.client, self.backend = build_backend(self.storage, self.transport)
        self.session = SessionStore(self.storage, self.tokens)
        self.session.load()
        self.session.set_user(make_user(7))
        self.refresher = TokenRefresher(self.session, self.backend, interval_minutes=10, threshold_minutes=5)

    def tearDown(self):
        self.tmp.cleanup()

    def test_fresh_token_is_left_alone(self):
        self.tokens.set(make_token(7, expires_in_minutes=30), "r1")

        self.assertTrue(asyncio.run(self.refresher.check_and_refresh()))
        self.assertEqual(self.transport.calls, [])

    def test_expiring_token_is_exchanged(self):
        self.tokens.set(make_token(7, expires_in_minutes=2), "r1")
        self.transport.add("POST", "/api/auth/refresh", envelope({"accessToken": "new-access", "refreshToken": "r2"}))

        self.assertTrue(asyncio.run(self.refresher.check_and_refresh()))
        self.assertEqual(self.tokens.access_token, "new-access")
        self.assertEqual(self.tokens.refresh_token, "r2")

    def test_failed_exchange_logs_out(self):
        self.tokens.set(make_token(7, expires_in_minutes=2), "r1")
        self.transport.add("POST", "/api/auth/refresh", failure(401, "expired"))

        self.assertFalse(asyncio.run(self.refresher.check_and_refresh()))
        self.assertIsNone(self.session.user)
        self.assertIsNone(self.tokens.access_token)

    def test_missing_tokens_log_out(self):
        self.assertFalse(asyncio.run(self.refresher.check_and_refresh()))
        self.assertFalse(self.session.is_authenticated)

    def test_failed_exchange_reports_expiry(self):
        expired = []
        refresher = TokenRefresher(self.session, self.backend, on_expired=lambda: expired.append(True))
        self.tokens.set(make_token(7, expires_in_minutes=2), "r1")
        self.transport.add("POST", "/api/auth/refresh", failure(401, "expired"))

        self.assertFalse(asyncio.run(refresher.check_and_refresh()))
        self.assertEqual(expired, [True])

    def test_healthy_check_does_not_report_expiry(self):
        expired = []
        refresher = TokenRefresher(self.session, self.backend, on_expired=lambda: expired.append(True))
        self.tokens.set(make_token(7, expires_in_minutes=30), "r1")

        self.assertTrue(asyncio.run(refresher.check_and_refresh()))
        self.assertEqual(expired, [])
