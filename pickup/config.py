"""Runtime configuration defaults for the backend client, storage and checkout."""

from __future__ import annotations

import os

API_BASE_URL = os.environ.get("PICKUP_API_BASE_URL", "http://localhost:8080").rstrip("/")
DB_PATH = os.environ.get("PICKUP_DB_PATH", "data/pickup.db")
DEBUG_LOG_PATH = os.environ.get("PICKUP_DEBUG_LOG", "/tmp/pickup-debug.log")

REQUEST_TIMEOUT_SECONDS = 25

# Background token freshness check.
TOKEN_REFRESH_INTERVAL_MINUTES = 10
TOKEN_EXPIRY_THRESHOLD_MINUTES = 5

MIN_PICKUP_LEAD_MINUTES = 30
REDIRECT_DELAY_SECONDS = 3

BILLING_PROVIDER_CLIENT_KEY = os.environ.get("PICKUP_BILLING_CLIENT_KEY", "").strip()
BILLING_PROVIDER_AUTH_URL = os.environ.get(
    "PICKUP_BILLING_AUTH_URL", "https://pay.example.com/billing/authorize"
)
CALLBACK_BASE_URL = os.environ.get("PICKUP_CALLBACK_BASE_URL", "pickup://callback").rstrip("/")

# 401 on these is "no additional data", never a forced login.
PUBLIC_PATH_PREFIXES = ("/api/stores", "/api/categories", "/api/menus")

SNAPSHOT_VERSION = 1
CART_STORAGE_KEY = "cart-storage"
AUTH_STORAGE_KEY = "auth-storage"
TOKEN_STORAGE_KEY = "auth-tokens"

GENERIC_ERROR_MESSAGE = "Request failed. Please try again."
UNREADABLE_RESPONSE_MESSAGE = "The server sent a response this app could not read."
MENU_PLACEHOLDER_IMAGE_URL = "https://via.placeholder.com/300x200?text=Menu+Image"
