"""
Configuration - environment driven constants.

Values are read once at import time. Client credentials are only validated
when the corresponding client is first requested (see marketcart.db).
"""

import os


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


# Storage keys
CART_STORAGE_KEY = os.environ.get("CART_STORAGE_KEY", "marketplace-cart")
CART_SCHEMA_KEY = os.environ.get("CART_SCHEMA_KEY", "marketplace-cart-schema")
BOOKING_STATE_KEY = os.environ.get("BOOKING_STATE_KEY", "booking-state-backup")
GROUP_ORDER_FLAG_KEY = "isGroupOrderFlow"

# Current persisted cart schema (1 = full service objects, 2 = lean projection)
CART_SCHEMA_VERSION = 2

# Line-item lifetime (absolute, not sliding)
CART_ITEM_TTL_HOURS = _float_env("CART_ITEM_TTL_HOURS", 4)
BOOKING_STATE_TTL_HOURS = _float_env("BOOKING_STATE_TTL_HOURS", 4)

# Local storage quota (browsers typically give 5-10MB, 5MB is the conservative pick)
STORAGE_QUOTA_BYTES = _int_env("STORAGE_QUOTA_BYTES", 5 * 1024 * 1024)
STORAGE_CLEANUP_THRESHOLD = _float_env("STORAGE_CLEANUP_THRESHOLD", 80)
STORAGE_PERIODIC_THRESHOLD = _float_env("STORAGE_PERIODIC_THRESHOLD", 85)
STORAGE_CLEANUP_INTERVAL_SECS = _float_env("STORAGE_CLEANUP_INTERVAL_SECS", 5 * 60)

# Upstash Redis (standard env var names per Upstash docs)
UPSTASH_REDIS_REST_URL = os.environ.get("UPSTASH_REDIS_REST_URL", "")
UPSTASH_REDIS_REST_TOKEN = os.environ.get("UPSTASH_REDIS_REST_TOKEN", "")

# Supabase auth (anon key, the cart runs on behalf of the signed in user)
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
