"""Merchant-side order and subscription identifiers."""

import time
from threading import Lock

SETUP_ORDER_PREFIX = "MO"
SUBSCRIPTION_PREFIX = "MS"
REDEMPTION_ORDER_PREFIX = "RO"

_lock = Lock()
_last_millis = 0


def _next_millis() -> int:
    # Strictly increasing even when called twice within one millisecond.
    global _last_millis
    with _lock:
        now = int(time.time() * 1000)
        _last_millis = max(now, _last_millis + 1)
        return _last_millis


def generate_id(prefix: str) -> str:
    """Return ``prefix`` followed by a process-unique millisecond stamp."""
    return f"{prefix}{_next_millis()}"


def new_setup_order_id() -> str:
    return generate_id(SETUP_ORDER_PREFIX)


def new_subscription_id() -> str:
    return generate_id(SUBSCRIPTION_PREFIX)


def new_redemption_order_id() -> str:
    return generate_id(REDEMPTION_ORDER_PREFIX)
