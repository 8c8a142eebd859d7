"""Request throttling for the affiliate API.

Limits are keyed by client address. Several API processes serving the same
ledger share counters when rate_limit_storage_uri points at a common store.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from affiliate_engine.settings import Settings, settings


def build_limiter(cfg: Settings | None = None) -> Limiter:
    """Limiter with the configured default limit, active only in production."""
    cfg = cfg or settings
    return Limiter(
        key_func=get_remote_address,
        default_limits=[cfg.api_rate_limit],
        storage_uri=cfg.rate_limit_storage_uri,
        enabled=cfg.env == "production",
    )


# Shared by the app and the route decorators
limiter = build_limiter()
