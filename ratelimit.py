"""
Per-client request limits

Fixed windows counted by the `limits` library, keyed on the client address.
A request is checked against every rule whose path prefix it falls under,
so /api/auth traffic counts towards the general /api budget as well.
"""

import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItem, parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

from config import Settings
from errors import RateLimited


@dataclass(frozen=True)
class LimitRule:
    prefix: str
    limit: RateLimitItem
    code: str
    message: str

    def applies_to(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")


class RateLimiter:
    def __init__(self, rules: list[LimitRule], storage: Optional[Storage] = None):
        self.rules = rules
        self._strategy = FixedWindowRateLimiter(storage or MemoryStorage())

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls([
            LimitRule(
                "/api",
                parse(settings.rate_limit),
                "RATE_LIMIT_EXCEEDED",
                "Too many requests from this IP, please try again later.",
            ),
            LimitRule(
                "/api/auth",
                parse(settings.auth_rate_limit),
                "AUTH_RATE_LIMIT_EXCEEDED",
                "Too many authentication attempts from this IP, please try again later.",
            ),
        ])

    def check(self, path: str, client: str) -> Optional[RateLimited]:
        """Count one request; return the error to send if any applicable limit is used up."""
        for rule in self.rules:
            if not rule.applies_to(path):
                continue
            if not self._strategy.hit(rule.limit, rule.prefix, client):
                reset_at, _ = self._strategy.get_window_stats(rule.limit, rule.prefix, client)
                retry_after = max(1, round(reset_at - time.time()))
                return RateLimited(rule.message, code=rule.code, details={"retryAfter": retry_after})
        return None
