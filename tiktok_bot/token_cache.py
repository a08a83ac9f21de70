"""
Short-lived token -> link store used for the inline -> private chat handoff.

Inline results cannot carry a whole slideshow, so the bot hands out a deep link
with a token instead and resolves the original link once the user opens the
private chat.
"""

import dataclasses
import logging
import secrets
import threading
import time
import warnings
from typing import Callable

from . import config
from .errors import RandomSourceDegraded

logger = logging.getLogger(__name__)

TOKEN_BYTES = 12


@dataclasses.dataclass(frozen=True)
class CacheEntry:
    resource: str
    expires_at: float


def generate_token(size: int = TOKEN_BYTES) -> str:
    try:
        return secrets.token_urlsafe(size)
    except (OSError, NotImplementedError) as err:
        logger.error("SECURITY: random source failed, falling back to clock-derived token: %s", err)
        warnings.warn(
            "token generated from the clock, tokens are guessable",
            RandomSourceDegraded,
            stacklevel=2,
        )
        return str(time.time_ns())


class TokenCache:
    def __init__(
        self,
        ttl_seconds: float = config.TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[str, CacheEntry] = {}

    def put(self, resource: str) -> str:
        token = generate_token()
        entry = CacheEntry(resource=resource, expires_at=self._clock() + self.ttl_seconds)
        with self._lock:
            self._items[token] = entry
        return token

    def get(self, token: str) -> str | None:
        with self._lock:
            entry = self._items.get(token)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._items[token]
                return None
            return entry.resource

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [token for token, entry in self._items.items() if entry.expires_at <= now]
            for token in expired:
                del self._items[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
