"""
Short-lived replay guard for payment authorizations.

Entries are keyed by (payer, nonce) and live until the authorization's
validBefore; after that the time window alone rejects the payload.
Callers pass the ledger time the payload was verified against so that
expiry follows the same clock as the window check.
"""

import time
from typing import Callable, Dict, Optional, Tuple


class NonceCache:
    """In-memory (payer, nonce) registry. Per process, not shared."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[Tuple[str, str], int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _purge(self, now: float) -> None:
        expired = [key for key, expires_at in self._entries.items() if expires_at < now]
        for key in expired:
            del self._entries[key]

    def seen(self, payer: str, nonce: str, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        expires_at = self._entries.get((payer, nonce))
        return expires_at is not None and expires_at >= now

    def claim(self, payer: str, nonce: str, expires_at: int, now: Optional[float] = None) -> bool:
        """Record the nonce. Returns False if it is already live."""
        now = self._clock() if now is None else now
        self._purge(now)
        key = (payer, nonce)
        if key in self._entries:
            return False
        self._entries[key] = expires_at
        return True
