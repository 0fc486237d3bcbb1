"""Upstream credential pool with round-robin rotation and quarantine."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .exceptions import NoCredentialAvailable

logger = logging.getLogger("vertigo-proxy")


def mask_credential(token: str) -> str:
    """Return a loggable form of a credential."""
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"


@dataclass
class CredentialStatus:
    """Health record for one configured credential."""

    token: str
    quarantined_until: Optional[float] = None

    def is_available(self, now: float) -> bool:
        return self.quarantined_until is None or now >= self.quarantined_until


class CredentialPool:
    """Rotates across upstream credentials, skipping quarantined ones.

    The rotation cursor and the quarantine map are guarded by a single lock.
    Both ``acquire`` and ``quarantine`` hold it only for their O(n) scan, so
    the pool is safe to share between concurrently running requests.

    Args:
        tokens: Credentials in their fixed rotation order. Duplicates are
            collapsed, keeping the first occurrence.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        tokens: Iterable[str],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._statuses: list[CredentialStatus] = []
        self._index: dict[str, CredentialStatus] = {}
        for token in tokens:
            if not token or token in self._index:
                continue
            status = CredentialStatus(token=token)
            self._statuses.append(status)
            self._index[token] = status
        if not self._statuses:
            raise ValueError("CredentialPool requires at least one credential")
        self._cursor = 0
        self._clock = clock
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._statuses)

    def acquire(self) -> str:
        """Return the next usable credential in rotation order.

        Raises:
            NoCredentialAvailable: Every credential is quarantined.
        """
        with self._lock:
            now = self._clock()
            size = len(self._statuses)
            for offset in range(size):
                position = (self._cursor + offset) % size
                status = self._statuses[position]
                if status.is_available(now):
                    status.quarantined_until = None
                    self._cursor = (position + 1) % size
                    return status.token
        logger.warning("All %d upstream credentials are quarantined", size)
        raise NoCredentialAvailable()

    def quarantine(self, token: str, duration: float) -> None:
        """Exclude a credential from selection for ``duration`` seconds.

        Re-quarantining only ever extends the current expiry.
        """
        with self._lock:
            status = self._index.get(token)
            if status is None:
                logger.warning(
                    "Ignoring quarantine for unknown credential %s",
                    mask_credential(token),
                )
                return
            until = self._clock() + max(0.0, float(duration))
            if status.quarantined_until is None or until > status.quarantined_until:
                status.quarantined_until = until
        logger.warning(
            "Quarantined credential %s for %.0fs", mask_credential(token), duration
        )

    def available_count(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for status in self._statuses if status.is_available(now))

    def snapshot(self) -> list[dict[str, object]]:
        """Masked view of the pool for diagnostics."""
        with self._lock:
            now = self._clock()
            return [
                {
                    "credential": mask_credential(status.token),
                    "available": status.is_available(now),
                    "quarantined_for": (
                        max(0.0, status.quarantined_until - now)
                        if status.quarantined_until is not None
                        else 0.0
                    ),
                }
                for status in self._statuses
            ]
