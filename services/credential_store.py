"""Process-wide holder for the upstream session credential."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

__all__ = ["Credential", "CredentialStore", "get_store", "reset_store"]


@dataclass(frozen=True)
class Credential:
    token: str
    acquired_at: float = field(default_factory=time.monotonic)

    def age(self, now: Optional[float] = None) -> float:
        current = time.monotonic() if now is None else now
        return current - self.acquired_at


class CredentialStore:
    """Lock guarded cell holding at most one :class:`Credential`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None

    def get(self) -> Optional[Credential]:
        with self._lock:
            return self._credential

    def set(self, credential: Credential) -> None:
        with self._lock:
            self._credential = credential

    def clear(self) -> None:
        with self._lock:
            self._credential = None


_store = CredentialStore()


def get_store() -> CredentialStore:
    return _store


def reset_store() -> None:
    """Drop the shared credential.  Mainly used in tests."""
    _store.clear()
