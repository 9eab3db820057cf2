import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class CachedCredential:
    token: str
    expires_at: float


class CredentialCache:
    """
    Holds the provider access token and when it stops being valid.

    Injected into PrintProviderClient so tests can reset or pre-seed it.
    A token is treated as expired `leeway_seconds` before its real expiry.
    """

    def __init__(self, leeway_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self._leeway = leeway_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._credential: Optional[CachedCredential] = None

    def get(self) -> Optional[str]:
        with self._lock:
            if self._credential is None:
                return None
            if self._clock() >= self._credential.expires_at - self._leeway:
                self._credential = None
                return None
            return self._credential.token

    def store(self, token: str, expires_in: float) -> None:
        with self._lock:
            self._credential = CachedCredential(token=token, expires_at=self._clock() + expires_in)

    def invalidate(self) -> None:
        with self._lock:
            self._credential = None

    @property
    def has_credential(self) -> bool:
        return self.get() is not None
