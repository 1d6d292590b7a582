import time
from typing import Callable, Optional


class CredentialCache:
    """
    Short-lived credential holder owned by one provider client.

    The loader is called on first use and again whenever the cached value has
    expired, so rotated keys are picked up without restarting the process.
    An empty result is never cached.
    """

    def __init__(
        self,
        loader: Callable[[], Optional[str]],
        ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl_s = ttl_s
        self._clock = clock
        self._value: Optional[str] = None
        self._expires_at = 0.0

    @property
    def is_expired(self) -> bool:
        return self._value is None or self._clock() >= self._expires_at

    def get(self) -> Optional[str]:
        if self.is_expired:
            value = self._loader()
            if value:
                self._value = value
                self._expires_at = self._clock() + self._ttl_s
            else:
                self.invalidate()
        return self._value

    def invalidate(self) -> None:
        self._value = None
        self._expires_at = 0.0
