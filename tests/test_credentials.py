"""Tests for the credential cache used by provider clients."""

from game_articles.credentials import CredentialCache


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_value_is_cached_until_expiry():
    clock = Clock()
    keys = iter(["key-1", "key-2"])
    cache = CredentialCache(lambda: next(keys), ttl_s=60, clock=clock)

    assert cache.get() == "key-1"
    clock.now = 59
    assert cache.get() == "key-1"
    clock.now = 60
    assert cache.get() == "key-2"


def test_empty_value_is_not_cached():
    calls = []

    def loader():
        calls.append(1)
        return "" if len(calls) == 1 else "key"

    cache = CredentialCache(loader)
    assert cache.get() is None
    assert cache.is_expired
    assert cache.get() == "key"
    assert len(calls) == 2


def test_invalidate_forces_reload():
    calls = []

    def loader():
        calls.append(1)
        return f"key-{len(calls)}"

    cache = CredentialCache(loader)
    assert cache.get() == "key-1"
    cache.invalidate()
    assert cache.get() == "key-2"
