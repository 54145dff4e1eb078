"""TTL cache behaviour."""
import time

from bankfeed.core.cache import TtlCache, accounts_key, transactions_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_entry_expires_after_its_ttl():
    cache = TtlCache()
    cache.set("accounts:bank", ["acc-1"], ttl=0.1)
    assert cache.get("accounts:bank") == ("acc-1",)

    time.sleep(0.15)

    assert cache.get("accounts:bank") is None


def test_each_entry_keeps_its_own_ttl():
    clock = FakeClock()
    cache = TtlCache(timer=clock)
    cache.set("bal:bank:acc-1", 1, ttl=300)
    cache.set("accounts:bank", 2, ttl=3600)

    clock.now += 301

    assert cache.get("bal:bank:acc-1") is None
    assert cache.get("accounts:bank") == 2
    assert len(cache) == 1


def test_reading_one_key_leaves_other_expired_entries_alone(monkeypatch):
    clock = FakeClock()
    cache = TtlCache(timer=clock)
    cache.set("bal:bank:acc-1", 1, ttl=60)
    cache.set("bal:bank:acc-2", 2, ttl=60)
    sweeps = []
    monkeypatch.setattr(cache._data, "expire", lambda *args: sweeps.append(args))

    clock.now += 61

    assert cache.get("bal:bank:acc-1") is None
    assert sweeps == []


def test_stored_lists_cannot_be_mutated_through_the_cache():
    cache = TtlCache()
    original = ["a", "b"]
    cache.set("k", original, ttl=60)
    original.append("c")
    assert cache.get("k") == ("a", "b")


def test_clear_drops_everything():
    cache = TtlCache()
    cache.set("k", 1, ttl=60)
    cache.clear()
    assert "k" not in cache
    assert cache.get("k") is None


def test_keys_are_scoped_by_connection_and_window():
    assert accounts_key("plaid-main") != accounts_key("plaid-other")
    assert transactions_key("c", "a", "2024-01-01", "2024-01-31") != transactions_key(
        "c", "a", "2024-01-01", "2024-02-29"
    )
