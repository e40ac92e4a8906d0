import pytest

from src.adapters.lookup_cache import LookupCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache: LookupCache[str] = LookupCache(
        name="users", ttl_seconds=10, max_entries=5, clock=clock
    )
    cache.put("u1", "Ada")

    clock.now = 9.9
    assert cache.get("u1") == "Ada"
    clock.now = 10.0
    assert cache.get("u1") is None
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted() -> None:
    cache: LookupCache[str] = LookupCache(name="users", ttl_seconds=60, max_entries=2)
    cache.put("a", "A")
    cache.put("b", "B")
    cache.get("a")
    cache.put("c", "C")

    assert cache.get("b") is None
    assert cache.get("a") == "A"
    assert cache.get("c") == "C"


def test_invalidate_one_or_all() -> None:
    cache: LookupCache[int] = LookupCache(name="tasks", ttl_seconds=60, max_entries=3)
    cache.put("a", 1)
    cache.put("b", 2)

    cache.invalidate("a")
    assert cache.get("a") is None
    cache.invalidate()
    assert len(cache) == 0


@pytest.mark.parametrize(("ttl", "size"), [(0, 1), (1, 0)])
def test_invalid_bounds_are_rejected(ttl: float, size: int) -> None:
    with pytest.raises(ValueError):
        LookupCache(name="bad", ttl_seconds=ttl, max_entries=size)
