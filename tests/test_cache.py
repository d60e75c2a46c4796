from unittest import mock

from cache import PRODUCT_LIST, PRODUCTS, QueryCache, product_detail


def test_get_set():
    cache = QueryCache()
    assert cache.get(PRODUCT_LIST) is None
    cache.set(PRODUCT_LIST, [1, 2])
    assert cache.get(PRODUCT_LIST) == [1, 2]


def test_mark_stale_by_prefix():
    cache = QueryCache()
    cache.set(PRODUCT_LIST, ["list"])
    cache.set(product_detail("a"), "a")
    cache.set(("orders", "list"), ["order"])

    assert cache.mark_stale(PRODUCTS) == 2
    assert cache.get(PRODUCT_LIST) is None
    assert cache.get(product_detail("a")) is None
    assert cache.get(("orders", "list")) == ["order"]


def test_set_after_stale_is_fresh():
    cache = QueryCache()
    cache.set(PRODUCT_LIST, "old")
    cache.mark_stale(PRODUCTS)
    cache.set(PRODUCT_LIST, "new")
    assert cache.get(PRODUCT_LIST) == "new"


def test_ttl_expiry():
    cache = QueryCache(ttl=10)
    with mock.patch("cache.time.monotonic", return_value=100.0):
        cache.set(PRODUCT_LIST, "value")
    with mock.patch("cache.time.monotonic", return_value=105.0):
        assert cache.get(PRODUCT_LIST) == "value"
    with mock.patch("cache.time.monotonic", return_value=111.0):
        assert cache.get(PRODUCT_LIST) is None
    assert len(cache) == 0


def test_stale_entries_are_evicted():
    cache = QueryCache()
    for product_id in ("a", "b", "c"):
        cache.set(product_detail(product_id), product_id)
    cache.set(("orders", "list"), ["order"])

    cache.mark_stale(PRODUCTS)
    assert len(cache) == 1
    assert cache.mark_stale(PRODUCTS) == 0
