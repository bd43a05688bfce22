import json

import pytest

from tiny_resilience.domain.entries import CacheEntry, CacheIndex


@pytest.mark.unit
class TestCacheIndex:
    """Test cases for the CacheIndex class."""

    def test_empty_index(self):
        index = CacheIndex()
        assert len(index) == 0
        assert index.current_size == 0
        assert index.oldest_first() == []
        assert index.newest_timestamp() == 0.0

    def test_put_tracks_size(self):
        index = CacheIndex()
        index.put(CacheEntry("a", 10, 1.0))
        index.put(CacheEntry("b", 5, 2.0))

        assert len(index) == 2
        assert index.current_size == 15
        assert "a" in index

    def test_put_replaces_existing_entry_size(self):
        index = CacheIndex()
        index.put(CacheEntry("a", 10, 1.0))
        old = index.put(CacheEntry("a", 3, 2.0))

        assert old == CacheEntry("a", 10, 1.0)
        assert index.current_size == 3

    def test_pop(self):
        index = CacheIndex()
        index.put(CacheEntry("a", 10, 1.0))

        assert index.pop("a") == CacheEntry("a", 10, 1.0)
        assert index.pop("a") is None
        assert index.current_size == 0

    def test_oldest_first_orders_by_access_time_not_insertion(self):
        index = CacheIndex()
        index.put(CacheEntry("first", 1, 30.0))
        index.put(CacheEntry("second", 1, 10.0))
        index.put(CacheEntry("third", 1, 20.0))

        assert [e.key for e in index.oldest_first()] == ["second", "third", "first"]
        assert index.newest_timestamp() == 30.0

    def test_json_record_format(self):
        index = CacheIndex()
        index.put(CacheEntry("a", 10, 1.5))

        record = json.loads(index.to_json())
        assert record == {"currentSize": 10, "cacheItems": {"a": {"size": 10, "timestamp": 1.5}}}

    def test_from_json_restores_entries(self):
        index = CacheIndex()
        index.put(CacheEntry("a", 10, 1.5))
        index.put(CacheEntry("ключ", 7, 2.5))

        restored = CacheIndex.from_json(index.to_json().encode("utf-8"))
        assert restored.get("a") == CacheEntry("a", 10, 1.5)
        assert restored.get("ключ") == CacheEntry("ключ", 7, 2.5)
        assert restored.current_size == 17

    def test_from_json_recomputes_current_size(self):
        raw = json.dumps({"currentSize": 999, "cacheItems": {"a": {"size": 4, "timestamp": 1}}}).encode()
        assert CacheIndex.from_json(raw).current_size == 4

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            b"",
            b"not json",
            b"\xff\xfe",
            b"[]",
            b'{"currentSize": 1}',
            b'{"cacheItems": {"a": {"size": 1}}}',
            b'{"cacheItems": ["a"]}',
            b'{"cacheItems": {"a": {"size": -1, "timestamp": 1}}}',
            b'{"cacheItems": {"a": {"size": true, "timestamp": 1}}}',
            b'{"cacheItems": {"a": {"size": 1.5, "timestamp": 1}}}',
            b'{"cacheItems": {"a": {"size": 1, "timestamp": "now"}}}',
            b'{"cacheItems": {"a": {"size": 1, "timestamp": Infinity}}}',
            b'{"cacheItems": {"a": {"size": 1, "timestamp": NaN}}}',
            b'{"cacheItems": {"a": {"size": 1, "timestamp": 1}, "b": {"size": -5, "timestamp": 2}}}',
        ],
    )
    def test_from_json_falls_back_to_empty(self, raw):
        index = CacheIndex.from_json(raw)
        assert len(index) == 0
        assert index.current_size == 0
