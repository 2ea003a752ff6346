import pytest
import sys
import os
import threading
from datetime import datetime, timezone

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.log_store import LogStore
from utils.data_models import Direction, LogEntry


def make_entry(data=b"x", direction=Direction.RECEIVED):
    return LogEntry(
        id=None,
        timestamp=datetime.now(timezone.utc),
        direction=direction,
        data=data,
        display_text=data.decode("latin-1"),
        timestamp_text=None,
        port_name="COM1",
    )


class TestLogStore:
    def test_append_assigns_increasing_ids(self):
        store = LogStore(10)
        first = store.append(make_entry())
        second = store.append(make_entry())
        assert first.id == 1
        assert second.id == 2
        assert len(store) == 2

    def test_fifo_eviction(self):
        store = LogStore(3)
        for i in range(5):
            store.append(make_entry(bytes([i])))
        entries = store.get_entries()
        assert [e.id for e in entries] == [3, 4, 5]
        assert [e.data for e in entries] == [b"\x02", b"\x03", b"\x04"]
        assert store.evicted_count == 2

    def test_clear_keeps_ids_monotonic(self):
        store = LogStore(3)
        for _ in range(5):
            store.append(make_entry())
        store.clear()
        assert len(store) == 0
        assert store.evicted_count == 0
        assert store.append(make_entry()).id == 6

    def test_resize_evicts_immediately(self):
        store = LogStore(10)
        for _ in range(8):
            store.append(make_entry())
        assert store.resize(5) == 3
        assert [e.id for e in store.get_entries()] == [4, 5, 6, 7, 8]
        assert store.capacity == 5

    def test_resize_grow_keeps_entries(self):
        store = LogStore(2)
        store.append(make_entry())
        store.append(make_entry())
        assert store.resize(10) == 0
        assert len(store) == 2

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            LogStore(0)
        with pytest.raises(ValueError):
            LogStore(5).resize(0)

    def test_snapshot_is_a_copy(self):
        store = LogStore(5)
        store.append(make_entry())
        snapshot = store.get_entries()
        store.append(make_entry())
        assert len(snapshot) == 1

    def test_get_entries_since(self):
        store = LogStore(5)
        for _ in range(4):
            store.append(make_entry())
        assert [e.id for e in store.get_entries_since(2)] == [3, 4]
        assert store.get_entries_since(4) == []

    def test_concurrent_appends(self):
        store = LogStore(100000)

        def worker():
            for _ in range(500):
                store.append(make_entry())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ids = [e.id for e in store.get_entries()]
        assert len(ids) == 2000
        assert ids == sorted(ids)
        assert len(set(ids)) == 2000
