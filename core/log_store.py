import dataclasses
from collections import deque
from typing import Deque, List

from PySide6.QtCore import QMutex

from utils.constants import Constants
from utils.data_models import LogEntry


class LogStore:
    """线程安全的有界日志存储，超出容量时按先进先出淘汰最旧的条目"""

    def __init__(self, capacity: int = Constants.DEFAULT_LOG_LIMIT):
        if capacity < 1:
            raise ValueError("Log capacity must be positive")

        self._entries: Deque[LogEntry] = deque()
        self._capacity = capacity
        self._next_id = 1
        self._evicted_count = 0
        self._mutex = QMutex()

    def append(self, entry: LogEntry) -> LogEntry:
        """分配序号后存入，返回实际存储的条目"""
        self._mutex.lock()
        try:
            stored = dataclasses.replace(entry, id=self._next_id)
            self._next_id += 1
            self._entries.append(stored)
            self._evict_locked()
            return stored
        finally:
            self._mutex.unlock()

    def clear(self) -> None:
        # 序号不回退，清空后新条目的 id 仍然递增
        self._mutex.lock()
        try:
            self._entries.clear()
            self._evicted_count = 0
        finally:
            self._mutex.unlock()

    def resize(self, capacity: int) -> int:
        """修改容量，缩小时立即淘汰多余条目，返回淘汰数量"""
        if capacity < 1:
            raise ValueError("Log capacity must be positive")
        self._mutex.lock()
        try:
            self._capacity = capacity
            return self._evict_locked()
        finally:
            self._mutex.unlock()

    def get_entries(self) -> List[LogEntry]:
        self._mutex.lock()
        try:
            return list(self._entries)
        finally:
            self._mutex.unlock()

    def get_entries_since(self, last_id: int) -> List[LogEntry]:
        """返回 id 大于 last_id 的条目，供界面增量拉取"""
        self._mutex.lock()
        try:
            return [entry for entry in self._entries if entry.id > last_id]
        finally:
            self._mutex.unlock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted_count(self) -> int:
        self._mutex.lock()
        try:
            return self._evicted_count
        finally:
            self._mutex.unlock()

    def __len__(self) -> int:
        self._mutex.lock()
        try:
            return len(self._entries)
        finally:
            self._mutex.unlock()

    def _evict_locked(self) -> int:
        evicted = 0
        while len(self._entries) > self._capacity:
            self._entries.popleft()
            evicted += 1
        self._evicted_count += evicted
        return evicted
