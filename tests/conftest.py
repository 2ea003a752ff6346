import os
import queue
import sys
import time

import pytest
from PySide6.QtCore import QCoreApplication

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.errors import SerialErrorType, TransportError


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    yield app


class FakeTransport:
    """按脚本返回数据的串口替身，供 SerialManager 测试使用"""

    def __init__(self):
        self.chunks: "queue.Queue[object]" = queue.Queue()
        self.written = []
        self.opened_with = None
        self.is_open = False
        self.open_error = None
        self.write_error = None
        self.close_count = 0
        self.before_write = None

    def open(self, port_name, config):
        if self.open_error:
            raise self.open_error
        self.opened_with = (port_name, config)
        self.is_open = True

    def read(self, timeout_s):
        try:
            item = self.chunks.get(timeout=timeout_s)
        except queue.Empty:
            return b""
        if isinstance(item, Exception):
            raise item
        return item

    def write(self, data):
        if self.before_write:
            self.before_write()
        if not self.is_open:
            raise TransportError("串口未打开", SerialErrorType.NOT_CONNECTED)
        if self.write_error:
            raise self.write_error
        self.written.append(bytes(data))
        return len(data)

    def close(self):
        self.close_count += 1
        self.is_open = False

    def push(self, data):
        self.chunks.put(data)

    def fail_read(self, message="device unplugged"):
        self.chunks.put(TransportError(message, SerialErrorType.READ_FAILED))


@pytest.fixture
def fake_transport():
    return FakeTransport()


def wait_until(predicate, timeout=2.0, interval=0.01):
    """轮询等待读线程产生结果"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
