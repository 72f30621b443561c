"""
测试公共设施：可控时钟与内存版 L2 后端
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

# 确保项目根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from market_cache.errors import SharedCacheUnavailable  # noqa: E402
from market_cache.layers.shared import SharedCacheBackend, SharedCacheRow  # noqa: E402


class FakeClock:
    """单调时钟（秒），供 LocalCache 使用"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeServerClock:
    """UTC 时钟，模拟服务端时间"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryBackend(SharedCacheBackend):
    """内存版 L2 后端，updated_at 取自模拟的服务端时钟"""

    name = "memory"

    def __init__(self, server_clock: FakeServerClock):
        self.server_clock = server_clock
        self.rows: Dict[str, SharedCacheRow] = {}
        self.reads = 0
        self.writes = 0
        self.fail_reads = False
        self.fail_writes = False

    async def fetch_row(self, key):
        self.reads += 1
        if self.fail_reads:
            raise SharedCacheUnavailable("backend down")
        return self.rows.get(key)

    async def upsert_row(self, key, data, ttl_seconds):
        self.writes += 1
        if self.fail_writes:
            raise SharedCacheUnavailable("backend down")
        self.rows[key] = SharedCacheRow(
            key=key, data=data, updated_at=self.server_clock(), ttl_seconds=ttl_seconds
        )

    async def count_rows(self):
        return len(self.rows)

    def seed(self, key: str, data: str, age: float, ttl_seconds: int) -> None:
        """写入一行年龄为 age 秒的数据"""
        self.rows[key] = SharedCacheRow(
            key=key,
            data=data,
            updated_at=self.server_clock() - timedelta(seconds=age),
            ttl_seconds=ttl_seconds,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def server_clock():
    return FakeServerClock()


@pytest.fixture
def backend(server_clock):
    return InMemoryBackend(server_clock)
