"""
L1 – 进程内内存缓存
按键存储任意类型的值，每个条目带独立 TTL；过期条目在读取时惰性淘汰，
超出容量时先清理过期条目，再按插入顺序淘汰最旧条目
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class LocalCache:
    """线程安全的本地 TTL 缓存"""

    def __init__(
        self,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def lookup(self, key: str, expected_type: Optional[Type] = None) -> Tuple[bool, Any]:
        """
        读取未过期的缓存值，返回 (是否命中, 值)；值本身可以是 None

        Args:
            key: 缓存键
            expected_type: 期望的值类型，类型不符时视为未命中
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False, None
        if expected_type is not None and not isinstance(entry.value, expected_type):
            logger.debug(f"L1 类型不匹配: {key} ({type(entry.value).__name__})")
            return False, None
        return True, entry.value

    def get(self, key: str, expected_type: Optional[Type] = None) -> Optional[Any]:
        """读取未过期的缓存值，未命中时返回 None"""
        return self.lookup(key, expected_type)[1]

    def set(self, key: str, value: Any, ttl: float) -> None:
        """写入缓存（无条件覆盖）；容量为 0 时不缓存"""
        with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            if self._max_entries <= 0:
                return
            if len(self._entries) >= self._max_entries:
                self._evict(now)
            self._entries[key] = CacheEntry(value=value, stored_at=now, ttl=ttl)

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_expired(self) -> int:
        """清理所有过期条目，返回清理数量"""
        with self._lock:
            return self._purge_expired(self._clock())

    def stats(self) -> Dict[str, int]:
        with self._lock:
            now = self._clock()
            expired = sum(1 for e in self._entries.values() if e.is_expired(now))
            return {
                "entries": len(self._entries),
                "expired": expired,
                "max_entries": self._max_entries,
            }

    def __len__(self) -> int:
        return len(self._entries)

    # 以下方法需在持锁状态下调用

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def _evict(self, now: float) -> None:
        self._purge_expired(now)
        while self._entries and len(self._entries) >= self._max_entries:
            oldest, _ = self._entries.popitem(last=False)
            logger.debug(f"L1 容量已满，淘汰最旧条目: {oldest}")
