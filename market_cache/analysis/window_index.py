"""
渐进窗口指数

按 UTC 日期累积每日快照（篮子价格 + 参考资产价格），持久化到缓存目录。
本地历史跨度超过外部接口默认窗口（30 天）后，使用尽可能长的窗口（最多 90 天）
计算篮子中跑赢参考资产的成员比例，窗口随历史增长而扩大
"""

import contextlib
import logging
import os
import tempfile
import threading
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from market_cache.errors import SnapshotPersistenceFailure
from market_cache.models.snapshot import IndicatorSnapshot, SnapshotFile, WindowIndex

logger = logging.getLogger(__name__)

SNAPSHOT_SUBDIR = "altcoin_season"
SNAPSHOT_FILENAME = "daily_snapshots.json"


def default_snapshot_path(snapshot_dir: Union[str, Path]) -> Path:
    return Path(snapshot_dir) / SNAPSHOT_SUBDIR / SNAPSHOT_FILENAME


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class ProgressiveWindowIndex:
    """按日去重、有上限、落盘的快照序列及其窗口指数计算"""

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        max_snapshots: int = 120,
        minimum_local_days: int = 31,
        target_window: int = 90,
        reference_asset_id: str = "bitcoin",
        season_threshold: int = 50,
        load_from_disk: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._path = Path(path) if path is not None else None
        self._max_snapshots = max_snapshots
        self._minimum_local_days = minimum_local_days
        self._target_window = target_window
        self._reference_asset_id = reference_asset_id
        self._season_threshold = season_threshold
        self._clock = clock
        self._lock = threading.Lock()
        self._file = SnapshotFile()
        if load_from_disk and self._path is not None:
            self._file = self._load()

    # ── 记录快照 ──────────────────────────────────────────

    def record_snapshot(self, snapshot: IndicatorSnapshot) -> bool:
        """记录每日快照；同一日期已存在或会被容量上限立即淘汰时不做修改并返回 False"""
        with self._lock:
            snapshots = self._file.snapshots
            if any(s.date == snapshot.date for s in snapshots):
                return False
            if len(snapshots) >= self._max_snapshots and (
                not snapshots or snapshot.date < snapshots[0].date
            ):
                # 早于已保留的全部快照，写入后会被立即淘汰
                return False
            snapshots.append(snapshot)
            snapshots.sort(key=lambda s: s.date)
            if len(snapshots) > self._max_snapshots:
                del snapshots[: len(snapshots) - self._max_snapshots]
            self._file.last_updated = self._clock()
            self._save()
        return True

    # ── 渐进计算 ──────────────────────────────────────────

    @property
    def available_window_days(self) -> Optional[int]:
        """快照覆盖的天数，少于 2 条时为 None"""
        snapshots = self._file.snapshots
        if len(snapshots) < 2:
            return None
        return (snapshots[-1].date - snapshots[0].date).days

    def compute_best_index(self) -> Optional[WindowIndex]:
        """
        使用可用的最长窗口计算指数

        本地跨度不足 minimum_local_days 时返回 None（外部默认窗口已覆盖同一区间）
        """
        with self._lock:
            day_span = self.available_window_days
            if day_span is None or day_span < self._minimum_local_days:
                return None

            today = self._file.snapshots[-1]
            window_days = min(day_span, self._target_window)
            base = self._find_closest(today.date - timedelta(days=window_days))
            if base is None or base.reference_price <= 0:
                return None

        base_prices: Dict[str, float] = {}
        for item in base.basket:
            base_prices.setdefault(item.asset_id, item.price)

        reference_change = (today.reference_price - base.reference_price) / base.reference_price

        outperformers = 0
        total = 0
        for item in today.basket:
            if item.asset_id == self._reference_asset_id:
                continue
            base_price = base_prices.get(item.asset_id)
            if base_price is None or base_price <= 0:
                continue
            total += 1
            if (item.price - base_price) / base_price > reference_change:
                outperformers += 1

        if total == 0:
            return None

        value = int(outperformers / total * 100)
        return WindowIndex(
            value=value,
            is_reference_season=value < self._season_threshold,
            timestamp=self._clock(),
            calculation_window=window_days,
        )

    # ── 访问器 ────────────────────────────────────────────

    @property
    def snapshot_count(self) -> int:
        return len(self._file.snapshots)

    @property
    def snapshots(self) -> List[IndicatorSnapshot]:
        return list(self._file.snapshots)

    @property
    def date_range(self) -> Optional[Tuple[date, date]]:
        snapshots = self._file.snapshots
        if not snapshots:
            return None
        return snapshots[0].date, snapshots[-1].date

    @property
    def last_updated(self) -> datetime:
        return self._file.last_updated

    def _find_closest(self, target: date) -> Optional[IndicatorSnapshot]:
        """精确匹配优先，否则取目标日期之前最近的一条"""
        earlier = None
        for s in self._file.snapshots:
            if s.date == target:
                return s
            if s.date < target:
                earlier = s
        return earlier

    # ── 磁盘持久化 ────────────────────────────────────────

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            self._write_file()
        except SnapshotPersistenceFailure as exc:
            logger.warning(f"快照保存失败，本次运行仅保留内存数据: {exc}")

    def _write_file(self) -> None:
        tmp_path = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._path.parent, prefix=".snapshots-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(self._file.model_dump_json())
            os.replace(tmp_path, self._path)
        except OSError as exc:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            raise SnapshotPersistenceFailure(f"写入 {self._path} 失败: {exc}") from exc

    def _load(self) -> SnapshotFile:
        try:
            return self._read_file()
        except SnapshotPersistenceFailure as exc:
            logger.warning(f"快照文件损坏，已丢弃: {exc}")
            with contextlib.suppress(OSError):
                self._path.unlink()
            return SnapshotFile()

    def _read_file(self) -> SnapshotFile:
        if not self._path.exists():
            return SnapshotFile()
        try:
            loaded = SnapshotFile.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SnapshotPersistenceFailure(f"读取 {self._path} 失败: {exc}") from exc
        loaded.snapshots.sort(key=lambda s: s.date)
        logger.debug(f"已加载 {len(loaded.snapshots)} 条快照: {self._path}")
        return loaded
