"""
缓存库异常定义
只有 FetchFailure 会传播到 get_or_fetch 的调用方，其余异常在发生处记录日志并吸收
"""

from typing import Optional


class CacheError(Exception):
    """缓存库异常基类"""


class FetchFailure(CacheError):
    """L3 数据获取失败（外部 API 不可达或解码失败）"""

    def __init__(self, key: str, cause: Optional[BaseException] = None):
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"数据获取失败 [{key}]{detail}")


class SharedCacheUnavailable(CacheError):
    """共享缓存（L2）未配置或不可达"""


class SharedCacheCorrupt(CacheError):
    """共享缓存（L2）中的数据无法解码"""


class SnapshotPersistenceFailure(CacheError):
    """快照文件读写失败"""
