"""
缓存键生成
同一逻辑请求必须生成相同的键；代码列表等顺序敏感参数在拼接前先规范化
"""

import hashlib
from typing import Iterable, List

_MAX_KEY_LENGTH = 200


def make_key(namespace: str, *parts) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + [str(p) for p in parts])
    if len(raw) > _MAX_KEY_LENGTH:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    """代码列表去重、大写并排序，避免顺序不同导致缓存碎片"""
    return sorted({s.strip().upper() for s in symbols if s and s.strip()})


class TTL:
    """默认 TTL 预设（秒）"""
    SHORT = 30
    MEDIUM = 300
    LONG = 300
    VERY_LONG = 900


class CacheKeys:
    """集中定义的缓存键"""

    GLOBAL_MARKET_DATA = "global_market_data"
    TRENDING_COINS = "trending_coins"
    FEAR_GREED_INDEX = "fear_greed_index"
    BTC_DOMINANCE = "btc_dominance"
    ALTCOIN_SEASON = "altcoin_season"
    VIX_DATA = "vix_data"
    DXY_DATA = "dxy_data"
    FED_WATCH_MEETINGS = "fed_watch_meetings"
    BTC_VOLUME_HISTORY = "btc_volume_history"

    @staticmethod
    def crypto_assets(page: int, per_page: int) -> str:
        return make_key("crypto_assets", page, per_page)

    @staticmethod
    def crypto_asset(asset_id: str) -> str:
        return make_key("crypto_asset", asset_id)

    @staticmethod
    def stock_assets(symbols: Iterable[str]) -> str:
        return make_key("stock_assets", ",".join(normalize_symbols(symbols)))

    @staticmethod
    def metal_assets(symbols: Iterable[str]) -> str:
        return make_key("metal_assets", ",".join(normalize_symbols(symbols)))

    @staticmethod
    def fear_greed_history(days: int) -> str:
        return make_key(CacheKeys.FEAR_GREED_INDEX, "history", days)
