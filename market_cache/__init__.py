"""
market_cache 行情数据缓存库
聚合第三方行情 API（价格、情绪指数、经济日历）的共享缓存层，
不包含进程入口，由应用代码直接引用

架构分层：
  缓存层     (Layers)    → 本地内存（L1） / 共享存储（L2） / 外部 API（L3）
  分析层     (Analysis)  → 复合情绪评分、情绪象限、渐进窗口指数
  服务层     (Services)  → 情绪数据服务、用户行为分析缓冲
"""

__version__ = "1.0.0"
