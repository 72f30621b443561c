"""
分析层
  composite     : 复合评分（加权平均 + sigmoid 归一化）
  regime        : 情绪象限轨迹
  window_index  : 渐进窗口指数（篮子 vs 参考资产）
"""
