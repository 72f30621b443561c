"""
三级缓存分层架构
  L1 – LocalCache   : 进程内内存缓存
  L2 – SharedCache  : 共享缓存（MongoDB / Redis），服务端时间戳判定新鲜度
  L3 – fetch()      : 调用方提供的外部 API 获取函数
  TieredCache       : get_or_fetch 编排，支持 stale-while-revalidate
"""
