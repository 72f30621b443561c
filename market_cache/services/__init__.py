"""服务层：组合缓存层与分析层，供应用代码直接调用"""
