"""数据模型（pydantic）"""
