"""
请求依赖
"""
