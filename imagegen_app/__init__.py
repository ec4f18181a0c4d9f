"""
ImageGen 订阅计量与计费对账服务
"""
