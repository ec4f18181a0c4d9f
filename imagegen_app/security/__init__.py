"""
安全工具
"""
