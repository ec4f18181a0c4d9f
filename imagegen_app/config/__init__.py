"""
应用配置模块
"""

from .settings import settings, validate_config

__all__ = ['settings', 'validate_config']
