"""
告警适配器
"""
from .alertmanager_adapter import parse, parse_alert

__all__ = ["parse", "parse_alert"]
