"""
核心功能模块
"""
from .config import Config, load_config, parse_config
from .errors import AlertAzDoError, AuthError, ConfigError, NotifyError, RemoteCallError, RenderError
from .logging_config import setup_logging, get_logger
from .models import (
    Alert,
    Alerts,
    AlertStatus,
    AutoResolve,
    Data,
    KV,
    PatchOp,
    PatchOperation,
    ReceiverConfig,
    WorkItem,
)

__all__ = [
    "Config",
    "load_config",
    "parse_config",
    "AlertAzDoError",
    "AuthError",
    "ConfigError",
    "NotifyError",
    "RemoteCallError",
    "RenderError",
    "setup_logging",
    "get_logger",
    "Alert",
    "Alerts",
    "AlertStatus",
    "AutoResolve",
    "Data",
    "KV",
    "PatchOp",
    "PatchOperation",
    "ReceiverConfig",
    "WorkItem",
]
