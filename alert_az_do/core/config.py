"""
配置加载模块（只负责读配置与校验，不初始化日志；日志由 app 在启动时显式初始化）

配置结构：
    server:     监听地址
    logging:    日志配置
    template:   Jinja2 宏模板文件（相对路径以配置文件所在目录为基准）
    defaults:   接收器默认值
    receivers:  接收器列表（按 Alertmanager 的 receiver 名称匹配）
"""
import os
import re
from dataclasses import dataclass, field, fields as dataclass_fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml

from .errors import ConfigError
from .logging_config import get_logger
from .models import AutoResolve, ReceiverConfig

logger = get_logger()

# $(VAR) 形式的环境变量引用
_ENV_RE = re.compile(r"\$\(([a-zA-Z_0-9]+)\)")
# Go 风格时长：720h、1h30m、45s、500ms
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": "hours", "m": "minutes", "s": "seconds", "ms": "milliseconds"}

_SECRET_FIELDS = ("client_secret", "personal_access_token")
_RECEIVER_KEYS = {f.name for f in dataclass_fields(ReceiverConfig)}
_TOP_LEVEL_KEYS = {"server", "logging", "template", "defaults", "receivers"}
_LOGGING_FIELDS = ["log_dir", "log_file", "level", "max_bytes", "backup_count"]


@dataclass
class Config:
    """顶层配置"""
    receivers: List[ReceiverConfig]
    template: str
    defaults: ReceiverConfig = field(default_factory=ReceiverConfig)
    server: Dict[str, Any] = field(default_factory=dict)
    logging: Dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None

    def receiver_by_name(self, name: str) -> Optional[ReceiverConfig]:
        """按名称返回第一个匹配的接收器，不存在时返回 None"""
        for rc in self.receivers:
            if rc.name == name:
                return rc
        return None

    def redacted_yaml(self) -> str:
        """
        输出脱敏后的 YAML（密钥字段显示为 <secret>），供 /config 页面展示

        Returns:
            str: YAML 文本
        """
        doc = {
            "defaults": _receiver_to_dict(self.defaults, include_name=False),
            "receivers": [_receiver_to_dict(rc) for rc in self.receivers],
            "template": self.template,
        }
        return yaml.safe_dump(doc, allow_unicode=True, sort_keys=False)


def _config_path() -> Path:
    """解析 config.yaml 路径：优先环境变量 CONFIG_FILE，否则为项目根目录下的 config.yaml"""
    env_path = os.environ.get("CONFIG_FILE")
    if env_path and os.path.isfile(env_path):
        return Path(env_path)
    root = Path(__file__).resolve().parent.parent.parent
    return root / "config.yaml"


def substitute_env_vars(content: str) -> str:
    """
    将 $(VAR) 替换为环境变量值；变量不存在时记录告警并替换为空字符串
    """
    def _replace(m: re.Match) -> str:
        name = m.group(1)
        value = os.environ.get(name)
        if value is None:
            logger.warning(f"环境变量 {name} 不存在，使用空值")
            return ""
        return value

    return _ENV_RE.sub(_replace, content)


def parse_duration(value: Any) -> timedelta:
    """
    解析时长配置

    支持 Go 风格字符串（"720h"、"1h30m"、"45s"）以及整数秒。

    Raises:
        ConfigError: 无法解析
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    text = str(value).strip()
    if text.isdigit():
        return timedelta(seconds=int(text))
    parts = _DURATION_RE.findall(text)
    if not parts or "".join(num + unit for num, unit in parts) != text:
        raise ConfigError(f"invalid duration {value!r}")
    kwargs: Dict[str, float] = {}
    for num, unit in parts:
        key = _DURATION_UNITS[unit]
        kwargs[key] = kwargs.get(key, 0) + float(num)
    return timedelta(**kwargs)


def _check_overflow(raw: Dict[str, Any], allowed: set, ctx: str) -> None:
    unknown = [k for k in raw if k not in allowed]
    if unknown:
        raise ConfigError(f"unknown fields in {ctx}: {', '.join(unknown)}")


def _parse_receiver(raw: Any, ctx: str = "receiver") -> ReceiverConfig:
    """将单个接收器的 YAML 节点转换为 ReceiverConfig（不做继承）"""
    if raw is None:
        return ReceiverConfig()
    if not isinstance(raw, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    _check_overflow(raw, _RECEIVER_KEYS, ctx)

    rc = ReceiverConfig()
    for key, value in raw.items():
        if value is None:
            continue
        if key == "reopen_duration":
            rc.reopen_duration = parse_duration(value)
        elif key == "auto_resolve":
            if not isinstance(value, dict):
                raise ConfigError(f"bad config in {ctx}: auto_resolve must be a mapping")
            rc.auto_resolve = AutoResolve(state=str(value.get("state") or ""))
        elif key == "fields":
            if not isinstance(value, dict):
                raise ConfigError(f"bad config in {ctx}: fields must be a mapping")
            # 字段值统一按模板源码（字符串）保存
            rc.fields = {str(k): "" if v is None else str(v) for k, v in value.items()}
        elif key in ("other_projects", "components", "static_labels"):
            if not isinstance(value, list):
                raise ConfigError(f"bad config in {ctx}: {key} must be a list")
            setattr(rc, key, [str(v) for v in value])
        elif key in ("add_group_labels", "update_in_comment"):
            if not isinstance(value, bool):
                raise ConfigError(f"bad config in {ctx}: {key} must be a boolean")
            setattr(rc, key, value)
        else:
            setattr(rc, key, str(value))
    return rc


def _receiver_to_dict(rc: ReceiverConfig, include_name: bool = True) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in dataclass_fields(ReceiverConfig):
        if f.name == "name" and not include_name:
            continue
        value = getattr(rc, f.name)
        if value in (None, "", [], {}):
            continue
        if f.name in _SECRET_FIELDS:
            value = "<secret>"
        elif isinstance(value, timedelta):
            value = f"{int(value.total_seconds())}s"
        elif isinstance(value, AutoResolve):
            value = {"state": value.state}
        out[f.name] = value
    return out


def _has_service_principal(rc: ReceiverConfig) -> bool:
    return bool(rc.tenant_id and rc.client_id and rc.client_secret)


def _has_managed_identity(rc: ReceiverConfig) -> bool:
    return bool(rc.client_id and rc.subscription_id)


def _auth_method_count(rc: ReceiverConfig) -> int:
    sp = _has_service_principal(rc)
    # Managed Identity 仅在不是 Service Principal 时计数
    mi = _has_managed_identity(rc) and not sp
    return int(sp) + int(mi) + int(bool(rc.personal_access_token))


def _validate_logging_config(raw: Dict) -> None:
    """
    logging 节点存在时校验字段完整，不存在时由 app 使用默认值。
    """
    logging_cfg = raw.get("logging")
    if logging_cfg is None:
        return
    if not isinstance(logging_cfg, dict):
        raise ConfigError("logging must be a mapping")
    missing = [name for name in _LOGGING_FIELDS if name not in logging_cfg]
    if missing:
        raise ConfigError(f"logging is missing fields: {', '.join(missing)}")


def _resolve_receiver(rc: ReceiverConfig, defaults: ReceiverConfig) -> None:
    """校验单个接收器并从 defaults 继承缺失字段（原地修改）"""
    name = rc.name

    if not rc.organization:
        if not defaults.organization:
            raise ConfigError(f"missing organization in receiver {name!r}")
        rc.organization = defaults.organization
    try:
        urlparse(rc.organization)
    except ValueError as e:
        raise ConfigError(f"invalid organization {rc.organization!r} in receiver {name!r}: {e}") from e

    if _auth_method_count(rc) > 1:
        raise ConfigError(
            f"bad auth config in receiver {name!r}: Service Principal (tenant_id+client_id+client_secret), "
            "Managed Identity (client_id+subscription_id), and PAT authentication are mutually exclusive"
        )

    if not (rc.personal_access_token or _has_service_principal(rc) or _has_managed_identity(rc)):
        # 接收器本身没有完整认证方式时从 defaults 继承
        if defaults.personal_access_token:
            rc.personal_access_token = defaults.personal_access_token
        elif _has_service_principal(defaults):
            rc.tenant_id = rc.tenant_id or defaults.tenant_id
            rc.client_id = rc.client_id or defaults.client_id
            rc.client_secret = rc.client_secret or defaults.client_secret
        elif _has_managed_identity(defaults):
            rc.client_id = rc.client_id or defaults.client_id
            rc.subscription_id = rc.subscription_id or defaults.subscription_id
        else:
            raise ConfigError(f"missing authentication in receiver {name!r}")

    for required in ("project", "issue_type", "summary", "reopen_state"):
        if not getattr(rc, required):
            inherited = getattr(defaults, required)
            if not inherited:
                raise ConfigError(f"missing {required} in receiver {name!r}")
            setattr(rc, required, inherited)
    if rc.reopen_duration is None:
        if defaults.reopen_duration is None:
            raise ConfigError(f"missing reopen_duration in receiver {name!r}")
        rc.reopen_duration = defaults.reopen_duration

    for optional in ("priority", "description", "skip_reopen_state"):
        if not getattr(rc, optional) and getattr(defaults, optional):
            setattr(rc, optional, getattr(defaults, optional))

    if rc.auto_resolve is not None and not rc.auto_resolve.state:
        raise ConfigError(f"bad config in receiver {name!r}, 'auto_resolve' was defined with empty 'state' field")
    if rc.auto_resolve is None and defaults.auto_resolve is not None:
        rc.auto_resolve = AutoResolve(state=defaults.auto_resolve.state)

    for key, value in defaults.fields.items():
        rc.fields.setdefault(key, value)
    rc.static_labels = rc.static_labels + defaults.static_labels
    rc.other_projects = rc.other_projects + defaults.other_projects
    if rc.add_group_labels is None:
        rc.add_group_labels = defaults.add_group_labels
    if rc.update_in_comment is None:
        rc.update_in_comment = defaults.update_in_comment


def parse_config(raw: Any, base_dir: Optional[Path] = None) -> Config:
    """
    校验配置字典并完成 defaults 继承

    Args:
        raw: yaml.safe_load 的结果
        base_dir: 配置文件所在目录，用于解析 template 相对路径

    Returns:
        Config: 校验后的配置

    Raises:
        ConfigError: 配置不合法
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("config must be a mapping")
    _check_overflow(raw, _TOP_LEVEL_KEYS, "config")
    _validate_logging_config(raw)

    defaults = _parse_receiver(raw.get("defaults"), "defaults")
    if _auth_method_count(defaults) > 1:
        raise ConfigError(
            "bad auth config in defaults section: Service Principal (tenant_id+client_id+client_secret), "
            "Managed Identity (client_id+subscription_id), and PAT authentication are mutually exclusive"
        )
    if defaults.auto_resolve is not None and not defaults.auto_resolve.state:
        raise ConfigError("bad config in defaults section: state cannot be empty")

    raw_receivers = raw.get("receivers") or []
    if not isinstance(raw_receivers, list):
        raise ConfigError("receivers must be a list")

    receivers = []
    for item in raw_receivers:
        rc = _parse_receiver(item)
        if not rc.name:
            raise ConfigError(f"missing name for receiver {item!r}")
        _resolve_receiver(rc, defaults)
        receivers.append(rc)

    if not receivers:
        raise ConfigError("no receivers defined")

    template = raw.get("template") or ""
    if not template:
        raise ConfigError("missing template file")
    if base_dir is not None and not os.path.isabs(template):
        resolved = str(base_dir / template)
        logger.debug(f"模板相对路径已解析: {template} -> {resolved}")
        template = resolved

    return Config(
        receivers=receivers,
        template=template,
        defaults=defaults,
        server=dict(raw.get("server") or {}),
        logging=dict(raw.get("logging") or {}),
    )


def load_config(path: Optional[str] = None) -> Config:
    """
    加载配置文件

    Args:
        path: 配置文件路径，为空时使用 CONFIG_FILE 环境变量或项目根目录下的 config.yaml

    Returns:
        Config: 校验后的配置
    """
    config_path = Path(path) if path else _config_path()
    if not config_path.is_file():
        raise FileNotFoundError(f"配置文件不存在: {config_path}，可设置环境变量 CONFIG_FILE 指定路径")
    logger.info(f"加载配置文件: {config_path}")
    with open(config_path, "r", encoding="utf-8") as f:
        content = substitute_env_vars(f.read())
    raw = yaml.safe_load(content)
    config = parse_config(raw, base_dir=config_path.resolve().parent)
    config.path = config_path
    return config
