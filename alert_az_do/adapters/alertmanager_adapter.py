"""
Prometheus Alertmanager Webhook 适配器

将 Alertmanager 的 webhook payload 转换为只读的 Data 对象
采用适配器模式（Adapter Pattern）实现格式转换

payload 结构见 https://prometheus.io/docs/alerting/latest/configuration/#webhook_config
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from dateutil import parser as dateutil_parser

from ..core.models import Alert, Alerts, AlertStatus, Data, KV

logger = logging.getLogger("alert-az-do")

# Alertmanager 对未结束告警的 endsAt 使用 Go 零值时间
_ZERO_TIME_PREFIX = "0001-01-01"


def _parse_time(value: Any) -> Optional[datetime]:
    """解析 RFC3339 时间，空值或 Go 零值时间返回 None"""
    if not value:
        return None
    text = str(value).strip()
    if text.startswith(_ZERO_TIME_PREFIX):
        return None
    try:
        return dateutil_parser.isoparse(text)
    except ValueError:
        logger.warning(f"无法解析告警时间: {text}")
        return None


def _parse_status(value: Any, where: str) -> AlertStatus:
    try:
        return AlertStatus(str(value or "").lower())
    except ValueError:
        raise ValueError(f"invalid status {value!r} in {where}") from None


def _kv(value: Any, where: str) -> KV:
    if value is None:
        return KV()
    if not isinstance(value, dict):
        raise ValueError(f"{where} must be an object")
    return KV({str(k): "" if v is None else str(v) for k, v in value.items()})


def parse_alert(raw: Dict[str, Any]) -> Alert:
    """解析单条告警"""
    if not isinstance(raw, dict):
        raise ValueError("alert must be an object")
    return Alert(
        status=_parse_status(raw.get("status"), "alert"),
        labels=_kv(raw.get("labels"), "labels"),
        annotations=_kv(raw.get("annotations"), "annotations"),
        startsAt=_parse_time(raw.get("startsAt")),
        endsAt=_parse_time(raw.get("endsAt")),
        generatorURL=str(raw.get("generatorURL") or ""),
        fingerprint=str(raw.get("fingerprint") or ""),
    )


def parse(payload: Dict[str, Any]) -> Data:
    """
    解析 Alertmanager webhook payload

    Args:
        payload: 请求体 JSON

    Returns:
        Data: 通知批次

    Raises:
        ValueError: payload 结构不合法
    """
    if not isinstance(payload, dict):
        raise ValueError("payload must be a JSON object")

    raw_alerts = payload.get("alerts") or []
    if not isinstance(raw_alerts, list):
        raise ValueError("alerts must be an array")
    alerts = Alerts(parse_alert(a) for a in raw_alerts)

    status = payload.get("status")
    if status:
        batch_status = _parse_status(status, "payload")
    else:
        # 未提供整体状态时，只要有一条 firing 即视为 firing
        batch_status = AlertStatus.FIRING if alerts.firing() else AlertStatus.RESOLVED

    try:
        truncated = int(payload.get("truncatedAlerts") or 0)
    except (TypeError, ValueError):
        raise ValueError("truncatedAlerts must be an integer") from None

    return Data(
        receiver=str(payload.get("receiver") or ""),
        status=batch_status,
        alerts=alerts,
        groupLabels=_kv(payload.get("groupLabels"), "groupLabels"),
        commonLabels=_kv(payload.get("commonLabels"), "commonLabels"),
        commonAnnotations=_kv(payload.get("commonAnnotations"), "commonAnnotations"),
        externalURL=str(payload.get("externalURL") or ""),
        groupKey=str(payload.get("groupKey") or ""),
        version=str(payload.get("version") or ""),
        truncatedAlerts=truncated,
    )
