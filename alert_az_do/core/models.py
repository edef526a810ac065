"""
数据模型定义

Alertmanager 通知（Data/Alert）、接收器配置（ReceiverConfig）、
Azure DevOps 工作项（WorkItem）以及 JSON Patch 操作（PatchOperation）。
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

# 指纹标签前缀，工作项 Tags 中以 "Fingerprint:<fp>" 记录告警实例
FINGERPRINT_TAG_PREFIX = "Fingerprint:"


class AlertStatus(str, Enum):
    """告警状态"""
    FIRING = "firing"
    RESOLVED = "resolved"

    def __str__(self) -> str:
        # 模板中直接输出 {{ status }} 时得到 "firing" 而不是枚举名
        return self.value


class KV(dict):
    """标签/注解字典，附带模板中常用的排序辅助方法"""

    def sorted_pairs(self) -> List["Pair"]:
        """
        按 key 排序后的键值对，alertname 固定排在第一位

        Returns:
            List[Pair]: 排序后的键值对
        """
        keys = sorted(k for k in self if k != "alertname")
        if "alertname" in self:
            keys.insert(0, "alertname")
        return [Pair(name=k, value=self[k]) for k in keys]

    def names(self) -> List[str]:
        return [p.name for p in self.sorted_pairs()]

    def sorted_values(self) -> List[str]:
        return [p.value for p in self.sorted_pairs()]

    def remove(self, keys: Iterable[str]) -> "KV":
        """返回去掉指定 key 后的新 KV，原对象不变"""
        excluded = set(keys)
        return KV({k: v for k, v in self.items() if k not in excluded})


@dataclass(frozen=True)
class Pair:
    name: str
    value: str


def fingerprint_tag(fingerprint: str) -> str:
    return f"{FINGERPRINT_TAG_PREFIX}{fingerprint}"


@dataclass(frozen=True)
class Alert:
    """单条告警（来自 Alertmanager webhook 的 alerts 数组）"""
    status: AlertStatus
    labels: KV = field(default_factory=KV)
    annotations: KV = field(default_factory=KV)
    startsAt: Optional[datetime] = None
    endsAt: Optional[datetime] = None
    generatorURL: str = ""
    fingerprint: str = ""

    @property
    def is_firing(self) -> bool:
        return self.status == AlertStatus.FIRING


class Alerts(list):
    """告警列表，提供按状态过滤与指纹标签视图（均返回新列表，可重复遍历）"""

    def firing(self) -> "Alerts":
        return Alerts(a for a in self if a.status == AlertStatus.FIRING)

    def resolved(self) -> "Alerts":
        return Alerts(a for a in self if a.status == AlertStatus.RESOLVED)

    def fingerprints(self) -> List[str]:
        return [fingerprint_tag(a.fingerprint) for a in self]


@dataclass(frozen=True)
class Data:
    """
    一次 webhook 投递（Alertmanager 的通知批次）

    构造后只读，请求结束即丢弃。
    """
    receiver: str
    status: AlertStatus
    alerts: Alerts = field(default_factory=Alerts)
    groupLabels: KV = field(default_factory=KV)
    commonLabels: KV = field(default_factory=KV)
    commonAnnotations: KV = field(default_factory=KV)
    externalURL: str = ""
    groupKey: str = ""
    version: str = ""
    truncatedAlerts: int = 0

    def firing(self) -> Alerts:
        return self.alerts.firing()

    def resolved(self) -> Alerts:
        return self.alerts.resolved()

    def fingerprint_tags(self) -> List[str]:
        """所有告警（不区分状态）的指纹标签"""
        return self.alerts.fingerprints()

    def firing_fingerprint_tags(self) -> List[str]:
        return self.firing().fingerprints()

    def resolved_fingerprint_tags(self) -> List[str]:
        return self.resolved().fingerprints()

    def template_context(self) -> Dict[str, Any]:
        """
        模板渲染上下文，字段名与 Alertmanager webhook JSON 保持一致

        Returns:
            Dict[str, Any]: 传给 Jinja2 的变量
        """
        return {
            "receiver": self.receiver,
            "status": self.status,
            "alerts": self.alerts,
            "groupLabels": self.groupLabels,
            "commonLabels": self.commonLabels,
            "commonAnnotations": self.commonAnnotations,
            "externalURL": self.externalURL,
            "groupKey": self.groupKey,
            "version": self.version,
            "truncatedAlerts": self.truncatedAlerts,
        }


@dataclass
class AutoResolve:
    """告警恢复后工作项自动流转到的状态"""
    state: str


@dataclass
class ReceiverConfig:
    """
    单个接收器配置

    API 访问字段（organization 与认证信息）、必填工作项字段（project、issue_type、
    summary、reopen_state、reopen_duration）以及可选字段。
    加载完成后所有必填字段均已从 defaults 继承补齐。
    """
    name: str = ""

    # API 访问
    organization: str = ""
    tenant_id: str = ""
    client_id: str = ""
    subscription_id: str = ""
    client_secret: str = ""
    personal_access_token: str = ""

    # 必填工作项字段（均为模板）
    project: str = ""
    other_projects: List[str] = field(default_factory=list)
    issue_type: str = ""
    summary: str = ""
    reopen_state: str = ""
    reopen_duration: Optional[timedelta] = None

    # 可选工作项字段
    priority: str = ""
    description: str = ""
    skip_reopen_state: str = ""
    fields: Dict[str, str] = field(default_factory=dict)  # 字段名 -> 模板源码
    components: List[str] = field(default_factory=list)
    static_labels: List[str] = field(default_factory=list)

    add_group_labels: Optional[bool] = None
    update_in_comment: Optional[bool] = None
    auto_resolve: Optional[AutoResolve] = None


class PatchOp(str, Enum):
    ADD = "add"
    REPLACE = "replace"


@dataclass(frozen=True)
class PatchOperation:
    """JSON Patch 文档中的一条操作"""
    op: PatchOp
    path: str
    value: str

    def to_json(self) -> Dict[str, str]:
        return {"op": self.op.value, "path": self.path, "value": self.value}


@dataclass
class WorkItem:
    """Azure DevOps 工作项（仅在一次协调调用内使用，不做缓存）"""
    id: int
    fields: Dict[str, Any] = field(default_factory=dict)
    rev: Optional[int] = None
    url: str = ""

    @classmethod
    def from_json(cls, body: Dict[str, Any]) -> "WorkItem":
        return cls(
            id=int(body["id"]),
            fields=dict(body.get("fields") or {}),
            rev=body.get("rev"),
            url=body.get("url", ""),
        )

    def field_value(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

