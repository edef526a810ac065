"""测试辅助：内存工作项客户端与通知构造函数"""
import re
from typing import Dict, List, Optional, Sequence

from alert_az_do.azure.client import WorkItemClient
from alert_az_do.core.errors import RemoteCallError
from alert_az_do.core.models import (
    Alert,
    Alerts,
    AlertStatus,
    Data,
    KV,
    PatchOperation,
    WorkItem,
)

_TAG_RE = re.compile(r"CONTAINS '((?:[^']|'')*)'")
_PROJECT_RE = re.compile(r"\[System\.TeamProject\] = '((?:[^']|'')*)'")


class FakeWorkItemClient(WorkItemClient):
    """内存中的工作项客户端，记录所有调用"""

    def __init__(self):
        self.items: Dict[int, WorkItem] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[str, RemoteCallError] = {}
        self.query_override: Optional[List[int]] = None
        self._next_id = 1

    def add_item(self, project: str, tags: Sequence[str], state: str = "Active", **fields) -> WorkItem:
        item = WorkItem(id=self._next_id, fields={
            "System.TeamProject": project,
            "System.Tags": "; ".join(tags),
            "System.State": state,
            "System.Title": "existing",
            **fields,
        })
        self.items[item.id] = item
        self._next_id += 1
        return item

    def calls_of(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def _maybe_fail(self, name: str) -> None:
        if name in self.failures:
            raise self.failures[name]

    def query(self, wiql: str) -> List[int]:
        self.calls.append(("query", wiql))
        self._maybe_fail("query")
        if self.query_override is not None:
            return list(self.query_override)
        wanted = {t.replace("''", "'") for t in _TAG_RE.findall(wiql)}
        project = _PROJECT_RE.search(wiql).group(1).replace("''", "'")
        ids = []
        for item in self.items.values():
            tags = set((item.fields.get("System.Tags") or "").split("; "))
            if item.fields.get("System.TeamProject") == project and tags & wanted:
                ids.append(item.id)
        return ids

    def get(self, work_item_id: int) -> WorkItem:
        self.calls.append(("get", work_item_id))
        self._maybe_fail("get")
        item = self.items[work_item_id]
        return WorkItem(id=item.id, fields=dict(item.fields))

    def create(self, project: str, work_item_type: str, document: Sequence[PatchOperation]) -> WorkItem:
        self.calls.append(("create", project, work_item_type, list(document)))
        self._maybe_fail("create")
        item = WorkItem(id=self._next_id, fields={
            "System.TeamProject": project,
            "System.WorkItemType": work_item_type,
            "System.State": "New",
        })
        self._next_id += 1
        _apply(item, document)
        self.items[item.id] = item
        return WorkItem(id=item.id, fields=dict(item.fields))

    def update(self, work_item_id: int, document: Sequence[PatchOperation],
               project: Optional[str] = None) -> WorkItem:
        self.calls.append(("update", work_item_id, list(document)))
        self._maybe_fail("update")
        item = self.items[work_item_id]
        _apply(item, document)
        return WorkItem(id=item.id, fields=dict(item.fields))

    def comment(self, project: str, work_item_id: int, text: str) -> int:
        self.calls.append(("comment", project, work_item_id, text))
        self._maybe_fail("comment")
        return 100 + len(self.calls_of("comment"))


def _apply(item: WorkItem, document: Sequence[PatchOperation]) -> None:
    for op in document:
        item.fields[op.path[len("/fields/"):]] = op.value


def make_alert(fingerprint: str, status: str = "firing", **labels) -> Alert:
    return Alert(
        status=AlertStatus(status),
        labels=KV({"alertname": "HighLatency", **labels}),
        annotations=KV({"summary": "latency is high"}),
        fingerprint=fingerprint,
    )


def make_data(*alerts: Alert, receiver: str = "azdo", status: Optional[str] = None) -> Data:
    batch = Alerts(alerts)
    if status is None:
        status = "firing" if batch.firing() else "resolved"
    return Data(
        receiver=receiver,
        status=AlertStatus(status),
        alerts=batch,
        groupLabels=KV({"alertname": "HighLatency"}),
        commonLabels=KV({"alertname": "HighLatency", "severity": "critical"}),
        commonAnnotations=KV({"summary": "latency is high"}),
        externalURL="http://alertmanager:9093",
        groupKey='{}:{alertname="HighLatency"}',
    )


def payload(receiver: str = "azdo", alerts: Optional[List[dict]] = None, status: str = "firing") -> dict:
    """Alertmanager webhook 请求体"""
    if alerts is None:
        alerts = [{
            "status": "firing",
            "labels": {"alertname": "HighLatency", "severity": "critical"},
            "annotations": {"summary": "latency is high"},
            "startsAt": "2024-05-01T10:00:00.000Z",
            "endsAt": "0001-01-01T00:00:00Z",
            "generatorURL": "http://prometheus:9090/graph",
            "fingerprint": "f1",
        }]
    return {
        "version": "4",
        "groupKey": '{}:{alertname="HighLatency"}',
        "truncatedAlerts": 0,
        "status": status,
        "receiver": receiver,
        "groupLabels": {"alertname": "HighLatency"},
        "commonLabels": {"alertname": "HighLatency", "severity": "critical"},
        "commonAnnotations": {"summary": "latency is high"},
        "externalURL": "http://alertmanager:9093",
        "alerts": alerts,
    }
