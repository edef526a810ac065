"""
Azure DevOps 工作项客户端

WorkItemClient 为协调器依赖的最小能力接口（query/get/create/update/comment），
AzureDevOpsClient 为基于 REST API 的实现。

性能优化：
- 使用 HTTP 连接池复用连接，减少连接建立开销
- 仅对幂等的 GET 请求做传输层重试，POST/PATCH 不重试（避免重复创建工作项）
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..core.errors import RemoteCallError
from ..core.logging_config import get_logger
from ..core.models import PatchOperation, WorkItem

logger = get_logger()

API_VERSION = "7.1"
COMMENTS_API_VERSION = "7.1-preview.4"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
DEFAULT_BASE_URL = "https://dev.azure.com"

# 超时配置（秒）
TIMEOUTS = {
    "query": 15,
    "get": 10,
    "write": 20,
}

# 全局连接池会话，所有接收器共用
_session: Optional[requests.Session] = None


def _get_session() -> requests.Session:
    """获取或创建 HTTP 会话（带连接池）"""
    global _session
    if _session is None:
        session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=0.3,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(
            pool_connections=10,
            pool_maxsize=20,
            max_retries=retry_strategy,
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        _session = session
    return _session


def clear_session() -> None:
    """关闭缓存的 HTTP 会话（主要用于测试或资源清理）"""
    global _session
    if _session is not None:
        _session.close()
        _session = None


def organization_url(organization: str) -> str:
    """organization 已是 URL 时原样使用，否则拼接 https://dev.azure.com/<organization>"""
    org = organization.strip().rstrip("/")
    if org.startswith("http://") or org.startswith("https://"):
        return org
    return f"{DEFAULT_BASE_URL}/{quote(org)}"


class WorkItemClient(ABC):
    """协调器使用的工作项能力接口，所有方法失败时抛出 RemoteCallError"""

    @abstractmethod
    def query(self, wiql: str) -> List[int]:
        """执行 WIQL 查询，返回工作项 ID 列表"""

    @abstractmethod
    def get(self, work_item_id: int) -> WorkItem:
        """获取工作项完整字段"""

    @abstractmethod
    def create(self, project: str, work_item_type: str, document: Sequence[PatchOperation]) -> WorkItem:
        """创建工作项"""

    @abstractmethod
    def update(self, work_item_id: int, document: Sequence[PatchOperation],
               project: Optional[str] = None) -> WorkItem:
        """更新工作项"""

    @abstractmethod
    def comment(self, project: str, work_item_id: int, text: str) -> int:
        """添加评论，返回评论 ID"""


class AzureDevOpsClient(WorkItemClient):
    """Azure DevOps Work Item Tracking REST API 客户端"""

    def __init__(self, base_url: str, authorization: str, session: Optional[requests.Session] = None):
        """
        Args:
            base_url: 组织地址，如 https://dev.azure.com/myorg
            authorization: Authorization 请求头（Basic xxx / Bearer xxx）
            session: HTTP 会话，默认使用全局连接池会话
        """
        self.base_url = base_url.rstrip("/")
        self.authorization = authorization
        self.session = session or _get_session()

    def _url(self, path: str, project: Optional[str] = None) -> str:
        if project:
            return f"{self.base_url}/{quote(project, safe='')}/_apis/{path}"
        return f"{self.base_url}/_apis/{path}"

    def _request(self, operation: str, method: str, url: str, timeout: int,
                 params: Optional[Dict[str, str]] = None, body: Any = None,
                 content_type: str = "application/json") -> Dict[str, Any]:
        headers = {
            "Authorization": self.authorization,
            "Accept": "application/json",
        }
        data = None
        if body is not None:
            headers["Content-Type"] = content_type
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")

        query = {"api-version": API_VERSION}
        query.update(params or {})

        logger.debug(f"[AzureDevOps] {operation}: {method} {url}")
        if body is not None and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[AzureDevOps] 请求 body:\n{json.dumps(body, ensure_ascii=False, indent=2)}")
        try:
            response = self.session.request(method, url, params=query, data=data, headers=headers, timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise RemoteCallError(operation, _describe_http_error(e), status_code=status) from e
        except requests.exceptions.RequestException as e:
            raise RemoteCallError(operation, str(e)) from e

        try:
            return response.json()
        except ValueError as e:
            raise RemoteCallError(operation, f"invalid JSON response: {e}", status_code=response.status_code) from e

    def query(self, wiql: str) -> List[int]:
        body = self._request(
            "query work items", "POST", self._url("wit/wiql"), TIMEOUTS["query"],
            body={"query": wiql},
        )
        return [int(item["id"]) for item in body.get("workItems") or []]

    def get(self, work_item_id: int) -> WorkItem:
        body = self._request(
            "get work item", "GET", self._url(f"wit/workitems/{work_item_id}"), TIMEOUTS["get"],
        )
        return WorkItem.from_json(body)

    def create(self, project: str, work_item_type: str, document: Sequence[PatchOperation]) -> WorkItem:
        body = self._request(
            "create work item", "POST",
            self._url(f"wit/workitems/${quote(work_item_type, safe='')}", project),
            TIMEOUTS["write"],
            body=[op.to_json() for op in document],
            content_type=JSON_PATCH_CONTENT_TYPE,
        )
        return WorkItem.from_json(body)

    def update(self, work_item_id: int, document: Sequence[PatchOperation],
               project: Optional[str] = None) -> WorkItem:
        body = self._request(
            "update work item", "PATCH",
            self._url(f"wit/workitems/{work_item_id}", project),
            TIMEOUTS["write"],
            body=[op.to_json() for op in document],
            content_type=JSON_PATCH_CONTENT_TYPE,
        )
        return WorkItem.from_json(body)

    def comment(self, project: str, work_item_id: int, text: str) -> int:
        body = self._request(
            "create work item comment", "POST",
            self._url(f"wit/workItems/{work_item_id}/comments", project),
            TIMEOUTS["write"],
            params={"api-version": COMMENTS_API_VERSION, "format": "markdown"},
            body={"text": text},
        )
        return int(body.get("id") or 0)


def _describe_http_error(e: requests.exceptions.HTTPError) -> str:
    """优先使用 Azure DevOps 返回的 message 字段描述错误"""
    response = e.response
    if response is None:
        return str(e)
    try:
        message = response.json().get("message")
    except ValueError:
        message = None
    if message:
        return f"HTTP {response.status_code}: {message}"
    return f"HTTP {response.status_code}: {(response.text or '')[:500]}"
