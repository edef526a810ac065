"""
接收器服务层

一次通知的编排：渲染项目名、按告警组加锁、委托 Reconciler 协调工作项。
HTTP 层只负责解析请求、选择接收器与构造客户端。
"""
from typing import Optional

import requests

from ..azure.auth import get_credential
from ..azure.client import AzureDevOpsClient, WorkItemClient, organization_url
from ..core.errors import NotifyError, RenderError
from ..core.logging_config import get_logger
from ..core.models import Data, ReceiverConfig
from ..templates.template_renderer import TemplateRenderer
from .group_lock import group_lock
from .reconciler import ReconcileAction, Reconciler

logger = get_logger()


def build_client(conf: ReceiverConfig, session: Optional[requests.Session] = None) -> WorkItemClient:
    """
    为接收器构造 Azure DevOps 客户端

    Raises:
        AuthError: 没有可用的认证方式或获取 token 失败
    """
    credential = get_credential(conf)
    return AzureDevOpsClient(
        organization_url(conf.organization),
        credential.get_authorization(),
        session=session,
    )


class ReceiverService:
    """单个接收器的通知处理"""

    def __init__(self, conf: ReceiverConfig, renderer: TemplateRenderer, client: WorkItemClient,
                 serialize_groups: bool = True):
        """
        Args:
            conf: 接收器配置
            renderer: 模板渲染器
            client: 工作项客户端
            serialize_groups: 同一告警组的通知是否在进程内串行处理
        """
        self.conf = conf
        self.renderer = renderer
        self.reconciler = Reconciler(conf, renderer, client)
        self.serialize_groups = serialize_groups

    def notify(self, data: Data) -> ReconcileAction:
        """
        处理一次通知

        Returns:
            ReconcileAction: 执行的动作

        Raises:
            NotifyError: 项目名渲染失败或协调过程失败
        """
        try:
            project = self.renderer.render(self.conf.project, data, field="project")
        except RenderError as e:
            raise NotifyError("generate project from template", e) from e

        logger.info(
            f"接收器 {self.conf.name} 处理通知: project={project}, status={data.status}, "
            f"firing={len(data.firing())}, resolved={len(data.resolved())}"
        )

        if not self.serialize_groups:
            return self.reconciler.reconcile(data, project)
        with group_lock(project, data.fingerprint_tags()):
            return self.reconciler.reconcile(data, project)
