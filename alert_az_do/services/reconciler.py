"""
工作项协调

根据告警组成决定创建、更新或自动解决 Azure DevOps 工作项，并生成 JSON Patch 文档。
工作项与告警通过 Tags 中的 "Fingerprint:<fp>" 标签关联；不保存任何本地状态，
每次都以远端查询结果为准。

状态流转：
    未匹配 -> 创建 / 不处理
    已匹配 -> 跳过（skip_reopen_state）/ 更新 / 解决
"""
from enum import Enum
from typing import List, Optional, Sequence

from ..azure.client import WorkItemClient
from ..azure.fields import WorkItemField, field_path_for
from ..core.errors import NotifyError, RemoteCallError, RenderError
from ..core.logging_config import get_logger
from ..core.models import Data, PatchOp, PatchOperation, ReceiverConfig, WorkItem
from ..templates.template_renderer import TemplateRenderer

logger = get_logger()

# Azure DevOps 标题长度上限
MAX_TITLE_LENGTH = 128
TAG_SEPARATOR = "; "
UPDATE_COMMENT = "Issue updated with new alert data"


class ReconcileAction(str, Enum):
    """一次协调的结果"""
    CREATED = "created"
    UPDATED = "updated"
    RESOLVED = "resolved"
    SKIPPED = "skipped"
    NOOP = "noop"

    def __str__(self) -> str:
        return self.value


def _quote_wiql(value: str) -> str:
    """WIQL 字符串字面量中的单引号需要写成两个"""
    return value.replace("'", "''")


def build_fingerprint_query(project: str, tags: Sequence[str]) -> str:
    """
    构造按指纹标签查找工作项的 WIQL

    Args:
        project: 项目名
        tags: 指纹标签列表（至少一个）

    Returns:
        str: WIQL 查询语句
    """
    clauses = [f"[{WorkItemField.TAGS}] CONTAINS '{_quote_wiql(t)}'" for t in tags]
    return (
        f"SELECT [{WorkItemField.ID}] FROM WorkItems "
        f"WHERE [{WorkItemField.TEAM_PROJECT}] = '{_quote_wiql(project)}' "
        f"AND ({' OR '.join(clauses)})"
    )


class Reconciler:
    """单个接收器的工作项协调器"""

    def __init__(self, conf: ReceiverConfig, renderer: TemplateRenderer, client: WorkItemClient):
        self.conf = conf
        self.renderer = renderer
        self.client = client

    def reconcile(self, data: Data, project: str) -> ReconcileAction:
        """
        处理一次通知

        Args:
            data: 通知批次
            project: 已渲染的项目名

        Returns:
            ReconcileAction: 执行的动作

        Raises:
            NotifyError: 任一阶段失败，stage 标明失败阶段
        """
        if data.firing():
            work_item = self._find(data, project)
            if work_item is not None:
                logger.info(f"告警已有对应工作项 #{work_item.id}，执行更新 (receiver={self.conf.name})")
                return self.update_work_item(data, project, work_item)
            return self.create_work_item(data, project)

        if self.conf.auto_resolve is not None:
            work_item = self._find(data, project)
            if work_item is None:
                logger.info(f"没有找到需要解决的工作项 (receiver={self.conf.name})")
                return ReconcileAction.NOOP
            return self.resolve_work_item(data, project, work_item)

        logger.debug(f"没有 firing 告警且未配置 auto_resolve，不处理 (receiver={self.conf.name})")
        return ReconcileAction.NOOP

    def _find(self, data: Data, project: str) -> Optional[WorkItem]:
        try:
            return self.find_work_item(data, project)
        except RemoteCallError as e:
            raise NotifyError("find work item", e) from e

    def find_work_item(self, data: Data, project: str) -> Optional[WorkItem]:
        """
        按批次内所有告警（含已恢复的）的指纹标签查找工作项

        查询结果为 0 条或多于 1 条时都视为未匹配；多于 1 条说明同一指纹出现在多个工作项上，
        无法判断哪个是正本，只记录日志，不报错也不修改其中任何一个。
        """
        tags = data.fingerprint_tags()
        if not tags:
            logger.debug("通知中没有告警，无法按指纹查找工作项")
            return None

        ids = self.client.query(build_fingerprint_query(project, tags))
        if not ids:
            logger.debug(f"没有找到工作项，fingerprints={tags}")
            return None
        if len(ids) > 1:
            logger.warning(f"多个工作项包含相同指纹，按未匹配处理: ids={ids}, fingerprints={tags}")
            return None
        return self.client.get(ids[0])

    def create_work_item(self, data: Data, project: str) -> ReconcileAction:
        try:
            work_item_type = self.renderer.render(self.conf.issue_type, data, field="work item type")
        except RenderError as e:
            raise NotifyError("render work item type", e) from e

        try:
            document = self.build_document(data, add_fingerprint=True)
        except RenderError as e:
            raise NotifyError("generate work item document", e) from e

        try:
            work_item = self.client.create(project, work_item_type, document)
        except RemoteCallError as e:
            raise NotifyError("create work item", e) from e

        logger.info(f"工作项已创建 #{work_item.id}: {work_item.field_value(WorkItemField.TITLE.value, '')}")
        return ReconcileAction.CREATED

    def update_work_item(self, data: Data, project: str, work_item: WorkItem) -> ReconcileAction:
        state = work_item.field_value(WorkItemField.STATE.value)
        if self.conf.skip_reopen_state and state == self.conf.skip_reopen_state:
            logger.info(f"工作项 #{work_item.id} 处于 {state} 状态（skip_reopen_state），不做更新")
            return ReconcileAction.SKIPPED

        try:
            document = self.build_document(data, add_fingerprint=False)
        except RenderError as e:
            raise NotifyError("generate work item document", e) from e

        # 用全部指纹覆盖 Tags，使工作项记录该告警组出现过的所有实例
        if data.alerts:
            document.append(PatchOperation(
                op=PatchOp.REPLACE,
                path=WorkItemField.TAGS.field_path,
                value=TAG_SEPARATOR.join(data.fingerprint_tags()),
            ))

        # 之前被自动解决、现在再次触发：重新打开
        if self.conf.auto_resolve is not None and state == self.conf.auto_resolve.state:
            logger.info(f"工作项 #{work_item.id} 之前已自动解决，重新打开为 {self.conf.reopen_state}")
            document.append(PatchOperation(
                op=PatchOp.REPLACE,
                path=WorkItemField.STATE.field_path,
                value=self.conf.reopen_state,
            ))

        try:
            updated = self.client.update(work_item.id, document, project=project)
        except RemoteCallError as e:
            raise NotifyError("update work item", e) from e

        logger.info(f"工作项已更新 #{updated.id}: {updated.field_value(WorkItemField.TITLE.value, '')}")

        if self.conf.update_in_comment:
            try:
                self._add_comment(work_item, project)
            except RemoteCallError as e:
                raise NotifyError("add comment to work item", e) from e

        return ReconcileAction.UPDATED

    def resolve_work_item(self, data: Data, project: str, work_item: WorkItem) -> ReconcileAction:
        try:
            document = self.build_document(data, add_fingerprint=False)
        except RenderError as e:
            raise NotifyError("generate resolve document", e) from e

        document.append(PatchOperation(
            op=PatchOp.REPLACE,
            path=WorkItemField.STATE.field_path,
            value=self.conf.auto_resolve.state,
        ))

        try:
            resolved = self.client.update(work_item.id, document, project=project)
        except RemoteCallError as e:
            raise NotifyError("update work item", e) from e

        logger.info(f"工作项已解决 #{resolved.id}: {resolved.field_value(WorkItemField.TITLE.value, '')}")
        return ReconcileAction.RESOLVED

    def _add_comment(self, work_item: WorkItem, project: str) -> None:
        comment_project = work_item.field_value(WorkItemField.TEAM_PROJECT.value) or project
        comment_id = self.client.comment(comment_project, work_item.id, UPDATE_COMMENT)
        logger.info(f"工作项 #{work_item.id} 已添加评论 {comment_id}")

    def build_document(self, data: Data, add_fingerprint: bool) -> List[PatchOperation]:
        """
        生成工作项 JSON Patch 文档

        依次为标题、描述、指纹标签（仅 add_fingerprint 时）、优先级以及配置中的自定义字段。
        任一模板渲染失败即中止并抛出 RenderError（field 标明失败字段）。

        Args:
            data: 通知批次
            add_fingerprint: 是否写入 firing 告警的指纹标签（创建时为 True）

        Returns:
            List[PatchOperation]: 文档
        """
        conf = self.conf
        render = self.renderer.render
        document: List[PatchOperation] = []

        title = render(conf.summary, data, field="title")
        if len(title) > MAX_TITLE_LENGTH:
            title = title[:MAX_TITLE_LENGTH]
            logger.warning(f"标题超过 {MAX_TITLE_LENGTH} 个字符，已截断")
        document.append(PatchOperation(PatchOp.ADD, WorkItemField.TITLE.field_path, title))

        description = render(conf.description, data, field="description")
        document.append(PatchOperation(PatchOp.ADD, WorkItemField.DESCRIPTION.field_path, description))

        if add_fingerprint and data.alerts:
            document.append(PatchOperation(
                PatchOp.ADD,
                WorkItemField.TAGS.field_path,
                TAG_SEPARATOR.join(data.firing_fingerprint_tags()),
            ))

        if conf.priority:
            priority = render(conf.priority, data, field="priority")
            document.append(PatchOperation(PatchOp.ADD, WorkItemField.PRIORITY.field_path, priority))

        for key in sorted(conf.fields):
            value = render(conf.fields[key], data, field=f"field {key}")
            document.append(PatchOperation(PatchOp.ADD, field_path_for(key), value))

        return document
