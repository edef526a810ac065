"""
Azure DevOps 工作项字段

固定的字段引用名集合（System.*、Microsoft.VSTS.*），以及字段名到 JSON Patch 路径的解析。
运行期不可变；未知字段由调用方自行拼接 /fields/<name>。
"""
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

FIELD_PATH_PREFIX = "/fields/"


class WorkItemField(str, Enum):
    """Azure DevOps 字段引用名"""

    # System
    TITLE = "System.Title"
    DESCRIPTION = "System.Description"
    STATE = "System.State"
    AREA_ID = "System.AreaId"
    AREA_PATH = "System.AreaPath"
    ASSIGNED_TO = "System.AssignedTo"
    ATTACHED_FILE_COUNT = "System.AttachedFileCount"
    AUTHORIZED_AS = "System.AuthorizedAs"
    AUTHORIZED_DATE = "System.AuthorizedDate"
    BOARD_COLUMN = "System.BoardColumn"
    BOARD_COLUMN_DONE = "System.BoardColumnDone"
    BOARD_LANE = "System.BoardLane"
    CHANGED_BY = "System.ChangedBy"
    CHANGED_DATE = "System.ChangedDate"
    COMMENT_COUNT = "System.CommentCount"
    CREATED_BY = "System.CreatedBy"
    CREATED_DATE = "System.CreatedDate"
    EXTERNAL_LINK_COUNT = "System.ExternalLinkCount"
    HISTORY = "System.History"
    HYPER_LINK_COUNT = "System.HyperLinkCount"
    ID = "System.Id"
    ITERATION_ID = "System.IterationId"
    ITERATION_PATH = "System.IterationPath"
    NODE_NAME = "System.NodeName"
    PARENT = "System.Parent"
    REASON = "System.Reason"
    RELATED_LINK_COUNT = "System.RelatedLinkCount"
    REMOTE_LINK_COUNT = "System.RemoteLinkCount"
    REV = "System.Rev"
    REVISED_DATE = "System.RevisedDate"
    TAGS = "System.Tags"
    TEAM_PROJECT = "System.TeamProject"
    WATERMARK = "System.Watermark"
    WORK_ITEM_TYPE = "System.WorkItemType"

    # Microsoft.VSTS.Common
    ACCEPTANCE_CRITERIA = "Microsoft.VSTS.Common.AcceptanceCriteria"
    ACTIVATED_BY = "Microsoft.VSTS.Common.ActivatedBy"
    ACTIVATED_DATE = "Microsoft.VSTS.Common.ActivatedDate"
    ACTIVITY = "Microsoft.VSTS.Common.Activity"
    BUSINESS_VALUE = "Microsoft.VSTS.Common.BusinessValue"
    CLOSED_BY = "Microsoft.VSTS.Common.ClosedBy"
    CLOSED_DATE = "Microsoft.VSTS.Common.ClosedDate"
    ISSUE = "Microsoft.VSTS.Common.Issue"
    PRIORITY = "Microsoft.VSTS.Common.Priority"
    RATING = "Microsoft.VSTS.Common.Rating"
    RESOLVED_BY = "Microsoft.VSTS.Common.ResolvedBy"
    RESOLVED_DATE = "Microsoft.VSTS.Common.ResolvedDate"
    RESOLVED_REASON = "Microsoft.VSTS.Common.ResolvedReason"
    REVIEWED_BY = "Microsoft.VSTS.Common.ReviewedBy"
    RISK = "Microsoft.VSTS.Common.Risk"
    SEVERITY = "Microsoft.VSTS.Common.Severity"
    STACK_RANK = "Microsoft.VSTS.Common.StackRank"
    STATE_CHANGE_DATE = "Microsoft.VSTS.Common.StateChangeDate"
    STATE_CODE = "Microsoft.VSTS.Common.StateCode"
    TIME_CRITICALITY = "Microsoft.VSTS.Common.TimeCriticality"
    VALUE_AREA = "Microsoft.VSTS.Common.ValueArea"

    # Microsoft.VSTS.Scheduling
    COMPLETED_WORK = "Microsoft.VSTS.Scheduling.CompletedWork"
    DUE_DATE = "Microsoft.VSTS.Scheduling.DueDate"
    EFFORT = "Microsoft.VSTS.Scheduling.Effort"
    FINISH_DATE = "Microsoft.VSTS.Scheduling.FinishDate"
    ORIGINAL_ESTIMATE = "Microsoft.VSTS.Scheduling.OriginalEstimate"
    REMAINING_WORK = "Microsoft.VSTS.Scheduling.RemainingWork"
    START_DATE = "Microsoft.VSTS.Scheduling.StartDate"
    STORY_POINTS = "Microsoft.VSTS.Scheduling.StoryPoints"
    TARGET_DATE = "Microsoft.VSTS.Scheduling.TargetDate"

    # Microsoft.VSTS.Build
    FOUND_IN = "Microsoft.VSTS.Build.FoundIn"
    INTEGRATION_BUILD = "Microsoft.VSTS.Build.IntegrationBuild"

    # Microsoft.VSTS.CodeReview
    ACCEPTED_BY = "Microsoft.VSTS.CodeReview.AcceptedBy"
    ACCEPTED_DATE = "Microsoft.VSTS.CodeReview.AcceptedDate"
    CLOSED_STATUS = "Microsoft.VSTS.CodeReview.ClosedStatus"
    CLOSED_STATUS_CODE = "Microsoft.VSTS.CodeReview.ClosedStatusCode"
    CLOSING_COMMENT = "Microsoft.VSTS.CodeReview.ClosingComment"
    CONTEXT = "Microsoft.VSTS.CodeReview.Context"
    CONTEXT_CODE = "Microsoft.VSTS.CodeReview.ContextCode"
    CONTEXT_OWNER = "Microsoft.VSTS.CodeReview.ContextOwner"
    CONTEXT_TYPE = "Microsoft.VSTS.CodeReview.ContextType"

    # Microsoft.VSTS.Feedback
    APPLICATION_LAUNCH_INSTRUCTIONS = "Microsoft.VSTS.Feedback.ApplicationLaunchInstructions"
    APPLICATION_START_INFORMATION = "Microsoft.VSTS.Feedback.ApplicationStartInformation"
    APPLICATION_TYPE = "Microsoft.VSTS.Feedback.ApplicationType"

    # Microsoft.VSTS.TCM
    AUTOMATED_TEST_ID = "Microsoft.VSTS.TCM.AutomatedTestId"
    AUTOMATED_TEST_NAME = "Microsoft.VSTS.TCM.AutomatedTestName"
    AUTOMATED_TEST_STORAGE = "Microsoft.VSTS.TCM.AutomatedTestStorage"
    AUTOMATED_TEST_TYPE = "Microsoft.VSTS.TCM.AutomatedTestType"
    AUTOMATION_STATUS = "Microsoft.VSTS.TCM.AutomationStatus"
    LOCAL_DATA_SOURCE = "Microsoft.VSTS.TCM.LocalDataSource"
    PARAMETERS = "Microsoft.VSTS.TCM.Parameters"
    QUERY_TEXT = "Microsoft.VSTS.TCM.QueryText"
    REPRO_STEPS = "Microsoft.VSTS.TCM.ReproSteps"
    STEPS = "Microsoft.VSTS.TCM.Steps"
    SYSTEM_INFO = "Microsoft.VSTS.TCM.SystemInfo"
    TEST_SUITE_AUDIT = "Microsoft.VSTS.TCM.TestSuiteAudit"
    TEST_SUITE_TYPE = "Microsoft.VSTS.TCM.TestSuiteType"
    TEST_SUITE_TYPE_ID = "Microsoft.VSTS.TCM.TestSuiteTypeId"

    def __str__(self) -> str:
        return self.value

    @property
    def field_path(self) -> str:
        """JSON Patch 中使用的路径，如 /fields/System.Title"""
        return f"{FIELD_PATH_PREFIX}{self.value}"


# 字段引用名 -> 字段，进程启动时构建一次，只读
_FIELD_LOOKUP: Mapping[str, WorkItemField] = MappingProxyType({f.value: f for f in WorkItemField})

CORE_SYSTEM_FIELDS = (
    WorkItemField.ID,
    WorkItemField.TITLE,
    WorkItemField.DESCRIPTION,
    WorkItemField.STATE,
    WorkItemField.WORK_ITEM_TYPE,
    WorkItemField.ASSIGNED_TO,
    WorkItemField.AREA_PATH,
    WorkItemField.ITERATION_PATH,
    WorkItemField.CREATED_BY,
    WorkItemField.CREATED_DATE,
    WorkItemField.CHANGED_BY,
    WorkItemField.CHANGED_DATE,
)

PRIORITY_FIELDS = (
    WorkItemField.PRIORITY,
    WorkItemField.SEVERITY,
    WorkItemField.RISK,
    WorkItemField.BUSINESS_VALUE,
)

SCHEDULING_FIELDS = (
    WorkItemField.ORIGINAL_ESTIMATE,
    WorkItemField.REMAINING_WORK,
    WorkItemField.COMPLETED_WORK,
    WorkItemField.STORY_POINTS,
    WorkItemField.EFFORT,
    WorkItemField.START_DATE,
    WorkItemField.FINISH_DATE,
    WorkItemField.DUE_DATE,
    WorkItemField.TARGET_DATE,
)

STATE_FIELDS = (
    WorkItemField.STATE,
    WorkItemField.REASON,
    WorkItemField.STATE_CODE,
    WorkItemField.STATE_CHANGE_DATE,
    WorkItemField.ACTIVATED_BY,
    WorkItemField.ACTIVATED_DATE,
    WorkItemField.RESOLVED_BY,
    WorkItemField.RESOLVED_DATE,
    WorkItemField.RESOLVED_REASON,
    WorkItemField.CLOSED_BY,
    WorkItemField.CLOSED_DATE,
)

TEST_FIELDS = (
    WorkItemField.AUTOMATED_TEST_ID,
    WorkItemField.AUTOMATED_TEST_NAME,
    WorkItemField.AUTOMATED_TEST_STORAGE,
    WorkItemField.AUTOMATED_TEST_TYPE,
    WorkItemField.AUTOMATION_STATUS,
    WorkItemField.REPRO_STEPS,
    WorkItemField.STEPS,
    WorkItemField.SYSTEM_INFO,
)


def parse_work_item_field(name: str) -> Optional[WorkItemField]:
    """
    将字段名解析为已知字段

    接受引用名（System.Title）或 JSON Patch 路径（/fields/System.Title），
    未知字段返回 None。
    """
    if name.startswith(FIELD_PATH_PREFIX):
        name = name[len(FIELD_PATH_PREFIX):]
    return _FIELD_LOOKUP.get(name)


def field_path_for(name: str) -> str:
    """已知字段返回其标准路径，否则拼接 /fields/<name>（空字符串同样拼接）"""
    known = parse_work_item_field(name)
    if known is not None:
        return known.field_path
    return f"{FIELD_PATH_PREFIX}{name}"
