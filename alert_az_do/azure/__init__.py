"""
Azure DevOps 集成：字段定义、认证与工作项客户端
"""
from .auth import Credential, get_credential
from .client import AzureDevOpsClient, WorkItemClient, organization_url
from .fields import WorkItemField, field_path_for, parse_work_item_field

__all__ = [
    "Credential",
    "get_credential",
    "AzureDevOpsClient",
    "WorkItemClient",
    "organization_url",
    "WorkItemField",
    "field_path_for",
    "parse_work_item_field",
]
