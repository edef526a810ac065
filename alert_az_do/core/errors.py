"""
异常定义

RenderError / RemoteCallError 为协调过程中的致命错误，
NotifyError 由协调器包装并标注失败阶段后抛给上层（HTTP 层据此返回状态码）。
"""
from typing import Optional


class AlertAzDoError(Exception):
    """所有业务异常的基类"""


class ConfigError(AlertAzDoError, ValueError):
    """配置文件缺失字段、字段冲突或存在未知字段"""


class AuthError(AlertAzDoError):
    """无法为接收器构造 Azure DevOps 认证信息"""


class RenderError(AlertAzDoError):
    """模板渲染失败，field 标明是哪个字段（title/description/priority/field xxx 等）"""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"render {field}: {message}")


class RemoteCallError(AlertAzDoError):
    """Azure DevOps API 调用失败，operation 为操作名（如 query work items）"""

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation}: {message}")


class NotifyError(AlertAzDoError):
    """协调过程中某个阶段失败，stage 如 find work item / update work item"""

    def __init__(self, stage: str, cause: Exception):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {cause}")
