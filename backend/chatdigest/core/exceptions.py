"""追踪与摘要相关的异常类型"""

from typing import Any


class TrackingError(Exception):
    """所有追踪/摘要错误的基类，code 用于命令层渲染结果"""

    code = "TRACKING_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AlreadyActive(TrackingError):
    code = "SESSION_ALREADY_ACTIVE"


class NotActive(TrackingError):
    code = "SESSION_NOT_FOUND"


class SessionLimitExceeded(TrackingError):
    code = "SESSION_LIMIT_EXCEEDED"


class InsufficientMessages(TrackingError):
    code = "NO_MESSAGES_TO_SUMMARIZE"


class AlreadySummarized(TrackingError):
    code = "SESSION_ALREADY_SUMMARIZED"


class LLMFailure(TrackingError):
    code = "SUMMARY_GENERATION_FAILED"


class StorageFailure(TrackingError):
    code = "DATABASE_ERROR"


class SchedulerDisabled(TrackingError):
    code = "SCHEDULER_DISABLED"


# 这些错误由用户操作触发，命令层只渲染为结果，不向外抛出
USER_FACING_ERRORS: tuple[type[TrackingError], ...] = (
    AlreadyActive,
    NotActive,
    SessionLimitExceeded,
    InsufficientMessages,
    AlreadySummarized,
)
