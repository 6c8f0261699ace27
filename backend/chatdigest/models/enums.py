"""追踪系统使用的枚举类型"""

from datetime import timedelta
from enum import Enum


class SessionStatus(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"
    SUMMARIZED = "summarized"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.SUMMARIZED, SessionStatus.EXPIRED)


class SummaryType(str, Enum):
    MANUAL = "manual"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def is_scheduled(self) -> bool:
        return self is not SummaryType.MANUAL

    @property
    def period(self) -> timedelta:
        """定时摘要的周期（同时也是回看窗口）"""
        if self is SummaryType.HOURLY:
            return timedelta(hours=1)
        if self is SummaryType.DAILY:
            return timedelta(days=1)
        if self is SummaryType.WEEKLY:
            return timedelta(days=7)
        if self is SummaryType.MONTHLY:
            return timedelta(days=30)
        raise ValueError("手动摘要没有固定周期")

    @property
    def minimum_messages(self) -> int:
        """生成摘要所需的最少有效消息数"""
        if self is SummaryType.MANUAL:
            return 5
        if self is SummaryType.HOURLY:
            return 5
        if self is SummaryType.DAILY:
            return 10
        if self is SummaryType.WEEKLY:
            return 20
        if self is SummaryType.MONTHLY:
            return 50
        raise ValueError(f"未知的摘要类型: {self}")


class SummaryStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class MessageType(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"
    VOICE = "voice"
    STICKER = "sticker"
    ANIMATION = "animation"
    LOCATION = "location"
    CONTACT = "contact"
    POLL = "poll"
    SERVICE = "service"  # 入群、置顶、改名等系统事件

    @property
    def is_media(self) -> bool:
        return self not in (MessageType.TEXT, MessageType.SERVICE)


class SummaryFormat(str, Enum):
    BRIEF = "brief"
    DETAILED = "detailed"
    BULLET_POINTS = "bullet_points"


class SummaryCommand(str, Enum):
    """摘要相关的用户命令（替代回调字符串的解析）"""

    GENERATE = "generate"
    REGENERATE = "regenerate"
