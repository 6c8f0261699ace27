"""追踪命令 Schema"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from chatdigest.models.enums import MessageType, SummaryCommand
from chatdigest.schemas.summary import SummaryPreferences


class InboundMessage(BaseModel):
    """采集到的一条聊天消息"""

    chat_id: int = Field(..., description="聊天 ID")
    author_id: int = Field(..., description="发送者 ID")
    content: str = Field("", description="文本内容")
    message_type: MessageType = Field(MessageType.TEXT, description="消息类型")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="消息时间（UTC）")
    message_id: int | None = Field(None, description="平台消息 ID")
    author_name: str | None = Field(None, description="发送者显示名")
    is_bot: bool = Field(False, description="是否为机器人发送")
    is_command: bool = Field(False, description="是否为机器人命令")


class StartTrackingRequest(BaseModel):
    user_id: int
    chat_id: int
    username: str | None = None
    first_name: str | None = None
    chat_title: str | None = None
    chat_type: str | None = None


class StopTrackingRequest(BaseModel):
    user_id: int
    chat_id: int


class ManualSummaryRequest(BaseModel):
    user_id: int
    chat_id: int
    command: SummaryCommand = SummaryCommand.GENERATE
    summary_id: int | None = Field(None, description="重新生成时指定的摘要 ID")
    preferences: SummaryPreferences | None = None


class TrackingStats(BaseModel):
    session_id: int
    message_count: int
    meaningful_count: int
    participant_count: int
    duration_minutes: int


class TrackingStatus(BaseModel):
    is_tracking: bool
    session_id: int | None = None
    started_at: datetime | None = None
    messages_collected: int | None = None
    meaningful_messages: int | None = None
    participants: int | None = None
    duration_minutes: int | None = None


class CommandResult(BaseModel):
    """命令处理结果，由调用方渲染为聊天消息"""

    success: bool
    code: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
