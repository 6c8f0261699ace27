"""聊天设置 Schema"""

from datetime import datetime

from pydantic import BaseModel, Field

from chatdigest.models.enums import SummaryFormat, SummaryType


class ChatSettingsUpdate(BaseModel):
    title: str | None = Field(None, description="聊天标题")
    is_active: bool | None = Field(None, description="是否启用定时摘要")
    summary_frequencies: list[SummaryType] | None = Field(None, description="订阅的定时摘要类型")
    send_summaries: bool | None = Field(None, description="是否把定时摘要发送到聊天")
    summary_language: str | None = Field(None, description="摘要语言")
    summary_format: SummaryFormat | None = Field(None, description="摘要格式")


class ChatResponse(BaseModel):
    chat_id: int
    title: str | None = None
    chat_type: str
    is_active: bool
    summary_frequencies: list[str]
    send_summaries: bool
    summary_language: str
    summary_format: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
