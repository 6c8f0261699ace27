from datetime import datetime
from typing import Any, List

from pydantic import AliasChoices, BaseModel, Field, field_validator

from chatdigest.models.enums import SummaryFormat, SummaryType


class SummaryPreferences(BaseModel):
    language: str = "en"
    format: SummaryFormat = SummaryFormat.DETAILED
    include_usernames: bool = True
    include_timestamps: bool = False
    focus_on_decisions: bool = True
    focus_on_questions: bool = True
    max_length: int | None = Field(None, description="摘要最大 token 数")


class SummaryItem(BaseModel):
    id: int
    chat_id: int
    tracking_session_id: int | None = None
    summary_type: str
    content: str
    message_count: int
    meaningful_message_count: int
    start_time: datetime
    end_time: datetime
    metadata: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("summary_metadata", "metadata")
    )
    created_at: datetime
    status: str
    delivered_to_user: bool

    class Config:
        from_attributes = True


class SummaryListResponse(BaseModel):
    items: List[SummaryItem]


class SchedulerTriggerRequest(BaseModel):
    summary_type: SummaryType = Field(SummaryType.DAILY, alias="summaryType")

    @field_validator("summary_type")
    @classmethod
    def check_scheduled(cls, value: SummaryType) -> SummaryType:
        if not value.is_scheduled:
            raise ValueError("summaryType must be one of hourly, daily, weekly, monthly")
        return value

    class Config:
        populate_by_name = True


class SchedulerRunResponse(BaseModel):
    success: bool
    summaryType: SummaryType
    processed: int
    skipped: int
    errors: List[str]
    duration: int
