from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, String

from chatdigest.core.db import Base
from chatdigest.models.enums import SummaryFormat, SummaryType


class TrackedChat(Base):
    """聊天级别的摘要设置"""

    __tablename__ = "tracked_chats"

    chat_id = Column(BigInteger, primary_key=True)
    title = Column(String(255), nullable=True)
    chat_type = Column(String(50), default="group", nullable=False)  # private, group, supergroup, channel
    is_active = Column(Boolean, default=True, nullable=False)

    # 订阅的定时摘要类型，例如 ["daily", "weekly"]
    summary_frequencies = Column(JSON, default=list, nullable=False)
    send_summaries = Column(Boolean, default=True, nullable=False)
    summary_language = Column(String(20), default="en", nullable=False)
    summary_format = Column(String(20), default=SummaryFormat.DETAILED.value, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def subscribes_to(self, summary_type: SummaryType) -> bool:
        return summary_type.value in (self.summary_frequencies or [])
