from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from chatdigest.core.db import Base
from chatdigest.models.enums import MessageType


class TrackedMessage(Base):
    __tablename__ = "tracked_messages"
    __table_args__ = (
        # EligibilityEvaluator 每次调度都会按 chat + 时间范围计数
        Index("ix_tracked_messages_chat_time", "chat_id", "message_timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tracking_session_id = Column(
        Integer,
        ForeignKey("tracking_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chat_id = Column(BigInteger, nullable=False)
    message_id = Column(BigInteger, nullable=True)
    author_id = Column(BigInteger, nullable=False)
    author_name = Column(String(255), nullable=True)
    content = Column(Text, nullable=False, default="")
    message_type = Column(String(20), default=MessageType.TEXT.value, nullable=False)
    message_timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    tracking_recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    is_bot_message = Column(Boolean, default=False, nullable=False)
    is_command = Column(Boolean, default=False, nullable=False)
    is_meaningful = Column(Boolean, default=True, nullable=False)
    contains_question = Column(Boolean, default=False, nullable=False)
    contains_url = Column(Boolean, default=False, nullable=False)
