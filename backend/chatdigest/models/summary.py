from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Index, Integer, String, Text

from chatdigest.core.db import Base
from chatdigest.models.enums import SummaryStatus


class ConversationSummary(Base):
    __tablename__ = "conversation_summaries"
    __table_args__ = (
        # 用于查询某个聊天最近一次同类型摘要
        Index("ix_conversation_summaries_chat_type_created", "chat_id", "summary_type", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(BigInteger, nullable=False, index=True)
    tracking_session_id = Column(Integer, nullable=True, index=True)
    user_id = Column(BigInteger, nullable=True)
    summary_type = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    message_count = Column(Integer, nullable=False)
    meaningful_message_count = Column(Integer, nullable=False, default=0)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    # "metadata" 是 declarative 的保留属性名，列名保持不变
    summary_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    status = Column(String(20), default=SummaryStatus.COMPLETED.value, nullable=False)
    delivered_to_user = Column(Boolean, default=False, nullable=False)
    delivery_timestamp = Column(DateTime, nullable=True)
