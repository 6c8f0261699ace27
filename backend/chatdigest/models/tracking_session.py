from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, Integer, String, text

from chatdigest.core.db import Base
from chatdigest.models.enums import SessionStatus


class TrackingSession(Base):
    """一次追踪记录：某个用户在某个聊天中的消息采集周期"""

    __tablename__ = "tracking_sessions"
    __table_args__ = (
        # 每个 (user_id, chat_id) 最多只有一个 active 会话
        Index(
            "uq_tracking_sessions_active",
            "user_id",
            "chat_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_tracking_sessions_chat_status", "chat_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, nullable=False, index=True)
    chat_id = Column(BigInteger, nullable=False)
    status = Column(String(20), default=SessionStatus.ACTIVE.value, nullable=False)

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    last_message_at = Column(DateTime, nullable=True)

    total_messages_collected = Column(Integer, default=0, nullable=False)
    meaningful_messages_collected = Column(Integer, default=0, nullable=False)
    unique_participants = Column(Integer, default=0, nullable=False)

    summary_generated = Column(Boolean, default=False, nullable=False)
    summary_generated_at = Column(DateTime, nullable=True)
    summary_id = Column(Integer, nullable=True)

    username = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)

    @property
    def session_status(self) -> SessionStatus:
        return SessionStatus(self.status)

    def duration_minutes(self, now: datetime | None = None) -> int:
        end = self.ended_at or now or datetime.utcnow()
        return max(0, int((end - self.started_at).total_seconds() // 60))
