from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.models.enums import SessionStatus
from chatdigest.models.tracking_session import TrackingSession


class SessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, session_id: int) -> TrackingSession | None:
        return await self._session.get(TrackingSession, session_id)

    async def get_active(self, *, user_id: int, chat_id: int) -> TrackingSession | None:
        result = await self._session.execute(
            select(TrackingSession)
            .where(TrackingSession.user_id == user_id)
            .where(TrackingSession.chat_id == chat_id)
            .where(TrackingSession.status == SessionStatus.ACTIVE.value)
            .order_by(TrackingSession.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_most_recent_stopped(self, *, user_id: int, chat_id: int) -> TrackingSession | None:
        result = await self._session.execute(
            select(TrackingSession)
            .where(TrackingSession.user_id == user_id)
            .where(TrackingSession.chat_id == chat_id)
            .where(TrackingSession.status == SessionStatus.STOPPED.value)
            .order_by(TrackingSession.ended_at.desc(), TrackingSession.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_active_for_chat(self, chat_id: int) -> Sequence[TrackingSession]:
        result = await self._session.execute(
            select(TrackingSession)
            .where(TrackingSession.chat_id == chat_id)
            .where(TrackingSession.status == SessionStatus.ACTIVE.value)
            .order_by(TrackingSession.id.asc())
        )
        return result.scalars().all()

    async def count_active_for_user(self, user_id: int) -> int:
        result = await self._session.execute(
            select(func.count(TrackingSession.id))
            .where(TrackingSession.user_id == user_id)
            .where(TrackingSession.status == SessionStatus.ACTIVE.value)
        )
        return int(result.scalar() or 0)

    async def list_stale_active(
        self,
        *,
        inactive_before: datetime,
        started_before: datetime,
    ) -> Sequence[TrackingSession]:
        """查找超时未活动或超过最长时长的 active 会话"""
        last_activity = func.coalesce(TrackingSession.last_message_at, TrackingSession.started_at)
        result = await self._session.execute(
            select(TrackingSession)
            .where(TrackingSession.status == SessionStatus.ACTIVE.value)
            .where(or_(last_activity < inactive_before, TrackingSession.started_at < started_before))
            .order_by(TrackingSession.id.asc())
        )
        return result.scalars().all()

    async def create(
        self,
        *,
        user_id: int,
        chat_id: int,
        started_at: datetime,
        username: str | None = None,
        first_name: str | None = None,
    ) -> TrackingSession:
        record = TrackingSession(
            user_id=user_id,
            chat_id=chat_id,
            status=SessionStatus.ACTIVE.value,
            started_at=started_at,
            username=username,
            first_name=first_name,
        )
        self._session.add(record)
        # IntegrityError（并发重复 start）由调用方处理
        await self._session.commit()
        await self._session.refresh(record)
        return record

    async def end(self, record: TrackingSession, *, status: SessionStatus, ended_at: datetime) -> TrackingSession:
        record.status = status.value
        record.ended_at = ended_at
        await self._session.commit()
        return record

    async def mark_summarized(self, record: TrackingSession, *, summary_id: int, at: datetime) -> TrackingSession:
        record.status = SessionStatus.SUMMARIZED.value
        record.summary_generated = True
        record.summary_generated_at = at
        record.summary_id = summary_id
        if record.ended_at is None:
            record.ended_at = at
        await self._session.commit()
        return record
