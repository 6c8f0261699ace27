"""追踪会话状态机

状态: none -> active -> stopped -> summarized
                   \\-> expired      (超时清理)
      active -> summarized          (追踪中直接请求摘要)
summarized 和 expired 为终态。
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.core.config import settings
from chatdigest.core.exceptions import AlreadyActive, NotActive, SessionLimitExceeded, StorageFailure
from chatdigest.models.enums import SessionStatus
from chatdigest.models.tracking_session import TrackingSession
from chatdigest.schemas.tracking import StartTrackingRequest, TrackingStats, TrackingStatus
from chatdigest.services.repositories.chat_repository import ChatRepository
from chatdigest.services.repositories.session_repository import SessionRepository

logger = logging.getLogger(__name__)


class TrackingSessionManager:
    def __init__(
        self,
        session: AsyncSession,
        *,
        inactivity_timeout: timedelta | None = None,
        max_session_duration: timedelta | None = None,
        max_active_sessions_per_user: int | None = None,
    ) -> None:
        self._session = session
        self._sessions = SessionRepository(session)
        self._chats = ChatRepository(session)
        self._inactivity_timeout = inactivity_timeout or timedelta(hours=settings.session_inactivity_timeout_hours)
        self._max_duration = max_session_duration or timedelta(hours=settings.max_session_duration_hours)
        self._max_active = (
            max_active_sessions_per_user
            if max_active_sessions_per_user is not None
            else settings.max_active_sessions_per_user
        )

    async def start_tracking(self, request: StartTrackingRequest) -> TrackingSession:
        user_id, chat_id = request.user_id, request.chat_id
        logger.info(f"开始追踪: user={user_id}, chat={chat_id}")

        existing = await self._sessions.get_active(user_id=user_id, chat_id=chat_id)
        if existing is not None:
            raise AlreadyActive(
                "User is already tracking messages in this chat",
                {"session_id": existing.id},
            )

        active_count = await self._sessions.count_active_for_user(user_id)
        if active_count >= self._max_active:
            raise SessionLimitExceeded(
                f"User has reached the maximum of {self._max_active} active tracking sessions",
                {"active_sessions": active_count},
            )

        try:
            await self._chats.ensure(chat_id=chat_id, title=request.chat_title, chat_type=request.chat_type)
            tracking_session = await self._sessions.create(
                user_id=user_id,
                chat_id=chat_id,
                started_at=datetime.utcnow(),
                username=request.username,
                first_name=request.first_name,
            )
        except IntegrityError as exc:
            # 并发 start 时由部分唯一索引兜底
            await self._session.rollback()
            logger.info(f"并发创建追踪会话冲突: user={user_id}, chat={chat_id}")
            raise AlreadyActive("User is already tracking messages in this chat") from exc
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.error(f"创建追踪会话失败: {exc}", exc_info=True)
            raise StorageFailure("Failed to start tracking session") from exc

        logger.info(f"追踪会话已创建: {tracking_session.id}")
        return tracking_session

    async def stop_tracking(self, user_id: int, chat_id: int) -> TrackingStats:
        logger.info(f"停止追踪: user={user_id}, chat={chat_id}")

        tracking_session = await self._sessions.get_active(user_id=user_id, chat_id=chat_id)
        if tracking_session is None:
            raise NotActive("No active tracking session found")

        try:
            await self._sessions.end(tracking_session, status=SessionStatus.STOPPED, ended_at=datetime.utcnow())
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.error(f"停止追踪会话失败: {exc}", exc_info=True)
            raise StorageFailure("Failed to stop tracking session") from exc

        logger.info(f"追踪会话已停止: {tracking_session.id}")
        return self.stats_for(tracking_session)

    async def get_current_or_recent_session(self, user_id: int, chat_id: int) -> TrackingSession | None:
        active = await self._sessions.get_active(user_id=user_id, chat_id=chat_id)
        if active is not None:
            return active
        return await self._sessions.get_most_recent_stopped(user_id=user_id, chat_id=chat_id)

    async def get_status(self, user_id: int, chat_id: int) -> TrackingStatus:
        tracking_session = await self._sessions.get_active(user_id=user_id, chat_id=chat_id)
        if tracking_session is None:
            return TrackingStatus(is_tracking=False)

        return TrackingStatus(
            is_tracking=True,
            session_id=tracking_session.id,
            started_at=tracking_session.started_at,
            messages_collected=tracking_session.total_messages_collected,
            meaningful_messages=tracking_session.meaningful_messages_collected,
            participants=tracking_session.unique_participants,
            duration_minutes=tracking_session.duration_minutes(),
        )

    async def expire_stale_sessions(self, now: datetime | None = None) -> int:
        """把长时间无活动或超过最长时长的 active 会话标记为 expired

        可重复执行，已过期的会话不会再被处理。
        """
        now = now or datetime.utcnow()
        stale = await self._sessions.list_stale_active(
            inactive_before=now - self._inactivity_timeout,
            started_before=now - self._max_duration,
        )

        expired = 0
        for tracking_session in stale:
            session_id = tracking_session.id
            try:
                await self._sessions.end(tracking_session, status=SessionStatus.EXPIRED, ended_at=now)
                expired += 1
                logger.info(f"追踪会话已过期: {session_id}")
            except SQLAlchemyError as e:
                await self._session.rollback()
                logger.error(f"标记会话 {session_id} 过期失败: {e}", exc_info=True)

        if expired:
            logger.info(f"本次清理共过期 {expired} 个追踪会话")
        return expired

    @staticmethod
    def stats_for(tracking_session: TrackingSession) -> TrackingStats:
        return TrackingStats(
            session_id=tracking_session.id,
            message_count=tracking_session.total_messages_collected,
            meaningful_count=tracking_session.meaningful_messages_collected,
            participant_count=tracking_session.unique_participants,
            duration_minutes=tracking_session.duration_minutes(),
        )
