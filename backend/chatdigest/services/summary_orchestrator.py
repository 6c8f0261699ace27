"""摘要编排：取消息 -> 构建上下文 -> 调用 LLM -> 持久化 -> 更新会话 -> 清理消息

写入顺序保证失败时不会丢数据：
1. 摘要写入成功之前，不修改会话、不删除消息；
2. 会话标记为 summarized 成功之前，不删除消息；
3. 删除消息失败只记录日志，摘要保持有效。
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.core.config import settings
from chatdigest.core.exceptions import (
    AlreadySummarized,
    InsufficientMessages,
    LLMFailure,
    NotActive,
    StorageFailure,
)
from chatdigest.models.chat import TrackedChat
from chatdigest.models.enums import SessionStatus, SummaryCommand, SummaryFormat, SummaryType
from chatdigest.models.summary import ConversationSummary
from chatdigest.models.tracked_message import TrackedMessage
from chatdigest.models.tracking_session import TrackingSession
from chatdigest.schemas.summary import SummaryPreferences
from chatdigest.services.eligibility import TimeWindow, summary_time_window
from chatdigest.services.message_collector import MessageCollector
from chatdigest.services.prompt_builder import PromptContext, PromptMessage, select_recent_messages
from chatdigest.services.repositories.chat_repository import ChatRepository
from chatdigest.services.repositories.message_repository import MessageRepository
from chatdigest.services.repositories.session_repository import SessionRepository
from chatdigest.services.repositories.summary_repository import SummaryRepository
from chatdigest.services.summary_client import SummaryRequest, SummaryResult, get_summary_client
from chatdigest.services.tracking_manager import TrackingSessionManager

logger = logging.getLogger(__name__)


class ChatLockRegistry:
    """按聊天划分的进程内锁，手动摘要与定时摘要共用"""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, chat_id: int) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock


chat_locks = ChatLockRegistry()


@dataclass
class OrchestrationResult:
    summary: ConversationSummary
    message_count: int
    meaningful_count: int
    participant_count: int
    processing_time_ms: int
    omitted_messages: int = 0
    deleted_messages: int = 0


class SummaryOrchestrator:
    def __init__(
        self,
        session: AsyncSession,
        client=None,
        *,
        llm_timeout: float | None = None,
        max_transcript_chars: int | None = None,
        locks: ChatLockRegistry | None = None,
    ) -> None:
        self._session = session
        self._client = client or get_summary_client()
        self._llm_timeout = llm_timeout or settings.llm_timeout_seconds
        self._max_chars = max_transcript_chars or settings.summary_max_transcript_chars
        self._locks = locks or chat_locks
        self._collector = MessageCollector(session)
        self._messages = MessageRepository(session)
        self._sessions = SessionRepository(session)
        self._summaries = SummaryRepository(session)
        self._chats = ChatRepository(session)

    async def handle_command(
        self,
        command: SummaryCommand,
        *,
        user_id: int,
        chat_id: int,
        preferences: SummaryPreferences | None = None,
        summary_id: int | None = None,
    ) -> OrchestrationResult:
        if command is SummaryCommand.GENERATE:
            manager = TrackingSessionManager(self._session)
            tracking_session = await manager.get_current_or_recent_session(user_id, chat_id)
            if tracking_session is None:
                raise NotActive("No tracking session found to summarize")
            return await self.summarize_session(tracking_session, preferences)

        if command is SummaryCommand.REGENERATE:
            previous = await self._summaries.get(summary_id) if summary_id is not None else None
            if previous is None or previous.chat_id != chat_id:
                raise NotActive("No summary found to regenerate")
            if previous.tracking_session_id is not None:
                # 会话摘要生成后消息已清理，无法重新生成
                raise AlreadySummarized("Session summaries cannot be regenerated", {"summary_id": previous.id})
            chat = await self._chats.ensure(chat_id=chat_id)
            return await self.summarize_chat(
                chat,
                SummaryType(previous.summary_type),
                preferences,
                window=TimeWindow(start=previous.start_time, end=previous.end_time),
            )

        raise ValueError(f"未知的摘要命令: {command}")

    async def summarize_session(
        self,
        tracking_session: TrackingSession,
        preferences: SummaryPreferences | None = None,
    ) -> OrchestrationResult:
        """手动摘要：每个会话最多成功生成一次"""
        self._ensure_summarizable(tracking_session)

        session_id = tracking_session.id
        async with self._locks.get(tracking_session.chat_id):
            # 等锁期间可能已被其他请求摘要
            await self._session.refresh(tracking_session)
            self._ensure_summarizable(tracking_session)

            messages = await self._collector.list_session_messages(session_id)
            # 调用 LLM 期间会话仍可能写入新消息，清理时只删除已读取的这些
            last_message_id = max(message.id for message in messages) if messages else 0
            meaningful = [message for message in messages if message.is_meaningful]
            self._check_minimum(meaningful, SummaryType.MANUAL)

            chat = await self._chats.get(tracking_session.chat_id)
            summary, result, omitted = await self._generate_and_store(
                messages=messages,
                meaningful=meaningful,
                summary_type=SummaryType.MANUAL,
                chat_id=tracking_session.chat_id,
                chat=chat,
                preferences=preferences,
                start_time=messages[0].message_timestamp,
                end_time=messages[-1].message_timestamp,
                tracking_session=tracking_session,
            )
            summary_id = summary.id

            try:
                await self._sessions.mark_summarized(tracking_session, summary_id=summary_id, at=datetime.utcnow())
            except SQLAlchemyError as exc:
                # rollback 之后 ORM 对象全部过期，只使用之前取出的 id
                await self._session.rollback()
                logger.error(
                    f"摘要 {summary_id} 已保存，但会话 {session_id} 状态更新失败，保留消息: {exc}",
                    exc_info=True,
                )
                raise StorageFailure(
                    "Failed to mark session as summarized",
                    {"summary_id": summary_id, "session_id": session_id},
                ) from exc

            deleted = 0
            try:
                deleted = await self._messages.delete_for_session(session_id, up_to_id=last_message_id)
                logger.info(f"已清理会话 {session_id} 的 {deleted} 条消息")
            except SQLAlchemyError as e:
                await self._session.rollback()
                logger.warning(f"清理会话 {session_id} 的消息失败: {e}")
                await self._session.refresh(summary)

        logger.info(f"会话 {session_id} 摘要生成完成: {summary_id}")
        return OrchestrationResult(
            summary=summary,
            message_count=len(messages),
            meaningful_count=len(meaningful),
            participant_count=result.metadata.participant_count,
            processing_time_ms=result.metadata.processing_time_ms,
            omitted_messages=omitted,
            deleted_messages=deleted,
        )

    async def summarize_chat(
        self,
        chat: TrackedChat,
        summary_type: SummaryType,
        preferences: SummaryPreferences | None = None,
        *,
        window: TimeWindow | None = None,
        now: datetime | None = None,
    ) -> OrchestrationResult:
        """按时间窗口为聊天生成摘要（定时摘要与重新生成）"""
        window = window or summary_time_window(summary_type, now)

        async with self._locks.get(chat.chat_id):
            messages = await self._collector.list_chat_messages(chat.chat_id, window.start, window.end)
            meaningful = [message for message in messages if message.is_meaningful]
            self._check_minimum(meaningful, summary_type)

            summary, result, omitted = await self._generate_and_store(
                messages=messages,
                meaningful=meaningful,
                summary_type=summary_type,
                chat_id=chat.chat_id,
                chat=chat,
                preferences=preferences,
                start_time=window.start,
                end_time=window.end,
            )

        logger.info(f"聊天 {chat.chat_id} 的 {summary_type.value} 摘要生成完成: {summary.id}")
        return OrchestrationResult(
            summary=summary,
            message_count=len(messages),
            meaningful_count=len(meaningful),
            participant_count=result.metadata.participant_count,
            processing_time_ms=result.metadata.processing_time_ms,
            omitted_messages=omitted,
        )

    @staticmethod
    def _ensure_summarizable(tracking_session: TrackingSession) -> None:
        status = SessionStatus(tracking_session.status)
        if status is SessionStatus.SUMMARIZED or tracking_session.summary_generated:
            raise AlreadySummarized(
                "This tracking session has already been summarized",
                {"session_id": tracking_session.id, "summary_id": tracking_session.summary_id},
            )
        if status is SessionStatus.EXPIRED:
            raise NotActive("Tracking session has expired", {"session_id": tracking_session.id})

    @staticmethod
    def _check_minimum(meaningful: Sequence[TrackedMessage], summary_type: SummaryType) -> None:
        minimum = summary_type.minimum_messages
        if len(meaningful) < minimum:
            raise InsufficientMessages(
                f"Need at least {minimum} meaningful messages, found {len(meaningful)}",
                {"meaningful_count": len(meaningful), "minimum": minimum},
            )

    def _default_preferences(self, chat: TrackedChat | None) -> SummaryPreferences:
        if chat is None:
            return SummaryPreferences(language=settings.summary_default_language)
        return SummaryPreferences(language=chat.summary_language, format=SummaryFormat(chat.summary_format))

    async def _generate_and_store(
        self,
        *,
        messages: Sequence[TrackedMessage],
        meaningful: Sequence[TrackedMessage],
        summary_type: SummaryType,
        chat_id: int,
        chat: TrackedChat | None,
        preferences: SummaryPreferences | None,
        start_time: datetime,
        end_time: datetime,
        tracking_session: TrackingSession | None = None,
    ) -> tuple[ConversationSummary, SummaryResult, int]:
        preferences = preferences or self._default_preferences(chat)

        prompt_messages = [
            PromptMessage(
                author_id=message.author_id,
                author_name=message.author_name,
                content=message.content,
                timestamp=message.message_timestamp,
            )
            for message in meaningful
        ]
        kept, omitted = select_recent_messages(prompt_messages, preferences, self._max_chars)
        if omitted:
            logger.info(f"聊天 {chat_id} 对话过长，省略最早的 {omitted} 条消息")

        context = PromptContext(
            summary_type=summary_type,
            chat_title=chat.title if chat else None,
            chat_type=chat.chat_type if chat else "group",
            participant_count=len({message.author_id for message in messages}),
            duration_minutes=max(0, int((end_time - start_time).total_seconds() // 60)),
            start_time=start_time,
            end_time=end_time,
            total_messages=len(prompt_messages),
            omitted_messages=omitted,
        )

        try:
            result: SummaryResult = await asyncio.wait_for(
                self._client.generate_summary(SummaryRequest(messages=kept, preferences=preferences, context=context)),
                timeout=self._llm_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(f"聊天 {chat_id} 摘要生成超时（{self._llm_timeout}s）")
            raise LLMFailure(f"Summary generation timed out after {self._llm_timeout}s") from exc
        except Exception as exc:
            logger.error(f"聊天 {chat_id} 调用 LLM 失败: {exc}", exc_info=True)
            raise LLMFailure(f"Summary generation failed: {exc}") from exc

        metadata = {
            "llm_model": result.model,
            "processing_time_ms": result.metadata.processing_time_ms,
            "token_usage": result.metadata.token_usage,
            "token_count": result.metadata.token_usage.get("total_tokens", 0),
            "confidence_score": result.metadata.confidence,
            "key_participants": result.metadata.key_participants,
            "main_topics": result.metadata.main_topics,
            "sentiment": result.metadata.sentiment,
            "participant_count": result.metadata.participant_count,
            "omitted_messages": omitted,
            "language": preferences.language,
            "include_usernames": preferences.include_usernames,
            "focus_on_decisions": preferences.focus_on_decisions,
            "focus_on_questions": preferences.focus_on_questions,
        }

        try:
            summary = await self._summaries.create_summary(
                chat_id=chat_id,
                summary_type=summary_type,
                content=result.summary,
                message_count=len(messages),
                meaningful_message_count=len(meaningful),
                start_time=start_time,
                end_time=end_time,
                metadata=metadata,
                tracking_session_id=tracking_session.id if tracking_session else None,
                user_id=tracking_session.user_id if tracking_session else None,
            )
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.error(f"保存聊天 {chat_id} 的摘要失败: {exc}", exc_info=True)
            raise StorageFailure("Failed to save summary") from exc

        return summary, result, omitted
