"""消息采集：把聊天消息写入正在进行的追踪会话"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.core.config import settings
from chatdigest.models.enums import MessageType, SessionStatus
from chatdigest.models.tracked_message import TrackedMessage
from chatdigest.schemas.tracking import InboundMessage
from chatdigest.services.repositories.message_repository import MessageRepository
from chatdigest.services.repositories.session_repository import SessionRepository

logger = logging.getLogger(__name__)

# 单独出现时没有信息量的回复
TRIVIAL_REPLIES = frozenset(
    ["ok", "okay", "k", "kk", "lol", "lmao", "haha", "ha", "yes", "no", "yep", "nope", "thx", "ty", "+1", "ㅋㅋ", "ㅎㅎ", "ㅠㅠ", "네", "응", "好", "嗯", "哈哈"]
)
QUESTION_RE = re.compile(r"[?？]")
URL_RE = re.compile(r"https?://\S+")


@dataclass(frozen=True)
class MessageAnalysis:
    is_meaningful: bool
    is_command: bool
    contains_question: bool
    contains_url: bool
    contains_media: bool
    word_count: int


class MessageCollector:
    def __init__(
        self,
        session: AsyncSession,
        *,
        min_message_length: int | None = None,
        max_messages_per_session: int | None = None,
    ) -> None:
        self._session = session
        self._messages = MessageRepository(session)
        self._sessions = SessionRepository(session)
        self._min_length = min_message_length if min_message_length is not None else settings.min_message_length
        self._max_messages = (
            max_messages_per_session if max_messages_per_session is not None else settings.max_messages_per_session
        )

    def analyze_message(self, message: InboundMessage) -> MessageAnalysis:
        content = (message.content or "").strip()
        is_command = message.is_command or content.startswith("/")
        words = content.split()

        is_meaningful = True
        if not content:
            is_meaningful = False
        elif message.message_type is MessageType.SERVICE:
            is_meaningful = False
        elif message.is_bot or is_command:
            is_meaningful = False
        elif len(content) < self._min_length:
            is_meaningful = False
        elif len(words) == 1 and content.lower() in TRIVIAL_REPLIES:
            is_meaningful = False

        return MessageAnalysis(
            is_meaningful=is_meaningful,
            is_command=is_command,
            contains_question=bool(QUESTION_RE.search(content)),
            contains_url=bool(URL_RE.search(content)),
            contains_media=message.message_type.is_media,
            word_count=len(words),
        )

    async def record(self, session_id: int, message: InboundMessage) -> TrackedMessage | None:
        """把消息写入指定会话；会话不存在或不是 active 时直接忽略"""
        tracking_session = await self._sessions.get(session_id)
        if tracking_session is None or tracking_session.status != SessionStatus.ACTIVE.value:
            return None
        if tracking_session.chat_id != message.chat_id:
            logger.warning(f"消息所属聊天 {message.chat_id} 与会话 {session_id} 不一致，已忽略")
            return None

        if tracking_session.total_messages_collected >= self._max_messages:
            logger.info(f"会话 {session_id} 达到消息上限 {self._max_messages}，标记为过期")
            await self._sessions.end(tracking_session, status=SessionStatus.EXPIRED, ended_at=datetime.utcnow())
            return None

        analysis = self.analyze_message(message)
        is_new_author = not await self._messages.has_author(
            tracking_session_id=session_id, author_id=message.author_id
        )

        tracking_session.total_messages_collected += 1
        if analysis.is_meaningful:
            tracking_session.meaningful_messages_collected += 1
        if is_new_author:
            tracking_session.unique_participants += 1
        tracking_session.last_message_at = message.timestamp

        return await self._messages.add_message(
            tracking_session_id=session_id,
            chat_id=message.chat_id,
            message_id=message.message_id,
            author_id=message.author_id,
            author_name=message.author_name,
            content=message.content or "",
            message_type=message.message_type.value,
            message_timestamp=message.timestamp,
            is_bot_message=message.is_bot,
            is_command=analysis.is_command,
            is_meaningful=analysis.is_meaningful,
            contains_question=analysis.contains_question,
            contains_url=analysis.contains_url,
        )

    async def collect(self, message: InboundMessage) -> list[TrackedMessage]:
        """写入该聊天中所有 active 会话；未追踪的聊天不产生任何记录"""
        active_sessions = await self._sessions.list_active_for_chat(message.chat_id)
        if not active_sessions:
            return []

        recorded: list[TrackedMessage] = []
        for tracking_session in active_sessions:
            tracked = await self.record(tracking_session.id, message)
            if tracked is not None:
                recorded.append(tracked)
        return recorded

    async def count_since(self, chat_id: int, start: datetime, end: datetime) -> int:
        """统计 [start, end] 内的有效消息数"""
        return await self._messages.count_in_range(chat_id=chat_id, start=start, end=end, meaningful_only=True)

    async def list_session_messages(self, session_id: int, *, meaningful_only: bool = False) -> list[TrackedMessage]:
        return list(await self._messages.list_for_session(session_id, meaningful_only=meaningful_only))

    async def list_chat_messages(
        self,
        chat_id: int,
        start: datetime,
        end: datetime,
        *,
        meaningful_only: bool = False,
    ) -> list[TrackedMessage]:
        return list(
            await self._messages.list_for_chat(
                chat_id=chat_id, start=start, end=end, meaningful_only=meaningful_only
            )
        )
