from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import Select, case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.models.tracked_message import TrackedMessage


def first_rows_per_message(
    *,
    chat_id: int,
    start: datetime,
    end: datetime,
    meaningful_only: bool,
) -> Select:
    """同一条聊天消息在每个 active 会话中各存一行，这里每条消息只取 id 最小的一行

    有 message_id 时按 message_id 去重，否则按 (author_id, message_timestamp, content) 去重。
    """
    without_id = TrackedMessage.message_id.is_(None)
    query = (
        select(func.min(TrackedMessage.id))
        .where(TrackedMessage.chat_id == chat_id)
        .where(TrackedMessage.message_timestamp >= start)
        .where(TrackedMessage.message_timestamp <= end)
    )
    if meaningful_only:
        query = query.where(TrackedMessage.is_meaningful.is_(True))
    return query.group_by(
        TrackedMessage.message_id,
        case((without_id, TrackedMessage.author_id)),
        case((without_id, TrackedMessage.message_timestamp)),
        case((without_id, TrackedMessage.content)),
    )

class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add_message(
        self,
        *,
        tracking_session_id: int,
        chat_id: int,
        message_id: int | None,
        author_id: int,
        author_name: str | None,
        content: str,
        message_type: str,
        message_timestamp: datetime,
        is_bot_message: bool,
        is_command: bool,
        is_meaningful: bool,
        contains_question: bool,
        contains_url: bool,
    ) -> TrackedMessage:
        message = TrackedMessage(
            tracking_session_id=tracking_session_id,
            chat_id=chat_id,
            message_id=message_id,
            author_id=author_id,
            author_name=author_name,
            content=content,
            message_type=message_type,
            message_timestamp=message_timestamp,
            tracking_recorded_at=datetime.utcnow(),
            is_bot_message=is_bot_message,
            is_command=is_command,
            is_meaningful=is_meaningful,
            contains_question=contains_question,
            contains_url=contains_url,
        )
        self._session.add(message)
        # 同一事务中对会话计数的修改一起提交
        await self._session.commit()
        return message

    async def has_author(self, *, tracking_session_id: int, author_id: int) -> bool:
        result = await self._session.execute(
            select(TrackedMessage.id)
            .where(TrackedMessage.tracking_session_id == tracking_session_id)
            .where(TrackedMessage.author_id == author_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_for_session(
        self,
        tracking_session_id: int,
        *,
        meaningful_only: bool = False,
    ) -> Sequence[TrackedMessage]:
        query = select(TrackedMessage).where(TrackedMessage.tracking_session_id == tracking_session_id)
        if meaningful_only:
            query = query.where(TrackedMessage.is_meaningful.is_(True))
        result = await self._session.execute(
            query.order_by(TrackedMessage.message_timestamp.asc(), TrackedMessage.id.asc())
        )
        return result.scalars().all()

    async def list_for_chat(
        self,
        *,
        chat_id: int,
        start: datetime,
        end: datetime,
        meaningful_only: bool = False,
    ) -> Sequence[TrackedMessage]:
        first_ids = first_rows_per_message(chat_id=chat_id, start=start, end=end, meaningful_only=meaningful_only)
        result = await self._session.execute(
            select(TrackedMessage)
            .where(TrackedMessage.id.in_(first_ids.scalar_subquery()))
            .order_by(TrackedMessage.message_timestamp.asc(), TrackedMessage.id.asc())
        )
        return result.scalars().all()

    async def count_in_range(
        self,
        *,
        chat_id: int,
        start: datetime,
        end: datetime,
        meaningful_only: bool = True,
    ) -> int:
        first_ids = first_rows_per_message(chat_id=chat_id, start=start, end=end, meaningful_only=meaningful_only)
        result = await self._session.execute(select(func.count()).select_from(first_ids.subquery()))
        return int(result.scalar() or 0)

    async def count_for_session(self, tracking_session_id: int) -> int:
        result = await self._session.execute(
            select(func.count(TrackedMessage.id)).where(TrackedMessage.tracking_session_id == tracking_session_id)
        )
        return int(result.scalar() or 0)

    async def delete_for_session(self, tracking_session_id: int, *, up_to_id: int | None = None) -> int:
        """删除会话的消息；指定 up_to_id 时只删除 id 不大于它的消息"""
        query = delete(TrackedMessage).where(TrackedMessage.tracking_session_id == tracking_session_id)
        if up_to_id is not None:
            query = query.where(TrackedMessage.id <= up_to_id)
        result = await self._session.execute(query)
        await self._session.commit()
        return result.rowcount or 0
