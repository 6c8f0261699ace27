from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.models.enums import SummaryStatus, SummaryType
from chatdigest.models.summary import ConversationSummary


class SummaryRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_summary(
        self,
        *,
        chat_id: int,
        summary_type: SummaryType,
        content: str,
        message_count: int,
        meaningful_message_count: int,
        start_time: datetime,
        end_time: datetime,
        metadata: dict[str, Any],
        tracking_session_id: int | None = None,
        user_id: int | None = None,
        status: SummaryStatus = SummaryStatus.COMPLETED,
    ) -> ConversationSummary:
        record = ConversationSummary(
            chat_id=chat_id,
            tracking_session_id=tracking_session_id,
            user_id=user_id,
            summary_type=summary_type.value,
            content=content,
            message_count=message_count,
            meaningful_message_count=meaningful_message_count,
            start_time=start_time,
            end_time=end_time,
            summary_metadata=metadata,
            created_at=datetime.utcnow(),
            status=status.value,
            delivered_to_user=False,
        )
        self._session.add(record)
        await self._session.commit()
        await self._session.refresh(record)
        return record

    async def get(self, summary_id: int) -> ConversationSummary | None:
        return await self._session.get(ConversationSummary, summary_id)

    async def most_recent_of_type(self, *, chat_id: int, summary_type: SummaryType) -> ConversationSummary | None:
        result = await self._session.execute(
            select(ConversationSummary)
            .where(ConversationSummary.chat_id == chat_id)
            .where(ConversationSummary.summary_type == summary_type.value)
            .order_by(ConversationSummary.created_at.desc(), ConversationSummary.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, *, limit: int = 20, chat_id: int | None = None) -> Sequence[ConversationSummary]:
        query = select(ConversationSummary)
        if chat_id is not None:
            query = query.where(ConversationSummary.chat_id == chat_id)
        result = await self._session.execute(
            query.order_by(ConversationSummary.created_at.desc(), ConversationSummary.id.desc()).limit(limit)
        )
        return result.scalars().all()

    async def mark_delivered(self, record: ConversationSummary) -> ConversationSummary:
        record.delivered_to_user = True
        record.delivery_timestamp = datetime.utcnow()
        await self._session.commit()
        return record
