"""定时摘要的资格判断"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.models.chat import TrackedChat
from chatdigest.models.enums import SummaryType
from chatdigest.services.message_collector import MessageCollector
from chatdigest.services.repositories.chat_repository import ChatRepository
from chatdigest.services.repositories.summary_repository import SummaryRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime


def summary_time_window(summary_type: SummaryType, now: datetime | None = None) -> TimeWindow:
    """定时摘要的回看窗口 [now - period, now]"""
    end = now or datetime.utcnow()
    return TimeWindow(start=end - summary_type.period, end=end)


def is_time_for_new_summary(last_created_at: datetime, summary_type: SummaryType, now: datetime) -> bool:
    return now - last_created_at >= summary_type.period


class EligibilityEvaluator:
    def __init__(self, session: AsyncSession) -> None:
        self._chats = ChatRepository(session)
        self._summaries = SummaryRepository(session)
        self._collector = MessageCollector(session)

    async def passes_recency_gate(self, chat_id: int, summary_type: SummaryType, now: datetime) -> bool:
        last_summary = await self._summaries.most_recent_of_type(chat_id=chat_id, summary_type=summary_type)
        if last_summary is None:
            return True
        return is_time_for_new_summary(last_summary.created_at, summary_type, now)

    async def get_eligible_chats(self, summary_type: SummaryType, now: datetime | None = None) -> list[TrackedChat]:
        if not summary_type.is_scheduled:
            raise ValueError("手动摘要不参与定时调度")

        now = now or datetime.utcnow()
        window = summary_time_window(summary_type, now)
        minimum = summary_type.minimum_messages

        candidates = await self._chats.list_subscribed(summary_type)
        eligible: list[TrackedChat] = []
        for chat in candidates:
            if not await self.passes_recency_gate(chat.chat_id, summary_type, now):
                logger.debug(f"聊天 {chat.chat_id} 在本周期内已有 {summary_type.value} 摘要，跳过")
                continue

            message_count = await self._collector.count_since(chat.chat_id, window.start, window.end)
            if message_count < minimum:
                logger.debug(f"聊天 {chat.chat_id} 消息数 {message_count} 低于下限 {minimum}，跳过")
                continue

            eligible.append(chat)

        logger.info(f"{summary_type.value} 摘要: {len(candidates)} 个候选聊天，{len(eligible)} 个符合条件")
        return eligible
