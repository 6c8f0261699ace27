"""定时摘要批处理

批次之间串行并间隔固定时间，批次内部并发（并发数 = 批大小），
单个聊天失败只记录错误，不影响同批次的其他聊天。
"""

import asyncio
import html
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatdigest.core.config import settings
from chatdigest.core.db import get_sessionmaker
from chatdigest.core.exceptions import InsufficientMessages, SchedulerDisabled
from chatdigest.models.chat import TrackedChat
from chatdigest.models.enums import SummaryType
from chatdigest.services.eligibility import EligibilityEvaluator
from chatdigest.services.repositories.chat_repository import ChatRepository
from chatdigest.services.repositories.summary_repository import SummaryRepository
from chatdigest.services.summary_client import get_summary_client
from chatdigest.services.summary_orchestrator import OrchestrationResult, SummaryOrchestrator
from chatdigest.services.telegram_notifier import MAX_MESSAGE_LENGTH, get_telegram_notifier

logger = logging.getLogger(__name__)

SUMMARY_TYPE_EMOJI = {
    SummaryType.HOURLY: "⏰",
    SummaryType.DAILY: "📅",
    SummaryType.WEEKLY: "📊",
    SummaryType.MONTHLY: "📈",
    SummaryType.MANUAL: "📋",
}

_PROCESSED = "processed"
_SKIPPED = "skipped"


@dataclass
class SchedulerRunResult:
    processed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0


def chunk(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def should_send_summary_to_chat(chat: TrackedChat, summary_type: SummaryType) -> bool:
    # 每小时摘要太频繁，不自动发送
    if summary_type is SummaryType.HOURLY:
        return False
    return bool(chat.send_summaries)


def escape_within(text: str, limit: int) -> str:
    """HTML 转义并保证结果不超过 limit 个字符，只在原文上截断，不会切开实体"""
    escaped = html.escape(text)
    while len(escaped) > limit and text:
        text = text[: max(0, len(text) - (len(escaped) - limit) - 1)]
        escaped = html.escape(text) + "…"
    return escaped


def format_summary_message(summary_type: SummaryType, result: OrchestrationResult) -> str:
    metadata = result.summary.summary_metadata or {}
    header = f"{SUMMARY_TYPE_EMOJI[summary_type]} <b>{summary_type.value.upper()} SUMMARY</b>\n\n"
    footer = (
        f"\n\n---\n"
        f"📊 <b>Statistics:</b>\n"
        f"• Messages: {result.message_count}\n"
        f"• Participants: {result.participant_count}\n"
        f"• Sentiment: {metadata.get('sentiment', 'neutral')}"
    )
    # 截断放在转义之前，避免切开 HTML 实体或标签
    content = escape_within(result.summary.content, MAX_MESSAGE_LENGTH - len(header) - len(footer))
    return header + content + footer


class BatchScheduler:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        client=None,
        notifier=None,
        *,
        enabled: bool | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
        chat_timeout_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_maker = session_maker or get_sessionmaker()
        self._client = client or get_summary_client()
        self._notifier = notifier or get_telegram_notifier()
        self._enabled = settings.scheduler_enabled if enabled is None else enabled
        self._batch_size = max(1, batch_size or settings.scheduler_batch_size)
        self._batch_delay = (
            settings.scheduler_batch_delay_seconds if batch_delay_seconds is None else batch_delay_seconds
        )
        self._chat_timeout = chat_timeout_seconds or settings.scheduler_chat_timeout_seconds
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def run(self, summary_type: SummaryType, now: datetime | None = None) -> SchedulerRunResult:
        if not self._enabled:
            raise SchedulerDisabled("Scheduler is disabled")
        if not summary_type.is_scheduled:
            raise ValueError("手动摘要不参与定时调度")

        started = time.monotonic()
        now = now or datetime.utcnow()
        result = SchedulerRunResult()
        logger.info(f"开始处理 {summary_type.value} 定时摘要...")

        chat_ids: list[int] = []
        try:
            async with self._session_maker() as session:
                chats = await EligibilityEvaluator(session).get_eligible_chats(summary_type, now)
                chat_ids = [chat.chat_id for chat in chats]
        except Exception as e:
            logger.error(f"获取符合条件的聊天失败: {e}", exc_info=True)
            result.errors.append(f"Summary processing failed: {e}")

        batches = chunk(chat_ids, self._batch_size)
        for index, batch in enumerate(batches, 1):
            logger.info(f"处理第 {index}/{len(batches)} 批，共 {len(batch)} 个聊天")
            outcomes = await asyncio.gather(
                *(self._process_chat_isolated(chat_id, summary_type, now) for chat_id in batch)
            )
            for outcome in outcomes:
                if outcome == _PROCESSED:
                    result.processed += 1
                elif outcome == _SKIPPED:
                    result.skipped += 1
                else:
                    result.errors.append(outcome)

            # 批次之间等待，避免触发 LLM 与 Telegram 的限流
            if index < len(batches):
                await self._sleep(self._batch_delay)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"{summary_type.value} 定时摘要完成: 成功 {result.processed}，跳过 {result.skipped}，"
            f"失败 {len(result.errors)}，耗时 {result.duration_ms}ms"
        )
        return result

    async def _process_chat_isolated(self, chat_id: int, summary_type: SummaryType, now: datetime) -> str:
        """处理单个聊天，所有异常在这里收敛为错误信息"""
        try:
            await asyncio.wait_for(self._process_chat(chat_id, summary_type, now), timeout=self._chat_timeout)
        except InsufficientMessages as e:
            logger.info(f"聊天 {chat_id} 消息不足，跳过: {e}")
            return _SKIPPED
        except asyncio.TimeoutError:
            message = f"Failed to process chat {chat_id}: timed out after {self._chat_timeout}s"
            logger.error(message)
            return message
        except Exception as e:
            message = f"Failed to process chat {chat_id}: {e}"
            logger.error(message, exc_info=True)
            return message
        logger.info(f"聊天 {chat_id} 的 {summary_type.value} 摘要处理完成")
        return _PROCESSED

    async def _process_chat(self, chat_id: int, summary_type: SummaryType, now: datetime) -> None:
        async with self._session_maker() as session:
            chat = await ChatRepository(session).get(chat_id)
            if chat is None:
                raise LookupError(f"chat {chat_id} not found")

            orchestrator = SummaryOrchestrator(session, self._client)
            outcome = await orchestrator.summarize_chat(chat, summary_type, now=now)

            if should_send_summary_to_chat(chat, summary_type):
                await self._deliver(session, chat, summary_type, outcome)

    async def _deliver(
        self,
        session: AsyncSession,
        chat: TrackedChat,
        summary_type: SummaryType,
        outcome: OrchestrationResult,
    ) -> None:
        text = format_summary_message(summary_type, outcome)
        chat_id, summary_id = chat.chat_id, outcome.summary.id
        try:
            sent = await self._notifier.send(chat_id, text, parse_mode="HTML")
        except Exception as e:
            logger.error(f"发送摘要到聊天 {chat_id} 失败: {e}")
            return

        if not sent:
            logger.warning(f"摘要 {summary_id} 未能发送到聊天 {chat_id}")
            return

        try:
            await SummaryRepository(session).mark_delivered(outcome.summary)
        except Exception as e:
            await session.rollback()
            logger.error(f"更新摘要 {summary_id} 发送状态失败: {e}")
