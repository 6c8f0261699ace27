from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.models.chat import TrackedChat
from chatdigest.models.enums import SummaryType


class ChatRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, chat_id: int) -> TrackedChat | None:
        return await self._session.get(TrackedChat, chat_id)

    async def ensure(
        self,
        *,
        chat_id: int,
        title: str | None = None,
        chat_type: str | None = None,
        language: str | None = None,
    ) -> TrackedChat:
        """获取聊天记录，不存在时创建"""
        chat = await self.get(chat_id)
        if chat is not None:
            if title and chat.title != title:
                chat.title = title
                await self._session.commit()
            return chat

        chat = TrackedChat(chat_id=chat_id, title=title, chat_type=chat_type or "group", summary_frequencies=[])
        if language:
            chat.summary_language = language
        self._session.add(chat)
        try:
            await self._session.commit()
        except IntegrityError:
            # 其他请求已经创建
            await self._session.rollback()
            chat = await self.get(chat_id)
        return chat

    async def list_subscribed(self, summary_type: SummaryType) -> Sequence[TrackedChat]:
        result = await self._session.execute(
            select(TrackedChat)
            .where(TrackedChat.is_active.is_(True))
            .order_by(TrackedChat.chat_id.asc())
        )
        # JSON 包含查询依赖方言，这里在内存中过滤
        return [chat for chat in result.scalars().all() if chat.subscribes_to(summary_type)]

    async def update_settings(self, chat: TrackedChat, **fields: Any) -> TrackedChat:
        for name, value in fields.items():
            if value is not None:
                setattr(chat, name, value)
        await self._session.commit()
        await self._session.refresh(chat)
        return chat
