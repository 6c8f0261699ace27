"""聊天摘要设置 API 路由"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.core.db import get_session
from chatdigest.models.enums import SummaryType
from chatdigest.schemas.chat import ChatResponse, ChatSettingsUpdate
from chatdigest.services.repositories.chat_repository import ChatRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("/{chat_id}", response_model=ChatResponse)
async def get_chat(
    chat_id: int,
    session: AsyncSession = Depends(get_session),
) -> ChatResponse:
    chat = await ChatRepository(session).get(chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail=f"聊天 {chat_id} 不存在")
    return ChatResponse.model_validate(chat)


@router.put("/{chat_id}/settings", response_model=ChatResponse)
async def update_chat_settings(
    chat_id: int,
    request: ChatSettingsUpdate,
    session: AsyncSession = Depends(get_session),
) -> ChatResponse:
    """
    更新聊天的定时摘要设置

    不存在的聊天会先登记再更新；summary_frequencies 不能包含 manual。
    """
    frequencies = None
    if request.summary_frequencies is not None:
        if SummaryType.MANUAL in request.summary_frequencies:
            raise HTTPException(status_code=400, detail="manual 不是定时摘要类型")
        # 去重并保持顺序
        frequencies = list(dict.fromkeys(frequency.value for frequency in request.summary_frequencies))

    repo = ChatRepository(session)
    chat = await repo.ensure(chat_id=chat_id, title=request.title)
    chat = await repo.update_settings(
        chat,
        is_active=request.is_active,
        summary_frequencies=frequencies,
        send_summaries=request.send_summaries,
        summary_language=request.summary_language,
        summary_format=request.summary_format.value if request.summary_format else None,
    )
    logger.info(f"聊天 {chat_id} 的摘要设置已更新")
    return ChatResponse.model_validate(chat)
