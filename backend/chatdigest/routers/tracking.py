"""追踪命令 API 路由"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.core.db import get_session
from chatdigest.schemas.tracking import (
    CommandResult,
    InboundMessage,
    ManualSummaryRequest,
    StartTrackingRequest,
    StopTrackingRequest,
)
from chatdigest.services.message_collector import MessageCollector
from chatdigest.services.rate_limiter import RateLimiter, get_rate_limiter
from chatdigest.services.summary_client import get_summary_client
from chatdigest.services.tracking_commands import RateLimited, TrackingCommands

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tracking", tags=["tracking"])


def get_commands(
    session: AsyncSession = Depends(get_session),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    client=Depends(get_summary_client),
) -> TrackingCommands:
    return TrackingCommands(session, rate_limiter, client)


def _too_many_requests(exc: RateLimited) -> HTTPException:
    return HTTPException(status_code=429, detail=exc.result.reason)


@router.post("/start", response_model=CommandResult)
async def start_tracking(
    request: StartTrackingRequest,
    commands: TrackingCommands = Depends(get_commands),
) -> CommandResult:
    try:
        return await commands.start(request)
    except RateLimited as exc:
        raise _too_many_requests(exc)


@router.post("/stop", response_model=CommandResult)
async def stop_tracking(
    request: StopTrackingRequest,
    commands: TrackingCommands = Depends(get_commands),
) -> CommandResult:
    try:
        return await commands.stop(request)
    except RateLimited as exc:
        raise _too_many_requests(exc)


@router.get("/status", response_model=CommandResult)
async def tracking_status(
    user_id: int,
    chat_id: int,
    commands: TrackingCommands = Depends(get_commands),
) -> CommandResult:
    return await commands.status(user_id, chat_id)


@router.post("/summary", response_model=CommandResult)
async def request_summary(
    request: ManualSummaryRequest,
    commands: TrackingCommands = Depends(get_commands),
) -> CommandResult:
    """
    为当前或最近停止的追踪会话生成摘要

    command=regenerate 时按 summary_id 重新生成定时摘要。
    """
    try:
        return await commands.summarize(request)
    except RateLimited as exc:
        raise _too_many_requests(exc)


@router.post("/messages")
async def ingest_message(
    message: InboundMessage,
    session: AsyncSession = Depends(get_session),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> dict:
    """接收一条聊天消息，写入该聊天所有进行中的追踪会话"""
    result = rate_limiter.check_multiple_limits([(message.chat_id, "chat"), ("all", "global")])
    if not result.allowed:
        raise HTTPException(status_code=429, detail=result.reason)

    collector = MessageCollector(session)
    try:
        recorded = await collector.collect(message)
    except Exception as e:
        logger.error(f"记录聊天 {message.chat_id} 的消息失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to record message")

    return {"recorded": len(recorded), "meaningful": collector.analyze_message(message).is_meaningful}
