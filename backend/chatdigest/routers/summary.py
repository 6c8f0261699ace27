from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.core.db import get_session
from chatdigest.schemas.summary import SummaryItem, SummaryListResponse
from chatdigest.services.repositories.summary_repository import SummaryRepository

router = APIRouter(prefix="/summaries", tags=["summaries"])


@router.get("/", response_model=SummaryListResponse)
async def list_summaries(
    limit: int = Query(20, ge=1, le=200),
    chat_id: int | None = None,
    session: AsyncSession = Depends(get_session),
) -> SummaryListResponse:
    repo = SummaryRepository(session)
    records = await repo.list_recent(limit=limit, chat_id=chat_id)

    items: List[SummaryItem] = [SummaryItem.model_validate(record) for record in records]
    return SummaryListResponse(items=items)


@router.get("/{summary_id}", response_model=SummaryItem)
async def get_summary(
    summary_id: int,
    session: AsyncSession = Depends(get_session),
) -> SummaryItem:
    record = await SummaryRepository(session).get(summary_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"摘要 {summary_id} 不存在")
    return SummaryItem.model_validate(record)
