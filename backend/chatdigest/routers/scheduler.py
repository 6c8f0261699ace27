"""定时摘要手动触发 API 路由"""

import logging

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from chatdigest.core.exceptions import SchedulerDisabled
from chatdigest.schemas.summary import SchedulerRunResponse, SchedulerTriggerRequest
from chatdigest.services.batch_scheduler import BatchScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


def get_batch_scheduler() -> BatchScheduler:
    return BatchScheduler()


@router.post("/summaries", response_model=SchedulerRunResponse)
async def trigger_summaries(
    request: SchedulerTriggerRequest | None = Body(None),
    scheduler: BatchScheduler = Depends(get_batch_scheduler),
):
    """
    立即执行一次定时摘要

    请求体 {"summaryType": "daily"}，缺省为 daily。
    """
    summary_type = request.summary_type if request else SchedulerTriggerRequest().summary_type

    try:
        result = await scheduler.run(summary_type)
    except SchedulerDisabled:
        return JSONResponse(status_code=200, content={"success": False, "message": "Scheduler is disabled"})
    except Exception as e:
        logger.error(f"执行 {summary_type.value} 定时摘要失败: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "message": str(e)})

    return SchedulerRunResponse(
        success=True,
        summaryType=summary_type,
        processed=result.processed,
        skipped=result.skipped,
        errors=result.errors,
        duration=result.duration_ms,
    )
