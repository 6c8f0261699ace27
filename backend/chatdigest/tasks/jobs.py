"""定时任务"""

import logging

from chatdigest.core.db import get_session
from chatdigest.core.exceptions import SchedulerDisabled
from chatdigest.models.enums import SummaryType
from chatdigest.services.batch_scheduler import BatchScheduler
from chatdigest.services.rate_limiter import get_rate_limiter
from chatdigest.services.tracking_manager import TrackingSessionManager

logger = logging.getLogger(__name__)


async def scheduled_summary_job(summary_type: SummaryType) -> None:
    """按周期生成定时摘要的任务"""
    logger.info(f"开始执行 {summary_type.value} 定时摘要任务...")
    try:
        result = await BatchScheduler().run(summary_type)
        if result.errors:
            logger.warning(f"{summary_type.value} 定时摘要有 {len(result.errors)} 个聊天失败: {result.errors}")
    except SchedulerDisabled:
        logger.info("定时摘要已关闭，跳过本次任务")
    except Exception as e:
        logger.error(f"执行 {summary_type.value} 定时摘要时出错: {e}", exc_info=True)


async def expire_sessions_job() -> None:
    """清理长时间无活动或超时的追踪会话"""
    async for session in get_session():
        try:
            expired = await TrackingSessionManager(session).expire_stale_sessions()
            logger.info(f"会话清理任务完成: 过期 {expired} 个会话")
        except Exception as e:
            logger.error(f"清理追踪会话失败: {e}", exc_info=True)
        finally:
            break  # 只处理一次


async def cleanup_rate_limiter_job() -> None:
    removed = get_rate_limiter().cleanup()
    if removed:
        logger.debug(f"已清理 {removed} 个空的限流记录")
