"""手动执行一次定时摘要

使用方法：
    python scripts/trigger_summaries.py --type daily
    python scripts/trigger_summaries.py --type weekly --batch-size 5
    python scripts/trigger_summaries.py --expire-sessions
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from chatdigest.core.db import dispose_engine, get_sessionmaker, init_models
from chatdigest.core.exceptions import SchedulerDisabled
from chatdigest.models.enums import SummaryType
from chatdigest.services.batch_scheduler import BatchScheduler
from chatdigest.services.tracking_manager import TrackingSessionManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SCHEDULED_TYPES = [summary_type.value for summary_type in SummaryType if summary_type.is_scheduled]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="手动执行一次定时摘要")
    parser.add_argument("--type", choices=SCHEDULED_TYPES, default=SummaryType.DAILY.value, help="摘要周期")
    parser.add_argument("--batch-size", type=int, default=None, help="每批并发处理的聊天数")
    parser.add_argument("--expire-sessions", action="store_true", help="先清理过期的追踪会话")
    return parser.parse_args()


async def main(args: argparse.Namespace) -> int:
    await init_models()

    try:
        if args.expire_sessions:
            async with get_sessionmaker()() as session:
                expired = await TrackingSessionManager(session).expire_stale_sessions()
                logger.info(f"已过期 {expired} 个追踪会话")

        scheduler = BatchScheduler(batch_size=args.batch_size)
        try:
            result = await scheduler.run(SummaryType(args.type))
        except SchedulerDisabled:
            logger.warning("定时摘要已关闭（SCHEDULER_ENABLED=false）")
            return 1

        print("\n" + "=" * 60)
        print(f"📊 {args.type} 摘要执行结果")
        print("=" * 60)
        print(f"成功: {result.processed}")
        print(f"跳过: {result.skipped}")
        print(f"失败: {len(result.errors)}")
        for error in result.errors:
            print(f"  - {error}")
        print(f"耗时: {result.duration_ms}ms")
        print("=" * 60 + "\n")
        return 0 if not result.errors else 2
    finally:
        await dispose_engine()


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
