"""初始化数据库脚本

创建追踪会话、消息、摘要和聊天设置表（包括部分唯一索引）

使用方法：
    python scripts/init_db.py
    python scripts/init_db.py --reset   # 删除全部表后重建，所有追踪数据都会丢失
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from chatdigest.core.config import settings
from chatdigest.core.db import Base, dispose_engine, get_engine, import_models, init_models

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def drop_all() -> None:
    import_models()
    tables = ", ".join(Base.metadata.tables)
    logger.info(f"删除数据表: {tables}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def main(reset: bool) -> int:
    """初始化数据库"""
    try:
        if reset:
            print("\n" + "=" * 60)
            print("⚠️  警告：此操作将删除所有追踪会话、消息和摘要！")
            print("=" * 60)
            confirm = input("\n确认要清空数据库吗？输入 'YES' 继续: ")
            if confirm != "YES":
                print("操作已取消")
                return 0
            await drop_all()

        logger.info("开始初始化数据库...")
        await init_models()
        logger.info("数据库初始化完成！")
        logger.info(f"数据库地址: {settings.database_url}")
        return 0
    except Exception as e:
        logger.error(f"数据库初始化失败: {e}", exc_info=True)
        return 1
    finally:
        await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="初始化聊天摘要数据库")
    parser.add_argument("--reset", action="store_true", help="删除全部表后重建")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.reset)))
