import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatdigest.core.config import settings
from chatdigest.core.db import dispose_engine, init_models
from chatdigest.routers import chats, scheduler, summary, tracking
from chatdigest.services.telegram_listener import telegram_listener
from chatdigest.services.telegram_notifier import get_telegram_notifier
from chatdigest.tasks.scheduler import scheduler as job_scheduler

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(*, start_background: bool = True) -> FastAPI:
    """
    创建应用

    Args:
        start_background: 是否在启动时开启定时任务与 Telegram 监听（测试时关闭）
    """
    app = FastAPI(title="Chat Digest API")

    # 添加 CORS 中间件
    # 注意：CORS 中间件必须在所有路由之前添加
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tracking.router, prefix="/api")
    app.include_router(scheduler.router, prefix="/api")
    app.include_router(summary.router, prefix="/api")
    app.include_router(chats.router, prefix="/api")

    @app.get("/")
    async def read_root():
        return {"message": "Chat Digest API", "docs": "/docs"}

    @app.on_event("startup")
    async def startup_event() -> None:
        try:
            logger.info("正在初始化数据库...")
            await init_models()
            logger.info("数据库初始化完成")

            if not start_background:
                return

            await get_telegram_notifier().initialize()

            logger.info("正在启动定时任务...")
            await job_scheduler.start()
            logger.info(f"定时任务启动完成: {job_scheduler.job_ids()}")

            if settings.telegram_listener_enabled:
                logger.info("正在启动 Telegram 监听...")
                await telegram_listener.start()

            logger.info("应用启动完成！")
        except Exception as e:
            logger.error(f"应用启动失败: {e}", exc_info=True)
            # 不抛出异常，让服务器继续运行（即使 Telegram 监听器失败）
            logger.warning("应用将继续运行，但某些功能可能不可用")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        try:
            await job_scheduler.stop()
            await telegram_listener.stop()
            await get_telegram_notifier().close()
            await dispose_engine()
            logger.info("应用已停止")
        except Exception as e:
            logger.error(f"停止后台服务时出错: {e}", exc_info=True)

    return app


app = create_app()
