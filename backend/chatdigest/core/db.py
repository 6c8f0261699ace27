import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from chatdigest.core.config import settings

logger = logging.getLogger(__name__)


Base = declarative_base()

_engine: AsyncEngine | None = None
_SessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.database_url, future=True, echo=False)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _SessionLocal


async def get_session() -> AsyncIterator[AsyncSession]:
    session_maker = get_sessionmaker()
    async with session_maker() as session:
        yield session


def import_models() -> None:
    """导入所有模型，确保 Base.metadata 完整"""
    import chatdigest.models.chat  # noqa: F401
    import chatdigest.models.tracking_session  # noqa: F401
    import chatdigest.models.tracked_message  # noqa: F401
    import chatdigest.models.summary  # noqa: F401


async def init_models(engine: AsyncEngine | None = None) -> None:
    import_models()

    engine = engine or get_engine()
    async with engine.begin() as conn:
        # 创建所有表（包括 tracking_sessions 上的部分唯一索引）
        await conn.run_sync(Base.metadata.create_all)
    logger.info("数据库表已就绪")


async def dispose_engine() -> None:
    global _engine, _SessionLocal
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _SessionLocal = None
