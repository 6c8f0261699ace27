"""Shared test fixtures for the chat digest backend."""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatdigest.core.db import get_session, init_models
from chatdigest.main import create_app
from chatdigest.models.enums import MessageType, SummaryType
from chatdigest.routers.scheduler import get_batch_scheduler
from chatdigest.schemas.tracking import InboundMessage, StartTrackingRequest
from chatdigest.services import summary_orchestrator
from chatdigest.services.batch_scheduler import BatchScheduler
from chatdigest.services.message_collector import MessageCollector
from chatdigest.services.rate_limiter import RateLimiter, get_rate_limiter
from chatdigest.services.repositories.chat_repository import ChatRepository
from chatdigest.services.summary_client import SummaryMetadata, SummaryRequest, SummaryResult, get_summary_client
from chatdigest.services.tracking_manager import TrackingSessionManager


class FakeSummaryClient:
    """Records requests and returns a canned summary instead of calling the LLM."""

    def __init__(self, fail_when: Callable[[SummaryRequest], bool] | None = None) -> None:
        self.requests: list[SummaryRequest] = []
        self._fail_when = fail_when

    async def generate_summary(self, request: SummaryRequest) -> SummaryResult:
        self.requests.append(request)
        if self._fail_when and self._fail_when(request):
            raise RuntimeError("provider unavailable")

        return SummaryResult(
            summary=f"Summary of {len(request.messages)} messages in {request.context.chat_title}",
            model="fake-model",
            metadata=SummaryMetadata(
                participant_count=len({message.author_id for message in request.messages}),
                key_participants=[],
                main_topics=["release"],
                sentiment="neutral",
                confidence=0.8,
                processing_time_ms=5,
                token_usage={"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            ),
        )


class FakeNotifier:
    def __init__(self, result: bool = True) -> None:
        self.sent: list[tuple[int, str, str | None]] = []
        self.result = result

    async def send(self, chat_id: int, text: str, parse_mode: str | None = None, disable_notification: bool = False) -> bool:
        self.sent.append((chat_id, text, parse_mode))
        return self.result


@pytest.fixture(autouse=True)
def fresh_chat_locks(monkeypatch: pytest.MonkeyPatch) -> None:
    """Each test gets its own per-chat lock registry (locks bind to one event loop)."""
    monkeypatch.setattr(summary_orchestrator, "chat_locks", summary_orchestrator.ChatLockRegistry())


@pytest_asyncio.fixture
async def session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A temporary SQLite database shared by every session of one test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as db_session:
        yield db_session


@pytest.fixture
def fake_client() -> FakeSummaryClient:
    return FakeSummaryClient()


@pytest.fixture
def client_factory() -> type[FakeSummaryClient]:
    return FakeSummaryClient


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def now() -> datetime:
    return datetime.utcnow().replace(microsecond=0)


def make_message(
    chat_id: int,
    author_id: int,
    content: str,
    timestamp: datetime,
    **overrides,
) -> InboundMessage:
    return InboundMessage(
        chat_id=chat_id,
        author_id=author_id,
        author_name=f"user{author_id}",
        content=content,
        message_type=overrides.pop("message_type", MessageType.TEXT),
        timestamp=timestamp,
        **overrides,
    )


@pytest.fixture
def message_factory() -> Callable[..., InboundMessage]:
    return make_message


@pytest.fixture
def seed_chat(session_maker, now):
    """Start a tracking session in a chat and feed it meaningful messages.

    Returns the tracking session id.
    """

    async def _seed(
        chat_id: int,
        *,
        user_id: int = 1,
        meaningful: int = 0,
        frequencies: list[SummaryType] | None = None,
        title: str | None = None,
    ) -> int:
        async with session_maker() as db_session:
            manager = TrackingSessionManager(db_session)
            tracking_session = await manager.start_tracking(
                StartTrackingRequest(user_id=user_id, chat_id=chat_id, chat_title=title or f"Chat {chat_id}")
            )
            if frequencies is not None:
                chats = ChatRepository(db_session)
                chat = await chats.get(chat_id)
                await chats.update_settings(chat, summary_frequencies=[frequency.value for frequency in frequencies])

            collector = MessageCollector(db_session)
            for index in range(meaningful):
                await collector.collect(
                    make_message(
                        chat_id,
                        author_id=100 + index % 3,
                        content=f"Discussion point number {index} about the release plan",
                        timestamp=now - timedelta(minutes=meaningful - index),
                    )
                )
            return tracking_session.id

    return _seed


@pytest.fixture
def batch_scheduler_factory(session_maker, fake_client, fake_notifier):
    def _factory(**overrides) -> BatchScheduler:
        options = {
            "enabled": True,
            "batch_size": 10,
            "batch_delay_seconds": 0,
            "chat_timeout_seconds": 10,
        }
        options.update(overrides)
        return BatchScheduler(
            session_maker,
            options.pop("client", fake_client),
            options.pop("notifier", fake_notifier),
            **options,
        )

    return _factory


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter()


@pytest.fixture
def app(session_maker, fake_client, rate_limiter, batch_scheduler_factory) -> FastAPI:
    """Application wired to the test database and fakes."""
    application = create_app(start_background=False)

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as db_session:
            yield db_session

    application.dependency_overrides[get_session] = override_session
    application.dependency_overrides[get_summary_client] = lambda: fake_client
    application.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    application.dependency_overrides[get_batch_scheduler] = lambda: batch_scheduler_factory()
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
