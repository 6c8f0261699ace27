"""Tests for summary orchestration: manual sessions and chat windows."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from chatdigest.core.exceptions import AlreadySummarized, InsufficientMessages, LLMFailure, NotActive, StorageFailure
from chatdigest.models.enums import SessionStatus, SummaryCommand, SummaryType
from chatdigest.models.summary import ConversationSummary
from chatdigest.models.tracked_message import TrackedMessage
from chatdigest.models.tracking_session import TrackingSession
from chatdigest.schemas.summary import SummaryPreferences
from chatdigest.schemas.tracking import InboundMessage, StartTrackingRequest
from chatdigest.services.message_collector import MessageCollector
from chatdigest.services.repositories.chat_repository import ChatRepository
from chatdigest.services.repositories.session_repository import SessionRepository
from chatdigest.services.summary_orchestrator import ChatLockRegistry, SummaryOrchestrator
from chatdigest.services.tracking_manager import TrackingSessionManager

CHAT_ID = -100

SEVEN_MESSAGES = [
    (10, "Morning all, the release candidate is ready"),
    (11, "ok"),
    (12, "Did QA sign off on the payment flow?"),
    (10, "/help"),
    (11, "Yes, QA finished the regression suite yesterday"),
    (12, "Great, then we ship on Friday after the standup"),
    (10, "I will write the changelog and announce it"),
]


class SlowClient:
    async def generate_summary(self, request):
        await asyncio.sleep(1)


class MessageArrivesDuringSummary:
    """Collects one more chat message from another database session while the summary is generated."""

    def __init__(self, inner, session_maker, message: InboundMessage) -> None:
        self._inner = inner
        self._session_maker = session_maker
        self._message = message

    async def generate_summary(self, request):
        async with self._session_maker() as other_session:
            await MessageCollector(other_session).collect(self._message)
        return await self._inner.generate_summary(request)


async def _count(session, model, *conditions) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(*conditions))
    return int(result.scalar())


async def _start_with_messages(session, now, messages=SEVEN_MESSAGES) -> TrackingSession:
    tracking_session = await TrackingSessionManager(session).start_tracking(
        StartTrackingRequest(user_id=1, chat_id=CHAT_ID, chat_title="Release crew")
    )
    collector = MessageCollector(session)
    for offset, (author_id, content) in enumerate(messages):
        await collector.record(
            tracking_session.id,
            _inbound(author_id, content, now + timedelta(minutes=offset)),
        )
    return tracking_session


def _inbound(author_id: int, content: str, timestamp) -> InboundMessage:
    return InboundMessage(
        chat_id=CHAT_ID,
        author_id=author_id,
        author_name=f"user{author_id}",
        content=content,
        timestamp=timestamp,
    )


@pytest.mark.asyncio
async def test_manual_summary_end_to_end(session, fake_client, now) -> None:
    tracking_session = await _start_with_messages(session, now)
    orchestrator = SummaryOrchestrator(session, fake_client)

    outcome = await orchestrator.handle_command(SummaryCommand.GENERATE, user_id=1, chat_id=CHAT_ID)

    assert outcome.message_count == 7
    assert outcome.meaningful_count == 5
    assert outcome.deleted_messages == 7
    assert outcome.summary.summary_type == SummaryType.MANUAL.value
    assert outcome.summary.tracking_session_id == tracking_session.id
    assert outcome.summary.start_time == now
    assert outcome.summary.end_time == now + timedelta(minutes=6)
    assert outcome.summary.summary_metadata["llm_model"] == "fake-model"
    assert outcome.summary.summary_metadata["token_count"] == 15

    # only meaningful messages reach the model
    assert len(fake_client.requests) == 1
    assert len(fake_client.requests[0].messages) == 5
    assert fake_client.requests[0].context.chat_title == "Release crew"

    assert tracking_session.status == SessionStatus.SUMMARIZED.value
    assert tracking_session.summary_generated is True
    assert tracking_session.summary_id == outcome.summary.id
    assert tracking_session.ended_at is not None
    assert await _count(session, TrackedMessage, TrackedMessage.tracking_session_id == tracking_session.id) == 0


@pytest.mark.asyncio
async def test_session_is_summarized_at_most_once(session, fake_client, now) -> None:
    tracking_session = await _start_with_messages(session, now)
    orchestrator = SummaryOrchestrator(session, fake_client)
    await orchestrator.summarize_session(tracking_session)

    with pytest.raises(AlreadySummarized):
        await orchestrator.summarize_session(tracking_session)
    with pytest.raises(NotActive):
        # the summarized session is neither active nor stopped any more
        await orchestrator.handle_command(SummaryCommand.GENERATE, user_id=1, chat_id=CHAT_ID)

    assert len(fake_client.requests) == 1
    assert await _count(session, ConversationSummary) == 1


@pytest.mark.asyncio
async def test_concurrent_manual_summaries_produce_one_summary(session_maker, fake_client, now) -> None:
    async with session_maker() as setup_session:
        tracking_session = await _start_with_messages(setup_session, now)
    locks = ChatLockRegistry()

    async def summarize():
        async with session_maker() as task_session:
            record = await SessionRepository(task_session).get(tracking_session.id)
            return await SummaryOrchestrator(task_session, fake_client, locks=locks).summarize_session(record)

    results = await asyncio.gather(summarize(), summarize(), return_exceptions=True)

    assert sum(1 for result in results if isinstance(result, AlreadySummarized)) == 1
    assert sum(1 for result in results if not isinstance(result, Exception)) == 1
    assert len(fake_client.requests) == 1


@pytest.mark.asyncio
async def test_stopped_session_can_be_summarized(session, fake_client, now) -> None:
    tracking_session = await _start_with_messages(session, now)
    await TrackingSessionManager(session).stop_tracking(1, CHAT_ID)

    outcome = await SummaryOrchestrator(session, fake_client).handle_command(
        SummaryCommand.GENERATE, user_id=1, chat_id=CHAT_ID
    )

    assert outcome.summary.tracking_session_id == tracking_session.id
    assert tracking_session.status == SessionStatus.SUMMARIZED.value


@pytest.mark.asyncio
async def test_generate_without_session(session, fake_client) -> None:
    with pytest.raises(NotActive):
        await SummaryOrchestrator(session, fake_client).handle_command(
            SummaryCommand.GENERATE, user_id=1, chat_id=CHAT_ID
        )


@pytest.mark.asyncio
async def test_expired_session_is_rejected(session, fake_client, now) -> None:
    tracking_session = await _start_with_messages(session, now)
    await SessionRepository(session).end(tracking_session, status=SessionStatus.EXPIRED, ended_at=now)

    with pytest.raises(NotActive):
        await SummaryOrchestrator(session, fake_client).summarize_session(tracking_session)
    assert fake_client.requests == []


@pytest.mark.asyncio
async def test_insufficient_messages_makes_no_llm_call(session, fake_client, now) -> None:
    tracking_session = await _start_with_messages(session, now, messages=SEVEN_MESSAGES[:5])

    with pytest.raises(InsufficientMessages) as exc_info:
        await SummaryOrchestrator(session, fake_client).summarize_session(tracking_session)

    assert exc_info.value.details == {"meaningful_count": 3, "minimum": 5}
    assert fake_client.requests == []
    assert tracking_session.status == SessionStatus.ACTIVE.value
    assert await _count(session, ConversationSummary) == 0


@pytest.mark.asyncio
async def test_llm_failure_keeps_messages(session, client_factory, now) -> None:
    tracking_session = await _start_with_messages(session, now)
    client = client_factory(fail_when=lambda request: True)

    with pytest.raises(LLMFailure):
        await SummaryOrchestrator(session, client).summarize_session(tracking_session)

    assert tracking_session.status == SessionStatus.ACTIVE.value
    assert await _count(session, TrackedMessage) == 7
    assert await _count(session, ConversationSummary) == 0


@pytest.mark.asyncio
async def test_llm_timeout_is_an_llm_failure(session, now) -> None:
    tracking_session = await _start_with_messages(session, now)

    with pytest.raises(LLMFailure) as exc_info:
        await SummaryOrchestrator(session, SlowClient(), llm_timeout=0.05).summarize_session(tracking_session)

    assert "timed out" in exc_info.value.message
    assert await _count(session, TrackedMessage) == 7


@pytest.mark.asyncio
async def test_mark_summarized_failure_keeps_messages(session_maker, fake_client, now, monkeypatch) -> None:
    async with session_maker() as db_session:
        tracking_session = await _start_with_messages(db_session, now)
        session_id = tracking_session.id

        async def broken_mark_summarized(self, record, *, summary_id, at):
            raise OperationalError("UPDATE tracking_sessions", {}, Exception("disk I/O error"))

        monkeypatch.setattr(SessionRepository, "mark_summarized", broken_mark_summarized)

        with pytest.raises(StorageFailure) as exc_info:
            await SummaryOrchestrator(db_session, fake_client).summarize_session(tracking_session)
        assert exc_info.value.details["session_id"] == session_id

    async with session_maker() as check_session:
        record = await check_session.get(TrackingSession, session_id)
        assert record.status == SessionStatus.ACTIVE.value
        assert record.summary_generated is False
        assert await _count(check_session, TrackedMessage, TrackedMessage.tracking_session_id == session_id) == 7
        # the summary itself was already stored
        assert await _count(check_session, ConversationSummary) == 1


@pytest.mark.asyncio
async def test_transcript_is_truncated_to_character_limit(session, fake_client, now) -> None:
    tracking_session = await _start_with_messages(session, now)

    outcome = await SummaryOrchestrator(session, fake_client, max_transcript_chars=100).summarize_session(
        tracking_session, SummaryPreferences(include_usernames=False)
    )

    request = fake_client.requests[0]
    assert outcome.omitted_messages > 0
    assert len(request.messages) + outcome.omitted_messages == 5
    assert request.context.omitted_messages == outcome.omitted_messages
    assert request.messages[-1].content == "I will write the changelog and announce it"
    assert outcome.summary.summary_metadata["omitted_messages"] == outcome.omitted_messages
    assert outcome.summary.summary_metadata["include_usernames"] is False


@pytest.mark.asyncio
async def test_chat_window_summary_keeps_messages(session, seed_chat, fake_client, now) -> None:
    await seed_chat(-1, meaningful=12, frequencies=[SummaryType.DAILY])
    chat = await ChatRepository(session).get(-1)

    outcome = await SummaryOrchestrator(session, fake_client).summarize_chat(chat, SummaryType.DAILY, now=now)

    assert outcome.summary.summary_type == SummaryType.DAILY.value
    assert outcome.summary.tracking_session_id is None
    assert outcome.summary.start_time == now - timedelta(days=1)
    assert outcome.summary.end_time == now
    assert outcome.meaningful_count == 12
    assert await _count(session, TrackedMessage, TrackedMessage.chat_id == -1) == 12


@pytest.mark.asyncio
async def test_chat_window_below_cadence_minimum(session, seed_chat, fake_client, now) -> None:
    await seed_chat(-1, meaningful=12, frequencies=[SummaryType.WEEKLY])
    chat = await ChatRepository(session).get(-1)

    with pytest.raises(InsufficientMessages):
        await SummaryOrchestrator(session, fake_client).summarize_chat(chat, SummaryType.WEEKLY, now=now)
    assert fake_client.requests == []


@pytest.mark.asyncio
async def test_regenerate_chat_summary(session, seed_chat, fake_client, now) -> None:
    await seed_chat(-1, meaningful=12, frequencies=[SummaryType.DAILY])
    chat = await ChatRepository(session).get(-1)
    orchestrator = SummaryOrchestrator(session, fake_client)
    first = await orchestrator.summarize_chat(chat, SummaryType.DAILY, now=now)

    again = await orchestrator.handle_command(
        SummaryCommand.REGENERATE,
        user_id=1,
        chat_id=-1,
        summary_id=first.summary.id,
        preferences=SummaryPreferences(language="fr"),
    )

    assert again.summary.id != first.summary.id
    assert again.summary.start_time == first.summary.start_time
    assert again.summary.end_time == first.summary.end_time
    assert again.summary.summary_metadata["language"] == "fr"

    with pytest.raises(NotActive):
        await orchestrator.handle_command(SummaryCommand.REGENERATE, user_id=1, chat_id=-2, summary_id=first.summary.id)
    with pytest.raises(NotActive):
        await orchestrator.handle_command(SummaryCommand.REGENERATE, user_id=1, chat_id=-1, summary_id=9999)


@pytest.mark.asyncio
async def test_session_summaries_cannot_be_regenerated(session, fake_client, now) -> None:
    await _start_with_messages(session, now)
    orchestrator = SummaryOrchestrator(session, fake_client)
    outcome = await orchestrator.handle_command(SummaryCommand.GENERATE, user_id=1, chat_id=CHAT_ID)

    with pytest.raises(AlreadySummarized):
        await orchestrator.handle_command(
            SummaryCommand.REGENERATE, user_id=1, chat_id=CHAT_ID, summary_id=outcome.summary.id
        )


@pytest.mark.asyncio
async def test_message_arriving_during_summary_is_kept(session_maker, fake_client, now) -> None:
    late = _inbound(11, "One more thing, the demo moved to 3pm", now + timedelta(minutes=30))

    async with session_maker() as db_session:
        tracking_session = await _start_with_messages(db_session, now)
        session_id = tracking_session.id
        client = MessageArrivesDuringSummary(fake_client, session_maker, late)

        outcome = await SummaryOrchestrator(db_session, client).summarize_session(tracking_session)

        assert outcome.message_count == 7
        assert outcome.deleted_messages == 7
        remaining = await db_session.execute(
            select(TrackedMessage.content).where(TrackedMessage.tracking_session_id == session_id)
        )
        assert remaining.scalars().all() == ["One more thing, the demo moved to 3pm"]


@pytest.mark.asyncio
async def test_chat_window_transcript_has_each_message_once(session, message_factory, fake_client, now) -> None:
    manager = TrackingSessionManager(session)
    for user_id in (1, 2):
        await manager.start_tracking(StartTrackingRequest(user_id=user_id, chat_id=CHAT_ID, chat_title="Release crew"))
    collector = MessageCollector(session)
    for index in range(6):
        await collector.collect(
            message_factory(CHAT_ID, 100 + index % 2, f"Distinct point number {index}", now - timedelta(minutes=30 - index))
        )
    chat = await ChatRepository(session).get(CHAT_ID)

    outcome = await SummaryOrchestrator(session, fake_client).summarize_chat(chat, SummaryType.HOURLY, now=now)

    assert outcome.message_count == 6
    assert outcome.summary.message_count == 6
    [request] = fake_client.requests
    assert [message.content for message in request.messages] == [f"Distinct point number {index}" for index in range(6)]
