"""Tests for scheduled summary eligibility."""

from datetime import timedelta

import pytest

from chatdigest.models.enums import SummaryType
from chatdigest.schemas.tracking import StartTrackingRequest
from chatdigest.services.eligibility import EligibilityEvaluator, is_time_for_new_summary, summary_time_window
from chatdigest.services.message_collector import MessageCollector
from chatdigest.services.repositories.chat_repository import ChatRepository
from chatdigest.services.repositories.summary_repository import SummaryRepository
from chatdigest.services.tracking_manager import TrackingSessionManager


async def _add_summary(session, chat_id: int, summary_type: SummaryType, created_at) -> None:
    summary = await SummaryRepository(session).create_summary(
        chat_id=chat_id,
        summary_type=summary_type,
        content="earlier digest",
        message_count=10,
        meaningful_message_count=10,
        start_time=created_at - summary_type.period,
        end_time=created_at,
        metadata={},
    )
    summary.created_at = created_at
    await session.commit()


def test_summary_time_window(now) -> None:
    window = summary_time_window(SummaryType.WEEKLY, now)

    assert window.end == now
    assert window.start == now - timedelta(days=7)


def test_is_time_for_new_summary(now) -> None:
    assert not is_time_for_new_summary(now - timedelta(hours=2), SummaryType.DAILY, now)
    assert is_time_for_new_summary(now - timedelta(hours=24), SummaryType.DAILY, now)
    assert is_time_for_new_summary(now - timedelta(hours=25), SummaryType.DAILY, now)


@pytest.mark.asyncio
async def test_minimum_message_floor(session, seed_chat, now) -> None:
    await seed_chat(-1, meaningful=12, frequencies=[SummaryType.DAILY])
    await seed_chat(-2, meaningful=9, frequencies=[SummaryType.DAILY])

    eligible = await EligibilityEvaluator(session).get_eligible_chats(SummaryType.DAILY, now)

    assert [chat.chat_id for chat in eligible] == [-1]


@pytest.mark.asyncio
async def test_only_subscribed_active_chats_are_candidates(session, seed_chat, now) -> None:
    await seed_chat(-1, meaningful=12, frequencies=[SummaryType.WEEKLY])
    await seed_chat(-2, meaningful=12, frequencies=[])
    await seed_chat(-3, meaningful=12, frequencies=[SummaryType.HOURLY])

    assert await EligibilityEvaluator(session).get_eligible_chats(SummaryType.DAILY, now) == []
    hourly = await EligibilityEvaluator(session).get_eligible_chats(SummaryType.HOURLY, now)
    assert [chat.chat_id for chat in hourly] == [-3]


@pytest.mark.asyncio
async def test_recency_gate(session, seed_chat, now) -> None:
    await seed_chat(-1, meaningful=12, frequencies=[SummaryType.DAILY])
    await seed_chat(-2, meaningful=12, frequencies=[SummaryType.DAILY])
    await _add_summary(session, -1, SummaryType.DAILY, now - timedelta(hours=2))
    await _add_summary(session, -2, SummaryType.DAILY, now - timedelta(hours=25))
    # a summary of another cadence does not block the daily digest
    await _add_summary(session, -2, SummaryType.HOURLY, now - timedelta(minutes=10))

    eligible = await EligibilityEvaluator(session).get_eligible_chats(SummaryType.DAILY, now)

    assert [chat.chat_id for chat in eligible] == [-2]


@pytest.mark.asyncio
async def test_eligibility_is_monotonic_in_message_count(session, seed_chat, message_factory, now) -> None:
    from chatdigest.services.message_collector import MessageCollector

    await seed_chat(-1, meaningful=4, frequencies=[SummaryType.HOURLY])
    evaluator = EligibilityEvaluator(session)
    assert await evaluator.get_eligible_chats(SummaryType.HOURLY, now) == []

    await MessageCollector(session).collect(message_factory(-1, 7, "One more substantive message", now))
    assert [chat.chat_id for chat in await evaluator.get_eligible_chats(SummaryType.HOURLY, now)] == [-1]

    await MessageCollector(session).collect(message_factory(-1, 8, "And yet another one for luck", now))
    assert [chat.chat_id for chat in await evaluator.get_eligible_chats(SummaryType.HOURLY, now)] == [-1]


@pytest.mark.asyncio
async def test_manual_is_not_schedulable(session, now) -> None:
    with pytest.raises(ValueError):
        await EligibilityEvaluator(session).get_eligible_chats(SummaryType.MANUAL, now)


@pytest.mark.asyncio
@pytest.mark.parametrize("with_message_ids", [True, False])
async def test_message_seen_by_several_trackers_counts_once(session, message_factory, now, with_message_ids) -> None:
    manager = TrackingSessionManager(session)
    for user_id in (1, 2):
        await manager.start_tracking(StartTrackingRequest(user_id=user_id, chat_id=-9, chat_title="Shared"))
    chats = ChatRepository(session)
    await chats.update_settings(await chats.get(-9), summary_frequencies=[SummaryType.HOURLY.value])

    collector = MessageCollector(session)
    for index in range(3):
        recorded = await collector.collect(
            message_factory(
                -9,
                100 + index,
                f"Distinct point number {index} about the rollout",
                now - timedelta(minutes=10 - index),
                message_id=500 + index if with_message_ids else None,
            )
        )
        assert len(recorded) == 2

    assert await collector.count_since(-9, now - timedelta(hours=1), now) == 3
    # 3 distinct messages stay below the hourly floor of 5
    assert await EligibilityEvaluator(session).get_eligible_chats(SummaryType.HOURLY, now) == []
