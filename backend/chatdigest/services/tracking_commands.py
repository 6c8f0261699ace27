"""追踪命令处理：限流 -> 调用服务 -> 把用户错误转换为结果"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from chatdigest.core.exceptions import USER_FACING_ERRORS, LLMFailure, StorageFailure, TrackingError
from chatdigest.models.enums import SummaryCommand
from chatdigest.schemas.tracking import CommandResult, ManualSummaryRequest, StartTrackingRequest, StopTrackingRequest
from chatdigest.services.rate_limiter import RateLimiter, RateLimitResult
from chatdigest.services.summary_orchestrator import SummaryOrchestrator
from chatdigest.services.tracking_manager import TrackingSessionManager

logger = logging.getLogger(__name__)


class RateLimited(Exception):
    """请求被限流，由路由层转换为 429"""

    def __init__(self, result: RateLimitResult) -> None:
        super().__init__(result.reason)
        self.result = result


def _error_result(error: TrackingError) -> CommandResult:
    return CommandResult(success=False, code=error.code, message=error.message, data=dict(error.details))


class TrackingCommands:
    def __init__(self, session: AsyncSession, rate_limiter: RateLimiter, client=None) -> None:
        self._session = session
        self._rate_limiter = rate_limiter
        self._manager = TrackingSessionManager(session)
        self._orchestrator = SummaryOrchestrator(session, client)

    def _enforce(self, user_id: int, *checks: tuple[int | str, str]) -> None:
        result = self._rate_limiter.check_multiple_limits([(user_id, "user"), *checks])
        if not result.allowed:
            raise RateLimited(result)

    async def start(self, request: StartTrackingRequest) -> CommandResult:
        self._enforce(request.user_id, (f"{request.user_id}:track", "command"))
        try:
            tracking_session = await self._manager.start_tracking(request)
        except USER_FACING_ERRORS as e:
            return _error_result(e)

        return CommandResult(
            success=True,
            code="TRACKING_STARTED",
            message="Tracking started. Ask for a summary any time.",
            data={"session_id": tracking_session.id, "started_at": tracking_session.started_at.isoformat()},
        )

    async def stop(self, request: StopTrackingRequest) -> CommandResult:
        self._enforce(request.user_id, (f"{request.user_id}:track", "command"))
        try:
            stats = await self._manager.stop_tracking(request.user_id, request.chat_id)
        except USER_FACING_ERRORS as e:
            return _error_result(e)

        return CommandResult(
            success=True,
            code="TRACKING_STOPPED",
            message=(
                f"Tracking stopped: {stats.message_count} messages, {stats.meaningful_count} meaningful, "
                f"{stats.participant_count} participants over {stats.duration_minutes} minutes."
            ),
            data=stats.model_dump(),
        )

    async def summarize(self, request: ManualSummaryRequest) -> CommandResult:
        self._enforce(request.user_id, (request.user_id, "summary"))
        try:
            outcome = await self._orchestrator.handle_command(
                request.command,
                user_id=request.user_id,
                chat_id=request.chat_id,
                preferences=request.preferences,
                summary_id=request.summary_id,
            )
        except USER_FACING_ERRORS as e:
            return _error_result(e)
        except (LLMFailure, StorageFailure) as e:
            logger.error(f"用户 {request.user_id} 的摘要请求失败: {e}")
            return _error_result(e)

        summary = outcome.summary
        return CommandResult(
            success=True,
            code="SUMMARY_REGENERATED" if request.command is SummaryCommand.REGENERATE else "SUMMARY_COMPLETED",
            message=summary.content,
            data={
                "summary_id": summary.id,
                "message_count": outcome.message_count,
                "meaningful_count": outcome.meaningful_count,
                "participant_count": outcome.participant_count,
                "processing_time_ms": outcome.processing_time_ms,
                "omitted_messages": outcome.omitted_messages,
                "deleted_messages": outcome.deleted_messages,
            },
        )

    async def status(self, user_id: int, chat_id: int) -> CommandResult:
        status = await self._manager.get_status(user_id, chat_id)
        return CommandResult(
            success=True,
            code="TRACKING_ACTIVE" if status.is_tracking else "TRACKING_INACTIVE",
            message="Tracking is active." if status.is_tracking else "Tracking is not active.",
            data=status.model_dump(mode="json"),
        )
