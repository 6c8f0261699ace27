"""进程内滑动窗口限流器

所有用户触发的操作（开始追踪、停止追踪、手动摘要）共享同一个实例。
状态只保存在内存中，进程重启后清零。
"""

import logging
import math
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitTier:
    name: str
    max_requests: int
    window_seconds: float


@dataclass
class RateLimitBucket:
    """某个 (subject, tier) 的命中记录"""

    subject_id: str
    tier: str
    window_seconds: float
    hits: deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.hits and self.hits[0] <= cutoff:
            self.hits.popleft()

    @property
    def count(self) -> int:
        return len(self.hits)

    @property
    def window_start(self) -> float | None:
        return self.hits[0] if self.hits else None

    @property
    def reset_at(self) -> float | None:
        """最早一次命中滑出窗口的时间"""
        return self.hits[0] + self.window_seconds if self.hits else None


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    tier: str
    remaining: int
    reason: str | None = None
    reset_at: float | None = None


DEFAULT_TIERS = (
    RateLimitTier("user", max_requests=30, window_seconds=60),
    RateLimitTier("chat", max_requests=50, window_seconds=60),
    RateLimitTier("command", max_requests=5, window_seconds=60),
    RateLimitTier("summary", max_requests=3, window_seconds=5 * 60),
    RateLimitTier("global", max_requests=1000, window_seconds=60),
)


class RateLimiter:
    def __init__(
        self,
        tiers: Iterable[RateLimitTier] = DEFAULT_TIERS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tiers = {tier.name: tier for tier in tiers}
        self._clock = clock
        self._buckets: dict[tuple[str, str], RateLimitBucket] = {}

    def _tier(self, name: str) -> RateLimitTier:
        try:
            return self._tiers[name]
        except KeyError:
            raise ValueError(f"未知的限流层级: {name}") from None

    def _bucket(self, subject_id: str, tier: RateLimitTier, now: float) -> RateLimitBucket:
        key = (subject_id, tier.name)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = RateLimitBucket(subject_id=subject_id, tier=tier.name, window_seconds=tier.window_seconds)
            self._buckets[key] = bucket
        bucket.prune(now)
        return bucket

    def _evaluate(self, subject_id: str, tier_name: str, now: float) -> tuple[RateLimitResult, RateLimitBucket]:
        tier = self._tier(tier_name)
        bucket = self._bucket(str(subject_id), tier, now)
        if bucket.count >= tier.max_requests:
            wait_seconds = max(0.0, (bucket.reset_at or now) - now)
            return (
                RateLimitResult(
                    allowed=False,
                    tier=tier.name,
                    remaining=0,
                    reason=self._reason_for(tier.name, wait_seconds),
                    reset_at=bucket.reset_at,
                ),
                bucket,
            )
        return (
            RateLimitResult(
                allowed=True,
                tier=tier.name,
                remaining=tier.max_requests - bucket.count - 1,
                reset_at=bucket.reset_at or now + tier.window_seconds,
            ),
            bucket,
        )

    def check_limit(self, subject_id: int | str, tier: str) -> RateLimitResult:
        """检查并记录一次请求，超限时不计数"""
        now = self._clock()
        result, bucket = self._evaluate(str(subject_id), tier, now)
        if result.allowed:
            bucket.hits.append(now)
        else:
            logger.info(f"限流触发: subject={subject_id}, tier={tier}")
        return result

    def check_multiple_limits(self, checks: Iterable[tuple[int | str, str]]) -> RateLimitResult:
        """按顺序检查多个 (subject, tier)，返回第一个超限的结果

        只要有一个超限，所有层级都不计数。
        """
        now = self._clock()
        evaluated = [self._evaluate(str(subject_id), tier, now) for subject_id, tier in checks]
        if not evaluated:
            raise ValueError("至少需要一个限流检查")

        for result, _ in evaluated:
            if not result.allowed:
                logger.info(f"限流触发: tier={result.tier}")
                return result

        for _, bucket in evaluated:
            bucket.hits.append(now)
        return min((result for result, _ in evaluated), key=lambda r: r.remaining)

    def get_status(self, subject_id: int | str, tier: str) -> RateLimitBucket:
        """查看当前计数，不记录请求"""
        return self._bucket(str(subject_id), self._tier(tier), self._clock())

    def reset(self, subject_id: int | str, tier: str | None = None) -> None:
        for key in list(self._buckets):
            if key[0] == str(subject_id) and (tier is None or key[1] == tier):
                del self._buckets[key]

    def cleanup(self) -> int:
        """清理已经没有命中记录的桶，返回清理数量"""
        now = self._clock()
        removed = 0
        for key, bucket in list(self._buckets.items()):
            bucket.prune(now)
            if not bucket.hits:
                del self._buckets[key]
                removed += 1
        return removed

    def stats(self) -> dict[str, int]:
        counts: dict[str, int] = {name: 0 for name in self._tiers}
        for _, tier in self._buckets:
            counts[tier] += 1
        return counts

    @staticmethod
    def _reason_for(tier: str, wait_seconds: float) -> str:
        wait = max(1, math.ceil(wait_seconds))
        if tier == "user":
            return f"You're sending requests too quickly. Please wait {wait} seconds."
        if tier == "chat":
            return f"This chat is too active. Please wait {wait} seconds."
        if tier == "command":
            return f"You're using commands too frequently. Please wait {wait} seconds."
        if tier == "summary":
            return f"Summary generation is limited. Please wait {math.ceil(wait / 60)} minutes."
        if tier == "global":
            return f"The bot is currently busy. Please wait {wait} seconds."
        return f"Rate limit exceeded. Please wait {wait} seconds."


# 全局单例
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
