"""LLM 客户端（OpenAI 兼容接口，默认 DeepSeek），用于生成摘要"""

import json
import logging
import re
import time
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

import httpx

from chatdigest.core.config import settings
from chatdigest.schemas.summary import SummaryPreferences
from chatdigest.services.prompt_builder import (
    PromptContext,
    PromptMessage,
    author_labels,
    build_system_prompt,
    build_user_prompt,
)

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    "the a an and or but in on at to for of with by about into through during before after above below up down "
    "out off over under again further then once here there when where why how all any both each few more most "
    "other some such no nor not only own same so than too very can will just should now this that these those "
    "they them their were was have has had been being from chat participants participant summary discussed".split()
)
POSITIVE_WORDS = frozenset(
    "good great excellent amazing wonderful fantastic awesome perfect love like happy pleased satisfied agreed thanks".split()
)
NEGATIVE_WORDS = frozenset(
    "bad terrible awful horrible worst hate dislike angry frustrated disappointed sad upset problem issue".split()
)


@dataclass
class SummaryRequest:
    messages: Sequence[PromptMessage]
    preferences: SummaryPreferences
    context: PromptContext


@dataclass
class SummaryMetadata:
    participant_count: int
    key_participants: list[str]
    main_topics: list[str]
    sentiment: str
    confidence: float
    processing_time_ms: int
    token_usage: dict[str, int] = field(default_factory=dict)


@dataclass
class SummaryResult:
    summary: str
    model: str
    metadata: SummaryMetadata


def extract_key_participants(messages: Sequence[PromptMessage], include_usernames: bool, limit: int = 5) -> list[str]:
    labels = author_labels(messages, include_usernames)
    counts = Counter(labels[message.author_id] for message in messages)
    return [name for name, _ in counts.most_common(limit)]


def extract_topics(text: str, limit: int = 5) -> list[str]:
    words = [word for word in re.split(r"\W+", text.lower()) if len(word) > 3 and word not in STOP_WORDS]
    return [word for word, _ in Counter(words).most_common(limit)]


def analyze_sentiment(text: str) -> str:
    words = re.split(r"\W+", text.lower())
    positive = sum(1 for word in words if word in POSITIVE_WORDS)
    negative = sum(1 for word in words if word in NEGATIVE_WORDS)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


class SummaryClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url or settings.llm_base_url
        self._model = model or settings.llm_model
        self._api_key = api_key if api_key is not None else settings.llm_api_key
        self._timeout = timeout or settings.llm_timeout_seconds
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def generate_summary(self, request: SummaryRequest) -> SummaryResult:
        started = time.monotonic()
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": build_system_prompt(request.preferences, request.context)},
                {"role": "user", "content": build_user_prompt(request.messages, request.preferences, request.context)},
            ],
            "max_tokens": request.preferences.max_length or settings.llm_max_tokens,
            "temperature": settings.llm_temperature,
        }

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._base_url, headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()

        try:
            summary_text = data["choices"][0]["message"]["content"].strip()
            model_name = data.get("model", self._model)
        except (KeyError, IndexError, AttributeError) as exc:
            logger.exception("LLM 返回格式不符合预期: %s", json.dumps(data, ensure_ascii=False))
            raise RuntimeError("LLM 返回格式不正确") from exc

        if not summary_text:
            raise RuntimeError("LLM 返回了空摘要")

        usage = data.get("usage") or {}
        metadata = SummaryMetadata(
            participant_count=len({message.author_id for message in request.messages}),
            key_participants=extract_key_participants(request.messages, request.preferences.include_usernames),
            main_topics=extract_topics(summary_text),
            sentiment=analyze_sentiment(summary_text),
            confidence=0.8,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            token_usage={
                "prompt_tokens": int(usage.get("prompt_tokens", 0)),
                "completion_tokens": int(usage.get("completion_tokens", 0)),
                "total_tokens": int(usage.get("total_tokens", 0)),
            },
        )
        return SummaryResult(summary=summary_text, model=model_name, metadata=metadata)


_summary_client: SummaryClient | None = None


def get_summary_client() -> SummaryClient:
    global _summary_client
    if _summary_client is None:
        _summary_client = SummaryClient()
    return _summary_client
