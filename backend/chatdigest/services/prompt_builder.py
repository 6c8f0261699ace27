"""摘要提示词的构建与对话记录截断"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from chatdigest.models.enums import SummaryFormat, SummaryType
from chatdigest.schemas.summary import SummaryPreferences


@dataclass(frozen=True)
class PromptMessage:
    author_id: int
    author_name: str | None
    content: str
    timestamp: datetime


@dataclass(frozen=True)
class PromptContext:
    summary_type: SummaryType
    chat_title: str | None
    chat_type: str
    participant_count: int
    duration_minutes: int
    start_time: datetime
    end_time: datetime
    total_messages: int
    omitted_messages: int = 0


def author_labels(messages: Sequence[PromptMessage], include_usernames: bool) -> dict[int, str]:
    """发送者显示名；不包含用户名时按首次出现顺序匿名为 Participant N"""
    labels: dict[int, str] = {}
    for message in messages:
        if message.author_id in labels:
            continue
        if include_usernames and message.author_name:
            labels[message.author_id] = message.author_name
        elif include_usernames:
            labels[message.author_id] = str(message.author_id)
        else:
            labels[message.author_id] = f"Participant {len(labels) + 1}"
    return labels


def format_line(message: PromptMessage, label: str, include_timestamps: bool) -> str:
    line = f"{label}: {message.content}"
    if include_timestamps:
        line = f"[{message.timestamp.strftime('%Y-%m-%d %H:%M')}] {line}"
    return line


def select_recent_messages(
    messages: Sequence[PromptMessage],
    preferences: SummaryPreferences,
    max_chars: int,
) -> tuple[list[PromptMessage], int]:
    """从最新的消息往前保留，直到超出字符预算

    返回 (保留的消息（时间正序）, 被省略的条数)。至少保留最新的一条。
    """
    labels = author_labels(messages, preferences.include_usernames)
    kept: list[PromptMessage] = []
    used = 0
    for message in reversed(messages):
        line = format_line(message, labels[message.author_id], preferences.include_timestamps)
        cost = len(line) + 1
        if kept and used + cost > max_chars:
            break
        kept.append(message)
        used += cost
    kept.reverse()
    return kept, len(messages) - len(kept)


def build_transcript(messages: Sequence[PromptMessage], preferences: SummaryPreferences) -> str:
    labels = author_labels(messages, preferences.include_usernames)
    return "\n".join(
        format_line(message, labels[message.author_id], preferences.include_timestamps) for message in messages
    )


def build_system_prompt(preferences: SummaryPreferences, context: PromptContext) -> str:
    prompt = "You are an assistant that writes concise, faithful summaries of group chat conversations. "

    if preferences.format is SummaryFormat.BRIEF:
        prompt += "Write a brief summary in 2-3 sentences highlighting the main points."
    elif preferences.format is SummaryFormat.BULLET_POINTS:
        prompt += "Organise the summary as bullet points grouped by topic."
    else:
        prompt += "Write a detailed summary covering all major topics, key decisions and important discussions."

    if context.summary_type.is_scheduled:
        prompt += f" This is the {context.summary_type.value} digest for the chat; emphasise what changed in this period."

    if preferences.focus_on_decisions:
        prompt += " Clearly list any decisions or agreements the group reached."
    if preferences.focus_on_questions:
        prompt += " List important questions, and call out the ones that are still open."

    if preferences.include_usernames:
        prompt += " Attribute key points to participants by name."
    else:
        prompt += " Participants are anonymised; refer to them only by their labels."

    if context.chat_type in ("group", "supergroup"):
        prompt += " Mention the most active participants and their contributions."

    prompt += f" Respond in {preferences.language}."
    return prompt


def build_user_prompt(messages: Sequence[PromptMessage], preferences: SummaryPreferences, context: PromptContext) -> str:
    header = [
        f"Chat: {context.chat_title or 'untitled chat'}",
        f"Participants: {context.participant_count}",
        f"Period: {context.start_time.strftime('%Y-%m-%d %H:%M')} - {context.end_time.strftime('%Y-%m-%d %H:%M')} UTC "
        f"({context.duration_minutes} minutes)",
    ]
    if context.omitted_messages:
        header.append(
            f"Note: the {context.omitted_messages} earliest of {context.total_messages} messages were omitted for length."
        )
    return "\n".join(header) + "\n\n=== Conversation ===\n" + build_transcript(messages, preferences)
