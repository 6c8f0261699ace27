import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from telethon import TelegramClient, events

from chatdigest.core.config import settings
from chatdigest.core.db import get_sessionmaker
from chatdigest.models.enums import MessageType
from chatdigest.schemas.tracking import InboundMessage
from chatdigest.services.message_collector import MessageCollector

logger = logging.getLogger(__name__)

# Telethon 消息属性 -> 消息类型，按顺序匹配
_MEDIA_ATTRIBUTES = (
    ("sticker", MessageType.STICKER),
    ("gif", MessageType.ANIMATION),
    ("voice", MessageType.VOICE),
    ("audio", MessageType.AUDIO),
    ("video", MessageType.VIDEO),
    ("photo", MessageType.PHOTO),
    ("poll", MessageType.POLL),
    ("contact", MessageType.CONTACT),
    ("geo", MessageType.LOCATION),
    ("document", MessageType.DOCUMENT),
)


def detect_message_type(message: Any) -> MessageType:
    if getattr(message, "action", None) is not None:
        return MessageType.SERVICE
    for attribute, message_type in _MEDIA_ATTRIBUTES:
        if getattr(message, attribute, None):
            return message_type
    return MessageType.TEXT


def display_name(sender: Any) -> str | None:
    if sender is None:
        return None
    first = getattr(sender, "first_name", None) or ""
    last = getattr(sender, "last_name", None) or ""
    full = f"{first} {last}".strip()
    return full or getattr(sender, "username", None) or getattr(sender, "title", None)


def build_inbound_message(message: Any, sender: Any) -> InboundMessage:
    """把 Telethon 消息转换为采集用的 InboundMessage"""
    text = message.message or ""
    timestamp = message.date or datetime.now(timezone.utc)
    if timestamp.tzinfo is not None:
        # 数据库统一存储无时区的 UTC 时间
        timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)

    return InboundMessage(
        chat_id=message.chat_id,
        author_id=message.sender_id or 0,
        content=text,
        message_type=detect_message_type(message),
        timestamp=timestamp,
        message_id=message.id,
        author_name=display_name(sender),
        is_bot=bool(getattr(sender, "bot", False)),
        is_command=text.startswith("/"),
    )


class TelegramListener:
    def __init__(self) -> None:
        self._client: TelegramClient | None = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._lock:
            if self._client and self._client.is_connected():
                return

            if not settings.telegram_api_id or not settings.telegram_api_hash:
                raise RuntimeError("未配置 TELEGRAM_API_ID / TELEGRAM_API_HASH，无法启动 Telegram listener")

            data_dir = Path(settings.telegram_data_dir)
            data_dir.mkdir(parents=True, exist_ok=True)

            session_path = data_dir / settings.telegram_session_name

            client = TelegramClient(
                str(session_path),
                settings.telegram_api_id,
                settings.telegram_api_hash,
                connection_retries=5,  # 连接重试次数
                retry_delay=1,  # 重试延迟（秒）
                timeout=30,  # 连接超时（秒）
            )

            await client.connect()

            if not await client.is_user_authorized():
                await client.disconnect()
                logger.error("Telegram 客户端尚未授权，请先执行登入流程")
                raise RuntimeError("Telegram 客户端需要人工授权，请先登入")

            # 不限定聊天，是否记录由聊天中是否有进行中的追踪会话决定
            client.add_event_handler(self._handle_new_message, events.NewMessage())
            self._client = client

            me = await client.get_me()
            logger.info(f"Telegram listener 已启动，当前用户: {me.first_name} (@{me.username or '无用户名'})")

    async def stop(self) -> None:
        async with self._lock:
            if self._client and self._client.is_connected():
                await self._client.disconnect()
                logger.info("Telegram listener 已停止")
            self._client = None

    async def _handle_new_message(self, event: events.NewMessage.Event) -> None:
        message = event.message
        try:
            sender = await event.get_sender()
        except Exception as e:
            logger.debug(f"获取消息 {message.id} 的发送者失败: {e}")
            sender = None

        inbound = build_inbound_message(message, sender)

        session_maker = get_sessionmaker()
        try:
            async with session_maker() as session:
                recorded = await MessageCollector(session).collect(inbound)
        except Exception as e:
            logger.error(f"记录聊天 {inbound.chat_id} 的消息 {inbound.message_id} 失败: {e}", exc_info=True)
            return

        if recorded:
            logger.debug(f"消息 {inbound.message_id} 已写入 {len(recorded)} 个追踪会话")


telegram_listener = TelegramListener()
