"""Telegram 通知模块 - 使用 Bot API

摘要发送是尽力而为：失败只记录日志，不重试，也不回滚已保存的摘要。
"""

import asyncio
import logging
from typing import Optional

import httpx

from chatdigest.core.config import settings

logger = logging.getLogger(__name__)

# Telegram 单条消息长度上限
MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier:
    """Telegram 通知发送器（Bot API）"""

    def __init__(
        self,
        bot_token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._bot_token = bot_token if bot_token is not None else settings.telegram_bot_token
        self._timeout = timeout
        self._transport = transport
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token)

    async def initialize(self) -> None:
        """初始化通知器"""
        async with self._lock:
            if self._initialized:
                return

            if self.enabled:
                logger.info("使用 Bot API 发送摘要通知")
            else:
                logger.warning("未配置 TELEGRAM_BOT_TOKEN，摘要不会发送到聊天")
            self._initialized = True

    async def send(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        disable_notification: bool = False,
    ) -> bool:
        """
        发送文本消息到指定聊天

        Args:
            chat_id: 目标聊天 ID
            text: 消息内容，超长时截断
            parse_mode: 解析模式（'HTML' 或 'Markdown'）
            disable_notification: 是否静默发送

        Returns:
            是否发送成功
        """
        if not self._initialized:
            await self.initialize()

        if not self.enabled:
            return False

        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 1] + "…"

        url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_notification": disable_notification,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                result = response.json()

                if result.get("ok"):
                    logger.debug(f"成功发送 Telegram 消息到 {chat_id}")
                    return True
                logger.error(f"发送 Telegram 消息失败: {result.get('description', '未知错误')}")
                return False
        except Exception as e:
            logger.error(f"Bot API 请求失败: {e}")
            return False

    async def close(self) -> None:
        """关闭连接"""
        self._initialized = False


# 全局单例
_telegram_notifier: Optional[TelegramNotifier] = None


def get_telegram_notifier() -> TelegramNotifier:
    """获取 Telegram 通知器单例"""
    global _telegram_notifier
    if _telegram_notifier is None:
        _telegram_notifier = TelegramNotifier()
    return _telegram_notifier
