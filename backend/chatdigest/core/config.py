from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,  # 环境变量名不区分大小写
    )

    log_level: str = "info"

    # 数据库配置（可选，默认使用 SQLite）
    database_url: str = "sqlite+aiosqlite:///./chatdigest.db"

    # Telegram Bot API 配置（用于发送摘要，未配置时不发送）
    telegram_bot_token: str | None = None

    # Telethon 监听配置（可选，用于采集群消息）
    telegram_listener_enabled: bool = False
    telegram_api_id: int | None = None
    telegram_api_hash: str | None = None
    telegram_data_dir: str = "./.telegram"
    telegram_session_name: str = "chatdigest"

    # LLM 配置（OpenAI 兼容接口，默认 DeepSeek）
    llm_api_key: str = Field(default="", validation_alias="DEEPSEEK_API_KEY")
    llm_base_url: str = "https://api.deepseek.com/chat/completions"
    llm_model: str = "deepseek-chat"
    llm_max_tokens: int = 1500
    llm_temperature: float = 0.3
    llm_timeout_seconds: float = 60.0

    # 追踪会话配置
    session_inactivity_timeout_hours: int = 24
    max_session_duration_hours: int = 72
    max_messages_per_session: int = 1000
    max_active_sessions_per_user: int = 5
    min_message_length: int = 3

    # 摘要配置
    summary_max_transcript_chars: int = 12000
    summary_default_language: str = "en"

    # 定时摘要配置
    scheduler_enabled: bool = True
    scheduler_batch_size: int = 10
    scheduler_batch_delay_seconds: float = 2.0
    scheduler_chat_timeout_seconds: float = 120.0
    session_sweep_interval_minutes: int = 30

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """
        自定义设置源优先级
        确保环境变量和 .env 文件都能正确读取
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,  # .env 文件
            file_secret_settings,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
