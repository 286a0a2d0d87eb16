"""Configuration settings using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    discord_token: str
    database_url: str = "sqlite+aiosqlite:///data/demotion_bot.db"

    # 降格の自動復元チェック間隔 (秒)
    demotion_check_interval_seconds: float = 10.0
    # 復元完了後に予約マーカーを保持する時間 (秒)
    restore_grace_seconds: float = 5.0
    # Discord API 呼び出しのタイムアウト (秒)
    platform_timeout_seconds: float = 10.0
    # ユーザーごとのコマンドクールダウン (秒)
    command_cooldown_seconds: float = 5.0

    # プレゼンス
    bot_status: str = "online"
    activity_type: str = "playing"
    activity_name: str = ""

    # ウェルカムメッセージ送信先チャンネル名 (空なら無効)
    welcome_channel_name: str = ""

    log_level: str = "INFO"


settings = Settings()
