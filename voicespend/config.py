from functools import lru_cache

from dotenv import load_dotenv
load_dotenv()

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Конфигурация приложения VoiceSpend.

    Значения подгружаются из окружения и файла `.env`. Обязателен только токен
    Telegram-бота: без ключей LLM/STT бот стартует, но соответствующие
    функции отвечают пользователю ошибкой.

    Атрибуты:
        TELEGRAM_BOT_TOKEN (str): Токен Telegram-бота.
        DB_URL (str): URL подключения к базе данных (SQLite или PostgreSQL).
        LLM_API_KEY (str | None): Токен сервиса извлечения расходов.
        STT_BACKEND (str): 'remote' (HTTP API распознавания) или 'local' (whisper-cli).
        PROMETHEUS_URL (str): Откуда восстанавливать счётчики после рестарта.
    """
    TELEGRAM_BOT_TOKEN: str = Field(..., alias="TELEGRAM_BOT_TOKEN")
    DB_URL: str = Field(default="sqlite+aiosqlite:///data/voicespend.db", alias="DB_URL")

    # извлечение расходов (OpenAI-совместимый chat completions)
    LLM_API_KEY: str | None = Field(default=None, alias="LLM_API_KEY")
    LLM_API_URL: str = Field(default="https://api.groq.com/openai/v1/chat/completions", alias="LLM_API_URL")
    LLM_MODEL: str = Field(default="llama-3.1-8b-instant", alias="LLM_MODEL")
    LLM_TIMEOUT: float = Field(default=20.0, alias="LLM_TIMEOUT")
    BASE_CURRENCY: str = Field(default="RUB", alias="BASE_CURRENCY")

    # распознавание речи
    STT_BACKEND: str = Field(default="remote", alias="STT_BACKEND")
    STT_API_KEY: str | None = Field(default=None, alias="STT_API_KEY")
    STT_API_URL: str = Field(default="https://api.groq.com/openai/v1/audio/transcriptions", alias="STT_API_URL")
    STT_MODEL: str = Field(default="whisper-large-v3-turbo", alias="STT_MODEL")
    STT_LANGUAGE: str = Field(default="ru", alias="STT_LANGUAGE")
    STT_TIMEOUT: float = Field(default=30.0, alias="STT_TIMEOUT")
    WHISPER_CLI_PATH: str = Field(default="whisper-cli", alias="WHISPER_CLI_PATH")
    WHISPER_MODEL_PATH: str = Field(default="models/ggml-base.bin", alias="WHISPER_MODEL_PATH")
    FFMPEG_PATH: str = Field(default="ffmpeg", alias="FFMPEG_PATH")
    FFMPEG_TIMEOUT: float = Field(default=10.0, alias="FFMPEG_TIMEOUT")

    # health / metrics
    HTTP_HOST: str = Field(default="0.0.0.0", alias="HTTP_HOST")
    HTTP_PORT: int = Field(default=8080, alias="HTTP_PORT")
    PROMETHEUS_URL: str | None = Field(default="http://prometheus:9090", alias="PROMETHEUS_URL")
    METRICS_RETRY_INTERVAL: float = Field(default=30.0, alias="METRICS_RETRY_INTERVAL")
    METRICS_MAX_RETRIES: int = Field(default=20, alias="METRICS_MAX_RETRIES")

    WEEKLY_REPORT_CRON: str | None = Field(default=None, alias="WEEKLY_REPORT_CRON")

    LOG_LEVEL: str = Field(default="INFO", alias="LOG_LEVEL")
    TELEGRAM_BOT_ALERT: str | None = Field(default=None, alias="TELEGRAM_BOT_ALERT")
    TELEGRAM_ALERT_CHAT_ID: str | None = Field(default=None, alias="TELEGRAM_ALERT_CHAT_ID")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    @property
    def stt_api_key(self) -> str | None:
        # Groq отдаёт и чат, и распознавание по одному ключу
        return self.STT_API_KEY or self.LLM_API_KEY


@lru_cache
def get_settings() -> Settings:
    return Settings()
