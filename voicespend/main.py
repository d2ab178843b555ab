import asyncio
import logging
import sys

from aiogram import Bot, Dispatcher
from pydantic import ValidationError as SettingsValidationError

from voicespend.config import Settings, get_settings
from voicespend.db import create_engine, create_session_factory, init_db
from voicespend.errors import ConfigurationError
from voicespend.health import create_app, start_http_server
from voicespend.repo.repo import Repository
from voicespend.routers.dialog_router import AiogramMessenger, r as dialog_router
from voicespend.scheduler.scheduler import schedule_weekly_digest
from voicespend.services.dialog_service import DialogService
from voicespend.services.extraction import DisabledExtractor, ExpenseExtractor, build_extractor
from voicespend.services.metrics import BotMetrics
from voicespend.services.metrics_warmup import MetricsWarmup, PrometheusQueryClient
from voicespend.services.statistics import StatisticsAggregator
from voicespend.services.transcription import DisabledTranscriber, Transcriber, build_transcriber
from voicespend.states.dialog import StateStore
from voicespend.utils.alerts import setup_logging

logger = logging.getLogger(__name__)


def make_extractor(settings: Settings) -> ExpenseExtractor:
    try:
        return build_extractor(settings)
    except ConfigurationError as e:
        logger.warning("expense extraction disabled: %s", e)
        return DisabledExtractor(str(e))


def make_transcriber(settings: Settings) -> Transcriber:
    try:
        return build_transcriber(settings)
    except ConfigurationError as e:
        logger.warning("voice transcription disabled: %s", e)
        return DisabledTranscriber(str(e))


async def main() -> None:
    """Точка входа VoiceSpend.

    Последовательно выполняет:
      1. Загрузку настроек и логирования (алерты в Telegram, если настроены).
      2. Инициализацию базы данных и репозитория.
      3. Сборку сервисов: извлечение расходов, распознавание речи, метрики.
      4. Прогрев счётчиков и запуск HTTP-сервера /status и /metrics.
      5. Планирование недельной сводки (если задан WEEKLY_REPORT_CRON).
      6. Запуск long polling.
    """
    settings = get_settings()
    alert_handler = setup_logging(settings.LOG_LEVEL, settings.TELEGRAM_BOT_ALERT, settings.TELEGRAM_ALERT_CHAT_ID)

    engine = create_engine(settings.DB_URL)
    await init_db(engine, settings.DB_URL)
    repo = Repository(create_session_factory(engine))

    bot = Bot(token=settings.TELEGRAM_BOT_TOKEN)
    metrics = BotMetrics()
    dialog = DialogService(
        repo=repo,
        store=StateStore(),
        messenger=AiogramMessenger(bot),
        extractor=make_extractor(settings),
        transcriber=make_transcriber(settings),
        metrics=metrics,
        aggregator=StatisticsAggregator(),
    )

    prometheus = PrometheusQueryClient(settings.PROMETHEUS_URL) if settings.PROMETHEUS_URL else None
    warmup = MetricsWarmup(
        metrics, repo, prometheus,
        retry_interval=settings.METRICS_RETRY_INTERVAL,
        max_retries=settings.METRICS_MAX_RETRIES,
    )
    await warmup.start()

    runner = await start_http_server(create_app(repo, metrics), settings.HTTP_HOST, settings.HTTP_PORT)

    digest = None
    if settings.WEEKLY_REPORT_CRON:
        digest = schedule_weekly_digest(
            bot=bot,
            repo=repo,
            digest_fn=dialog.weekly_digest,
            cron=settings.WEEKLY_REPORT_CRON,
            report_name="📊 Weekly expense digest",
        )

    dp = Dispatcher()
    dp["dialog"] = dialog
    dp.include_router(router=dialog_router)

    logger.info("bot started")
    try:
        await dp.start_polling(bot)
    finally:
        if digest is not None:
            digest.stop()
        await warmup.stop()
        await runner.cleanup()
        await bot.session.close()
        if alert_handler is not None:
            await alert_handler.close_session()
        await engine.dispose()
        logger.info("bot stopped")


def run() -> None:
    try:
        asyncio.run(main())
    except SettingsValidationError as e:
        # без TELEGRAM_BOT_TOKEN запускаться бессмысленно
        print(f"invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
