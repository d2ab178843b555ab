import logging
from typing import Awaitable, Callable, Optional

import aiocron
from aiogram import Bot

from voicespend.repo.repo import Repository

logger = logging.getLogger(__name__)


def schedule_weekly_digest(
    *,
    bot: Bot,
    repo: Repository,
    digest_fn: Callable[[int], Awaitable[Optional[str]]],
    cron: str,
    report_name: str = "weekly digest",
) -> aiocron.Cron:
    """
    Планирует рассылку недельной сводки всем активным пользователям.

    :param bot: Telegram bot instance
    :param repo: репозиторий, из которого берётся список пользователей
    :param digest_fn: возвращает текст сводки по telegram_id или None, если отправлять нечего
    :param cron: Cron-выражение (пример: '0 9 * * MON')
    :param report_name: Имя рассылки (для логов)
    """

    async def cron_task() -> None:
        try:
            telegram_ids = await repo.list_user_external_ids()
        except Exception:
            logger.exception("%s: failed to load users", report_name)
            return

        sent = 0
        for telegram_id in telegram_ids:
            try:
                report = await digest_fn(telegram_id)
                if report is None:
                    continue
                await bot.send_message(chat_id=telegram_id, text=report, parse_mode="HTML")
                sent += 1
            except Exception as e:
                logger.error("failed to send %s to user %s: %s", report_name, telegram_id, e)
        logger.info("%s sent to %s of %s users", report_name, sent, len(telegram_ids))

    logger.info("%s scheduled: %s", report_name, cron)
    return aiocron.crontab(cron, func=cron_task, start=True)
