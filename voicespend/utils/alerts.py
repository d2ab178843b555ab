"""
Логирование бота и алерты об ошибках в Telegram.

`setup_logging()` настраивает корневой логгер (уровень из LOG_LEVEL) и, если
заданы TELEGRAM_BOT_ALERT и TELEGRAM_ALERT_CHAT_ID, подключает
`TelegramAlertHandler`: записи уровня WARNING и выше уходят в указанные чаты
через отдельного бота. Без токена или чатов обработчик работает как no-op.

Переменные окружения:
- TELEGRAM_BOT_ALERT: токен бота для алертов.
- TELEGRAM_ALERT_CHAT_ID: идентификатор(-ы) чатов через запятую,
  например "123456789,-1001234567890".
"""
import asyncio
import logging
import sys
from typing import List, Optional

from aiogram import Bot

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# сообщение Telegram ограничено 4096 символами
MAX_ALERT_LENGTH = 4000


def parse_chat_ids(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    ids: List[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            continue
    return ids


class TelegramAlertHandler(logging.Handler):
    """Отправляет записи уровня WARNING+ в Telegram через бота для алертов.

    Отправка выполняется фоновой задачей в текущем event loop; вне loop'а
    запись пропускается.
    """

    def __init__(self, token: Optional[str], chat_ids: Optional[str], level: int = logging.WARNING) -> None:
        super().__init__(level=level)
        self._chat_ids = parse_chat_ids(chat_ids)
        self._bot: Optional[Bot] = Bot(token=token) if token and self._chat_ids else None
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._bot is not None

    def emit(self, record: logging.LogRecord) -> None:
        if self._bot is None:
            return
        # не пересылаем собственные ошибки aiogram, иначе сбой отправки зациклится
        if record.name.startswith("aiogram"):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        try:
            msg = self.format(record)[:MAX_ALERT_LENGTH]
            task = loop.create_task(self._send(msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        except Exception:
            self.handleError(record)

    async def _send(self, text: str) -> None:
        assert self._bot is not None
        for chat_id in self._chat_ids:
            try:
                await self._bot.send_message(chat_id=chat_id, text=f"🚨 Alert:\n{text}")
            except Exception as e:
                print(f"failed to send alert to {chat_id}: {e}", file=sys.stderr)

    async def close_session(self) -> None:
        if self._bot is not None:
            await self._bot.session.close()


def setup_logging(level: str = "INFO", alert_token: Optional[str] = None,
                  alert_chat_ids: Optional[str] = None) -> Optional[TelegramAlertHandler]:
    """Настраивает корневой логгер; повторный вызов не дублирует обработчики."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    for h in root.handlers:
        if isinstance(h, TelegramAlertHandler):
            return h

    handler = TelegramAlertHandler(alert_token, alert_chat_ids)
    if not handler.enabled:
        return None
    handler.setFormatter(formatter)
    root.addHandler(handler)
    return handler
