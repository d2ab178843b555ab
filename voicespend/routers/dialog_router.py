import logging
from pathlib import Path
from typing import Optional

from aiogram import Bot, F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandStart
from aiogram.types import CallbackQuery, Message, User as TgUser

from voicespend.services.dialog_service import DialogService, Sender

logger = logging.getLogger(__name__)

r = Router()


class AiogramMessenger:
    """Отправка ответов DialogService через Bot API (всегда HTML)."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, chat_id: int, text: str, reply_markup=None) -> None:
        try:
            await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup, parse_mode="HTML")
        except TelegramAPIError as e:
            logger.error("failed to send message to %s: %s", chat_id, e)

    async def answer_callback(self, callback_id: str, text: Optional[str] = None, show_alert: bool = False) -> None:
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text, show_alert=show_alert)
        except TelegramAPIError as e:
            logger.warning("failed to answer callback %s: %s", callback_id, e)


def _sender(user: TgUser, chat_id: int) -> Sender:
    return Sender(
        user_id=user.id,
        chat_id=chat_id,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
    )


# ================== Хендлеры ==================
@r.message(CommandStart())
async def start(m: Message, dialog: DialogService):
    await dialog.handle_start(_sender(m.from_user, m.chat.id))


@r.message(Command("help"))
async def help_cmd(m: Message, dialog: DialogService):
    await dialog.handle_help(_sender(m.from_user, m.chat.id))


@r.message(F.voice)
async def on_voice(m: Message, bot: Bot, dialog: DialogService):
    async def download(destination: Path) -> None:
        await bot.download(m.voice, destination=destination)

    await dialog.handle_voice(_sender(m.from_user, m.chat.id), download)


@r.message(F.text)
async def on_text(m: Message, dialog: DialogService):
    await dialog.handle_text(_sender(m.from_user, m.chat.id), m.text)


@r.message()
async def on_other(m: Message, dialog: DialogService):
    if m.from_user is None:
        return
    await dialog.handle_unsupported(_sender(m.from_user, m.chat.id))


@r.callback_query()
async def on_callback(cb: CallbackQuery, dialog: DialogService):
    chat_id = cb.message.chat.id if cb.message is not None else cb.from_user.id
    await dialog.handle_callback(_sender(cb.from_user, chat_id), cb.id, cb.data or "")
