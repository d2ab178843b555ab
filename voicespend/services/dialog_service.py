"""
Диалог с пользователем: машина состояний добавления расходов и статистики.

Сервис не зависит от aiogram: входящие события приходят как вызовы методов,
исходящие сообщения уходят через Messenger. Состояние каждого пользователя
хранится в StateStore; подтверждение пачки атомарно забирает её из хранилища,
поэтому двойное нажатие «Подтвердить» не создаёт дубликатов.
"""
from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass
from html import escape
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol

from voicespend.db.models import User
from voicespend.errors import (
    ExtractionError, NotFoundError, PersistenceError, TranscriptionError, ValidationError,
)
from voicespend.keyboards import menus
from voicespend.repo.repo import DEFAULT_CATEGORY_EMOJI, Repository
from voicespend.services.extraction import ExpenseExtractor
from voicespend.services.metrics import BotMetrics
from voicespend.services.statistics import StatisticsAggregator
from voicespend.services.transcription import Transcriber
from voicespend.states.dialog import DialogState, ExpenseDraft, StateStore, StatsKind
from voicespend.utils.date_ranges import FIXED_PERIODS, TimePeriod, get_week_period, parse_custom_period
from voicespend.utils.formatting import currency_symbol, format_amount

logger = logging.getLogger(__name__)

MAX_EXPENSE_PERIOD_DAYS = 31

HELP_TEXT = (
    "📚 <b>Справка по командам:</b>\n\n"
    f"<b>{menus.BTN_ADD_EXPENSE}</b> - Добавить новый расход\n"
    "Нажмите кнопку и отправьте голосовое сообщение или текст с описанием расхода.\n\n"
    f"<b>{menus.BTN_ADD_CATEGORY}</b> - Добавить свою категорию расхода (пока не реализовано)\n\n"
    f"<b>{menus.BTN_STATISTICS}</b> - Статистика\n"
    "Показать распределение расходов по категориям или тратам.\n\n"
    "💡 Используйте кнопки меню для доступа к функциям."
)

CUSTOM_PERIOD_PROMPT = (
    "📅 <b>Введите кастомный период</b>\n\n"
    "Форматы:\n"
    "• <code>03.04.25 07.04.25</code>\n"
    "• <code>03.04.25 - 07.04.25</code>\n"
    "• <code>03.04 07.04</code> (текущий год)\n"
    "• <code>03.04 - 07.04</code> (текущий год)"
)


@dataclass(frozen=True)
class Sender:
    """Отправитель входящего события."""
    user_id: int
    chat_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class Messenger(Protocol):
    async def send(self, chat_id: int, text: str, reply_markup=None) -> None:
        ...

    async def answer_callback(self, callback_id: str, text: Optional[str] = None, show_alert: bool = False) -> None:
        ...


AudioDownloader = Callable[[Path], Awaitable[None]]


def format_drafts(drafts: tuple[ExpenseDraft, ...] | list[ExpenseDraft]) -> str:
    lines = []
    for d in drafts:
        line = f"💰 {format_amount(d.amount)} {currency_symbol(d.currency)} — {escape(d.category or '—')}"
        if d.description:
            line += f" ({escape(d.description)})"
        lines.append(line)
    return "\n".join(lines)


class DialogService:
    def __init__(
        self,
        repo: Repository,
        store: StateStore,
        messenger: Messenger,
        extractor: ExpenseExtractor,
        transcriber: Transcriber,
        metrics: BotMetrics,
        aggregator: StatisticsAggregator | None = None,
    ):
        self.repo = repo
        self.store = store
        self.messenger = messenger
        self.extractor = extractor
        self.transcriber = transcriber
        self.metrics = metrics
        self.aggregator = aggregator or StatisticsAggregator()

    # ================== Команды ==================
    async def handle_start(self, sender: Sender) -> None:
        self.metrics.commands_processed.labels(command="start").inc()
        try:
            user = await self.repo.get_or_create_user_by_external_id(
                sender.user_id, sender.username, sender.first_name, sender.last_name
            )
        except PersistenceError as e:
            self.metrics.error("user_registration")
            logger.error("failed to get or create user %s: %s", sender.user_id, e)
            await self.messenger.send(sender.chat_id, "Произошла ошибка при регистрации. Попробуйте позже.")
            return

        self.store.clear(sender.user_id)
        logger.info("user started bot: user_id=%s telegram_id=%s", user.id, sender.user_id)
        await self.messenger.send(
            sender.chat_id,
            f"👋 Привет, {escape(sender.first_name or sender.username or 'друг')}!\n\n"
            "Я помогу вам вести учет расходов.\n\n"
            "Используйте кнопки ниже для управления:",
            menus.main_menu_kb(),
        )

    async def handle_help(self, sender: Sender) -> None:
        self.metrics.commands_processed.labels(command="help").inc()
        await self.messenger.send(sender.chat_id, HELP_TEXT, menus.main_menu_kb())

    async def handle_unsupported(self, sender: Sender) -> None:
        self.metrics.messages_processed.labels(type="other").inc()
        await self.messenger.send(
            sender.chat_id,
            "Неизвестная команда. Используйте /help для списка доступных команд.",
            menus.main_menu_kb(),
        )

    # ================== Входящие сообщения ==================
    async def handle_text(self, sender: Sender, text: str) -> None:
        text = (text or "").strip()
        # /start и /help перехватывает роутер, остальные команды не расходы
        if text.startswith("/"):
            await self.handle_unsupported(sender)
            return

        self.metrics.messages_processed.labels(type="text").inc()
        user = await self._require_user(sender)
        if user is None:
            return

        if await self._handle_button(sender, user, text):
            return

        if self.store.get(sender.user_id).state == DialogState.awaiting_custom_period:
            await self._handle_custom_period_input(sender, user, text)
            return

        # всё остальное считаем описанием расхода
        await self._process_expense_text(sender, user, text)

    async def handle_voice(self, sender: Sender, download: AudioDownloader) -> None:
        self.metrics.messages_processed.labels(type="voice").inc()
        user = await self._require_user(sender)
        if user is None:
            return

        st = self.store.get(sender.user_id)
        if st.state == DialogState.awaiting_custom_period:
            await self.messenger.send(
                sender.chat_id,
                "Пожалуйста, введите период текстом в формате: ДД.ММ.ГГ ДД.ММ.ГГ",
                menus.keyboard_for_state(st.state, st.stats_kind),
            )
            return

        # новое сообщение отменяет неподтверждённую пачку, даже если расходов в нём не найдётся
        self.store.clear(sender.user_id)
        with tempfile.TemporaryDirectory(prefix="voicespend_voice_") as tmp_dir:
            audio_path = Path(tmp_dir) / "voice.ogg"
            try:
                await download(audio_path)
            except Exception:
                self.metrics.error("download_file")
                logger.exception("failed to download voice file for user %s", sender.user_id)
                await self.messenger.send(
                    sender.chat_id, "Ошибка получения голосового сообщения. Попробуйте ещё раз.", menus.main_menu_kb()
                )
                return

            started = time.perf_counter()
            try:
                text = await self.transcriber.transcribe(audio_path)
            except TranscriptionError as e:
                self.metrics.error("transcription")
                logger.error("failed to transcribe voice for user %s: %s", sender.user_id, e)
                await self.messenger.send(
                    sender.chat_id, "Ошибка распознавания голоса. Попробуйте ещё раз или напишите текстом.",
                    menus.main_menu_kb(),
                )
                return
            finally:
                self.metrics.transcription_duration.observe(time.perf_counter() - started)

        logger.info("transcription result for user %s: %s", sender.user_id, text)
        if not text.strip():
            await self.messenger.send(
                sender.chat_id, "Не удалось разобрать речь. Попробуйте ещё раз или напишите текстом.",
                menus.main_menu_kb(),
            )
            return
        await self._process_expense_text(sender, user, text)

    # ================== Inline-колбэки ==================
    async def handle_callback(self, sender: Sender, callback_id: str, data: str) -> None:
        logger.info("callback received: data=%s from=%s", data, sender.user_id)
        try:
            user = await self.repo.require_user_by_external_id(sender.user_id)
        except NotFoundError:
            self.metrics.error("user_not_found")
            await self.messenger.answer_callback(
                callback_id, "Ошибка: пользователь не найден. Используйте /start", show_alert=True
            )
            return
        except PersistenceError as e:
            self.metrics.error("database")
            logger.error("failed to load user %s: %s", sender.user_id, e)
            await self.messenger.answer_callback(callback_id, "Ошибка базы данных, попробуйте позже", show_alert=True)
            return

        action, sep, value = (data or "").partition(":")
        if not sep:
            await self.messenger.answer_callback(callback_id)
            return

        if action == "expense" and value == "cancel":
            await self._cancel_expenses(sender, callback_id)
        elif action == "expense" and value == "confirm":
            await self._confirm_expenses(sender, user, callback_id)
        else:
            await self.messenger.answer_callback(callback_id, "Неизвестное действие")

    async def _cancel_expenses(self, sender: Sender, callback_id: str) -> None:
        self.metrics.callbacks_processed.labels(action="cancel").inc()
        self.store.clear(sender.user_id)
        await self.messenger.answer_callback(callback_id)
        await self.messenger.send(sender.chat_id, "Отменено.", menus.main_menu_kb())

    async def _confirm_expenses(self, sender: Sender, user: User, callback_id: str) -> None:
        self.metrics.callbacks_processed.labels(action="confirm").inc()
        drafts = self.store.take_pending(sender.user_id)
        if not drafts:
            await self.messenger.answer_callback(callback_id, "Ошибка: нет данных расхода", show_alert=True)
            return

        saved = await self._persist_drafts(sender, user, drafts)
        if saved < len(drafts):
            await self.messenger.answer_callback(callback_id, "Ошибка сохранения", show_alert=True)
            return

        await self.messenger.answer_callback(callback_id, "Расход сохранен!")
        await self.messenger.send(
            sender.chat_id, "✅ Расходы добавлены!\n\n" + format_drafts(drafts), menus.main_menu_kb()
        )

    async def _persist_drafts(self, sender: Sender, user: User, drafts: tuple[ExpenseDraft, ...]) -> int:
        """Сохраняет пачку по одному расходу; возвращает число сохранённых.

        При сбое запись останавливается: уже сохранённые расходы остаются,
        несохранённый остаток снова ждёт подтверждения.
        """
        saved = 0
        try:
            known = {c.title: c for c in await self.repo.list_categories_for_user(user.id)}
            for draft in drafts:
                category_id = None
                if draft.category:
                    category = known.get(draft.category)
                    if category is None:
                        category = await self.repo.create_category(user.id, draft.category, DEFAULT_CATEGORY_EMOJI)
                        known[draft.category] = category
                        self.metrics.categories_created.inc()
                    category_id = category.id
                await self.repo.create_expense(
                    user_id=user.id,
                    amount=draft.amount,
                    currency=draft.currency,
                    category_id=category_id,
                    description=draft.description,
                )
                self.metrics.expenses_created.inc()
                saved += 1
        except PersistenceError as e:
            self.metrics.error("database")
            logger.error(
                "failed to save expenses for user %s (%s of %s saved): %s", sender.user_id, saved, len(drafts), e
            )
            remaining = list(drafts[saved:])
            self.store.set_pending(sender.user_id, remaining)
            await self.messenger.send(
                sender.chat_id,
                f"Ошибка сохранения расхода (сохранено {saved} из {len(drafts)}).\n"
                "Нажмите «Подтвердить» ещё раз, чтобы повторить, или отправьте расход заново.",
                menus.expense_confirm_kb(),
            )
        return saved

    # ================== Расходы ==================
    async def _process_expense_text(self, sender: Sender, user: User, text: str) -> None:
        self.store.clear(sender.user_id)
        try:
            categories = await self.repo.list_categories_for_user(user.id)
        except PersistenceError as e:
            self.metrics.error("get_categories")
            logger.error("failed to get categories for user %s: %s", sender.user_id, e)
            await self.messenger.send(sender.chat_id, "Ошибка получения категорий. Попробуйте позже.", menus.main_menu_kb())
            return

        started = time.perf_counter()
        try:
            drafts = await self.extractor.extract(text, [c.title for c in categories])
        except ExtractionError as e:
            self.metrics.error("llm_parse")
            logger.error("failed to parse expense for user %s: %s", sender.user_id, e)
            await self.messenger.send(
                sender.chat_id, "Ошибка обработки текста. Попробуйте ещё раз.", menus.main_menu_kb()
            )
            return
        finally:
            self.metrics.llm_parse_duration.observe(time.perf_counter() - started)

        if not drafts:
            self.metrics.error("llm_parse_failed")
            logger.info("no expenses found in message from user %s", sender.user_id)
            await self.messenger.send(
                sender.chat_id,
                "Не получилось найти расходы в сообщении. Укажите сумму и на что потратили, например: "
                "<code>500 рублей на еду</code>",
                menus.main_menu_kb(),
            )
            return

        self.store.set_pending(sender.user_id, drafts)
        await self.messenger.send(
            sender.chat_id,
            "✅ <b>Подтвердите расходы:</b>\n\n" + format_drafts(drafts),
            menus.expense_confirm_kb(),
        )

    # ================== Кнопки меню ==================
    async def _handle_button(self, sender: Sender, user: User, text: str) -> bool:
        if text == menus.BTN_ADD_EXPENSE:
            self.metrics.buttons_pressed.labels(button="add_expense").inc()
            self.store.set_state(sender.user_id, DialogState.awaiting_expense)
            await self.messenger.send(
                sender.chat_id,
                "💰 <b>Добавление расхода</b>\n\n"
                "Отправьте голосовое сообщение или напишите текстом.\n"
                "Например: <code>500 рублей на еду в Макдональдс</code>",
                menus.main_menu_kb(),
            )
        elif text == menus.BTN_ADD_CATEGORY:
            self.metrics.buttons_pressed.labels(button="add_category").inc()
            await self.messenger.send(
                sender.chat_id, "⚠️ Кастомные категории ещё не реализованы.", menus.main_menu_kb()
            )
        elif text == menus.BTN_STATISTICS:
            self.metrics.buttons_pressed.labels(button="statistics").inc()
            await self._show_statistics_menu(sender)
        elif text == menus.BTN_WEEK_EXPENSES:
            self.metrics.buttons_pressed.labels(button="week_expenses").inc()
            await self._send_statistics(sender, user, StatsKind.by_expense, get_week_period())
        elif text == menus.BTN_BACK:
            self.metrics.buttons_pressed.labels(button="back").inc()
            await self._handle_back(sender)
        elif text == menus.BTN_BY_CATEGORIES:
            self.metrics.buttons_pressed.labels(button="by_categories").inc()
            await self._select_stats_kind(sender, StatsKind.by_category)
        elif text == menus.BTN_BY_EXPENSES:
            self.metrics.buttons_pressed.labels(button="by_expenses").inc()
            await self._select_stats_kind(sender, StatsKind.by_expense)
        elif text in menus.PERIOD_BUTTONS:
            period_key = menus.PERIOD_BUTTONS[text]
            self.metrics.buttons_pressed.labels(button=f"period_{period_key}").inc()
            await self._handle_fixed_period(sender, user, period_key)
        elif text == menus.BTN_CUSTOM:
            self.metrics.buttons_pressed.labels(button="period_custom").inc()
            await self._start_custom_period(sender)
        else:
            return False
        return True

    async def _show_statistics_menu(self, sender: Sender) -> None:
        self.store.set_state(sender.user_id, DialogState.in_stats_menu)
        await self.messenger.send(
            sender.chat_id, "📊 <b>Выберите тип статистики:</b>", menus.statistics_menu_kb()
        )

    async def _select_stats_kind(self, sender: Sender, kind: StatsKind) -> None:
        self.store.update(sender.user_id, state=DialogState.in_period_selection, stats_kind=kind)
        if kind == StatsKind.by_category:
            text = "📊 <b>Статистика по категориям</b>\n\nВыберите период:"
        else:
            text = "💸 <b>Статистика по тратам</b>\n\nВыберите период:"
        await self.messenger.send(sender.chat_id, text, menus.period_selection_kb(kind == StatsKind.by_category))

    async def _handle_fixed_period(self, sender: Sender, user: User, period_key: str) -> None:
        st = self.store.get(sender.user_id)
        if st.stats_kind is None:
            # устаревшая клавиатура: сначала нужно выбрать тип статистики
            await self._show_statistics_menu(sender)
            return
        if st.stats_kind == StatsKind.by_expense and period_key == "alltime":
            await self.messenger.send(
                sender.chat_id,
                "❌ Для статистики по тратам период не может быть больше месяца (31 день).",
                menus.period_selection_kb(False),
            )
            return
        if st.state != DialogState.in_period_selection:
            self.store.set_state(sender.user_id, DialogState.in_period_selection)
        await self._send_statistics(sender, user, st.stats_kind, FIXED_PERIODS[period_key]())

    async def _start_custom_period(self, sender: Sender) -> None:
        st = self.store.get(sender.user_id)
        if st.stats_kind is None:
            await self._show_statistics_menu(sender)
            return
        self.store.set_state(sender.user_id, DialogState.awaiting_custom_period)
        await self.messenger.send(
            sender.chat_id, CUSTOM_PERIOD_PROMPT, menus.period_selection_kb(st.stats_kind == StatsKind.by_category)
        )

    async def _handle_custom_period_input(self, sender: Sender, user: User, text: str) -> None:
        st = self.store.get(sender.user_id)
        include_all_time = st.stats_kind == StatsKind.by_category
        try:
            period = parse_custom_period(text)
        except ValidationError as e:
            await self.messenger.send(
                sender.chat_id,
                f"❌ Ошибка: {escape(str(e))}\n\nПожалуйста, введите период в формате:\n"
                "• ДД.ММ.ГГ ДД.ММ.ГГ\n• ДД.ММ - ДД.ММ (текущий год)",
                menus.period_selection_kb(include_all_time),
            )
            return

        if st.stats_kind == StatsKind.by_expense and period.days_between() > MAX_EXPENSE_PERIOD_DAYS:
            await self.messenger.send(
                sender.chat_id,
                "❌ Для статистики по тратам период не может быть больше месяца (31 день).",
                menus.period_selection_kb(False),
            )
            return

        self.store.set_state(sender.user_id, DialogState.in_period_selection)
        await self._send_statistics(sender, user, st.stats_kind or StatsKind.by_category, period)

    async def _handle_back(self, sender: Sender) -> None:
        st = self.store.get(sender.user_id)
        if st.state in (DialogState.in_period_selection, DialogState.awaiting_custom_period):
            await self._show_statistics_menu(sender)
            return
        self.store.clear(sender.user_id)
        await self.messenger.send(sender.chat_id, "Главное меню:", menus.main_menu_kb())

    # ================== Статистика ==================
    async def _send_statistics(self, sender: Sender, user: User, kind: StatsKind, period: TimePeriod) -> None:
        st = self.store.get(sender.user_id)
        keyboard = menus.keyboard_for_state(st.state, st.stats_kind)
        try:
            expenses = await self.repo.list_expenses_for_user(user.id, since=period.start, until=period.end)
        except PersistenceError as e:
            self.metrics.error("database")
            logger.error("failed to get expenses for user %s: %s", sender.user_id, e)
            await self.messenger.send(sender.chat_id, "Ошибка получения расходов. Попробуйте позже.", keyboard)
            return

        if kind == StatsKind.by_category:
            text = self.aggregator.by_category(expenses, period)
        else:
            text = self.aggregator.by_expense(expenses, period)
        await self.messenger.send(sender.chat_id, text, keyboard)

    async def weekly_digest(self, telegram_id: int) -> Optional[str]:
        """Статистика по категориям за последние 7 дней или None, если трат не было."""
        user = await self.repo.get_user_by_external_id(telegram_id)
        if user is None:
            return None
        period = get_week_period()
        expenses = await self.repo.list_expenses_for_user(user.id, since=period.start, until=period.end)
        if not any(period.contains(e.created_at) for e in expenses):
            return None
        return "🗓 Итоги недели\n\n" + self.aggregator.by_category(expenses, period)

    # ================== Вспомогательное ==================
    async def _require_user(self, sender: Sender) -> Optional[User]:
        try:
            return await self.repo.require_user_by_external_id(sender.user_id)
        except NotFoundError:
            self.metrics.error("user_not_found")
            await self.messenger.send(sender.chat_id, "Пожалуйста, используйте /start для начала работы.")
        except PersistenceError as e:
            self.metrics.error("database")
            logger.error("failed to load user %s: %s", sender.user_id, e)
            await self.messenger.send(sender.chat_id, "Ошибка базы данных. Попробуйте позже.", menus.main_menu_kb())
        return None
