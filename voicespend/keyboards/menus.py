from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton, ReplyKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder, ReplyKeyboardBuilder

from voicespend.states.dialog import DialogState, StatsKind

# ================== Подписи кнопок ==================
BTN_ADD_EXPENSE = "➕ Добавить расход"
BTN_ADD_CATEGORY = "📂 Добавить категорию"
BTN_STATISTICS = "📊 Статистика"
BTN_WEEK_EXPENSES = "💰 Траты за неделю"
BTN_BACK = "🔙 Назад"

BTN_BY_CATEGORIES = "📊 По категориям"
BTN_BY_EXPENSES = "💸 По тратам"

BTN_TODAY = "📅 За сегодня"
BTN_WEEK = "📅 За неделю"
BTN_MONTH = "📅 За месяц"
BTN_ALL_TIME = "📅 За всё время"
BTN_CUSTOM = "📅 Кастомный период"

PERIOD_BUTTONS = {
    BTN_TODAY: "today",
    BTN_WEEK: "week",
    BTN_MONTH: "month",
    BTN_ALL_TIME: "alltime",
}

CB_EXPENSE_CONFIRM = "expense:confirm"
CB_EXPENSE_CANCEL = "expense:cancel"


# ================== Клавиатуры ==================
def main_menu_kb() -> ReplyKeyboardMarkup:
    kb = ReplyKeyboardBuilder()
    kb.button(text=BTN_ADD_EXPENSE)
    kb.button(text=BTN_ADD_CATEGORY)
    kb.button(text=BTN_STATISTICS)
    kb.adjust(1, 2)
    return kb.as_markup(resize_keyboard=True)


def statistics_menu_kb() -> ReplyKeyboardMarkup:
    kb = ReplyKeyboardBuilder()
    kb.button(text=BTN_BY_CATEGORIES)
    kb.button(text=BTN_BY_EXPENSES)
    kb.button(text=BTN_WEEK_EXPENSES)
    kb.button(text=BTN_BACK)
    kb.adjust(2, 1, 1)
    return kb.as_markup(resize_keyboard=True)


def period_selection_kb(include_all_time: bool) -> ReplyKeyboardMarkup:
    kb = ReplyKeyboardBuilder()
    kb.button(text=BTN_TODAY)
    kb.button(text=BTN_WEEK)
    kb.button(text=BTN_MONTH)
    if include_all_time:
        kb.button(text=BTN_ALL_TIME)
    kb.button(text=BTN_CUSTOM)
    kb.button(text=BTN_BACK)
    if include_all_time:
        kb.adjust(2, 2, 1, 1)
    else:
        kb.adjust(2, 1, 1, 1)
    return kb.as_markup(resize_keyboard=True)


def expense_confirm_kb() -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.row(
        InlineKeyboardButton(text="✅ Подтвердить", callback_data=CB_EXPENSE_CONFIRM),
        InlineKeyboardButton(text="❌ Отменить", callback_data=CB_EXPENSE_CANCEL),
    )
    return kb.as_markup()


def keyboard_for_state(state: DialogState, stats_kind: StatsKind | None):
    """Клавиатура, соответствующая текущему шагу диалога."""
    if state in (DialogState.in_period_selection, DialogState.awaiting_custom_period):
        return period_selection_kb(stats_kind == StatsKind.by_category)
    if state == DialogState.in_stats_menu:
        return statistics_menu_kb()
    return main_menu_kb()
