"""
Статистика расходов за период: по категориям и по отдельным тратам.

Суммы разных валют никогда не пересчитываются друг в друга: складываются
только суммы одной валюты. Веса из CURRENCY_WEIGHTS влияют лишь на порядок
вывода категорий и валют в строке «Всего».
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from typing import Iterable, Optional

from voicespend.utils.date_ranges import TimePeriod, format_date, format_period
from voicespend.utils.formatting import (
    capitalize_first, currency_symbol, currency_weight, currency_with_flag, format_amount,
)

NO_CATEGORY_TITLE = "Без категории"
NO_CATEGORY_EMOJI = "❓"


@dataclass(frozen=True)
class CategoryRecord:
    title: str
    emoji: str = ""


@dataclass(frozen=True)
class ExpenseRecord:
    amount: int
    currency: str
    created_at: datetime
    description: str = ""
    category: Optional[CategoryRecord] = None


@dataclass
class CategoryStats:
    title: str
    emoji: str
    amounts: dict[str, int] = field(default_factory=dict)  # валюта -> сумма в минорных единицах

    def weighted_total(self) -> float:
        return sum(amount * currency_weight(cur) for cur, amount in self.amounts.items())


def from_model(expense) -> ExpenseRecord:
    """Преобразует ORM-объект Expense в запись для статистики."""
    category = None
    if expense.category is not None:
        category = CategoryRecord(title=expense.category.title, emoji=expense.category.emoji or "")
    return ExpenseRecord(
        amount=expense.amount,
        currency=expense.currency,
        created_at=expense.created_at,
        description=expense.description or "",
        category=category,
    )


def filter_by_period(expenses: Iterable[ExpenseRecord], period: TimePeriod) -> list[ExpenseRecord]:
    return [e for e in expenses if period.contains(e.created_at)]


def group_by_category(expenses: Iterable[ExpenseRecord]) -> tuple[dict[str, CategoryStats], Counter]:
    categories: dict[str, CategoryStats] = {}
    currency_frequency: Counter = Counter()
    for e in expenses:
        if e.category is not None:
            key, title, emoji = e.category.title, e.category.title, e.category.emoji
        else:
            key, title, emoji = "__no_category__", NO_CATEGORY_TITLE, NO_CATEGORY_EMOJI
        stats = categories.setdefault(key, CategoryStats(title=title, emoji=emoji))
        stats.amounts[e.currency] = stats.amounts.get(e.currency, 0) + e.amount
        currency_frequency[e.currency] += 1
    return categories, currency_frequency


def currencies_by_frequency(frequency: Counter) -> list[str]:
    return sorted(frequency, key=lambda cur: (-frequency[cur], -currency_weight(cur), cur))


def total_by_currency(expenses: Iterable[ExpenseRecord]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for e in expenses:
        totals[e.currency] = totals.get(e.currency, 0) + e.amount
    return totals


def format_total(totals: dict[str, int]) -> str:
    """Строка «Всего»: валюты по убыванию веса, при равенстве — по алфавиту."""
    items = [(cur, amount) for cur, amount in totals.items() if amount > 0]
    items.sort(key=lambda item: (-currency_weight(item[0]), item[0]))
    return " / ".join(f"{format_amount(amount)} {currency_with_flag(cur)}" for cur, amount in items)


def render_by_category(expenses: Iterable[ExpenseRecord], period: TimePeriod) -> str:
    selected = filter_by_period(expenses, period)
    categories, frequency = group_by_category(selected)
    if not categories:
        return "📊 <b>Статистика</b>\n\n<i>Пока нет расходов.</i>"

    ordered = sorted(categories.values(), key=lambda s: (-s.weighted_total(), s.title))
    currency_order = currencies_by_frequency(frequency)

    lines = [
        "📊 <b>Статистика по категориям:</b>",
        f"<i>{format_period(period)}</i>",
        "",
        f"💰 <b>Всего:</b> {format_total(total_by_currency(selected))}",
        "",
    ]
    for stats in ordered:
        parts = [
            f"{format_amount(stats.amounts[cur])} {currency_symbol(cur)}"
            for cur in currency_order if cur in stats.amounts
        ]
        lines.append(f"{stats.emoji} <b>{escape(stats.title)}:</b> {'/'.join(parts)}")
    return "\n".join(lines)


def render_by_expense(expenses: Iterable[ExpenseRecord], period: TimePeriod) -> str:
    selected = filter_by_period(expenses, period)
    header = ["📊 <b>Статистика по тратам:</b>", f"<i>{format_period(period)}</i>", ""]
    if not selected:
        return "\n".join(header + ["<i>Нет расходов за этот период.</i>"])

    lines = header + [f"💰 <b>Всего:</b> {format_total(total_by_currency(selected))}", ""]
    for e in sorted(selected, key=lambda e: e.created_at, reverse=True):
        if e.category is not None:
            title, emoji = e.category.title, e.category.emoji
        else:
            title, emoji = NO_CATEGORY_TITLE, NO_CATEGORY_EMOJI
        amount = f"{format_amount(e.amount)} {currency_symbol(e.currency)}"
        date = format_date(e.created_at)
        if e.description:
            lines.append(f"<b>{escape(capitalize_first(e.description))}</b> ({emoji}{escape(title)}): {amount} ({date})")
        else:
            lines.append(f"<b>{emoji}{escape(title)}</b>: {amount} ({date})")
    return "\n".join(lines)


class StatisticsAggregator:
    """Фасад для диалога: принимает ORM-расходы или готовые записи."""

    def by_category(self, expenses: Iterable, period: TimePeriod) -> str:
        return render_by_category(self._records(expenses), period)

    def by_expense(self, expenses: Iterable, period: TimePeriod) -> str:
        return render_by_expense(self._records(expenses), period)

    @staticmethod
    def _records(expenses: Iterable) -> list[ExpenseRecord]:
        return [e if isinstance(e, ExpenseRecord) else from_model(e) for e in expenses]
