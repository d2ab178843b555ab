from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

# Примерный «вес» валюты. Только для порядка сортировки, не для пересчёта сумм.
CURRENCY_WEIGHTS: dict[str, float] = {
    "USD": 100.0,
    "EUR": 100.0,
    "GBP": 100.0,
    "CHF": 100.0,
    "GEL": 30.0,
    "CNY": 10.0,
    "RUB": 1.0,
    "JPY": 0.5,
    "KZT": 0.14,
}

CURRENCY_FLAGS: dict[str, str] = {
    "RUB": "🇷🇺",
    "USD": "🇺🇸",
    "EUR": "🇪🇺",
    "GEL": "🇬🇪",
    "GBP": "🇬🇧",
    "JPY": "🇯🇵",
    "CNY": "🇨🇳",
    "CHF": "🇨🇭",
    "KZT": "🇰🇿",
}


def currency_weight(code: str) -> float:
    return CURRENCY_WEIGHTS.get((code or "").upper(), 1.0)


def currency_symbol(code: str) -> str:
    return (code or "").upper()


def currency_with_flag(code: str) -> str:
    """Код валюты с флагом страны (используется только в строке «Всего»)."""
    cur = currency_symbol(code)
    flag = CURRENCY_FLAGS.get(cur)
    return f"{cur}{flag}" if flag else cur


def format_amount(amount_minor: int) -> str:
    """Форматирует сумму в минорных единицах.

    Целые суммы выводятся без дробной части: 50000 -> '500',
    остальные с двумя знаками: 50050 -> '500.50'.
    """
    value = Decimal(amount_minor) / 100
    if amount_minor % 100 == 0:
        return f"{value:.0f}"
    return f"{value:.2f}"


def to_minor_units(amount) -> int:
    """Переводит сумму в основных единицах (500.5) в минорные (50050).

    Raises:
        ValueError: если сумму нельзя разобрать как число.
    """
    try:
        d = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid amount: {amount!r}") from None
    if not d.is_finite():
        raise ValueError(f"invalid amount: {amount!r}")
    return int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def capitalize_first(s: str) -> str:
    if not s:
        return s
    return s[0].upper() + s[1:]
