import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from voicespend.errors import ValidationError

_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})(?:\.(\d{2,4}))?$")


@dataclass(frozen=True)
class TimePeriod:
    """Диапазон для статистики: начало дня start .. конец дня end (локальное время)."""
    start: datetime
    end: datetime

    def days_between(self) -> int:
        return (self.end - self.start).days

    def contains(self, moment: datetime) -> bool:
        # строго внутри: граничные моменты не учитываются
        return self.start < moment < self.end


def start_of_day(d: datetime) -> datetime:
    return d.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(d: datetime) -> datetime:
    return d.replace(hour=23, minute=59, second=59, microsecond=999999)


def get_today_period(now: datetime | None = None) -> TimePeriod:
    now = now or datetime.now()
    return TimePeriod(start_of_day(now), end_of_day(now))


def get_week_period(now: datetime | None = None) -> TimePeriod:
    """Последние 7 дней, включая сегодня."""
    now = now or datetime.now()
    return TimePeriod(start_of_day(now - timedelta(days=6)), end_of_day(now))


def get_month_period(now: datetime | None = None) -> TimePeriod:
    """Последние 30 дней, включая сегодня."""
    now = now or datetime.now()
    return TimePeriod(start_of_day(now - timedelta(days=29)), end_of_day(now))


def get_all_time_period(now: datetime | None = None) -> TimePeriod:
    now = now or datetime.now()
    return TimePeriod(datetime(2000, 1, 1), end_of_day(now))


FIXED_PERIODS = {
    "today": get_today_period,
    "week": get_week_period,
    "month": get_month_period,
    "alltime": get_all_time_period,
}


def _parse_year(raw: str | None, now: datetime) -> int:
    if not raw:
        return now.year
    year = int(raw)
    if year < 100:
        return year + 2000 if year < 50 else year + 1900
    return year


def parse_date(s: str, now: datetime | None = None) -> datetime:
    """Разбирает дату вида ДД.ММ.ГГ, ДД.ММ.ГГГГ или ДД.ММ (текущий год)."""
    now = now or datetime.now()
    m = _DATE_RE.match(s)
    if m is None:
        raise ValidationError("неверный формат даты (используйте ДД.ММ.ГГ или ДД.ММ)")

    day, month = int(m.group(1)), int(m.group(2))
    year = _parse_year(m.group(3), now)

    if not 1 <= month <= 12:
        raise ValidationError("месяц должен быть от 1 до 12")
    if not 1 <= day <= 31:
        raise ValidationError("день должен быть от 1 до 31")
    try:
        return datetime(year, month, day)
    except ValueError:
        raise ValidationError("несуществующая дата") from None


def parse_custom_period(text: str, now: datetime | None = None) -> TimePeriod:
    """Разбирает произвольный период.

    Поддерживаемые форматы:
      - "03.04.25 07.04.25", "03.04.25-07.04.25", "03.04.25 - 07.04.25"
      - "03.04 07.04", "03.04-07.04" (текущий год)
    """
    text = (text or "").strip()
    if "-" in text:
        parts = text.split("-")
    else:
        parts = text.split()

    if len(parts) != 2:
        raise ValidationError("неверный формат даты")

    try:
        start = parse_date(parts[0].strip(), now)
    except ValidationError as e:
        raise ValidationError(f"ошибка в начальной дате: {e}") from None
    try:
        end = parse_date(parts[1].strip(), now)
    except ValidationError as e:
        raise ValidationError(f"ошибка в конечной дате: {e}") from None

    period = TimePeriod(start_of_day(start), end_of_day(end))
    if period.start > period.end:
        raise ValidationError("начальная дата не может быть позже конечной")
    return period


def format_date(d: datetime) -> str:
    return d.strftime("%d.%m.%y")


def format_period(period: TimePeriod) -> str:
    return f"{format_date(period.start)} - {format_date(period.end)}"
