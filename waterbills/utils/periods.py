"""Billing period and money helpers. A period is a "YYYY-MM" string."""
import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

PERIOD_RE = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')

# Invoices fall due on this day of the month after the billing period
DUE_DAY_OF_MONTH = 8


def is_valid_period(period: str) -> bool:
    return bool(period and PERIOD_RE.match(period))


def parse_period(period: str) -> Tuple[int, int]:
    """Split "YYYY-MM" into (year, month). Raises ValueError on bad format."""
    if not is_valid_period(period):
        raise ValueError(f"Period must be in YYYY-MM format, got {period!r}")
    year, month = period.split('-')
    return int(year), int(month)


def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_period(period: str, months: int) -> str:
    year, month = parse_period(period)
    index = year * 12 + (month - 1) + months
    return format_period(index // 12, index % 12 + 1)


def previous_period(period: str) -> str:
    """Calendar month minus one, independent of day-of-month."""
    return shift_period(period, -1)


def next_period(period: str) -> str:
    return shift_period(period, 1)


def period_of(day: date) -> str:
    return format_period(day.year, day.month)


def current_period(today: Optional[date] = None) -> str:
    return period_of(today or date.today())


def due_date_for_period(period: str) -> date:
    """8th of the month following the billing period."""
    year, month = parse_period(next_period(period))
    return date(year, month, DUE_DAY_OF_MONTH)


def days_late(due_date: date, today: Optional[date] = None) -> int:
    """Whole days past due, never negative."""
    if today is None:
        today = date.today()
    if isinstance(today, datetime):
        today = today.date()
    if isinstance(due_date, datetime):
        due_date = due_date.date()
    return max(0, (today - due_date).days)


def round_to_precision(value: float, precision: int = 2) -> float:
    """Half-up rounding (0.125 -> 0.13), unlike round()'s banker's rounding."""
    quantum = Decimal(1).scaleb(-int(precision))
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))
