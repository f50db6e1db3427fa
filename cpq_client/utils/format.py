"""Display formatting for prices, counts and timestamps (en-US conventions)."""

from datetime import datetime

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}


def format_currency(amount: float, currency: str = "USD") -> str:
    """Format an amount like ``$1,234.50``; unknown currencies get their code as prefix."""
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    body = f"{abs(amount):,.2f}"
    sign = "-" if amount < 0 else ""
    if symbol is None:
        return f"{sign}{currency.upper()} {body}"
    return f"{sign}{symbol}{body}"


def format_number(num: float) -> str:
    """Group thousands and keep at most three fraction digits."""
    if float(num).is_integer():
        return f"{int(num):,}"
    return f"{num:,.3f}".rstrip("0").rstrip(".")


def format_date(value: datetime | str) -> str:
    """Medium date with short time, e.g. ``Mar 4, 2025, 3:07 PM``."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{value:%b} {value.day}, {value.year}, {hour}:{value:%M} {meridiem}"
