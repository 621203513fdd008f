"""Display formatting helpers for messages and e-mails."""
from decimal import Decimal, ROUND_HALF_UP


def money(value) -> str:
    """Format a number as US currency: 1234.5 -> '$1,234.50'."""
    if value is None:
        value = 0
    amount = Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    sign = '-' if amount < 0 else ''
    return f"{sign}${abs(amount):,.2f}"


def plural(count: int, singular: str, plural_form: str = None) -> str:
    """'1 unit', '7 units'."""
    if count == 1:
        return f"{count} {singular}"
    return f"{count} {plural_form or singular + 's'}"

