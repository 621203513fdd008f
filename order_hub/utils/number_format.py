"""Parsing of quantities and prices coming from JSON request bodies."""
from decimal import Decimal, InvalidOperation
from order_hub.exceptions import ValidationError


def parse_quantity(value, field: str = 'quantity', positive: bool = True) -> int:
    """
    Parse an order quantity.

    Accepts ints and integral strings/floats ("5", 5.0). Booleans are rejected
    even though ``bool`` is an ``int`` subclass. With ``positive=False`` zero
    and negative values pass through (cart updates treat them as removal).

    Raises:
        ValidationError: if the value is missing, fractional, or not positive
            when ``positive`` is set.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required and must be a whole number', field=field)

    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a whole number (got {value!r})', field=field)

    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f'{field} must be a whole number (got {value})', field=field)

    quantity = int(number)
    if positive and quantity <= 0:
        raise ValidationError(f'{field} must be greater than 0 (got {quantity})', field=field)
    return quantity


def parse_price(value, field: str = 'price', required: bool = False):
    """
    Parse a monetary amount to a 2-decimal ``Decimal``.

    Returns None for a missing optional value.

    Raises:
        ValidationError: if the value is not a number or is negative.
    """
    if value is None or value == '':
        if required:
            raise ValidationError(f'{field} is required', field=field)
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number', field=field)

    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number (got {value!r})', field=field)

    if not price.is_finite():
        raise ValidationError(f'{field} must be a number (got {value!r})', field=field)
    if price < 0:
        raise ValidationError(f'{field} cannot be negative (got {price})', field=field)
    return price.quantize(Decimal('0.01'))
