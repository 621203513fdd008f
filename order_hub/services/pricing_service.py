"""
Pricing service - line amount calculation.

Every mutation of quantity, pricing mode or prices goes through
``calculate_amount`` so the persisted ``amount`` never diverges from its
inputs.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from order_hub.exceptions import ValidationError
from order_hub.models import PricingMode

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

PRICING_MODES = tuple(m.value for m in PricingMode)


def round2(value) -> Decimal:
    """Round half-up to 2 decimal places (currency display rounding)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_pricing_mode(pricing_mode: Optional[str]) -> str:
    """Validate a pricing mode value; returns the canonical lowercase string."""
    if isinstance(pricing_mode, PricingMode):
        return pricing_mode.value
    mode = (pricing_mode or '').strip().lower() if isinstance(pricing_mode, str) else None
    if mode not in PRICING_MODES:
        raise ValidationError(
            f"Invalid pricing_mode {pricing_mode!r}. Expected one of: {', '.join(PRICING_MODES)}",
            field='pricing_mode'
        )
    return mode


def _check_price(value, field: str) -> Decimal:
    price = Decimal(str(value)) if value is not None else ZERO
    if price < 0:
        raise ValidationError(f'{field} cannot be negative (got {price})', field=field)
    return price


def price_for_mode(pricing_mode: str, unit_price, case_price) -> Decimal:
    """Price applied per quantity step for the given mode (missing price = 0)."""
    mode = normalize_pricing_mode(pricing_mode)
    if mode == PricingMode.UNIT.value:
        return _check_price(unit_price, 'unit_price')
    return _check_price(case_price, 'case_price')


def calculate_amount(quantity: int, pricing_mode: str, unit_price, case_price) -> Decimal:
    """
    Compute a line amount.

    amount = round2(quantity * (unit_price if mode == 'unit' else case_price))

    Both prices are validated even though only one is used, so a negative
    price is rejected regardless of the current mode.

    Raises:
        ValidationError: quantity <= 0, negative price or unknown pricing mode.
    """
    if quantity is None or isinstance(quantity, bool) or int(quantity) != quantity or quantity <= 0:
        raise ValidationError(f'Quantity must be greater than 0 (got {quantity})', field='quantity')

    _check_price(unit_price, 'unit_price')
    _check_price(case_price, 'case_price')
    price = price_for_mode(pricing_mode, unit_price, case_price)
    return round2(price * int(quantity))


def line_amount(line) -> Decimal:
    """Recompute the amount of an Order/cart line from its pricing fields."""
    return calculate_amount(line.quantity, line.pricing_mode, line.unit_price, line.case_price)


def sum_amounts(amounts) -> Decimal:
    """Sum already-rounded amounts."""
    total = ZERO
    for amount in amounts:
        total += Decimal(str(amount))
    return round2(total)
