"""
Cart validation service - ordering constraints and case-pack aggregation.

Everything here is a pure function of an explicit cart snapshot: callers pass
the current lines, nothing is cached between calls. Lines are normalized once
by ``normalize_line`` so the rules never have to decide whether a constraint
applies from NULLs.

Per-line rules:
    case_minimum         case mode, quantity >= case_minimum
    minimum_units        unit mode, not split case
    split_case_quantity  unit mode split case: half case, full case or multiple of half
    minimum_cost         line amount >= minimum_cost

Cross-line rules (unit mode only):
    case_pack_incomplete      (vendor, case_pack) group total below one case
    split_case_group_invalid  (vendor, case_pack, split) total not a whole number of cases
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from order_hub.models import PricingMode
from order_hub.services.pricing_service import round2, ZERO
from order_hub.utils.formatters import money, plural

UNKNOWN_VENDOR = 'Unknown Vendor'

CASE_MINIMUM = 'case_minimum'
MINIMUM_UNITS = 'minimum_units'
SPLIT_CASE_QUANTITY = 'split_case_quantity'
MINIMUM_COST = 'minimum_cost'
CASE_PACK_INCOMPLETE = 'case_pack_incomplete'
SPLIT_CASE_GROUP_INVALID = 'split_case_group_invalid'


@dataclass(frozen=True)
class LineConstraints:
    """Normalized view of one cart line. Unset numeric constraints are 0."""
    product_id: int
    vendor_name: str
    quantity: int
    pricing_mode: str
    unit_price: Decimal = ZERO
    case_price: Decimal = ZERO
    case_pack: int = 0
    case_minimum: int = 0
    minimum_units: int = 0
    minimum_cost: Decimal = ZERO
    is_split_case: bool = False
    product_name: str = ''

    @property
    def is_unit_mode(self) -> bool:
        return self.pricing_mode == PricingMode.UNIT.value

    @property
    def price(self) -> Decimal:
        return self.unit_price if self.is_unit_mode else self.case_price

    @property
    def amount(self) -> Decimal:
        return round2(self.price * self.quantity)

    @property
    def in_split_group(self) -> bool:
        return self.is_unit_mode and self.is_split_case and self.case_pack > 0

    @property
    def in_case_pack_group(self) -> bool:
        return self.is_unit_mode and self.case_pack > 0


@dataclass
class CartWarning:
    """One failed rule, with the values the UI needs for an actionable message."""
    code: str
    product_id: int
    message: str
    current: Any = None
    required: Any = None
    shortfall: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'product_id': self.product_id,
            'message': self.message,
            'current': _jsonable(self.current),
            'required': _jsonable(self.required),
            'shortfall': _jsonable(self.shortfall),
        }


@dataclass
class CasePackGroup:
    """Unit-mode lines sharing (vendor, case_pack)."""
    vendor_name: str
    case_pack: int
    total_units: int = 0
    product_ids: List[int] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, int]:
        return (self.vendor_name, self.case_pack)

    @property
    def is_complete(self) -> bool:
        return self.total_units >= self.case_pack

    @property
    def units_needed(self) -> int:
        return max(0, self.case_pack - self.total_units)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vendor_name': self.vendor_name,
            'case_pack': self.case_pack,
            'total_units': self.total_units,
            'is_complete': self.is_complete,
            'units_needed': self.units_needed,
            'product_ids': list(self.product_ids),
        }


@dataclass
class SplitCaseGroup:
    """Unit-mode split-case lines sharing (vendor, case_pack)."""
    vendor_name: str
    case_pack: int
    total_units: int = 0
    product_ids: List[int] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, int, str]:
        return (self.vendor_name, self.case_pack, 'split')

    @property
    def remainder(self) -> int:
        return self.total_units % self.case_pack

    @property
    def is_valid(self) -> bool:
        return self.remainder == 0

    @property
    def units_needed(self) -> int:
        return 0 if self.is_valid else self.case_pack - self.remainder

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vendor_name': self.vendor_name,
            'case_pack': self.case_pack,
            'total_units': self.total_units,
            'is_valid': self.is_valid,
            'remainder': self.remainder,
            'units_needed': self.units_needed,
            'product_ids': list(self.product_ids),
        }


@dataclass
class CartEvaluation:
    """Result of evaluating a whole cart snapshot."""
    warnings: List[CartWarning] = field(default_factory=list)
    case_pack_groups: List[CasePackGroup] = field(default_factory=list)
    split_case_groups: List[SplitCaseGroup] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.warnings

    def warnings_for(self, product_id: int) -> List[CartWarning]:
        return [w for w in self.warnings if w.product_id == product_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_valid': self.is_valid,
            'warnings': [w.to_dict() for w in self.warnings],
            'case_pack_groups': [g.to_dict() for g in self.case_pack_groups],
            'split_case_groups': [g.to_dict() for g in self.split_case_groups],
        }


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    return value


def _read(raw, name: str, default=None):
    if isinstance(raw, dict):
        return raw.get(name, default)
    return getattr(raw, name, default)


def _positive_int(value) -> int:
    try:
        number = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


def _non_negative_decimal(value) -> Decimal:
    if value is None or value == '':
        return ZERO
    number = Decimal(str(value))
    return number if number > 0 else ZERO


def normalize_line(raw) -> LineConstraints:
    """
    Build a LineConstraints from an Order row or a plain dict.

    NULL, zero and negative constraint values all mean "not set". A missing
    vendor groups under 'Unknown Vendor', matching how the cart is displayed.
    """
    pricing_mode = (_read(raw, 'pricing_mode') or PricingMode.CASE.value).lower()
    return LineConstraints(
        product_id=_read(raw, 'product_id'),
        product_name=_read(raw, 'product_name') or '',
        vendor_name=_read(raw, 'vendor_name') or UNKNOWN_VENDOR,
        quantity=int(_read(raw, 'quantity') or 0),
        pricing_mode=pricing_mode,
        unit_price=_non_negative_decimal(_read(raw, 'unit_price')),
        case_price=_non_negative_decimal(_read(raw, 'case_price')),
        case_pack=_positive_int(_read(raw, 'case_pack')),
        case_minimum=_positive_int(_read(raw, 'case_minimum')),
        minimum_units=_positive_int(_read(raw, 'minimum_units')),
        minimum_cost=_non_negative_decimal(_read(raw, 'minimum_cost')),
        is_split_case=bool(_read(raw, 'is_split_case', False)),
    )


# =====================================================
# PER-LINE RULES
# =====================================================

def effective_minimum_units(line: LineConstraints) -> Tuple[int, bool]:
    """
    Minimum units for a unit-mode line and whether it came from case_pack.

    minimum_units wins when set; otherwise one full case; otherwise (0, False).
    """
    if line.minimum_units > 0:
        return line.minimum_units, False
    if line.case_pack > 0:
        return line.case_pack, True
    return 0, False


def is_valid_split_quantity(quantity: int, case_pack: int) -> bool:
    """Half case, full case, or any multiple of half a case."""
    if case_pack <= 0:
        return True
    half = case_pack // 2
    if half == 0:
        return True
    return quantity == half or quantity == case_pack or quantity % half == 0


def check_case_minimum(line: LineConstraints) -> Optional[CartWarning]:
    if line.is_unit_mode or line.case_minimum <= 0:
        return None
    if line.quantity >= line.case_minimum:
        return None
    shortfall = line.case_minimum - line.quantity
    return CartWarning(
        code=CASE_MINIMUM,
        product_id=line.product_id,
        message=(
            f"Minimum order is {plural(line.case_minimum, 'case')}. "
            f"You have {line.quantity} ({shortfall} more needed)."
        ),
        current=line.quantity,
        required=line.case_minimum,
        shortfall=shortfall,
    )


def check_minimum_units(line: LineConstraints, group_complete: bool = False) -> Optional[CartWarning]:
    """
    Unit-mode minimum for non split-case lines.

    When the minimum is the case_pack fallback, a complete (vendor, case_pack)
    group satisfies it: the units are combined into whole cases across lines.
    """
    if not line.is_unit_mode or line.is_split_case:
        return None
    minimum, from_case_pack = effective_minimum_units(line)
    if minimum <= 0 or line.quantity >= minimum:
        return None
    if from_case_pack and group_complete:
        return None
    shortfall = minimum - line.quantity
    return CartWarning(
        code=MINIMUM_UNITS,
        product_id=line.product_id,
        message=(
            f"Minimum order is {plural(minimum, 'unit')}. "
            f"You have {line.quantity} ({shortfall} more needed)."
        ),
        current=line.quantity,
        required=minimum,
        shortfall=shortfall,
    )


def check_split_case_quantity(line: LineConstraints) -> Optional[CartWarning]:
    if not line.in_split_group:
        return None
    if is_valid_split_quantity(line.quantity, line.case_pack):
        return None
    half = line.case_pack // 2
    # Distance to the next valid quantity (next multiple of half a case)
    next_valid = ((line.quantity // half) + 1) * half
    return CartWarning(
        code=SPLIT_CASE_QUANTITY,
        product_id=line.product_id,
        message=(
            f"Split case items must be ordered in half cases ({half} units) "
            f"or full cases ({line.case_pack} units). You have {line.quantity}."
        ),
        current=line.quantity,
        required=half,
        shortfall=next_valid - line.quantity,
    )


def check_minimum_cost(line: LineConstraints) -> Optional[CartWarning]:
    if line.minimum_cost <= 0:
        return None
    amount = line.amount
    if amount >= line.minimum_cost:
        return None
    shortfall = round2(line.minimum_cost - amount)
    return CartWarning(
        code=MINIMUM_COST,
        product_id=line.product_id,
        message=(
            f"Minimum order amount is {money(line.minimum_cost)}. "
            f"Current amount is {money(amount)} ({money(shortfall)} more needed)."
        ),
        current=amount,
        required=line.minimum_cost,
        shortfall=shortfall,
    )


def validate_line(line, group_complete: bool = False) -> List[CartWarning]:
    """Per-line rules in priority order. Accepts a raw line or LineConstraints."""
    if not isinstance(line, LineConstraints):
        line = normalize_line(line)
    checks = (
        check_case_minimum(line),
        check_minimum_units(line, group_complete=group_complete),
        check_split_case_quantity(line),
        check_minimum_cost(line),
    )
    return [w for w in checks if w is not None]


# =====================================================
# AGGREGATION
# =====================================================

def aggregate_case_packs(lines: Iterable[LineConstraints]) -> Dict[Tuple[str, int], CasePackGroup]:
    """Group unit-mode lines with a case pack by (vendor_name, case_pack)."""
    groups: Dict[Tuple[str, int], CasePackGroup] = {}
    for line in lines:
        if not line.in_case_pack_group:
            continue
        key = (line.vendor_name, line.case_pack)
        group = groups.get(key)
        if group is None:
            group = groups[key] = CasePackGroup(vendor_name=line.vendor_name, case_pack=line.case_pack)
        group.total_units += line.quantity
        group.product_ids.append(line.product_id)
    return groups


def aggregate_split_cases(lines: Iterable[LineConstraints]) -> Dict[Tuple[str, int, str], SplitCaseGroup]:
    """Group unit-mode split-case lines by (vendor_name, case_pack, 'split')."""
    groups: Dict[Tuple[str, int, str], SplitCaseGroup] = {}
    for line in lines:
        if not line.in_split_group:
            continue
        key = (line.vendor_name, line.case_pack, 'split')
        group = groups.get(key)
        if group is None:
            group = groups[key] = SplitCaseGroup(vendor_name=line.vendor_name, case_pack=line.case_pack)
        group.total_units += line.quantity
        group.product_ids.append(line.product_id)
    return groups


def _case_pack_warning(line: LineConstraints, group: CasePackGroup) -> CartWarning:
    return CartWarning(
        code=CASE_PACK_INCOMPLETE,
        product_id=line.product_id,
        message=(
            f"Case pack incomplete for {group.vendor_name}: "
            f"{group.total_units}/{group.case_pack} units ({group.units_needed} more needed)."
        ),
        current=group.total_units,
        required=group.case_pack,
        shortfall=group.units_needed,
    )


def _split_case_warning(line: LineConstraints, group: SplitCaseGroup) -> CartWarning:
    return CartWarning(
        code=SPLIT_CASE_GROUP_INVALID,
        product_id=line.product_id,
        message=(
            f"Split case total for {group.vendor_name} is {group.total_units} units; "
            f"add {group.units_needed} more to complete a case of {group.case_pack}."
        ),
        current=group.total_units,
        required=group.total_units + group.units_needed,
        shortfall=group.units_needed,
    )


def evaluate_cart(raw_lines: Iterable[Any]) -> CartEvaluation:
    """
    Evaluate every rule over a cart snapshot.

    Warnings are ordered by line, then by rule priority. A split-case line
    only ever gets the split-case group warning, never the whole-case one.
    """
    lines = [normalize_line(raw) for raw in raw_lines]
    case_groups = aggregate_case_packs(lines)
    split_groups = aggregate_split_cases(lines)

    warnings: List[CartWarning] = []
    for line in lines:
        case_group = case_groups.get((line.vendor_name, line.case_pack)) if line.in_case_pack_group else None
        group_complete = bool(case_group and case_group.is_complete)

        warnings.extend(validate_line(line, group_complete=group_complete))

        if line.in_split_group:
            split_group = split_groups[(line.vendor_name, line.case_pack, 'split')]
            if not split_group.is_valid:
                warnings.append(_split_case_warning(line, split_group))
        elif case_group is not None and not case_group.is_complete:
            warnings.append(_case_pack_warning(line, case_group))

    return CartEvaluation(
        warnings=warnings,
        case_pack_groups=list(case_groups.values()),
        split_case_groups=list(split_groups.values()),
    )
