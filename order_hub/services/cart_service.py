"""Cart service - persistent server-side cart and the cart-to-order transition."""

import logging
import uuid
from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List
from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from order_hub.models import Order, OrderStatus, Product, PricingMode
from order_hub.exceptions import (
    OrderHubError, ValidationError, NotFoundError, EmptyCartError,
    StateConflictError, PersistenceError
)
from order_hub.services.pricing_service import (
    calculate_amount, line_amount, normalize_pricing_mode, sum_amounts, ZERO
)
from order_hub.services.cart_validation_service import evaluate_cart, UNKNOWN_VENDOR
from order_hub.services.replacement_service import resolve_preference, apply_preference, ACTION_LABELS
from order_hub.services.email_service import send_order_confirmation
from order_hub.blueprints.metrics import record_batch_submitted
from order_hub.utils.retry import retry_on_persistence_error

logger = logging.getLogger(__name__)

SUBMIT_POLICY_ADVISORY = 'advisory'
SUBMIT_POLICY_STRICT = 'strict'


@dataclass
class CartLineUpdate:
    """Mutable fields of a cart line. None means "leave unchanged"."""
    quantity: Optional[int] = None
    pricing_mode: Optional[str] = None
    unavailable_action: Optional[str] = None
    replacement_product_id: Optional[int] = None
    replacement_product_name: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    @property
    def touches_preference(self) -> bool:
        return self.unavailable_action is not None or self.replacement_product_id is not None


def generate_batch_number(prefix: Optional[str] = None) -> str:
    """BATCH-<year>-<mmddHHMMSS>-<6 hex>; the random suffix keeps same-second submits unique."""
    if prefix is None:
        prefix = current_app.config.get('BATCH_NUMBER_PREFIX', 'BATCH') if has_app_context() else 'BATCH'
    now = datetime.now()
    return f"{prefix}-{now.year}-{now.strftime('%m%d%H%M%S')}-{uuid.uuid4().hex[:6].upper()}"


def default_pricing_mode(product: Product) -> str:
    """Case mode when the product has a case price, unit mode otherwise."""
    if product.wholesale_case_price:
        return PricingMode.CASE.value
    return PricingMode.UNIT.value


def _cart_query(session: Session, user_id: int):
    return session.query(Order).filter(
        Order.user_id == user_id,
        Order.status == OrderStatus.IN_CART.value
    )


def _get_cart_line(session: Session, user_id: int, product_id: int, for_update: bool = False) -> Optional[Order]:
    query = _cart_query(session, user_id).filter(Order.product_id == product_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_orderable_product(session: Session, product_id: int) -> Product:
    product = session.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError(f'Product {product_id} not found.')
    if not product.active:
        raise ValidationError(f'The product "{product.product_name}" is not available.', field='product_id')
    return product


def snapshot_product(line: Order, product: Product) -> None:
    """Copy prices, display fields and ordering constraints from the catalog."""
    line.product_connect_id = product.product_connect_id
    line.product_name = product.product_name
    line.vendor_name = product.vendor_name
    line.vendor_connect_id = product.vendor.vendor_connect_id if product.vendor else None
    line.product_image = product.product_image
    line.unit_price = product.wholesale_unit_price
    line.case_price = product.wholesale_case_price
    line.case_pack = product.case_pack
    line.case_minimum = product.case_minimum
    line.minimum_units = product.minimum_units
    line.minimum_cost = product.minimum_cost
    line.is_split_case = bool(product.is_split_case)


def get_cart_lines(session: Session, user_id: int) -> List[Order]:
    """Cart lines of a user, newest first."""
    return _cart_query(session, user_id).order_by(Order.cart_created_at.desc(), Order.id.desc()).all()


def add_to_cart(
    session: Session,
    user,
    product_id: int,
    quantity: int,
    pricing_mode: Optional[str] = None,
    unavailable_action: Optional[str] = None,
    replacement_product_id: Optional[int] = None,
    replacement_product_name: Optional[str] = None
) -> Order:
    """
    Add product to cart or increase quantity if already there.

    Re-adding refreshes the price snapshot and pricing mode from the request;
    an existing replacement preference is kept unless a new one is given.
    Not retried on PersistenceError: a retry could add the quantity twice.
    """
    try:
        product = get_orderable_product(session, product_id)
        mode = normalize_pricing_mode(pricing_mode) if pricing_mode else default_pricing_mode(product)
        # Validate before touching the row
        calculate_amount(quantity, mode, product.wholesale_unit_price, product.wholesale_case_price)
        preference = resolve_preference(session, unavailable_action, replacement_product_id, replacement_product_name)

        line = _get_cart_line(session, user.id, product_id, for_update=True)
        set_preference = line is None or unavailable_action is not None or replacement_product_id is not None
        if line:
            new_quantity = line.quantity + quantity
            logger.info(f"[CART] User {user.id}: product {product_id} qty {line.quantity} -> {new_quantity}")
            line.quantity = new_quantity
        else:
            logger.info(f"[CART] User {user.id}: adding product {product_id} (qty {quantity}, {mode})")
            line = Order(
                user_id=user.id,
                user_email=user.email,
                product_id=product.id,
                quantity=quantity,
                status=OrderStatus.IN_CART.value,
                cart_created_at=datetime.now(),
                modified_by_admin=False,
                modification_count=0,
            )
            session.add(line)

        snapshot_product(line, product)
        line.pricing_mode = mode
        line.amount = line_amount(line)
        if set_preference:
            apply_preference(line, *preference)

        session.commit()
        return line

    except IntegrityError as e:
        session.rollback()
        raise StateConflictError(
            'Your cart was modified by another request. Reload the cart and try again.',
            current_state=OrderStatus.IN_CART.value
        ) from e
    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error adding to cart: {e}') from e


def update_cart_line(session: Session, user, product_id: int, update: CartLineUpdate) -> Optional[Order]:
    """
    Update quantity, pricing mode or replacement preference of a cart line.

    A quantity <= 0 removes the line; returns None in that case.
    """
    try:
        line = _get_cart_line(session, user.id, product_id, for_update=True)
        if not line:
            raise NotFoundError('The product is not in your cart.')

        if update.quantity is not None and update.quantity <= 0:
            session.delete(line)
            session.commit()
            logger.info(f"[CART] User {user.id}: product {product_id} removed (quantity {update.quantity})")
            return None

        new_quantity = update.quantity if update.quantity is not None else line.quantity
        new_mode = normalize_pricing_mode(update.pricing_mode) if update.pricing_mode is not None else line.pricing_mode
        new_amount = calculate_amount(new_quantity, new_mode, line.unit_price, line.case_price)

        if update.touches_preference:
            action = update.unavailable_action if update.unavailable_action is not None else line.unavailable_action
            apply_preference(line, *resolve_preference(
                session, action, update.replacement_product_id, update.replacement_product_name
            ))

        line.quantity = new_quantity
        line.pricing_mode = new_mode
        line.amount = new_amount

        session.commit()
        return line

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error updating cart: {e}') from e


def remove_from_cart(session: Session, user, product_id: int) -> None:
    """Remove line from cart."""
    try:
        line = _get_cart_line(session, user.id, product_id, for_update=True)
        if not line:
            raise NotFoundError('The product is not in your cart.')
        session.delete(line)
        session.commit()
        logger.info(f"[CART] User {user.id}: product {product_id} removed")
    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error removing from cart: {e}') from e


@retry_on_persistence_error
def clear_cart(session: Session, user) -> int:
    """Clear all lines from cart. Returns the number of removed lines."""
    try:
        removed = _cart_query(session, user.id).delete(synchronize_session=False)
        session.commit()
        logger.info(f"[CART] User {user.id}: cleared {removed} lines")
        return removed
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error clearing cart: {e}') from e


def calculate_cart_totals(lines: List[Order]) -> Dict[str, Any]:
    """
    Totals and per-vendor subtotals.

    Amounts are recomputed from quantity and prices, not read from the cached
    column.
    """
    lines_details = []
    vendors: Dict[str, Decimal] = {}

    for line in lines:
        amount = line_amount(line)
        details = line.to_dict()
        details['amount'] = str(amount)
        details['unavailable_action_label'] = ACTION_LABELS.get(line.unavailable_action)
        lines_details.append(details)
        vendor = line.vendor_name or UNKNOWN_VENDOR
        vendors[vendor] = vendors.get(vendor, ZERO) + amount

    return {
        'lines': lines_details,
        'line_count': len(lines),
        'total': str(sum_amounts(Decimal(d['amount']) for d in lines_details)),
        'vendor_subtotals': [
            {'vendor_name': name, 'subtotal': str(subtotal)}
            for name, subtotal in vendors.items()
        ],
    }


@retry_on_persistence_error
def get_cart(session: Session, user) -> Dict[str, Any]:
    """Cart with totals, warnings and case-pack aggregation."""
    try:
        lines = get_cart_lines(session, user.id)
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error loading cart: {e}') from e

    cart = calculate_cart_totals(lines)
    evaluation = evaluate_cart(lines)
    for details in cart['lines']:
        details['warnings'] = [w.to_dict() for w in evaluation.warnings_for(details['product_id'])]
    cart.update(evaluation.to_dict())
    return cart


def _submit_policy(policy: Optional[str]) -> str:
    if policy is None:
        policy = current_app.config.get('CART_SUBMIT_POLICY', SUBMIT_POLICY_ADVISORY) if has_app_context() else SUBMIT_POLICY_ADVISORY
    if policy not in (SUBMIT_POLICY_ADVISORY, SUBMIT_POLICY_STRICT):
        raise ValueError(f'Unknown CART_SUBMIT_POLICY: {policy}')
    return policy


def submit_cart(session: Session, user, notes: Optional[str] = None, policy: Optional[str] = None) -> Dict[str, Any]:
    """
    Turn the user's whole cart into one pending batch.

    All lines get the same new batch number in a single transaction; on any
    failure the transaction is rolled back and every line stays in the cart.

    Raises:
        EmptyCartError: no lines in cart
        ValidationError: strict policy and the cart has unresolved warnings
    """
    policy = _submit_policy(policy)

    try:
        lines = _cart_query(session, user.id).order_by(Order.id).with_for_update().all()
        if not lines:
            raise EmptyCartError()

        evaluation = evaluate_cart(lines)
        if evaluation.warnings:
            if policy == SUBMIT_POLICY_STRICT:
                raise ValidationError(
                    f'Resolve {len(evaluation.warnings)} cart warning(s) before submitting.',
                    field='cart',
                    payload={'warnings': [w.to_dict() for w in evaluation.warnings]}
                )
            logger.info(f"[CART] User {user.id} submitting with {len(evaluation.warnings)} advisory warnings")

        batch_order_number = generate_batch_number()
        submitted_at = datetime.now()

        for line in lines:
            line.amount = line_amount(line)
            line.batch_order_number = batch_order_number
            line.status = OrderStatus.PENDING.value
            line.date_submitted = submitted_at
            line.notes = notes

        total_amount = sum_amounts(line.amount for line in lines)
        session.commit()

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error submitting order: {e}') from e

    logger.info(
        f"[ORDERS] Batch {batch_order_number} submitted by user {user.id}: "
        f"{len(lines)} lines, total {total_amount}"
    )
    _after_submit(user, batch_order_number, lines, total_amount)

    return {
        'batch_order_number': batch_order_number,
        'line_count': len(lines),
        'total_amount': total_amount,
    }


def _after_submit(user, batch_order_number: str, lines: List[Order], total_amount: Decimal) -> None:
    """Side effects once the batch is committed. E-mail failures are logged, not raised."""
    record_batch_submitted(len(lines), total_amount)
    send_order_confirmation(user.email, batch_order_number, lines)
