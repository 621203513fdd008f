"""
Order service - submitted batches and their admin lifecycle.

A batch is the set of order rows sharing one ``batch_order_number``. Status
changes apply to every line of the batch at once, or to a single line:

    pending -> completed | cancelled   (terminal)
    pending -> in_cart                 (revert to the buyer's cart)
"""
import logging
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from order_hub.models import Order, OrderStatus, ChangeType, TERMINAL_STATUSES
from order_hub.exceptions import (
    OrderHubError, ValidationError, NotFoundError, StateConflictError,
    OrderFinalizedError, PersistenceError
)
from order_hub.services.pricing_service import calculate_amount, line_amount, normalize_pricing_mode, sum_amounts, ZERO
from order_hub.services.order_modification_service import record_change, count_modifications
from order_hub.services.cart_service import default_pricing_mode, get_orderable_product, snapshot_product
from order_hub.services.email_service import send_status_update_email
from order_hub.utils.retry import retry_on_persistence_error

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING.value: (
        OrderStatus.COMPLETED.value,
        OrderStatus.CANCELLED.value,
        OrderStatus.IN_CART.value,
    ),
}

# Editable batch-wide text columns
NOTE_FIELDS = ('admin_notes', 'notes')


def _batch_summary(batch_order_number: str, lines: List[Order]) -> Dict[str, Any]:
    first = lines[0]
    return {
        'batch_order_number': batch_order_number,
        'status': first.status,
        'user_id': first.user_id,
        'user_email': first.user_email,
        'date_submitted': first.date_submitted.isoformat() if first.date_submitted else None,
        'notes': first.notes,
        'line_count': len(lines),
        'total_amount': str(sum_amounts(line.amount or ZERO for line in lines)),
        'modified_by_admin': any(line.modified_by_admin for line in lines),
    }


def _group_batches(lines: List[Order]) -> List[Dict[str, Any]]:
    batches: Dict[str, List[Order]] = OrderedDict()
    for line in lines:
        batches.setdefault(line.batch_order_number, []).append(line)
    return [_batch_summary(bn, batch_lines) for bn, batch_lines in batches.items()]


def _submitted_between(start: Optional[date], end: Optional[date]) -> list:
    """Filters on date_submitted. Both bounds are whole days, inclusive."""
    if start and end and start > end:
        raise ValidationError('start_date must be on or before end_date', field='start_date')

    filters = []
    if start:
        filters.append(Order.date_submitted >= datetime.combine(start, datetime.min.time()))
    if end:
        filters.append(Order.date_submitted <= datetime.combine(end, datetime.max.time()))
    return filters


@retry_on_persistence_error
def list_user_batches(
    session: Session,
    user,
    start: Optional[date] = None,
    end: Optional[date] = None
) -> List[Dict[str, Any]]:
    """Submitted batches of a user, most recent first, optionally within a date range."""
    filters = _submitted_between(start, end)
    try:
        lines = session.query(Order).filter(
            Order.user_id == user.id,
            Order.status != OrderStatus.IN_CART.value,
            Order.batch_order_number.isnot(None),
            *filters
        ).order_by(Order.date_submitted.desc(), Order.id).all()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error loading orders: {e}') from e

    return _group_batches(lines)


@retry_on_persistence_error
def list_orders(
    session: Session,
    vendor: Optional[str] = None,
    status: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    user=None
) -> List[Dict[str, Any]]:
    """
    Submitted order lines, most recent first.

    Cart lines are left out unless ``status='in_cart'`` is asked for. With
    ``user`` set only that buyer's lines are returned.
    """
    filters = _submitted_between(start, end)
    if status:
        filters.append(Order.status == _validate_status(status))
    else:
        filters.append(Order.status != OrderStatus.IN_CART.value)
    if vendor:
        filters.append(Order.vendor_name == vendor)
    if user is not None:
        filters.append(Order.user_id == user.id)

    try:
        lines = session.query(Order).filter(*filters).order_by(
            Order.date_submitted.desc(), Order.id
        ).all()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error loading orders: {e}') from e

    return [line.to_dict() for line in lines]


def _batch_lines(session: Session, batch_order_number: str, for_update: bool = False) -> List[Order]:
    query = session.query(Order).filter(Order.batch_order_number == batch_order_number).order_by(Order.id)
    if for_update:
        query = query.with_for_update()
    lines = query.all()
    if not lines:
        raise NotFoundError(f'Batch {batch_order_number} not found.')
    return lines


@retry_on_persistence_error
def get_batch(session: Session, batch_order_number: str, user=None) -> Dict[str, Any]:
    """
    Batch summary and its lines.

    With ``user`` set, non-admins may only read their own batches.
    """
    try:
        lines = _batch_lines(session, batch_order_number)
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error loading batch: {e}') from e

    if user is not None and not user.is_admin() and lines[0].user_id != user.id:
        # Same answer as an unknown batch so batch numbers cannot be probed
        raise NotFoundError(f'Batch {batch_order_number} not found.')

    batch = _batch_summary(batch_order_number, lines)
    batch['lines'] = [line.to_dict() for line in lines]
    return batch


def _ensure_batch_editable(batch_order_number: str, lines: List[Order]) -> None:
    status = lines[0].status
    if status in TERMINAL_STATUSES:
        raise OrderFinalizedError(batch_order_number, status)


def _validate_status(new_status: str) -> str:
    valid = tuple(s.value for s in OrderStatus)
    if new_status not in valid:
        raise ValidationError(f"Invalid status {new_status!r}. Expected one of: {', '.join(valid)}", field='status')
    return new_status


def _ensure_transition(ref, old_status: str, new_status: str, kind: str = 'batch') -> None:
    if old_status in TERMINAL_STATUSES:
        raise OrderFinalizedError(ref, old_status)
    if new_status not in ALLOWED_TRANSITIONS.get(old_status, ()):
        raise StateConflictError(
            f'Cannot change {kind} {ref} from {old_status} to {new_status}.',
            current_state=old_status
        )


def _revert_line_to_cart(session: Session, line: Order) -> None:
    """
    Move a submitted line back to the buyer's cart.

    A cart line for the same product absorbs the quantity when both are
    priced the same way. Mixed pricing modes are rejected: units and cases
    cannot be summed without changing what the buyer pays.
    """
    existing = session.query(Order).filter(
        Order.user_id == line.user_id,
        Order.product_id == line.product_id,
        Order.status == OrderStatus.IN_CART.value,
        Order.id != line.id
    ).with_for_update().first()

    if existing:
        if existing.pricing_mode != line.pricing_mode:
            raise StateConflictError(
                f'The cart already holds "{existing.product_name}" priced by {existing.pricing_mode}, '
                f'but order {line.id} is priced by {line.pricing_mode}. '
                f'Remove it from the cart before reverting.',
                current_state=line.status
            )
        existing.quantity += line.quantity
        existing.amount = line_amount(existing)
        session.delete(line)
        return

    line.status = OrderStatus.IN_CART.value
    line.batch_order_number = None
    line.date_submitted = None
    # Sessions do not autoflush; later lines of the batch must see this one in the cart
    session.flush()


def _apply_status(session: Session, line: Order, new_status: str, notes: Optional[str]) -> None:
    if new_status == OrderStatus.IN_CART.value:
        _revert_line_to_cart(session, line)
        return
    line.status = new_status
    if notes:
        line.notes = notes


def update_batch_status(
    session: Session,
    batch_order_number: str,
    new_status: str,
    admin,
    notes: Optional[str] = None
) -> Dict[str, Any]:
    """
    Move every line of a batch to a new status.

    ``notes``, when given, replaces the batch-shared notes the buyer sees.

    Raises:
        ValidationError: unknown status
        OrderFinalizedError: batch already completed or cancelled
        StateConflictError: transition not allowed from the current status,
            or a reverted line clashes with the pricing mode of a cart line
    """
    _validate_status(new_status)
    admin_email = getattr(admin, 'email', None)

    try:
        lines = _batch_lines(session, batch_order_number, for_update=True)
        old_status = lines[0].status
        _ensure_transition(batch_order_number, old_status, new_status)

        buyer_email = lines[0].user_email
        for line in lines:
            record_change(
                session, line, ChangeType.STATUS_CHANGED, admin_email,
                field_changed='status', old_value=old_status, new_value=new_status,
                admin_notes=notes, batch_order_number=batch_order_number,
            )
            _apply_status(session, line, new_status, notes)

        session.commit()

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error updating batch status: {e}') from e

    logger.info(f"[ORDERS] Batch {batch_order_number}: {old_status} -> {new_status} by {admin_email}")
    count_modifications([ChangeType.STATUS_CHANGED] * len(lines))

    send_status_update_email(buyer_email, batch_order_number, new_status, notes)

    return {
        'batch_order_number': batch_order_number,
        'old_status': old_status,
        'new_status': new_status,
        'line_count': len(lines),
    }


def update_order_status(
    session: Session,
    order_id: int,
    new_status: str,
    admin,
    notes: Optional[str] = None
) -> Dict[str, Any]:
    """
    Move a single submitted line to a new status, leaving the rest of its batch as is.

    Same edges and errors as ``update_batch_status``.
    """
    _validate_status(new_status)
    admin_email = getattr(admin, 'email', None)

    try:
        order = session.query(Order).filter(Order.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(f'Order {order_id} not found.')
        if order.is_in_cart:
            raise StateConflictError(
                f'Order {order_id} is still in a cart and has no order status to change.',
                current_state=order.status
            )

        old_status = order.status
        _ensure_transition(order_id, old_status, new_status, kind='order')

        batch_order_number = order.batch_order_number
        buyer_email = order.user_email
        record_change(
            session, order, ChangeType.STATUS_CHANGED, admin_email,
            field_changed='status', old_value=old_status, new_value=new_status,
            admin_notes=notes, batch_order_number=batch_order_number,
        )
        _apply_status(session, order, new_status, notes)

        session.commit()

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error updating order status: {e}') from e

    logger.info(f"[ORDERS] Order {order_id} ({batch_order_number}): {old_status} -> {new_status} by {admin_email}")
    count_modifications([ChangeType.STATUS_CHANGED])

    send_status_update_email(buyer_email, batch_order_number, new_status, notes)

    return {
        'order_id': order_id,
        'batch_order_number': batch_order_number,
        'old_status': old_status,
        'new_status': new_status,
    }


def update_batch_notes(
    session: Session,
    batch_order_number: str,
    admin,
    notes: Optional[str],
    field: str = 'admin_notes'
) -> Dict[str, Any]:
    """
    Replace a notes column on every line of a batch.

    ``field='admin_notes'`` edits the internal notes, ``field='notes'`` the
    batch-shared notes the buyer wrote at submit.
    """
    if field not in NOTE_FIELDS:
        raise ValidationError(f"Invalid notes field {field!r}. Expected one of: {', '.join(NOTE_FIELDS)}", field=field)

    admin_email = getattr(admin, 'email', None)

    try:
        lines = _batch_lines(session, batch_order_number, for_update=True)
        _ensure_batch_editable(batch_order_number, lines)

        if all(getattr(line, field) == notes for line in lines):
            raise ValidationError('No changes to save')

        for line in lines:
            record_change(
                session, line, ChangeType.NOTE_ADDED, admin_email,
                field_changed=field, old_value=getattr(line, field), new_value=notes,
                admin_notes=notes,
            )
            setattr(line, field, notes)

        session.commit()

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error updating batch notes: {e}') from e

    logger.info(f"[ORDERS] Batch {batch_order_number}: {field} updated by {admin_email}")
    count_modifications([ChangeType.NOTE_ADDED] * len(lines))
    return {'batch_order_number': batch_order_number, 'field': field, 'line_count': len(lines)}


def add_item_to_batch(
    session: Session,
    batch_order_number: str,
    admin,
    product_id: int,
    quantity: int,
    pricing_mode: Optional[str] = None,
    admin_notes: Optional[str] = None
) -> Order:
    """Add a new pending line to an existing batch on the buyer's behalf."""
    admin_email = getattr(admin, 'email', None)

    try:
        lines = _batch_lines(session, batch_order_number, for_update=True)
        _ensure_batch_editable(batch_order_number, lines)
        first = lines[0]

        product = get_orderable_product(session, product_id)

        mode = normalize_pricing_mode(pricing_mode) if pricing_mode else default_pricing_mode(product)
        amount = calculate_amount(quantity, mode, product.wholesale_unit_price, product.wholesale_case_price)

        order = Order(
            batch_order_number=batch_order_number,
            status=first.status,
            user_id=first.user_id,
            user_email=first.user_email,
            product_id=product.id,
            quantity=quantity,
            pricing_mode=mode,
            notes=first.notes,
            admin_notes=admin_notes,
            cart_created_at=datetime.now(),
            date_submitted=first.date_submitted,
            modified_by_admin=True,
            modification_count=0,
        )
        snapshot_product(order, product)
        order.amount = amount
        session.add(order)
        session.flush()

        record_change(
            session, order, ChangeType.ITEM_ADDED, admin_email,
            field_changed='product_id', new_value=f"{product.product_name} x {quantity} ({mode})",
            admin_notes=admin_notes,
        )
        session.commit()

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error adding item to batch: {e}') from e

    logger.info(f"[ORDERS] Batch {batch_order_number}: product {product_id} x {quantity} added by {admin_email}")
    count_modifications([ChangeType.ITEM_ADDED])
    return order


def remove_item_from_batch(session: Session, order_id: int, admin, admin_notes: Optional[str] = None) -> Dict[str, Any]:
    """Delete one submitted line. The removal record keeps the old order id."""
    admin_email = getattr(admin, 'email', None)

    try:
        order = session.query(Order).filter(Order.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(f'Order {order_id} not found.')
        if order.is_finalized:
            raise OrderFinalizedError(order.batch_order_number, order.status)
        if order.is_in_cart:
            raise StateConflictError(
                f'Order {order_id} is still in a cart and cannot be removed by an admin.',
                current_state=order.status
            )

        batch_order_number = order.batch_order_number
        record_change(
            session, order, ChangeType.ITEM_REMOVED, admin_email,
            field_changed='product_id',
            old_value=f"{order.product_name} x {order.quantity} ({order.pricing_mode})",
            admin_notes=admin_notes,
        )
        session.delete(order)
        session.commit()

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error removing item: {e}') from e

    logger.info(f"[ORDERS] Order {order_id} removed from {batch_order_number} by {admin_email}")
    count_modifications([ChangeType.ITEM_REMOVED])
    return {'order_id': order_id, 'batch_order_number': batch_order_number}


@retry_on_persistence_error
def get_order_stats(session: Session) -> Dict[str, Any]:
    """Line and batch counts by status plus revenue of non-cancelled orders."""
    try:
        rows = session.query(
            Order.status,
            func.count(Order.id).label('lines'),
            func.count(func.distinct(Order.batch_order_number)).label('batches'),
            func.coalesce(func.sum(Order.amount), 0).label('amount')
        ).group_by(Order.status).all()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error loading order stats: {e}') from e

    by_status = {s.value: {'lines': 0, 'batches': 0, 'amount': '0.00'} for s in OrderStatus}
    for status, lines, batches, amount in rows:
        by_status[status] = {
            'lines': lines,
            'batches': batches,
            'amount': str(sum_amounts([Decimal(str(amount))])),
        }

    submitted = (OrderStatus.PENDING.value, OrderStatus.COMPLETED.value)
    return {
        'by_status': by_status,
        'batch_count': sum(by_status[s]['batches'] for s in submitted + (OrderStatus.CANCELLED.value,)),
        'pending_revenue': by_status[OrderStatus.PENDING.value]['amount'],
        'completed_revenue': by_status[OrderStatus.COMPLETED.value]['amount'],
        'total_revenue': str(sum_amounts(Decimal(by_status[s]['amount']) for s in submitted)),
    }

