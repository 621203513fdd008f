"""
Order modification service - admin edits of submitted orders with an audit trail.

Every edit to a pending order line writes one OrderModification record per
changed field in the same transaction as the edit itself.
"""
import json
import logging
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Optional, Dict, Any, List
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from order_hub.models import Order, OrderStatus, OrderModification, ChangeType
from order_hub.exceptions import (
    OrderHubError, ValidationError, NotFoundError, StateConflictError,
    OrderFinalizedError, PersistenceError
)
from order_hub.services.pricing_service import calculate_amount, normalize_pricing_mode
from order_hub.utils.number_format import parse_quantity, parse_price
from order_hub.blueprints.metrics import record_modification
from order_hub.utils.retry import retry_on_persistence_error

logger = logging.getLogger(__name__)

PRICE_FIELDS = ('unit_price', 'case_price')


@dataclass
class OrderUpdate:
    """Admin-editable fields of an order line. None means "leave unchanged"."""
    quantity: Optional[int] = None
    pricing_mode: Optional[str] = None
    unit_price: Optional[Decimal] = None
    case_price: Optional[Decimal] = None
    admin_notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OrderUpdate':
        """Build from a JSON body, validating numbers."""
        quantity = data.get('quantity')
        pricing_mode = data.get('pricing_mode')
        return cls(
            quantity=parse_quantity(quantity) if quantity is not None else None,
            pricing_mode=normalize_pricing_mode(pricing_mode) if pricing_mode is not None else None,
            unit_price=parse_price(data.get('unit_price'), field='unit_price'),
            case_price=parse_price(data.get('case_price'), field='case_price'),
            admin_notes=data.get('admin_notes'),
        )

    def changed_fields(self, order: Order) -> Dict[str, Any]:
        """Fields whose new value differs from the order's current value."""
        changes = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            current = getattr(order, f.name)
            if f.name in PRICE_FIELDS and current is not None:
                current = Decimal(current)
            if value != current:
                changes[f.name] = value
        return changes


def _display(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return str(value)


def record_change(
    session: Session,
    order: Order,
    change_type: ChangeType,
    admin_email: Optional[str],
    field_changed: Optional[str] = None,
    old_value=None,
    new_value=None,
    admin_notes: Optional[str] = None,
    batch_order_number: Optional[str] = None
) -> OrderModification:
    """Append one audit record. The caller commits."""
    record = OrderModification(
        order_id=order.id,
        batch_order_number=batch_order_number or order.batch_order_number,
        change_type=change_type.value,
        field_changed=field_changed,
        old_value=_display(old_value),
        new_value=_display(new_value),
        admin_notes=admin_notes,
        changed_by_admin_email=admin_email,
    )
    session.add(record)
    return record


def _change_type_for(field_name: str) -> ChangeType:
    if field_name == 'quantity':
        return ChangeType.QUANTITY_CHANGED
    if field_name in PRICE_FIELDS:
        return ChangeType.PRICE_CHANGED
    if field_name == 'pricing_mode':
        return ChangeType.PRICING_MODE_CHANGED
    return ChangeType.NOTE_ADDED


def ensure_modifiable(order: Order) -> None:
    """Only pending (submitted, not finalized) orders can be edited."""
    if order.is_finalized:
        raise OrderFinalizedError(order.batch_order_number or order.id, order.status)
    if order.status != OrderStatus.PENDING.value:
        raise StateConflictError(
            f'Order {order.id} is still in a cart and cannot be modified by an admin.',
            current_state=order.status
        )


def modify_order(session: Session, order_id: int, admin, update: OrderUpdate) -> Order:
    """
    Apply an admin edit to one pending order line.

    Captures the original snapshot on the first edit, recomputes the amount
    from the merged fields, and logs one record per changed field plus an
    ``amount_changed`` record when the amount moves.

    Raises:
        NotFoundError: unknown order
        OrderFinalizedError: order is completed or cancelled
        StateConflictError: order is still in a cart
        ValidationError: nothing changed, or the new values are invalid
    """
    try:
        order = session.query(Order).filter(Order.id == order_id).with_for_update().first()
        if not order:
            raise NotFoundError(f'Order {order_id} not found.')

        ensure_modifiable(order)

        changes = update.changed_fields(order)
        if not changes:
            raise ValidationError('No changes to save')

        new_quantity = changes.get('quantity', order.quantity)
        new_mode = changes.get('pricing_mode', order.pricing_mode)
        new_unit_price = changes.get('unit_price', order.unit_price)
        new_case_price = changes.get('case_price', order.case_price)
        new_amount = calculate_amount(new_quantity, new_mode, new_unit_price, new_case_price)

        if not order.original_snapshot:
            order.original_snapshot = json.dumps(order.pricing_snapshot())

        admin_email = getattr(admin, 'email', None)
        note = changes.get('admin_notes')
        recorded = []

        for field_name, new_value in changes.items():
            change_type = _change_type_for(field_name)
            record_change(
                session, order, change_type, admin_email,
                field_changed=field_name,
                old_value=getattr(order, field_name),
                new_value=new_value,
                admin_notes=note,
            )
            setattr(order, field_name, new_value)
            recorded.append(change_type)

        old_amount = Decimal(order.amount) if order.amount is not None else None
        if old_amount != new_amount:
            record_change(
                session, order, ChangeType.AMOUNT_CHANGED, admin_email,
                field_changed='amount', old_value=old_amount, new_value=new_amount,
                admin_notes=note,
            )
            recorded.append(ChangeType.AMOUNT_CHANGED)
        order.amount = new_amount

        order.modified_by_admin = True
        order.modification_count = (order.modification_count or 0) + 1

        session.commit()

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error modifying order: {e}') from e

    logger.info(
        f"[ORDERS] Order {order.id} ({order.batch_order_number}) modified by {admin_email}: "
        f"{', '.join(changes)}"
    )
    count_modifications(recorded)
    return order


def count_modifications(change_types: List[ChangeType]) -> None:
    """Count committed audit records in the modifications metric, one per record."""
    for change_type in change_types:
        record_modification(change_type.value)


def _history_query(session: Session):
    return session.query(OrderModification).order_by(
        OrderModification.change_timestamp.desc(), OrderModification.id.desc()
    )


@retry_on_persistence_error
def get_order_history(session: Session, order_id: int) -> Dict[str, Any]:
    """Order, its original snapshot and its change log (newest first)."""
    try:
        order = session.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError(f'Order {order_id} not found.')
        history = _history_query(session).filter(OrderModification.order_id == order_id).all()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error loading order history: {e}') from e

    return {
        'order': order.to_dict(),
        'original_snapshot': order.get_original_snapshot(),
        'history': [m.to_dict() for m in history],
    }


@retry_on_persistence_error
def get_batch_history(session: Session, batch_order_number: str) -> Dict[str, Any]:
    """
    Change log of a whole batch.

    Records of removed lines are kept and reported even though their order
    rows are gone.
    """
    try:
        items = session.query(Order).filter(
            Order.batch_order_number == batch_order_number
        ).order_by(Order.id).all()
        changes = _history_query(session).filter(
            OrderModification.batch_order_number == batch_order_number
        ).all()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error loading batch history: {e}') from e

    if not items and not changes:
        raise NotFoundError(f'Batch {batch_order_number} not found.')

    last = changes[0].change_timestamp if changes else None

    return {
        'batch_order_number': batch_order_number,
        'items': [
            {
                'order': item.to_dict(),
                'original_snapshot': item.get_original_snapshot(),
                'modification_count': item.modification_count or 0,
            }
            for item in items
        ],
        'all_changes': [c.to_dict() for c in changes],
        'summary': {
            'total_modifications': len(changes),
            'items_added': sum(1 for c in changes if c.change_type == ChangeType.ITEM_ADDED.value),
            'items_removed': sum(1 for c in changes if c.change_type == ChangeType.ITEM_REMOVED.value),
            'last_modified': last.isoformat() if last else None,
        },
    }
