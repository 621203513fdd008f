"""
Integration tests for admin order modification and the audit trail.
"""

import pytest
from decimal import Decimal
from prometheus_client import REGISTRY
from order_hub.models import Order, OrderModification, OrderStatus
from order_hub.exceptions import (
    ValidationError, NotFoundError, StateConflictError, OrderFinalizedError
)
from order_hub.services import cart_service, order_service
from order_hub.services.order_modification_service import (
    OrderUpdate, modify_order, get_order_history, get_batch_history
)


@pytest.fixture
def pending_order(session, buyer, product):
    """One pending line: 5 units at $10.00."""
    cart_service.add_to_cart(session, buyer, product.id, 5, pricing_mode='unit')
    result = cart_service.submit_cart(session, buyer)
    return session.query(Order).filter_by(batch_order_number=result['batch_order_number']).one()


def _records(session, order_id):
    return session.query(OrderModification).filter_by(order_id=order_id).all()


def _modification_count(change_type):
    value = REGISTRY.get_sample_value('order_modifications_total', {'change_type': change_type})
    return value or 0


class TestModifyOrder:
    """Tests for modify_order."""

    def test_quantity_change_recomputes_amount(self, session, admin, pending_order):
        order = modify_order(session, pending_order.id, admin, OrderUpdate(quantity=8))

        assert order.quantity == 8
        assert order.amount == Decimal('80.00')
        assert order.modified_by_admin is True
        assert order.modification_count == 1

        records = {r.change_type: r for r in _records(session, order.id)}
        assert set(records) == {'quantity_changed', 'amount_changed'}
        assert (records['quantity_changed'].old_value, records['quantity_changed'].new_value) == ('5', '8')
        assert (records['amount_changed'].old_value, records['amount_changed'].new_value) == ('50.00', '80.00')
        assert records['quantity_changed'].changed_by_admin_email == admin.email
        assert records['quantity_changed'].batch_order_number == order.batch_order_number

    def test_original_snapshot_captured_once(self, session, admin, pending_order):
        modify_order(session, pending_order.id, admin, OrderUpdate(quantity=8))
        order = modify_order(session, pending_order.id, admin, OrderUpdate(quantity=9))

        snapshot = order.get_original_snapshot()
        assert snapshot['quantity'] == 5
        assert snapshot['amount'] == '50.00'
        assert order.modification_count == 2

    def test_one_count_per_call_with_several_fields(self, session, admin, pending_order):
        order = modify_order(
            session, pending_order.id, admin,
            OrderUpdate(quantity=2, unit_price=Decimal('12.00'), admin_notes='Price corrected')
        )

        assert order.modification_count == 1
        assert order.amount == Decimal('24.00')
        types = sorted(r.change_type for r in _records(session, order.id))
        assert types == ['amount_changed', 'note_added', 'price_changed', 'quantity_changed']
        assert all(r.admin_notes == 'Price corrected' for r in _records(session, order.id))

    def test_pricing_mode_change(self, session, admin, pending_order):
        order = modify_order(session, pending_order.id, admin, OrderUpdate(quantity=1, pricing_mode='case'))
        assert order.amount == Decimal('110.00')
        types = {r.change_type for r in _records(session, order.id)}
        assert 'pricing_mode_changed' in types

    def test_unchanged_values_are_rejected(self, session, admin, pending_order):
        with pytest.raises(ValidationError) as exc_info:
            modify_order(session, pending_order.id, admin, OrderUpdate(quantity=5))
        assert exc_info.value.message == 'No changes to save'
        assert _records(session, pending_order.id) == []

    def test_invalid_quantity(self, session, admin, pending_order):
        with pytest.raises(ValidationError):
            modify_order(session, pending_order.id, admin, OrderUpdate(quantity=-2))
        assert session.get(Order, pending_order.id).quantity == 5

    def test_completed_order_is_finalized(self, session, admin, pending_order):
        order_service.update_batch_status(session, pending_order.batch_order_number, 'completed', admin)
        before = len(session.query(OrderModification).all())

        with pytest.raises(StateConflictError) as exc_info:
            modify_order(session, pending_order.id, admin, OrderUpdate(quantity=8))

        assert isinstance(exc_info.value, OrderFinalizedError)
        assert exc_info.value.status_code == 409
        assert 'finalized' in exc_info.value.message
        assert len(session.query(OrderModification).all()) == before
        assert session.get(Order, pending_order.id).quantity == 5

    def test_cart_line_cannot_be_modified(self, session, buyer, admin, product):
        line = cart_service.add_to_cart(session, buyer, product.id, 1)
        with pytest.raises(StateConflictError) as exc_info:
            modify_order(session, line.id, admin, OrderUpdate(quantity=3))
        assert not isinstance(exc_info.value, OrderFinalizedError)

    def test_unknown_order(self, session, admin):
        with pytest.raises(NotFoundError):
            modify_order(session, 999999, admin, OrderUpdate(quantity=1))

    def test_metric_counts_every_audit_record(self, session, admin, pending_order):
        before = {t: _modification_count(t) for t in ('quantity_changed', 'amount_changed')}

        modify_order(session, pending_order.id, admin, OrderUpdate(quantity=8))

        assert _modification_count('quantity_changed') == before['quantity_changed'] + 1
        assert _modification_count('amount_changed') == before['amount_changed'] + 1


class TestOrderUpdateFromDict:

    def test_parses_json_values(self):
        update = OrderUpdate.from_dict({'quantity': '8', 'unit_price': '9.5', 'pricing_mode': 'UNIT'})
        assert update.quantity == 8
        assert update.unit_price == Decimal('9.50')
        assert update.pricing_mode == 'unit'
        assert update.case_price is None

    def test_rejects_bad_values(self):
        with pytest.raises(ValidationError):
            OrderUpdate.from_dict({'quantity': 'lots'})
        with pytest.raises(ValidationError):
            OrderUpdate.from_dict({'case_price': '-1'})


class TestHistory:
    """Tests for order and batch history."""

    def test_order_history(self, session, admin, pending_order):
        modify_order(session, pending_order.id, admin, OrderUpdate(quantity=8))

        history = get_order_history(session, pending_order.id)

        assert history['order']['quantity'] == 8
        assert history['original_snapshot']['quantity'] == 5
        assert len(history['history']) == 2

    def test_unmodified_order_has_empty_history(self, session, pending_order):
        history = get_order_history(session, pending_order.id)
        assert history['history'] == []
        assert history['original_snapshot'] is None

    def test_unknown_order_history(self, session):
        with pytest.raises(NotFoundError):
            get_order_history(session, 999999)

    def test_batch_history_summary(self, session, admin, pending_order, products):
        bn = pending_order.batch_order_number
        modify_order(session, pending_order.id, admin, OrderUpdate(quantity=8))
        added_id = order_service.add_item_to_batch(session, bn, admin, products[0].id, 2).id
        order_service.remove_item_from_batch(session, added_id, admin, admin_notes='Out of stock')

        history = get_batch_history(session, bn)

        assert history['batch_order_number'] == bn
        assert len(history['items']) == 1
        assert history['items'][0]['modification_count'] == 1
        summary = history['summary']
        assert summary['total_modifications'] == 4
        assert summary['items_added'] == 1
        assert summary['items_removed'] == 1
        assert summary['last_modified'] is not None

        removed = [c for c in history['all_changes'] if c['change_type'] == 'item_removed']
        assert removed[0]['order_id'] == added_id
        assert removed[0]['admin_notes'] == 'Out of stock'

    def test_unknown_batch_history(self, session):
        with pytest.raises(NotFoundError):
            get_batch_history(session, 'BATCH-0000-0000000000-XXXXXX')
