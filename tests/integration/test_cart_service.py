"""
Integration tests for the cart and the cart-to-order transition.
"""

import pytest
from decimal import Decimal
from order_hub.models import Order, OrderStatus
from order_hub.exceptions import (
    ValidationError, NotFoundError, EmptyCartError, PersistenceError
)
from order_hub.services import cart_service
from order_hub.services.cart_service import CartLineUpdate, generate_batch_number


def _cart_lines(session, user):
    return session.query(Order).filter_by(user_id=user.id, status=OrderStatus.IN_CART.value).all()


class TestAddToCart:
    """Tests for add_to_cart."""

    def test_add_snapshots_product(self, session, buyer, product):
        line = cart_service.add_to_cart(session, buyer, product.id, 2, pricing_mode='case')

        assert line.status == OrderStatus.IN_CART.value
        assert line.batch_order_number is None
        assert line.product_name == 'Olive Oil 500ml'
        assert line.vendor_name == 'Acme Pantry'
        assert line.unit_price == Decimal('10.00')
        assert line.case_price == Decimal('110.00')
        assert line.case_pack == 12
        assert line.amount == Decimal('220.00')
        assert line.unavailable_action == 'curate'

    def test_default_mode_depends_on_case_price(self, session, buyer, product, products):
        assert cart_service.add_to_cart(session, buyer, product.id, 1).pricing_mode == 'case'
        assert cart_service.add_to_cart(session, buyer, products[0].id, 1).pricing_mode == 'unit'

    def test_re_adding_accumulates_quantity(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 2, pricing_mode='unit')
        line = cart_service.add_to_cart(session, buyer, product.id, 3, pricing_mode='unit')

        lines = _cart_lines(session, buyer)
        assert len(lines) == 1
        assert line.quantity == 5
        assert line.amount == Decimal('50.00')

    def test_re_adding_refreshes_price_snapshot(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 1, pricing_mode='unit')
        product.wholesale_unit_price = Decimal('12.00')
        session.commit()

        line = cart_service.add_to_cart(session, buyer, product.id, 1, pricing_mode='unit')
        assert line.unit_price == Decimal('12.00')
        assert line.amount == Decimal('24.00')

    def test_re_adding_keeps_replacement_preference(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 1, unavailable_action='remove')
        line = cart_service.add_to_cart(session, buyer, product.id, 1)

        assert line.quantity == 2
        assert line.unavailable_action == 'remove'

    def test_carts_are_per_user(self, session, buyer, other_buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 1)
        cart_service.add_to_cart(session, other_buyer, product.id, 4)

        assert _cart_lines(session, buyer)[0].quantity == 1
        assert _cart_lines(session, other_buyer)[0].quantity == 4

    def test_unknown_product(self, session, buyer):
        with pytest.raises(NotFoundError):
            cart_service.add_to_cart(session, buyer, 999999, 1)

    def test_inactive_product(self, session, buyer, make_product):
        retired = make_product('Retired Item', '1.00', active=False)
        with pytest.raises(ValidationError):
            cart_service.add_to_cart(session, buyer, retired.id, 1)

    def test_invalid_quantity_leaves_cart_untouched(self, session, buyer, product):
        with pytest.raises(ValidationError):
            cart_service.add_to_cart(session, buyer, product.id, 0)
        assert _cart_lines(session, buyer) == []

    def test_replacement_preference_on_add(self, session, buyer, products):
        honey, jam, _ = products
        line = cart_service.add_to_cart(
            session, buyer, honey.id, 1,
            unavailable_action='replace_same_vendor', replacement_product_id=jam.id
        )
        assert line.unavailable_action == 'replace_same_vendor'
        assert line.replacement_product_id == jam.id
        assert line.replacement_product_name == 'Jam 300g'


class TestUpdateCart:
    """Tests for update_cart_line, remove_from_cart and clear_cart."""

    def test_update_quantity_and_mode(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 2, pricing_mode='case')
        line = cart_service.update_cart_line(
            session, buyer, product.id, CartLineUpdate(quantity=6, pricing_mode='unit')
        )
        assert line.quantity == 6
        assert line.pricing_mode == 'unit'
        assert line.amount == Decimal('60.00')

    def test_quantity_zero_removes_line(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 2)
        result = cart_service.update_cart_line(session, buyer, product.id, CartLineUpdate(quantity=0))

        assert result is None
        assert _cart_lines(session, buyer) == []

    def test_update_missing_line(self, session, buyer, product):
        with pytest.raises(NotFoundError):
            cart_service.update_cart_line(session, buyer, product.id, CartLineUpdate(quantity=1))

    def test_invalid_mode_keeps_line(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 2, pricing_mode='case')
        with pytest.raises(ValidationError):
            cart_service.update_cart_line(session, buyer, product.id, CartLineUpdate(pricing_mode='pallet'))
        assert _cart_lines(session, buyer)[0].pricing_mode == 'case'

    def test_remove(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 2)
        cart_service.remove_from_cart(session, buyer, product.id)
        assert _cart_lines(session, buyer) == []

        with pytest.raises(NotFoundError):
            cart_service.remove_from_cart(session, buyer, product.id)

    def test_clear_cart_is_idempotent(self, session, buyer, products):
        for p in products:
            cart_service.add_to_cart(session, buyer, p.id, 1)

        assert cart_service.clear_cart(session, buyer) == 3
        assert cart_service.clear_cart(session, buyer) == 0


class TestGetCart:
    """Tests for get_cart."""

    def test_totals_and_vendor_subtotals(self, session, buyer, products):
        honey, jam, tea = products
        cart_service.add_to_cart(session, buyer, honey.id, 2)
        cart_service.add_to_cart(session, buyer, jam.id, 4)
        cart_service.add_to_cart(session, buyer, tea.id, 5)

        cart = cart_service.get_cart(session, buyer)

        assert cart['line_count'] == 3
        assert cart['total'] == '142.50'
        subtotals = {v['vendor_name']: v['subtotal'] for v in cart['vendor_subtotals']}
        assert subtotals == {'Acme Pantry': '105.00', 'Borealis Foods': '37.50'}
        assert cart['is_valid'] is True

    def test_warnings_are_attached_to_lines(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 5, pricing_mode='unit')

        cart = cart_service.get_cart(session, buyer)

        assert cart['is_valid'] is False
        assert cart['case_pack_groups'][0]['units_needed'] == 7
        line_codes = {w['code'] for w in cart['lines'][0]['warnings']}
        assert line_codes == {'minimum_units', 'case_pack_incomplete'}

    def test_empty_cart(self, session, buyer):
        cart = cart_service.get_cart(session, buyer)
        assert cart['lines'] == []
        assert cart['total'] == '0.00'
        assert cart['is_valid'] is True


class TestSubmitCart:
    """Tests for submit_cart."""

    def test_submit_creates_one_pending_batch(self, session, buyer, products):
        honey, jam, tea = products
        cart_service.add_to_cart(session, buyer, honey.id, 2)
        cart_service.add_to_cart(session, buyer, jam.id, 4)
        cart_service.add_to_cart(session, buyer, tea.id, 5)

        result = cart_service.submit_cart(session, buyer, notes='Deliver Tuesday')

        assert result['line_count'] == 3
        assert result['total_amount'] == Decimal('142.50')

        orders = session.query(Order).filter_by(batch_order_number=result['batch_order_number']).all()
        assert len(orders) == 3
        assert {o.status for o in orders} == {OrderStatus.PENDING.value}
        assert all(o.date_submitted is not None for o in orders)
        assert all(o.notes == 'Deliver Tuesday' for o in orders)
        assert sum(o.amount for o in orders) == Decimal('142.50')
        assert _cart_lines(session, buyer) == []

    def test_empty_cart_cannot_be_submitted(self, session, buyer):
        with pytest.raises(EmptyCartError) as exc_info:
            cart_service.submit_cart(session, buyer)
        assert exc_info.value.status_code == 400

    def test_advisory_policy_submits_with_warnings(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 5, pricing_mode='unit')
        result = cart_service.submit_cart(session, buyer, policy='advisory')
        assert result['line_count'] == 1

    def test_strict_policy_blocks_on_warnings(self, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 5, pricing_mode='unit')

        with pytest.raises(ValidationError) as exc_info:
            cart_service.submit_cart(session, buyer, policy='strict')

        codes = {w['code'] for w in exc_info.value.payload['warnings']}
        assert 'case_pack_incomplete' in codes
        assert len(_cart_lines(session, buyer)) == 1

    def test_strict_policy_from_config(self, app, session, buyer, product):
        cart_service.add_to_cart(session, buyer, product.id, 5, pricing_mode='unit')
        app.config['CART_SUBMIT_POLICY'] = 'strict'
        try:
            with pytest.raises(ValidationError):
                cart_service.submit_cart(session, buyer)
        finally:
            app.config['CART_SUBMIT_POLICY'] = 'advisory'

    def test_failed_commit_keeps_cart(self, session, buyer, products, monkeypatch):
        from sqlalchemy.exc import OperationalError
        cart_service.add_to_cart(session, buyer, products[0].id, 2)

        def broken_commit():
            raise OperationalError('COMMIT', {}, Exception('connection lost'))

        monkeypatch.setattr(session, 'commit', broken_commit)
        with pytest.raises(PersistenceError):
            cart_service.submit_cart(session, buyer)
        monkeypatch.undo()

        lines = _cart_lines(session, buyer)
        assert len(lines) == 1
        assert lines[0].batch_order_number is None

    def test_batch_numbers_are_unique(self):
        numbers = {generate_batch_number('BATCH') for _ in range(50)}
        assert len(numbers) == 50
        assert all(n.startswith('BATCH-') for n in numbers)
