"""Cart blueprint - the buyer's server-side cart."""
from flask import Blueprint, request, jsonify, g
from order_hub.database import get_session
from order_hub.services import cart_service
from order_hub.services.cart_service import CartLineUpdate
from order_hub.services.replacement_service import set_replacement_preference
from order_hub.middleware import require_login
from order_hub.utils.number_format import parse_quantity

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _optional_int(data: dict, key: str):
    value = data.get(key)
    if value is None or value == '':
        return None
    return parse_quantity(value, field=key)


@cart_bp.route('', methods=['GET'])
@require_login
def get_cart():
    """Cart lines, totals, warnings and case-pack groups."""
    cart = cart_service.get_cart(get_session(), g.user)
    return jsonify({'success': True, **cart})


@cart_bp.route('/add', methods=['POST'])
@require_login
def add():
    """Add a product to the cart (accumulates quantity)."""
    data = _json_body()
    product_id = parse_quantity(data.get('product_id'), field='product_id')
    quantity = parse_quantity(data.get('quantity', 1))

    line = cart_service.add_to_cart(
        get_session(), g.user, product_id, quantity,
        pricing_mode=data.get('pricing_mode'),
        unavailable_action=data.get('unavailable_action'),
        replacement_product_id=_optional_int(data, 'replacement_product_id'),
        replacement_product_name=data.get('replacement_product_name'),
    )
    return jsonify({'success': True, 'message': 'Added to cart', 'line': line.to_dict()}), 201


@cart_bp.route('/<int:product_id>', methods=['PATCH'])
@require_login
def update(product_id):
    """Update quantity, pricing mode or preference. quantity <= 0 removes the line."""
    data = _json_body()
    quantity = data.get('quantity')

    update = CartLineUpdate(
        quantity=parse_quantity(quantity, positive=False) if quantity is not None else None,
        pricing_mode=data.get('pricing_mode'),
        unavailable_action=data.get('unavailable_action'),
        replacement_product_id=_optional_int(data, 'replacement_product_id'),
        replacement_product_name=data.get('replacement_product_name'),
    )
    if update.is_empty():
        return jsonify({'status': 'error', 'message': 'No changes to save'}), 400

    line = cart_service.update_cart_line(get_session(), g.user, product_id, update)
    if line is None:
        return jsonify({'success': True, 'message': 'Removed from cart', 'removed': True})
    return jsonify({'success': True, 'line': line.to_dict()})


@cart_bp.route('/<int:product_id>', methods=['DELETE'])
@require_login
def remove(product_id):
    """Remove a product from the cart."""
    cart_service.remove_from_cart(get_session(), g.user, product_id)
    return jsonify({'success': True, 'message': 'Removed from cart'})


@cart_bp.route('/clear/all', methods=['DELETE'])
@require_login
def clear():
    removed = cart_service.clear_cart(get_session(), g.user)
    return jsonify({'success': True, 'removed': removed})


@cart_bp.route('/<int:product_id>/replacement', methods=['PUT'])
@require_login
def replacement(product_id):
    """Set what happens to this line if the product is unavailable."""
    data = _json_body()
    line = set_replacement_preference(
        get_session(), g.user, product_id,
        data.get('unavailable_action'),
        replacement_product_id=_optional_int(data, 'replacement_product_id'),
        replacement_product_name=data.get('replacement_product_name'),
    )
    return jsonify({'success': True, 'line': line.to_dict()})


@cart_bp.route('/submit', methods=['POST'])
@require_login
def submit():
    """Submit the whole cart as one order batch."""
    data = _json_body()
    result = cart_service.submit_cart(get_session(), g.user, notes=data.get('notes'))
    return jsonify({
        'success': True,
        'message': 'Order submitted successfully',
        'batch_order_number': result['batch_order_number'],
        'line_count': result['line_count'],
        'total_amount': str(result['total_amount']),
    }), 201
