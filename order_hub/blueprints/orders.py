"""Orders blueprint - submitted batches, admin lifecycle and modification history."""
from datetime import datetime, date
from typing import Optional
from flask import Blueprint, request, jsonify, g
from order_hub.database import get_session
from order_hub.services import order_service, order_modification_service
from order_hub.services.order_modification_service import OrderUpdate
from order_hub.middleware import require_login, require_admin
from order_hub.exceptions import ValidationError
from order_hub.utils.number_format import parse_quantity

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _parse_date_arg(name: str) -> Optional[date]:
    """Parse a YYYY-MM-DD query argument."""
    value = request.args.get(name)
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'{name} must be a date in YYYY-MM-DD format (got {value!r})', field=name)


@orders_bp.route('/my-batches', methods=['GET'])
@require_login
def my_batches():
    """Own batches. Optional ?start_date=&end_date= (inclusive)."""
    batches = order_service.list_user_batches(
        get_session(), g.user,
        start=_parse_date_arg('start_date'), end=_parse_date_arg('end_date')
    )
    return jsonify({'success': True, 'batches': batches})


@orders_bp.route('/my-orders', methods=['GET'])
@require_login
def my_orders():
    orders = order_service.list_orders(
        get_session(), user=g.user,
        start=_parse_date_arg('start_date'), end=_parse_date_arg('end_date')
    )
    return jsonify({'success': True, 'orders': orders, 'count': len(orders)})


@orders_bp.route('/all', methods=['GET'])
@require_admin
def all_orders():
    """All submitted lines. Filters: vendor, status, start_date, end_date."""
    orders = order_service.list_orders(
        get_session(),
        vendor=request.args.get('vendor') or None,
        status=request.args.get('status') or None,
        start=_parse_date_arg('start_date'),
        end=_parse_date_arg('end_date'),
    )
    return jsonify({'success': True, 'orders': orders, 'count': len(orders)})


@orders_bp.route('/batch/<batch_order_number>', methods=['GET'])
@require_login
def batch_detail(batch_order_number):
    batch = order_service.get_batch(get_session(), batch_order_number, user=g.user)
    return jsonify({'success': True, 'batch': batch})


@orders_bp.route('/batch/<batch_order_number>/history', methods=['GET'])
@require_admin
def batch_history(batch_order_number):
    history = order_modification_service.get_batch_history(get_session(), batch_order_number)
    return jsonify({'success': True, **history})


@orders_bp.route('/batch/<batch_order_number>/status', methods=['PATCH'])
@require_admin
def batch_status(batch_order_number):
    """Complete, cancel or revert a batch to the buyer's cart."""
    data = _json_body()
    new_status = data.get('status')
    if not new_status:
        raise ValidationError('status is required', field='status')

    result = order_service.update_batch_status(
        get_session(), batch_order_number, new_status, g.user, notes=data.get('notes')
    )
    return jsonify({'success': True, **result})


@orders_bp.route('/batch/<batch_order_number>/notes', methods=['PATCH'])
@require_admin
def batch_notes(batch_order_number):
    """Edit 'notes' (shared with the buyer) or 'admin_notes' (internal)."""
    data = _json_body()
    field = 'notes' if 'notes' in data else 'admin_notes'
    if field not in data:
        raise ValidationError('notes or admin_notes is required', field='admin_notes')

    result = order_service.update_batch_notes(
        get_session(), batch_order_number, g.user, data.get(field), field=field
    )
    return jsonify({'success': True, **result})


@orders_bp.route('/batch/<batch_order_number>/add-item', methods=['POST'])
@require_admin
def batch_add_item(batch_order_number):
    data = _json_body()
    order = order_service.add_item_to_batch(
        get_session(), batch_order_number, g.user,
        parse_quantity(data.get('product_id'), field='product_id'),
        parse_quantity(data.get('quantity')),
        pricing_mode=data.get('pricing_mode'),
        admin_notes=data.get('admin_notes'),
    )
    return jsonify({'success': True, 'order': order.to_dict()}), 201


@orders_bp.route('/<int:order_id>/modify', methods=['PATCH'])
@require_admin
def modify(order_id):
    """Admin edit of quantity, pricing mode, prices or notes."""
    update = OrderUpdate.from_dict(_json_body())
    order = order_modification_service.modify_order(get_session(), order_id, g.user, update)
    return jsonify({'success': True, 'message': 'Order updated', 'order': order.to_dict()})


@orders_bp.route('/<int:order_id>/status', methods=['PATCH'])
@require_admin
def order_status(order_id):
    """Complete, cancel or revert a single line of a batch."""
    data = _json_body()
    new_status = data.get('status')
    if not new_status:
        raise ValidationError('status is required', field='status')

    result = order_service.update_order_status(
        get_session(), order_id, new_status, g.user, notes=data.get('notes')
    )
    return jsonify({'success': True, **result})


@orders_bp.route('/<int:order_id>/history', methods=['GET'])
@require_admin
def order_history(order_id):
    history = order_modification_service.get_order_history(get_session(), order_id)
    return jsonify({'success': True, **history})


@orders_bp.route('/<int:order_id>', methods=['DELETE'])
@require_admin
def remove_item(order_id):
    data = _json_body()
    result = order_service.remove_item_from_batch(
        get_session(), order_id, g.user, admin_notes=data.get('admin_notes')
    )
    return jsonify({'success': True, **result})


@orders_bp.route('/stats', methods=['GET'])
@require_admin
def stats():
    return jsonify({'success': True, **order_service.get_order_stats(get_session())})
