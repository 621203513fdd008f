"""Products blueprint - replacement candidates for cart lines."""
from flask import Blueprint, request, jsonify
from order_hub.database import get_session
from order_hub.services.replacement_service import find_similar_products
from order_hub.middleware import require_login

products_bp = Blueprint('products', __name__, url_prefix='/api/products')


@products_bp.route('/<int:product_id>/similar', methods=['GET'])
@require_login
def similar(product_id):
    """Similar products. ?same_vendor=true restricts to the product's vendor."""
    same_vendor = request.args.get('same_vendor', 'false').lower() in ('1', 'true', 'yes')
    products = find_similar_products(get_session(), product_id, same_vendor=same_vendor)
    return jsonify({'success': True, 'products': products, 'count': len(products)})
