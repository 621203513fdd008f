"""Replacement preference service - what to do if a cart item is unavailable."""
import logging
from typing import Optional, Tuple, List, Dict, Any
from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from order_hub.models import Order, OrderStatus, Product, UnavailableAction, REPLACE_ACTIONS
from order_hub.exceptions import OrderHubError, ValidationError, NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

UNAVAILABLE_ACTIONS = tuple(a.value for a in UnavailableAction)

ACTION_LABELS = {
    UnavailableAction.CURATE.value: 'Curate a replacement if sold out',
    UnavailableAction.REPLACE_SAME_VENDOR.value: 'Replace with similar item under same vendor',
    UnavailableAction.REPLACE_OTHER_VENDORS.value: 'Replace with similar item across other vendors',
    UnavailableAction.REMOVE.value: 'Remove it from my order',
}


def normalize_action(action: Optional[str]) -> str:
    """Validate an unavailable_action value. None means the default, 'curate'."""
    if action is None:
        return UnavailableAction.CURATE.value
    if isinstance(action, UnavailableAction):
        return action.value
    value = action.strip().lower() if isinstance(action, str) else None
    if value not in UNAVAILABLE_ACTIONS:
        raise ValidationError(
            f"Invalid unavailable_action {action!r}. Expected one of: {', '.join(UNAVAILABLE_ACTIONS)}",
            field='unavailable_action'
        )
    return value


def resolve_preference(
    session: Session,
    action: Optional[str],
    replacement_product_id: Optional[int] = None,
    replacement_product_name: Optional[str] = None
) -> Tuple[str, Optional[int], Optional[str]]:
    """
    Resolve (action, replacement_product_id, replacement_product_name).

    'curate' and 'remove' always clear the replacement. Replace actions keep an
    optional replacement; a missing name is looked up from the catalog.
    """
    action = normalize_action(action)

    if action not in REPLACE_ACTIONS or replacement_product_id is None:
        return action, None, None

    product = session.query(Product).filter(Product.id == replacement_product_id).first()
    if not product:
        raise NotFoundError(f'Replacement product {replacement_product_id} not found.')

    return action, product.id, replacement_product_name or product.product_name


def apply_preference(line: Order, action: str, replacement_product_id, replacement_product_name) -> None:
    """Write an already-resolved preference onto a line."""
    line.unavailable_action = action
    line.replacement_product_id = replacement_product_id
    line.replacement_product_name = replacement_product_name


def set_replacement_preference(
    session: Session,
    user,
    product_id: int,
    action: str,
    replacement_product_id: Optional[int] = None,
    replacement_product_name: Optional[str] = None
) -> Order:
    """Set the unavailable-item policy of one of the user's cart lines."""
    try:
        line = session.query(Order).filter(
            Order.user_id == user.id,
            Order.product_id == product_id,
            Order.status == OrderStatus.IN_CART.value
        ).with_for_update().first()

        if not line:
            raise NotFoundError('The product is not in your cart.')

        resolved = resolve_preference(session, action, replacement_product_id, replacement_product_name)
        apply_preference(line, *resolved)
        session.commit()

        logger.info(
            f"[CART] User {user.id} set '{line.unavailable_action}' on product {product_id}"
            f" (replacement={line.replacement_product_id})"
        )
        return line

    except OrderHubError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Error saving replacement preference: {e}') from e


def _similar_products_query(session: Session, product: Product, same_vendor: bool, limit: int) -> List[Dict[str, Any]]:
    query = session.query(Product).filter(
        Product.active == True,  # noqa: E712
        Product.id != product.id
    )
    if product.category:
        query = query.filter(Product.category == product.category)
    if same_vendor:
        query = query.filter(Product.vendor_id == product.vendor_id)
    else:
        query = query.filter(Product.vendor_id != product.vendor_id)

    return [p.to_dict() for p in query.order_by(Product.product_name).limit(limit).all()]


def find_similar_products(
    session: Session,
    product_id: int,
    same_vendor: bool = False,
    limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Candidate replacements for a product: same category, active, not itself.

    ``same_vendor`` restricts to the product's vendor; otherwise only other
    vendors are returned. Results go through the Redis cache when enabled.
    """
    product = session.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError(f'Product {product_id} not found.')

    if limit is None:
        limit = current_app.config.get('SIMILAR_PRODUCTS_LIMIT', 10) if has_app_context() else 10

    def loader():
        return _similar_products_query(session, product, same_vendor, limit)

    if not has_app_context():
        return loader()

    from order_hub.services.cache_service import get_cache
    cache_key = f"{product_id}:{'same' if same_vendor else 'other'}:{limit}"
    return get_cache().memoize(
        'similar_products', cache_key, loader,
        ttl=current_app.config.get('CACHE_SIMILAR_PRODUCTS_TTL')
    )
