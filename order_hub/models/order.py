"""Order model - cart lines and submitted order lines share one table."""
import enum
import json
from sqlalchemy import (
    Column, Integer, String, Boolean, Numeric, DateTime, Text, ForeignKey, Index, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from order_hub.database import Base


class OrderStatus(str, enum.Enum):
    """Order line lifecycle."""
    IN_CART = 'in_cart'
    PENDING = 'pending'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


TERMINAL_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)


class PricingMode(str, enum.Enum):
    """Whether a line is priced per case or per unit."""
    CASE = 'case'
    UNIT = 'unit'


class UnavailableAction(str, enum.Enum):
    """Buyer's fallback policy if the product is unavailable at fulfillment."""
    CURATE = 'curate'
    REPLACE_SAME_VENDOR = 'replace_same_vendor'
    REPLACE_OTHER_VENDORS = 'replace_other_vendors'
    REMOVE = 'remove'


REPLACE_ACTIONS = (
    UnavailableAction.REPLACE_SAME_VENDOR.value,
    UnavailableAction.REPLACE_OTHER_VENDORS.value,
)


def _money(value):
    return str(value) if value is not None else None


class Order(Base):
    """
    Order line.

    While ``status == 'in_cart'`` the row is a cart line and has no batch
    number. Submitting the cart assigns one shared ``batch_order_number`` to
    every line of the user's cart and moves them to ``pending``.
    """

    __tablename__ = 'orders'
    __table_args__ = (
        # One cart line per (user, product); submitted rows are unconstrained
        Index(
            'uq_orders_cart_line',
            'user_id', 'product_id',
            unique=True,
            postgresql_where=text("status = 'in_cart'"),
            sqlite_where=text("status = 'in_cart'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_order_number = Column(String(64), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.IN_CART.value, index=True)

    # Owner
    user_id = Column(Integer, ForeignKey('app_user.id'), nullable=False, index=True)
    user_email = Column(String(255), nullable=False)

    # Product snapshot
    product_id = Column(Integer, ForeignKey('product.id'), nullable=False)
    product_connect_id = Column(String(100), nullable=True)
    product_name = Column(String(255), nullable=False)
    vendor_connect_id = Column(String(100), nullable=True)
    vendor_name = Column(String(255), nullable=True)
    product_image = Column(String(500), nullable=True)

    # Pricing
    quantity = Column(Integer, nullable=False)
    pricing_mode = Column(String(10), nullable=False, default=PricingMode.CASE.value)
    unit_price = Column(Numeric(10, 2), nullable=True)
    case_price = Column(Numeric(10, 2), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)

    # Constraint snapshot (copied from product at add time)
    case_pack = Column(Integer, nullable=True)
    case_minimum = Column(Integer, nullable=True)
    minimum_units = Column(Integer, nullable=True)
    minimum_cost = Column(Numeric(10, 2), nullable=True)
    is_split_case = Column(Boolean, nullable=False, default=False)

    # Replacement preference
    unavailable_action = Column(String(30), nullable=False, default=UnavailableAction.CURATE.value)
    replacement_product_id = Column(Integer, nullable=True)
    replacement_product_name = Column(String(255), nullable=True)

    # Admin
    notes = Column(Text, nullable=True)  # shared by every line of a batch
    admin_notes = Column(Text, nullable=True)
    modified_by_admin = Column(Boolean, nullable=False, default=False)
    modification_count = Column(Integer, nullable=False, default=0)
    original_snapshot = Column(Text, nullable=True)  # JSON, captured at first admin modification

    cart_created_at = Column(DateTime(timezone=True), nullable=True)
    date_submitted = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship('AppUser')
    product = relationship('Product')

    @property
    def is_in_cart(self):
        return self.status == OrderStatus.IN_CART.value

    @property
    def is_finalized(self):
        return self.status in TERMINAL_STATUSES

    def pricing_snapshot(self):
        """Fields captured as the original state before the first admin edit."""
        return {
            'quantity': self.quantity,
            'pricing_mode': self.pricing_mode,
            'unit_price': _money(self.unit_price),
            'case_price': _money(self.case_price),
            'amount': _money(self.amount),
        }

    def to_dict(self):
        return {
            'id': self.id,
            'batch_order_number': self.batch_order_number,
            'status': self.status,
            'user_id': self.user_id,
            'user_email': self.user_email,
            'product_id': self.product_id,
            'product_connect_id': self.product_connect_id,
            'product_name': self.product_name,
            'vendor_name': self.vendor_name,
            'product_image': self.product_image,
            'quantity': self.quantity,
            'pricing_mode': self.pricing_mode,
            'unit_price': _money(self.unit_price),
            'case_price': _money(self.case_price),
            'amount': _money(self.amount),
            'case_pack': self.case_pack,
            'case_minimum': self.case_minimum,
            'minimum_units': self.minimum_units,
            'minimum_cost': _money(self.minimum_cost),
            'is_split_case': bool(self.is_split_case),
            'unavailable_action': self.unavailable_action,
            'replacement_product_id': self.replacement_product_id,
            'replacement_product_name': self.replacement_product_name,
            'notes': self.notes,
            'admin_notes': self.admin_notes,
            'modified_by_admin': bool(self.modified_by_admin),
            'modification_count': self.modification_count or 0,
            'cart_created_at': self.cart_created_at.isoformat() if self.cart_created_at else None,
            'date_submitted': self.date_submitted.isoformat() if self.date_submitted else None,
        }

    def get_original_snapshot(self):
        """Decode the JSON snapshot, or None if never modified."""
        if not self.original_snapshot:
            return None
        return json.loads(self.original_snapshot)

    def __repr__(self):
        return f"<Order(id={self.id}, product_id={self.product_id}, qty={self.quantity}, status={self.status})>"
