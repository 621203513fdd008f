"""Product model."""
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from order_hub.database import Base


class Product(Base):
    """
    Product reference data.

    Pricing and ordering constraints are snapshotted onto cart lines when a
    product is added, so later catalog edits never reprice an existing line.
    """

    __tablename__ = 'product'

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_connect_id = Column(String(100), nullable=True, unique=True)
    vendor_id = Column(Integer, ForeignKey('vendor.id'), nullable=True, index=True)
    product_name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True, index=True)
    wholesale_unit_price = Column(Numeric(10, 2), nullable=True)
    wholesale_case_price = Column(Numeric(10, 2), nullable=True)

    # Ordering constraints (NULL = not set)
    case_pack = Column(Integer, nullable=True)  # units per case
    case_minimum = Column(Integer, nullable=True)  # min cases
    minimum_units = Column(Integer, nullable=True)
    minimum_cost = Column(Numeric(10, 2), nullable=True)
    is_split_case = Column(Boolean, nullable=False, default=False, server_default='false')

    product_image = Column(String(500), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    vendor = relationship('Vendor', back_populates='products')

    @property
    def vendor_name(self):
        """Vendor display name (resolved through the vendor relation)."""
        return self.vendor.name if self.vendor else None

    def to_dict(self):
        return {
            'id': self.id,
            'product_connect_id': self.product_connect_id,
            'product_name': self.product_name,
            'vendor_name': self.vendor_name,
            'category': self.category,
            'wholesale_unit_price': str(self.wholesale_unit_price) if self.wholesale_unit_price is not None else None,
            'wholesale_case_price': str(self.wholesale_case_price) if self.wholesale_case_price is not None else None,
            'case_pack': self.case_pack,
            'is_split_case': bool(self.is_split_case),
            'product_image': self.product_image,
        }

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.product_name}')>"
