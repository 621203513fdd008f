"""Vendor model."""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from order_hub.database import Base


class Vendor(Base):
    """Vendor (supplier whose products are sold wholesale)."""

    __tablename__ = 'vendor'

    id = Column(Integer, primary_key=True, autoincrement=True)
    vendor_connect_id = Column(String(100), nullable=True, unique=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    products = relationship('Product', back_populates='vendor')

    def __repr__(self):
        return f"<Vendor(id={self.id}, name='{self.name}')>"
