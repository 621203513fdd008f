"""
Order modification log - append-only audit trail for submitted orders.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime
from order_hub.database import Base


class ChangeType(str, enum.Enum):
    """Kinds of audited changes."""
    QUANTITY_CHANGED = 'quantity_changed'
    PRICE_CHANGED = 'price_changed'
    PRICING_MODE_CHANGED = 'pricing_mode_changed'
    AMOUNT_CHANGED = 'amount_changed'
    ITEM_ADDED = 'item_added'
    ITEM_REMOVED = 'item_removed'
    STATUS_CHANGED = 'status_changed'
    NOTE_ADDED = 'note_added'


class OrderModification(Base):
    """
    One audited change to a submitted order line.

    ``order_id`` is not a foreign key; removal records outlive the order
    row they describe.
    """
    __tablename__ = 'order_modification'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, nullable=False, index=True)
    batch_order_number = Column(String(64), nullable=True, index=True)
    change_type = Column(String(30), nullable=False)
    field_changed = Column(String(50), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)
    changed_by_admin_email = Column(String(255), nullable=True)
    change_timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'batch_order_number': self.batch_order_number,
            'change_type': self.change_type,
            'field_changed': self.field_changed,
            'old_value': self.old_value,
            'new_value': self.new_value,
            'admin_notes': self.admin_notes,
            'changed_by_admin_email': self.changed_by_admin_email,
            'change_timestamp': self.change_timestamp.isoformat() if self.change_timestamp else None,
        }

    def __repr__(self):
        return f"<OrderModification {self.change_type} on order {self.order_id} at {self.change_timestamp}>"
