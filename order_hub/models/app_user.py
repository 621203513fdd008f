"""AppUser model - buyers and administrators placing or managing orders."""
import enum
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from order_hub.database import Base


class UserRole(enum.Enum):
    """Platform roles."""
    BUYER = 'BUYER'
    ADMIN = 'ADMIN'


class AppUser(Base):
    """
    AppUser model.

    Login (access codes, passwords, tokens) happens elsewhere; this table only
    carries the identity and role the cart and order services need.
    """

    __tablename__ = 'app_user'

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.BUYER.value)  # BUYER, ADMIN
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def is_admin(self):
        """Check if user can manage submitted orders."""
        return self.role == UserRole.ADMIN.value

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}', role='{self.role}')>"
