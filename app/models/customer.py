"""
Customer, order and event tables.

These mirror the e-commerce data that an external sync fills in; the
journey engine only reads them (apart from recording incoming events).
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, JSON

from app.core.clock import utcnow
from app.database import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), index=True)
    phone = Column(String(50))
    first_name = Column(String(100))
    last_name = Column(String(100))

    # Order aggregates maintained by the store
    orders_count = Column(Integer, default=0, nullable=False)
    total_spent = Column(Float, default=0.0, nullable=False)
    last_order_at = Column(DateTime)

    addresses = Column(JSON)
    tags = Column(JSON)
    interests = Column(JSON)
    properties = Column(JSON)

    # Consent
    accepts_marketing = Column(Boolean, default=False, nullable=False)
    sms_opt_in = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Customer {self.id} {self.email}>"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    customer_id = Column(String(64), index=True)
    email = Column(String(255), index=True)
    total_price = Column(Float, default=0.0, nullable=False)
    line_items = Column(JSON)
    created_at = Column(DateTime, nullable=False, index=True)


class CustomerEvent(Base):
    """Named customer events used by behaviour rules and goals."""

    __tablename__ = "customer_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String(64), nullable=False, index=True)
    event_name = Column(String(100), nullable=False, index=True)
    properties = Column(JSON)
    occurred_at = Column(DateTime, nullable=False, index=True)
