from datetime import datetime

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, DateTime, Text
from sqlalchemy.orm import relationship
from database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(String(50), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String(50), nullable=False, index=True)
    description = Column(Text)
    is_available = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, nullable=True)


class Table(Base):
    __tablename__ = "tables"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(50))
    capacity = Column(Integer, nullable=True)
    location = Column(String(50))
    table_type = Column(String(50))
    notes = Column(String(500))
    status = Column(String(20), nullable=False, default="available")
    current_order_id = Column(
        Integer,
        ForeignKey("orders.id", use_alter=True, name="fk_tables_current_order_id"),
        nullable=True,
    )
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, nullable=True)

    orders = relationship("Order", back_populates="table", foreign_keys="Order.table_id")
    reservations = relationship("Reservation", back_populates="table", cascade="all, delete-orphan")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, index=True, nullable=False)
    order_type = Column(String(20), nullable=False, default="dine-in")
    status = Column(String(20), nullable=False, default="pending", index=True)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(20))
    customer_address = Column(String(255))
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    staff_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True)
    payment_method = Column(String(50))
    notes = Column(String(500))
    created_at = Column(DateTime, default=datetime.now, index=True)
    updated_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    table = relationship("Table", back_populates="orders", foreign_keys=[table_id])
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    line_total = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    order = relationship("Order", back_populates="items")
    menu_item = relationship("MenuItem")


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=False)
    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(20), nullable=False)
    party_size = Column(Integer, nullable=False, default=2)
    reserved_for = Column(DateTime, nullable=False)
    special_requests = Column(String(500))
    status = Column(String(20), nullable=False, default="confirmed")
    created_at = Column(DateTime, default=datetime.now)

    table = relationship("Table", back_populates="reservations")
