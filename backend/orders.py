"""
Order lifecycle: submission of a cart and status transitions.

    pending -> preparing -> ready -> completed
       \\           \\
        +-----------+--> cancelled

Moves only go forward (skipping ahead is allowed). ``completed`` and
``cancelled`` are terminal. Entering a terminal status releases the order's
table, but only while the table still points at this order.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

import errors
import models
from cart import Cart, to_money
from database import unit_of_work
from schemas import CustomerInfo
from tables import TableOccupancyTracker

logger = logging.getLogger(__name__)

PENDING = "pending"
PREPARING = "preparing"
READY = "ready"
COMPLETED = "completed"
CANCELLED = "cancelled"
ORDER_STATUSES = (PENDING, PREPARING, READY, COMPLETED, CANCELLED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)
KITCHEN_STATUSES = (PENDING, PREPARING, READY)

DINE_IN = "dine-in"
TAKEAWAY = "takeaway"
DELIVERY = "delivery"
ORDER_TYPES = (DINE_IN, TAKEAWAY, DELIVERY)

WALK_IN_CUSTOMER = "Walk-in Customer"

# A dine-in order that loses its auto-picked table gets one more pick
AUTO_ASSIGN_ATTEMPTS = 2

VALID_STATUS_TRANSITIONS = {
    PENDING: [PREPARING, READY, COMPLETED, CANCELLED],
    PREPARING: [READY, COMPLETED, CANCELLED],
    READY: [COMPLETED],
    COMPLETED: [],
    CANCELLED: [],
}


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in VALID_STATUS_TRANSITIONS.get(current_status, [])


def generate_order_number(db: Session) -> str:
    while True:
        number = f"ORD-{datetime.now():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"
        exists = db.query(models.Order.id).filter(models.Order.order_number == number).first()
        if not exists:
            return number


class OrderLifecycleManager:
    """Places orders and moves them through their statuses."""

    def __init__(self, db: Session, tables: Optional[TableOccupancyTracker] = None):
        self.db = db
        self.tables = tables or TableOccupancyTracker(db)

    # ========== Lookups ==========

    def get(self, order_id: int) -> models.Order:
        order = self.db.get(models.Order, order_id)
        if order is None:
            raise errors.NotFound(f"Order {order_id} not found")
        return order

    def _get_for_update(self, order_id: int) -> models.Order:
        order = (
            self.db.query(models.Order)
            .filter(models.Order.id == order_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if order is None:
            raise errors.NotFound(f"Order {order_id} not found")
        return order

    def list_orders(self, order_type: Optional[str] = None, status: Optional[str] = None) -> List[models.Order]:
        status_rank = case(
            {PENDING: 1, PREPARING: 2, READY: 3, COMPLETED: 4},
            value=models.Order.status,
            else_=5,
        )
        query = self.db.query(models.Order)
        if order_type:
            query = query.filter(models.Order.order_type == order_type)
        if status:
            query = query.filter(models.Order.status == status)
        return query.order_by(status_rank, models.Order.created_at.desc(), models.Order.id.desc()).all()

    def kitchen_queue(self) -> List[models.Order]:
        return (
            self.db.query(models.Order)
            .filter(models.Order.status.in_(KITCHEN_STATUSES))
            .order_by(models.Order.created_at.asc(), models.Order.id.asc())
            .all()
        )

    # ========== Submission ==========

    def submit(self, cart: Cart, order_type: str, customer: CustomerInfo,
               table_id: Optional[int] = None, notes: Optional[str] = None,
               staff_id: Optional[int] = None) -> models.Order:
        """Persist the cart as a pending order.

        The order row, every line and the table claim commit together or
        not at all. Dine-in orders without a table take the lowest-id
        available one; when none is free the order is placed unseated. If
        another order takes that table first, the next free one is tried
        once before the Conflict reaches the caller.
        """
        if cart is None or cart.is_empty:
            raise errors.EmptyOrder()
        self._validate_submission(order_type, customer, table_id)

        auto_assign = order_type == DINE_IN and table_id is None
        if table_id is not None:
            self.tables.get(table_id)

        attempts = AUTO_ASSIGN_ATTEMPTS if auto_assign else 1
        for attempt in range(1, attempts + 1):
            if auto_assign:
                table = self.tables.first_available_table()
                table_id = table.id if table is not None else None
                if table_id is None:
                    logger.warning("No available table for dine-in order; placing it unseated")

            order = self._build_order(cart, order_type, customer, table_id, notes, staff_id)
            try:
                with unit_of_work(self.db, "processing order"):
                    self.db.add(order)
                    self.db.flush()
                    if table_id is not None:
                        self.tables.claim_for_order(table_id, order.id)
            except errors.Conflict:
                if not auto_assign or attempt == attempts:
                    raise
                logger.warning(f"Table {table_id} was taken by another order; trying the next free table")
                continue
            break

        self.db.refresh(order)
        logger.info(f"Order {order.order_number} placed: {order_type}, total {order.total}, table {table_id}")
        return order

    def _build_order(self, cart: Cart, order_type: str, customer: CustomerInfo, table_id: Optional[int],
                     notes: Optional[str], staff_id: Optional[int]) -> models.Order:
        total = to_money(sum((line.price * line.quantity for line in cart.items), Decimal("0")))
        now = datetime.now()
        order = models.Order(
            order_number=generate_order_number(self.db),
            order_type=order_type,
            status=PENDING,
            total=total,
            customer_name=(customer.name or "").strip(),
            customer_phone=_clean(customer.phone),
            customer_address=_clean(customer.address),
            customer_id=customer.user_id,
            staff_id=staff_id,
            table_id=table_id,
            notes=_clean(notes),
            created_at=now,
        )
        for line in cart.items:
            order.items.append(models.OrderItem(
                menu_item_id=line.menu_item_id,
                name=line.name,
                price=to_money(line.price),
                quantity=line.quantity,
                line_total=to_money(line.price * line.quantity),
                created_at=now,
            ))
        return order

    def _validate_submission(self, order_type: str, customer: CustomerInfo, table_id: Optional[int]) -> None:
        if order_type not in ORDER_TYPES:
            raise errors.ValidationError(f"Order type must be one of: {', '.join(ORDER_TYPES)}")
        if customer is None or not (customer.name or "").strip():
            raise errors.ValidationError("Customer name is required")
        if order_type == DELIVERY and (not _clean(customer.phone) or not _clean(customer.address)):
            raise errors.ValidationError("Phone number and address are required for delivery.")
        if table_id is not None and order_type != DINE_IN:
            raise errors.ValidationError("Only dine-in orders can be assigned a table")

    # ========== Transitions ==========

    def set_status(self, order_id: int, new_status: str) -> models.Order:
        if new_status not in ORDER_STATUSES:
            raise errors.ValidationError(f"'{new_status}' is not a valid order status")

        with unit_of_work(self.db, f"updating order {order_id} status"):
            order = self._get_for_update(order_id)
            self._apply_status(order, new_status)
        return order

    def complete_payment(self, order_id: int, payment_method: str) -> models.Order:
        payment_method = _clean(payment_method)
        if not payment_method:
            raise errors.ValidationError("Payment method is required")

        with unit_of_work(self.db, f"processing payment for order {order_id}"):
            order = self._get_for_update(order_id)
            if order.status == COMPLETED:
                raise errors.AlreadyCompleted(order.order_number)
            self._apply_status(order, COMPLETED)
            order.payment_method = payment_method

        logger.info(f"Payment completed for order {order.order_number} ({payment_method})")
        return order

    def cancel(self, order_id: int) -> models.Order:
        return self.set_status(order_id, CANCELLED)

    def _apply_status(self, order: models.Order, new_status: str) -> None:
        if not can_transition(order.status, new_status):
            raise errors.InvalidTransition(order.status, new_status)

        previous = order.status
        now = datetime.now()
        order.status = new_status
        order.updated_at = now
        if new_status == COMPLETED:
            order.completed_at = now

        if new_status in TERMINAL_STATUSES and order.table_id is not None:
            self.tables.release_for_order(order.table_id, order.id)

        logger.info(f"Order {order.order_number}: {previous} -> {new_status}")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None
