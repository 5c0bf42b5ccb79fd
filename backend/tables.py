"""
Table occupancy.

A table is ``occupied`` exactly when ``current_order_id`` points at an order
that is not completed or cancelled. Claims and releases are conditional
UPDATEs so that two requests racing for one table cannot both win.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

import errors
import models
from database import unit_of_work

logger = logging.getLogger(__name__)

AVAILABLE = "available"
OCCUPIED = "occupied"
RESERVED = "reserved"
TABLE_STATUSES = (AVAILABLE, OCCUPIED, RESERVED)

# Statuses an order can be seated from: reserved covers the guest arriving
CLAIMABLE_STATUSES = (AVAILABLE, RESERVED)

TERMINAL_ORDER_STATUSES = ("completed", "cancelled")


class TableOccupancyTracker:

    def __init__(self, db: Session):
        self.db = db

    # ========== Lookups ==========

    def get(self, table_id: int) -> models.Table:
        table = self.db.get(models.Table, table_id)
        if table is None:
            raise errors.NotFound(f"Table {table_id} not found")
        return table

    def list_tables(self, status: Optional[str] = None) -> List[models.Table]:
        query = self.db.query(models.Table)
        if status:
            query = query.filter(models.Table.status == status)
        return query.order_by(models.Table.id).all()

    def first_available_table(self) -> Optional[models.Table]:
        """Lowest-id available table. No holds, no fairness: first asker wins."""
        return (
            self.db.query(models.Table)
            .filter(models.Table.status == AVAILABLE, models.Table.current_order_id.is_(None))
            .order_by(models.Table.id)
            .first()
        )

    def details(self, table_id: int) -> Dict:
        table = self.get(table_id)
        current_order = None
        if table.current_order_id is not None:
            order = self.db.get(models.Order, table.current_order_id)
            if order is not None:
                current_order = {
                    "id": order.id,
                    "order_number": order.order_number,
                    "status": order.status,
                    "total": order.total,
                    "customer_name": order.customer_name,
                }
        return {
            "id": table.id,
            "name": table.name,
            "capacity": table.capacity,
            "location": table.location,
            "table_type": table.table_type,
            "notes": table.notes,
            "status": table.status,
            "current_order_id": table.current_order_id,
            "current_order": current_order,
        }

    # ========== Claim / release (no commit, caller owns the transaction) ==========

    def claim_for_order(self, table_id: int, order_id: int) -> None:
        """Bind ``order_id`` to the table unless another order holds it."""
        table = self.get(table_id)
        if table.current_order_id == order_id:
            return

        claimed = (
            self.db.query(models.Table)
            .filter(
                models.Table.id == table_id,
                models.Table.current_order_id.is_(None),
                models.Table.status.in_(CLAIMABLE_STATUSES),
            )
            .update(
                {"status": OCCUPIED, "current_order_id": order_id, "updated_at": datetime.now()},
                synchronize_session=False,
            )
        )
        if not claimed:
            raise errors.Conflict(f"Table {table_id} is not available")

        self.db.expire(table)
        logger.info(f"Table {table_id} occupied by order {order_id}")

    def release_for_order(self, table_id: int, order_id: int) -> bool:
        """Free the table only if it still points at ``order_id``.

        Returns False, without touching the table, when the table has since
        been bound to a different order.
        """
        released = (
            self.db.query(models.Table)
            .filter(models.Table.id == table_id, models.Table.current_order_id == order_id)
            .update(
                {"status": AVAILABLE, "current_order_id": None, "updated_at": datetime.now()},
                synchronize_session=False,
            )
        )
        table = self.db.get(models.Table, table_id)
        if table is not None:
            self.db.expire(table)

        if released:
            logger.info(f"Table {table_id} freed after order {order_id}")
        else:
            logger.warning(f"Table {table_id} no longer holds order {order_id}; left unchanged")
        return bool(released)

    # ========== Operations ==========

    def assign(self, table_id: int, order_id: int) -> models.Table:
        table = self.get(table_id)
        order = self.db.get(models.Order, order_id)
        if order is None:
            raise errors.NotFound(f"Order {order_id} not found")
        if order.order_type != "dine-in":
            raise errors.ValidationError("Only dine-in orders can be seated at a table")
        if order.status in TERMINAL_ORDER_STATUSES:
            raise errors.InvalidTransition(message=f"Order {order.order_number} is already {order.status}")
        if table.current_order_id is not None and table.current_order_id != order_id:
            raise errors.Conflict(f"Table {table_id} is occupied by another order")

        with unit_of_work(self.db, f"assigning order {order_id} to table {table_id}"):
            if order.table_id is not None and order.table_id != table_id:
                self.release_for_order(order.table_id, order_id)
            self.claim_for_order(table_id, order_id)
            order.table_id = table_id
            order.updated_at = datetime.now()

        return self.get(table_id)

    def free(self, table_id: int) -> models.Table:
        """Make the table available again.

        The write only lands if the table still has the status and order
        that were checked; a claim that slips in between raises Conflict.
        """
        table = self.get(table_id)
        seen_status = table.status
        seen_order_id = table.current_order_id
        if seen_order_id is not None:
            order = self.db.get(models.Order, seen_order_id)
            if order is not None and order.status not in TERMINAL_ORDER_STATUSES:
                raise errors.Conflict(
                    f"Table {table_id} still has active order {order.order_number}; complete or cancel it first"
                )

        with unit_of_work(self.db, f"freeing table {table_id}"):
            query = self.db.query(models.Table).filter(
                models.Table.id == table_id,
                models.Table.status == seen_status,
            )
            if seen_order_id is None:
                query = query.filter(models.Table.current_order_id.is_(None))
            else:
                query = query.filter(models.Table.current_order_id == seen_order_id)

            freed = query.update(
                {"status": AVAILABLE, "current_order_id": None, "updated_at": datetime.now()},
                synchronize_session=False,
            )
            if not freed:
                raise errors.Conflict(f"Table {table_id} changed while it was being freed; reload and try again")

        self.db.expire(table)
        logger.info(f"Table {table_id} freed manually")
        return self.get(table_id)

    def create(self, capacity: int, location: str = "Main Dining", table_type: str = "Regular",
               name: Optional[str] = None, notes: Optional[str] = None,
               table_id: Optional[int] = None) -> models.Table:
        if table_id is not None and self.db.get(models.Table, table_id) is not None:
            raise errors.Conflict(f"Table {table_id} already exists")

        table = models.Table(
            id=table_id,
            name=name,
            capacity=capacity,
            location=location,
            table_type=table_type,
            notes=notes or "",
            status=AVAILABLE,
        )
        with unit_of_work(self.db, "adding table"):
            self.db.add(table)
            self.db.flush()
            if not table.name:
                table.name = f"Table {table.id}"
        self.db.refresh(table)

        logger.info(f"Table {table.id} added ({capacity} seats, {location})")
        return table

    def delete(self, table_id: int) -> None:
        table = self.get(table_id)
        history = (
            self.db.query(func.count(models.Order.id))
            .filter(models.Order.table_id == table_id)
            .scalar()
        )
        if history:
            raise errors.Conflict(f"Cannot delete table {table_id}: it has order history")

        with unit_of_work(self.db, f"deleting table {table_id}"):
            self.db.delete(table)
        logger.info(f"Table {table_id} deleted")

    def reserve(self, table_id: int, customer_name: str, customer_phone: str, reserved_for: datetime,
                party_size: int = 2, special_requests: Optional[str] = None) -> models.Reservation:
        table = self.get(table_id)
        if table.status != AVAILABLE or table.current_order_id is not None:
            raise errors.Conflict(f"Table {table_id} is not available for reservation")
        if not customer_name or not customer_name.strip() or not customer_phone or not customer_phone.strip():
            raise errors.ValidationError("Customer name and phone are required for a reservation")

        reservation = models.Reservation(
            table_id=table_id,
            customer_name=customer_name.strip(),
            customer_phone=customer_phone.strip(),
            party_size=party_size,
            reserved_for=reserved_for,
            special_requests=special_requests or "",
            status="confirmed",
        )
        with unit_of_work(self.db, f"reserving table {table_id}"):
            reserved = (
                self.db.query(models.Table)
                .filter(models.Table.id == table_id, models.Table.status == AVAILABLE,
                        models.Table.current_order_id.is_(None))
                .update({"status": RESERVED, "updated_at": datetime.now()}, synchronize_session=False)
            )
            if not reserved:
                raise errors.Conflict(f"Table {table_id} is not available for reservation")
            self.db.add(reservation)

        self.db.refresh(reservation)
        self.db.expire(table)
        logger.info(f"Table {table_id} reserved for {reservation.customer_name} at {reserved_for}")
        return reservation
