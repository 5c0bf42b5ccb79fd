from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from cart import to_money
from orders import COMPLETED, ORDER_STATUSES, PENDING, PREPARING, READY
from tables import TABLE_STATUSES


def _day_bounds(day: Optional[date]) -> Tuple[datetime, datetime]:
    day = day or date.today()
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _completed_on(query, day: Optional[date]):
    start, end = _day_bounds(day)
    return query.filter(
        models.Order.status == COMPLETED,
        models.Order.created_at >= start,
        models.Order.created_at < end,
    )


def sales_summary(db: Session, day: Optional[date] = None) -> dict:
    total_sales, order_count = _completed_on(
        db.query(func.coalesce(func.sum(models.Order.total), 0), func.count(models.Order.id)),
        day,
    ).one()
    total_sales = to_money(total_sales or 0)
    order_count = int(order_count or 0)
    average = to_money(total_sales / order_count) if order_count else Decimal("0.00")
    return {
        "day": (day or date.today()).isoformat(),
        "total_sales": total_sales,
        "completed_orders": order_count,
        "average_order_value": average,
    }


def hourly_sales(db: Session, day: Optional[date] = None) -> dict:
    rows = _completed_on(db.query(models.Order.created_at, models.Order.total), day).all()
    buckets: Dict[str, Decimal] = {}
    for created_at, total in rows:
        label = f"{created_at:%H}:00"
        buckets[label] = buckets.get(label, Decimal("0")) + Decimal(str(total or 0))

    labels = sorted(buckets)
    return {"labels": labels, "data": [to_money(buckets[label]) for label in labels]}


def status_breakdown(db: Session) -> Dict[str, int]:
    counts = OrderedDict((status, 0) for status in ORDER_STATUSES)
    rows = (
        db.query(models.Order.status, func.count(models.Order.id))
        .group_by(models.Order.status)
        .all()
    )
    for status, count in rows:
        counts[status] = int(count or 0)
    return dict(counts)


def order_type_breakdown(db: Session) -> Dict[str, int]:
    rows = (
        db.query(models.Order.order_type, func.count(models.Order.id))
        .group_by(models.Order.order_type)
        .order_by(models.Order.order_type)
        .all()
    )
    return {order_type: int(count or 0) for order_type, count in rows}


def top_selling_items(db: Session, limit: int = 5, day: Optional[date] = None) -> List[dict]:
    quantity = func.coalesce(func.sum(models.OrderItem.quantity), 0)
    query = (
        db.query(models.OrderItem.name, quantity, func.coalesce(func.sum(models.OrderItem.line_total), 0))
        .join(models.Order, models.Order.id == models.OrderItem.order_id)
        .filter(models.Order.status != "cancelled")
    )
    if day is not None:
        start, end = _day_bounds(day)
        query = query.filter(models.Order.created_at >= start, models.Order.created_at < end)

    rows = (
        query.group_by(models.OrderItem.name)
        .order_by(quantity.desc(), models.OrderItem.name.asc())
        .limit(limit)
        .all()
    )
    return [
        {"name": name, "quantity": int(qty or 0), "revenue": to_money(revenue or 0)}
        for name, qty, revenue in rows
    ]


def table_breakdown(db: Session) -> Dict[str, int]:
    counts = {status: 0 for status in TABLE_STATUSES}
    rows = db.query(models.Table.status, func.count(models.Table.id)).group_by(models.Table.status).all()
    for status, count in rows:
        counts[status] = int(count or 0)
    return counts


def dashboard(db: Session, day: Optional[date] = None) -> dict:
    sales = sales_summary(db, day)
    statuses = status_breakdown(db)
    tables = table_breakdown(db)
    hourly = hourly_sales(db, day)
    top_items = top_selling_items(db, limit=1, day=day)

    peak_hour = None
    if hourly["labels"]:
        peak_label, _ = max(zip(hourly["labels"], hourly["data"]), key=lambda pair: pair[1])
        peak_hour = int(peak_label.split(":")[0])

    return {
        "today_sales": sales["total_sales"],
        "average_order_value": sales["average_order_value"],
        "active_orders": statuses[PENDING] + statuses[PREPARING] + statuses[READY],
        "pending_orders": statuses[PENDING],
        "preparing_orders": statuses[PREPARING],
        "ready_orders": statuses[READY],
        "completed_orders": statuses[COMPLETED],
        "occupied_tables": tables["occupied"],
        "available_tables": tables["available"],
        "reserved_tables": tables["reserved"],
        "total_tables": sum(tables.values()),
        "top_selling_item": top_items[0]["name"] if top_items else None,
        "peak_hour": peak_hour,
    }
