from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

import errors
import models
from database import unit_of_work


# -------------------------
# Lookups
# -------------------------

def list_menu_items(db: Session, *, available_only: bool = False, category: Optional[str] = None) -> List[models.MenuItem]:
    query = db.query(models.MenuItem)
    if available_only:
        query = query.filter(models.MenuItem.is_available.is_(True))
    if category:
        query = query.filter(models.MenuItem.category == category)
    return query.order_by(models.MenuItem.category.asc(), models.MenuItem.name.asc()).all()


def get_available_items(db: Session) -> List[models.MenuItem]:
    return list_menu_items(db, available_only=True)


def get_item(db: Session, menu_item_id: int) -> Optional[models.MenuItem]:
    return db.get(models.MenuItem, menu_item_id)


def get_available_item(db: Session, menu_item_id: int) -> models.MenuItem:
    item = get_item(db, menu_item_id)
    if item is None or not item.is_available:
        raise errors.NotFound("Menu item not found")
    return item


def list_categories(db: Session) -> List[str]:
    rows = (
        db.query(models.MenuItem.category)
        .filter(models.MenuItem.is_available.is_(True))
        .distinct()
        .order_by(models.MenuItem.category.asc())
        .all()
    )
    return [row[0] for row in rows]


# -------------------------
# Mutations
# -------------------------

def create_menu_item(db: Session, data: dict) -> models.MenuItem:
    item = models.MenuItem(
        name=data["name"],
        price=data["price"],
        category=data["category"],
        description=data.get("description"),
        is_available=data.get("is_available", True),
    )
    with unit_of_work(db, "creating menu item"):
        db.add(item)
    db.refresh(item)
    return item


def update_menu_item(db: Session, item: models.MenuItem, updates: dict) -> models.MenuItem:
    with unit_of_work(db, f"updating menu item {item.id}"):
        for key, value in updates.items():
            if value is None:
                continue
            setattr(item, key, value)
        item.updated_at = datetime.now()
    db.refresh(item)
    return item


def delete_menu_item(db: Session, item: models.MenuItem) -> None:
    in_use = (
        db.query(func.count(models.OrderItem.id))
        .filter(models.OrderItem.menu_item_id == item.id)
        .scalar()
    )
    if in_use:
        raise errors.Conflict("Cannot delete a menu item that appears on orders; mark it unavailable instead")
    with unit_of_work(db, f"deleting menu item {item.id}"):
        db.delete(item)
