from fastapi import FastAPI, Depends, HTTPException, Request, status, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date
import logging
import os
import uvicorn

import models
import auth
import catalog
import errors
import reports
from cart import CartService
from database import engine, get_db, init_restaurant_config, unit_of_work, wait_for_db
from orders import OrderLifecycleManager, DELIVERY, DINE_IN, WALK_IN_CUSTOMER
from redis_client import redis_client, cart_store
from schemas import (
    STAFF_ROLES,
    UserCreate,
    UserResponse,
    UserLogin,
    CustomerRegister,
    MenuItemCreate,
    MenuItemUpdate,
    MenuItemResponse,
    CartItemAdd,
    CartItemAdjust,
    CustomerInfo,
    OrderSubmit,
    DeliveryOrderPlace,
    OrderStatusUpdate,
    PaymentComplete,
    OrderItemResponse,
    OrderResponse,
    TableCreate,
    TableAssign,
    TableResponse,
    ReservationCreate,
)
from tables import TableOccupancyTracker


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("RestaurantPOS")


app = FastAPI(title="Restaurant POS")

origins = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost,http://localhost:3000,http://127.0.0.1:3000,http://localhost:8080",
    ).split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


ERROR_STATUS_CODES = [
    (errors.ValidationError, status.HTTP_400_BAD_REQUEST),
    (errors.NotFound, status.HTTP_404_NOT_FOUND),
    (errors.InvalidTransition, status.HTTP_409_CONFLICT),
    (errors.Conflict, status.HTTP_409_CONFLICT),
    (errors.StoreError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


@app.exception_handler(errors.PosError)
async def pos_error_handler(request: Request, exc: errors.PosError):
    if isinstance(exc, errors.AlreadyCompleted):
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"success": False, "already_completed": True, "message": exc.message},
        )

    status_code = status.HTTP_400_BAD_REQUEST
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"success": False, "message": exc.message})


@app.on_event("startup")
def startup_event():
    if wait_for_db():
        try:
            logger.info("Creating database tables...")
            models.Base.metadata.create_all(bind=engine)
            init_restaurant_config()
            logger.info("Database initialized")
        except SQLAlchemyError as e:
            logger.error(f"Error creating or initializing the database: {e}")
    else:
        logger.error("Database was not ready at startup")

    if redis_client.is_available():
        logger.info("Redis available")
    else:
        logger.warning("Redis unavailable: caching disabled, carts kept in process memory")


# ========== Auth ==========

def get_current_user(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = authorization.replace("Bearer ", "")
    payload = auth.verify_token(token)

    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")

    username = payload.get("sub")
    if not username:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(models.User).filter(models.User.username == username).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")

    return user


def require_roles(*roles):
    def dependency(current_user: models.User = Depends(get_current_user)):
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="You do not have permission to perform this action")
        return current_user
    return dependency


require_admin = require_roles("admin")
require_front_of_house = require_roles("admin", "cashier", "waiter")
require_staff = require_roles(*STAFF_ROLES)
require_manager = require_roles("admin", "cashier")
require_customer = require_roles("customer")


# ========== Serialization ==========

def order_response(order: models.Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        order_type=order.order_type,
        status=order.status,
        total=order.total,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        customer_address=order.customer_address,
        table_id=order.table_id,
        payment_method=order.payment_method,
        notes=order.notes,
        created_at=order.created_at,
        updated_at=order.updated_at,
        completed_at=order.completed_at,
        items=[
            OrderItemResponse(
                id=item.id,
                menu_item_id=item.menu_item_id,
                name=item.name,
                price=item.price,
                quantity=item.quantity,
                line_total=item.line_total,
            )
            for item in order.items
        ],
    )


def menu_item_response(item: models.MenuItem) -> MenuItemResponse:
    return MenuItemResponse(
        id=item.id,
        name=item.name,
        price=item.price,
        category=item.category,
        description=item.description,
        is_available=item.is_available,
    )


def table_response(table: models.Table) -> TableResponse:
    return TableResponse(
        id=table.id,
        name=table.name,
        capacity=table.capacity,
        location=table.location,
        table_type=table.table_type,
        status=table.status,
        current_order_id=table.current_order_id,
    )


def cart_payload(cart) -> dict:
    return {
        "session_id": cart.session_id,
        "items": [line.dict() for line in cart.items],
        "item_count": cart.item_count,
        "total": cart.total,
    }


# ========== Service ==========

@app.get("/")
def read_root():
    return {"message": "Restaurant POS API is working!"}


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError as e:
        logger.warning(f"Health check: database error {e}")
        database_ok = False

    return {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "redis": redis_client.is_available(),
    }


@app.get("/cache/info")
def get_cache_info(current_user: models.User = Depends(require_admin)):
    return redis_client.get_cache_info()


# ========== Users ==========

@app.post("/register", response_model=UserResponse)
def register(user: UserCreate, db: Session = Depends(get_db), current_user: models.User = Depends(require_admin)):
    db_user = db.query(models.User).filter(models.User.username == user.username).first()
    if db_user:
        raise HTTPException(status_code=400, detail="Username already registered")

    db_user = models.User(
        username=user.username,
        password=auth.get_password_hash(user.password),
        name=user.name,
        role=user.role,
    )
    with unit_of_work(db, "registering user"):
        db.add(db_user)
    db.refresh(db_user)
    logger.info(f"Staff user {db_user.username} created ({db_user.role})")
    return db_user


@app.post("/customers/register")
def register_customer(customer: CustomerRegister, db: Session = Depends(get_db)):
    if db.query(models.User).filter(models.User.username == customer.username).first():
        return {"success": False, "message": "Username already exists"}

    db_user = models.User(
        username=customer.username,
        password=auth.get_password_hash(customer.password),
        name=customer.name,
        role="customer",
    )
    with unit_of_work(db, "registering customer"):
        db.add(db_user)
    db.refresh(db_user)

    access_token = auth.create_access_token(data={"sub": db_user.username, "role": db_user.role})
    return {"success": True, "message": "Registration successful", "user_id": db_user.id,
            "access_token": access_token, "token_type": "bearer"}


@app.post("/login")
def login(user: UserLogin, db: Session = Depends(get_db)):
    db_user = auth.authenticate_user(db, user.username, user.password)
    if not db_user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")

    access_token = auth.create_access_token(data={"sub": db_user.username, "role": db_user.role})
    logger.info(f"User {db_user.username} logged in")

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": {
            "id": db_user.id,
            "username": db_user.username,
            "name": db_user.name,
            "role": db_user.role
        }
    }


@app.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: models.User = Depends(get_current_user)):
    return current_user


# ========== Menu ==========

@app.get("/menu")
def get_menu(db: Session = Depends(get_db)):
    cached_menu = redis_client.get_cached_menu()
    if cached_menu:
        return cached_menu

    items = jsonable_encoder([menu_item_response(item) for item in catalog.get_available_items(db)])
    redis_client.cache_menu(items)
    return items


@app.get("/menu/all")
def get_full_menu(category: Optional[str] = None, db: Session = Depends(get_db),
                  current_user: models.User = Depends(require_staff)):
    return [menu_item_response(item) for item in catalog.list_menu_items(db, category=category)]


@app.get("/menu/categories")
def get_menu_categories(db: Session = Depends(get_db)):
    return catalog.list_categories(db)


@app.post("/menu")
def create_menu_item(item: MenuItemCreate, db: Session = Depends(get_db),
                     current_user: models.User = Depends(require_admin)):
    db_item = catalog.create_menu_item(db, item.dict())
    redis_client.invalidate_menu_cache()
    return {"success": True, "message": f"{db_item.name} added to menu", "menu_item_id": db_item.id,
            "menu_item": menu_item_response(db_item)}


@app.put("/menu/{menu_item_id}")
def update_menu_item(menu_item_id: int, updates: MenuItemUpdate, db: Session = Depends(get_db),
                     current_user: models.User = Depends(require_admin)):
    db_item = catalog.get_item(db, menu_item_id)
    if db_item is None:
        raise errors.NotFound("Menu item not found")

    db_item = catalog.update_menu_item(db, db_item, updates.dict())
    redis_client.invalidate_menu_cache()
    return {"success": True, "message": f"{db_item.name} updated", "menu_item": menu_item_response(db_item)}


@app.delete("/menu/{menu_item_id}")
def delete_menu_item(menu_item_id: int, db: Session = Depends(get_db),
                     current_user: models.User = Depends(require_admin)):
    db_item = catalog.get_item(db, menu_item_id)
    if db_item is None:
        raise errors.NotFound("Menu item not found")

    catalog.delete_menu_item(db, db_item)
    redis_client.invalidate_menu_cache()
    return {"success": True, "message": "Menu item deleted"}


# ========== Cart ==========

@app.get("/carts/{session_id}")
def get_cart(session_id: str, db: Session = Depends(get_db)):
    cart = CartService(db, cart_store).load(session_id)
    return {"success": True, "message": "Current order", "cart": cart_payload(cart)}


@app.post("/carts/{session_id}/items")
def add_cart_item(session_id: str, item: CartItemAdd, db: Session = Depends(get_db)):
    cart = CartService(db, cart_store).add_item(session_id, item.menu_item_id, item.quantity)
    line = cart.find(item.menu_item_id)
    return {"success": True, "message": f"{line.name} added to order", "cart": cart_payload(cart)}


@app.patch("/carts/{session_id}/items/{menu_item_id}")
def adjust_cart_item(session_id: str, menu_item_id: int, change: CartItemAdjust, db: Session = Depends(get_db)):
    cart = CartService(db, cart_store).adjust_quantity(session_id, menu_item_id, change.delta)
    message = "Order updated" if cart.find(menu_item_id) else "Item removed from order"
    return {"success": True, "message": message, "cart": cart_payload(cart)}


@app.delete("/carts/{session_id}/items/{menu_item_id}")
def remove_cart_item(session_id: str, menu_item_id: int, db: Session = Depends(get_db)):
    cart = CartService(db, cart_store).remove_item(session_id, menu_item_id)
    return {"success": True, "message": "Item removed from order", "cart": cart_payload(cart)}


@app.delete("/carts/{session_id}")
def clear_cart(session_id: str, db: Session = Depends(get_db)):
    cart = CartService(db, cart_store).clear(session_id)
    return {"success": True, "message": "Order cleared", "cart": cart_payload(cart)}


# ========== Orders ==========

def _place_cart(db: Session, session_id: str, order_type: str, customer: CustomerInfo,
                table_id: Optional[int], notes: Optional[str], staff_id: Optional[int]):
    carts = CartService(db, cart_store)
    cart = carts.load(session_id)
    order = OrderLifecycleManager(db).submit(cart, order_type, customer, table_id=table_id, notes=notes,
                                             staff_id=staff_id)
    carts.discard(session_id)
    redis_client.invalidate_tables_cache()
    return order


@app.post("/carts/{session_id}/submit")
def submit_order(session_id: str, submission: OrderSubmit, db: Session = Depends(get_db),
                 current_user: models.User = Depends(require_front_of_house)):
    customer = CustomerInfo(
        name=submission.customer_name,
        phone=submission.customer_phone,
        address=submission.customer_address,
    )
    order = _place_cart(db, session_id, submission.order_type, customer, submission.table_id,
                        submission.notes, current_user.id)
    return {
        "success": True,
        "message": f"Order #{order.order_number} processed successfully! Order total: ${order.total:.2f}",
        "order_id": order.id,
        "order_number": order.order_number,
        "table_id": order.table_id,
        "order": order_response(order),
    }


@app.post("/delivery/{session_id}/place")
def place_delivery_order(session_id: str, delivery: DeliveryOrderPlace, db: Session = Depends(get_db),
                         current_user: models.User = Depends(require_customer)):
    customer = CustomerInfo(
        name=current_user.name,
        phone=delivery.phone,
        address=delivery.address,
        user_id=current_user.id,
    )
    order = _place_cart(db, session_id, DELIVERY, customer, None, delivery.notes, None)
    return {
        "success": True,
        "message": f"Order #{order.order_number} placed successfully",
        "order_id": order.id,
        "order_number": order.order_number,
        "order": order_response(order),
    }


@app.get("/orders")
def get_orders(order_type: Optional[str] = None, status: Optional[str] = None, db: Session = Depends(get_db),
               current_user: models.User = Depends(require_staff)):
    orders = OrderLifecycleManager(db).list_orders(order_type=order_type, status=status)
    return {"success": True, "orders": [order_response(order) for order in orders]}


@app.get("/orders/mine")
def get_my_orders(db: Session = Depends(get_db), current_user: models.User = Depends(require_customer)):
    orders = (
        db.query(models.Order)
        .filter(models.Order.customer_id == current_user.id)
        .order_by(models.Order.created_at.desc())
        .all()
    )
    return {"success": True, "orders": [order_response(order) for order in orders]}


@app.get("/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(require_staff)):
    return {"success": True, "order": order_response(OrderLifecycleManager(db).get(order_id))}


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: int, update: OrderStatusUpdate, db: Session = Depends(get_db),
                        current_user: models.User = Depends(require_staff)):
    order = OrderLifecycleManager(db).set_status(order_id, update.status)
    redis_client.invalidate_tables_cache()
    return {"success": True, "message": f"Order status updated to {order.status}", "order": order_response(order)}


@app.post("/orders/{order_id}/payment")
def complete_payment(order_id: int, payment: PaymentComplete, db: Session = Depends(get_db),
                     current_user: models.User = Depends(require_front_of_house)):
    order = OrderLifecycleManager(db).complete_payment(order_id, payment.payment_method)
    redis_client.invalidate_tables_cache()
    return {"success": True, "message": "Payment completed successfully!", "order": order_response(order)}


@app.post("/orders/{order_id}/cancel")
def cancel_order(order_id: int, db: Session = Depends(get_db),
                 current_user: models.User = Depends(require_front_of_house)):
    order = OrderLifecycleManager(db).cancel(order_id)
    redis_client.invalidate_tables_cache()
    return {"success": True, "message": f"Order #{order.order_number} cancelled", "order": order_response(order)}


@app.get("/kitchen/orders")
def get_kitchen_orders(db: Session = Depends(get_db), current_user: models.User = Depends(require_staff)):
    orders = OrderLifecycleManager(db).kitchen_queue()
    return {"success": True, "orders": [order_response(order) for order in orders]}


# ========== Tables ==========

@app.get("/tables")
def get_tables(db: Session = Depends(get_db), current_user: models.User = Depends(require_staff)):
    cached_tables = redis_client.get_cached_tables()
    if cached_tables:
        return cached_tables

    tables = jsonable_encoder([table_response(t) for t in TableOccupancyTracker(db).list_tables()])
    redis_client.cache_tables(tables)
    return tables


@app.get("/tables/available")
def get_available_tables(db: Session = Depends(get_db), current_user: models.User = Depends(require_staff)):
    return [table_response(t) for t in TableOccupancyTracker(db).list_tables(status="available")]


@app.get("/tables/{table_id}")
def get_table_details(table_id: int, db: Session = Depends(get_db),
                      current_user: models.User = Depends(require_staff)):
    return {"success": True, "table": TableOccupancyTracker(db).details(table_id)}


@app.post("/tables")
def add_table(table: TableCreate, db: Session = Depends(get_db), current_user: models.User = Depends(require_admin)):
    db_table = TableOccupancyTracker(db).create(
        capacity=table.capacity,
        location=table.location,
        table_type=table.table_type,
        name=table.name,
        notes=table.notes,
        table_id=table.table_id,
    )
    redis_client.invalidate_tables_cache()
    return {"success": True, "message": f"Table {db_table.id} added successfully", "table_id": db_table.id}


@app.delete("/tables/{table_id}")
def delete_table(table_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(require_admin)):
    TableOccupancyTracker(db).delete(table_id)
    redis_client.invalidate_tables_cache()
    return {"success": True, "message": f"Table {table_id} deleted successfully"}


@app.post("/tables/{table_id}/assign")
def assign_order_to_table(table_id: int, assignment: TableAssign, db: Session = Depends(get_db),
                          current_user: models.User = Depends(require_front_of_house)):
    TableOccupancyTracker(db).assign(table_id, assignment.order_id)
    redis_client.invalidate_tables_cache()
    return {"success": True, "message": f"Order assigned to Table {table_id}", "table_id": table_id,
            "order_id": assignment.order_id}


@app.post("/tables/{table_id}/orders/{session_id}")
def seat_cart_at_table(table_id: int, session_id: str, db: Session = Depends(get_db),
                       current_user: models.User = Depends(require_front_of_house)):
    customer = CustomerInfo(name=WALK_IN_CUSTOMER)
    order = _place_cart(db, session_id, DINE_IN, customer, table_id, None, current_user.id)
    return {
        "success": True,
        "message": f"Order assigned to Table {table_id}",
        "order_id": order.id,
        "order_number": order.order_number,
        "table_id": table_id,
    }


@app.post("/tables/{table_id}/free")
def free_table(table_id: int, db: Session = Depends(get_db),
               current_user: models.User = Depends(require_front_of_house)):
    TableOccupancyTracker(db).free(table_id)
    redis_client.invalidate_tables_cache()
    return {"success": True, "message": f"Table {table_id} is now available"}


@app.post("/tables/{table_id}/reservations")
def create_reservation(table_id: int, reservation: ReservationCreate, db: Session = Depends(get_db),
                       current_user: models.User = Depends(require_front_of_house)):
    db_reservation = TableOccupancyTracker(db).reserve(
        table_id,
        customer_name=reservation.customer_name,
        customer_phone=reservation.customer_phone,
        reserved_for=reservation.reserved_for,
        party_size=reservation.party_size,
        special_requests=reservation.special_requests,
    )
    redis_client.invalidate_tables_cache()
    return {"success": True, "message": "Reservation created successfully", "reservation_id": db_reservation.id,
            "table_id": table_id}


# ========== Reports ==========

@app.get("/reports/dashboard")
def get_dashboard(day: Optional[date] = None, db: Session = Depends(get_db),
                  current_user: models.User = Depends(require_manager)):
    return reports.dashboard(db, day)


@app.get("/reports/sales")
def get_sales_summary(day: Optional[date] = None, db: Session = Depends(get_db),
                      current_user: models.User = Depends(require_manager)):
    return reports.sales_summary(db, day)


@app.get("/reports/sales/hourly")
def get_hourly_sales(day: Optional[date] = None, db: Session = Depends(get_db),
                     current_user: models.User = Depends(require_manager)):
    return reports.hourly_sales(db, day)


@app.get("/reports/orders/status")
def get_order_status_chart(db: Session = Depends(get_db), current_user: models.User = Depends(require_manager)):
    breakdown = reports.status_breakdown(db)
    return {"labels": list(breakdown), "data": list(breakdown.values())}


@app.get("/reports/orders/type")
def get_order_type_chart(db: Session = Depends(get_db), current_user: models.User = Depends(require_manager)):
    breakdown = reports.order_type_breakdown(db)
    return {"labels": list(breakdown), "data": list(breakdown.values())}


@app.get("/reports/top-items")
def get_top_items(limit: int = 5, day: Optional[date] = None, db: Session = Depends(get_db),
                  current_user: models.User = Depends(require_manager)):
    return reports.top_selling_items(db, limit=limit, day=day)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
