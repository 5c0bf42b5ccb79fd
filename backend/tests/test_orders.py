from decimal import Decimal

import pytest

import errors
import models
from cart import Cart
from orders import (
    CANCELLED, COMPLETED, DELIVERY, DINE_IN, PENDING, PREPARING, READY, TAKEAWAY,
    OrderLifecycleManager, can_transition,
)
from schemas import CustomerInfo
from tables import AVAILABLE, OCCUPIED, TableOccupancyTracker

WALK_IN = CustomerInfo(name="Walk-in Customer")


def make_cart(db, menu, quantities, session_id="s1"):
    cart = Cart(session_id=session_id)
    for name, quantity in quantities.items():
        cart.add(db.get(models.MenuItem, menu[name]), quantity)
    return cart


def order_count(db):
    return db.query(models.Order).count()


def test_dine_in_order_occupies_table_until_completed(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)
    cart = make_cart(db, menu, {"Item A": 2, "Item B": 1})

    order = manager.submit(cart, DINE_IN, WALK_IN)

    assert order.status == PENDING
    assert order.total == Decimal("25.00")
    assert order.order_number.startswith("ORD-")
    assert len(order.items) == 2
    assert sum(item.line_total for item in order.items) == order.total
    table = db.get(models.Table, order.table_id)
    assert table.id == 1
    assert table.status == OCCUPIED
    assert table.current_order_id == order.id

    manager.set_status(order.id, COMPLETED)

    db.refresh(table)
    assert table.status == AVAILABLE
    assert table.current_order_id is None
    assert manager.get(order.id).completed_at is not None


def test_dine_in_orders_take_lowest_free_table(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)

    first = manager.submit(make_cart(db, menu, {"Item A": 1}), DINE_IN, WALK_IN)
    second = manager.submit(make_cart(db, menu, {"Item B": 1}), DINE_IN, WALK_IN)

    assert (first.table_id, second.table_id) == (1, 2)


def test_dine_in_without_free_table_is_placed_unseated(db, menu):
    order = OrderLifecycleManager(db).submit(make_cart(db, menu, {"Item A": 1}), DINE_IN, WALK_IN)

    assert order.table_id is None
    assert order.status == PENDING


def test_empty_cart_is_rejected_without_writing(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)

    with pytest.raises(errors.EmptyOrder):
        manager.submit(Cart(session_id="s1"), DINE_IN, WALK_IN)

    assert order_count(db) == 0
    assert db.query(models.OrderItem).count() == 0
    assert db.get(models.Table, 1).status == AVAILABLE


def test_delivery_requires_phone_and_address(db, menu):
    manager = OrderLifecycleManager(db)
    cart = make_cart(db, menu, {"Item A": 1})

    with pytest.raises(errors.ValidationError):
        manager.submit(cart, DELIVERY, CustomerInfo(name="Dana", phone="555-0100"))
    with pytest.raises(errors.ValidationError):
        manager.submit(cart, DELIVERY, CustomerInfo(name="Dana", address="1 Main St"))

    order = manager.submit(cart, DELIVERY, CustomerInfo(name="Dana", phone="555-0100", address="1 Main St"))
    assert order.customer_address == "1 Main St"
    assert order.table_id is None
    assert order_count(db) == 1


def test_submission_validation(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)
    cart = make_cart(db, menu, {"Item A": 1})

    with pytest.raises(errors.ValidationError):
        manager.submit(cart, "drive-through", WALK_IN)
    with pytest.raises(errors.ValidationError):
        manager.submit(cart, TAKEAWAY, CustomerInfo(name="   "))
    with pytest.raises(errors.ValidationError):
        manager.submit(cart, TAKEAWAY, WALK_IN, table_id=1)
    with pytest.raises(errors.NotFound):
        manager.submit(cart, DINE_IN, WALK_IN, table_id=42)

    assert order_count(db) == 0


def test_explicit_occupied_table_conflicts_and_rolls_back(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)
    first = manager.submit(make_cart(db, menu, {"Item A": 1}), DINE_IN, WALK_IN, table_id=2)

    with pytest.raises(errors.Conflict):
        manager.submit(make_cart(db, menu, {"Item B": 1}), DINE_IN, WALK_IN, table_id=2)

    assert order_count(db) == 1
    assert db.get(models.Table, 2).current_order_id == first.id


def test_status_moves_forward_only():
    assert can_transition(PENDING, PREPARING)
    assert can_transition(PENDING, COMPLETED)
    assert can_transition(PREPARING, CANCELLED)
    assert can_transition(READY, COMPLETED)
    assert not can_transition(READY, CANCELLED)
    assert not can_transition(PREPARING, PENDING)
    assert not can_transition(COMPLETED, CANCELLED)
    assert not can_transition(CANCELLED, PENDING)


@pytest.mark.parametrize("terminal", [COMPLETED, CANCELLED])
def test_terminal_orders_reject_further_transitions(db, menu, terminal):
    manager = OrderLifecycleManager(db)
    order = manager.submit(make_cart(db, menu, {"Item A": 1}), TAKEAWAY, WALK_IN)
    manager.set_status(order.id, terminal)

    for new_status in (PENDING, PREPARING, READY, COMPLETED, CANCELLED):
        with pytest.raises(errors.InvalidTransition):
            manager.set_status(order.id, new_status)

    db.expire_all()
    assert manager.get(order.id).status == terminal


def test_unknown_status_is_a_validation_error(db, menu):
    manager = OrderLifecycleManager(db)
    order = manager.submit(make_cart(db, menu, {"Item A": 1}), TAKEAWAY, WALK_IN)

    with pytest.raises(errors.ValidationError):
        manager.set_status(order.id, "served")
    with pytest.raises(errors.NotFound):
        manager.set_status(9999, PREPARING)


def test_complete_payment_twice_reports_already_completed(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)
    order = manager.submit(make_cart(db, menu, {"Item A": 2, "Item B": 1}), DINE_IN, WALK_IN)
    manager.set_status(order.id, PREPARING)

    paid = manager.complete_payment(order.id, "cash")
    assert paid.status == COMPLETED
    assert paid.payment_method == "cash"
    assert db.get(models.Table, 1).status == AVAILABLE

    with pytest.raises(errors.AlreadyCompleted):
        manager.complete_payment(order.id, "card")

    db.expire_all()
    assert manager.get(order.id).payment_method == "cash"


def test_payment_needs_a_method_and_an_open_order(db, menu):
    manager = OrderLifecycleManager(db)
    order = manager.submit(make_cart(db, menu, {"Item A": 1}), TAKEAWAY, WALK_IN)

    with pytest.raises(errors.ValidationError):
        manager.complete_payment(order.id, "  ")

    manager.cancel(order.id)
    with pytest.raises(errors.InvalidTransition):
        manager.complete_payment(order.id, "cash")


def test_cancel_frees_table(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)
    order = manager.submit(make_cart(db, menu, {"Item A": 1}), DINE_IN, WALK_IN)

    manager.cancel(order.id)

    table = db.get(models.Table, order.table_id)
    assert table.status == AVAILABLE
    assert table.current_order_id is None


def test_finishing_an_order_leaves_a_reassigned_table_alone(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)
    tracker = TableOccupancyTracker(db)
    first = manager.submit(make_cart(db, menu, {"Item A": 1}), DINE_IN, WALK_IN, table_id=1)
    tracker.assign(3, first.id)
    second = manager.submit(make_cart(db, menu, {"Item B": 1}), DINE_IN, WALK_IN, table_id=1)

    assert tracker.release_for_order(1, first.id) is False

    manager.set_status(first.id, COMPLETED)

    assert db.get(models.Table, 3).status == AVAILABLE
    table_one = db.get(models.Table, 1)
    assert table_one.status == OCCUPIED
    assert table_one.current_order_id == second.id


def test_kitchen_queue_holds_open_orders_oldest_first(db, menu):
    manager = OrderLifecycleManager(db)
    first = manager.submit(make_cart(db, menu, {"Item A": 1}), TAKEAWAY, WALK_IN)
    second = manager.submit(make_cart(db, menu, {"Item B": 1}), TAKEAWAY, WALK_IN)
    done = manager.submit(make_cart(db, menu, {"Item B": 2}), TAKEAWAY, WALK_IN)
    manager.set_status(second.id, READY)
    manager.set_status(done.id, COMPLETED)

    assert [order.id for order in manager.kitchen_queue()] == [first.id, second.id]
    assert [order.id for order in manager.list_orders(status=COMPLETED)] == [done.id]


def test_auto_assignment_moves_on_when_its_table_is_taken(db, menu, dining_tables, monkeypatch):
    tracker = TableOccupancyTracker(db)
    manager = OrderLifecycleManager(db, tracker)
    taken = manager.submit(make_cart(db, menu, {"Item A": 1}), DINE_IN, WALK_IN, table_id=1)
    stale = db.get(models.Table, 1)
    real_pick = tracker.first_available_table
    picks = []

    def stale_then_fresh():
        picks.append(len(picks))
        return stale if len(picks) == 1 else real_pick()

    monkeypatch.setattr(tracker, "first_available_table", stale_then_fresh)

    order = manager.submit(make_cart(db, menu, {"Item B": 1}), DINE_IN, WALK_IN)

    assert len(picks) == 2
    assert order.table_id == 2
    assert order_count(db) == 2
    assert db.get(models.Table, 1).current_order_id == taken.id


def test_auto_assignment_gives_up_after_retry(db, menu, dining_tables, monkeypatch):
    tracker = TableOccupancyTracker(db)
    manager = OrderLifecycleManager(db, tracker)
    manager.submit(make_cart(db, menu, {"Item A": 1}), DINE_IN, WALK_IN, table_id=1)
    stale = db.get(models.Table, 1)
    monkeypatch.setattr(tracker, "first_available_table", lambda: stale)

    with pytest.raises(errors.Conflict):
        manager.submit(make_cart(db, menu, {"Item B": 1}), DINE_IN, WALK_IN)

    assert order_count(db) == 1


def test_failed_line_write_rolls_back_the_whole_submission(db, menu, dining_tables):
    manager = OrderLifecycleManager(db)
    cart = make_cart(db, menu, {"Item A": 2, "Item B": 1})
    cart.items[1].name = None

    with pytest.raises(errors.StoreError) as excinfo:
        manager.submit(cart, DINE_IN, WALK_IN)

    assert "NOT NULL" in excinfo.value.message
    assert order_count(db) == 0
    assert db.query(models.OrderItem).count() == 0
    table = db.get(models.Table, 1)
    assert table.status == AVAILABLE
    assert table.current_order_id is None
