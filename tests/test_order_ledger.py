import re

import pytest

from tableside.core.errors import Conflict, Forbidden, NotFound, SessionNotActive, ValidationError
from tableside.models.menu_item import MenuItem
from tableside.services.event_bus import EventBus
from tableside.services.order_events import ORDER_CREATED, ORDER_READY, ORDER_STATUS_CHANGED
from tableside.services.order_ledger import OrderLine
from tests.factories import as_customer, as_staff, build_world, seed_restaurant
from tests.fixtures_data import GUEST_DEVICE, HOST_DEVICE, STRANGER_DEVICE

ORDER_NUMBER = re.compile(r"^\d{8}-\d{4}$")


def _open_session(db, services, world):
    session = services.sessions.open_session(db, world.restaurant.id, world.tables[0].id, HOST_DEVICE, 2)
    services.sessions.join_session(db, world.restaurant.id, session.join_code, GUEST_DEVICE)
    return session


def test_customer_order_snapshots_menu_and_attributes_device():
    db, services, world = build_world()
    session = _open_session(db, services, world)

    order = services.orders.place_order(
        db,
        session.id,
        as_customer(GUEST_DEVICE),
        [
            OrderLine(menu_item_id=world.burger.id, quantity=2, notes=" no onion "),
            {"menu_item_id": world.soda.id},
        ],
        notes="window seat",
    )

    assert order.status == "received"
    assert order.created_by_device_id == GUEST_DEVICE
    assert order.created_by_user_id is None
    assert order.table_session_id == session.id
    assert ORDER_NUMBER.match(order.order_number)
    assert order.notes == "window seat"
    assert [(i.item_name, i.price_at_order_cents, i.quantity, i.status) for i in order.items] == [
        ("Burger Classic", 1800, 2, "received"),
        ("Soda", 500, 1, "received"),
    ]
    assert order.items[0].notes == "no onion"


def test_price_change_after_order_does_not_touch_the_bill():
    db, services, world = build_world()
    session = _open_session(db, services, world)
    order = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.burger.id, 2)])

    burger = db.get(MenuItem, world.burger.id)
    burger.price_cents = 2500
    burger.name = "Burger Deluxe"
    db.commit()
    db.refresh(order)

    assert order.items[0].price_at_order_cents == 1800
    assert order.items[0].item_name == "Burger Classic"
    assert services.sessions.session_total_cents(db, session.id) == 3600


def test_order_numbers_increase_per_restaurant():
    db, services, world = build_world()
    session = _open_session(db, services, world)

    first = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])
    second = services.orders.place_order(db, session.id, as_customer(GUEST_DEVICE), [OrderLine(world.soda.id)])

    assert first.order_number.endswith("-0001")
    assert second.order_number.endswith("-0002")
    assert first.order_number[:8] == second.order_number[:8]


def test_order_number_taken_at_insert_is_regenerated_once(monkeypatch):
    db, services, world = build_world()
    session = _open_session(db, services, world)
    first = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])
    taken = first.order_number
    next_number = services.orders._next_order_number
    handed_out = []

    def _stale_then_fresh(number_db, restaurant_id):
        # Another writer claimed the first number after it was computed.
        number = taken if not handed_out else next_number(number_db, restaurant_id)
        handed_out.append(number)
        return number

    monkeypatch.setattr(services.orders, "_next_order_number", _stale_then_fresh)

    second = services.orders.place_order(db, session.id, as_customer(GUEST_DEVICE), [OrderLine(world.burger.id)])

    assert handed_out[0] == taken
    assert len(handed_out) == 2
    assert second.order_number == handed_out[1]
    assert second.order_number.endswith("-0002")
    assert [item.item_name for item in second.items] == ["Burger Classic"]


def test_order_number_colliding_twice_raises_conflict(monkeypatch):
    db, services, world = build_world()
    session = _open_session(db, services, world)
    first = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])
    taken = first.order_number
    monkeypatch.setattr(services.orders, "_next_order_number", lambda _db, _restaurant_id: taken)

    with pytest.raises(Conflict):
        services.orders.place_order(db, session.id, as_customer(GUEST_DEVICE), [OrderLine(world.burger.id)])

    orders = services.orders.list_session_orders(db, session.id, as_customer(HOST_DEVICE))
    assert [order.order_number for order in orders] == [taken]


def test_variant_is_required_and_priced_from_variant():
    db, services, world = build_world()
    session = _open_session(db, services, world)

    with pytest.raises(ValidationError):
        services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.pizza.id)])

    order = services.orders.place_order(
        db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.pizza.id, variant_id=world.large.id)]
    )

    item = order.items[0]
    assert (item.item_name, item.variant_name, item.price_at_order_cents) == ("Pizza", "Large", 4200)


def test_variant_of_another_item_is_rejected():
    db, services, world = build_world()
    session = _open_session(db, services, world)

    with pytest.raises(ValidationError):
        services.orders.place_order(
            db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.burger.id, variant_id=world.small.id)]
        )


def test_unavailable_unknown_and_foreign_items_are_rejected():
    db, services, world = build_world()
    other = seed_restaurant(db, services, name="Other Place", email_prefix="other-")
    session = _open_session(db, services, world)
    soda = db.get(MenuItem, world.soda.id)
    soda.is_available = False
    db.commit()

    with pytest.raises(ValidationError):
        services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])
    with pytest.raises(NotFound):
        services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(987654)])
    with pytest.raises(NotFound):
        services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(other.burger.id)])


def test_invalid_lines_are_rejected():
    db, services, world = build_world()
    session = _open_session(db, services, world)

    with pytest.raises(ValidationError):
        services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [])
    with pytest.raises(ValidationError):
        services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id, 0)])
    with pytest.raises(ValidationError):
        services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [{"quantity": 1}])

    assert services.orders.list_session_orders(db, session.id, as_staff(world.waiter)) == []


def test_device_outside_session_cannot_order():
    db, services, world = build_world()
    session = _open_session(db, services, world)

    with pytest.raises(Forbidden):
        services.orders.place_order(db, session.id, as_customer(STRANGER_DEVICE), [OrderLine(world.soda.id)])


def test_order_on_closed_session_is_rejected_after_attribution_check():
    db, services, world = build_world()
    session = _open_session(db, services, world)
    services.sessions.close_session(db, session.id, world.waiter.id)

    with pytest.raises(SessionNotActive):
        services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])
    with pytest.raises(Forbidden):
        services.orders.place_order(db, session.id, as_customer(STRANGER_DEVICE), [OrderLine(world.soda.id)])
    with pytest.raises(NotFound):
        services.orders.place_order(db, 555555, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])


def test_staff_order_needs_create_permission():
    db, services, world = build_world()
    session = _open_session(db, services, world)

    order = services.orders.place_order(db, session.id, as_staff(world.waiter), [OrderLine(world.burger.id)])

    assert order.created_by_user_id == world.waiter.id
    assert order.created_by_device_id is None
    with pytest.raises(Forbidden):
        services.orders.place_order(db, session.id, as_staff(world.kitchen), [OrderLine(world.burger.id)])
    with pytest.raises(Forbidden):
        services.orders.place_order(db, session.id, as_staff(world.outsider), [OrderLine(world.burger.id)])


def test_session_orders_visible_to_participants_and_staff_only():
    db, services, world = build_world()
    session = _open_session(db, services, world)
    order = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])

    assert [o.id for o in services.orders.list_session_orders(db, session.id, as_customer(GUEST_DEVICE))] == [order.id]
    assert [o.id for o in services.orders.list_session_orders(db, session.id, as_staff(world.kitchen))] == [order.id]
    with pytest.raises(Forbidden):
        services.orders.list_session_orders(db, session.id, as_customer(STRANGER_DEVICE))
    with pytest.raises(Forbidden):
        services.orders.list_session_orders(db, session.id, as_staff(world.outsider))


def test_kitchen_queue_filters_by_status():
    db, services, world = build_world()
    session = _open_session(db, services, world)
    first = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])
    second = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.burger.id)])
    services.orders.update_order_status(db, second.id, "cancelled", world.waiter.id)

    queue = services.orders.list_kitchen_orders(db, world.restaurant.id, world.kitchen.id)
    cancelled = services.orders.list_kitchen_orders(db, world.restaurant.id, world.kitchen.id, ["CANCELLED"])

    assert [o.id for o in queue] == [first.id]
    assert [o.id for o in cancelled] == [second.id]
    with pytest.raises(Forbidden):
        services.orders.list_kitchen_orders(db, world.restaurant.id, world.outsider.id)


def test_order_events_are_emitted():
    events = EventBus()
    received = []
    events.subscribe(ORDER_CREATED, lambda payload: received.append((ORDER_CREATED, payload)))
    events.subscribe(ORDER_STATUS_CHANGED, lambda payload: received.append((ORDER_STATUS_CHANGED, payload)))
    events.subscribe(ORDER_READY, lambda payload: received.append((ORDER_READY, payload)))
    db, services, world = build_world(services={"events": events}, workflow_settings={"has_kitchen_view": False})
    session = _open_session(db, services, world)

    order = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id, 2)])
    services.orders.update_order_status(db, order.id, "preparing", world.kitchen.id)
    services.orders.update_order_status(db, order.id, "ready", world.kitchen.id)

    names = [name for name, _payload in received]
    assert names == [ORDER_CREATED, ORDER_STATUS_CHANGED, ORDER_STATUS_CHANGED, ORDER_READY]
    created = received[0][1]
    assert created["order_id"] == order.id
    assert created["item_count"] == 2
    assert created["created_by_device_id"] == HOST_DEVICE
    assert received[-1][1]["previous_status"] == "preparing"


def test_failing_event_handler_does_not_break_order_placement():
    events = EventBus()

    def _explode(_payload):
        raise RuntimeError("handler down")

    events.subscribe(ORDER_CREATED, _explode)
    db, services, world = build_world(services={"events": events})
    session = _open_session(db, services, world)

    order = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id)])

    assert order.id is not None


def test_event_bus_keeps_delivering_after_a_handler_fails():
    events = EventBus()
    received = []

    def _explode(_payload):
        raise RuntimeError("printer offline")

    events.subscribe(ORDER_READY, _explode)
    events.subscribe(ORDER_READY, received.append)

    delivered = events.emit(ORDER_READY, {"order_id": 7})

    assert delivered == 1
    assert received == [{"order_id": 7}]
    assert events.emit("order.unknown", {"order_id": 7}) == 0
