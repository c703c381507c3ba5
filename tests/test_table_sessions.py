from datetime import datetime, timedelta, timezone

import pytest

from tableside.core.errors import AlreadyJoined, Forbidden, InvalidTransition, NotFound, TableUnavailable, ValidationError
from tableside.models.table_session import PARTICIPANT_ACTIVE, SESSION_ACTIVE, SESSION_CANCELLED, SESSION_CLOSED
from tableside.services.order_ledger import OrderLine
from tests.factories import as_customer, build_world, seed_restaurant
from tests.fixtures_data import GUEST_DEVICE, HOST_DEVICE, STRANGER_DEVICE


def _open(services, db, world, table_index=0, device=HOST_DEVICE, persons=2):
    return services.sessions.open_session(db, world.restaurant.id, world.tables[table_index].id, device, persons)


def test_open_session_registers_host_as_active_participant():
    db, services, world = build_world()

    session = services.sessions.open_session(
        db, world.restaurant.id, world.tables[0].id, HOST_DEVICE, 2, host_name="  Ana  "
    )

    assert session.status == SESSION_ACTIVE
    assert session.persons_count == 2
    assert session.host_device_id == HOST_DEVICE
    assert len(session.join_code) == 4 and session.join_code.isdigit()
    assert session.start_time is not None
    assert session.end_time is None
    participants = services.participants.list_participants(db, session.id)
    assert [(p.device_id, p.participant_name, p.status) for p in participants] == [
        (HOST_DEVICE, "Ana", PARTICIPANT_ACTIVE)
    ]


def test_second_open_on_same_table_is_rejected():
    db, services, world = build_world()
    _open(services, db, world)

    with pytest.raises(TableUnavailable):
        _open(services, db, world, device=GUEST_DEVICE)


def test_open_rejects_party_larger_than_table_capacity():
    db, services, world = build_world(table_capacity=4)

    with pytest.raises(ValidationError):
        _open(services, db, world, persons=5)
    with pytest.raises(ValidationError):
        _open(services, db, world, persons=0)

    assert services.sessions.get_active_session_for_table(db, world.restaurant.id, world.tables[0].id) is None


def test_open_on_disabled_table_is_unavailable():
    db, services, world = build_world()
    services.restaurants.update_table(db, world.restaurant.id, world.tables[0].id, world.owner.id, is_active=False)

    with pytest.raises(TableUnavailable):
        _open(services, db, world)


def test_open_on_table_of_another_restaurant_is_not_found():
    db, services, world = build_world()
    other = seed_restaurant(db, services, name="Other Place", email_prefix="other-")

    with pytest.raises(NotFound):
        services.sessions.open_session(db, world.restaurant.id, other.tables[0].id, HOST_DEVICE, 1)
    with pytest.raises(NotFound):
        services.sessions.open_session(db, world.restaurant.id, 99999, HOST_DEVICE, 1)


def test_open_requires_device_id():
    db, services, world = build_world()

    with pytest.raises(ValidationError):
        _open(services, db, world, device="   ")


def test_join_by_code_adds_participant_and_is_idempotent():
    db, services, world = build_world()
    session = _open(services, db, world)

    joined = services.sessions.join_session(db, world.restaurant.id, session.join_code, GUEST_DEVICE, "Bruno")
    again = services.sessions.join_session(db, world.restaurant.id, session.join_code, GUEST_DEVICE)

    assert joined.id == session.id
    assert again.id == session.id
    devices = [p.device_id for p in services.participants.list_participants(db, session.id)]
    assert devices == [HOST_DEVICE, GUEST_DEVICE]


def test_join_twice_raises_when_rejoin_is_disabled():
    db, services, world = build_world(services={"allow_idempotent_rejoin": False})
    session = _open(services, db, world)
    services.sessions.join_session(db, world.restaurant.id, session.join_code, GUEST_DEVICE)

    with pytest.raises(AlreadyJoined):
        services.sessions.join_session(db, world.restaurant.id, session.join_code, GUEST_DEVICE)


def test_join_with_unknown_code_or_other_restaurant_is_not_found():
    db, services, world = build_world()
    other = seed_restaurant(db, services, name="Other Place", email_prefix="other-")
    session = _open(services, db, world)
    wrong = "0000" if session.join_code != "0000" else "9999"

    with pytest.raises(NotFound):
        services.sessions.join_session(db, world.restaurant.id, wrong, GUEST_DEVICE)
    with pytest.raises(NotFound):
        services.sessions.join_session(db, other.restaurant.id, session.join_code, GUEST_DEVICE)
    with pytest.raises(ValidationError):
        services.sessions.join_session(db, world.restaurant.id, "  ", GUEST_DEVICE)


def test_close_records_total_and_frees_the_table():
    db, services, world = build_world()
    session = _open(services, db, world)
    services.orders.place_order(
        db,
        session.id,
        as_customer(HOST_DEVICE),
        [OrderLine(menu_item_id=world.burger.id, quantity=2), OrderLine(menu_item_id=world.soda.id)],
    )

    closed = services.sessions.close_session(db, session.id, world.waiter.id)

    assert closed.status == SESSION_CLOSED
    assert closed.calculated_total_cents == 2 * 1800 + 500
    assert closed.ended_by == world.waiter.id
    assert closed.end_time is not None
    reopened = _open(services, db, world, device=GUEST_DEVICE)
    assert reopened.id != session.id
    with pytest.raises(NotFound):
        services.sessions.join_session(db, world.restaurant.id, session.join_code, STRANGER_DEVICE)


def test_total_ignores_cancelled_orders():
    db, services, world = build_world()
    session = _open(services, db, world)
    kept = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.burger.id)])
    dropped = services.orders.place_order(db, session.id, as_customer(HOST_DEVICE), [OrderLine(world.soda.id, 3)])
    services.orders.update_order_status(db, dropped.id, "cancelled", world.waiter.id)

    closed = services.sessions.close_session(db, session.id, world.waiter.id)

    assert kept.status == "received"
    assert closed.calculated_total_cents == 1800


def test_finished_session_cannot_be_finished_again():
    db, services, world = build_world()
    session = _open(services, db, world)
    services.sessions.close_session(db, session.id, world.waiter.id)

    with pytest.raises(InvalidTransition):
        services.sessions.close_session(db, session.id, world.waiter.id)
    with pytest.raises(InvalidTransition):
        services.sessions.cancel_session(db, session.id, world.waiter.id)


def test_cancel_session_marks_cancelled():
    db, services, world = build_world()
    session = _open(services, db, world)

    cancelled = services.sessions.cancel_session(db, session.id, world.owner.id)

    assert cancelled.status == SESSION_CANCELLED
    assert cancelled.ended_by == world.owner.id
    assert services.sessions.get_active_session_for_table(db, world.restaurant.id, world.tables[0].id) is None


def test_closing_requires_session_permission():
    db, services, world = build_world()
    session = _open(services, db, world)

    with pytest.raises(Forbidden):
        services.sessions.close_session(db, session.id, world.kitchen.id)
    with pytest.raises(Forbidden):
        services.sessions.close_session(db, session.id, world.outsider.id)
    with pytest.raises(Forbidden):
        services.sessions.cancel_session(db, session.id, None)

    assert services.sessions.get_session(db, session.id).status == SESSION_ACTIVE


def test_update_persons_count_respects_capacity():
    db, services, world = build_world(table_capacity=4)
    session = _open(services, db, world, persons=2)

    updated = services.sessions.update_persons_count(db, session.id, 4, world.waiter.id)

    assert updated.persons_count == 4
    with pytest.raises(ValidationError):
        services.sessions.update_persons_count(db, session.id, 5, world.waiter.id)


def test_get_session_unknown_id_is_not_found():
    db, services, _world = build_world()

    with pytest.raises(NotFound):
        services.sessions.get_session(db, 424242)


def test_list_stale_sessions_uses_start_time():
    db, services, world = build_world()
    session = _open(services, db, world)
    now = datetime.now(timezone.utc)

    assert [s.id for s in services.sessions.list_stale_sessions(db, now + timedelta(minutes=1))] == [session.id]
    assert services.sessions.list_stale_sessions(db, now - timedelta(hours=1)) == []
