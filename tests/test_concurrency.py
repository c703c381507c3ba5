"""Races against a file-backed SQLite database shared by several threads."""
import threading

import pytest

from tableside.core.database import Database, build_engine
from tableside.core.errors import ErrorKind, SessionNotActive
from tableside.core.result import Err, Ok, capture
from tableside.models.order import Order
from tableside.models.table_session import SESSION_ACTIVE, SESSION_CLOSED, SessionParticipant, TableSession
from tableside.services.order_ledger import OrderLine
from tests.factories import as_customer, build_services, seed_restaurant

THREADS = 8


def _build_file_database(tmp_path) -> Database:
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"timeout": 30})
    database = Database(engine=engine)
    database.create_all()
    return database


def _run_concurrently(database, count, work):
    barrier = threading.Barrier(count)
    results = [None] * count

    def _worker(index):
        db = database.session()
        try:
            barrier.wait()
            results[index] = work(db, index)
        finally:
            db.close()

    threads = [threading.Thread(target=_worker, args=(index,)) for index in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


def test_concurrent_opens_on_one_table_produce_exactly_one_session(tmp_path):
    database = _build_file_database(tmp_path)
    services = build_services(rng=None)
    db = database.session()
    world = seed_restaurant(db, services)
    restaurant_id, table_id = world.restaurant.id, world.tables[0].id
    db.close()

    results = _run_concurrently(
        database,
        THREADS,
        lambda session_db, index: capture(
            services.sessions.open_session, session_db, restaurant_id, table_id, f"device-{index}", 1
        ),
    )

    winners = [result for result in results if isinstance(result, Ok)]
    losers = [result for result in results if isinstance(result, Err)]
    assert len(winners) == 1
    assert len(losers) == THREADS - 1
    assert {loser.kind for loser in losers} == {ErrorKind.TABLE_UNAVAILABLE}

    check = database.session()
    active = check.query(TableSession).filter(TableSession.table_id == table_id, TableSession.status == SESSION_ACTIVE)
    assert active.count() == 1
    check.close()
    database.dispose()


def test_concurrent_opens_on_different_tables_get_distinct_codes(tmp_path):
    database = _build_file_database(tmp_path)
    services = build_services(rng=None)
    db = database.session()
    world = seed_restaurant(db, services, table_count=THREADS)
    restaurant_id = world.restaurant.id
    table_ids = [table.id for table in world.tables]
    db.close()

    results = _run_concurrently(
        database,
        THREADS,
        lambda session_db, index: capture(
            services.sessions.open_session, session_db, restaurant_id, table_ids[index], f"device-{index}", 1
        ),
    )

    assert all(isinstance(result, Ok) for result in results)
    codes = {result.value.join_code for result in results}
    assert len(codes) == THREADS
    database.dispose()


def test_concurrent_joins_by_same_device_leave_one_participant(tmp_path):
    database = _build_file_database(tmp_path)
    services = build_services(rng=None)
    db = database.session()
    world = seed_restaurant(db, services)
    session = services.sessions.open_session(db, world.restaurant.id, world.tables[0].id, "device-host", 4)
    restaurant_id, session_id, code = world.restaurant.id, session.id, session.join_code
    db.close()

    results = _run_concurrently(
        database,
        4,
        lambda session_db, _index: capture(
            services.sessions.join_session, session_db, restaurant_id, code, "device-guest"
        ),
    )

    assert all(isinstance(result, Ok) for result in results)
    check = database.session()
    rows = check.query(SessionParticipant).filter(
        SessionParticipant.session_id == session_id, SessionParticipant.device_id == "device-guest"
    )
    assert rows.count() == 1
    check.close()
    database.dispose()


def test_close_landing_mid_placement_rejects_the_order(tmp_path, monkeypatch):
    database = _build_file_database(tmp_path)
    services = build_services(rng=None)
    db = database.session()
    world = seed_restaurant(db, services)
    session = services.sessions.open_session(db, world.restaurant.id, world.tables[0].id, "device-host", 2)
    session_id, owner_id, burger_id = session.id, world.owner.id, world.burger.id
    snapshot_lines = services.orders._snapshot_lines

    def _close_then_snapshot(snapshot_db, restaurant_id, lines):
        # Another waiter closes the bill while this order is still being priced.
        other = database.session()
        try:
            services.sessions.close_session(other, session_id, owner_id)
        finally:
            other.close()
        return snapshot_lines(snapshot_db, restaurant_id, lines)

    monkeypatch.setattr(services.orders, "_snapshot_lines", _close_then_snapshot)

    with pytest.raises(SessionNotActive):
        services.orders.place_order(db, session_id, as_customer("device-host"), [OrderLine(burger_id)])

    db.expire_all()
    closed = db.get(TableSession, session_id)
    assert closed.status == SESSION_CLOSED
    assert closed.calculated_total_cents == 0
    assert db.query(Order).filter(Order.table_session_id == session_id).count() == 0
    db.close()
    database.dispose()


def test_concurrent_orders_and_close_keep_total_consistent(tmp_path):
    database = _build_file_database(tmp_path)
    services = build_services(rng=None)
    db = database.session()
    world = seed_restaurant(db, services)
    session = services.sessions.open_session(db, world.restaurant.id, world.tables[0].id, "device-host", 2)
    session_id, owner_id, burger_id = session.id, world.owner.id, world.burger.id
    db.close()

    def _work(session_db, index):
        if index == 0:
            return capture(services.sessions.close_session, session_db, session_id, owner_id)
        return capture(
            services.orders.place_order, session_db, session_id, as_customer("device-host"), [OrderLine(burger_id)]
        )

    results = _run_concurrently(database, THREADS, _work)

    assert isinstance(results[0], Ok)
    placed = [result for result in results[1:] if isinstance(result, Ok)]
    rejected = [result for result in results[1:] if isinstance(result, Err)]
    assert len(placed) + len(rejected) == THREADS - 1
    assert {result.kind for result in rejected} <= {ErrorKind.SESSION_NOT_ACTIVE}

    check = database.session()
    closed = check.get(TableSession, session_id)
    assert closed.status == SESSION_CLOSED
    assert check.query(Order).filter(Order.table_session_id == session_id).count() == len(placed)
    assert closed.calculated_total_cents == 1800 * len(placed)
    check.close()
    database.dispose()
