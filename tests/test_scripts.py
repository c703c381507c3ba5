from tableside.core.result import Err, Ok
from tableside.models.table_session import SESSION_ACTIVE, SESSION_CANCELLED
from tests.factories import build_world
from tests.fixtures_data import HOST_DEVICE

from scripts.cancel_stale_sessions import cancel_stale_sessions


def _open_two(db, services, world):
    return [
        services.sessions.open_session(db, world.restaurant.id, table.id, f"{HOST_DEVICE}-{table.id}", 1)
        for table in world.tables[:2]
    ]


def test_dry_run_lists_without_cancelling():
    db, services, world = build_world()
    sessions = _open_two(db, services, world)

    outcomes = cancel_stale_sessions(db, services, staff_user_id=world.waiter.id, hours=0, dry_run=True)

    assert [session_id for session_id, _ in outcomes] == [s.id for s in sessions]
    assert all(result is None for _, result in outcomes)
    assert {services.sessions.get_session(db, s.id).status for s in sessions} == {SESSION_ACTIVE}


def test_stale_sessions_are_cancelled_by_staff():
    db, services, world = build_world()
    sessions = _open_two(db, services, world)

    outcomes = cancel_stale_sessions(db, services, staff_user_id=world.waiter.id, hours=0)

    assert all(isinstance(result, Ok) for _, result in outcomes)
    assert {services.sessions.get_session(db, s.id).status for s in sessions} == {SESSION_CANCELLED}


def test_each_failure_is_reported_per_session():
    db, services, world = build_world()
    _open_two(db, services, world)

    outcomes = cancel_stale_sessions(db, services, staff_user_id=world.kitchen.id, hours=0)

    assert len(outcomes) == 2
    assert all(isinstance(result, Err) and result.kind.value == "Forbidden" for _, result in outcomes)


def test_recent_sessions_are_left_alone():
    db, services, world = build_world()
    _open_two(db, services, world)

    assert cancel_stale_sessions(db, services, staff_user_id=world.waiter.id, hours=6) == []
