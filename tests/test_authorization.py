import pytest

from tableside.core.errors import Forbidden
from tableside.models.restaurant_member import RestaurantMember
from tableside.services.authorization_service import (
    ALL_PERMISSIONS,
    PERM_ORDERS_CREATE,
    PERM_ORDERS_UPDATE_STATUS,
    PERM_RESTAURANT_MANAGE,
    PERM_SESSIONS_MANAGE,
    AuthorizationService,
)
from tests.factories import build_world, seed_restaurant


def test_owner_holds_every_permission():
    db, services, world = build_world()

    granted = services.authorization.permissions_for(db, restaurant_id=world.restaurant.id, user_id=world.owner.id)

    assert granted == set(ALL_PERMISSIONS)


def test_roles_grant_their_default_permissions():
    db, services, world = build_world()
    auth = services.authorization

    waiter = auth.permissions_for(db, restaurant_id=world.restaurant.id, user_id=world.waiter.id)
    kitchen = auth.permissions_for(db, restaurant_id=world.restaurant.id, user_id=world.kitchen.id)

    assert PERM_SESSIONS_MANAGE in waiter and PERM_ORDERS_CREATE in waiter
    assert PERM_RESTAURANT_MANAGE not in waiter
    assert kitchen == {PERM_ORDERS_UPDATE_STATUS}


def test_user_without_required_permission_is_forbidden():
    db, services, world = build_world()

    with pytest.raises(Forbidden):
        services.authorization.ensure_permission(
            db,
            restaurant_id=world.restaurant.id,
            user_id=world.kitchen.id,
            permission=PERM_SESSIONS_MANAGE,
        )


def test_membership_does_not_cross_restaurants():
    db, services, world = build_world()
    other = seed_restaurant(db, services, name="Other Place", email_prefix="other-")

    services.authorization.ensure_member(db, restaurant_id=world.restaurant.id, user_id=world.waiter.id)
    with pytest.raises(Forbidden):
        services.authorization.ensure_member(db, restaurant_id=other.restaurant.id, user_id=world.waiter.id)
    assert services.authorization.permissions_for(db, restaurant_id=other.restaurant.id, user_id=world.owner.id) == set()


def test_inactive_member_or_account_is_forbidden():
    db, services, world = build_world()
    member = (
        db.query(RestaurantMember)
        .filter(RestaurantMember.restaurant_id == world.restaurant.id, RestaurantMember.user_id == world.waiter.id)
        .first()
    )
    member.is_active = False
    world.kitchen.active = False
    db.commit()

    for user in (world.waiter, world.kitchen):
        with pytest.raises(Forbidden):
            services.authorization.ensure_member(db, restaurant_id=world.restaurant.id, user_id=user.id)


def test_missing_user_is_forbidden():
    db, _services, world = build_world()

    with pytest.raises(Forbidden):
        AuthorizationService().ensure_member(db, restaurant_id=world.restaurant.id, user_id=None)


def test_only_managers_change_restaurant_settings():
    db, services, world = build_world()

    with pytest.raises(Forbidden):
        services.restaurants.update_workflow(db, world.restaurant.id, {"allow_status_skip": True}, world.waiter.id)

    restaurant = services.restaurants.update_workflow(
        db, world.restaurant.id, {"allow_status_skip": True}, world.owner.id
    )
    assert restaurant.workflow_settings["allow_status_skip"] is True
    assert restaurant.workflow_settings["order_flow"][0] == "received"
