import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from storefront import accounts, catalog, errors, models, orders, schemas
from storefront.auth import verify_token
from storefront.models import Role

from conftest import claims_for


def count(db, model, *where):
    return db.scalar(select(func.count()).select_from(model).where(*where))


def test_register_login_promote_scenario(db_session, make_user):
    root = make_user("root", "rootpass", Role.ADMIN)
    ann = accounts.register(db_session, "ann", "password1")
    assert ann.role is Role.USER

    claims = verify_token(accounts.login(db_session, "ann", "password1"))
    assert (claims.user_id, claims.role) == (ann.id, Role.USER)

    promoted = accounts.update_user_role(db_session, ann.id, "admin")
    assert promoted.role is Role.ADMIN
    with pytest.raises(errors.InvalidState):
        accounts.update_user_role(db_session, ann.id, "admin")

    assert verify_token(accounts.login(db_session, "ann", "password1")).role is Role.ADMIN
    assert root.role is Role.ADMIN


@pytest.mark.parametrize("current,requested", [
    (Role.ADMIN, "user"),
    (Role.ADMIN, "admin"),
    (Role.USER, "user"),
    (Role.USER, "superuser"),
    (Role.USER, ""),
])
def test_only_user_to_admin_is_allowed(db_session, make_user, current, requested):
    target = make_user("target", role=current)
    with pytest.raises(errors.InvalidState):
        accounts.update_user_role(db_session, target.id, requested)
    assert accounts.get_user(db_session, target.id).role is current


def test_role_change_of_missing_user(db_session):
    with pytest.raises(errors.NotFound):
        accounts.update_user_role(db_session, 404, "admin")


def test_register_validation(db_session):
    accounts.register(db_session, "ann", "password1")
    with pytest.raises(errors.Conflict):
        accounts.register(db_session, "ann", "another-pass")
    with pytest.raises(errors.InvalidArgument):
        accounts.register(db_session, "a", "password1")
    with pytest.raises(errors.InvalidArgument):
        accounts.register(db_session, "bob", "short")
    with pytest.raises(errors.InvalidArgument):
        accounts.register(db_session, "<b>bob</b>", "password1")
    assert [u.username for u in accounts.list_users(db_session)] == ["ann"]


def test_login_failures_look_the_same(db_session, make_user):
    make_user("ann", "password1")
    with pytest.raises(errors.Unauthenticated) as wrong_password:
        accounts.login(db_session, "ann", "password2")
    with pytest.raises(errors.Unauthenticated) as unknown_user:
        accounts.login(db_session, "nobody", "password1")
    assert wrong_password.value.message == unknown_user.value.message


def test_update_username(db_session, make_user):
    ann, bob = make_user("ann"), make_user("bob")
    assert accounts.update_username(db_session, ann.id, "annie").username == "annie"
    with pytest.raises(errors.Conflict):
        accounts.update_username(db_session, ann.id, "bob")
    with pytest.raises(errors.InvalidArgument):
        accounts.update_username(db_session, ann.id, "x")
    assert accounts.update_username(db_session, bob.id, "bob").username == "bob"


def test_update_password(db_session, make_user):
    ann = make_user("ann", "password1")
    with pytest.raises(errors.Unauthenticated) as exc:
        accounts.update_password(db_session, ann.id, "wrong-old", "password2")
    assert "wrong-old" not in exc.value.message
    assert "password2" not in exc.value.message

    with pytest.raises(errors.InvalidArgument):
        accounts.update_password(db_session, ann.id, "password1", "short")

    accounts.update_password(db_session, ann.id, "password1", "password2")
    assert accounts.login(db_session, "ann", "password2")
    with pytest.raises(errors.Unauthenticated):
        accounts.login(db_session, "ann", "password1")


def seed_account(db, make_user, make_product, username="ann"):
    user = make_user(username)
    p = make_product(f"Whey-{username}")
    first = orders.create_order(db, user.id, [schemas.ProductInOrder(product_id=p.id, quantity=2)])
    second = orders.create_order(db, user.id, [schemas.ProductInOrder(product_id=p.id, quantity=1)])
    catalog.create_review(db, p.id, user.id, "solid", 4)
    return user, p, [first, second]


def test_delete_self_cascades(db_session, make_user, make_product):
    user, p, order_ids = seed_account(db_session, make_user, make_product)
    other, _, other_orders = seed_account(db_session, make_user, make_product, "bob")
    user_id = user.id

    accounts.delete_self(db_session, claims_for(user))

    with pytest.raises(errors.NotFound):
        accounts.get_user(db_session, user_id)
    assert count(db_session, models.Order, models.Order.user_id == user_id) == 0
    assert count(db_session, models.OrderProduct, models.OrderProduct.order_id.in_(order_ids)) == 0
    # the review survives anonymously and the rating is untouched
    reviews = catalog.list_reviews(db_session, p.id)
    assert [(r.user_id, r.rating) for r in reviews] == [(None, 4)]
    assert catalog.get_product(db_session, p.id).rating == 4.0

    assert [o.id for o in orders.list_user_orders(db_session, other.id)] == other_orders


def test_admin_cannot_delete_self(db_session, make_user):
    root = make_user("root", role=Role.ADMIN)
    with pytest.raises(errors.Forbidden):
        accounts.delete_self(db_session, claims_for(root))
    assert accounts.get_user(db_session, root.id).id == root.id


def test_delete_self_is_atomic(db_session, make_user, make_product, monkeypatch):
    user, _, order_ids = seed_account(db_session, make_user, make_product)
    real_purge = orders.purge_user_orders

    def purge_then_fail(db, user_id):
        real_purge(db, user_id)
        raise SQLAlchemyError("forced failure")

    monkeypatch.setattr(orders, "purge_user_orders", purge_then_fail)
    with pytest.raises(errors.Internal):
        accounts.delete_self(db_session, claims_for(user))

    assert accounts.get_user(db_session, user.id).id == user.id
    assert [o.id for o in orders.list_user_orders(db_session, user.id)] == order_ids
    assert count(db_session, models.OrderProduct, models.OrderProduct.order_id.in_(order_ids)) == 2


def test_admin_delete_user(db_session, make_user, make_product):
    user, _, order_ids = seed_account(db_session, make_user, make_product)
    user_id = user.id
    accounts.admin_delete_user(db_session, user_id)
    with pytest.raises(errors.NotFound):
        accounts.get_user(db_session, user_id)
    assert count(db_session, models.OrderProduct, models.OrderProduct.order_id.in_(order_ids)) == 0

    with pytest.raises(errors.NotFound):
        accounts.admin_delete_user(db_session, user_id)


def test_admin_delete_refuses_admins(db_session, make_user):
    other_admin = make_user("ops", role=Role.ADMIN)
    with pytest.raises(errors.InvalidState):
        accounts.admin_delete_user(db_session, other_admin.id)
    assert accounts.get_user(db_session, other_admin.id).role is Role.ADMIN


def test_get_user_info(db_session, make_user):
    ann = make_user("ann")
    assert accounts.get_user_info(db_session, claims_for(ann)).username == "ann"
