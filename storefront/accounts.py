"""Account lifecycle: registration, login, profile edits, role changes and
cascading account deletion.

Deleting an account removes the user's orders (and their line items) in the
same transaction as the user row. Reviews written by the user stay, with
their author cleared, so product ratings do not move.
"""
import logging
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import errors, models, orders
from .auth import Claims, hash_password, issue_token, verify_password
from .db import transaction
from .models import Role
from .utils import sanitize_input

logger = logging.getLogger(__name__)

# (current role, requested role) pairs that may be applied
ROLE_TRANSITIONS = frozenset({(Role.USER, Role.ADMIN)})

MIN_USERNAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 6


def _valid_username(username: Optional[str]) -> str:
    name = (username or "").strip()
    if len(name) < MIN_USERNAME_LENGTH:
        raise errors.InvalidArgument(f"Username length is less than {MIN_USERNAME_LENGTH}")
    if sanitize_input(name) != name:
        raise errors.InvalidArgument("Username contains forbidden characters")
    return name


def _check_password(password: Optional[str]) -> None:
    if password is None or len(password) < MIN_PASSWORD_LENGTH:
        raise errors.InvalidArgument(f"Password length is less than {MIN_PASSWORD_LENGTH}")


def _username_taken(db: Session, username: str) -> bool:
    return db.scalar(select(models.User.id).where(models.User.username == username)) is not None


def _get_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise errors.NotFound("User not found")
    return user


def create_user(db: Session, username: str, password: str, role: Role = Role.USER) -> models.User:
    name = _valid_username(username)
    _check_password(password)
    with transaction(db, "create user"):
        if _username_taken(db, name):
            raise errors.Conflict("user already exists")
        user = models.User(username=name, password_hash=hash_password(password), role=Role(role))
        db.add(user)
        try:
            db.flush()
        except IntegrityError:
            raise errors.Conflict("user already exists") from None
    db.refresh(user)
    logger.info("user %s created with role %s", user.id, user.role.value)
    return user


def register(db: Session, username: str, password: str) -> models.User:
    """Self-service sign-up; always creates a plain user."""
    return create_user(db, username, password, Role.USER)


def login(db: Session, username: str, password: str) -> str:
    user = db.scalar(select(models.User).where(models.User.username == (username or "").strip()))
    if user is None or not verify_password(password or "", user.password_hash):
        logger.info("failed login for username %r", sanitize_input(username))
        raise errors.Unauthenticated("invalid credentials")
    return issue_token(user.id, user.username, user.role)


def get_user_info(db: Session, claims: Claims) -> models.User:
    return _get_user(db, claims.user_id)


def list_users(db: Session) -> List[models.User]:
    return list(db.scalars(select(models.User).order_by(models.User.id)).all())


def get_user(db: Session, user_id: int) -> models.User:
    return _get_user(db, user_id)


def update_username(db: Session, user_id: int, username: str) -> models.User:
    name = _valid_username(username)
    with transaction(db, "update username"):
        user = _get_user(db, user_id)
        if name != user.username:
            if _username_taken(db, name):
                raise errors.Conflict("Username already taken")
            user.username = name
            try:
                db.flush()
            except IntegrityError:
                raise errors.Conflict("Username already taken") from None
    db.refresh(user)
    return user


def update_password(db: Session, user_id: int, old_password: str, new_password: str) -> None:
    with transaction(db, "update password"):
        user = _get_user(db, user_id)
        if not verify_password(old_password or "", user.password_hash):
            raise errors.Unauthenticated("Old password is incorrect")
        _check_password(new_password)
        user.password_hash = hash_password(new_password)
    logger.info("user %s changed password", user_id)


def update_user_role(db: Session, target_user_id: int, new_role: str) -> models.User:
    """Apply a role change; only user -> admin is permitted."""
    try:
        requested = Role(new_role)
    except ValueError:
        raise errors.InvalidState("Role can only be updated to 'admin'") from None

    with transaction(db, "update user role"):
        user = _get_user(db, target_user_id)
        if (user.role, requested) not in ROLE_TRANSITIONS:
            raise errors.InvalidState("Role can only be updated from 'user' to 'admin'")
        user.role = requested
    db.refresh(user)
    logger.info("user %s promoted to %s", target_user_id, requested.value)
    return user


def _delete_account_rows(db: Session, user_id: int) -> None:
    removed = orders.purge_user_orders(db, user_id)
    db.execute(
        update(models.Review)
        .where(models.Review.user_id == user_id)
        .values(user_id=None)
        .execution_options(synchronize_session=False)
    )
    db.execute(delete(models.User).where(models.User.id == user_id))
    logger.info("user %s deleted together with %s orders", user_id, removed)


def delete_self(db: Session, claims: Claims) -> None:
    if claims.role == Role.ADMIN:
        raise errors.Forbidden("Administrators cannot delete themselves")
    with transaction(db, "delete own account"):
        user = _get_user(db, claims.user_id)
        if user.role == Role.ADMIN:
            raise errors.Forbidden("Administrators cannot delete themselves")
        _delete_account_rows(db, user.id)


def admin_delete_user(db: Session, target_user_id: int) -> None:
    with transaction(db, "delete user"):
        user = _get_user(db, target_user_id)
        if user.role != Role.USER:
            raise errors.InvalidState("Only users with role 'user' can be deleted")
        _delete_account_rows(db, user.id)
