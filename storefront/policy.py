"""Allow/deny decisions for verified identities.

Two kinds of requirement exist: a role requirement (the caller must hold a
given role) and an ownership requirement (the caller must be the owning
user). A failed ownership check is reported as ``NotFound`` so callers can
not discover other users' resources.
"""
import logging
from typing import NamedTuple, Optional, Type, Union

from . import errors
from .auth import Claims
from .models import Role

logger = logging.getLogger(__name__)


class RoleRequirement(NamedTuple):
    role: Role


class OwnershipRequirement(NamedTuple):
    owner_id: Optional[int]


Requirement = Union[RoleRequirement, OwnershipRequirement]


class Decision(NamedTuple):
    allowed: bool
    reason: Optional[str] = None
    error: Optional[Type[errors.StorefrontError]] = None

    def raise_if_denied(self):
        if not self.allowed:
            raise self.error(self.reason)


ALLOW = Decision(True)


def authorize(claims: Optional[Claims], requirement: Requirement) -> Decision:
    if claims is None or not claims.user_id:
        return Decision(False, "unauthorized", errors.Unauthenticated)

    if isinstance(requirement, RoleRequirement):
        if claims.role != requirement.role:
            logger.info("user %s denied: %s role required", claims.user_id, requirement.role.value)
            return Decision(False, "forbidden", errors.Forbidden)
        return ALLOW

    if isinstance(requirement, OwnershipRequirement):
        if requirement.owner_id is None or claims.user_id != requirement.owner_id:
            return Decision(False, "not found", errors.NotFound)
        return ALLOW

    raise TypeError(f"unknown requirement {requirement!r}")


def require(claims: Optional[Claims], requirement: Requirement) -> Claims:
    authorize(claims, requirement).raise_if_denied()
    return claims


def require_admin(claims: Optional[Claims]) -> Claims:
    return require(claims, RoleRequirement(Role.ADMIN))
