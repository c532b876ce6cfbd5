import pytest

from storefront import errors, policy
from storefront.auth import Claims
from storefront.models import Role

USER = Claims(1, "ann", Role.USER, 0)
ADMIN = Claims(2, "root", Role.ADMIN, 0)


def test_role_requirement():
    need_admin = policy.RoleRequirement(Role.ADMIN)
    assert policy.authorize(ADMIN, need_admin).allowed

    decision = policy.authorize(USER, need_admin)
    assert not decision.allowed
    assert decision.error is errors.Forbidden


def test_ownership_denial_looks_like_absence():
    assert policy.authorize(USER, policy.OwnershipRequirement(1)).allowed

    decision = policy.authorize(USER, policy.OwnershipRequirement(2))
    assert not decision.allowed
    assert decision.error is errors.NotFound
    # admins do not bypass ownership either
    assert policy.authorize(ADMIN, policy.OwnershipRequirement(1)).error is errors.NotFound


@pytest.mark.parametrize("claims", [None, Claims(0, "", Role.USER, 0)])
def test_empty_identity_is_unauthenticated(claims):
    decision = policy.authorize(claims, policy.RoleRequirement(Role.USER))
    assert decision.error is errors.Unauthenticated


def test_require_raises_denial():
    with pytest.raises(errors.Forbidden):
        policy.require_admin(USER)
    with pytest.raises(errors.NotFound):
        policy.require(USER, policy.OwnershipRequirement(None))
    assert policy.require_admin(ADMIN) is ADMIN
