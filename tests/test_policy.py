from types import SimpleNamespace

import pytest

from library_system.errors import Forbidden
from library_system.utils import policy

ADMIN = SimpleNamespace(id=1, role="admin", is_active=True)
MEMBER = SimpleNamespace(id=2, role="member", is_active=True)
OTHER = SimpleNamespace(id=3, role="member", is_active=True)
INACTIVE_ADMIN = SimpleNamespace(id=4, role="admin", is_active=False)

MINE = SimpleNamespace(user_id=2)


@pytest.mark.parametrize("action", ["transaction:issue", "transaction:return", "book:create", "admin:dashboard"])
def test_staff_only_actions(action):
    assert policy.can(ADMIN, action)
    assert not policy.can(MEMBER, action)


def test_owner_may_renew_and_view():
    for action in ("transaction:renew", "transaction:view"):
        assert policy.can(MEMBER, action, MINE)
        assert not policy.can(OTHER, action, MINE)
        assert policy.can(ADMIN, action, MINE)


def test_ownership_needs_a_resource():
    assert not policy.can(MEMBER, "transaction:renew")
    assert policy.requires_resource("transaction:renew")
    assert not policy.requires_resource("transaction:issue")


def test_inactive_and_missing_actors_are_denied():
    assert not policy.can(INACTIVE_ADMIN, "transaction:issue")
    assert not policy.can(None, "book:stats")


def test_unknown_action_is_denied():
    assert not policy.can(ADMIN, "book:burn")


def test_require_raises_with_action_message():
    with pytest.raises(Forbidden, match="renew your own"):
        policy.require(OTHER, "transaction:renew", MINE)
    policy.require(MEMBER, "transaction:renew", MINE)
