import pytest

from auth import POLICY, Requester, authorize, ensure_community, requester_from_token
from errors import AuthorizationError
from tests.conftest import COMMUNITY, make_token


@pytest.mark.parametrize("operation", sorted(op for op, roles in POLICY.items() if roles == {"admin"}))
def test_admin_only_operations_refuse_residents(operation):
    with pytest.raises(AuthorizationError):
        authorize(Requester("alice", "resident", COMMUNITY), operation)
    authorize(Requester("admin-1", "admin", COMMUNITY), operation)


@pytest.mark.parametrize("role", ["admin", "security"])
def test_only_residents_book(role):
    with pytest.raises(AuthorizationError):
        authorize(Requester("u", role, COMMUNITY), "facility.book")
    with pytest.raises(AuthorizationError):
        authorize(Requester("u", role, COMMUNITY), "parking.request_guest")


def test_security_can_read():
    for op in ("facility.list", "facility.read", "parking.list", "parking.read"):
        authorize(Requester("guard", "security", COMMUNITY), op)


def test_unknown_operation_is_denied():
    with pytest.raises(AuthorizationError):
        authorize(Requester("admin-1", "admin", COMMUNITY), "facility.delete")


def test_ensure_community():
    ensure_community(Requester("alice", "resident", COMMUNITY), {"community_id": COMMUNITY})
    with pytest.raises(AuthorizationError):
        ensure_community(Requester("alice", "resident", "other"), {"community_id": COMMUNITY})
    with pytest.raises(AuthorizationError):
        ensure_community(Requester("alice", "resident", None), {"community_id": COMMUNITY})


def test_requester_from_token():
    requester = requester_from_token(make_token("alice", "resident"))
    assert requester == Requester("alice", "resident", COMMUNITY)
