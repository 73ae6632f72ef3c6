"""
Bearer token verification and the role policy.

Tokens are issued by the accounts service; here we only verify them and
read `sub`, `role` and `community_id`. Which role may run which operation
is a single table, POLICY, checked by the `require(operation)` dependency.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from errors import AuthorizationError

logger = logging.getLogger("urbangate.auth")

bearer_scheme = HTTPBearer(auto_error=False)

ROLES = ("resident", "admin", "security")

ANYONE: FrozenSet[str] = frozenset(ROLES)
ADMIN: FrozenSet[str] = frozenset({"admin"})
RESIDENT: FrozenSet[str] = frozenset({"resident"})

POLICY: Dict[str, FrozenSet[str]] = {
    "facility.create": ADMIN,
    "facility.list": ANYONE,
    "facility.read": ANYONE,
    "facility.book": RESIDENT,
    "facility.confirm": ADMIN,
    "facility.cancel": ADMIN,
    "parking.list": ANYONE,
    "parking.read": ANYONE,
    "parking.create": ADMIN,
    "parking.assign": ADMIN,
    "parking.my_slot": RESIDENT,
    "parking.request_guest": RESIDENT,
    "parking.approve_guest": ADMIN,
    "parking.reject_guest": ADMIN,
}


@dataclass(frozen=True)
class Requester:
    user_id: str
    role: str
    community_id: Optional[str] = None


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def requester_from_token(token: str) -> Requester:
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    community_id = payload.get("community_id")
    return Requester(user_id=str(user_id), role=role, community_id=str(community_id) if community_id else None)


def get_requester(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Requester:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
    return requester_from_token(creds.credentials)


def authorize(requester: Requester, operation: str) -> None:
    allowed = POLICY.get(operation, frozenset())
    if requester.role not in allowed:
        logger.info("Denied %s to %s (%s)", operation, requester.user_id, requester.role)
        raise AuthorizationError("Access denied", {"role": requester.role, "allowed_roles": sorted(allowed)})


def require(operation: str):
    """FastAPI dependency: the verified requester, if POLICY lets their role run `operation`."""
    def dependency(requester: Requester = Depends(get_requester)) -> Requester:
        authorize(requester, operation)
        return requester

    return dependency


def ensure_community(requester: Requester, resource: Dict[str, Any]) -> None:
    if not requester.community_id or requester.community_id != resource.get("community_id"):
        raise AuthorizationError("Resource belongs to another community")


def community_of(requester: Requester) -> str:
    if not requester.community_id:
        raise AuthorizationError("You are not a member of any community")
    return requester.community_id
