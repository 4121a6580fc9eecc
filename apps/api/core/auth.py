"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- Getting current authenticated user
- A request-scoped RequestContext passed explicitly into services
- Capability-based access control per Role
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import AuthenticationError, AuthorizationError
from core.security import decode_access_token
from models import Role, User

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


class Capability(str, enum.Enum):
    MANAGE_OWN_GOALS = "goals.own"
    CLAIM_GOALS = "goals.claim"
    REVIEW_SUBMISSIONS = "submissions.review"
    ADMINISTER = "admin"


_ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.STUDENT: frozenset({Capability.MANAGE_OWN_GOALS}),
    Role.INSTRUCTOR: frozenset({
        Capability.MANAGE_OWN_GOALS,
        Capability.CLAIM_GOALS,
        Capability.REVIEW_SUBMISSIONS,
    }),
    # Superuser override
    Role.ADMIN: frozenset(Capability),
}


def capabilities_for(role: Role) -> frozenset[Capability]:
    """Capabilities granted to a role. Unknown roles get nothing and raise."""
    try:
        return _ROLE_CAPABILITIES[Role(role)]
    except (KeyError, ValueError):
        raise AuthorizationError(f"Unknown role: {role}")


@dataclass(frozen=True)
class RequestContext:
    """Who is calling. Built once per request and handed to every service call."""

    user_id: UUID
    role: Role
    email: Optional[str] = None

    def can(self, capability: Capability) -> bool:
        return capability in capabilities_for(self.role)

    def require(self, capability: Capability) -> None:
        if not self.can(capability):
            raise AuthorizationError(f"Access denied. Missing capability: {capability.value}")

    @classmethod
    def for_user(cls, user: User) -> "RequestContext":
        return cls(user_id=user.id, role=Role(user.role), email=user.email)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from JWT token.

    Raises AuthenticationError if token is invalid or user not found.
    """
    if not credentials:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    try:
        user_id_uuid = UUID(user_id)
    except ValueError:
        raise AuthenticationError("Invalid user ID format")

    user = db.query(User).filter(User.id == user_id_uuid).first()
    if not user:
        raise AuthenticationError("User not found")

    return user


def get_request_context(current_user: User = Depends(get_current_user)) -> RequestContext:
    """Role is read from the user row, not the token, so promotions apply immediately."""
    return RequestContext.for_user(current_user)


def require_capability(capability: Capability):
    """
    Dependency factory for capability-based access control.

    Usage:
        @router.put("/instructor/goals/{goal_id}")
        def claim(ctx: RequestContext = Depends(require_capability(Capability.CLAIM_GOALS))):
            ...
    """
    def capability_checker(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        ctx.require(capability)
        return ctx

    return capability_checker


def require_role(*roles: Role):
    """
    Dependency factory for role gates. ADMIN passes every gate.

    Usage:
        @router.get("/instructor/pending-goals")
        def pending(ctx: RequestContext = Depends(require_role(Role.INSTRUCTOR))):
            ...
    """
    allowed = frozenset(Role(r) for r in roles)

    def role_checker(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if ctx.role is not Role.ADMIN and ctx.role not in allowed:
            raise AuthorizationError(
                f"Access denied. Required role: {', '.join(sorted(r.value for r in allowed))}"
            )
        return ctx

    return role_checker


def require_admin(
    ctx: RequestContext = Depends(require_capability(Capability.ADMINISTER))
) -> RequestContext:
    """Require admin role."""
    return ctx
