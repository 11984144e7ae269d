"""Role-Based Access Control (RBAC) utilities.

Roles are flat (no hierarchy): every route lists the roles it accepts and
passes the acting role on to the services explicitly.
"""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from app.core.errors import Forbidden
from app.core.security import decode_access_token


class UserRole(str, Enum):
    """User roles for RBAC."""

    ADMIN = "admin"
    WAITER = "waiter"
    KITCHEN = "kitchen"


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The user's database ID.
        username: Login name, used in logs only.
        role: The user's role (admin/waiter/kitchen).
    """

    def __init__(self, user_id: int, username: str, role: UserRole):
        self.user_id = user_id
        self.username = username
        self.role = role


def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            return token
    return request.cookies.get("access_token")


async def get_current_user(request: Request) -> TokenData:
    """Get the current authenticated user from JWT token.

    Checks the ``Authorization: Bearer`` header first, then the
    ``access_token`` cookie.
    """
    token = _token_from_request(request)
    payload = decode_access_token(token) if token else None

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        user_role = UserRole(role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role in token",
        )

    return TokenData(
        user_id=int(user_id),
        username=payload.get("username") or str(user_id),
        role=user_role,
    )


def require_roles(*roles: UserRole):
    """Dependency that admits only the listed roles."""
    allowed = frozenset(roles)

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of roles: {', '.join(sorted(r.value for r in allowed))}",
            )
        return current_user

    return role_checker


# Common role dependencies
RequireAdmin = Annotated[TokenData, Depends(require_roles(UserRole.ADMIN))]
RequireFloor = Annotated[TokenData, Depends(require_roles(UserRole.WAITER, UserRole.ADMIN))]
RequireCook = Annotated[TokenData, Depends(require_roles(UserRole.KITCHEN, UserRole.ADMIN))]
RequireAnyStaff = Annotated[
    TokenData, Depends(require_roles(UserRole.KITCHEN, UserRole.WAITER, UserRole.ADMIN))
]


def ensure_role(role: UserRole, allowed: frozenset, action: str) -> None:
    """Service-side role check; raises the domain ``Forbidden``."""
    if UserRole(role) not in allowed:
        raise Forbidden(f"Role '{UserRole(role).value}' is not allowed to {action}")
