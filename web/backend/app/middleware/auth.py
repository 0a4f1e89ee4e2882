"""Auth middleware -- FastAPI dependencies for extracting the calling user.

Authentication happens at the gateway in front of this service, which
forwards the verified identity in two headers:

1. ``X-User-Id: <id>``
2. ``X-User-Role: user | admin`` (defaults to ``user``)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


async def get_optional_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> Optional[CurrentUser]:
    """Return the forwarded user, or ``None`` for anonymous requests."""
    if not x_user_id or not x_user_id.strip():
        return None
    return CurrentUser(id=x_user_id.strip(), role=(x_user_role or "user").strip().lower())


async def get_current_user(
    user: Optional[CurrentUser] = Depends(get_optional_user),
) -> CurrentUser:
    """Same as ``get_optional_user`` but raises ``401`` for anonymous requests."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Raise ``403`` unless the caller has the admin role."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user
