"""
Identity context: the authenticated principal for one request.
Token verification happens upstream; the gateway forwards the principal as X-User-* headers
and they are trusted verbatim.
"""
from typing import get_args

from fastapi import Header, HTTPException

from orderflow.models import Role, UserSnapshot

ROLES: frozenset[str] = frozenset(get_args(Role))
ADMIN_ROLES: frozenset[str] = frozenset({"admin", "developer", "technician"})


class Actor(UserSnapshot):
    """The caller. Doubles as the snapshot copied into an order (client, deliverer)."""

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def snapshot(self) -> UserSnapshot:
        return UserSnapshot.model_validate(self.model_dump())


async def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    x_user_firstname: str = Header(default=""),
    x_user_lastname: str = Header(default=""),
    x_user_email: str = Header(default=""),
    x_user_phone: str = Header(default=""),
) -> Actor:
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Authentication required")
    if x_user_role not in ROLES:
        raise HTTPException(status_code=401, detail=f"Unknown role {x_user_role!r}")
    return Actor(
        id=x_user_id,
        role=x_user_role,
        firstname=x_user_firstname,
        lastname=x_user_lastname,
        email=x_user_email,
        phone=x_user_phone,
    )
