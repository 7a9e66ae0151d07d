from enum import Enum

from pydantic import BaseModel

from hotelcore.errors import PermissionDenied


class Role(str, Enum):
    GUEST = "guest"
    ADMIN = "admin"


class Actor(BaseModel):
    """The caller, as supplied by the authentication layer in front of the API."""
    user_id: str
    role: Role = Role.GUEST

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise PermissionDenied("administrator role required")


def require_owner(actor: Actor, guest_id: str) -> None:
    if actor.user_id != guest_id:
        raise PermissionDenied("not authorized for this booking")


def require_owner_or_admin(actor: Actor, guest_id: str) -> None:
    if not actor.is_admin and actor.user_id != guest_id:
        raise PermissionDenied("not authorized for this booking")


SYSTEM = Actor(user_id="system", role=Role.ADMIN)
