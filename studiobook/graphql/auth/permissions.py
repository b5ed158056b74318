from strawberry.types import Info
from strawberry.permission import BasePermission

from studiobook.auth.actor import Actor
from studiobook.core.exceptions import ForbiddenError


class IsAuthenticated(BasePermission):
    message = "Authentication required."

    def has_permission(self, source, info: Info, **kwargs):
        return bool(info.context.actor)


class IsStaff(BasePermission):
    message = "Staff access required."

    def has_permission(self, source, info: Info, **kwargs):
        actor = info.context.actor
        return bool(actor and actor.is_staff)


def ensure_can_act_for(actor: Actor, client_id: int) -> None:
    """Clients may only act on their own bookings and plans"""
    if not actor.can_act_for(client_id):
        raise ForbiddenError("Clients can only act on their own behalf", details={"client_id": client_id})


def ensure_staff(actor: Actor) -> None:
    """Raise FORBIDDEN unless the actor is staff"""
    if not (actor and actor.is_staff):
        raise ForbiddenError("Staff access required")
