"""
Actors and edit authorization.

Credential verification happens upstream; by the time a request reaches
the engine it carries an actor id, which is resolved here to a role.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from .errors import AuthenticationError, AuthorizationError

PRIVILEGED_ROLES = ("admin", "moderator")

# Owner permission flag required to touch each venue field.
VENUE_FIELD_PERMISSIONS = {
    "name": "can_edit_info",
    "address": "can_edit_info",
    "zone": "can_edit_info",
    "category": "can_edit_info",
    "description": "can_edit_info",
    "phone": "can_edit_info",
    "website": "can_edit_info",
    "ladydrink": "can_edit_pricing",
    "barfine": "can_edit_pricing",
    "rooms": "can_edit_pricing",
    "logo_url": "can_edit_photos",
}


@dataclass(frozen=True)
class Actor:
    id: str
    role: str = "user"
    account_type: Optional[str] = None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def resolve_actor(store, actor_id: Optional[str]) -> Actor:
    """Look up the actor's role. Raises AuthenticationError for unknown ids."""
    if not actor_id:
        raise AuthenticationError("Authentication required")
    user = store.get_user(actor_id)
    if user is None:
        raise AuthenticationError("Unknown actor")
    return Actor(id=user["id"], role=user["role"], account_type=user.get("account_type"))


def require_privileged(actor: Actor, action: str = "moderate content") -> None:
    if not actor.is_privileged:
        raise AuthorizationError(f"Only admins and moderators can {action}")


def is_venue_owner(store, user_id: str, venue_id: str) -> bool:
    return store.get_venue_owner(user_id, venue_id) is not None


def owner_permissions(store, user_id: str, venue_id: str) -> Dict[str, bool]:
    """Permission flags of an owner, empty when the user does not own the venue."""
    ownership = store.get_venue_owner(user_id, venue_id)
    if ownership is None:
        return {}
    return dict(ownership.get("permissions") or {})


def authorize_worker_edit(actor: Actor, worker: dict) -> None:
    """Creator, linked self account, or privileged actor."""
    if actor.is_privileged:
        return
    if actor.id in (worker.get("created_by"), worker.get("user_id")):
        return
    raise AuthorizationError("Not authorized to update this worker")


def authorize_venue_edit(store, actor: Actor, venue: dict, fields: Iterable[str]) -> None:
    """
    Creator, privileged actor, or an owner holding every permission the
    touched fields require.
    """
    if actor.is_privileged or actor.id == venue.get("created_by"):
        return

    permissions = owner_permissions(store, actor.id, venue["id"])
    if not permissions:
        raise AuthorizationError("Not authorized to update this venue")

    missing = sorted({
        VENUE_FIELD_PERMISSIONS[f]
        for f in fields
        if f in VENUE_FIELD_PERMISSIONS and not permissions.get(VENUE_FIELD_PERMISSIONS[f])
    })
    if missing:
        raise AuthorizationError(f"Missing owner permission: {', '.join(missing)}")
