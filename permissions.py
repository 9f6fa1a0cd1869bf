"""
Ownership rule for mutating owned resources.

Handlers fetch the resource first (ensure_found) and only then call
authorize(); a missing resource is always NotFound, never PermissionDenied.
"""

from enum import Enum
from typing import Any, Optional

from auth import Caller
from errors import NotFound, PermissionDenied


class Access(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    DENY = "deny"


def canonical_id(value: Any) -> Optional[str]:
    """Single string form for ObjectIds, strings and embedded ids."""
    if value is None:
        return None
    return str(value).strip()


def decide(caller: Caller, owner_id: Any) -> Access:
    if caller.is_admin:
        return Access.ADMIN
    owner = canonical_id(owner_id)
    if owner is not None and canonical_id(caller.id) == owner:
        return Access.OWNER
    return Access.DENY


def authorize(caller: Caller, owner_id: Any, custom_message: str = "You don't have permission to change this resource.") -> Access:
    access = decide(caller, owner_id)
    if access is Access.DENY:
        raise PermissionDenied(custom_message)
    return access


def ensure_found(doc: Optional[dict], custom_message: str) -> dict:
    if not doc:
        raise NotFound(custom_message)
    return doc
