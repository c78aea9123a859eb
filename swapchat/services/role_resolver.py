"""
Role resolution for proposal permissions.

WHAT: Map the acting user to buyer, seller, or none for a conversation
WHY: Only the buyer may propose, only the seller may respond
HOW: Compare the user id against the exchange participants; permissions
     come from one table so every caller agrees
"""

from enum import Enum

from ..models.message import ExchangeParticipants
from ..utils.exceptions import Forbidden


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    NONE = "none"


class Permission(str, Enum):
    CREATE = "create"
    RESPOND = "respond"
    CANCEL = "cancel"
    VALIDATE = "validate"


ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.BUYER: frozenset({Permission.CREATE, Permission.CANCEL, Permission.VALIDATE}),
    Role.SELLER: frozenset({Permission.RESPOND, Permission.VALIDATE}),
    Role.NONE: frozenset(),
}


def resolve_role(current_user_id: str | None, participants: ExchangeParticipants) -> Role:
    """Buyer is the proposer, seller is the receiver, anyone else has no role."""
    if not current_user_id:
        return Role.NONE
    if current_user_id == participants.proposer_id:
        return Role.BUYER
    if current_user_id == participants.receiver_id:
        return Role.SELLER
    return Role.NONE


def permitted_actions(role: Role) -> dict[str, bool]:
    """Availability of every mutating action for a role."""
    allowed = ROLE_PERMISSIONS[role]
    return {permission.value: permission in allowed for permission in Permission}


def require_role(
    current_user_id: str | None,
    participants: ExchangeParticipants,
    permission: Permission,
) -> Role:
    """
    Resolve the role and check it grants permission.

    Raises:
        Forbidden: Role does not grant the permission
    """
    role = resolve_role(current_user_id, participants)
    if permission not in ROLE_PERMISSIONS[role]:
        raise Forbidden(permission.value, f"role '{role.value}' cannot {permission.value}")
    return role
