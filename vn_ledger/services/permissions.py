"""Role checks shared by the services."""

from vn_ledger.errors import PermissionDenied
from vn_ledger.models.enums import Role, ELEVATED_ROLES
from vn_ledger.schemas.common import Actor


def require_role(actor: Actor, allowed, action: str) -> None:
    if actor.role not in allowed:
        raise PermissionDenied(
            f"{action} requires one of: "
            + ", ".join(sorted(r.value for r in allowed)),
            action=action,
            actor=actor.username,
            role=actor.role,
        )


def require_elevated(actor: Actor, action: str) -> None:
    require_role(actor, ELEVATED_ROLES, action)


def require_admin(actor: Actor, action: str) -> None:
    require_role(actor, {Role.ADMIN}, action)
