"""
Dependencies shared by the routers.

Authentication happens in front of this service; the caller's
identity arrives in the X-Actor and X-Actor-Role headers.
"""

from fastapi import Header, HTTPException

from vn_ledger.errors import LedgerError
from vn_ledger.models.enums import Role
from vn_ledger.schemas.common import Actor


def get_actor(
    x_actor: str = Header(default="system", alias="X-Actor"),
    x_actor_role: Role = Header(default=Role.ACCOUNTANT, alias="X-Actor-Role"),
) -> Actor:
    return Actor(username=x_actor, role=x_actor_role)


def http_error(error: ValueError) -> HTTPException:
    """Map a service error to an HTTP error that names the failed rule."""
    if isinstance(error, LedgerError):
        return HTTPException(status_code=error.status_code, detail=error.to_detail())
    return HTTPException(status_code=400, detail=str(error))
