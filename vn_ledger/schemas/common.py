"""
Schemas shared by every router: who is acting, and how a
paginated list is returned.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from vn_ledger.models.enums import Role

T = TypeVar("T")


class Actor(BaseModel):
    """The user on whose behalf an operation runs."""
    username: str = Field(min_length=1, max_length=100)
    role: Role = Role.ACCOUNTANT


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    limit: int
    offset: int
