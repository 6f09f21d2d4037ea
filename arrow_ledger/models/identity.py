"""
Identity Models

Users, passwords and sessions live with the identity provider.
The ledger only ever sees who is acting and in which role.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """
    Closed set of roles.

    taylor and dad each own one confirmation checkbox; admin owns everything.
    """
    ADMIN = "admin"
    TAYLOR = "taylor"
    DAD = "dad"


# Roles allowed through the coarse mutation gate
MUTATION_ROLES = frozenset({Role.ADMIN, Role.TAYLOR, Role.DAD})


class Actor(BaseModel):
    """The authenticated caller of a ledger operation."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(
        ...,
        min_length=1,
        description="Identity provider's user id"
    )
    role: Role = Field(
        ...,
        description="Role asserted by the identity provider"
    )
