"""
Role-Based Field Authorization

Two gates:
1. Coarse: only mutation-capable roles may change the ledger at all.
2. Fine: the confirmation checkboxes belong to one role each (plus admin).

DESIGN DECISION: The fine gate is one total, pure function over
(field, role). No exceptions, no I/O, so the whole matrix can be
checked exhaustively in tests.
"""

from typing import Optional, Union

from arrow_ledger.errors import Forbidden
from arrow_ledger.models.identity import MUTATION_ROLES, Actor, Role
from arrow_ledger.models.transaction import ConfirmationField


# Protected field -> the one non-admin role allowed to set it
FIELD_OWNERS: dict[str, Role] = {
    ConfirmationField.TAYLOR.value: Role.TAYLOR,
    ConfirmationField.DAD.value: Role.DAD,
}

PROTECTED_FIELDS = frozenset(FIELD_OWNERS)


def _coerce_role(role: Union[Role, str]) -> Optional[Role]:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except (ValueError, TypeError):
        return None


def can_edit_field(field_name: str, role: Union[Role, str]) -> bool:
    """
    May `role` set `field_name`?

    Unknown roles are denied everything. Unprotected fields are open to
    every mutation-capable role.
    """
    resolved = _coerce_role(role)
    if resolved is None:
        return False
    if resolved is Role.ADMIN:
        return True
    owner = FIELD_OWNERS.get(field_name) if isinstance(field_name, str) else None
    if owner is None:
        return resolved in MUTATION_ROLES
    return resolved is owner


def require_mutation_role(actor: Actor) -> None:
    """Raise Forbidden unless the actor may mutate the ledger."""
    if actor.role not in MUTATION_ROLES:
        raise Forbidden("Not authorized")


def require_role(actor: Actor, role: Role) -> None:
    """Raise Forbidden unless the actor holds exactly `role`."""
    if actor.role is not role:
        raise Forbidden("Not authorized")


def denied_fields(field_names, role: Union[Role, str]) -> list[str]:
    """Protected fields among `field_names` that `role` may not set."""
    return sorted(
        name for name in field_names
        if name in PROTECTED_FIELDS and not can_edit_field(name, role)
    )
