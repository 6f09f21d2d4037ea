"""Authorization package."""

from arrow_ledger.auth.permissions import (
    FIELD_OWNERS,
    PROTECTED_FIELDS,
    can_edit_field,
    denied_fields,
    require_mutation_role,
    require_role,
)

__all__ = [
    "FIELD_OWNERS",
    "PROTECTED_FIELDS",
    "can_edit_field",
    "denied_fields",
    "require_mutation_role",
    "require_role",
]
