"""Tests for role-based field authorization."""

import pytest

from arrow_ledger.auth import can_edit_field, denied_fields, require_role
from arrow_ledger.errors import Forbidden
from arrow_ledger.models import Actor, Role


# (field, role) -> allowed
EXPECTED = {
    ("confirmation_taylor", Role.ADMIN): True,
    ("confirmation_taylor", Role.TAYLOR): True,
    ("confirmation_taylor", Role.DAD): False,
    ("confirmation_dad", Role.ADMIN): True,
    ("confirmation_dad", Role.TAYLOR): False,
    ("confirmation_dad", Role.DAD): True,
}


class TestCanEditField:
    """The full field x role matrix."""

    @pytest.mark.parametrize("field,role", sorted(EXPECTED, key=str))
    def test_protected_fields(self, field, role):
        assert can_edit_field(field, role) is EXPECTED[(field, role)]

    @pytest.mark.parametrize("field", ["date", "category", "amount", "notes"])
    @pytest.mark.parametrize("role", list(Role))
    def test_unprotected_fields_open_to_every_role(self, field, role):
        assert can_edit_field(field, role) is True

    def test_role_given_as_string(self):
        assert can_edit_field("confirmation_dad", "dad") is True
        assert can_edit_field("confirmation_dad", "taylor") is False

    @pytest.mark.parametrize("role", ["guest", "", None, 42, "ADMIN"])
    def test_unknown_role_denied_everything(self, role):
        assert can_edit_field("notes", role) is False
        assert can_edit_field("confirmation_taylor", role) is False

    @pytest.mark.parametrize("field", [None, 3, ("confirmation_dad",), ""])
    def test_odd_field_names_never_raise(self, field):
        assert can_edit_field(field, Role.TAYLOR) is True


class TestDeniedFields:
    """Helper used by update to reject a whole request."""

    def test_reports_only_forbidden_protected_fields(self):
        fields = ["notes", "confirmation_taylor", "confirmation_dad"]
        assert denied_fields(fields, Role.TAYLOR) == ["confirmation_dad"]
        assert denied_fields(fields, Role.DAD) == ["confirmation_taylor"]
        assert denied_fields(fields, Role.ADMIN) == []

    def test_sorted_output(self):
        assert denied_fields(["confirmation_taylor", "confirmation_dad"], "guest") == [
            "confirmation_dad",
            "confirmation_taylor",
        ]


class TestRequireRole:
    """Coarse role gates."""

    def test_admin_passes(self):
        require_role(Actor(user_id="a", role=Role.ADMIN), Role.ADMIN)

    @pytest.mark.parametrize("role", [Role.TAYLOR, Role.DAD])
    def test_others_forbidden(self, role):
        with pytest.raises(Forbidden):
            require_role(Actor(user_id="u", role=role), Role.ADMIN)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
