"""Field-level deltas for audit entries."""

from typing import Any, Mapping

_MISSING = object()


def diff_snapshots(before: Mapping[str, Any], after: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """
    Shallow diff of two snapshots.

    Returns {field: {"from": old, "to": new}} for every key of `after`
    whose value differs from `before`. Keys only present in `before` are
    ignored. A key missing from `before` reports "from" as None.
    """
    changes = {}
    for key, new_value in after.items():
        old_value = before.get(key, _MISSING)
        if old_value is _MISSING or old_value != new_value:
            changes[key] = {
                "from": None if old_value is _MISSING else old_value,
                "to": new_value,
            }
    return changes
