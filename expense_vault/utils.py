"""
Small helpers shared by the expense aggregate and the audit trail.
"""

from typing import Any, Optional


def get_changed_fields(
    previous: Optional[dict[str, Any]],
    updated: Optional[dict[str, Any]],
) -> Optional[dict[str, Any]]:
    """
    Compare two snapshots key by key and return the keys that changed,
    mapped to their updated value.

    - Lists are compared as whole values; any difference reports the full list.
    - Nested dicts are compared recursively; a nested change reports the
      full updated dict.
    - An empty dict is still a snapshot; only None means "no snapshot".
    - Returns None when nothing changed.
    """
    if previous is None and updated is None:
        return None
    if previous is None:
        return dict(updated) or None
    if updated is None:
        return None

    changes: dict[str, Any] = {}

    for key in {**previous, **updated}:
        prev_value = previous.get(key)
        new_value = updated.get(key)

        if isinstance(prev_value, dict) and isinstance(new_value, dict):
            if get_changed_fields(prev_value, new_value):
                changes[key] = new_value
            continue

        if prev_value != new_value:
            changes[key] = new_value

    return changes or None
