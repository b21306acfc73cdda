"""Flatten partial student updates into dotted-path patches.

An update payload may carry these groups next to plain top-level fields:

- ``name``, ``guardian``, ``local_guardian``: nested sub-records. Each key
  becomes ``"<group>.<key>"`` so only that sub-field is replaced.
- ``student``: a pass-through container. Its keys are applied as top-level
  fields, without a prefix.

Any other top-level key is a direct field update. Keys inside a group are
not checked here; request schemas and the repository validators do that.
"""

from typing import Any, Callable, Dict, Mapping, Optional

Patch = Dict[str, Any]


def flatten_nested(group: str, values: Mapping[str, Any]) -> Patch:
    """Prefix every key of a sub-record group with the group name."""
    return {f"{group}.{key}": value for key, value in values.items()}


def flatten_core(values: Mapping[str, Any]) -> Patch:
    """Pass `student` group keys through as top-level field updates."""
    return dict(values)


GROUP_FLATTENERS: Dict[str, Callable[[Mapping[str, Any]], Patch]] = {
    "student": flatten_core,
    "name": lambda values: flatten_nested("name", values),
    "guardian": lambda values: flatten_nested("guardian", values),
    "local_guardian": lambda values: flatten_nested("local_guardian", values),
}

# later entries win when two groups write the same path
_MERGE_ORDER = ("student", None, "name", "guardian", "local_guardian")


def flatten_student_update(payload: Mapping[str, Any]) -> Patch:
    """Return the flat patch for a partial student update.

    >>> flatten_student_update({"name": {"first_name": "A"}, "student": {"blood_group": "O+"}})
    {'blood_group': 'O+', 'name.first_name': 'A'}
    """
    direct = {key: value for key, value in payload.items() if key not in GROUP_FLATTENERS}
    patch: Patch = {}
    for group in _MERGE_ORDER:
        if group is None:
            patch.update(direct)
            continue
        values: Optional[Mapping[str, Any]] = payload.get(group)
        if values:
            patch.update(GROUP_FLATTENERS[group](values))
    return patch
