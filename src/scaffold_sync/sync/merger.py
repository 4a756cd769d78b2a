"""Structured deep merges over generic value trees.

Two algorithms, both pure (no I/O, inputs never modified):

* ``merge_deep``      -- two-way merge used when no base snapshot exists.
  Every user value survives, including keys the template no longer
  declares, because there is no way to tell an edited value from an
  untouched default.
* ``merge_three_way`` -- uses the template state of the previous sync as
  a *base*.  Untouched defaults (``old == base``) follow the template,
  edited values are preserved, and keys the template removed are dropped.

In both, keys marked ``ALWAYS_NEW`` in the ``FieldPolicyTable`` (system
fields such as ``template_version``) always take the template's value, and
a structural conflict (a map on one side, a leaf on the other) keeps the
user's value.

Result key order is deterministic: template keys in template order, then
(two-way only) keys carried over from the user file in their original
order.
"""

from __future__ import annotations

from scaffold_sync.sync.policy import DEFAULT_POLICY, FieldPolicyTable
from scaffold_sync.sync.tree import EMPTY, Mapping, Node, Scalar, normalized


def values_equal(a: Node | None, b: Node | None) -> bool:
    """Compare two nodes by their string-normalised form.

    A null scalar only equals another null scalar, so an explicit
    ``null`` never matches an empty string.
    """
    a_null = isinstance(a, Scalar) and a.value is None
    b_null = isinstance(b, Scalar) and b.value is None
    if a_null or b_null:
        return a_null and b_null
    return normalized(a) == normalized(b)


# ---------------------------------------------------------------------------
# Two-way
# ---------------------------------------------------------------------------


def merge_deep(
    new: Mapping,
    old: Mapping,
    policy: FieldPolicyTable = DEFAULT_POLICY,
) -> Mapping:
    """Merge the user's *old* tree into the template's *new* tree.

    Args:
        new: Freshly deployed template content.
        old: Backed-up user content.
        policy: Field policy table; ``ALWAYS_NEW`` keys take *new*.

    Returns:
        A new ``Mapping``.
    """
    return _merge_deep(new, old, policy, ())


def _merge_deep(
    new: Mapping,
    old: Mapping,
    policy: FieldPolicyTable,
    path: tuple[str, ...],
) -> Mapping:
    old_values = old.as_dict()
    new_keys = set(new.keys())
    result: list[tuple[str, Node]] = []

    for key, new_value in new.items:
        if key not in old_values or policy.is_system(key, path):
            result.append((key, new_value))
            continue

        old_value = old_values[key]
        match (new_value, old_value):
            case (Mapping(), Mapping()):
                result.append(
                    (key, _merge_deep(new_value, old_value, policy, (*path, key)))
                )
            case _:
                result.append((key, old_value))

    for key, old_value in old.items:
        if key in new_keys or policy.is_system(key, path):
            continue
        result.append((key, old_value))

    return Mapping(tuple(result))


# ---------------------------------------------------------------------------
# Three-way
# ---------------------------------------------------------------------------


def merge_three_way(
    new: Mapping,
    old: Mapping,
    base: Mapping,
    policy: FieldPolicyTable = DEFAULT_POLICY,
    conflicts: list[str] | None = None,
) -> Mapping:
    """Merge *old* into *new* using *base* to detect user edits.

    Args:
        new: Freshly deployed template content.
        old: Backed-up user content.
        base: Template content as of the previous sync.
        policy: Field policy table; ``ALWAYS_NEW`` keys take *new*.
        conflicts: When given, dotted paths where both the user and the
            template changed a value since *base* are appended.  The user's
            value is kept in that case.

    Returns:
        A new ``Mapping``.
    """
    return _merge_three_way(new, old, base, policy, (), conflicts)


def _merge_three_way(
    new: Mapping,
    old: Mapping,
    base: Mapping,
    policy: FieldPolicyTable,
    path: tuple[str, ...],
    conflicts: list[str] | None,
) -> Mapping:
    old_values = old.as_dict()
    base_values = base.as_dict()
    result: list[tuple[str, Node]] = []

    for key, new_value in new.items:
        if key not in old_values or policy.is_system(key, path):
            result.append((key, new_value))
            continue

        old_value = old_values[key]
        base_value = base_values.get(key)

        match (new_value, old_value):
            case (Mapping(), Mapping()):
                sub_base = base_value if isinstance(base_value, Mapping) else EMPTY
                result.append(
                    (
                        key,
                        _merge_three_way(
                            new_value,
                            old_value,
                            sub_base,
                            policy,
                            (*path, key),
                            conflicts,
                        ),
                    )
                )
            case (Mapping(), _) | (_, Mapping()):
                result.append((key, old_value))
                _note_conflict(
                    conflicts, path, key, new_value, old_value, base_value
                )
            case _:
                if base_value is not None and values_equal(old_value, base_value):
                    result.append((key, new_value))
                else:
                    result.append((key, old_value))
                    _note_conflict(
                        conflicts, path, key, new_value, old_value, base_value
                    )

    # Keys only in old were removed from the template and are dropped.
    return Mapping(tuple(result))


def _note_conflict(
    conflicts: list[str] | None,
    path: tuple[str, ...],
    key: str,
    new_value: Node,
    old_value: Node,
    base_value: Node | None,
) -> None:
    """Record *key* when the template also moved away from base."""
    if conflicts is None or base_value is None:
        return
    if values_equal(new_value, base_value) or values_equal(new_value, old_value):
        return
    conflicts.append(".".join((*path, key)))
