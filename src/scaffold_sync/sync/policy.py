"""Field policy table for structured merges.

A *system field* is a value the template always controls, such as the
recorded template version.  Instead of hard-coding those names inside the
merge functions, the mergers consult a ``FieldPolicyTable`` that is built
from configuration and passed in explicitly.

Table entries are matched in two ways:

* a plain name (``template_version``) matches that key at any depth;
* a dotted path (``system.template_version``) matches only that location.

Per-section overrides are keyed by the section file's stem
(``system`` for ``sections/system.yaml``) and take precedence over the
defaults.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath


class FieldPolicy(str, Enum):
    """How a merge resolves a key present in both template and user file."""

    ALWAYS_NEW = "always_new"
    PRESERVE_IF_UNCHANGED = "preserve_if_unchanged"


DEFAULT_SYSTEM_FIELDS: tuple[str, ...] = ("template_version", "version")


@dataclass(frozen=True)
class FieldPolicyTable:
    """Resolved policies for one merge.

    Attributes:
        fields: Default ``name-or-dotted-path -> FieldPolicy`` entries.
        sections: Per-section overrides, keyed by section stem.
    """

    fields: dict[str, FieldPolicy] = field(default_factory=dict)
    sections: dict[str, dict[str, FieldPolicy]] = field(
        default_factory=dict
    )

    @classmethod
    def from_system_fields(
        cls,
        names: Iterable[str],
        sections: dict[str, dict[str, str]] | None = None,
    ) -> FieldPolicyTable:
        """Build a table marking *names* as ``ALWAYS_NEW``."""
        return cls(
            fields={name: FieldPolicy.ALWAYS_NEW for name in names},
            sections={
                section: {
                    key: FieldPolicy(value) for key, value in entries.items()
                }
                for section, entries in (sections or {}).items()
            },
        )

    def for_file(self, path: str | PurePath) -> FieldPolicyTable:
        """Return the table with *path*'s section overrides applied."""
        stem = PurePath(path).stem
        overrides = self.sections.get(stem)
        if not overrides:
            return self
        merged = dict(self.fields)
        merged.update(overrides)
        return FieldPolicyTable(fields=merged)

    def policy(self, key: str, path: tuple[str, ...] = ()) -> FieldPolicy:
        """Resolve the policy for *key* located under *path*.

        A dotted-path entry wins over a bare-name entry.
        """
        dotted = ".".join((*path, key))
        if dotted in self.fields:
            return self.fields[dotted]
        return self.fields.get(key, FieldPolicy.PRESERVE_IF_UNCHANGED)

    def is_system(self, key: str, path: tuple[str, ...] = ()) -> bool:
        return self.policy(key, path) is FieldPolicy.ALWAYS_NEW


DEFAULT_POLICY = FieldPolicyTable.from_system_fields(DEFAULT_SYSTEM_FIELDS)
