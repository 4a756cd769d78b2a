"""Format-specific mergers built on the structured merger.

Each merger takes the freshly deployed template text (*new*), the
backed-up user text (*old*) and, where one exists, the previous template
text (*base*), and returns a ``FormatMergeResult``.

* ``merge_json``     -- two-way deep merge of JSON objects.
* ``merge_yaml``     -- two-way or three-way deep merge of YAML mappings.
* ``merge_entries``  -- ignore-pattern files; user entries are appended
  under a marker header.
* ``merge_sections`` -- Markdown documents split on headings; template
  sections win, user-only sections are carried forward.
* ``merge_lines``    -- everything else; deduplicated union of lines.
  With a base, ``merge3`` flags regions both sides edited.

``merge_file`` dispatches on ``MergeStrategy``.

Structured parsing enforces the size ceiling (``ConfigTooLargeError``) and
reports malformed input as ``ParseError``.
"""

from __future__ import annotations

import difflib
import json
import re
from dataclasses import dataclass, field

import yaml
from merge3 import Merge3

from scaffold_sync.errors import (
    DEFAULT_MAX_CONFIG_SIZE,
    ConfigTooLargeError,
    ParseError,
)
from scaffold_sync.sync.merger import merge_deep, merge_three_way
from scaffold_sync.sync.models import MergeStrategy
from scaffold_sync.sync.policy import DEFAULT_POLICY, FieldPolicyTable
from scaffold_sync.sync.tree import EMPTY, Mapping, from_python, to_python

ENTRY_HEADER = "# User custom entries (preserved by scaffold-sync)"

# Markdown headings of level 1 and 2 delimit sections.
_ANCHOR_RE = re.compile(r"^#{1,2}\s+\S")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


@dataclass(frozen=True)
class FormatMergeResult:
    """Merged text plus the locations both sides changed.

    Attributes:
        content: The merged document.
        conflicts: Dotted key paths, section anchors or ``"<lines>"``
            where the template and the user both changed the same thing.
            The merge is still complete; these are reported as warnings.
    """

    content: str
    conflicts: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Structured parsing / serialisation
# ---------------------------------------------------------------------------


def _check_size(text: str, source: str, max_size: int) -> None:
    size = len(text.encode("utf-8"))
    if size > max_size:
        raise ConfigTooLargeError(source, size, max_size)


def _as_mapping(data: object, source: str) -> Mapping:
    if data is None:
        return EMPTY
    if not isinstance(data, dict):
        raise ParseError(
            source, f"document root is {type(data).__name__}, not a mapping"
        )
    return from_python(data)  # type: ignore[return-value]


def parse_yaml(
    text: str, source: str = "<yaml>", max_size: int = DEFAULT_MAX_CONFIG_SIZE
) -> Mapping:
    """Parse a YAML document into a ``Mapping`` (empty document -> empty map)."""
    _check_size(text, source, max_size)
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ParseError(source, str(exc)) from exc
    return _as_mapping(data, source)


def parse_json(
    text: str, source: str = "<json>", max_size: int = DEFAULT_MAX_CONFIG_SIZE
) -> Mapping:
    """Parse a JSON object into a ``Mapping`` (blank input -> empty map)."""
    _check_size(text, source, max_size)
    if not text.strip():
        return EMPTY
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(source, str(exc)) from exc
    return _as_mapping(data, source)


def dump_yaml(tree: Mapping) -> str:
    return yaml.safe_dump(
        to_python(tree),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def dump_json(tree: Mapping) -> str:
    return json.dumps(to_python(tree), indent=2, ensure_ascii=False) + "\n"


# ---------------------------------------------------------------------------
# JSON / YAML
# ---------------------------------------------------------------------------


def merge_json(
    new: str,
    old: str,
    policy: FieldPolicyTable = DEFAULT_POLICY,
    *,
    source: str = "<json>",
    max_size: int = DEFAULT_MAX_CONFIG_SIZE,
) -> FormatMergeResult:
    """Two-way deep merge of JSON settings files."""
    merged = merge_deep(
        parse_json(new, f"{source} (new)", max_size),
        parse_json(old, f"{source} (old)", max_size),
        policy,
    )
    return FormatMergeResult(dump_json(merged))


def merge_yaml(
    new: str,
    old: str,
    base: str | None = None,
    policy: FieldPolicyTable = DEFAULT_POLICY,
    *,
    source: str = "<yaml>",
    max_size: int = DEFAULT_MAX_CONFIG_SIZE,
) -> FormatMergeResult:
    """Deep merge of YAML mappings.

    Uses the three-way merge when *base* is given, otherwise the two-way
    merge.
    """
    new_tree = parse_yaml(new, f"{source} (new)", max_size)
    old_tree = parse_yaml(old, f"{source} (old)", max_size)
    if base is None:
        return FormatMergeResult(dump_yaml(merge_deep(new_tree, old_tree, policy)))

    base_tree = parse_yaml(base, f"{source} (base)", max_size)
    conflicts: list[str] = []
    merged = merge_three_way(new_tree, old_tree, base_tree, policy, conflicts)
    return FormatMergeResult(dump_yaml(merged), conflicts)


# ---------------------------------------------------------------------------
# Ignore files
# ---------------------------------------------------------------------------


def _entries(text: str) -> set[str]:
    """Return the trimmed non-blank, non-comment lines of *text*."""
    result = set()
    for line in text.splitlines():
        trimmed = line.strip()
        if trimmed and not trimmed.startswith("#"):
            result.add(trimmed)
    return result


def _with_trailing_newline(text: str) -> str:
    if text and not text.endswith("\n"):
        return text + "\n"
    return text


def merge_entries(
    new: str, old: str, base: str | None = None
) -> FormatMergeResult:
    """Merge ignore-pattern files.

    Template content is kept as-is.  Entries of *old* that the template
    does not contain are appended, once and verbatim, under
    ``ENTRY_HEADER``.  With a *base*, entries the previous template had
    but the new one dropped are not restored.  When *old* contributes
    nothing the template is returned unchanged.
    """
    template = _entries(new)
    previous = _entries(base) if base is not None else set()

    additions: list[str] = []
    seen: set[str] = set()
    for line in old.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        if trimmed in template or trimmed in previous or trimmed in seen:
            continue
        seen.add(trimmed)
        additions.append(line.rstrip())

    if not additions:
        return FormatMergeResult(new)

    result = _with_trailing_newline(new)
    result += "\n" + ENTRY_HEADER + "\n"
    result += "\n".join(additions) + "\n"
    return FormatMergeResult(result)


# ---------------------------------------------------------------------------
# Anchored documents
# ---------------------------------------------------------------------------


def split_sections(text: str) -> list[tuple[str, str]]:
    """Split a Markdown document into ``(anchor, block)`` regions.

    The anchor is the stripped heading line; text before the first heading
    forms a region with an empty anchor.  Headings inside fenced code
    blocks are ignored.  Blocks keep their original line endings.
    """
    regions: list[tuple[str, list[str]]] = [("", [])]
    in_fence = False
    for line in text.splitlines(keepends=True):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        elif not in_fence and _ANCHOR_RE.match(line):
            regions.append((line.strip(), []))
        regions[-1][1].append(line)

    result = [(anchor, "".join(lines)) for anchor, lines in regions]
    if result and result[0] == ("", ""):
        result = result[1:]
    return result


def merge_sections(
    new: str, old: str, base: str | None = None
) -> FormatMergeResult:
    """Merge long-form documents section by section.

    Every region of the template keeps the template's content.  User
    regions whose anchor is absent from the template are appended in their
    original order.  With a *base*, regions the previous template had but
    the new one dropped are not carried forward, and regions changed on
    both sides are reported as conflicts.
    """
    new_regions = dict(split_sections(new))
    old_regions = split_sections(old)
    base_regions = dict(split_sections(base)) if base is not None else {}

    carried: list[str] = []
    conflicts: list[str] = []
    for anchor, block in old_regions:
        if anchor in new_regions:
            previous = base_regions.get(anchor)
            if (
                previous is not None
                and block != previous
                and new_regions[anchor] != previous
                and block != new_regions[anchor]
            ):
                conflicts.append(anchor or "<preamble>")
            continue
        if anchor in base_regions:
            continue
        carried.append(block.rstrip("\n"))

    if not carried:
        return FormatMergeResult(new, conflicts)

    result = new.rstrip("\n")
    if result:
        result += "\n\n"
    result += "\n\n".join(carried) + "\n"
    return FormatMergeResult(result, conflicts)


# ---------------------------------------------------------------------------
# Plain lines
# ---------------------------------------------------------------------------


def attempt_merge(
    base_content: str,
    old_content: str,
    new_content: str,
) -> tuple[str, bool]:
    """Perform a three-way line merge of user and template changes.

    Returns:
        A tuple of ``(merged_text, has_conflicts)``.  When
        *has_conflicts* is ``True`` the text contains conflict markers and
        must not be written.
    """
    m3 = Merge3(
        base_content.splitlines(True),
        old_content.splitlines(True),
        new_content.splitlines(True),
    )
    merged_lines = list(m3.merge_lines(name_a="USER", name_b="TEMPLATE"))
    merged_text = "".join(merged_lines)
    return merged_text, "<<<<<<< USER" in merged_text


def union_lines(new: str, old: str) -> str:
    """Template lines verbatim, then non-blank user lines not yet present."""
    present = set(new.splitlines())
    extra: list[str] = []
    for line in old.splitlines():
        if not line.strip() or line in present:
            continue
        present.add(line)
        extra.append(line)

    if not extra:
        return new
    return _with_trailing_newline(new) + "\n".join(extra) + "\n"


def merge_lines(
    new: str, old: str, base: str | None = None
) -> FormatMergeResult:
    """Merge plain text files line by line.

    The result is always the union: template lines first, then user lines
    the template lacks.  No line of either side is dropped.  With a *base*,
    regions edited on both sides are reported as a ``<lines>`` conflict.
    """
    conflicts: list[str] = []
    if base is not None:
        _, has_conflicts = attempt_merge(base, old, new)
        if has_conflicts:
            conflicts.append("<lines>")
    return FormatMergeResult(union_lines(new, old), conflicts)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def merge_file(
    strategy: MergeStrategy,
    new: str,
    old: str,
    base: str | None = None,
    policy: FieldPolicyTable = DEFAULT_POLICY,
    *,
    source: str = "<file>",
    max_size: int = DEFAULT_MAX_CONFIG_SIZE,
) -> FormatMergeResult:
    """Apply the merger for *strategy*.

    *base* is ignored by the two-way strategies (``JSONMerge`` and
    ``YAMLDeep``).
    """
    match strategy:
        case MergeStrategy.JSON_MERGE:
            return merge_json(new, old, policy, source=source, max_size=max_size)
        case MergeStrategy.YAML_DEEP:
            return merge_yaml(
                new, old, None, policy, source=source, max_size=max_size
            )
        case MergeStrategy.YAML_3WAY:
            return merge_yaml(
                new, old, base, policy, source=source, max_size=max_size
            )
        case MergeStrategy.ENTRY_MERGE:
            return merge_entries(new, old, base)
        case MergeStrategy.SECTION_MERGE:
            return merge_sections(new, old, base)
        case _:
            return merge_lines(new, old, base)


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "deployed",
    label_new: str = "merged",
) -> str:
    """Generate a unified diff between two strings (empty when identical)."""
    diff_lines = difflib.unified_diff(
        old_content.splitlines(True),
        new_content.splitlines(True),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)
