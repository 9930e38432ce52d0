"""
Artist alias canonicalization.

Alias groups list the name variants of one artist, primary name first.
The resolver folds case, diacritics and whitespace before matching, so
"Aphex  Twin" and "aphex twin" hit the same group.
"""

import unicodedata
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple
import logging

from utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def fold_diacritics(text: str) -> str:
    """Decompose accented characters and drop the combining marks."""
    decomposed = unicodedata.normalize('NFKD', text)
    return ''.join(c for c in decomposed if not unicodedata.combining(c))


def normalize_name(name: str) -> str:
    """Lookup key for a name: casefolded, diacritics stripped, whitespace collapsed."""
    if not name:
        return ""
    return ' '.join(fold_diacritics(name).casefold().split())


class AliasResolver:
    """Immutable lookup table from any alias to its group's primary name."""

    def __init__(self, groups: Sequence[Sequence[str]] = ()):
        lookup: Dict[str, str] = {}
        members: Dict[str, Tuple[str, ...]] = {}

        for group in groups:
            names = tuple(n.strip() for n in group if n and n.strip())
            if not names:
                continue
            primary = names[0]
            for name in names:
                key = normalize_name(name)
                if key in lookup and lookup[key] != primary:
                    logger.warning(
                        f"Alias '{name}' already maps to '{lookup[key]}', ignoring mapping to '{primary}'"
                    )
                    continue
                lookup[key] = primary
            members[normalize_name(primary)] = names

        self._lookup = lookup
        self._members = members

    @classmethod
    def from_groups(cls, groups: Iterable[Sequence[str]], strict: bool = False) -> "AliasResolver":
        """
        Validate configured groups and build a resolver from them.

        Raises:
            ConfigurationError: In strict mode, if validation finds errors
        """
        groups = [list(g) for g in groups]
        issues = validate_alias_groups(groups, strict=strict)
        if issues:
            logger.info(f"Alias validation reported {len(issues)} issue(s)")
        return cls(groups)

    def resolve(self, name: str) -> str:
        """Return the canonical primary for a name, or the name unchanged."""
        if not name:
            return name
        return self._lookup.get(normalize_name(name), name)

    def aliases_for(self, name: str) -> List[str]:
        """All variants of the group a name belongs to, primary first."""
        primary = self._lookup.get(normalize_name(name))
        if primary is None:
            return [name] if name else []
        return list(self._members.get(normalize_name(primary), (primary,)))

    def __len__(self) -> int:
        return len(self._members)


@dataclass(frozen=True)
class AliasIssue:
    """One problem found in the configured alias groups."""

    severity: str  # "error" or "warning"
    group_index: int
    message: str


def validate_alias_groups(groups: Sequence[Sequence[str]], strict: bool = False) -> List[AliasIssue]:
    """
    Check alias groups for empty entries, stray whitespace and overlaps.

    Args:
        groups: Alias groups as configured, primary first
        strict: Raise instead of warning when errors are found

    Returns:
        Every issue found, in group order

    Raises:
        ConfigurationError: In strict mode, if any error-level issue exists
    """
    issues: List[AliasIssue] = []
    seen: Dict[str, int] = {}
    primaries: Dict[str, int] = {}

    for index, group in enumerate(groups):
        if not group:
            issues.append(AliasIssue("error", index, "empty alias group"))
            continue

        if not group[0] or not group[0].strip():
            issues.append(AliasIssue("error", index, "empty primary name"))

        for position, name in enumerate(group):
            if not name or not name.strip():
                if position > 0:
                    issues.append(AliasIssue("error", index, f"empty alias at position {position}"))
                continue
            if name != name.strip():
                issues.append(AliasIssue("warning", index, f"leading or trailing whitespace in '{name}'"))

        names = [n for n in group if n and n.strip()]
        if len(names) == 1:
            issues.append(AliasIssue("warning", index, f"group '{names[0].strip()}' has no aliases"))

        for position, name in enumerate(group):
            if not name or not name.strip():
                continue
            key = normalize_name(name)
            if key in seen and seen[key] != index:
                issues.append(AliasIssue(
                    "error", index, f"'{name.strip()}' also appears in group {seen[key]}"
                ))
            else:
                seen.setdefault(key, index)
            if position == 0:
                primaries[key] = index

    # A primary listed as a plain alias of another group
    for index, group in enumerate(groups):
        for name in list(group)[1:]:
            if not name or not name.strip():
                continue
            key = normalize_name(name)
            owner = primaries.get(key)
            if owner is not None and owner != index:
                issues.append(AliasIssue(
                    "error", index, f"'{name.strip()}' is the primary of group {owner}"
                ))

    for issue in issues:
        log = logger.error if issue.severity == "error" else logger.warning
        log(f"Alias group {issue.group_index}: {issue.message}")

    errors = [i for i in issues if i.severity == "error"]
    if strict and errors:
        raise ConfigurationError(f"Invalid alias configuration: {len(errors)} error(s), first: {errors[0].message}")

    return issues
