"""Inclusion and grep rules.

Rules decide which named database objects are kept. They are pure,
side-effect-free values, applied by the crawler both to narrow what is
requested from the database and to filter what ends up in the catalog.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

ALL = ".*"
NONE = ""


def _compile(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern, re.DOTALL)
    except re.error as exc:
        raise ValueError(f"Invalid regex expression {pattern!r}: {exc}") from exc


@dataclass(frozen=True)
class InclusionRule:
    """
    Include/exclude regular expression pair over an object name.

    A name matches when it fully matches `include` and does not fully
    match `exclude`. The default rule includes every non-empty name.
    """

    include: str = ALL
    exclude: str = NONE
    _include_rx: re.Pattern = field(init=False, repr=False, compare=False)
    _exclude_rx: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_include_rx", _compile(self.include or NONE))
        object.__setattr__(self, "_exclude_rx", _compile(self.exclude or NONE))

    @classmethod
    def include_only(cls, pattern: str) -> InclusionRule:
        """Rule that keeps names matching `pattern`."""
        return cls(include=pattern, exclude=NONE)

    @classmethod
    def exclude_only(cls, pattern: str) -> InclusionRule:
        """Rule that keeps every name except those matching `pattern`."""
        return cls(include=ALL, exclude=pattern)

    @property
    def is_default(self) -> bool:
        return self.include == ALL and not self.exclude

    def matches(self, name: str | None) -> bool:
        """
        Check whether a name is included by this rule.

        Args:
            name: Object name (None never matches).

        Returns:
            True if the name matches `include` and not `exclude`.
        """
        if name is None:
            return False
        return bool(self._include_rx.fullmatch(name)) and not self._exclude_rx.fullmatch(name)

    def matches_object(self, *names: str | None) -> bool:
        """
        Check an object known by several names (full, qualified, bare).

        The object is included when some name matches `include` and no
        name matches `exclude`.
        """
        candidates = [n for n in names if n]
        if not candidates:
            return False
        if not any(self._include_rx.fullmatch(n) for n in candidates):
            return False
        return not any(self._exclude_rx.fullmatch(n) for n in candidates)


@dataclass(frozen=True)
class GrepRule:
    """
    Content match over a composite name such as `schema.table.column`.

    `invert` flips the result of the match.
    """

    pattern: str
    invert: bool = False
    _rx: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_rx", _compile(self.pattern))

    def matches(self, composite_name: str) -> bool:
        """Check whether the composite name matches, honouring `invert`."""
        result = bool(self._rx.fullmatch(composite_name))
        if self.invert:
            result = not result
        return result

    def matches_any(self, composite_names) -> bool:
        """
        Grep a parent object by its children.

        True when any of the composite names matches the pattern; the
        outcome is flipped as a whole when `invert` is set.
        """
        result = any(self._rx.fullmatch(name) for name in composite_names)
        if self.invert:
            result = not result
        return result


def matches(rule: InclusionRule, name: str) -> bool:
    """Function form of `InclusionRule.matches`."""
    return rule.matches(name)


def matches_grep(rule: GrepRule, composite_name: str) -> bool:
    """Function form of `GrepRule.matches`."""
    return rule.matches(composite_name)
