"""Matcher engine.

Selects the registrations that apply to a firing event. Tool-keyed events
(PreToolUse, PermissionRequest, PostToolUse, Notification) filter on the
registration's matcher; every other event selects all of its registrations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import logging
import re
from typing import TYPE_CHECKING

from hookline.core.hooks.errors import MatchError
from hookline.core.hooks.types import HookEvent, HookRegistration

if TYPE_CHECKING:
    from hookline.core.hooks.config import HookRegistry

logger = logging.getLogger(__name__)

_REGEX_METACHARACTERS = frozenset("|.*+?[](){}^$\\")


class PatternKind(StrEnum):
    ANY = "any"
    EXACT = "exact"
    REGEX = "regex"


@dataclass(frozen=True)
class Pattern:
    """A compiled matcher.

    `*`, the empty string and a missing matcher match any name. A matcher
    without regex metacharacters is compared for equality; anything else is a
    regular expression that must match the whole name. Matching is
    case-sensitive.
    """

    kind: PatternKind
    source: str = ""
    regex: re.Pattern[str] | None = field(default=None, compare=False)

    @classmethod
    def parse(cls, matcher: str | None) -> Pattern:
        """Compile a matcher string.

        Raises:
            MatchError: If the matcher is meant as a regex but does not compile.
        """
        if matcher is None or matcher.strip() in ("", "*"):
            return cls(PatternKind.ANY, matcher or "")
        if not any(c in _REGEX_METACHARACTERS for c in matcher):
            return cls(PatternKind.EXACT, matcher)
        try:
            return cls(PatternKind.REGEX, matcher, re.compile(matcher))
        except re.error as e:
            raise MatchError(matcher, str(e)) from e

    def matches(self, name: str | None) -> bool:
        if self.kind == PatternKind.ANY:
            return True
        if name is None:
            return False
        if self.kind == PatternKind.EXACT:
            return self.source == name
        assert self.regex is not None
        return self.regex.fullmatch(name) is not None


class Matcher:
    """Caches compiled patterns so each matcher string is parsed once."""

    def __init__(self) -> None:
        self._cache: dict[str | None, Pattern | None] = {}

    def pattern_for(self, matcher: str | None) -> Pattern | None:
        """Return the compiled pattern, or None if the matcher is invalid."""
        if matcher not in self._cache:
            try:
                self._cache[matcher] = Pattern.parse(matcher)
            except MatchError as e:
                logger.warning(f"{e}; treating it as non-matching")
                self._cache[matcher] = None
        return self._cache[matcher]

    def matches(self, registration: HookRegistration, name: str | None) -> bool:
        if not registration.event.uses_matcher:
            return True
        pattern = self.pattern_for(registration.matcher)
        return pattern is not None and pattern.matches(name)

    def select(
        self, registry: HookRegistry, event: HookEvent, name: str | None = None
    ) -> list[HookRegistration]:
        """Return the registrations for `event` that apply to `name`.

        Registrations with the same (event, matcher, kind, body) identity
        collapse to a single hook. No ordering between the selected hooks is
        implied; they are peers.
        """
        selected: list[HookRegistration] = []
        seen: set[tuple] = set()
        for registration in registry.for_event(event):
            if registration.identity in seen:
                continue
            if self.matches(registration, name):
                seen.add(registration.identity)
                selected.append(registration)
        return selected


def select(
    registry: HookRegistry, event: HookEvent, name: str | None = None
) -> list[HookRegistration]:
    """Select matching registrations with a throwaway pattern cache."""
    return Matcher().select(registry, event, name)
