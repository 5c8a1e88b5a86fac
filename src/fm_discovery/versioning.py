"""Version constraint matching for service discovery.

Supports the constraint forms accepted by the discovery libraries of the other
platforms, so the same configuration resolves identically everywhere:

- ``*`` or empty: any version
- ``^1.2.3``: ``>=1.2.3 <2.0.0``
- ``~1.2.3``: ``>=1.2.3 <1.3.0``
- ranges: ``>=1.2.0 <2.0.0``, ``1.2.3``, ``1.x``, ``<1.0.0 || >=2.0.0``

Partial versions are completed with zeros (``1.2`` is ``1.2.0``). Ordering
follows semantic version precedence as implemented by the ``semver`` package.
"""

import logging
import re
from dataclasses import dataclass
from operator import attrgetter
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from semver import Version

from fm_discovery.errors import NoMatchingVersion, VersionParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Predicate = Callable[[Version], bool]

ANY_VERSION = "*"

_WILDCARDS = {"x", "X", "*"}
_OPERATORS = (">=", "<=", "!=", "==", ">", "<", "=", "!", "^", "~")
_OPERATOR_SPACING = re.compile(r"(>=|<=|!=|==|>|<|=|\^|~)\s+")


def parse_version(text: str) -> Version:
    """Parse a version string, tolerating a leading ``v`` and missing parts.

    Args:
        text: Version string (e.g., "1.2.3", "v1.2", "2")

    Returns:
        Parsed semantic version

    Raises:
        VersionParseError: If the string is not a valid version

    Example:
        >>> str(parse_version("1.2"))
        '1.2.0'
    """
    if text is None:
        raise VersionParseError("None", "version is missing")

    candidate = text.strip()
    if candidate[:1] in ("v", "V"):
        candidate = candidate[1:]

    try:
        return Version.parse(candidate, optional_minor_and_patch=True)
    except (ValueError, TypeError) as e:
        raise VersionParseError(text, str(e)) from e


@dataclass(frozen=True)
class VersionConstraint:
    """Predicate over versions built from a constraint string.

    ``alternatives`` holds OR-ed groups of AND-ed predicates.
    """

    raw: str
    alternatives: Tuple[Tuple[Predicate, ...], ...]

    def matches(self, version: Version) -> bool:
        return any(
            all(predicate(version) for predicate in group)
            for group in self.alternatives
        )

    def __call__(self, version: Version) -> bool:
        return self.matches(version)

    def __str__(self) -> str:
        return self.raw


def _match_any(version: Version) -> bool:
    return True


def _between(lower: Version, upper: Version) -> Predicate:
    return lambda v: lower <= v < upper


def _split_wildcard(text: str) -> Tuple[List[Optional[int]], bool]:
    """Split a possibly partial version core into numeric parts.

    Returns the parts (``None`` for wildcards) and whether a wildcard was seen.
    Only the major/minor/patch core may contain wildcards.
    """
    core = re.split(r"[-+]", text, maxsplit=1)[0]
    if core[:1] in ("v", "V"):
        core = core[1:]
    pieces = core.split(".")
    if len(pieces) > 3:
        raise VersionParseError(text, "too many version components")

    parts: List[Optional[int]] = []
    wildcard = False
    for piece in pieces:
        if piece in _WILDCARDS:
            wildcard = True
            parts.append(None)
        elif wildcard:
            # "1.x.3" is not a meaningful version
            raise VersionParseError(text, "numeric part after wildcard")
        elif piece.isdigit():
            parts.append(int(piece))
        else:
            raise VersionParseError(text, f"invalid version component '{piece}'")
    return parts, wildcard


def _wildcard_bounds(parts: List[Optional[int]]) -> Optional[Tuple[Version, Version]]:
    """Lower and upper bound of a wildcard version, ``None`` when unbounded."""
    fixed = []
    for part in parts:
        if part is None:
            break
        fixed.append(part)

    if not fixed:
        return None

    lower = Version(*(fixed + [0] * (3 - len(fixed))))
    if len(fixed) == 1:
        upper = Version(fixed[0] + 1)
    else:
        upper = Version(fixed[0], fixed[1] + 1)
    return lower, upper


def _caret(version: Version) -> Predicate:
    return _between(version, Version(version.major + 1))


def _tilde(version: Version) -> Predicate:
    return _between(version, Version(version.major, version.minor + 1))


def _parse_wildcard_comparator(op: str, text: str, parts: List[Optional[int]]) -> Predicate:
    bounds = _wildcard_bounds(parts)
    if bounds is None:
        if op in ("<", ">", "!=", "!"):
            return lambda v: False
        return _match_any

    lower, upper = bounds
    if op in ("", "=", "=="):
        return _between(lower, upper)
    if op == ">=":
        return lambda v: v >= lower
    if op == ">":
        return lambda v: v >= upper
    if op == "<":
        return lambda v: v < lower
    if op == "<=":
        return lambda v: v < upper
    if op in ("!=", "!"):
        return lambda v: v < lower or v >= upper
    if op == "^":
        return _caret(lower)
    if op == "~":
        return _tilde(lower)
    raise VersionParseError(text, f"unsupported operator '{op}'")


def _parse_comparator(token: str) -> Predicate:
    op = ""
    for candidate in _OPERATORS:
        if token.startswith(candidate):
            op = candidate
            break
    text = token[len(op):]
    if not text:
        raise VersionParseError(token, "operator without version")

    parts, wildcard = _split_wildcard(text)
    if wildcard:
        return _parse_wildcard_comparator(op, token, parts)

    version = parse_version(text)
    if op in ("", "=", "=="):
        return lambda v: v == version
    if op == ">=":
        return lambda v: v >= version
    if op == ">":
        return lambda v: v > version
    if op == "<=":
        return lambda v: v <= version
    if op == "<":
        return lambda v: v < version
    if op in ("!=", "!"):
        return lambda v: v != version
    if op == "^":
        return _caret(version)
    return _tilde(version)


def parse_constraint(text: Optional[str]) -> VersionConstraint:
    """Parse a version constraint into a predicate.

    Args:
        text: Constraint string; ``None``, empty or ``*`` match any version

    Returns:
        VersionConstraint usable as ``constraint(version)``

    Raises:
        VersionParseError: If the constraint is malformed

    Example:
        >>> constraint = parse_constraint("^1.0.0")
        >>> constraint(parse_version("1.4.2")), constraint(parse_version("2.0.0"))
        (True, False)
    """
    raw = (text or "").strip()
    if raw in ("", ANY_VERSION):
        return VersionConstraint(raw=raw or ANY_VERSION, alternatives=((_match_any,),))

    alternatives = []
    for alternative in raw.split("||"):
        normalized = _OPERATOR_SPACING.sub(r"\1", alternative.strip())
        tokens = normalized.split()
        if not tokens:
            raise VersionParseError(raw, "empty alternative in range")
        alternatives.append(tuple(_parse_comparator(token) for token in tokens))

    return VersionConstraint(raw=raw, alternatives=tuple(alternatives))


def select_latest(
    candidates: Iterable[T],
    constraint: VersionConstraint,
    key: Callable[[T], Version] = attrgetter("version"),
) -> List[T]:
    """Return every candidate at the highest version satisfying the constraint.

    All candidates sharing the maximum version are kept so callers can
    load-balance between them.

    Args:
        candidates: Objects carrying a version
        constraint: Constraint to filter by
        key: Extracts the version from a candidate (default: ``.version``)

    Returns:
        Non-empty list of candidates at the maximum matching version

    Raises:
        NoMatchingVersion: If no candidate satisfies the constraint
    """
    matching = [c for c in candidates if constraint(key(c))]
    if not matching:
        raise NoMatchingVersion(f"No service found (no version matching '{constraint}')")

    latest = max(key(c) for c in matching)
    return [c for c in matching if key(c) == latest]
