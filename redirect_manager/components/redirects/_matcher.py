"""
Matcher - pure (strategy, pattern, url) -> match tests.

Strategies:
- exact: case-insensitive full-string equality
- regex: user pattern, case-insensitive, unanchored search
- wildcard: "*" matches any sequence, everything else literal, anchored
- prefix: case-insensitive startswith

Invalid regexes never raise; they are logged and reported via
MatchResult.error.
"""

from __future__ import annotations

import logging
import re

from .models import MatchResult, MatchStrategy

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$(\d+)")
_MULTI_SLASH = re.compile(r"(?<!:)/{2,}")

NO_MATCH = MatchResult(matched=False)


def wildcard_to_regex(pattern: str) -> str:
    """Escape everything except "*", which becomes a capture group. Unanchored."""
    return "(.*)".join(re.escape(part) for part in pattern.split("*"))


def _search(regex: str, url: str, flags: int = re.IGNORECASE) -> re.Match[str] | None:
    return re.search(regex, url, flags)


def _captures(match: re.Match[str]) -> tuple[str, ...]:
    return (match.group(0), *(g or "" for g in match.groups()))


def _exact(pattern: str, url: str) -> MatchResult:
    if pattern.lower() == url.lower():
        return MatchResult(matched=True, captures=(url,))
    return NO_MATCH


def _prefix(pattern: str, url: str) -> MatchResult:
    if url.lower().startswith(pattern.lower()):
        return MatchResult(matched=True, captures=(url, url[len(pattern) :]))
    return NO_MATCH


def _regex(pattern: str, url: str) -> MatchResult:
    try:
        match = _search(pattern, url)
    except (re.error, RecursionError, OverflowError) as e:
        logger.error("Invalid redirect regex %r: %s", pattern, e)
        return MatchResult(matched=False, error=str(e))
    if match is None:
        return NO_MATCH
    logger.debug("Regex match %r on %s", pattern, url)
    return MatchResult(matched=True, captures=_captures(match))


def _wildcard(pattern: str, url: str) -> MatchResult:
    try:
        match = re.fullmatch(wildcard_to_regex(pattern), url, re.IGNORECASE)
    except (re.error, RecursionError, OverflowError) as e:
        logger.error("Invalid wildcard pattern %r: %s", pattern, e)
        return MatchResult(matched=False, error=str(e))
    if match is None:
        return NO_MATCH
    return MatchResult(matched=True, captures=_captures(match))


_STRATEGIES = {
    MatchStrategy.EXACT: _exact,
    MatchStrategy.REGEX: _regex,
    MatchStrategy.WILDCARD: _wildcard,
    MatchStrategy.PREFIX: _prefix,
}


def match_with_captures(strategy: MatchStrategy | str, pattern: str, url: str) -> MatchResult:
    """Test url against pattern; on success return captured groups ($0, $1...)."""
    if not pattern:
        return NO_MATCH
    try:
        handler = _STRATEGIES[MatchStrategy(strategy)]
    except ValueError:
        logger.warning("Unknown match strategy %r", strategy)
        return NO_MATCH
    return handler(pattern, url)


def matches(strategy: MatchStrategy | str, pattern: str, url: str) -> bool:
    """Check if a URL matches a redirect pattern."""
    return match_with_captures(strategy, pattern, url).matched


def apply_captures(destination: str, captures: tuple[str, ...]) -> str:
    """
    Substitute $0, $1, ... in a destination with captured values.

    Highest index first so $1 never eats the prefix of $10. References with
    no capture are removed, and slashes doubled by empty captures collapse.
    """
    if not captures:
        return destination
    for index in range(len(captures) - 1, -1, -1):
        destination = destination.replace(f"${index}", captures[index])
    destination = _PLACEHOLDER.sub("", destination)
    return _MULTI_SLASH.sub("/", destination)


def is_excluded(url: str, patterns: tuple[str, ...] | list[str]) -> bool:
    """True if any exclusion regex matches. Bad patterns are logged, skipped."""
    for pattern in patterns:
        if not pattern:
            continue
        try:
            if _search(pattern, url):
                return True
        except (re.error, RecursionError, OverflowError) as e:
            logger.error("Invalid exclude pattern %r: %s", pattern, e)
    return False
