# abac-engine/abac_engine/evaluator/matchers.py
"""
Action and resource pattern matching.

Actions and resources are colon-segmented identifiers
(``document-service:file:read``, ``api:documents:doc-1``). Patterns may use
``*`` as a whole segment, inside a segment (``doc-*``), or as the final
segment to match any number of trailing segments. Resource patterns may
also reference context values (``api:documents:owner-${request:UserId}``)
and describe hierarchies with ``/``.
"""
import functools
import logging
import re
from collections.abc import Mapping
from typing import Any, List, Optional, Pattern

logger = logging.getLogger(__name__)

WILDCARD = "*"
SEGMENT_SEPARATOR = ":"
HIERARCHY_SEPARATOR = "/"
MIN_RESOURCE_SEGMENTS = 3

VARIABLE_PATTERN = re.compile(r"\$\{([^}]+)\}")


@functools.lru_cache(maxsize=1024)
def _wildcard_regex(pattern: str) -> Pattern:
    """Anchored regex for a segment containing ``*``."""
    return re.compile(
        "^" + ".*".join(re.escape(piece) for piece in pattern.split(WILDCARD)) + "$",
        re.DOTALL
    )


def match_segment(pattern: str, value: str) -> bool:
    """Match a single segment, honoring embedded wildcards."""
    if pattern == WILDCARD:
        return True
    if WILDCARD not in pattern:
        return pattern == value
    return _wildcard_regex(pattern).match(value) is not None


def match_segments(pattern: str, candidate: str) -> bool:
    """
    Match colon-separated segments pairwise.

    Segment counts must agree unless the pattern ends with a ``*`` segment,
    which then stands for zero or more trailing segments (``a:*`` matches
    ``a``, ``a:b`` and ``a:b:c:d``).
    """
    pattern_parts = pattern.split(SEGMENT_SEPARATOR)
    candidate_parts = candidate.split(SEGMENT_SEPARATOR)

    if pattern_parts[-1] == WILDCARD and len(pattern_parts) > 1:
        if len(candidate_parts) < len(pattern_parts) - 1:
            return False
        candidate_parts = candidate_parts[:len(pattern_parts) - 1]
        pattern_parts = pattern_parts[:-1]
    elif len(pattern_parts) != len(candidate_parts):
        return False

    return all(
        match_segment(p, c) for p, c in zip(pattern_parts, candidate_parts)
    )


def has_variables(value: str) -> bool:
    return "${" in value and "}" in value


def substitute_pattern_variables(pattern: str, context: Optional[Mapping]) -> str:
    """
    Replace ``${key}`` placeholders with string values looked up directly in
    ``context``. Missing keys and non-string values are left as written.
    """
    if not context or "${" not in pattern:
        return pattern

    def _replace(match):
        value = context.get(match.group(1))
        if isinstance(value, str):
            return value
        return match.group(0)

    return VARIABLE_PATTERN.sub(_replace, pattern)


class ActionMatcher:
    """Matches requested actions against statement Action patterns."""

    def match(self, pattern: str, action: str) -> bool:
        if pattern == WILDCARD:
            return True
        if not isinstance(pattern, str) or not isinstance(action, str):
            return False
        return match_segments(pattern, action)

    def match_any(self, patterns: List[str], action: str) -> bool:
        """True when any non-empty pattern matches."""
        for pattern in patterns:
            if not pattern:
                logger.debug("Ignoring empty action pattern")
                continue
            if self.match(pattern, action):
                return True
        return False


class ResourceMatcher:
    """Matches requested resources against statement Resource/NotResource patterns."""

    def match(self, pattern: str, resource: str, context: Optional[Mapping] = None) -> bool:
        """
        Match one resource against one pattern.

        Both the candidate and the pattern (after variable substitution) must
        be well-formed; anything malformed simply does not match.
        """
        if pattern == WILDCARD:
            return True
        if not isinstance(pattern, str) or not isinstance(resource, str):
            return False

        if not self.validate_resource_format(resource):
            logger.debug("Malformed resource identifier: %r", resource)
            return False

        expanded = substitute_pattern_variables(pattern, context)
        if expanded != WILDCARD and not self.validate_resource_format(expanded):
            logger.debug("Malformed resource pattern: %r", expanded)
            return False

        if HIERARCHY_SEPARATOR in expanded or HIERARCHY_SEPARATOR in resource:
            return self._match_hierarchical(expanded, resource)
        return match_segments(expanded, resource)

    def match_any(
        self,
        patterns: List[str],
        resource: str,
        context: Optional[Mapping] = None
    ) -> bool:
        return any(self.match(pattern, resource, context) for pattern in patterns)

    def _match_hierarchical(self, pattern: str, resource: str) -> bool:
        pattern_levels = pattern.split(HIERARCHY_SEPARATOR)
        resource_levels = resource.split(HIERARCHY_SEPARATOR)
        if len(pattern_levels) != len(resource_levels):
            return False
        return all(
            match_segments(p, r) for p, r in zip(pattern_levels, resource_levels)
        )

    def validate_resource_format(self, resource: Any) -> bool:
        """Check ``service:type:id`` shape on every hierarchy level."""
        if not isinstance(resource, str):
            return False
        if resource == WILDCARD:
            return True
        # Unresolved variables are validated after substitution
        if has_variables(resource):
            return True
        return all(
            self._validate_level(level)
            for level in resource.split(HIERARCHY_SEPARATOR)
        )

    @staticmethod
    def _validate_level(level: str) -> bool:
        parts = level.split(SEGMENT_SEPARATOR)
        if len(parts) < MIN_RESOURCE_SEGMENTS:
            return False
        return all(part != "" for part in parts)
