# abac-engine/abac_engine/evaluator/path.py
"""
Attribute path resolution.

A condition key such as ``user.department`` or ``user.attributes.roles[0]``
is resolved against the evaluation context by a chain of strategies tried
in a fixed order; the first one that finds a value wins:

1. direct lookup of the whole path as a key
2. dot-notation traversal of nested mappings
3. colon fallback (``user.department`` -> ``user:department``)
4. shortcut expansion (``user.department`` -> ``user.attributes.department``)
5. array index access (``roles[0]`` or ``roles.0``)

Resolution never raises; a path that cannot be followed is "not found".
"""
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..exceptions import InvalidPathError

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
NUMERIC_PATTERN = re.compile(r"^[+-]?\d+$")

DEFAULT_SHORTCUTS: Dict[str, List[str]] = {
    "user": ["attributes"],
    "resource": ["attributes"],
}

NOT_FOUND: Tuple[Any, bool] = (None, False)


@dataclass
class PathInfo:
    """Parsed attribute path."""
    raw: str
    parts: List[str] = field(default_factory=list)
    # part position -> list index applied after reading that part
    array_indices: Dict[int, int] = field(default_factory=dict)
    has_array_access: bool = False


class PathNormalizer:
    """Validates attribute paths and splits them into parts and array indices."""

    def normalize_path(self, path: str) -> PathInfo:
        """
        Parse a path string.

        Empty segments from repeated dots are dropped, so ``a..b`` equals
        ``a.b``. A purely numeric segment is an index into the preceding
        part.

        Raises:
            InvalidPathError: for blank paths, unclosed brackets, negative or
                non-numeric indices and invalid identifiers.
        """
        if not isinstance(path, str) or not path.strip():
            raise InvalidPathError("Path cannot be empty", path=path)

        path = path.strip()
        info = PathInfo(raw=path)

        for part in path.split("."):
            if not part:
                continue

            is_following = len(info.parts) > 0
            if "[" in part or (is_following and NUMERIC_PATTERN.match(part)):
                field_name, index = self._parse_array_access(path, part)
                if field_name:
                    info.parts.append(field_name)
                if not info.parts:
                    raise InvalidPathError(
                        f"Array index '{part}' has no field to apply to", path=path
                    )
                info.array_indices[len(info.parts) - 1] = index
                info.has_array_access = True
            else:
                if not self.is_valid_identifier(part):
                    raise InvalidPathError(f"Invalid identifier: '{part}'", path=path)
                info.parts.append(part)

        if not info.parts:
            raise InvalidPathError("Path must contain at least one valid part", path=path)
        return info

    def _parse_array_access(self, path: str, part: str) -> Tuple[str, int]:
        """Parse ``field[N]`` or a bare numeric segment into (field, index)."""
        bracket = part.find("[")
        if bracket >= 0:
            if not part.endswith("]"):
                raise InvalidPathError(f"Unclosed bracket in '{part}'", path=path)
            field_name = part[:bracket]
            index_text = part[bracket + 1:-1]
            if field_name and not self.is_valid_identifier(field_name):
                raise InvalidPathError(f"Invalid field name '{field_name}'", path=path)
        else:
            field_name = ""
            index_text = part

        if not NUMERIC_PATTERN.match(index_text) or int(index_text) < 0:
            raise InvalidPathError(f"Invalid array index '{index_text}'", path=path)
        return field_name, int(index_text)

    @staticmethod
    def is_valid_identifier(name: str) -> bool:
        return bool(IDENTIFIER_PATTERN.match(name))


def parse_path(path: str) -> PathInfo:
    """Parse a path with a default normalizer."""
    return PathNormalizer().normalize_path(path)


def navigate_nested_map(parts: Sequence[str], start: Mapping) -> Tuple[Any, bool]:
    """Follow ``parts`` through nested mappings."""
    current: Any = start
    for part in parts:
        if not isinstance(current, Mapping) or part not in current:
            return NOT_FOUND
        current = current[part]
    return current, True


def navigate_with_array_access(
    parts: Sequence[str],
    array_indices: Dict[int, int],
    start: Mapping
) -> Tuple[Any, bool]:
    """Follow ``parts`` through nested mappings, indexing into lists where requested."""
    current: Any = start
    for position, part in enumerate(parts):
        if not isinstance(current, Mapping) or part not in current:
            return NOT_FOUND
        current = current[part]

        if position in array_indices:
            index = array_indices[position]
            if not isinstance(current, (list, tuple)):
                return NOT_FOUND
            if index >= len(current):
                return NOT_FOUND
            current = current[index]
    return current, True


class PathResolver(ABC):
    """Strategy for resolving an attribute path in a context."""

    @abstractmethod
    def resolve(self, path: str, context: Mapping) -> Tuple[Any, bool]:
        """Return ``(value, True)`` when found, ``(None, False)`` otherwise."""
        pass


class DirectPathResolver(PathResolver):
    """Looks up the whole path as a literal key."""

    def resolve(self, path: str, context: Mapping) -> Tuple[Any, bool]:
        if path in context:
            return context[path], True
        return NOT_FOUND


class DotNotationResolver(PathResolver):
    """Traverses nested mappings one dot-separated segment at a time."""

    def resolve(self, path: str, context: Mapping) -> Tuple[Any, bool]:
        if "." not in path:
            return NOT_FOUND
        return navigate_nested_map(path.split("."), context)


class ColonFallbackResolver(PathResolver):
    """Supports flat namespaced keys: ``user.department`` -> ``user:department``."""

    def resolve(self, path: str, context: Mapping) -> Tuple[Any, bool]:
        if "." not in path:
            return NOT_FOUND
        flat_path = path.replace(".", ":", 1)
        if flat_path in context:
            return context[flat_path], True
        return NOT_FOUND


class ShortcutResolver(PathResolver):
    """Inserts a configured sub-path after a known prefix."""

    def __init__(self, shortcuts: Optional[Dict[str, List[str]]] = None):
        self.shortcuts = dict(DEFAULT_SHORTCUTS if shortcuts is None else shortcuts)

    def resolve(self, path: str, context: Mapping) -> Tuple[Any, bool]:
        if "." not in path:
            return NOT_FOUND

        prefix, _, remainder = path.partition(".")
        target_path = self.shortcuts.get(prefix)
        if target_path is None or not remainder:
            return NOT_FOUND

        base, found = navigate_nested_map([prefix, *target_path], context)
        if not found or not isinstance(base, Mapping):
            return NOT_FOUND
        return navigate_nested_map(remainder.split("."), base)


class ArrayAccessResolver(PathResolver):
    """Resolves paths containing ``field[N]`` or ``field.N`` index segments."""

    def __init__(self, normalizer: Optional[PathNormalizer] = None):
        self.normalizer = normalizer or PathNormalizer()

    def resolve(self, path: str, context: Mapping) -> Tuple[Any, bool]:
        if "[" not in path and not self._has_numeric_part(path):
            return NOT_FOUND

        try:
            info = self.normalizer.normalize_path(path)
        except InvalidPathError as e:
            logger.debug("Unresolvable path %r: %s", path, e)
            return NOT_FOUND

        if not info.has_array_access:
            return NOT_FOUND
        return navigate_with_array_access(info.parts, info.array_indices, context)

    @staticmethod
    def _has_numeric_part(path: str) -> bool:
        return any(part[:1].isdigit() for part in path.split(".")[1:])


class CompositePathResolver(PathResolver):
    """Tries each strategy in order until one finds the value."""

    def __init__(
        self,
        resolvers: Optional[List[PathResolver]] = None,
        shortcuts: Optional[Dict[str, List[str]]] = None
    ):
        if resolvers is None:
            resolvers = [
                DirectPathResolver(),
                DotNotationResolver(),
                ColonFallbackResolver(),
                ShortcutResolver(shortcuts),
                ArrayAccessResolver(),
            ]
        self.resolvers = resolvers

    def resolve(self, path: str, context: Mapping) -> Tuple[Any, bool]:
        if not isinstance(path, str) or not path or not isinstance(context, Mapping):
            return NOT_FOUND
        for resolver in self.resolvers:
            value, found = resolver.resolve(path, context)
            if found:
                return value, True
        return NOT_FOUND
