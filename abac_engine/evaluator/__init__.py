# abac-engine/abac_engine/evaluator/__init__.py
"""
Policy statement evaluation: attribute paths, action/resource patterns,
condition operators and condition blocks.
"""
from .conditions import (
    And,
    ConditionEvaluator,
    ConditionParser,
    Invalid,
    Leaf,
    Not,
    Or,
    substitute_variables,
)
from .matchers import ActionMatcher, ResourceMatcher, match_segments
from .operators import ABSENT, Operator, OperatorFunctions, RegexCache, lookup_operator
from .path import (
    ArrayAccessResolver,
    ColonFallbackResolver,
    CompositePathResolver,
    DirectPathResolver,
    DotNotationResolver,
    PathInfo,
    PathNormalizer,
    PathResolver,
    ShortcutResolver,
    parse_path,
)

__all__ = [
    # Conditions
    "ConditionEvaluator",
    "ConditionParser",
    "Leaf",
    "And",
    "Or",
    "Not",
    "Invalid",
    "substitute_variables",
    # Matching
    "ActionMatcher",
    "ResourceMatcher",
    "match_segments",
    # Operators
    "ABSENT",
    "Operator",
    "OperatorFunctions",
    "RegexCache",
    "lookup_operator",
    # Paths
    "PathResolver",
    "CompositePathResolver",
    "DirectPathResolver",
    "DotNotationResolver",
    "ColonFallbackResolver",
    "ShortcutResolver",
    "ArrayAccessResolver",
    "PathNormalizer",
    "PathInfo",
    "parse_path",
]
