# abac-engine/abac_engine/evaluator/conditions.py
"""
Condition blocks.

A statement condition is a mapping of operator name to ``{path: expected}``
entries::

    {
        "StringEquals": {"user.department": "engineering"},
        "NumericGreaterThanEquals": {"user.clearance": 3},
        "Or": [
            {"Bool": {"environment:is_internal_ip": true}},
            {"IpInRange": {"environment:client_ip": ["203.0.113.0/24"]}}
        ]
    }

All operators of a block and all keys of an operator are AND-ed. Blocks
are parsed into a small tree of nodes (:class:`Leaf`, :class:`And`,
:class:`Or`, :class:`Not`, :class:`Invalid`) which is then evaluated
against a context. Malformed pieces become :class:`Invalid` nodes and
evaluate to ``False``; only size limits raise.
"""
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from ..config import ABACConfig
from ..exceptions import ConditionLimitError
from .operators import ABSENT, Operator, OperatorFunctions, RegexCache, lookup_operator, to_string
from .path import CompositePathResolver, PathResolver

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10
DEFAULT_MAX_KEYS = 100

PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}]*)\}")


@dataclass(frozen=True)
class Leaf:
    """Single comparison: ``operator(resolve(path), expected)``."""
    operator: Operator
    path: str
    expected: Any


@dataclass(frozen=True)
class And:
    children: Tuple["ConditionNode", ...] = ()


@dataclass(frozen=True)
class Or:
    children: Tuple["ConditionNode", ...] = ()


@dataclass(frozen=True)
class Not:
    child: "ConditionNode"


@dataclass(frozen=True)
class Invalid:
    """Malformed or unknown construct; always false."""
    reason: str


ConditionNode = Union[Leaf, And, Or, Not, Invalid]

TRUE_NODE = And(())


def substitute_variables(value: Any, context: Mapping) -> Any:
    """
    Replace ``${key}`` placeholders in string values with context values.

    Keys are looked up directly in ``context``. Placeholders whose key is
    missing (or maps to None) stay as written. Mappings and lists are
    copied, never modified in place; mapping keys are left untouched.
    """
    if isinstance(value, str):
        return _substitute_string(value, context)
    if isinstance(value, Mapping):
        return {key: substitute_variables(item, context) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [substitute_variables(item, context) for item in value]
    return value


def _substitute_string(text: str, context: Mapping) -> str:
    if "${" not in text:
        return text

    def _replace(match):
        resolved = context.get(match.group(1))
        if resolved is None:
            return match.group(0)
        return to_string(resolved)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


class _ParseState:
    def __init__(self):
        self.keys = 0


class ConditionParser:
    """
    Turns condition blocks into node trees.

    Raises:
        ConditionLimitError: when nesting exceeds ``max_depth`` or the block
            holds more than ``max_keys`` operator and attribute keys.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, max_keys: int = DEFAULT_MAX_KEYS):
        self.max_depth = max_depth
        self.max_keys = max_keys

    def parse(self, block: Optional[Mapping]) -> ConditionNode:
        if not block:
            return TRUE_NODE
        return self._parse_block(block, 1, _ParseState())

    def _count_keys(self, state: _ParseState, count: int):
        state.keys += count
        if state.keys > self.max_keys:
            raise ConditionLimitError(
                f"Condition has more than {self.max_keys} keys",
                limit_name="max_condition_keys",
                limit=self.max_keys,
                actual=state.keys
            )

    def _parse_block(self, block: Any, depth: int, state: _ParseState) -> ConditionNode:
        if depth > self.max_depth:
            raise ConditionLimitError(
                f"Condition nesting exceeds depth {self.max_depth}",
                limit_name="max_condition_depth",
                limit=self.max_depth,
                actual=depth
            )
        if not isinstance(block, Mapping):
            return Invalid(f"Condition block must be a mapping, got {type(block).__name__}")

        self._count_keys(state, len(block))
        children = []
        for name, operand in block.items():
            op = lookup_operator(name)
            if op is None:
                children.append(Invalid(f"Unknown operator: {name}"))
            elif op.is_logical:
                children.append(self._parse_logical(op, operand, depth, state))
            else:
                children.append(self._parse_operator(op, operand, state))

        if len(children) == 1:
            return children[0]
        return And(tuple(children))

    def _parse_operator(self, op: Operator, operand: Any, state: _ParseState) -> ConditionNode:
        if not isinstance(operand, Mapping):
            return Invalid(f"{op.value} expects a mapping of attribute paths")
        self._count_keys(state, len(operand))
        leaves = tuple(Leaf(op, str(path), expected) for path, expected in operand.items())
        if len(leaves) == 1:
            return leaves[0]
        return And(leaves)

    def _parse_logical(self, op: Operator, operand: Any, depth: int, state: _ParseState) -> ConditionNode:
        if isinstance(operand, (list, tuple)):
            children = tuple(self._parse_entry(entry, depth + 1, state) for entry in operand)
            if op is Operator.AND:
                return And(children)
            if op is Operator.OR:
                return Or(children)
            return Not(And(children))

        if isinstance(operand, Mapping):
            if op is Operator.NOT:
                return Not(self._parse_block(operand, depth + 1, state))
            if op is Operator.OR:
                return Or(tuple(
                    self._parse_block({name: value}, depth + 1, state)
                    for name, value in operand.items()
                ))

        return Invalid(f"{op.value} expects an array of condition blocks")

    def _parse_entry(self, entry: Any, depth: int, state: _ParseState) -> ConditionNode:
        if not isinstance(entry, Mapping):
            return Invalid(f"Logical operand entries must be mappings, got {type(entry).__name__}")
        return self._parse_block(entry, depth, state)


class ConditionEvaluator:
    """
    Evaluates condition blocks against an evaluation context.

    The evaluator owns its regex cache; share one evaluator between threads
    to share the cache.
    """

    def __init__(
        self,
        path_resolver: Optional[PathResolver] = None,
        regex_cache: Optional[RegexCache] = None,
        operators: Optional[OperatorFunctions] = None,
        parser: Optional[ConditionParser] = None,
        config: Optional[ABACConfig] = None
    ):
        config = config or ABACConfig()
        self.path_resolver = path_resolver or CompositePathResolver(shortcuts=config.paths.shortcuts)
        self.regex_cache = regex_cache if regex_cache is not None else RegexCache()
        self.operators = operators or OperatorFunctions(
            regex_cache=self.regex_cache,
            business_hours=config.business_hours,
            network=config.network,
            path_resolver=self.path_resolver
        )
        self.parser = parser or ConditionParser(
            max_depth=config.limits.max_condition_depth,
            max_keys=config.limits.max_condition_keys
        )

    def parse(self, block: Optional[Mapping]) -> ConditionNode:
        """Parse a block; raises ConditionLimitError for over-limit blocks."""
        return self.parser.parse(block)

    def evaluate_conditions(self, block: Optional[Mapping], context: Mapping) -> bool:
        """Substitute placeholders, parse and evaluate a block. Never raises."""
        if not block:
            return True
        try:
            node = self.parse(substitute_variables(block, context))
        except ConditionLimitError as e:
            logger.warning("Rejecting condition block: %s", e)
            return False
        return self.evaluate(node, context)

    def evaluate(self, node: ConditionNode, context: Mapping) -> bool:
        """Evaluate a parsed node tree."""
        if isinstance(node, Leaf):
            return self._evaluate_leaf(node, context)
        if isinstance(node, And):
            return all(self.evaluate(child, context) for child in node.children)
        if isinstance(node, Or):
            return any(self.evaluate(child, context) for child in node.children)
        if isinstance(node, Not):
            return not self.evaluate(node.child, context)
        if isinstance(node, Invalid):
            logger.debug("Invalid condition: %s", node.reason)
            return False
        return False

    def _evaluate_leaf(self, leaf: Leaf, context: Mapping) -> bool:
        actual, found = self.path_resolver.resolve(leaf.path, context)
        if not found:
            actual = ABSENT
        return self.operators.compare(leaf.operator, actual, leaf.expected, context)
