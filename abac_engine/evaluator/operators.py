# abac-engine/abac_engine/evaluator/operators.py
"""
Condition operator catalogue.

Operators are grouped in families (string, numeric, boolean, date/time,
array, network, logical). Operator names in policy documents are
case-insensitive and resolved through :func:`lookup_operator`; names that
do not resolve evaluate to ``False``.

Every comparison is total: coercion failures and type mismatches make the
predicate false instead of raising.
"""
import ipaddress
import logging
import operator
import re
import threading
from collections.abc import Mapping
from datetime import datetime, time, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern

from ..config import BusinessHoursConfig, NetworkConfig, WEEKDAY_NAMES
from .path import CompositePathResolver, PathResolver

logger = logging.getLogger(__name__)


class _Absent:
    """Marker for an attribute that is not present in the context."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "ABSENT"


ABSENT = _Absent()


class Operator(Enum):
    """Operators understood by the condition evaluator."""
    # String
    STRING_EQUALS = "stringequals"
    STRING_NOT_EQUALS = "stringnotequals"
    STRING_LIKE = "stringlike"
    STRING_CONTAINS = "stringcontains"
    STRING_STARTS_WITH = "stringstartswith"
    STRING_ENDS_WITH = "stringendswith"
    STRING_REGEX = "stringregex"
    # Numeric
    NUMERIC_EQUALS = "numericequals"
    NUMERIC_NOT_EQUALS = "numericnotequals"
    NUMERIC_LESS_THAN = "numericlessthan"
    NUMERIC_LESS_THAN_EQUALS = "numericlessthanequals"
    NUMERIC_GREATER_THAN = "numericgreaterthan"
    NUMERIC_GREATER_THAN_EQUALS = "numericgreaterthanequals"
    NUMERIC_BETWEEN = "numericbetween"
    # Boolean
    BOOL = "bool"
    # Date/time
    DATE_LESS_THAN = "datelessthan"
    DATE_LESS_THAN_EQUALS = "datelessthanequals"
    DATE_GREATER_THAN = "dategreaterthan"
    DATE_GREATER_THAN_EQUALS = "dategreaterthanequals"
    DATE_BETWEEN = "datebetween"
    DAY_OF_WEEK = "dayofweek"
    TIME_OF_DAY = "timeofday"
    IS_BUSINESS_HOURS = "isbusinesshours"
    # Array
    ARRAY_CONTAINS = "arraycontains"
    ARRAY_NOT_CONTAINS = "arraynotcontains"
    ARRAY_SIZE = "arraysize"
    # Network
    IP_IN_RANGE = "ipinrange"
    IP_NOT_IN_RANGE = "ipnotinrange"
    IS_INTERNAL_IP = "isinternalip"
    # Logical
    AND = "and"
    OR = "or"
    NOT = "not"

    @property
    def is_logical(self) -> bool:
        return self in LOGICAL_OPERATORS


LOGICAL_OPERATORS = frozenset({Operator.AND, Operator.OR, Operator.NOT})

OPERATOR_ALIASES: Dict[str, Operator] = {
    "boolean": Operator.BOOL,
    "timelessthan": Operator.DATE_LESS_THAN,
    "timelessthanequals": Operator.DATE_LESS_THAN_EQUALS,
    "timegreaterthan": Operator.DATE_GREATER_THAN,
    "timegreaterthanequals": Operator.DATE_GREATER_THAN_EQUALS,
    "timebetween": Operator.DATE_BETWEEN,
}


def lookup_operator(name: Any) -> Optional[Operator]:
    """Resolve an operator name case-insensitively; ``None`` when unknown."""
    if not isinstance(name, str):
        return None
    key = name.strip().lower()
    if key in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[key]
    try:
        return Operator(key)
    except ValueError:
        return None


# Coercions

TIME_FORMATS = [
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d %H:%M:%S",
    "%H:%M",
    "%Y-%m-%d",
]

# fromisoformat before Python 3.11 only takes 3 or 6 fractional digits
FRACTION_PATTERN = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")


def to_string(value: Any) -> str:
    """Render a value the way policy authors write literals."""
    if value is None or value is ABSENT:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_float(value: Any) -> float:
    """Numeric coercion; anything unparsable becomes 0."""
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() == "true" or value == "1"
    if isinstance(value, (int, float)):
        return value != 0
    return False


def to_list(value: Any) -> List[Any]:
    """Treat a scalar as a one-element array."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize_rfc3339(value: str) -> str:
    value = FRACTION_PATTERN.sub(
        lambda m: m.group(1) + "." + (m.group(2) + "000000")[:6], value
    )
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return value


def parse_time(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp. RFC3339 is tried first, then the fixed layouts in
    TIME_FORMATS. Naive values are taken as UTC. Returns None on failure.
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str) or not value:
        return None

    if "T" in value:
        try:
            return _as_utc(datetime.fromisoformat(_normalize_rfc3339(value)))
        except ValueError:
            pass
    for fmt in TIME_FORMATS:
        try:
            return _as_utc(datetime.strptime(value, fmt))
        except ValueError:
            continue
    return None


def parse_clock(value: Any) -> Optional[time]:
    """Parse an ``HH:MM`` wall-clock time."""
    if isinstance(value, datetime):
        return value.time().replace(second=0, microsecond=0)
    try:
        return datetime.strptime(to_string(value).strip(), "%H:%M").time()
    except ValueError:
        return None


class RegexCache:
    """
    Compiled-pattern cache keyed by pattern text.

    Shared by every evaluation that goes through the owning evaluator, so
    access is serialized with a lock. Invalid patterns are cached as None.
    """

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._patterns: Dict[str, Optional[Pattern]] = {}
        self._lock = threading.Lock()

    def get(self, pattern: str) -> Optional[Pattern]:
        with self._lock:
            if pattern in self._patterns:
                return self._patterns[pattern]
            try:
                compiled = re.compile(pattern)
            except re.error as e:
                logger.debug("Invalid regex %r: %s", pattern, e)
                compiled = None
            if len(self._patterns) >= self.max_size:
                self._patterns.clear()
            self._patterns[pattern] = compiled
            return compiled

    def __len__(self):
        with self._lock:
            return len(self._patterns)

    def clear(self):
        with self._lock:
            self._patterns.clear()


ComparisonFunction = Callable[[Any, Any, Mapping], bool]

SIZE_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "equals": operator.eq,
    "gt": operator.gt,
    "greaterthan": operator.gt,
    "gte": operator.ge,
    "greaterthanequals": operator.ge,
    "lt": operator.lt,
    "lessthan": operator.lt,
    "lte": operator.le,
    "lessthanequals": operator.le,
}


class OperatorFunctions:
    """
    Comparison functions for every non-logical operator.

    ``compare(op, actual, expected, context)`` is the single entry point;
    ``context`` is only consulted by operators that fall back to other
    attributes (``IsBusinessHours``).
    """

    def __init__(
        self,
        regex_cache: Optional[RegexCache] = None,
        business_hours: Optional[BusinessHoursConfig] = None,
        network: Optional[NetworkConfig] = None,
        path_resolver: Optional[PathResolver] = None
    ):
        self.regex_cache = regex_cache if regex_cache is not None else RegexCache()
        self.business_hours = business_hours or BusinessHoursConfig()
        network = network or NetworkConfig()
        self.internal_networks = [
            ipaddress.ip_network(cidr, strict=False) for cidr in network.internal_ip_ranges
        ]
        self.path_resolver = path_resolver or CompositePathResolver()

        self._handlers: Dict[Operator, ComparisonFunction] = {
            Operator.STRING_EQUALS: self._string_equals,
            Operator.STRING_NOT_EQUALS: self._string_not_equals,
            Operator.STRING_LIKE: self._string_like,
            Operator.STRING_CONTAINS: lambda a, e, c: to_string(e) in to_string(a),
            Operator.STRING_STARTS_WITH: lambda a, e, c: to_string(a).startswith(to_string(e)),
            Operator.STRING_ENDS_WITH: lambda a, e, c: to_string(a).endswith(to_string(e)),
            Operator.STRING_REGEX: self._string_regex,
            Operator.NUMERIC_EQUALS: self._numeric(operator.eq),
            Operator.NUMERIC_NOT_EQUALS: self._numeric(operator.ne),
            Operator.NUMERIC_LESS_THAN: self._numeric(operator.lt),
            Operator.NUMERIC_LESS_THAN_EQUALS: self._numeric(operator.le),
            Operator.NUMERIC_GREATER_THAN: self._numeric(operator.gt),
            Operator.NUMERIC_GREATER_THAN_EQUALS: self._numeric(operator.ge),
            Operator.NUMERIC_BETWEEN: self._numeric_between,
            Operator.BOOL: lambda a, e, c: to_bool(a) == to_bool(e),
            Operator.DATE_LESS_THAN: self._date(operator.lt),
            Operator.DATE_LESS_THAN_EQUALS: self._date(operator.le),
            Operator.DATE_GREATER_THAN: self._date(operator.gt),
            Operator.DATE_GREATER_THAN_EQUALS: self._date(operator.ge),
            Operator.DATE_BETWEEN: self._date_between,
            Operator.DAY_OF_WEEK: self._day_of_week,
            Operator.TIME_OF_DAY: self._time_of_day,
            Operator.IS_BUSINESS_HOURS: self._is_business_hours,
            Operator.ARRAY_CONTAINS: self._array_contains,
            Operator.ARRAY_NOT_CONTAINS: lambda a, e, c: not self._array_contains(a, e, c),
            Operator.ARRAY_SIZE: self._array_size,
            Operator.IP_IN_RANGE: self._ip_in_range,
            Operator.IP_NOT_IN_RANGE: self._ip_not_in_range,
            Operator.IS_INTERNAL_IP: self._is_internal_ip,
        }

    def supports(self, op: Operator) -> bool:
        return op in self._handlers

    def compare(
        self,
        op: Operator,
        actual: Any,
        expected: Any,
        context: Optional[Mapping] = None
    ) -> bool:
        """Apply ``op``; absent attributes never satisfy any operator."""
        if actual is ABSENT:
            return False
        handler = self._handlers.get(op)
        if handler is None:
            return False
        try:
            return bool(handler(actual, expected, context or {}))
        except (TypeError, ValueError, OverflowError) as e:
            logger.debug("Operator %s failed on %r: %s", op.value, actual, e)
            return False

    # String family

    @staticmethod
    def _string_equals(actual, expected, context):
        return to_string(actual) == to_string(expected)

    @staticmethod
    def _string_not_equals(actual, expected, context):
        return to_string(actual) != to_string(expected)

    @staticmethod
    def _string_like(actual, expected, context):
        pattern = to_string(expected)
        regex = "^" + ".*".join(re.escape(piece) for piece in pattern.split("*")) + "$"
        return re.match(regex, to_string(actual), re.DOTALL) is not None

    def _string_regex(self, actual, expected, context):
        compiled = self.regex_cache.get(to_string(expected))
        if compiled is None:
            return False
        return compiled.search(to_string(actual)) is not None

    # Numeric family

    @staticmethod
    def _numeric(compare: Callable[[float, float], bool]) -> ComparisonFunction:
        def _compare(actual, expected, context):
            return compare(to_float(actual), to_float(expected))
        return _compare

    @staticmethod
    def _numeric_between(actual, expected, context):
        if isinstance(expected, Mapping):
            if "min" not in expected or "max" not in expected:
                return False
            low, high = expected["min"], expected["max"]
        elif isinstance(expected, (list, tuple)) and len(expected) == 2:
            low, high = expected
        else:
            return False
        value = to_float(actual)
        return to_float(low) <= value <= to_float(high)

    # Date/time family

    @staticmethod
    def _date(compare: Callable[[datetime, datetime], bool]) -> ComparisonFunction:
        def _compare(actual, expected, context):
            actual_time = parse_time(actual)
            expected_time = parse_time(expected)
            if actual_time is None or expected_time is None:
                return False
            return compare(actual_time, expected_time)
        return _compare

    @staticmethod
    def _date_between(actual, expected, context):
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return False
        actual_time = parse_time(actual)
        start, end = parse_time(expected[0]), parse_time(expected[1])
        if actual_time is None or start is None or end is None:
            return False
        return start <= actual_time <= end

    @staticmethod
    def _day_of_week(actual, expected, context):
        if isinstance(actual, datetime):
            actual_day = WEEKDAY_NAMES[actual.weekday()]
        else:
            actual_day = to_string(actual)
        actual_day = actual_day.lower()
        return any(to_string(day).lower() == actual_day for day in to_list(expected))

    @staticmethod
    def _time_of_day(actual, expected, context):
        actual_clock = parse_clock(actual)
        if actual_clock is None:
            return False

        expected_text = to_string(expected).strip()
        if "-" in expected_text:
            start_text, _, end_text = expected_text.partition("-")
            start, end = parse_clock(start_text), parse_clock(end_text)
            if start is None or end is None:
                return False
            if start <= end:
                return start <= actual_clock < end
            # Window wraps past midnight
            return actual_clock >= start or actual_clock < end

        expected_clock = parse_clock(expected_text)
        return expected_clock is not None and actual_clock == expected_clock

    def _is_business_hours(self, actual, expected, context):
        if isinstance(actual, datetime):
            is_business = self.business_hours.is_business_hours(
                actual.hour, WEEKDAY_NAMES[actual.weekday()]
            )
        elif isinstance(actual, bool):
            is_business = actual
        else:
            hour, hour_found = self.path_resolver.resolve("environment.hour", context)
            day, day_found = self.path_resolver.resolve("environment.day_of_week", context)
            if not hour_found or not day_found:
                return False
            is_business = self.business_hours.is_business_hours(
                int(to_float(hour)), to_string(day)
            )
        return is_business == to_bool(expected)

    # Array family

    @staticmethod
    def _array_contains(actual, expected, context):
        expected_text = to_string(expected)
        return any(to_string(item) == expected_text for item in to_list(actual))

    @staticmethod
    def _array_size(actual, expected, context):
        size = len(to_list(actual))
        if isinstance(expected, Mapping):
            for name, limit in expected.items():
                compare = SIZE_OPERATORS.get(str(name).lower())
                if compare is None or not compare(size, int(to_float(limit))):
                    return False
            return True
        return size == int(to_float(expected))

    # Network family

    @staticmethod
    def _parse_ip(value):
        try:
            return ipaddress.ip_address(to_string(value).strip())
        except ValueError:
            return None

    @staticmethod
    def _parse_networks(ranges: Any) -> Iterable:
        for entry in to_list(ranges):
            try:
                # A bare address becomes a single-host network
                yield ipaddress.ip_network(to_string(entry).strip(), strict=False)
            except ValueError:
                logger.debug("Skipping invalid IP range %r", entry)

    def _ip_in_range(self, actual, expected, context):
        ip = self._parse_ip(actual)
        if ip is None:
            return False
        return any(ip in network for network in self._parse_networks(expected))

    def _ip_not_in_range(self, actual, expected, context):
        ip = self._parse_ip(actual)
        if ip is None:
            return False
        return not any(ip in network for network in self._parse_networks(expected))

    def is_internal_ip(self, value: Any) -> bool:
        """Check an address against the configured internal ranges."""
        ip = self._parse_ip(value)
        if ip is None:
            return False
        return any(ip in network for network in self.internal_networks)

    def _is_internal_ip(self, actual, expected, context):
        if isinstance(actual, bool):
            is_internal = actual
        else:
            if self._parse_ip(actual) is None:
                return False
            is_internal = self.is_internal_ip(actual)
        return is_internal == to_bool(expected)
