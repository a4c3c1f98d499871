#!/usr/bin/env -S python3 -B -u
"""
Assertion Engine

Compares actual command output against expected values and raises a
structured mismatch with a framed expected/actual diagnostic.

Operators form a closed set (`Comparison`); `compare()` is a pure function so
every operator can be tested on its own. `==` and `=` are always literal
comparisons, the expected value is never interpreted as a pattern.
"""

import json
import re
from enum import Enum
from typing import Any, Optional, Union

import jmespath
from jmespath.exceptions import JMESPathError

from .exceptions import AssertionMismatchError, ValidationError
from .structured_logging import get_logger


NO_TEST_NAME = "[no test name given]"


class Comparison(str, Enum):
    """Supported comparison operators."""
    EQUAL = "=="
    NOT_EQUAL = "!="
    MATCH = "=~"
    NOT_MATCH = "!~"
    LESS = "<"
    GREATER = ">"
    NUM_EQ = "-eq"
    NUM_NE = "-ne"
    NUM_LT = "-lt"
    NUM_LE = "-le"
    NUM_GT = "-gt"
    NUM_GE = "-ge"


_ALIASES = {"=": Comparison.EQUAL}

_NUMERIC = {
    Comparison.NUM_EQ: lambda a, b: a == b,
    Comparison.NUM_NE: lambda a, b: a != b,
    Comparison.NUM_LT: lambda a, b: a < b,
    Comparison.NUM_LE: lambda a, b: a <= b,
    Comparison.NUM_GT: lambda a, b: a > b,
    Comparison.NUM_GE: lambda a, b: a >= b,
}


def parse_operator(operator: Union[str, Comparison]) -> Comparison:
    """Map an operator string such as '==' or '=~' to its Comparison."""
    if isinstance(operator, Comparison):
        return operator
    if operator in _ALIASES:
        return _ALIASES[operator]
    try:
        return Comparison(operator)
    except ValueError:
        raise ValidationError(
            field="operator",
            value=operator,
            requirement="be one of: =, " + ", ".join(c.value for c in Comparison)
        )


def _to_int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except ValueError:
        return None


def compare(kind: Comparison, actual: str, expected: str) -> bool:
    """
    Evaluate `actual <kind> expected`.

    Pattern operators search anywhere in `actual` and `.` also matches a
    newline. Numeric operators are false when either side is not an integer.

    Raises:
        ValidationError: If `expected` is not a valid regular expression
    """
    if kind is Comparison.EQUAL:
        return actual == expected
    if kind is Comparison.NOT_EQUAL:
        return actual != expected
    if kind in (Comparison.MATCH, Comparison.NOT_MATCH):
        try:
            found = re.search(expected, actual, re.DOTALL) is not None
        except re.error as e:
            raise ValidationError(
                field="pattern",
                value=expected,
                requirement=f"be a valid regular expression ({e})",
                cause=e
            )
        return found if kind is Comparison.MATCH else not found
    if kind is Comparison.LESS:
        return actual < expected
    if kind is Comparison.GREATER:
        return actual > expected

    left, right = _to_int(actual), _to_int(expected)
    if left is None or right is None:
        return False
    return _NUMERIC[kind](left, right)


def format_diagnostic(description: str, operator: Union[str, Comparison],
                      expected: str, actual: str) -> str:
    """
    Build the framed failure message.

    The operator is omitted for '==' and every further line of a multi-line
    actual value is aligned under the first one.
    """
    operator = parse_operator(operator)
    op = "" if operator is Comparison.EQUAL else f"{operator.value} "
    ws = " " * len(op)

    actual_lines = actual.split("\n") if actual else [""]
    lines = [
        "#/vvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvvv",
        f"#|     FAIL: {description}",
        f"#| expected: {op}'{expected}'",
        f"#|   actual: {ws}'{actual_lines[0]}'",
    ]
    for line in actual_lines[1:]:
        lines.append(f"#|         > {ws}'{line}'")
    lines.append("#\\^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^")
    return "\n".join(lines)


def render_json_value(value: Any) -> str:
    """Render a JSON value the way `jq -r` prints it."""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2)
    return json.dumps(value)


def _jmespath_expression(query: str) -> str:
    """Turn a jq style path ('.a.b[0]', '.') into a jmespath expression."""
    query = query.strip()
    if query in ("", "."):
        return "@"
    if query.startswith("."):
        query = query[1:]
    return query


def extract_json(document: str, query: str) -> str:
    """
    Extract a field from a JSON document by a jq style query path.

    Missing fields render as 'null' like jq does.

    Raises:
        ValueError: If the document is not JSON or the query is invalid
    """
    try:
        data = json.loads(document)
    except (TypeError, ValueError) as e:
        raise ValueError(f"malformed JSON: {e}")
    try:
        value = jmespath.search(_jmespath_expression(query), data)
    except JMESPathError as e:
        raise ValueError(f"invalid query '{query}': {e}")
    return render_json_value(value)


class AssertionEngine:
    """
    Checks values and reports mismatches.

    When a runner is given, a failed check without a description is labelled
    with the runner's most recent command.
    """

    def __init__(self, runner=None, verbose_level: int = 0):
        self.runner = runner
        self.logger = get_logger(__name__, verbose_level)

    def _describe(self, description: Optional[str]) -> str:
        if description:
            return description
        last_command = getattr(self.runner, 'last_command', None)
        return last_command or NO_TEST_NAME

    def _fail(self, description: Optional[str], operator: Comparison,
              expected: str, actual: str, cause: Optional[Exception] = None) -> None:
        description = self._describe(description)
        diagnostic = format_diagnostic(description, operator, expected, actual)
        self.logger.transcript(diagnostic)
        raise AssertionMismatchError(
            description, operator.value, expected, actual,
            diagnostic=diagnostic, cause=cause
        )

    def check(self, actual: str, operator: Union[str, Comparison], expected: str,
              description: Optional[str] = None) -> None:
        """
        Assert `actual <operator> expected`.

        Raises:
            AssertionMismatchError: If the comparison does not hold
            ValidationError: For an unknown operator or an invalid pattern
        """
        kind = parse_operator(operator)
        actual = "" if actual is None else str(actual)
        expected = str(expected)
        if not compare(kind, actual, expected):
            self._fail(description, kind, expected, actual)

    def check_json(self, document: str, query: str, operator: Union[str, Comparison],
                   expected: str, description: Optional[str] = None) -> None:
        """
        Assert on a field extracted from a JSON document.

        A malformed document or an invalid query is reported as a mismatch.
        """
        kind = parse_operator(operator)
        try:
            actual = extract_json(document, query)
        except ValueError as e:
            self._fail(description or f"json query {query}", kind, str(expected),
                       f"<{e}>", cause=e)
        self.check(actual, kind, expected, description)


_default_engine = AssertionEngine()


def assert_that(actual: str, operator: Union[str, Comparison], expected: str,
                description: Optional[str] = None) -> None:
    """Module level shortcut for AssertionEngine.check."""
    _default_engine.check(actual, operator, expected, description)


def assert_json(document: str, query: str, operator: Union[str, Comparison],
                expected: str, description: Optional[str] = None) -> None:
    """Module level shortcut for AssertionEngine.check_json."""
    _default_engine.check_json(document, query, operator, expected, description)
