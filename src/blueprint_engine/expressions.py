"""Safe boolean evaluation of blueprint condition expressions.

Conditions such as ``status == "active" && count >= 5`` are evaluated with a
small tokenizer and recursive-descent parser. Nothing in an expression is ever
handed to ``eval``; anything the grammar does not understand evaluates to
``False``.

Grammar (lowest to highest precedence)::

    or_expr     := and_expr ( "||" and_expr )*
    and_expr    := comparison ( "&&" comparison )*
    comparison  := "!" comparison
                 | "(" or_expr ")"
                 | literal [ comparator literal ]
    comparator  := "==" | "!=" | ">=" | "<=" | ">" | "<"
"""

from __future__ import annotations

import json
import logging
import math
import operator
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from blueprint_engine.errors import (
    ExpressionError,
    ExpressionParseError,
    UnsafeExpressionError,
)

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = (
    "function",
    "eval",
    "exec",
    "compile",
    "lambda",
    "constructor",
    "prototype",
    "__proto__",
    "__class__",
    "__import__",
    "__globals__",
    "__builtins__",
    "import",
    "export",
    "require",
    "process",
    "window",
    "document",
    "globalthis",
    "global",
    "this",
    "settimeout",
    "setinterval",
    "fetch",
)

_ALLOWED_CHARACTERS = re.compile(r"^[A-Za-z0-9\s.\[\]\"'<>=!&|()_]+$")
_STRING_LITERAL = re.compile(r"\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*'")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")

TWO_CHAR_OPERATORS = frozenset({"==", "!=", ">=", "<=", "&&", "||"})
COMPARATORS = {
    "==": None,
    "!=": None,
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}
_WORD_TERMINATORS = frozenset("\"'()<>=!&|")

# Token kinds
STRING = "string"
JSON_LITERAL = "json"
WORD = "word"
OPERATOR = "op"
LPAREN = "lparen"
RPAREN = "rparen"

_VALUE_KINDS = frozenset({STRING, JSON_LITERAL, WORD})


@dataclass(frozen=True)
class Token:
    """A lexical token of a condition expression."""

    kind: str
    text: str
    position: int = 0


def to_literal(value: Any) -> str:
    """Render a context value as a literal the tokenizer reads back."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value):
        # Positional form; the number pattern has no exponent syntax
        return format(Decimal(repr(value)), "f")
    if isinstance(value, (int, float, str, list, dict)):
        return json.dumps(value, default=str)
    return json.dumps(str(value))


def substitute_variables(expression: str, variables: Mapping[str, Any]) -> str:
    """Replace whole-word variable names with JSON-safe literals.

    Names are matched longest-first in a single pass, and quoted string
    literals already present in the expression are left untouched. A dotted
    path after a name (``trigger.amount``, ``items.0``) is resolved through
    nested mappings and lists; a path that does not resolve is left as written.
    """
    names = sorted(
        (name for name in variables if isinstance(name, str) and name),
        key=len,
        reverse=True,
    )
    if not names:
        return expression

    alternatives = "|".join(re.escape(name) for name in names)
    pattern = re.compile(rf"\b({alternatives})\b((?:\.\w+)*)")

    def replace(match: re.Match) -> str:
        value = variables[match.group(1)]
        if not match.group(2):
            return to_literal(value)
        found, resolved = _follow_path(value, match.group(2)[1:].split("."))
        return to_literal(resolved) if found else match.group(0)

    parts = []
    last = 0
    for literal in _STRING_LITERAL.finditer(expression):
        parts.append(pattern.sub(replace, expression[last : literal.start()]))
        parts.append(literal.group(0))
        last = literal.end()
    parts.append(pattern.sub(replace, expression[last:]))
    return "".join(parts)


def _follow_path(value: Any, parts: list[str]) -> tuple[bool, Any]:
    for part in parts:
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return False, None
    return True, value


def _scan_string(text: str, start: int) -> int:
    """Return the index just past the string literal starting at *start*."""
    quote = text[start]
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        i += 1
    raise ExpressionParseError(f"Unterminated string literal at position {start}")


def _scan_json(text: str, start: int) -> int:
    """Return the index just past the balanced array/object starting at *start*."""
    depth = 0
    i = start
    while i < len(text):
        ch = text[i]
        if ch in "\"'":
            i = _scan_string(text, i)
            continue
        if ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise ExpressionParseError(f"Unbalanced brackets at position {start}")


def tokenize(expression: str) -> list[Token]:
    """Split an expression into tokens.

    Two-character operators are matched before single-character ones.

    Raises:
        ExpressionParseError: On unterminated strings, unbalanced literals or
            stray operator characters
    """
    tokens: list[Token] = []
    i = 0
    length = len(expression)

    while i < length:
        ch = expression[i]

        if ch.isspace():
            i += 1
        elif ch in "\"'":
            end = _scan_string(expression, i)
            tokens.append(Token(STRING, expression[i:end], i))
            i = end
        elif ch in "[{":
            end = _scan_json(expression, i)
            tokens.append(Token(JSON_LITERAL, expression[i:end], i))
            i = end
        elif ch == "(":
            tokens.append(Token(LPAREN, ch, i))
            i += 1
        elif ch == ")":
            tokens.append(Token(RPAREN, ch, i))
            i += 1
        elif expression[i : i + 2] in TWO_CHAR_OPERATORS:
            tokens.append(Token(OPERATOR, expression[i : i + 2], i))
            i += 2
        elif ch in "<>!":
            tokens.append(Token(OPERATOR, ch, i))
            i += 1
        elif ch in "=&|":
            raise ExpressionParseError(f"Malformed operator '{ch}' at position {i}")
        else:
            start = i
            while (
                i < length
                and not expression[i].isspace()
                and expression[i] not in _WORD_TERMINATORS
            ):
                i += 1
            tokens.append(Token(WORD, expression[start:i], start))

    return tokens


def literal_value(token: Token) -> Any:
    """Convert a value token to a Python value."""
    text = token.text
    if token.kind == STRING:
        if text.startswith('"'):
            try:
                return json.loads(text)
            except ValueError:
                return text[1:-1]
        return re.sub(r"\\(.)", r"\1", text[1:-1])
    if token.kind == JSON_LITERAL:
        try:
            return json.loads(text)
        except ValueError:
            return text
    if _NUMBER.match(text):
        return float(text) if "." in text else int(text)
    if text == "true":
        return True
    if text == "false":
        return False
    if text == "null":
        return None
    return text


def _to_number(value: str) -> int | float | None:
    stripped = value.strip()
    if not _NUMBER.match(stripped):
        return None
    return float(stripped) if "." in stripped else int(stripped)


def _coerce_pair(left: Any, right: Any) -> tuple[Any, Any]:
    """Coerce numeric strings when compared against numbers."""
    if isinstance(left, (int, float)) and isinstance(right, str):
        number = _to_number(right)
        if number is not None:
            return left, number
    elif isinstance(right, (int, float)) and isinstance(left, str):
        number = _to_number(left)
        if number is not None:
            return number, right
    return left, right


def compare(left: Any, op: str, right: Any) -> bool:
    """Apply a comparator with loose equality and guarded ordering."""
    if op in ("==", "!="):
        if left is None or right is None:
            equal = left is None and right is None
        else:
            left, right = _coerce_pair(left, right)
            equal = left == right
        return equal if op == "==" else not equal

    if left is None or right is None:
        return False
    left, right = _coerce_pair(left, right)
    try:
        return bool(COMPARATORS[op](left, right))
    except TypeError:
        return False


class _Parser:
    """Recursive-descent evaluator over a token list."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def parse(self) -> bool:
        if not self.tokens:
            raise ExpressionParseError("Empty expression")
        result = self._or_expr()
        if self.pos < len(self.tokens):
            token = self.tokens[self.pos]
            raise ExpressionParseError(
                f"Unexpected token '{token.text}' at position {token.position}"
            )
        return result

    def _peek(self) -> Token | None:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise ExpressionParseError("Unexpected end of expression")
        self.pos += 1
        return token

    def _accept_operator(self, text: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == OPERATOR and token.text == text:
            self.pos += 1
            return True
        return False

    def _or_expr(self) -> bool:
        left = self._and_expr()
        while self._accept_operator("||"):
            right = self._and_expr()
            left = left or right
        return left

    def _and_expr(self) -> bool:
        left = self._comparison()
        while self._accept_operator("&&"):
            right = self._comparison()
            left = left and right
        return left

    def _comparison(self) -> bool:
        token = self._next()

        if token.kind == OPERATOR and token.text == "!":
            return not self._comparison()

        if token.kind == LPAREN:
            value = self._or_expr()
            closing = self._peek()
            if closing is None or closing.kind != RPAREN:
                raise ExpressionParseError("Missing closing parenthesis")
            self.pos += 1
            return value

        if token.kind not in _VALUE_KINDS:
            raise ExpressionParseError(
                f"Unexpected token '{token.text}' at position {token.position}"
            )

        left = literal_value(token)
        following = self._peek()
        if following is None or following.kind != OPERATOR or following.text not in COMPARATORS:
            return bool(left)

        self.pos += 1
        right_token = self._next()
        if right_token.kind not in _VALUE_KINDS:
            raise ExpressionParseError(
                f"Expected a value after '{following.text}' at position {following.position}"
            )
        return compare(left, following.text, literal_value(right_token))


class ExpressionEvaluator:
    """Evaluates condition strings against a variable mapping.

    ``evaluate`` never raises: forbidden keywords, characters outside the
    allow-list and parse errors all yield ``False``. Use ``check`` to get the
    reason as an exception instead.
    """

    def __init__(self, forbidden_keywords: tuple[str, ...] = FORBIDDEN_KEYWORDS):
        self.forbidden_keywords = tuple(word.lower() for word in forbidden_keywords)
        alternatives = "|".join(re.escape(word) for word in self.forbidden_keywords)
        self._forbidden = re.compile(rf"(?<![a-z0-9])(?:{alternatives})(?![a-z0-9])")

    def check(self, expression: str) -> str:
        """Validate an expression before substitution.

        Returns:
            The stripped expression

        Raises:
            UnsafeExpressionError: On forbidden keywords or characters
        """
        if not isinstance(expression, str):
            raise UnsafeExpressionError("Expression must be a string")

        match = self._forbidden.search(expression.lower())
        if match:
            raise UnsafeExpressionError(f"Forbidden keyword in expression: {match.group(0)}")

        if not _ALLOWED_CHARACTERS.match(expression):
            raise UnsafeExpressionError("Invalid characters in expression")

        return expression.strip()

    def evaluate(self, expression: str, variables: Mapping[str, Any] | None = None) -> bool:
        """Evaluate *expression* to a boolean, failing safe to ``False``."""
        try:
            sanitized = self.check(expression)
            substituted = substitute_variables(sanitized, variables or {})
            result = _Parser(tokenize(substituted)).parse()
        except ExpressionError as e:
            logger.warning(f"Expression rejected ({e.code}): {e.message}")
            return False
        except Exception as e:
            logger.error(f"Expression evaluation failed: {e}")
            return False

        logger.debug(f"Expression {expression!r} evaluated to {result}")
        return result


_default_evaluator = ExpressionEvaluator()


def evaluate_expression(expression: str, variables: Mapping[str, Any] | None = None) -> bool:
    """Evaluate a condition with the default evaluator."""
    return _default_evaluator.evaluate(expression, variables)
