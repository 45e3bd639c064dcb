"""
Arithmetic evaluator for calculated table columns.

Formulas are parsed by a small recursive-descent parser that only knows
numbers, identifiers, ``+ - * /`` and parentheses. Identifiers name other
columns of the same row. Nothing in a formula is ever handed to ``eval``.

Evaluation never raises: any failure yields the ``ERROR`` sentinel, which is
stored in the cell like any other value.
"""
import logging
import math
import re
from typing import Any, Dict, List, Mapping, Tuple, Union

logger = logging.getLogger(__name__)

ERROR = "Error"

# Deepest nesting of parentheses and unary signs a formula may use
MAX_NESTING = 100

Number = Union[int, float]

_TOKEN_PATTERN = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)|(?P<ident>[A-Za-z_][A-Za-z0-9_]*)|(?P<op>[-+*/()]))"
)
_NON_ALNUM = re.compile(r"[^0-9A-Za-z]")


class FormulaError(ValueError):
    pass


def normalize_name(name: str) -> str:
    """Column name as written in formulas: alphanumerics only, case-folded"""
    return _NON_ALNUM.sub("", str(name)).lower()


def _finite(number: Number) -> Number:
    try:
        return number if math.isfinite(number) else 0
    except OverflowError:
        # Integers beyond the float range
        return 0


def to_number(value: Any) -> Number:
    """Numeric view of a cell. Anything that is not a finite number counts as 0."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return _finite(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return _finite(int(text))
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return 0
        return number if math.isfinite(number) else 0
    return 0


def tokenize(formula: str) -> List[Tuple[str, str]]:
    tokens = []
    position = 0
    text = formula.rstrip()
    while position < len(text):
        match = _TOKEN_PATTERN.match(text, position)
        if not match:
            raise FormulaError(f"Unexpected character at {position}: {text[position:position + 10]!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[Tuple[str, str]], bindings: "_Bindings"):
        self.tokens = tokens
        self.position = 0
        self.bindings = bindings
        self.depth = 0

    def parse(self) -> Number:
        if not self.tokens:
            raise FormulaError("Empty formula")
        result = self._expression()
        if self.position != len(self.tokens):
            raise FormulaError(f"Unexpected token {self.tokens[self.position][1]!r}")
        return result

    def _peek(self):
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return (None, None)

    def _advance(self):
        token = self.tokens[self.position]
        self.position += 1
        return token

    def _expression(self) -> Number:
        value = self._term()
        while self._peek() in (("op", "+"), ("op", "-")):
            _, op = self._advance()
            right = self._term()
            value = value + right if op == "+" else value - right
        return value

    def _term(self) -> Number:
        value = self._factor()
        while self._peek() in (("op", "*"), ("op", "/")):
            _, op = self._advance()
            right = self._factor()
            if op == "*":
                value = value * right
            else:
                if right == 0:
                    raise FormulaError("Division by zero")
                value = value / right
        return value

    def _factor(self) -> Number:
        kind, text = self._peek()
        if kind is None:
            raise FormulaError("Unexpected end of formula")
        self._advance()

        if kind == "op" and text in ("+", "-"):
            operand = self._nested(self._factor)
            return operand if text == "+" else -operand
        if kind == "number":
            return float(text) if "." in text else int(text)
        if kind == "ident":
            return self.bindings.resolve(text)
        if text == "(":
            value = self._nested(self._expression)
            if self._peek() != ("op", ")"):
                raise FormulaError("Missing closing parenthesis")
            self._advance()
            return value
        raise FormulaError(f"Unexpected token {text!r}")

    def _nested(self, parse) -> Number:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise FormulaError(f"Formula nested deeper than {MAX_NESTING} levels")
        try:
            return parse()
        finally:
            self.depth -= 1


class _Bindings:
    """Row values addressable by their exact column name or its normalized spelling"""

    def __init__(self, row: Mapping[str, Any]):
        self.exact: Dict[str, Number] = {}
        self.normalized: Dict[str, Number] = {}
        for key, value in row.items():
            number = to_number(value)
            self.exact[str(key)] = number
            self.normalized.setdefault(normalize_name(key), number)

    def resolve(self, identifier: str) -> Number:
        if identifier in self.exact:
            return self.exact[identifier]
        # Unknown names evaluate to 0
        return self.normalized.get(normalize_name(identifier), 0)


def evaluate(formula: str, row: Mapping[str, Any]) -> Union[Number, str]:
    """
    Evaluate a calculated-column formula against one table row.

    Args:
        formula: Expression such as ``"Quantity * Price"``
        row: Mapping of column name to cell value

    Returns:
        The numeric result (an int when integral), or ``"Error"``
    """
    try:
        if not isinstance(formula, str):
            raise FormulaError("Formula must be text")
        result = _Parser(tokenize(formula), _Bindings(row or {})).parse()
    except (ValueError, ArithmeticError) as e:
        # FormulaError is a ValueError, as are literals too long to convert
        logger.debug(f"Formula {formula!r} failed: {str(e)}")
        return ERROR

    if _finite(result) != result:
        return ERROR
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result
