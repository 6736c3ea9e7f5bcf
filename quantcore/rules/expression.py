"""
Sandboxed rule-condition language.

Conditions are tokenized with a single regular expression, parsed by a small
recursive-descent parser into an immutable tree, and interpreted against a
closed mapping of names. Nothing in a condition can reach host objects:
identifiers only resolve through nested dicts (`indicators.RSI`,
`indicators["BB_upper"]`, `price`), and a bare identifier that is not a
top-level name falls back to `indicators[<name>]`, so `RSI < 30` and
`indicators.RSI < 30` are equivalent.

Grammar (lowest to highest precedence)::

    or      := and (("||" | "or") and)*
    and     := not (("&&" | "and") not)*
    not     := ("!" | "not") not | compare
    compare := sum (("<" | "<=" | ">" | ">=" | "==" | "!=" | "===" | "!==") sum)*
    sum     := term (("+" | "-") term)*
    term    := unary (("*" | "/" | "%") unary)*
    unary   := ("-" | "+") unary | primary
    primary := NUMBER | "true" | "false" | path | "(" or ")"
    path    := IDENT ("." IDENT | "[" STRING "]")*

Comparisons chain the way Python's do: `20 < RSI < 30` means
`20 < RSI and RSI < 30`. `===`/`!==` are accepted as spellings of `==`/`!=`.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, NamedTuple, Optional, Tuple

from quantcore.core.exceptions import (
    ExpressionBudgetExceeded,
    ExpressionEvaluationError,
    ExpressionSyntaxError,
    InvalidConfigurationError,
)
from quantcore.settings import get_rule_settings

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    |(?P<string>"[^"\\]*"|'[^'\\]*')
    |(?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!+\-*/%().\[\]])
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and", "or", "not", "true", "false"}
_COMPARE_OPS = {"<", "<=", ">", ">=", "==", "!=", "===", "!=="}


class Token(NamedTuple):
    kind: str
    value: str
    pos: int


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise ExpressionSyntaxError(f"Unexpected character {text[pos]!r} at position {pos}")
        kind = m.lastgroup or ""
        value = m.group(kind)
        if kind == "ident" and value in _KEYWORDS:
            kind = "kw"
        if kind != "ws":
            tokens.append(Token(kind, value, pos))
        pos = m.end()
    tokens.append(Token("end", "", len(text)))
    return tokens


# -------- Syntax tree --------
class _Budget:
    __slots__ = ("remaining",)

    def __init__(self, steps: int) -> None:
        self.remaining = steps

    def tick(self) -> None:
        self.remaining -= 1
        if self.remaining < 0:
            raise ExpressionBudgetExceeded("Rule condition exceeded its evaluation step budget")


def _number(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ExpressionEvaluationError(f"{what} is not numeric: {value!r}")
    return float(value)


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    raise ExpressionEvaluationError(f"Value has no truth value in a condition: {value!r}")


@dataclass(frozen=True)
class Literal:
    value: Any

    def evaluate(self, env: Mapping[str, Any], budget: _Budget) -> Any:
        budget.tick()
        return self.value


@dataclass(frozen=True)
class Path:
    parts: Tuple[str, ...]

    @property
    def dotted(self) -> str:
        return ".".join(self.parts)

    def evaluate(self, env: Mapping[str, Any], budget: _Budget) -> Any:
        budget.tick()
        head, rest = self.parts[0], self.parts[1:]
        if head in env:
            current = env[head]
        else:
            indicators = env.get("indicators")
            if isinstance(indicators, Mapping) and head in indicators:
                current = indicators[head]
            else:
                raise ExpressionEvaluationError(f"Unknown name: {head}")
        for part in rest:
            if not isinstance(current, Mapping) or part not in current:
                raise ExpressionEvaluationError(f"Unknown name: {self.dotted}")
            current = current[part]
        if current is None:
            raise ExpressionEvaluationError(f"Name has no value: {self.dotted}")
        return current


_ARITH: Dict[str, Callable[[float, float], float]] = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
}

_COMPARE: Dict[str, Callable[[Any, Any], bool]] = {
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "===": lambda a, b: a == b,
    "!==": lambda a, b: a != b,
}


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Any

    def evaluate(self, env: Mapping[str, Any], budget: _Budget) -> Any:
        budget.tick()
        if self.op == "not":
            return not _truthy(self.operand.evaluate(env, budget))
        value = _number(self.operand.evaluate(env, budget), f"operand of unary {self.op}")
        return -value if self.op == "-" else value


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any

    def evaluate(self, env: Mapping[str, Any], budget: _Budget) -> Any:
        budget.tick()
        a = _number(self.left.evaluate(env, budget), f"left operand of {self.op}")
        b = _number(self.right.evaluate(env, budget), f"right operand of {self.op}")
        if not (math.isfinite(a) and math.isfinite(b)):
            raise ExpressionEvaluationError(f"Non-finite operand of {self.op}: {a!r}, {b!r}")
        if self.op in ("/", "%"):
            if b == 0:
                raise ExpressionEvaluationError("Division by zero in rule condition")
            result = a / b if self.op == "/" else math.fmod(a, b)
        else:
            result = _ARITH[self.op](a, b)
        if not math.isfinite(result):
            raise ExpressionEvaluationError(f"Arithmetic overflow in {self.op}")
        return result


@dataclass(frozen=True)
class Compare:
    operands: Tuple[Any, ...]
    ops: Tuple[str, ...]

    def evaluate(self, env: Mapping[str, Any], budget: _Budget) -> bool:
        budget.tick()
        left = self.operands[0].evaluate(env, budget)
        for op, node in zip(self.ops, self.operands[1:]):
            right = node.evaluate(env, budget)
            if op in ("==", "!=", "===", "!=="):
                ok = _COMPARE[op](left, right)
            else:
                ok = _COMPARE[op](
                    _number(left, f"left operand of {op}"),
                    _number(right, f"right operand of {op}"),
                )
            if not ok:
                return False
            left = right
        return True


@dataclass(frozen=True)
class Logical:
    op: str
    operands: Tuple[Any, ...]

    def evaluate(self, env: Mapping[str, Any], budget: _Budget) -> bool:
        budget.tick()
        if self.op == "and":
            return all(_truthy(node.evaluate(env, budget)) for node in self.operands)
        return any(_truthy(node.evaluate(env, budget)) for node in self.operands)


# -------- Parser --------
class _Parser:
    def __init__(self, tokens: List[Token], max_depth: int) -> None:
        self.tokens = tokens
        self.i = 0
        self.depth = 0
        self.max_depth = max_depth
        self.paths: List[Path] = []

    @property
    def tok(self) -> Token:
        return self.tokens[self.i]

    def _advance(self) -> Token:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def _accept(self, *values: str) -> Optional[Token]:
        if self.tok.kind in ("op", "kw") and self.tok.value in values:
            return self._advance()
        return None

    def _expect(self, value: str) -> Token:
        tok = self._accept(value)
        if tok is None:
            raise ExpressionSyntaxError(
                f"Expected {value!r} at position {self.tok.pos}, found {self.tok.value or 'end'!r}"
            )
        return tok

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > self.max_depth:
            raise ExpressionSyntaxError(f"Rule condition nests deeper than {self.max_depth}")

    def _leave(self) -> None:
        self.depth -= 1

    def parse(self):
        node = self._or()
        if self.tok.kind != "end":
            raise ExpressionSyntaxError(
                f"Unexpected {self.tok.value!r} at position {self.tok.pos}"
            )
        return node

    def _or(self):
        operands = [self._and()]
        while self._accept("||", "or"):
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else Logical("or", tuple(operands))

    def _and(self):
        operands = [self._not()]
        while self._accept("&&", "and"):
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else Logical("and", tuple(operands))

    def _not(self):
        if self._accept("!", "not"):
            self._enter()
            try:
                return Unary("not", self._not())
            finally:
                self._leave()
        return self._compare()

    def _compare(self):
        operands = [self._sum()]
        ops: List[str] = []
        while self.tok.kind == "op" and self.tok.value in _COMPARE_OPS:
            ops.append(self._advance().value)
            operands.append(self._sum())
        return operands[0] if not ops else Compare(tuple(operands), tuple(ops))

    def _sum(self):
        node = self._term()
        while True:
            tok = self._accept("+", "-")
            if tok is None:
                return node
            node = Binary(tok.value, node, self._term())

    def _term(self):
        node = self._unary()
        while True:
            tok = self._accept("*", "/", "%")
            if tok is None:
                return node
            node = Binary(tok.value, node, self._unary())

    def _unary(self):
        tok = self._accept("-", "+")
        if tok is not None:
            self._enter()
            try:
                return Unary(tok.value, self._unary())
            finally:
                self._leave()
        return self._primary()

    def _primary(self):
        tok = self.tok
        if tok.kind == "number":
            self._advance()
            return Literal(float(tok.value))
        if tok.kind == "kw" and tok.value in ("true", "false"):
            self._advance()
            return Literal(tok.value == "true")
        if tok.kind == "ident":
            return self._path()
        if self._accept("("):
            self._enter()
            try:
                node = self._or()
            finally:
                self._leave()
            self._expect(")")
            return node
        raise ExpressionSyntaxError(
            f"Unexpected {tok.value or 'end of input'!r} at position {tok.pos}"
        )

    def _path(self) -> Path:
        parts = [self._advance().value]
        while True:
            if self._accept("."):
                if self.tok.kind != "ident":
                    raise ExpressionSyntaxError(
                        f"Expected a name after '.' at position {self.tok.pos}"
                    )
                parts.append(self._advance().value)
            elif self._accept("["):
                if self.tok.kind != "string":
                    raise ExpressionSyntaxError(
                        f"Only quoted string subscripts are allowed (position {self.tok.pos})"
                    )
                parts.append(self._advance().value[1:-1])
                self._expect("]")
            else:
                break
        path = Path(tuple(parts))
        self.paths.append(path)
        return path


# -------- Public API --------
@dataclass(frozen=True)
class CompiledCondition:
    """A parsed rule condition, safe to evaluate repeatedly."""

    source: str
    root: Any = field(repr=False)
    names: FrozenSet[str] = frozenset()
    max_steps: int = 10_000

    def evaluate(self, names: Mapping[str, Any]) -> bool:
        """
        Evaluate against `names` (typically `{"indicators": {...}, "price": x}`).

        Raises ExpressionEvaluationError for unknown names, non-numeric
        operands and division by zero, and ExpressionBudgetExceeded when the
        step budget runs out.
        """
        return _truthy(self.root.evaluate(names, _Budget(self.max_steps)))


def compile_condition(
    text: str,
    *,
    max_length: Optional[int] = None,
    max_depth: Optional[int] = None,
    max_steps: Optional[int] = None,
) -> CompiledCondition:
    """Parse `text` into a CompiledCondition; raises ExpressionSyntaxError."""
    settings = get_rule_settings()
    max_length = settings.max_length if max_length is None else max_length
    max_depth = settings.max_depth if max_depth is None else max_depth
    max_steps = settings.max_steps if max_steps is None else max_steps

    if not isinstance(text, str) or not text.strip():
        raise ExpressionSyntaxError("Rule condition is empty")
    if len(text) > max_length:
        raise ExpressionSyntaxError(
            f"Rule condition is {len(text)} characters long (limit {max_length})"
        )
    parser = _Parser(tokenize(text), max_depth)
    root = parser.parse()
    return CompiledCondition(
        source=text,
        root=root,
        names=frozenset(p.dotted for p in parser.paths),
        max_steps=max_steps,
    )


def validate_condition(text: str) -> CompiledCondition:
    """Compile `text`, reporting syntax problems as InvalidConfigurationError."""
    try:
        return compile_condition(text)
    except ExpressionSyntaxError as exc:
        raise InvalidConfigurationError(f"Malformed rule condition {text!r}: {exc}") from exc


def evaluate_condition(text: str, names: Mapping[str, Any]) -> bool:
    return compile_condition(text).evaluate(names)


__all__ = [
    "Token",
    "tokenize",
    "CompiledCondition",
    "compile_condition",
    "validate_condition",
    "evaluate_condition",
]
