"""
Restricted formula language for composite rates and formula-driven grouping.

Formulas are parsed by a small recursive-descent parser into an expression
tree and interpreted with Decimal arithmetic. Nothing is ever handed to
eval/exec; anything outside the grammar is rejected.

Grammar:
    expr    := term (("+" | "-") term)*
    term    := factor (("*" | "/") factor)*
    factor  := ("+" | "-") factor | primary
    primary := NUMBER | NAME | NAME "(" expr ("," expr)* ")" | "(" expr ")"

Allowed:
  - Operators: + - * / (also the typographic forms − × ÷)
  - Functions: min(), max()
  - Names: variables supplied at evaluation time; "base_rate" and "baseRate"
    refer to the same variable

USAGE:
    formula = compile_formula("max(quantity * baseRate, 500)")
    formula.evaluate({"quantity": Decimal("25"), "baseRate": Decimal("2.5")})
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, DivisionByZero
from functools import lru_cache
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from billing_engine.core.exceptions import FormulaError


MAX_FORMULA_LENGTH = 500
MAX_NESTING_DEPTH = 32

# Functions allowed in formulas
ALLOWED_FUNCTIONS: Dict[str, Callable[..., Decimal]] = {
    "min": min,
    "max": max,
}

_OPERATOR_ALIASES = {"−": "-", "×": "*", "÷": "/"}

_TOKEN_RE = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)|(?P<name>[A-Za-z_][A-Za-z0-9_]*)|(?P<op>[-+*/(),]))"
)


def normalize_name(name: str) -> str:
    """Case- and underscore-insensitive variable key."""
    return name.replace("_", "").lower()


# ============================================================================
# EXPRESSION TREE
# ============================================================================

@dataclass(frozen=True)
class Number:
    value: Decimal

    def evaluate(self, env: Mapping[str, Decimal]) -> Decimal:
        return self.value


@dataclass(frozen=True)
class Variable:
    name: str

    def evaluate(self, env: Mapping[str, Decimal]) -> Decimal:
        key = normalize_name(self.name)
        if key not in env:
            raise FormulaError(f"Unknown variable '{self.name}'", {"variable": self.name})
        return env[key]


@dataclass(frozen=True)
class Negate:
    operand: "Node"

    def evaluate(self, env: Mapping[str, Decimal]) -> Decimal:
        return -self.operand.evaluate(env)


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"

    def evaluate(self, env: Mapping[str, Decimal]) -> Decimal:
        left = self.left.evaluate(env)
        right = self.right.evaluate(env)
        if self.op == "+":
            return left + right
        if self.op == "-":
            return left - right
        if self.op == "*":
            return left * right
        if right == 0:
            raise FormulaError("Division by zero in formula")
        try:
            return left / right
        except (InvalidOperation, DivisionByZero) as e:
            raise FormulaError(f"Invalid division: {e}") from e


@dataclass(frozen=True)
class Call:
    function: str
    args: Tuple["Node", ...]

    def evaluate(self, env: Mapping[str, Decimal]) -> Decimal:
        values = [arg.evaluate(env) for arg in self.args]
        return ALLOWED_FUNCTIONS[self.function](*values)


Node = Number | Variable | Negate | BinaryOp | Call


@dataclass(frozen=True)
class Formula:
    """Parsed formula. Immutable and safe to share between requests."""
    source: str
    root: Node
    variables: FrozenSet[str]

    def evaluate(self, variables: Mapping[str, Decimal]) -> Decimal:
        env = {normalize_name(k): Decimal(v) for k, v in variables.items() if v is not None}
        return self.root.evaluate(env)


# ============================================================================
# PARSER
# ============================================================================

def _tokenize(text: str) -> List[Tuple[str, str]]:
    for alias, op in _OPERATOR_ALIASES.items():
        text = text.replace(alias, op)

    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match or match.end() == pos:
            raise FormulaError(
                f"Unexpected character '{text[pos:].strip()[:1]}' at position {pos}",
                {"position": pos}
            )
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.tokens = _tokenize(text)
        self.pos = 0
        self.depth = 0
        self.names: set = set()

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, value: str) -> bool:
        token = self._peek()
        if token and token[0] == "op" and token[1] == value:
            self.pos += 1
            return True
        return False

    def _expect(self, value: str) -> None:
        if not self._accept(value):
            found = self._peek()
            raise FormulaError(f"Expected '{value}' but found {found[1] if found else 'end of formula'}")

    def parse(self) -> Node:
        if not self.tokens:
            raise FormulaError("Formula is empty")
        node = self._expr()
        if self._peek() is not None:
            raise FormulaError(f"Unexpected token '{self._peek()[1]}'")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while True:
            if self._accept("+"):
                node = BinaryOp("+", node, self._term())
            elif self._accept("-"):
                node = BinaryOp("-", node, self._term())
            else:
                return node

    def _term(self) -> Node:
        node = self._factor()
        while True:
            if self._accept("*"):
                node = BinaryOp("*", node, self._factor())
            elif self._accept("/"):
                node = BinaryOp("/", node, self._factor())
            else:
                return node

    def _factor(self) -> Node:
        if self._accept("-"):
            return Negate(self._nested(self._factor))
        if self._accept("+"):
            return self._nested(self._factor)
        return self._primary()

    def _nested(self, rule: Callable[[], Node]) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise FormulaError("Formula is nested too deeply")
        try:
            return rule()
        finally:
            self.depth -= 1

    def _primary(self) -> Node:
        token = self._peek()
        if token is None:
            raise FormulaError("Unexpected end of formula")
        kind, value = token

        if kind == "number":
            self.pos += 1
            return Number(Decimal(value))

        if kind == "name":
            self.pos += 1
            if self._accept("("):
                if value not in ALLOWED_FUNCTIONS:
                    raise FormulaError(f"Disallowed function: {value}", {"function": value})
                args = [self._nested(self._expr)]
                while self._accept(","):
                    args.append(self._nested(self._expr))
                self._expect(")")
                return Call(value, tuple(args))
            self.names.add(value)
            return Variable(value)

        if self._accept("("):
            node = self._nested(self._expr)
            self._expect(")")
            return node

        raise FormulaError(f"Unexpected token '{value}'")


@lru_cache(maxsize=256)
def compile_formula(text: str) -> Formula:
    """Parse a formula; results are cached by source text."""
    if text is None or not text.strip():
        raise FormulaError("Formula is empty")
    if len(text) > MAX_FORMULA_LENGTH:
        raise FormulaError(f"Formula exceeds {MAX_FORMULA_LENGTH} characters")
    parser = _Parser(text)
    root = parser.parse()
    return Formula(source=text, root=root, variables=frozenset(parser.names))


def validate_formula(text: str, allowed_variables: Optional[FrozenSet[str]] = None) -> Formula:
    """
    Parse a formula and check its variable names.

    Raises:
        FormulaError: if the formula does not parse or uses an unknown name
    """
    formula = compile_formula(text)
    if allowed_variables is not None:
        allowed = {normalize_name(v) for v in allowed_variables}
        unknown = sorted(v for v in formula.variables if normalize_name(v) not in allowed)
        if unknown:
            raise FormulaError(
                f"Unknown variable(s) in formula: {', '.join(unknown)}",
                {"variables": unknown}
            )
    return formula
