"""
Condition expressions for business rules.

Conditions are written in a small JavaScript-flavoured grammar, parsed once
into an immutable expression tree and interpreted directly against a
mapping of property values.  Nothing is ever compiled or handed to
``eval``.

Grammar (lowest to highest precedence)::

    or         := and ( "||" and )*
    and        := equality ( "&&" equality )*
    equality   := relational ( ( "==" | "===" | "!=" | "!==" ) relational )*
    relational := unary ( ( "<" | "<=" | ">" | ">=" | "in" ) unary )*
    unary      := ( "!" | "-" ) unary | primary
    primary    := NUMBER | STRING | "true" | "false" | "null" | "undefined"
                | "[" [ or ( "," or )* ] "]"
                | "(" or ")"
                | IDENT "(" [ or ( "," or )* ] ")"
                | IDENT ( "." IDENT )*
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ExpressionSyntaxError(ValueError):
    """Raised when condition text cannot be parsed."""

    def __init__(self, message: str, source: str, position: int) -> None:
        self.message = message
        self.source = source
        self.position = position
        super().__init__(f"{message} at position {position} in {source!r}")


class ExpressionEvaluationError(Exception):
    """Raised when a parsed expression cannot be evaluated against a context."""


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Reference:
    """A property or context name, optionally followed by member access."""
    path: tuple[str, ...]


@dataclass(frozen=True)
class ListLiteral:
    items: tuple[Node, ...]


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Node


@dataclass(frozen=True)
class Binary:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Logical:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple[Node, ...]


Node = Union[Literal, Reference, ListLiteral, Unary, Binary, Logical, Call]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<ident>[A-Za-z_$][A-Za-z0-9_$]*)
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[!<>()\[\],.\-])
    """,
    re.VERBOSE,
)

_KEYWORDS = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


@dataclass(frozen=True)
class _Token:
    kind: str  # number, string, ident, op, end
    text: str
    pos: int


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(source):
        m = _TOKEN_RE.match(source, pos)
        if not m:
            raise ExpressionSyntaxError(
                f"Unexpected character {source[pos]!r}", source, pos
            )
        kind = m.lastgroup or ""
        if kind != "ws":
            tokens.append(_Token(kind, m.group(), pos))
        pos = m.end()
    tokens.append(_Token("end", "", len(source)))
    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

_EQUALITY_OPS = {"==", "===", "!=", "!=="}
_RELATIONAL_OPS = {"<", "<=", ">", ">="}


class _Parser:
    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = _tokenize(source)
        self.index = 0

    # -- token helpers --

    def _peek(self) -> _Token:
        return self.tokens[self.index]

    def _advance(self) -> _Token:
        tok = self.tokens[self.index]
        self.index += 1
        return tok

    def _at(self, text: str) -> bool:
        tok = self._peek()
        return tok.kind in ("op", "ident") and tok.text == text

    def _expect(self, text: str) -> _Token:
        tok = self._peek()
        if not self._at(text):
            found = tok.text or "end of expression"
            raise ExpressionSyntaxError(
                f"Expected '{text}' but found '{found}'", self.source, tok.pos
            )
        return self._advance()

    # -- grammar --

    def parse(self) -> Node:
        if self._peek().kind == "end":
            raise ExpressionSyntaxError("Empty expression", self.source, 0)
        node = self._or()
        tok = self._peek()
        if tok.kind != "end":
            raise ExpressionSyntaxError(
                f"Unexpected token '{tok.text}'", self.source, tok.pos
            )
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._at("||"):
            self._advance()
            node = Logical("||", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._equality()
        while self._at("&&"):
            self._advance()
            node = Logical("&&", node, self._equality())
        return node

    def _equality(self) -> Node:
        node = self._relational()
        while self._peek().kind == "op" and self._peek().text in _EQUALITY_OPS:
            op = self._advance().text
            node = Binary(op, node, self._relational())
        return node

    def _relational(self) -> Node:
        node = self._unary()
        while True:
            tok = self._peek()
            if tok.kind == "op" and tok.text in _RELATIONAL_OPS:
                self._advance()
                node = Binary(tok.text, node, self._unary())
            elif tok.kind == "ident" and tok.text == "in":
                self._advance()
                node = Binary("in", node, self._unary())
            else:
                return node

    def _unary(self) -> Node:
        if self._at("!") or self._at("-"):
            op = self._advance().text
            return Unary(op, self._unary())
        return self._primary()

    def _arguments(self, closing: str) -> tuple[Node, ...]:
        items: list[Node] = []
        if not self._at(closing):
            items.append(self._or())
            while self._at(","):
                self._advance()
                items.append(self._or())
        self._expect(closing)
        return tuple(items)

    def _primary(self) -> Node:
        tok = self._peek()
        if tok.kind == "number":
            self._advance()
            return Literal(float(tok.text) if "." in tok.text else int(tok.text))
        if tok.kind == "string":
            self._advance()
            return Literal(_unquote(tok.text))
        if self._at("("):
            self._advance()
            node = self._or()
            self._expect(")")
            return node
        if self._at("["):
            self._advance()
            return ListLiteral(self._arguments("]"))
        if tok.kind == "ident":
            if tok.text in _KEYWORDS:
                self._advance()
                return Literal(_KEYWORDS[tok.text])
            if tok.text == "in":
                raise ExpressionSyntaxError("Unexpected 'in'", self.source, tok.pos)
            self._advance()
            if self._at("("):
                if tok.text not in FUNCTIONS:
                    raise ExpressionSyntaxError(
                        f"Unknown function '{tok.text}'", self.source, tok.pos
                    )
                self._advance()
                return Call(tok.text, self._arguments(")"))
            path = [tok.text]
            while self._at("."):
                self._advance()
                member = self._peek()
                if member.kind != "ident":
                    raise ExpressionSyntaxError(
                        "Expected a member name after '.'", self.source, member.pos
                    )
                path.append(self._advance().text)
            return Reference(tuple(path))
        found = tok.text or "end of expression"
        raise ExpressionSyntaxError(f"Unexpected token '{found}'", self.source, tok.pos)


# ---------------------------------------------------------------------------
# Value semantics
# ---------------------------------------------------------------------------

def is_empty(value: Any) -> bool:
    """True for null, empty strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, set, dict)):
        return len(value) == 0
    return False


def truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return not is_empty(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-kind coercion (``True`` never equals ``1``)."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


@functools.lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern:
    """Compile *pattern* with ``$`` anchored at the very end of the text.

    Python's ``$`` also matches before a trailing newline; schema patterns
    are written for the stricter reading, so ``$`` outside a character
    class becomes ``\\Z``.
    """
    out: list[str] = []
    escaped = False
    in_class = False
    for ch in pattern:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif in_class:
            in_class = ch != "]"
        elif ch == "[":
            in_class = True
        elif ch == "$":
            out.append(r"\Z")
            continue
        out.append(ch)
    return re.compile("".join(out))


def _fn_matches(text: Any, pattern: Any) -> bool:
    if not isinstance(pattern, str):
        raise ExpressionEvaluationError("matches() expects a string pattern")
    if not isinstance(text, str):
        return False
    try:
        return compile_pattern(pattern).search(text) is not None
    except re.error as exc:
        raise ExpressionEvaluationError(f"Invalid pattern {pattern!r}: {exc}") from exc


def _fn_len(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (str, list, tuple, set, dict)):
        return len(value)
    raise ExpressionEvaluationError(f"len() of unsupported value {type(value).__name__}")


def _fn_contains(collection: Any, item: Any) -> bool:
    if collection is None:
        return False
    if isinstance(collection, str):
        return isinstance(item, str) and item in collection
    if isinstance(collection, (list, tuple, set)):
        return any(strict_equals(item, c) for c in collection)
    if isinstance(collection, dict):
        return item in collection
    raise ExpressionEvaluationError(
        f"contains() of unsupported value {type(collection).__name__}"
    )


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "matches": _fn_matches,
    "len": _fn_len,
    "contains": _fn_contains,
    "empty": is_empty,
}

_ARITY = {"matches": 2, "len": 1, "contains": 2, "empty": 1}


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------

def _resolve(path: tuple[str, ...], context: Mapping[str, Any]) -> Any:
    value = context.get(path[0])
    for member in path[1:]:
        if isinstance(value, Mapping):
            value = value.get(member)
        else:
            return None
    return value


def _compare(op: str, left: Any, right: Any) -> bool:
    both_numbers = _is_number(left) and _is_number(right)
    both_strings = isinstance(left, str) and isinstance(right, str)
    if not (both_numbers or both_strings):
        raise ExpressionEvaluationError(
            f"Cannot compare {type(left).__name__} {op} {type(right).__name__}"
        )
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def evaluate_node(node: Node, context: Mapping[str, Any]) -> Any:
    """Interpret *node* against *context* and return the raw value."""
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Reference):
        return _resolve(node.path, context)
    if isinstance(node, ListLiteral):
        return [evaluate_node(item, context) for item in node.items]
    if isinstance(node, Unary):
        value = evaluate_node(node.operand, context)
        if node.op == "!":
            return not truthy(value)
        if not _is_number(value):
            raise ExpressionEvaluationError(
                f"Cannot negate {type(value).__name__}"
            )
        return -value
    if isinstance(node, Logical):
        left = evaluate_node(node.left, context)
        if node.op == "&&":
            return evaluate_node(node.right, context) if truthy(left) else left
        return left if truthy(left) else evaluate_node(node.right, context)
    if isinstance(node, Binary):
        left = evaluate_node(node.left, context)
        right = evaluate_node(node.right, context)
        if node.op in ("==", "==="):
            return strict_equals(left, right)
        if node.op in ("!=", "!=="):
            return not strict_equals(left, right)
        if node.op == "in":
            if not isinstance(right, (list, tuple, set, dict, str)):
                raise ExpressionEvaluationError(
                    f"Right side of 'in' must be a collection, got {type(right).__name__}"
                )
            return _fn_contains(right, left)
        return _compare(node.op, left, right)
    if isinstance(node, Call):
        expected = _ARITY[node.name]
        if len(node.args) != expected:
            raise ExpressionEvaluationError(
                f"{node.name}() takes {expected} argument(s), got {len(node.args)}"
            )
        args = [evaluate_node(arg, context) for arg in node.args]
        return FUNCTIONS[node.name](*args)
    raise ExpressionEvaluationError(f"Unsupported node {type(node).__name__}")


def _collect_references(node: Node, out: set[str]) -> None:
    if isinstance(node, Reference):
        out.add(node.path[0])
    elif isinstance(node, ListLiteral):
        for item in node.items:
            _collect_references(item, out)
    elif isinstance(node, Unary):
        _collect_references(node.operand, out)
    elif isinstance(node, (Binary, Logical)):
        _collect_references(node.left, out)
        _collect_references(node.right, out)
    elif isinstance(node, Call):
        for arg in node.args:
            _collect_references(arg, out)


@dataclass(frozen=True)
class Expression:
    """A parsed condition: the original text plus its expression tree."""
    source: str
    root: Node

    def evaluate(self, context: Mapping[str, Any]) -> Any:
        return evaluate_node(self.root, context)

    def test(self, context: Mapping[str, Any]) -> bool:
        """Evaluate and coerce the result to a boolean."""
        return truthy(self.evaluate(context))

    def references(self) -> set[str]:
        """Top-level names the expression reads."""
        names: set[str] = set()
        _collect_references(self.root, names)
        return names


def parse_expression(source: str) -> Expression:
    """Parse *source* into an :class:`Expression`.

    Raises :class:`ExpressionSyntaxError` on malformed input.
    """
    if not isinstance(source, str):
        raise ExpressionSyntaxError("Condition must be a string", repr(source), 0)
    return Expression(source, _Parser(source).parse())
