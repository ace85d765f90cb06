"""Text template engine for ``{{ .KEY }}`` style templates.

This module handles:
- Splitting template text into literal text and actions, honouring the
  ``{{-`` / ``-}}`` trim markers and ``{{/* ... */}}`` comments
- Parsing actions into pipelines and the ``if`` / ``with`` / ``range``
  control structures (with ``else``, ``else if``, ``break``, ``continue``)
- Executing the parsed tree against a mapping of variables

The action language is Go's text/template: fields (``.KEY``), the dot,
variables (``$``, ``$name``, ``$k, $v := ...``), string/number/bool
literals, parenthesized pipelines, ``|`` chaining and the builtin
functions in BUILTINS. Keys that are not valid identifiers are reached
with ``index . "MY-KEY"``.

Looking up a key that is not in the data is always an error, both for
fields and for ``index``.
"""

from __future__ import annotations

import ast
import json
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any
from urllib.parse import quote_plus

from lpkbuild.errors import MissingVariableError, TemplateError

ACTION_OPEN = "{{"
ACTION_CLOSE = "}}"

# Printed for an action whose value is nil
NO_VALUE = "<no value>"

KEYWORDS = frozenset(
    {
        "block",
        "break",
        "continue",
        "define",
        "else",
        "end",
        "if",
        "range",
        "template",
        "with",
    }
)
_UNSUPPORTED_KEYWORDS = frozenset({"block", "define", "template"})

_TRIM_WHITESPACE = " \t\r\n"
_COMMENT_PATTERN = re.compile(r"^/\*.*\*/$", re.DOTALL)

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<string>"(?:[^"\\\n]|\\.)*")
  | (?P<raw>`[^`]*`)
  | (?P<char>'(?:[^'\\\n]|\\.)+')
  | (?P<declare>:=)
  | (?P<assign>=)
  | (?P<pipe>\|)
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<comma>,)
  | (?P<variable>\$\w*)
  | (?P<field>(?:\.[^\W\d]\w*)+)
  | (?P<number>[+-]?(?:0[xX][0-9a-fA-F_]+|(?:\d[\d_]*)?\.?\d[\d_]*(?:[eE][+-]?\d+)?))
  | (?P<dot>\.)
  | (?P<identifier>[^\W\d]\w*)
    """,
    re.VERBOSE,
)
_OCTAL_PATTERN = re.compile(r"[+-]?0[0-7]+")
_DECIMAL_PATTERN = re.compile(r"[+-]?\d+")


# Parse tree


@dataclass(frozen=True)
class DotTerm:
    """The current value, ``.``."""


@dataclass(frozen=True)
class FieldTerm:
    """A field chain on the dot, such as ``.KEY``."""

    names: tuple[str, ...]


@dataclass(frozen=True)
class VariableTerm:
    """A variable reference, optionally followed by fields."""

    name: str
    names: tuple[str, ...] = ()


@dataclass(frozen=True)
class LiteralTerm:
    """A string, number, bool or nil constant."""

    value: Any


@dataclass(frozen=True)
class FunctionTerm:
    """A builtin function name."""

    name: str


@dataclass(frozen=True)
class PipeTerm:
    """A parenthesized pipeline."""

    pipe: Pipeline


@dataclass(frozen=True)
class ChainTerm:
    """Fields applied to a parenthesized pipeline, ``(...).KEY``."""

    base: PipeTerm
    names: tuple[str, ...]


Term = (
    DotTerm
    | FieldTerm
    | VariableTerm
    | LiteralTerm
    | FunctionTerm
    | PipeTerm
    | ChainTerm
)


@dataclass(frozen=True)
class Command:
    args: tuple[Term, ...]


@dataclass(frozen=True)
class Pipeline:
    commands: tuple[Command, ...]
    decl: tuple[str, ...] = ()
    assign: bool = False


@dataclass(frozen=True)
class TextNode:
    text: str


@dataclass(frozen=True)
class ActionNode:
    """An action that prints its pipeline value (unless it declares)."""

    pipe: Pipeline
    line: int


@dataclass(frozen=True)
class BranchNode:
    """An ``if`` or ``with`` block."""

    kind: str
    pipe: Pipeline
    body: tuple[Node, ...]
    else_body: tuple[Node, ...]
    line: int


@dataclass(frozen=True)
class RangeNode:
    pipe: Pipeline
    body: tuple[Node, ...]
    else_body: tuple[Node, ...]
    line: int


@dataclass(frozen=True)
class LoopControlNode:
    """``break`` or ``continue`` inside a range."""

    kind: str
    line: int


Node = TextNode | ActionNode | BranchNode | RangeNode | LoopControlNode


# Lexing


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    start: int
    end: int


@dataclass(frozen=True)
class _Action:
    tokens: tuple[_Token, ...]
    line: int

    @property
    def keyword(self) -> str:
        if self.tokens and self.tokens[0].kind == "identifier":
            if self.tokens[0].value in KEYWORDS:
                return self.tokens[0].value
        return ""


def _parse_error(name: str, line: int, message: str) -> TemplateError:
    return TemplateError(
        f"parse template {name}: line {line}: {message}", code="parse_error"
    )


def _skip_quoted(text: str, pos: int) -> int:
    """Return the index just past the quoted literal starting at pos, or -1."""
    quote = text[pos]
    i = pos + 1
    while i < len(text):
        ch = text[i]
        if quote != "`":
            if ch == "\\":
                i += 2
                continue
            if ch == "\n":
                return -1
        if ch == quote:
            return i + 1
        i += 1
    return -1


def _find_close(text: str, pos: int) -> int:
    """Return the index of the ``}}`` closing an action body that starts at pos."""
    i = pos
    while i < len(text):
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                return -1
            i = end + 2
            continue
        if text[i] in "\"'`":
            i = _skip_quoted(text, i)
            if i == -1:
                return -1
            continue
        if text.startswith(ACTION_CLOSE, i):
            return i
        i += 1
    return -1


def _tokenize(body: str, name: str, line: int) -> tuple[_Token, ...]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(body):
        match = _TOKEN_PATTERN.match(body, pos)
        if match is None:
            raise _parse_error(name, line, f"unexpected {body[pos]!r} in action")
        kind = match.lastgroup or ""
        if kind != "space":
            tokens.append(_Token(kind, match.group(), match.start(), match.end()))
        pos = match.end()
    return tuple(tokens)


def split_actions(text: str, name: str = "<template>") -> list[str | _Action]:
    """Split template text into literal strings and tokenized actions.

    Comments are dropped and trim markers are applied to the neighbouring
    literal text.

    Raises:
        TemplateError: On an unclosed action or an unexpected character.
    """
    items: list[str | _Action] = []
    pos = 0
    trim_next = False

    while True:
        start = text.find(ACTION_OPEN, pos)
        if start == -1:
            literal = text[pos:]
            if trim_next:
                literal = literal.lstrip(_TRIM_WHITESPACE)
            if literal:
                items.append(literal)
            break

        line = text.count("\n", 0, start) + 1
        end = _find_close(text, start + len(ACTION_OPEN))
        if end == -1:
            raise _parse_error(name, line, "unclosed action")

        literal = text[pos:start]
        body = text[start + len(ACTION_OPEN) : end]

        if trim_next:
            literal = literal.lstrip(_TRIM_WHITESPACE)
        if len(body) > 1 and body[0] == "-" and body[1] in _TRIM_WHITESPACE:
            literal = literal.rstrip(_TRIM_WHITESPACE)
            body = body[1:]
        trim_next = len(body) > 1 and body[-1] == "-" and body[-2] in _TRIM_WHITESPACE
        if trim_next:
            body = body[:-1]

        if literal:
            items.append(literal)

        if not _COMMENT_PATTERN.match(body.strip()):
            items.append(_Action(_tokenize(body, name, line), line))

        pos = end + len(ACTION_CLOSE)

    return items


# Parsing


class _PipelineParser:
    """Parses the tokens of one action into a Pipeline."""

    def __init__(self, tokens: tuple[_Token, ...], name: str, line: int) -> None:
        self.tokens = tokens
        self.name = name
        self.line = line
        self.pos = 0

    def error(self, message: str) -> TemplateError:
        return _parse_error(self.name, self.line, message)

    def peek(self) -> _Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> _Token | None:
        token = self.peek()
        self.pos += 1
        return token

    def parse(self, context: str, max_decl: int = 1) -> Pipeline:
        return self.pipeline(context, max_decl, nested=False)

    def pipeline(self, context: str, max_decl: int, nested: bool) -> Pipeline:
        decl, assign = self._declarations(max_decl)
        commands: list[Command] = []
        while True:
            commands.append(self._command(context))
            token = self.peek()
            if token is None:
                break
            if token.kind == "pipe":
                self.pos += 1
                continue
            if token.kind == "rparen" and nested:
                break
            raise self.error(f"unexpected {token.value!r} in {context}")
        return Pipeline(tuple(commands), tuple(decl), assign)

    def _declarations(self, max_decl: int) -> tuple[list[str], bool]:
        t, p = self.tokens, self.pos
        kinds = [tok.kind for tok in t[p : p + 4]]
        if max_decl >= 1 and kinds[:2] in (
            ["variable", "declare"],
            ["variable", "assign"],
        ):
            self.pos += 2
            return [t[p].value], kinds[1] == "assign"
        if max_decl >= 2 and kinds in (
            ["variable", "comma", "variable", "declare"],
            ["variable", "comma", "variable", "assign"],
        ):
            self.pos += 4
            return [t[p].value, t[p + 2].value], kinds[3] == "assign"
        return [], False

    def _command(self, context: str) -> Command:
        args: list[Term] = []
        while True:
            token = self.peek()
            if token is None or token.kind in ("pipe", "rparen"):
                break
            args.append(self._term())
        if not args:
            raise self.error(f"missing value for {context}")
        if len(args) > 1 and not isinstance(args[0], FunctionTerm):
            raise self.error(f"can't give argument to non-function in {context}")
        return Command(tuple(args))

    def _term(self) -> Term:
        token = self.take()
        if token is None:
            raise self.error("unexpected end of action")
        kind, value = token.kind, token.value
        term: Term
        if kind == "dot":
            return DotTerm()
        if kind == "field":
            return FieldTerm(tuple(value[1:].split(".")))
        if kind == "string":
            return LiteralTerm(self._unquote(value))
        if kind == "raw":
            return LiteralTerm(value[1:-1])
        if kind == "char":
            return LiteralTerm(self._char(value))
        if kind == "number":
            return LiteralTerm(self._number(value))
        if kind == "identifier":
            if value in ("true", "false"):
                return LiteralTerm(value == "true")
            if value == "nil":
                return LiteralTerm(None)
            if value in KEYWORDS:
                raise self.error(f"unexpected keyword {value!r}")
            if value not in FUNCTION_NAMES:
                raise self.error(f'function "{value}" not defined')
            return FunctionTerm(value)
        if kind == "variable":
            term = VariableTerm(value)
        elif kind == "lparen":
            pipe = self.pipeline("parenthesized pipeline", max_decl=0, nested=True)
            close = self.take()
            if close is None or close.kind != "rparen":
                raise self.error("unclosed left paren")
            term, token = PipeTerm(pipe), close
        else:
            raise self.error(f"unexpected {value!r}")

        # fields chain only when written directly after the term
        following = self.peek()
        if (
            following is not None
            and following.kind == "field"
            and following.start == token.end
        ):
            self.pos += 1
            names = tuple(following.value[1:].split("."))
            if isinstance(term, VariableTerm):
                return VariableTerm(term.name, names)
            return ChainTerm(term, names)
        return term

    def _unquote(self, literal: str) -> str:
        try:
            value = ast.literal_eval(literal)
        except (ValueError, SyntaxError) as e:
            raise self.error(f"invalid string {literal}: {e}") from e
        return str(value)

    def _char(self, literal: str) -> int:
        text = self._unquote('"' + literal[1:-1].replace('"', '\\"') + '"')
        if len(text) != 1:
            raise self.error(f"malformed character constant {literal}")
        return ord(text)

    def _number(self, literal: str) -> int | float:
        clean = literal.replace("_", "")
        try:
            if clean.lstrip("+-")[:2] in ("0x", "0X"):
                return int(clean, 16)
            if _OCTAL_PATTERN.fullmatch(clean):
                return int(clean, 8)
            if _DECIMAL_PATTERN.fullmatch(clean):
                return int(clean, 10)
            return float(clean)
        except ValueError as e:
            raise self.error(f"illegal number syntax: {literal}") from e


class _TreeParser:
    """Builds the node tree from the split items."""

    def __init__(self, items: list[str | _Action], name: str) -> None:
        self.items = items
        self.name = name
        self.pos = 0
        self.range_depth = 0

    def error(self, line: int, message: str) -> TemplateError:
        return _parse_error(self.name, line, message)

    def parse(self) -> list[Node]:
        nodes, stop = self._parse_list()
        if stop is not None:
            raise self.error(stop.line, f"unexpected {{{{{stop.keyword}}}}}")
        return nodes

    def _parse_list(self) -> tuple[list[Node], _Action | None]:
        nodes: list[Node] = []
        while self.pos < len(self.items):
            item = self.items[self.pos]
            self.pos += 1
            if isinstance(item, str):
                nodes.append(TextNode(item))
                continue
            if item.keyword in ("end", "else"):
                return nodes, item
            nodes.append(self._parse_action(item))
        return nodes, None

    def _pipeline(
        self, tokens: tuple[_Token, ...], line: int, context: str, max_decl: int = 1
    ) -> Pipeline:
        return _PipelineParser(tokens, self.name, line).parse(context, max_decl)

    def _parse_action(self, item: _Action) -> Node:
        keyword = item.keyword
        if keyword in ("if", "with"):
            return self._parse_branch(keyword, item.tokens[1:], item.line)
        if keyword == "range":
            return self._parse_range(item.tokens[1:], item.line)
        if keyword in ("break", "continue"):
            if self.range_depth == 0:
                raise self.error(item.line, f"{{{{{keyword}}}}} outside {{{{range}}}}")
            if len(item.tokens) > 1:
                raise self.error(item.line, f"unexpected tokens after {keyword}")
            return LoopControlNode(keyword, item.line)
        if keyword in _UNSUPPORTED_KEYWORDS:
            raise self.error(item.line, f"unsupported action {{{{{keyword}}}}}")
        return ActionNode(self._pipeline(item.tokens, item.line, "command"), item.line)

    def _expect_end(self, stop: _Action | None, kind: str, line: int) -> None:
        if stop is None or stop.keyword != "end":
            raise self.error(line, f"unexpected EOF: missing {{{{end}}}} for {kind}")
        if len(stop.tokens) > 1:
            raise self.error(stop.line, "unexpected tokens after end")

    def _parse_branch(
        self, kind: str, tokens: tuple[_Token, ...], line: int
    ) -> BranchNode:
        pipe = self._pipeline(tokens, line, kind)
        body, stop = self._parse_list()
        else_body: list[Node] = []
        if stop is not None and stop.keyword == "else":
            rest = stop.tokens[1:]
            if rest:
                if rest[0].kind == "identifier" and rest[0].value == kind:
                    nested = self._parse_branch(kind, rest[1:], stop.line)
                    return BranchNode(kind, pipe, tuple(body), (nested,), line)
                raise self.error(stop.line, "unexpected tokens after else")
            else_body, stop = self._parse_list()
        self._expect_end(stop, kind, line)
        return BranchNode(kind, pipe, tuple(body), tuple(else_body), line)

    def _parse_range(self, tokens: tuple[_Token, ...], line: int) -> RangeNode:
        pipe = self._pipeline(tokens, line, "range", max_decl=2)
        self.range_depth += 1
        try:
            body, stop = self._parse_list()
        finally:
            self.range_depth -= 1
        else_body: list[Node] = []
        if stop is not None and stop.keyword == "else":
            if len(stop.tokens) > 1:
                raise self.error(stop.line, "unexpected tokens after else")
            else_body, stop = self._parse_list()
        self._expect_end(stop, "range", line)
        return RangeNode(pipe, tuple(body), tuple(else_body), line)


def parse(text: str, name: str = "<template>") -> list[Node]:
    """Parse template text into a node tree.

    Raises:
        TemplateError: With code ``parse_error`` on any syntax error.
    """
    return _TreeParser(split_actions(text, name), name).parse()


# Values


def go_type(value: Any) -> str:
    """Name a value's type the way template error messages do."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float64"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "map[string]string"
    if isinstance(value, list | tuple):
        return "[]interface {}"
    return type(value).__name__


def is_true(value: Any) -> bool:
    """Template truthiness: zero values and empty collections are false."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value != 0
    if isinstance(value, str | Mapping | list | tuple):
        return len(value) > 0
    return True


def format_float(value: float) -> str:
    """Format a float in shortest form, switching to an exponent like %v."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "0"
    sign, digit_tuple, exponent = Decimal(repr(value)).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    point = len(digits) + int(exponent)
    exp10 = point - 1
    prefix = "-" if sign else ""
    if exp10 < -4 or exp10 >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        return f"{prefix}{mantissa}e{'+' if exp10 >= 0 else '-'}{abs(exp10):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{digits}"
    if point >= len(digits):
        return prefix + digits + "0" * (point - len(digits))
    return f"{prefix}{digits[:point]}.{digits[point:]}"


def format_value(value: Any) -> str:
    """Render a value as text."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return format_float(value)
    if isinstance(value, Mapping):
        pairs = " ".join(f"{k}:{format_value(value[k])}" for k in sorted(value))
        return f"map[{pairs}]"
    if isinstance(value, list | tuple):
        return "[" + " ".join(format_value(v) for v in value) + "]"
    return str(value)


# Builtins


class BuiltinError(Exception):
    """Raised by a builtin function; reported with the template position."""


class _MissingKey(Exception):
    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key


def _basic_kind(value: Any) -> str | None:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    return None


def _equal(left: Any, right: Any) -> bool:
    left_kind, right_kind = _basic_kind(left), _basic_kind(right)
    if left_kind is None or right_kind is None:
        raise BuiltinError("non-comparable type")
    if "nil" in (left_kind, right_kind):
        return left is right
    if left_kind != right_kind:
        raise BuiltinError("incompatible types for comparison")
    return bool(left == right)


def _less(left: Any, right: Any) -> bool:
    left_kind, right_kind = _basic_kind(left), _basic_kind(right)
    ordered = ("int", "float", "string")
    if left_kind not in ordered or right_kind not in ordered:
        raise BuiltinError("invalid type for comparison")
    if left_kind != right_kind:
        raise BuiltinError("incompatible types for comparison")
    return bool(left < right)


def builtin_eq(first: Any, *others: Any) -> bool:
    return any(_equal(first, other) for other in others)


def builtin_ne(left: Any, right: Any) -> bool:
    return not _equal(left, right)


def builtin_lt(left: Any, right: Any) -> bool:
    return _less(left, right)


def builtin_le(left: Any, right: Any) -> bool:
    return _less(left, right) or _equal(left, right)


def builtin_gt(left: Any, right: Any) -> bool:
    return not builtin_le(left, right)


def builtin_ge(left: Any, right: Any) -> bool:
    return not _less(left, right)


def builtin_not(value: Any) -> bool:
    return not is_true(value)


def builtin_len(value: Any) -> int:
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    if isinstance(value, Mapping | list | tuple):
        return len(value)
    raise BuiltinError(f"len of type {go_type(value)}")


def _int_index(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise BuiltinError(f"cannot index slice/array with type {go_type(value)}")
    return value


def builtin_index(item: Any, *indexes: Any) -> Any:
    for key in indexes:
        if isinstance(item, Mapping):
            if not isinstance(key, str):
                raise BuiltinError(f"value has type {go_type(key)}; should be string")
            if key not in item:
                raise _MissingKey(key)
            item = item[key]
        elif isinstance(item, str | list | tuple):
            sequence = item.encode("utf-8") if isinstance(item, str) else item
            position = _int_index(key)
            if not 0 <= position < len(sequence):
                raise BuiltinError(f"index out of range: {position}")
            item = sequence[position]
        elif item is None:
            raise BuiltinError("index of untyped nil")
        else:
            raise BuiltinError(f"can't index item of type {go_type(item)}")
    return item


def builtin_slice(item: Any, *indexes: Any) -> Any:
    if not isinstance(item, str | list | tuple):
        raise BuiltinError(f"can't slice item of type {go_type(item)}")
    if len(indexes) > 2:
        raise BuiltinError("too many slice indexes")
    bounds = [_int_index(i) for i in indexes]
    start = bounds[0] if bounds else 0
    end = bounds[1] if len(bounds) == 2 else len(item)
    if not 0 <= start <= end <= len(item):
        raise BuiltinError(f"index out of range: {start}:{end}")
    return item[start:end]


def builtin_print(*args: Any) -> str:
    """Concatenate operands, spacing operands when neither is a string."""
    parts: list[str] = []
    for i, arg in enumerate(args):
        if i and not isinstance(arg, str) and not isinstance(args[i - 1], str):
            parts.append(" ")
        parts.append(format_value(arg))
    return "".join(parts)


def builtin_println(*args: Any) -> str:
    return " ".join(format_value(arg) for arg in args) + "\n"


_VERB_PATTERN = re.compile(r"%([-+# 0]*)(\d+)?(?:\.(\d*))?([a-zA-Z%])")


def _pad(text: str, flags: str, width: str | None) -> str:
    if not width:
        return text
    size = int(width)
    if "-" in flags:
        return text.ljust(size)
    return text.rjust(size)


def _format_verb(
    verb: str, arg: Any, flags: str, width: str | None, precision: str | None
) -> str:
    is_int = isinstance(arg, int) and not isinstance(arg, bool)
    spec = flags + (width or "") + (f".{precision}" if precision is not None else "")

    if verb == "v" or (verb == "s" and isinstance(arg, str | Mapping | list | tuple)):
        text = format_value(arg)
        if precision:
            text = text[: int(precision)]
        return _pad(text, flags, width)
    if verb == "q" and isinstance(arg, str):
        return _pad(json.dumps(arg, ensure_ascii=False), flags, width)
    if verb == "t" and isinstance(arg, bool):
        return _pad(format_value(arg), flags, width)
    if is_int and verb in "dcoxXb":
        if verb == "c":
            return _pad(chr(arg), flags, width)
        if verb == "b":
            return _pad(format(arg, "b"), flags, width)
        return ("%" + flags + (width or "") + verb) % arg
    if verb in "xX" and isinstance(arg, str):
        encoded = arg.encode("utf-8").hex()
        return _pad(encoded.upper() if verb == "X" else encoded, flags, width)
    if (is_int or isinstance(arg, float)) and verb in "eEfFgG":
        if verb in "gG" and precision is None:
            return _pad(format_float(float(arg)), flags, width)
        return ("%" + spec + verb) % float(arg)
    return f"%!{verb}({go_type(arg)}={format_value(arg)})"


def builtin_printf(fmt: Any, *args: Any) -> str:
    """Format operands with printf verbs (%v %s %q %d %x %f %t ...)."""
    if not isinstance(fmt, str):
        raise BuiltinError(f"wrong type for value; expected string; got {go_type(fmt)}")
    out: list[str] = []
    pos = 0
    used = 0
    for match in _VERB_PATTERN.finditer(fmt):
        out.append(fmt[pos : match.start()])
        pos = match.end()
        flags, width, precision, verb = match.groups()
        if verb == "%":
            out.append("%")
            continue
        if used >= len(args):
            out.append(f"%!{verb}(MISSING)")
            continue
        out.append(_format_verb(verb, args[used], flags, width, precision))
        used += 1
    out.append(fmt[pos:])
    if used < len(args):
        extra = ", ".join(f"{go_type(a)}={format_value(a)}" for a in args[used:])
        out.append(f"%!(EXTRA {extra})")
    return "".join(out)


def _text_of(args: tuple[Any, ...]) -> str:
    if len(args) == 1 and isinstance(args[0], str):
        return args[0]
    return builtin_print(*args)


_HTML_ESCAPES = {
    "\0": "\ufffd",
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
}
_JS_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "<": "\\u003C",
    ">": "\\u003E",
    "&": "\\u0026",
    "=": "\\u003D",
}


def builtin_html(*args: Any) -> str:
    return "".join(_HTML_ESCAPES.get(ch, ch) for ch in _text_of(args))


def builtin_js(*args: Any) -> str:
    out = []
    for ch in _text_of(args):
        if ch in _JS_ESCAPES:
            out.append(_JS_ESCAPES[ch])
        elif ord(ch) < 0x20:
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


def builtin_urlquery(*args: Any) -> str:
    return quote_plus(_text_of(args), safe="")


# name -> (function, minimum arguments, maximum arguments or None)
BUILTINS: dict[str, tuple[Callable[..., Any], int, int | None]] = {
    "eq": (builtin_eq, 2, None),
    "ge": (builtin_ge, 2, 2),
    "gt": (builtin_gt, 2, 2),
    "html": (builtin_html, 0, None),
    "index": (builtin_index, 1, None),
    "js": (builtin_js, 0, None),
    "le": (builtin_le, 2, 2),
    "len": (builtin_len, 1, 1),
    "lt": (builtin_lt, 2, 2),
    "ne": (builtin_ne, 2, 2),
    "not": (builtin_not, 1, 1),
    "print": (builtin_print, 0, None),
    "printf": (builtin_printf, 1, None),
    "println": (builtin_println, 0, None),
    "slice": (builtin_slice, 1, None),
    "urlquery": (builtin_urlquery, 0, None),
}

# Evaluated lazily by the executor
_SHORT_CIRCUIT = frozenset({"and", "or"})

FUNCTION_NAMES = frozenset(BUILTINS) | _SHORT_CIRCUIT


# Execution


class _Break(Exception):
    pass


class _Continue(Exception):
    pass


_NO_FINAL = object()


@dataclass
class _Executor:
    data: Mapping[str, Any]
    name: str
    path: Path | None
    line: int = 0
    out: list[str] = field(default_factory=list)
    scope: list[tuple[str, Any]] = field(default_factory=list)

    def error(self, message: str) -> TemplateError:
        return TemplateError(
            f"render template {self.name}: line {self.line}: {message}",
            code="render_error",
            path=self.path,
        )

    def run(self, nodes: list[Node]) -> str:
        self.scope = [("$", self.data)]
        self.walk(nodes, self.data)
        return "".join(self.out)

    def walk(self, nodes: tuple[Node, ...] | list[Node], dot: Any) -> None:
        for node in nodes:
            if isinstance(node, TextNode):
                self.out.append(node.text)
            elif isinstance(node, ActionNode):
                self.line = node.line
                value = self.pipeline(node.pipe, dot)
                if not node.pipe.decl:
                    self.out.append(NO_VALUE if value is None else format_value(value))
            elif isinstance(node, BranchNode):
                self.branch(node, dot)
            elif isinstance(node, RangeNode):
                self.loop(node, dot)
            else:
                raise _Break() if node.kind == "break" else _Continue()

    def branch(self, node: BranchNode, dot: Any) -> None:
        self.line = node.line
        mark = len(self.scope)
        value = self.pipeline(node.pipe, dot)
        if is_true(value):
            self.walk(node.body, value if node.kind == "with" else dot)
        else:
            self.walk(node.else_body, dot)
        del self.scope[mark:]

    def _iterate(self, value: Any) -> list[tuple[Any, Any]]:
        if value is None:
            return []
        if isinstance(value, Mapping):
            return [(key, value[key]) for key in sorted(value)]
        if isinstance(value, list | tuple):
            return list(enumerate(value))
        if isinstance(value, int) and not isinstance(value, bool):
            return [(i, i) for i in range(value)]
        raise self.error(f"range can't iterate over {format_value(value)}")

    def loop(self, node: RangeNode, dot: Any) -> None:
        self.line = node.line
        mark = len(self.scope)
        items = self._iterate(self.commands(node.pipe, dot))
        if not items:
            self.walk(node.else_body, dot)
            return
        decl = node.pipe.decl
        for key, element in items:
            del self.scope[mark:]
            if len(decl) == 1:
                self.bind(decl[0], element, node.pipe.assign)
            elif len(decl) == 2:
                self.bind(decl[0], key, node.pipe.assign)
                self.bind(decl[1], element, node.pipe.assign)
            try:
                self.walk(node.body, element)
            except _Continue:
                continue
            except _Break:
                break
        del self.scope[mark:]

    def bind(self, name: str, value: Any, assign: bool) -> None:
        if not assign:
            self.scope.append((name, value))
            return
        for i in range(len(self.scope) - 1, -1, -1):
            if self.scope[i][0] == name:
                self.scope[i] = (name, value)
                return
        raise self.error(f"undefined variable: {name}")

    def variable(self, name: str) -> Any:
        for var_name, value in reversed(self.scope):
            if var_name == name:
                return value
        raise self.error(f"undefined variable: {name}")

    def pipeline(self, pipe: Pipeline, dot: Any) -> Any:
        value = self.commands(pipe, dot)
        if pipe.decl:
            self.bind(pipe.decl[0], value, pipe.assign)
        return value

    def commands(self, pipe: Pipeline, dot: Any) -> Any:
        value: Any = _NO_FINAL
        for command in pipe.commands:
            value = self.command(command, dot, value)
        return value

    def command(self, command: Command, dot: Any, final: Any) -> Any:
        first = command.args[0]
        if isinstance(first, FunctionTerm):
            return self.call(first.name, command.args[1:], dot, final)
        if final is not _NO_FINAL:
            raise self.error("can't give argument to non-function")
        return self.term(first, dot)

    def call(
        self, name: str, arg_terms: tuple[Term, ...], dot: Any, final: Any
    ) -> Any:
        thunks: list[Callable[[], Any]] = [
            lambda t=t: self.term(t, dot) for t in arg_terms
        ]
        if final is not _NO_FINAL:
            thunks.append(lambda: final)
        count = len(thunks)

        if name in _SHORT_CIRCUIT:
            if not thunks:
                raise self.error(f"wrong number of args for {name}: want at least 1")
            value = None
            for thunk in thunks:
                value = thunk()
                if is_true(value) == (name == "or"):
                    return value
            return value

        function, minimum, maximum = BUILTINS[name]
        if count < minimum or (maximum is not None and count > maximum):
            want = f"{minimum}" if minimum == maximum else f"at least {minimum}"
            raise self.error(
                f"wrong number of args for {name}: want {want} got {count}"
            )
        args = [thunk() for thunk in thunks]
        try:
            return function(*args)
        except _MissingKey as e:
            raise MissingVariableError(e.key, path=self.path) from None
        except BuiltinError as e:
            raise self.error(f"error calling {name}: {e}") from None

    def fields(self, receiver: Any, names: tuple[str, ...]) -> Any:
        value = receiver
        for name in names:
            if isinstance(value, Mapping):
                if name not in value:
                    raise MissingVariableError(name, path=self.path)
                value = value[name]
            elif value is None:
                raise self.error(f"nil pointer evaluating .{name}")
            else:
                kind = go_type(value)
                raise self.error(f"can't evaluate field {name} in type {kind}")
        return value

    def term(self, term: Term, dot: Any) -> Any:
        if isinstance(term, DotTerm):
            return dot
        if isinstance(term, FieldTerm):
            return self.fields(dot, term.names)
        if isinstance(term, VariableTerm):
            return self.fields(self.variable(term.name), term.names)
        if isinstance(term, LiteralTerm):
            return term.value
        if isinstance(term, PipeTerm):
            return self.commands(term.pipe, dot)
        if isinstance(term, ChainTerm):
            return self.fields(self.commands(term.base.pipe, dot), term.names)
        return self.call(term.name, (), dot, _NO_FINAL)


def execute(
    nodes: list[Node],
    data: Mapping[str, Any],
    name: str = "<template>",
    path: Path | None = None,
) -> str:
    """Execute a parsed template against data.

    Raises:
        MissingVariableError: If a referenced key is not in the data.
        TemplateError: With code ``render_error`` on any other failure.
    """
    return _Executor(data=data, name=name, path=path).run(nodes)


__all__ = [
    "BUILTINS",
    "FUNCTION_NAMES",
    "NO_VALUE",
    "ActionNode",
    "BranchNode",
    "BuiltinError",
    "Node",
    "RangeNode",
    "TextNode",
    "execute",
    "format_float",
    "format_value",
    "go_type",
    "is_true",
    "parse",
    "split_actions",
]
