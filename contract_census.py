#!/usr/bin/env python3
"""
Contract Census - Semantic categorization of Code Contracts clauses in C#

High-level goals:
- Parse C# (via tree-sitter) into a small, closed expression vocabulary
- Find Contract.Requires / Ensures / Invariant calls and split them into
  independent top-level clauses
- Run an ordered battery of structural predicates that gives every clause at
  most one category (Nullness, Bounds Check, Frame Condition, ...)
- Emit per-project and aggregate statistics for a corpus of projects

Classification is purely syntactic and heuristic: contracts are never
verified, executed or type-checked.
"""

from __future__ import annotations
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    IO,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)
import argparse
import csv
import functools
import os
import re
import sys

import tree_sitter_c_sharp
import yaml
from tree_sitter import Language, Node, Parser

__version__ = "0.1.0"


# ============================================================
# ================ CONTRACT KINDS & CLAUSES ==================
# ============================================================

class ContractKind(Enum):
    REQUIRES = "requires"
    ENSURES = "ensures"
    INVARIANT = "invariant"


ALL_KINDS: FrozenSet[ContractKind] = frozenset(ContractKind)

# When set, the first matching category wins and later categories are not
# consulted. Later categories may then be more permissive than they could be
# on their own.
CATEGORIES_ARE_MUTEX = True


@dataclass(frozen=True)
class Clause:
    """
    One classified contract clause: which kind of contract it came from, its
    source text and the names of the categories it was placed in.
    """
    kind: ContractKind
    text: str
    labels: FrozenSet[str] = frozenset()

    @property
    def is_uncategorized(self) -> bool:
        return not self.labels


KindSet = FrozenSet[ContractKind]
CategoryRule = Callable[[KindSet, "Expr"], bool]


@dataclass(frozen=True)
class Category:
    """
    A named structural pattern, e.g. "Nullness".

    The rule receives the contract kinds the collector is configured for (not
    the kind of the individual clause) and the parenthesis-stripped clause.
    """
    name: str
    rule: CategoryRule = field(compare=False, repr=False)

    @classmethod
    def from_expression_rule(cls, name: str, predicate: Callable[["Expr"], bool]) -> "Category":
        return cls(name, lambda kinds, expr: predicate(expr))


# ============================================================
# ========================== ERRORS ==========================
# ============================================================

class CensusError(Exception):
    """Base class for every error raised by the census."""


class SourceParseError(CensusError):
    """Raised when a source file cannot be read or parsed."""


class ContractShapeError(CensusError):
    """Raised when a contract call does not have the shape a rule expects."""


class ConfigError(CensusError):
    """Raised for an invalid configuration file."""


# ============================================================
# ===================== EXPRESSION TREE ======================
# ============================================================

class BinaryOp(Enum):
    EQUALS = "=="
    NOT_EQUALS = "!="
    LESS = "<"
    LESS_EQUAL = "<="
    GREATER = ">"
    GREATER_EQUAL = ">="
    LOGICAL_AND = "&&"
    LOGICAL_OR = "||"
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    MODULO = "%"
    BITWISE_AND = "&"
    BITWISE_OR = "|"
    EXCLUSIVE_OR = "^"
    SHIFT_LEFT = "<<"
    SHIFT_RIGHT = ">>"
    UNSIGNED_SHIFT_RIGHT = ">>>"
    COALESCE = "??"
    IS = "is"
    AS = "as"


class UnaryOp(Enum):
    LOGICAL_NOT = "!"
    NEGATE = "-"
    PLUS = "+"
    COMPLEMENT = "~"
    INCREMENT = "++"
    DECREMENT = "--"
    ADDRESS_OF = "&"
    DEREFERENCE = "*"
    INDEX_FROM_END = "^"


class LiteralKind(Enum):
    NULL = "null"
    TRUE = "true"
    FALSE = "false"
    NUMERIC = "numeric"
    STRING = "string"
    CHARACTER = "character"


RELATIONAL_OPS = frozenset(
    {BinaryOp.LESS, BinaryOp.LESS_EQUAL, BinaryOp.GREATER, BinaryOp.GREATER_EQUAL}
)


class Expr:
    """
    Base of the expression vocabulary. Every node keeps its literal source
    rendering in ``text``; equality between nodes is structural and ignores
    that rendering, so ``a.b`` and ``a . b`` compare equal.
    """

    text: str

    def children(self) -> Tuple["Expr", ...]:
        return ()

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class Identifier(Expr):
    name: str
    text: str = field(default="", compare=False, repr=False)


@dataclass(frozen=True)
class MemberAccess(Expr):
    owner: Expr
    name: str
    text: str = field(default="", compare=False, repr=False)

    def children(self) -> Tuple[Expr, ...]:
        return (self.owner,)


@dataclass(frozen=True)
class Invocation(Expr):
    callee: Expr
    arguments: Tuple[Expr, ...]
    text: str = field(default="", compare=False, repr=False)

    def children(self) -> Tuple[Expr, ...]:
        return (self.callee,) + self.arguments


@dataclass(frozen=True)
class BinaryExpr(Expr):
    op: BinaryOp
    left: Expr
    right: Expr
    text: str = field(default="", compare=False, repr=False)

    def children(self) -> Tuple[Expr, ...]:
        return (self.left, self.right)


@dataclass(frozen=True)
class PrefixUnary(Expr):
    op: UnaryOp
    operand: Expr
    text: str = field(default="", compare=False, repr=False)

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)


@dataclass(frozen=True)
class Parenthesized(Expr):
    inner: Expr
    text: str = field(default="", compare=False, repr=False)

    def children(self) -> Tuple[Expr, ...]:
        return (self.inner,)


@dataclass(frozen=True)
class Conditional(Expr):
    condition: Expr
    when_true: Expr
    when_false: Expr
    text: str = field(default="", compare=False, repr=False)

    def children(self) -> Tuple[Expr, ...]:
        return (self.condition, self.when_true, self.when_false)


@dataclass(frozen=True)
class Literal(Expr):
    kind: LiteralKind
    value: str
    text: str = field(default="", compare=False, repr=False)


@dataclass(frozen=True)
class Lambda(Expr):
    """
    A lambda expression. ``body`` is None when the lambda has a statement
    block instead of a single expression.
    """
    parameters: Tuple[str, ...]
    body: Optional[Expr]
    text: str = field(default="", compare=False, repr=False)

    def children(self) -> Tuple[Expr, ...]:
        return (self.body,) if self.body is not None else ()


@dataclass(frozen=True)
class ThisReference(Expr):
    text: str = field(default="this", compare=False, repr=False)


@dataclass(frozen=True)
class Opaque(Expr):
    """
    Any syntax outside the vocabulary (element access, casts, object
    creation, predefined types, ...). Compared by grammar kind and
    whitespace-free text; ``operands`` keeps the converted children so nested
    calls remain reachable.
    """
    kind: str
    normalized: str
    operands: Tuple[Expr, ...] = field(default=(), compare=False, repr=False)
    text: str = field(default="", compare=False, repr=False)

    def children(self) -> Tuple[Expr, ...]:
        return self.operands


def strip_parentheses(expr: Expr) -> Expr:
    while isinstance(expr, Parenthesized):
        expr = expr.inner
    return expr


def iter_descendants(expr: Expr) -> Iterator[Expr]:
    """
    Yield every sub-expression nested below ``expr`` (not ``expr`` itself),
    in document order.
    """
    stack = list(reversed(expr.children()))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children()))


def iter_outermost_invocations(expr: Expr) -> Iterator[Invocation]:
    """
    Yield the invocations of ``expr`` that are not nested inside another
    invocation. The subtree of a yielded invocation is not searched.
    """
    stack: List[Expr] = [expr]
    while stack:
        node = stack.pop()
        if isinstance(node, Invocation):
            yield node
            continue
        stack.extend(reversed(node.children()))


def call_argument(call: Invocation, index: int) -> Expr:
    try:
        return call.arguments[index]
    except IndexError:
        raise ContractShapeError(
            f"Invocation '{call.text}' has no argument at position {index}"
        ) from None


def simple_method_name(call: Invocation) -> str:
    """
    Name of the invoked method without its receiver: ``Equals`` for
    ``a.Equals(b)``, ``ReferenceEquals`` for ``ReferenceEquals(a, b)``.
    """
    callee = call.callee
    if isinstance(callee, Identifier):
        return callee.name
    if isinstance(callee, MemberAccess):
        return callee.name
    raise ContractShapeError(f"Unexpected method invocation node: {call.text}")


def _is_negation(expr: Expr) -> bool:
    return isinstance(expr, PrefixUnary) and expr.op is UnaryOp.LOGICAL_NOT


def _is_literal(expr: Expr, kind: LiteralKind) -> bool:
    return isinstance(expr, Literal) and expr.kind is kind


# ============================================================
# ======================= C# FRONT END =======================
# ============================================================

_CSHARP = Language(tree_sitter_c_sharp.language())

_UTF8_BOM = b"\xef\xbb\xbf"

_LITERAL_NODE_KINDS: Dict[str, LiteralKind] = {
    "null_literal": LiteralKind.NULL,
    "integer_literal": LiteralKind.NUMERIC,
    "real_literal": LiteralKind.NUMERIC,
    "character_literal": LiteralKind.CHARACTER,
    "string_literal": LiteralKind.STRING,
    "verbatim_string_literal": LiteralKind.STRING,
    "raw_string_literal": LiteralKind.STRING,
}

# Patterns that are just a type or a value, e.g. `x is Foo`, `x is Ns.Foo<T>`
_SIMPLE_PATTERN_NODES = frozenset(
    {"identifier", "generic_name", "qualified_name", "predefined_type", "member_access_expression"}
)

_BINARY_OPS: Dict[str, BinaryOp] = {op.value: op for op in BinaryOp}
_UNARY_OPS: Dict[str, UnaryOp] = {op.value: op for op in UnaryOp}

_WHITESPACE = re.compile(r"\s+")


@dataclass
class SourceUnit:
    """
    File-level syntax root: the outermost invocation expressions of one
    source file, in document order.
    """
    path: str
    invocations: List[Invocation] = field(default_factory=list)
    has_syntax_errors: bool = False


@functools.lru_cache(maxsize=1)
def _csharp_parser() -> Parser:
    return Parser(_CSHARP)


def _named(node: Node) -> List[Node]:
    return [child for child in node.named_children if child.type != "comment"]


class _ExpressionBuilder:
    """
    Converts tree-sitter C# nodes into the expression vocabulary.
    """

    def __init__(self, source: bytes) -> None:
        self.source = source

    def text(self, node: Node) -> str:
        return self.source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def build(self, node: Node) -> Expr:
        kind = node.type
        text = self.text(node)

        if kind == "identifier" or kind == "generic_name":
            return Identifier(name=text, text=text)

        if kind == "member_access_expression":
            owner = node.child_by_field_name("expression")
            name = node.child_by_field_name("name")
            if owner is not None and name is not None:
                return MemberAccess(owner=self.build(owner), name=self.text(name), text=text)

        elif kind == "qualified_name":
            qualifier = node.child_by_field_name("qualifier")
            name = node.child_by_field_name("name")
            if qualifier is not None and name is not None:
                return MemberAccess(owner=self.build(qualifier), name=self.text(name), text=text)

        elif kind == "invocation_expression":
            function = node.child_by_field_name("function")
            arguments = node.child_by_field_name("arguments")
            if function is not None:
                return Invocation(
                    callee=self.build(function),
                    arguments=self._arguments(arguments),
                    text=text,
                )

        elif kind == "binary_expression":
            left = node.child_by_field_name("left")
            right = node.child_by_field_name("right")
            operator = node.child_by_field_name("operator")
            op = _BINARY_OPS.get(self.text(operator)) if operator is not None else None
            if left is not None and right is not None and op is not None:
                return BinaryExpr(op=op, left=self.build(left), right=self.build(right), text=text)

        elif kind in ("is_expression", "as_expression"):
            parts = _named(node)
            if len(parts) == 2:
                op = BinaryOp.IS if kind == "is_expression" else BinaryOp.AS
                return BinaryExpr(op=op, left=self.build(parts[0]), right=self.build(parts[1]), text=text)

        elif kind == "is_pattern_expression":
            # x is Foo: a plain type or constant test reads as a binary `is`
            left = node.child_by_field_name("expression")
            pattern = node.child_by_field_name("pattern")
            tested = self._simple_pattern_operand(pattern) if pattern is not None else None
            if left is not None and tested is not None:
                return BinaryExpr(op=BinaryOp.IS, left=self.build(left), right=self.build(tested), text=text)

        elif kind == "prefix_unary_expression":
            operand = _named(node)
            op = _UNARY_OPS.get(self.text(node.children[0])) if node.children else None
            if operand and op is not None:
                return PrefixUnary(op=op, operand=self.build(operand[-1]), text=text)

        elif kind == "parenthesized_expression":
            inner = _named(node)
            if inner:
                return Parenthesized(inner=self.build(inner[0]), text=text)

        elif kind == "conditional_expression":
            condition = node.child_by_field_name("condition")
            when_true = node.child_by_field_name("consequence")
            when_false = node.child_by_field_name("alternative")
            if condition is not None and when_true is not None and when_false is not None:
                return Conditional(
                    condition=self.build(condition),
                    when_true=self.build(when_true),
                    when_false=self.build(when_false),
                    text=text,
                )

        elif kind == "boolean_literal":
            literal_kind = LiteralKind.TRUE if text == "true" else LiteralKind.FALSE
            return Literal(kind=literal_kind, value=text, text=text)

        elif kind in _LITERAL_NODE_KINDS:
            return Literal(kind=_LITERAL_NODE_KINDS[kind], value=text, text=text)

        elif kind == "lambda_expression":
            return self._lambda(node, text)

        elif kind in ("this_expression", "this"):
            return ThisReference(text=text)

        return Opaque(
            kind=kind,
            normalized=_WHITESPACE.sub("", text),
            operands=tuple(self.build(child) for child in _named(node)),
            text=text,
        )

    def _simple_pattern_operand(self, pattern: Node) -> Optional[Node]:
        if pattern.type in ("type_pattern", "constant_pattern"):
            inner = _named(pattern)
            return inner[0] if len(inner) == 1 else None
        if pattern.type in _SIMPLE_PATTERN_NODES:
            return pattern
        return None

    def _arguments(self, argument_list: Optional[Node]) -> Tuple[Expr, ...]:
        if argument_list is None:
            return ()
        arguments: List[Expr] = []
        for argument in _named(argument_list):
            if argument.type != "argument":
                continue
            name = argument.child_by_field_name("name")
            candidates = [
                child for child in _named(argument)
                if child.type != "name_colon" and (name is None or child != name)
            ]
            if candidates:
                arguments.append(self.build(candidates[-1]))
            else:
                arguments.append(self.build(argument))
        return tuple(arguments)

    def _lambda(self, node: Node, text: str) -> Lambda:
        parameters_node = node.child_by_field_name("parameters")
        parameters: Tuple[str, ...] = ()
        if parameters_node is not None:
            if parameters_node.type == "parameter_list":
                parameters = tuple(
                    _WHITESPACE.sub(" ", self.text(child)) for child in _named(parameters_node)
                )
            else:
                parameters = (self.text(parameters_node),)

        body_node = node.child_by_field_name("body")
        body: Optional[Expr] = None
        if body_node is not None and body_node.type != "block":
            body = self.build(body_node)
        return Lambda(parameters=parameters, body=body, text=text)


def _outermost_invocation_nodes(root: Node) -> List[Node]:
    found: List[Node] = []
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "invocation_expression":
            found.append(node)
            continue
        stack.extend(reversed(node.named_children))
    return found


def parse_source(source: Union[str, bytes], path: str = "<string>", *, strict: bool = False) -> SourceUnit:
    """
    Parse C# source text and collect its outermost invocations.

    tree-sitter recovers from syntax errors, so a file with errors still
    yields the invocations it could make sense of. With ``strict`` set such a
    file raises SourceParseError instead.
    """
    data = source.encode("utf-8") if isinstance(source, str) else source
    if data.startswith(_UTF8_BOM):
        data = data[len(_UTF8_BOM):]

    tree = _csharp_parser().parse(data)
    root = tree.root_node
    if strict and root.has_error:
        raise SourceParseError(f"syntax errors in '{path}'")

    builder = _ExpressionBuilder(data)
    invocations: List[Invocation] = []
    for node in _outermost_invocation_nodes(root):
        expr = builder.build(node)
        if isinstance(expr, Invocation):
            invocations.append(expr)
    return SourceUnit(path=path, invocations=invocations, has_syntax_errors=root.has_error)


def parse_file(path: str, *, strict: bool = False) -> SourceUnit:
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        raise SourceParseError(f"could not read '{path}': {exc}") from exc
    return parse_source(data, path, strict=strict)


def parse_expression(text: str) -> Expr:
    """
    Parse a standalone C# expression, e.g. ``"x != null && y > 0"``.
    """
    probe = f"class __CensusProbe {{ object __probe = {text}; }}"
    data = probe.encode("utf-8")
    root = _csharp_parser().parse(data).root_node
    if root.has_error:
        raise SourceParseError(f"could not parse expression {text!r}")

    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "variable_declarator":
            value = _named(node)[-1]
            if value.type == "equals_value_clause":
                value = _named(value)[-1]
            return _ExpressionBuilder(data).build(value)
        stack.extend(reversed(node.named_children))
    raise SourceParseError(f"could not parse expression {text!r}")


# ============================================================
# ================ VOCABULARY & CONFIGURATION ================
# ============================================================

@dataclass(frozen=True)
class Vocabulary:
    """
    The call and member names the extractor and the category rules
    recognise. Defaults follow the Code Contracts API plus a few helper
    methods seen in real subject programs (QuickGraph, Boogie's ``cce``).
    """
    kind_markers: Mapping[ContractKind, str] = field(
        default_factory=lambda: {
            ContractKind.REQUIRES: "Contract.Requires",
            ContractKind.ENSURES: "Contract.Ensures",
            ContractKind.INVARIANT: "Contract.Invariant",
        }
    )
    quantifier_forms: Tuple[str, ...] = ("Enumerable.All", "Contract.ForAll")
    nullness_helpers: Tuple[str, ...] = (
        "EnumerableContract.ElementsNotNull",
        "cce.NonNull",
        "cce.NonNullElements",
        "cce.NonNullDictionaryAndValues",
    )
    blank_helpers: Tuple[str, ...] = (
        "string.IsNullOrEmpty",
        "string.IsNullOrWhiteSpace",
        "String.IsNullOrEmpty",
        "String.IsNullOrWhiteSpace",
    )
    non_empty_methods: Tuple[str, ...] = ("Any",)
    size_properties: Tuple[str, ...] = ("Count", "Length", "VertexCount")
    size_methods: Tuple[str, ...] = ("GetLength",)
    membership_methods: Tuple[str, ...] = ("Contains", "ContainsVertex", "ContainsEdge", "ContainsKey")
    result_marker: str = "Contract.Result"
    result_types: Tuple[str, ...] = ("bool", "int")
    boolean_result_types: Tuple[str, ...] = ("bool",)
    old_value_forms: Tuple[str, ...] = ("Contract.OldValue",)
    equals_method: str = "Equals"
    reference_equals_method: str = "ReferenceEquals"
    compare_methods: Tuple[str, ...] = ("Compare",)


_VOCABULARY_LIST_KEYS = (
    "quantifier_forms",
    "nullness_helpers",
    "blank_helpers",
    "non_empty_methods",
    "size_properties",
    "size_methods",
    "membership_methods",
    "result_types",
    "boolean_result_types",
    "old_value_forms",
    "compare_methods",
)
_VOCABULARY_STR_KEYS = ("result_marker", "equals_method", "reference_equals_method")

CONFIG_ENV_VAR = "CONTRACT_CENSUS_CONFIG"


@dataclass
class CensusConfig:
    vocabulary: Vocabulary = field(default_factory=Vocabulary)
    extensions: Tuple[str, ...] = (".cs",)
    strict_parse: bool = False
    stats_extension: str = "csv"
    dump_categories: bool = False


def _warn_unknown_keys(section: str, raw: Mapping[str, Any], known: Iterable[str], origin: str) -> None:
    unknown = sorted(set(raw) - set(known))
    if unknown:
        sys.stderr.write(
            f"[census] Ignoring unknown key(s) {unknown} in '{section}' of {origin}.\n"
        )


def _section(doc: Mapping[str, Any], name: str, origin: str) -> Dict[str, Any]:
    value = doc.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{origin}: '{name}' must be a mapping")
    return value


def _as_str_tuple(value: Any, key: str, origin: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{origin}: '{key}' must be a string or a list of strings")
    return tuple(value)


def _as_str(value: Any, key: str, origin: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{origin}: '{key}' must be a non-empty string")
    return value


def _as_bool(value: Any, key: str, origin: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{origin}: '{key}' must be true or false")
    return value


def config_from_mapping(doc: Optional[Mapping[str, Any]], origin: str = "<config>") -> CensusConfig:
    """
    Build a CensusConfig from a parsed YAML document. Sections and keys that
    are missing keep their defaults.
    """
    if doc is None:
        return CensusConfig()
    if not isinstance(doc, dict):
        raise ConfigError(f"{origin}: top level must be a mapping")
    _warn_unknown_keys("<top level>", doc, ("markers", "vocabulary", "source", "output"), origin)

    defaults = Vocabulary()
    vocab_args: Dict[str, Any] = {}

    markers = _section(doc, "markers", origin)
    _warn_unknown_keys("markers", markers, (kind.value for kind in ContractKind), origin)
    if markers:
        kind_markers = dict(defaults.kind_markers)
        for kind in ContractKind:
            if kind.value in markers:
                kind_markers[kind] = _as_str(markers[kind.value], f"markers.{kind.value}", origin)
        vocab_args["kind_markers"] = kind_markers

    vocabulary = _section(doc, "vocabulary", origin)
    _warn_unknown_keys("vocabulary", vocabulary, _VOCABULARY_LIST_KEYS + _VOCABULARY_STR_KEYS, origin)
    for key in _VOCABULARY_LIST_KEYS:
        if key in vocabulary:
            vocab_args[key] = _as_str_tuple(vocabulary[key], f"vocabulary.{key}", origin)
    for key in _VOCABULARY_STR_KEYS:
        if key in vocabulary:
            vocab_args[key] = _as_str(vocabulary[key], f"vocabulary.{key}", origin)

    config = CensusConfig(vocabulary=Vocabulary(**vocab_args))

    source = _section(doc, "source", origin)
    _warn_unknown_keys("source", source, ("extensions", "strict_parse"), origin)
    if "extensions" in source:
        config.extensions = _as_str_tuple(source["extensions"], "source.extensions", origin)
    if "strict_parse" in source:
        config.strict_parse = _as_bool(source["strict_parse"], "source.strict_parse", origin)

    output = _section(doc, "output", origin)
    _warn_unknown_keys("output", output, ("stats_extension", "dump_categories"), origin)
    if "stats_extension" in output:
        config.stats_extension = _as_str(output["stats_extension"], "output.stats_extension", origin).lstrip(".")
    if "dump_categories" in output:
        config.dump_categories = _as_bool(output["dump_categories"], "output.dump_categories", origin)

    return config


def load_config(path: Optional[str] = None) -> CensusConfig:
    """
    Load the YAML configuration at ``path``, or at $CONTRACT_CENSUS_CONFIG
    when no path is given. Without either, the defaults are used.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return CensusConfig()

    try:
        with open(path, "r", encoding="utf-8") as handle:
            doc = yaml.safe_load(handle)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    return config_from_mapping(doc, origin=path)


# ============================================================
# ====================== CATEGORY RULES ======================
# ============================================================

class ClauseRules:
    """
    Structural predicates over a single, parenthesis-stripped clause.

    The predicates are deliberately loose; the category catalogue applies
    them in a fixed order so that a later, more permissive predicate only
    sees clauses the earlier ones rejected.
    """

    def __init__(self, vocabulary: Optional[Vocabulary] = None) -> None:
        self.vocabulary = vocabulary or Vocabulary()
        marker = self.vocabulary.result_marker
        self._typed_results = frozenset(f"{marker}<{t}>" for t in self.vocabulary.result_types)
        self._boolean_results = frozenset(f"{marker}<{t}>" for t in self.vocabulary.boolean_result_types)

    # ---------------- shared shapes ----------------

    def is_contract_result(self, expr: Expr) -> bool:
        """True for ``Contract.Result<T>()``, the method's own return value."""
        return isinstance(expr, Invocation) and expr.callee.text.startswith(
            self.vocabulary.result_marker + "<"
        )

    def is_boolean_result_call(self, expr: Expr) -> bool:
        return isinstance(expr, Invocation) and expr.callee.text in self._boolean_results

    def is_old_value(self, old_value: Expr, expr: Expr) -> bool:
        """
        True if ``old_value`` is the pre-state wrapper of ``expr``, i.e.
        ``Contract.OldValue(expr)``.
        """
        if not isinstance(old_value, Invocation):
            return False
        callee = old_value.callee.text
        if not any(callee == form or callee.startswith(form + "<") for form in self.vocabulary.old_value_forms):
            return False
        return call_argument(old_value, 0) == expr

    def is_collection_size_expr(self, expr: Expr) -> bool:
        if isinstance(expr, MemberAccess):
            return expr.name in self.vocabulary.size_properties
        if isinstance(expr, Invocation):
            return simple_method_name(expr) in self.vocabulary.size_methods
        return False

    def is_size_check(self, expr: Expr) -> bool:
        if isinstance(expr, BinaryExpr):
            return self.is_collection_size_expr(expr.left) or self.is_collection_size_expr(expr.right)
        return False

    def is_greater_than_check(self, expr: Expr, value: int, strict: bool) -> bool:
        """
        ``e > value`` / ``value < e`` when strict, ``e >= value`` /
        ``value <= e`` otherwise. The literal is compared textually.
        """
        if not isinstance(expr, BinaryExpr):
            return False
        greater = BinaryOp.GREATER if strict else BinaryOp.GREATER_EQUAL
        less = BinaryOp.LESS if strict else BinaryOp.LESS_EQUAL
        if expr.op is greater:
            return expr.right.text == str(value)
        if expr.op is less:
            return expr.left.text == str(value)
        return False

    def is_positive_check(self, expr: Expr) -> bool:
        return self.is_greater_than_check(expr, 0, True) or self.is_greater_than_check(expr, 1, False)

    # ---------------- category predicates ----------------

    def is_nullness_check(self, expr: Expr) -> bool:
        if isinstance(expr, BinaryExpr) and expr.op is BinaryOp.NOT_EQUALS:
            return _is_literal(expr.left, LiteralKind.NULL) or _is_literal(expr.right, LiteralKind.NULL)
        if isinstance(expr, Invocation):
            return expr.callee.text in self.vocabulary.nullness_helpers
        if _is_negation(expr):
            # !ReferenceEquals(x, null)
            inner = expr.operand
            if not isinstance(inner, Invocation):
                return False
            if simple_method_name(inner) != self.vocabulary.reference_equals_method:
                return False
            return call_argument(inner, 0).text == "null" or call_argument(inner, 1).text == "null"
        return False

    def is_null_or_blank_check(self, expr: Expr) -> bool:
        if isinstance(expr, Invocation):
            return expr.callee.text in self.vocabulary.blank_helpers
        if isinstance(expr, BinaryExpr):
            if expr.op is BinaryOp.NOT_EQUALS and '""' in (expr.left.text, expr.right.text):
                return True
            if expr.op in (BinaryOp.EQUALS, BinaryOp.NOT_EQUALS):
                # string.IsNullOrEmpty(s) == false
                def compared(call: Expr, other: Expr) -> bool:
                    return (
                        isinstance(call, Invocation)
                        and self.is_null_or_blank_check(call)
                        and isinstance(other, Literal)
                    )

                return compared(expr.left, expr.right) or compared(expr.right, expr.left)
            return False
        if _is_negation(expr):
            return self.is_null_or_blank_check(expr.operand)
        return False

    def is_non_empty_check(self, expr: Expr) -> bool:
        return (
            isinstance(expr, Invocation)
            and not expr.arguments
            and isinstance(expr.callee, MemberAccess)
            and expr.callee.name in self.vocabulary.non_empty_methods
        )

    def is_bounded_check(self, expr: Expr) -> bool:
        if not isinstance(expr, BinaryExpr) or expr.op not in RELATIONAL_OPS:
            return False

        def regular(e: Expr) -> bool:
            return not isinstance(e, Invocation) or self.is_contract_result(e)

        has_literal = isinstance(expr.left, Literal) or isinstance(expr.right, Literal)
        return has_literal and regular(expr.left) and regular(expr.right)

    def is_indicator(self, expr: Expr) -> bool:
        # A lone boolean counts as an indicator whatever its name.
        if isinstance(expr, (Identifier, MemberAccess)):
            return True

        if isinstance(expr, Invocation):
            if expr.text.startswith(self.vocabulary.result_marker):
                return False
            if not expr.arguments:
                return self.is_indicator(expr.callee)
            if len(expr.arguments) == 1:
                # Receivers that look like a static class: Helpers.IsValid(x)
                if isinstance(expr.callee, MemberAccess):
                    receiver = expr.callee.owner.text
                    return bool(receiver) and receiver[0].isupper()
            return False

        if _is_negation(expr):
            return self.is_indicator(expr.operand)

        if isinstance(expr, BinaryExpr) and expr.op in (BinaryOp.EQUALS, BinaryOp.NOT_EQUALS):
            # indicator == true
            def is_bool_literal(e: Expr) -> bool:
                return isinstance(e, Literal) and e.kind in (LiteralKind.TRUE, LiteralKind.FALSE)

            return (
                (self.is_indicator(expr.left) and is_bool_literal(expr.right))
                or (self.is_indicator(expr.right) and is_bool_literal(expr.left))
            )

        return False

    def is_frame_condition(self, expr: Expr) -> bool:
        """x == Contract.OldValue(x), in either order."""
        if isinstance(expr, BinaryExpr) and expr.op is BinaryOp.EQUALS:
            return self.is_old_value(expr.left, expr.right) or self.is_old_value(expr.right, expr.left)
        return False

    def is_bool_result(self, expr: Expr) -> bool:
        if isinstance(expr, BinaryExpr) and expr.op is BinaryOp.EQUALS:
            left = expr.left
            return isinstance(left, Invocation) and left.callee.text in self._typed_results
        return self.is_boolean_result_call(expr)

    def is_bounds_check(self, expr: Expr) -> bool:
        if isinstance(expr, BinaryExpr) and expr.op is BinaryOp.LESS:
            return self.is_collection_size_expr(expr.right)
        if isinstance(expr, BinaryExpr) and expr.op is BinaryOp.LOGICAL_AND:
            # Unreachable for extracted clauses: top-level conjunctions are
            # split before any rule runs.
            return self.is_greater_than_check(expr.left, 0, False) and self.is_bounds_check(expr.right)
        return False

    def is_constant_check(self, expr: Expr) -> bool:
        if _is_negation(expr):
            return self.is_constant_check(expr.operand)
        if self.is_boolean_result_call(expr):
            return True
        if isinstance(expr, BinaryExpr) and expr.op is BinaryOp.EQUALS:
            def named_constant(lhs: Expr, rhs: Expr) -> bool:
                return isinstance(lhs, (Identifier, MemberAccess)) and isinstance(rhs, Literal)

            return named_constant(expr.left, expr.right) or named_constant(expr.right, expr.left)
        return False

    def is_implication(self, expr: Expr) -> bool:
        if isinstance(expr, Conditional):
            return True
        return isinstance(expr, BinaryExpr) and expr.op is BinaryOp.LOGICAL_OR

    def is_getter_setter(self, expr: Expr) -> bool:
        def simple(e: Expr) -> bool:
            return isinstance(e, (MemberAccess, Identifier, ThisReference)) or self.is_contract_result(e)

        if isinstance(expr, BinaryExpr) and expr.op is BinaryOp.EQUALS:
            def mirrors(lhs: Expr, rhs: Expr) -> bool:
                constant_return = self.is_contract_result(lhs) and isinstance(rhs, Literal)
                return (
                    simple(lhs)
                    and isinstance(rhs, (Identifier, MemberAccess, Literal))
                    and not constant_return
                )

            return mirrors(expr.left, expr.right) or mirrors(expr.right, expr.left)

        if isinstance(expr, Invocation):
            name = simple_method_name(expr)
            if name == self.vocabulary.reference_equals_method:
                return self.is_contract_result(call_argument(expr, 0)) or self.is_contract_result(
                    call_argument(expr, 1)
                )
            if isinstance(expr.callee, MemberAccess) and name == self.vocabulary.equals_method:
                return simple(expr.callee.owner) and simple(call_argument(expr, 0))
            return False

        return False

    def is_state_update(self, expr: Expr) -> bool:
        """
        The right side mentions the pre-state of the left side, e.g.
        ``Count == Contract.OldValue(Count) + 1``. A bare
        ``x == Contract.OldValue(x)`` is a frame condition instead.
        """
        if not isinstance(expr, BinaryExpr):
            return False
        direct = self.is_old_value(expr.right, expr.left)
        nested = any(self.is_old_value(e, expr.left) for e in iter_descendants(expr.right))
        return (not direct or expr.op is not BinaryOp.EQUALS) and (direct or nested)

    def is_membership_check(self, expr: Expr) -> bool:
        if isinstance(expr, Invocation):
            if len(expr.arguments) != 1:
                return False
            return simple_method_name(expr) in self.vocabulary.membership_methods
        if _is_negation(expr):
            return self.is_membership_check(expr.operand)
        return False

    def is_expr_comparison(self, expr: Expr) -> bool:
        """A binary expression over two non-literals."""
        if isinstance(expr, BinaryExpr) and expr.op is not BinaryOp.LOGICAL_AND:
            if self.is_frame_condition(expr) or self.is_state_update(expr) or self.is_implication(expr):
                return False
            return not (isinstance(expr.left, Literal) or isinstance(expr.right, Literal))

        if isinstance(expr, Invocation):
            name = simple_method_name(expr)
            if name in (self.vocabulary.equals_method, self.vocabulary.reference_equals_method):
                return not (isinstance(expr.callee, Literal) or isinstance(call_argument(expr, 0), Literal))
            return False

        return False

    def is_comparison_check(self, expr: Expr) -> bool:
        """``string.Compare(a, b) < 0`` or ``!a.Equals(b)``."""
        if isinstance(expr, BinaryExpr) and expr.op in RELATIONAL_OPS:
            left = expr.left
            return (
                isinstance(left, Invocation)
                and simple_method_name(left) in self.vocabulary.compare_methods
                and isinstance(expr.right, Literal)
            )
        if _is_negation(expr):
            operand = expr.operand
            return isinstance(operand, Invocation) and simple_method_name(operand) == self.vocabulary.equals_method
        return False


# ============================================================
# ==================== CATEGORY CATALOGUE ====================
# ============================================================

NULLNESS = "Nullness"
NULL_OR_BLANK = "Null/Blank"
NON_EMPTY = "Non-Empty"
LOWER_OR_UPPER_BOUND = "Lower/Upper Bound"
INDICATOR = "Indicator"
FRAME_CONDITION = "Frame Condition"
RETURN_VALUE = "Return Value"
BOUNDS_CHECK = "Bounds Check"
CONSTANT = "Constant"
IMPLICATION = "Implication"
GETTER_OR_SETTER = "Getter/Setter"
STATE_UPDATE = "State Update"
MEMBERSHIP = "Membership"
EXPR_COMPARISON = "Expr. Comparison"

OTHER = "Other"


def semantic_categories(rules: Optional[ClauseRules] = None) -> Tuple[Category, ...]:
    """
    The ordered category catalogue. Order matters: with mutually exclusive
    categories a clause receives the first category whose rule fires.
    """
    r = rules or ClauseRules()
    return (
        Category.from_expression_rule(NULLNESS, r.is_nullness_check),
        Category.from_expression_rule(NULL_OR_BLANK, r.is_null_or_blank_check),
        Category.from_expression_rule(
            NON_EMPTY,
            lambda e: r.is_non_empty_check(e) or (r.is_size_check(e) and r.is_positive_check(e)),
        ),
        Category.from_expression_rule(
            LOWER_OR_UPPER_BOUND,
            lambda e: r.is_bounded_check(e) and not r.is_size_check(e),
        ),
        Category.from_expression_rule(INDICATOR, r.is_indicator),
        Category.from_expression_rule(FRAME_CONDITION, r.is_frame_condition),
        Category.from_expression_rule(
            RETURN_VALUE,
            lambda e: r.is_bool_result(e) and not r.is_getter_setter(e),
        ),
        Category.from_expression_rule(BOUNDS_CHECK, r.is_bounds_check),
        Category.from_expression_rule(
            CONSTANT,
            lambda e: r.is_constant_check(e) and not r.is_size_check(e),
        ),
        Category.from_expression_rule(IMPLICATION, r.is_implication),
        Category(
            GETTER_OR_SETTER,
            lambda kinds, e: ContractKind.ENSURES in kinds and r.is_getter_setter(e),
        ),
        Category.from_expression_rule(STATE_UPDATE, r.is_state_update),
        Category.from_expression_rule(MEMBERSHIP, r.is_membership_check),
        Category.from_expression_rule(
            EXPR_COMPARISON,
            lambda e: r.is_expr_comparison(e) or r.is_comparison_check(e),
        ),
    )


# ============================================================
# ==================== CLAUSE EXTRACTION =====================
# ============================================================

def quantified_body(expr: Expr, vocabulary: Vocabulary) -> Optional[Expr]:
    """
    For ``Contract.ForAll(xs, x => body)`` (or another allow-listed
    quantifier) return ``body``; None for anything else, including lambdas
    with a statement block.
    """
    if not isinstance(expr, Invocation) or expr.callee.text not in vocabulary.quantifier_forms:
        return None
    predicate = call_argument(expr, 1)
    if isinstance(predicate, Lambda):
        return predicate.body
    return None


def top_level_clauses(expr: Expr, unroll_quantifiers: bool, vocabulary: Vocabulary) -> List[Expr]:
    """
    Split a contract body into independently classifiable clauses.

    Top-level conjunctions are split recursively. A quantifier at the top
    is unrolled into its lambda body at most once; any other call becomes a
    single opaque clause.
    """
    normalized = strip_parentheses(expr)

    if unroll_quantifiers and isinstance(normalized, Invocation):
        if normalized.callee.text in vocabulary.quantifier_forms:
            predicate = call_argument(normalized, 1)
            if isinstance(predicate, Lambda):
                if predicate.body is not None:
                    return top_level_clauses(predicate.body, False, vocabulary)
                return [normalized]
        else:
            return [normalized]

    if isinstance(normalized, BinaryExpr) and normalized.op is BinaryOp.LOGICAL_AND:
        return (
            top_level_clauses(strip_parentheses(normalized.left), unroll_quantifiers, vocabulary)
            + top_level_clauses(strip_parentheses(normalized.right), unroll_quantifiers, vocabulary)
        )

    return [normalized]


def is_invalid_contract(clause: Expr) -> bool:
    """``Requires(false)`` makes no sense under behavioral subtyping."""
    return _is_literal(clause, LiteralKind.FALSE)


def label_clause(
    categories: Sequence[Category],
    kinds: KindSet,
    clause: Expr,
    vocabulary: Vocabulary,
    *,
    mutually_exclusive: bool = CATEGORIES_ARE_MUTEX,
) -> FrozenSet[str]:
    """
    Names of the categories ``clause`` falls into. Each rule is tried on the
    clause itself, then on the body of the clause when it is an un-split
    quantifier.
    """
    normalized = strip_parentheses(clause)
    labels: List[str] = []
    for category in categories:
        matched = category.rule(kinds, normalized)
        if not matched:
            body = quantified_body(normalized, vocabulary)
            matched = body is not None and category.rule(kinds, body)
        if matched:
            labels.append(category.name)
            if mutually_exclusive:
                break
    return frozenset(labels)


class ContractCollector:
    """
    Walks parsed sources collecting and categorizing contracts of the
    configured kinds. Results accumulate in ``clauses`` across visits.
    """

    def __init__(
        self,
        kinds: Iterable[ContractKind],
        categories: Sequence[Category],
        vocabulary: Optional[Vocabulary] = None,
        *,
        mutually_exclusive: bool = CATEGORIES_ARE_MUTEX,
    ) -> None:
        self.kinds: KindSet = frozenset(kinds)
        self.categories = tuple(categories)
        self.vocabulary = vocabulary or Vocabulary()
        self.mutually_exclusive = mutually_exclusive
        self.clauses: List[Clause] = []

    def visit(self, root: Union[SourceUnit, Expr]) -> None:
        if isinstance(root, SourceUnit):
            invocations: Iterable[Invocation] = root.invocations
        else:
            invocations = iter_outermost_invocations(root)
        for invocation in invocations:
            self._visit_invocation(invocation)

    def _visit_invocation(self, node: Invocation) -> None:
        if not isinstance(node.callee, MemberAccess):
            return
        callee = node.callee.text
        for kind, marker in self.vocabulary.kind_markers.items():
            if kind not in self.kinds or not callee.startswith(marker):
                continue
            contract = strip_parentheses(call_argument(node, 0))
            for clause in top_level_clauses(contract, True, self.vocabulary):
                if is_invalid_contract(clause):
                    continue
                labels = label_clause(
                    self.categories,
                    self.kinds,
                    clause,
                    self.vocabulary,
                    mutually_exclusive=self.mutually_exclusive,
                )
                self.clauses.append(Clause(kind=kind, text=clause.text, labels=labels))


def classify_source(
    source: Union[str, bytes],
    kinds: Iterable[ContractKind] = ALL_KINDS,
    categories: Optional[Sequence[Category]] = None,
    vocabulary: Optional[Vocabulary] = None,
) -> List[Clause]:
    """
    Parse C# source and return its classified contract clauses.
    """
    vocabulary = vocabulary or Vocabulary()
    if categories is None:
        categories = semantic_categories(ClauseRules(vocabulary))
    collector = ContractCollector(kinds, categories, vocabulary)
    collector.visit(parse_source(source))
    return collector.clauses


# ============================================================
# ================= AGGREGATION & REPORTING ==================
# ============================================================

BY_PROJECT_BASENAME = "stats-by-project"
UNCATEGORIZED_FILENAME = "uncategorized-contracts.txt"
USAGE = "usage: contract-census [--config FILE] [--dump-categories] [--ext EXT] SOURCE_DIR OUTPUT_DIR"

_DUMP_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9%._]")


@dataclass
class Subject:
    """One project of the corpus: a top-level subdirectory."""
    name: str
    path: str


@dataclass
class SubjectResult:
    subject: Subject
    requires: List[Clause] = field(default_factory=list)
    ensures: List[Clause] = field(default_factory=list)
    invariant: List[Clause] = field(default_factory=list)
    combined: List[Clause] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)

    def view(self, kind: Optional[ContractKind] = None) -> List[Clause]:
        """Clauses of the per-kind collector for ``kind``; the combined pass for None."""
        if kind is ContractKind.REQUIRES:
            return self.requires
        if kind is ContractKind.ENSURES:
            return self.ensures
        if kind is ContractKind.INVARIANT:
            return self.invariant
        return self.combined

    def count(self, name: str, kind: Optional[ContractKind] = None) -> int:
        return sum(1 for clause in self.view(kind) if name in clause.labels)

    def other_count(self, kind: Optional[ContractKind] = None) -> int:
        return sum(1 for clause in self.view(kind) if clause.is_uncategorized)

    def uncategorized(self) -> List[Clause]:
        return [clause for clause in self.combined if clause.is_uncategorized]

    def clauses_in(self, name: str) -> List[Clause]:
        return [clause for clause in self.combined if name in clause.labels]


class AggregateTable:
    """
    Run-level totals: combined clause count per category name (plus
    "Other") and the number of clauses per contract kind.
    """

    def __init__(self) -> None:
        self.counts: Dict[str, int] = {}
        self.kind_totals: Dict[ContractKind, int] = {kind: 0 for kind in ContractKind}
        self.projects: List[str] = []

    def fold(self, result: SubjectResult, categories: Sequence[Category]) -> None:
        for category in categories:
            self.counts[category.name] = self.counts.get(category.name, 0) + result.count(category.name)
        self.counts[OTHER] = self.counts.get(OTHER, 0) + result.other_count()
        for kind in ContractKind:
            self.kind_totals[kind] += len(result.view(kind))
        self.projects.append(result.subject.name)

    def summary_lines(self) -> List[str]:
        lines = [f"{name}: {count}" for name, count in self.counts.items()]
        lines.extend(
            f"{kind.value.capitalize()} clauses: {total}" for kind, total in self.kind_totals.items()
        )
        return lines


def discover_subjects(source_dir: str, out: Optional[IO[str]] = None) -> List[Subject]:
    out = out or sys.stdout
    subjects: List[Subject] = []
    for entry in sorted(os.listdir(source_dir)):
        path = os.path.join(source_dir, entry)
        if os.path.isdir(path):
            print(f"Added project {entry}", file=out)
            subjects.append(Subject(name=entry, path=path))
    return subjects


def iter_source_files(root: str, extensions: Sequence[str] = (".cs",)) -> Iterator[str]:
    """
    Source files under ``root``: a directory's own files before those of its
    subdirectories, both in name order.
    """
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if filename.endswith(tuple(extensions)):
                yield os.path.join(dirpath, filename)


def collect_subject(
    subject: Subject,
    categories: Sequence[Category],
    config: Optional[CensusConfig] = None,
) -> SubjectResult:
    """
    Run the Requires, Ensures, Invariant and combined collectors over every
    source file of ``subject``. A file that fails is reported and skipped;
    clauses it produced before failing are kept.
    """
    config = config or CensusConfig()
    vocabulary = config.vocabulary
    per_kind = {kind: ContractCollector({kind}, categories, vocabulary) for kind in ContractKind}
    combined = ContractCollector(ALL_KINDS, categories, vocabulary)
    collectors = list(per_kind.values()) + [combined]

    result = SubjectResult(subject=subject)
    for path in iter_source_files(subject.path, config.extensions):
        try:
            unit = parse_file(path, strict=config.strict_parse)
            for collector in collectors:
                collector.visit(unit)
        except (CensusError, OSError, RecursionError) as exc:
            sys.stderr.write(f"[census] Skipping '{path}': {exc}\n")
            result.failed_files.append(path)

    result.requires = per_kind[ContractKind.REQUIRES].clauses
    result.ensures = per_kind[ContractKind.ENSURES].clauses
    result.invariant = per_kind[ContractKind.INVARIANT].clauses
    result.combined = combined.clauses
    return result


def category_dump_filename(name: str) -> str:
    return _DUMP_NAME_UNSAFE.sub("_", name) + ".txt"


class CensusReportWriter:
    """
    Writes the census output files into ``output_dir``:

    - stats-by-project.<ext>: combined counts, one row per project
    - <project>.stats: per-kind counts for one project
    - uncategorized-contracts.txt: text of every "Other" clause
    - one dump file per category when ``dump_categories`` is set
    """

    def __init__(
        self,
        output_dir: str,
        categories: Sequence[Category],
        *,
        stats_extension: str = "csv",
        dump_categories: bool = False,
        out: Optional[IO[str]] = None,
    ) -> None:
        self.output_dir = output_dir
        self.categories = tuple(categories)
        self.stats_extension = stats_extension
        self.dump_categories = dump_categories
        self.out = out or sys.stdout
        self._stack = ExitStack()
        self._by_project: Optional[Any] = None
        self._uncategorized: Optional[IO[str]] = None
        self._dumps: Dict[str, IO[str]] = {}

    def _open(self, filename: str) -> IO[str]:
        path = os.path.join(self.output_dir, filename)
        return self._stack.enter_context(open(path, "w", encoding="utf-8", newline=""))

    def __enter__(self) -> "CensusReportWriter":
        os.makedirs(self.output_dir, exist_ok=True)
        try:
            by_project = self._open(f"{BY_PROJECT_BASENAME}.{self.stats_extension}")
            self._by_project = csv.writer(by_project, lineterminator="\n")
            self._by_project.writerow([" "] + [category.name for category in self.categories])
            self._uncategorized = self._open(UNCATEGORIZED_FILENAME)
            if self.dump_categories:
                for category in self.categories:
                    self._dumps[category.name] = self._open(category_dump_filename(category.name))
        except BaseException:
            self._stack.close()
            raise
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._stack.close()

    def write_subject(self, result: SubjectResult) -> None:
        if self._by_project is None or self._uncategorized is None:
            raise CensusError("report writer used outside its context")
        name = result.subject.name

        stats_path = os.path.join(self.output_dir, f"{name}.stats")
        with open(stats_path, "w", encoding="utf-8", newline="") as handle:
            stats = csv.writer(handle, lineterminator="\n")
            for category in self.categories:
                stats.writerow([category.name] + [result.count(category.name, kind) for kind in ContractKind])
            stats.writerow([OTHER] + [result.other_count(kind) for kind in ContractKind])

        row: List[Any] = [name]
        row.extend(result.count(category.name) for category in self.categories)
        row.append(result.other_count())
        self._by_project.writerow(row)

        for clause in result.uncategorized():
            self._uncategorized.write(clause.text + "\n")
            print(f"[{name}] {clause.text}", file=self.out)

        for category_name, handle in self._dumps.items():
            for clause in result.clauses_in(category_name):
                handle.write(clause.text + "\n")


def run_census(
    source_dir: str,
    output_dir: str,
    config: Optional[CensusConfig] = None,
    categories: Optional[Sequence[Category]] = None,
    out: Optional[IO[str]] = None,
) -> AggregateTable:
    """
    Classify the contracts of every project below ``source_dir`` and write
    the reports into ``output_dir``. Returns the run's aggregate table.
    """
    config = config or CensusConfig()
    out = out or sys.stdout
    if not os.path.isdir(source_dir):
        raise CensusError(f"Source directory not found: {source_dir}")
    if categories is None:
        categories = semantic_categories(ClauseRules(config.vocabulary))

    subjects = discover_subjects(source_dir, out)
    table = AggregateTable()

    with CensusReportWriter(
        output_dir,
        categories,
        stats_extension=config.stats_extension,
        dump_categories=config.dump_categories,
        out=out,
    ) as writer:
        for subject in subjects:
            print(f"computing counts for {subject.name}...", file=out)
            result = collect_subject(subject, categories, config)
            writer.write_subject(result)
            table.fold(result, categories)

    for line in table.summary_lines():
        print(line, file=out)
    return table


# ============================================================
# ============================ CLI ===========================
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.
    Intended usage:
      contract-census corpus/ results/

    Each subdirectory of corpus/ is one project.
    """
    parser = argparse.ArgumentParser(
        prog="contract-census",
        description="Contract Census: categorize Code Contracts clauses across C# projects",
    )
    parser.add_argument(
        "paths",
        nargs="*",
        metavar="DIR",
        help="Source directory (one subdirectory per project) followed by the output directory.",
    )
    parser.add_argument(
        "--config",
        metavar="CONFIG_YAML",
        help=f"YAML configuration file (default: ${CONFIG_ENV_VAR}).",
        required=False,
    )
    parser.add_argument(
        "--dump-categories",
        action="store_true",
        default=None,
        help="Also write one file per category with the text of its clauses.",
    )
    parser.add_argument(
        "--ext",
        metavar="EXT",
        help="Extension of the by-project statistics file (default: csv).",
        required=False,
    )

    args = parser.parse_args(argv)

    if len(args.paths) != 2:
        print(USAGE)
        return 0

    source_dir, output_dir = args.paths

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        sys.stderr.write(f"[census] {exc}\n")
        return 1

    if args.dump_categories is not None:
        config.dump_categories = args.dump_categories
    if args.ext:
        config.stats_extension = args.ext.lstrip(".")

    try:
        run_census(source_dir, output_dir, config)
    except CensusError as exc:
        sys.stderr.write(f"[census] {exc}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
