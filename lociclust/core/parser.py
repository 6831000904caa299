"""
Parser for grouping expressions.

Rule files declare typed variables::

    var num  up_sim = up1 aln-sim with up2
    var bool same   = up_sim > 0.75

Declarations are collected first (``declare``) and parsed lazily on demand
(``parse``), so a variable may refer to names declared after it. Each name
is parsed once; the resulting node is shared by every reference.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..errors import CyclicDefinitionError, GrammarError, UndefinedReferenceError
from ..utils.sequence import is_nucleotide_sequence
from .operators import (
    ALIGNMENT_OPS,
    BOOL_ALIASES,
    CONSTANTS,
    COMPARISON_OPS,
    NUM_ALIASES,
    BinaryOp,
    Const,
    Kind,
    Literal,
    Node,
    Op,
    UnaryOp,
)

logger = logging.getLogger(__name__)

# bool
BOOL_TRUE = re.compile(r'^(?:t(?:rue)?|1)$', re.IGNORECASE)
BOOL_FALSE = re.compile(r'^(?:f(?:alse)?|0)$', re.IGNORECASE)
BOOL_UNARY = re.compile(r'^(?:!\s*|not\s+)(?P<operand>\S+)$', re.IGNORECASE)
BOOL_WORD = re.compile(
    r'^(?P<left>\S+)\s+(?P<op>and|or|xor)\s+(?P<right>\S+)$', re.IGNORECASE)
BOOL_SYMBOLIC = re.compile(
    r'^(?P<left>[^\s<>=&|^!]+)\s*(?P<op>>=|<=|>|<|&&|&|\|\||\||\^)\s*(?P<right>[^\s<>=&|^!]+)$')

# num
NUM_LITERAL = re.compile(r'^[-+]?\d*\.?\d+(?:[eE][-+]?\d*\.?\d+)?$')
NUM_ALIGN = re.compile(
    r'^(?P<left>\S+)\s+(?P<op>aln-(?:sim|score)(?:\s+with)?)\s+(?P<right>\S+)$',
    re.IGNORECASE)
NUM_SYMBOLIC = re.compile(r'^(?P<left>\S+?)\s*(?P<op>\*\*|[-+*/%^])\s*(?P<right>\S+)$')

# seq
SEQ_LITERAL = re.compile(r'^[A-Za-z]+$')
SEQ_AT = re.compile(
    r'^(?P<operand>\S+)\s+at\s*\[\s*(?P<side>[-+]?\d+)\s*[,;]\s*(?P<start>[-+]?\d+)'
    r'\s*\.\.\s*(?P<end>[-+]?\d+)\s*\]$',
    re.IGNORECASE)
SEQ_REVCOMP = re.compile(r'^rev(?:erse|comp?)?(?:\s+of)?\s+(?P<operand>\S+)$', re.IGNORECASE)
SEQ_IDENTITY = re.compile(r'^seq\s+(?P<operand>\S+)$', re.IGNORECASE)

# context strings, e.g. "[-1,-500..0]"
CONTEXT_PATTERN = re.compile(
    r'^([+-]?\d)\s*(?:[;,:-]|\.\.)\s*([+-]?\d+)\s*(?:[;,:-]|\.\.)\s*([+-]?\d+)')


def parse_kind(kind: Union[str, Kind]) -> Kind:
    """Convert a declared kind ('bool', 'num', 'seq') into a Kind."""
    if isinstance(kind, Kind):
        return kind
    try:
        return Kind(str(kind).strip().lower())
    except ValueError:
        raise GrammarError("Unknown variable kind", kind=str(kind)) from None


def parse_context(text: Optional[str]) -> Tuple[int, int, int]:
    """
    Parse an informal context interval into ``(side, start, end)``.

    Examples:
        >>> parse_context("[-1,-500..0]")
        (-1, -500, 0)
        >>> parse_context("default")
        (0, 0, 0)

    Unrecognized or degenerate forms give ``(0, 0, 0)``.
    """
    if not text or text.strip().lower() == 'default':
        return (0, 0, 0)
    context = text.strip()
    context = re.sub(r'^[\[\(]+', '', context)
    context = re.sub(r'[\]\)]+$', '', context)
    match = CONTEXT_PATTERN.match(context)
    if match:
        return (int(match.group(1)), int(match.group(2)), int(match.group(3)))
    return (0, 0, 0)


class ExpressionParser:
    """
    Named-variable table with lazy, cycle-checked resolution.

    Example:
        >>> parser = ExpressionParser()
        >>> parser.declare('num', 'total', '5 + 3')
        >>> parser.parse('total')
        BinaryOp(kind=<Kind.NUM: 'num'>, op=<Op.ADD: '+'>, ...)
    """

    def __init__(self):
        self._declarations: Dict[str, Tuple[Kind, str]] = {}
        self._resolved: Dict[str, Node] = {}
        self._visiting: List[str] = []

    def declare(self, kind: Union[str, Kind], name: str, text: str) -> None:
        """Record a ``var <kind> <name> = <text>`` declaration."""
        kind = parse_kind(kind)
        name = name.strip()
        if not name or re.search(r'\s', name):
            raise GrammarError("Invalid variable name", text=text, kind=kind.value, name=name)
        if name in CONSTANTS:
            raise GrammarError("Reserved name cannot be declared", text=text,
                               kind=kind.value, name=name)
        if name in self._declarations:
            logger.debug(f"Redeclaring variable '{name}'")
        self._declarations[name] = (kind, text.strip())
        self._resolved.clear()

    @property
    def declarations(self) -> Dict[str, Tuple[Kind, str]]:
        return dict(self._declarations)

    def __contains__(self, name: str) -> bool:
        return name in self._declarations

    def parse(self, name: str, referrer: Optional[str] = None) -> Node:
        """
        Resolve a variable name into an operator tree.

        Raises:
            UndefinedReferenceError: If the name was never declared
            CyclicDefinitionError: If the name refers back to itself
            GrammarError: If the declared text does not match its kind
        """
        if name in CONSTANTS:
            return Const(name)
        if name not in self._declarations:
            raise UndefinedReferenceError(name, referrer)
        if name in self._resolved:
            return self._resolved[name]
        if name in self._visiting:
            cycle = self._visiting[self._visiting.index(name):] + [name]
            raise CyclicDefinitionError(cycle)

        self._visiting.append(name)
        try:
            kind, text = self._declarations[name]
            if kind == Kind.BOOL:
                node = self._parse_bool(name, text)
            elif kind == Kind.NUM:
                node = self._parse_num(name, text)
            else:
                node = self._parse_seq(name, text)
        finally:
            self._visiting.pop()

        self._resolved[name] = node
        return node

    # ------------------------------------------------------------------
    # Operands
    # ------------------------------------------------------------------

    def _operand(self, text: str, expected: Sequence[Kind], referrer: str) -> Node:
        """Resolve an operand: constant, declared variable or inline literal."""
        if text in CONSTANTS or text in self._declarations:
            node = self.parse(text, referrer)
            if node.kind not in expected:
                kinds = '/'.join(k.value for k in expected)
                raise GrammarError(
                    f"Operand '{text}' is of kind '{node.kind.value}', expecting {kinds}",
                    text=self._declarations[referrer][1], kind=self._declarations[referrer][0].value,
                    name=referrer)
            return node

        for kind in expected:
            literal = self._inline_literal(text, kind)
            if literal is not None:
                return literal
        raise UndefinedReferenceError(text, referrer)

    @staticmethod
    def _inline_literal(text: str, kind: Kind) -> Optional[Literal]:
        if kind == Kind.NUM and NUM_LITERAL.match(text):
            try:
                return Literal(Kind.NUM, float(text))
            except ValueError:
                return None
        if kind == Kind.BOOL:
            lowered = text.lower()
            if lowered == 'true':
                return Literal(Kind.BOOL, True)
            if lowered == 'false':
                return Literal(Kind.BOOL, False)
        if kind == Kind.SEQ and is_nucleotide_sequence(text):
            return Literal(Kind.SEQ, text.upper())
        return None

    # ------------------------------------------------------------------
    # Grammars
    # ------------------------------------------------------------------

    def _parse_bool(self, name: str, text: str) -> Node:
        if BOOL_TRUE.match(text):
            return Literal(Kind.BOOL, True, var=name)
        if BOOL_FALSE.match(text):
            return Literal(Kind.BOOL, False, var=name)

        match = BOOL_UNARY.match(text)
        if match:
            operand = self._operand(match.group('operand'), (Kind.BOOL, Kind.NUM), name)
            return UnaryOp(Kind.BOOL, Op.NOT, operand, var=name)

        match = BOOL_WORD.match(text) or BOOL_SYMBOLIC.match(text)
        if match:
            op = BOOL_ALIASES[match.group('op').lower()]
            if op in COMPARISON_OPS:
                expected = (Kind.NUM, Kind.BOOL)
            else:
                expected = (Kind.BOOL, Kind.NUM)
            left = self._operand(match.group('left'), expected, name)
            right = self._operand(match.group('right'), expected, name)
            return BinaryOp(Kind.BOOL, op, left, right, var=name)

        raise GrammarError("Impossible to parse boolean", text=text, kind='bool', name=name)

    def _parse_num(self, name: str, text: str) -> Node:
        if NUM_LITERAL.match(text):
            try:
                return Literal(Kind.NUM, float(text), var=name)
            except ValueError:
                raise GrammarError("Invalid number", text=text, kind='num', name=name) from None

        match = NUM_ALIGN.match(text) or NUM_SYMBOLIC.match(text)
        if match:
            op_text = re.sub(r'\s+', ' ', match.group('op').lower())
            op = NUM_ALIASES[op_text]
            expected = (Kind.SEQ,) if op in ALIGNMENT_OPS else (Kind.NUM,)
            left = self._operand(match.group('left'), expected, name)
            right = self._operand(match.group('right'), expected, name)
            return BinaryOp(Kind.NUM, op, left, right, var=name)

        raise GrammarError("Impossible to parse number", text=text, kind='num', name=name)

    def _parse_seq(self, name: str, text: str) -> Node:
        match = SEQ_AT.match(text)
        if match:
            operand = self._operand(match.group('operand'), (Kind.SEQ,), name)
            context = (int(match.group('side')), int(match.group('start')), int(match.group('end')))
            return UnaryOp(Kind.SEQ, Op.AT, operand, context=context, var=name)

        match = SEQ_REVCOMP.match(text)
        if match:
            operand = self._operand(match.group('operand'), (Kind.SEQ,), name)
            return UnaryOp(Kind.SEQ, Op.REVCOMP, operand, var=name)

        match = SEQ_IDENTITY.match(text)
        if match:
            operand = self._operand(match.group('operand'), (Kind.SEQ,), name)
            return UnaryOp(Kind.SEQ, Op.SEQ, operand, var=name)

        if SEQ_LITERAL.match(text):
            return Literal(Kind.SEQ, text.upper(), var=name)

        raise GrammarError("Impossible to parse sequence", text=text, kind='seq', name=name)
