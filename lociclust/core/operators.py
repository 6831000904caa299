"""
Operator tree for grouping expressions.

A parsed expression is a tree of four node types:

- ``Const``: one of the two loci under comparison (``FEAT1``/``FEAT2``)
- ``Literal``: a boolean, number or sequence value
- ``BinaryOp``: an operation over two operands
- ``UnaryOp``: an operation over one operand (negation, reverse
  complement, sequence extraction)

Nodes are immutable and shared by every pairwise evaluation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple, Union

FEAT1 = 'FEAT1'
FEAT2 = 'FEAT2'
CONSTANTS = (FEAT1, FEAT2)


class Kind(Enum):
    """Value kind produced by a node."""
    BOOL = "bool"
    NUM = "num"
    SEQ = "seq"


class Op(Enum):
    """Canonical operation symbols."""
    # Boolean
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    AND = "and"
    OR = "or"
    XOR = "xor"
    NOT = "not"
    # Numeric
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    POW = "**"
    ALN_SIM = "aln-sim"
    ALN_SCORE = "aln-score"
    # Sequence
    AT = "at"
    REVCOMP = "rev"
    SEQ = "seq"


COMPARISON_OPS = frozenset({Op.GT, Op.LT, Op.GE, Op.LE})
LOGICAL_OPS = frozenset({Op.AND, Op.OR, Op.XOR})
ARITHMETIC_OPS = frozenset({Op.ADD, Op.SUB, Op.MUL, Op.DIV, Op.MOD, Op.POW})
ALIGNMENT_OPS = frozenset({Op.ALN_SIM, Op.ALN_SCORE})

# Surface spellings accepted in rule text, per kind
BOOL_ALIASES: Dict[str, Op] = {
    '>': Op.GT, '<': Op.LT, '>=': Op.GE, '<=': Op.LE,
    '&': Op.AND, '&&': Op.AND, 'and': Op.AND,
    '|': Op.OR, '||': Op.OR, 'or': Op.OR,
    '^': Op.XOR, 'xor': Op.XOR,
    '!': Op.NOT, 'not': Op.NOT,
}

NUM_ALIASES: Dict[str, Op] = {
    '+': Op.ADD, '-': Op.SUB, '*': Op.MUL, '/': Op.DIV, '%': Op.MOD,
    '**': Op.POW, '^': Op.POW,
    'aln-sim': Op.ALN_SIM, 'aln-sim with': Op.ALN_SIM,
    'aln-score': Op.ALN_SCORE, 'aln-score with': Op.ALN_SCORE,
}


@dataclass(frozen=True)
class Const:
    """Reference to one of the two bound loci."""
    name: str
    var: Optional[str] = None

    @property
    def kind(self) -> Kind:
        return Kind.SEQ


@dataclass(frozen=True)
class Literal:
    """A literal boolean, number or sequence."""
    kind: Kind
    value: Union[bool, float, str]
    var: Optional[str] = None


@dataclass(frozen=True)
class BinaryOp:
    """Binary operation; operands are evaluated left to right."""
    kind: Kind
    op: Op
    left: 'Node'
    right: 'Node'
    var: Optional[str] = None


@dataclass(frozen=True)
class UnaryOp:
    """
    Unary operation.

    For ``Op.AT`` the ``context`` holds ``(side, start, end)``: a negative
    side is relative to the feature start, a positive side to the feature
    end, and zero selects the feature span itself.
    """
    kind: Kind
    op: Op
    operand: 'Node'
    context: Optional[Tuple[int, int, int]] = None
    var: Optional[str] = None


Node = Union[Const, Literal, BinaryOp, UnaryOp]


def literal_text(node: Literal) -> str:
    """Rule-text spelling of a literal."""
    if node.kind == Kind.BOOL:
        return 'true' if node.value else 'false'
    if node.kind == Kind.NUM:
        value = float(node.value)
        if value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return repr(value)
    return str(node.value)


def operand_text(node: Node) -> str:
    """How a node is referred to from its parent: by name, or inline."""
    if isinstance(node, Const):
        return node.name
    if node.var is not None:
        return node.var
    if isinstance(node, Literal):
        return literal_text(node)
    raise ValueError(f"Unnamed composite node cannot be referenced: {node!r}")


def to_expression(node: Node) -> str:
    """Right-hand side text of a node, as written in a ``var`` statement."""
    if isinstance(node, Literal):
        return literal_text(node)
    if isinstance(node, Const):
        return node.name
    if isinstance(node, BinaryOp):
        return f"{operand_text(node.left)} {node.op.value} {operand_text(node.right)}"
    if node.op == Op.NOT:
        return f"not {operand_text(node.operand)}"
    if node.op == Op.AT:
        side, start, end = node.context
        return f"{operand_text(node.operand)} at [{side},{start}..{end}]"
    if node.op == Op.REVCOMP:
        return f"revcomp {operand_text(node.operand)}"
    return f"seq {operand_text(node.operand)}"


def children(node: Node) -> Tuple[Node, ...]:
    """Direct child nodes."""
    if isinstance(node, BinaryOp):
        return (node.left, node.right)
    if isinstance(node, UnaryOp):
        return (node.operand,)
    return ()


def iter_named_nodes(root: Node) -> Iterator[Node]:
    """
    Yield every named, non-constant node once, dependencies first.

    Shared subtrees (the same variable referenced several times) are
    yielded once.
    """
    seen = set()

    def walk(node: Node):
        for child in children(node):
            yield from walk(child)
        if isinstance(node, Const) or node.var is None:
            return
        if node.var in seen:
            return
        seen.add(node.var)
        yield node

    yield from walk(root)
