"""
Tree-walking evaluator for grouping expressions.

``evaluate`` is a pure function of the operator tree and the two loci it
is bound to; no state is stored on the tree, so the same tree can be
evaluated concurrently for different pairs.
"""

import logging
import math
import operator
from typing import Optional, Union

from ..errors import EvaluationError
from ..utils.sequence import relative_subsequence, reverse_complement
from .models import Locus
from .operators import (
    ALIGNMENT_OPS,
    COMPARISON_OPS,
    FEAT1,
    FEAT2,
    BinaryOp,
    Const,
    Kind,
    Literal,
    Node,
    Op,
    UnaryOp,
)

logger = logging.getLogger(__name__)

Value = Union[bool, float, str, Locus]

_COMPARISONS = {
    Op.GT: operator.gt,
    Op.LT: operator.lt,
    Op.GE: operator.ge,
    Op.LE: operator.le,
}

_ARITHMETIC = {
    Op.ADD: operator.add,
    Op.SUB: operator.sub,
    Op.MUL: operator.mul,
    Op.DIV: operator.truediv,
    Op.MOD: operator.mod,
    Op.POW: operator.pow,
}

_default_aligner = None


def default_aligner():
    """Shared in-process pairwise aligner used when none is given."""
    global _default_aligner
    if _default_aligner is None:
        from ..integrations.aligners import GlobalAligner
        _default_aligner = GlobalAligner()
    return _default_aligner


def evaluate(node: Node, feat1: Locus, feat2: Locus, aligner=None) -> Value:
    """
    Evaluate an operator tree for a pair of loci.

    Args:
        node: Root of the operator tree
        feat1: Locus bound to FEAT1
        feat2: Locus bound to FEAT2
        aligner: Object with ``align(a, b)`` returning identity and score,
            used by ``aln-sim``/``aln-score`` (default: GlobalAligner)

    Returns:
        bool, float, str (sequence) or Locus (for a bare constant)

    Raises:
        EvaluationError: On type mismatch, division by zero, empty
            sequence extraction or undefined values
    """
    return _Evaluation(feat1, feat2, aligner).value(node)


class _Evaluation:
    """State of a single evaluation: the bound pair and the aligner."""

    def __init__(self, feat1: Locus, feat2: Locus, aligner=None):
        self.feat1 = feat1
        self.feat2 = feat2
        self.aligner = aligner

    def value(self, node: Node) -> Value:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Const):
            return self._constant(node)
        if node.kind == Kind.BOOL:
            return self._bool(node)
        if node.kind == Kind.NUM:
            return self._num(node)
        return self._seq(node)

    # ------------------------------------------------------------------
    # Coercions
    # ------------------------------------------------------------------

    @staticmethod
    def _truth(value: Value, node: Node) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        raise EvaluationError(f"Expecting a boolean in '{node.var}', got {_describe(value)}")

    @staticmethod
    def _number(value: Value, node: Node) -> float:
        if isinstance(value, bool):
            return float(value)
        if isinstance(value, (int, float)):
            if math.isnan(value):
                raise EvaluationError(f"Undefined number in '{node.var}'")
            return float(value)
        raise EvaluationError(f"Expecting a number in '{node.var}', got {_describe(value)}")

    @staticmethod
    def _sequence(value: Value, node: Node) -> str:
        if isinstance(value, Locus):
            try:
                value = value.sequence
            except ValueError as e:
                raise EvaluationError(str(e)) from e
        if isinstance(value, str):
            if not value:
                raise EvaluationError(f"Empty sequence in '{node.var}'")
            return value
        raise EvaluationError(f"Expecting a sequence in '{node.var}', got {_describe(value)}")

    # ------------------------------------------------------------------
    # Node kinds
    # ------------------------------------------------------------------

    def _constant(self, node: Const) -> Locus:
        if node.name == FEAT1:
            locus = self.feat1
        elif node.name == FEAT2:
            locus = self.feat2
        else:
            raise EvaluationError(f"Undefined constant '{node.name}'")
        if locus is None:
            raise EvaluationError(f"Constant '{node.name}' is not bound")
        return locus

    def _bool(self, node: Union[BinaryOp, UnaryOp]) -> bool:
        if isinstance(node, UnaryOp):
            if node.op != Op.NOT:
                raise EvaluationError(f"Unknown boolean operation '{node.op.value}'")
            return not self._truth(self.value(node.operand), node)

        if node.op in COMPARISON_OPS:
            left = self._number(self.value(node.left), node)
            right = self._number(self.value(node.right), node)
            return _COMPARISONS[node.op](left, right)

        left = self._truth(self.value(node.left), node)
        if node.op == Op.AND:
            return left and self._truth(self.value(node.right), node)
        if node.op == Op.OR:
            return left or self._truth(self.value(node.right), node)
        if node.op == Op.XOR:
            return left != self._truth(self.value(node.right), node)
        raise EvaluationError(f"Unknown boolean operation '{node.op.value}'")

    def _num(self, node: BinaryOp) -> float:
        if not isinstance(node, BinaryOp):
            raise EvaluationError(f"Unknown numeric operation '{node.op.value}'")

        if node.op in ALIGNMENT_OPS:
            return self._alignment(node)

        left = self._number(self.value(node.left), node)
        right = self._number(self.value(node.right), node)
        if node.op in (Op.DIV, Op.MOD) and right == 0:
            raise EvaluationError(f"Division by zero in '{node.var}'")
        try:
            result = _ARITHMETIC[node.op](left, right)
        except (OverflowError, ZeroDivisionError) as e:
            raise EvaluationError(f"Arithmetic error in '{node.var}': {e}") from e
        except KeyError:
            raise EvaluationError(f"Unknown numeric operation '{node.op.value}'") from None
        if isinstance(result, complex):
            raise EvaluationError(f"Complex result in '{node.var}'")
        return float(result)

    def _alignment(self, node: BinaryOp) -> float:
        seq1 = self._sequence(self.value(node.left), node)
        seq2 = self._sequence(self.value(node.right), node)
        aligner = self.aligner if self.aligner is not None else default_aligner()
        result = aligner.align(seq1, seq2)
        if node.op == Op.ALN_SIM:
            return float(result.identity)
        return float(result.score)

    def _seq(self, node: UnaryOp) -> str:
        if not isinstance(node, UnaryOp):
            raise EvaluationError(f"Unknown sequence operation '{node.op.value}'")

        if node.op == Op.AT:
            return self._extract(node)
        operand = self._sequence(self.value(node.operand), node)
        if node.op == Op.REVCOMP:
            return reverse_complement(operand)
        if node.op == Op.SEQ:
            return operand
        raise EvaluationError(f"Unknown sequence operation '{node.op.value}'")

    def _extract(self, node: UnaryOp) -> str:
        feat = self.value(node.operand)
        if not isinstance(feat, Locus):
            raise EvaluationError(
                f"Sequence extraction in '{node.var}' requires a locus, got {_describe(feat)}")
        if feat.contig is None:
            raise EvaluationError(f"Locus {feat.id} has no contig")

        side, offset_from, offset_to = node.context
        if side < 0:
            from_pos, to_pos = feat.start + offset_from, feat.start + offset_to
        elif side > 0:
            from_pos, to_pos = feat.end + offset_from, feat.end + offset_to
        else:
            from_pos, to_pos = feat.start, feat.end

        seq = relative_subsequence(feat.contig.sequence, from_pos, to_pos)
        if not seq:
            raise EvaluationError(
                f"Empty extraction {from_pos}..{to_pos} on {feat.contig.id} "
                f"(length {feat.contig.length}) in '{node.var}'")
        return seq


def _describe(value: Optional[Value]) -> str:
    if value is None:
        return 'undefined value'
    if isinstance(value, Locus):
        return f"locus {value.id}"
    return f"{type(value).__name__} {value!r}"
