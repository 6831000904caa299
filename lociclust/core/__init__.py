"""
Core modules: data model, expression language and grouping algorithms.
"""

from .models import (
    Contig,
    Genome,
    LociGroup,
    Locus,
)
from .operators import (
    FEAT1,
    FEAT2,
    BinaryOp,
    Const,
    Kind,
    Literal,
    Op,
    UnaryOp,
    iter_named_nodes,
    to_expression,
)
from .parser import (
    ExpressionParser,
    parse_context,
)
from .evaluator import evaluate
from .grouping import (
    CANCEL,
    GroupCriteria,
    GroupingResult,
)
from .extension import (
    ExtensionEngine,
    filter_by_feature,
    max_feature_length,
    orient_loci,
    pair_borders,
)

__all__ = [
    # Models
    'Contig',
    'Genome',
    'Locus',
    'LociGroup',
    # Expressions
    'FEAT1',
    'FEAT2',
    'Kind',
    'Op',
    'Const',
    'Literal',
    'BinaryOp',
    'UnaryOp',
    'to_expression',
    'iter_named_nodes',
    'ExpressionParser',
    'parse_context',
    'evaluate',
    # Grouping
    'CANCEL',
    'GroupCriteria',
    'GroupingResult',
    # Extension
    'ExtensionEngine',
    'pair_borders',
    'filter_by_feature',
    'max_feature_length',
    'orient_loci',
]
