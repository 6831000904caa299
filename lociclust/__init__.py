"""
lociclust - group genomic loci by pairwise rules and extend the groups by
context search.
"""

__version__ = "0.3.0"

from .errors import (
    CollaboratorError,
    ConfigurationError,
    CyclicDefinitionError,
    EvaluationError,
    GrammarError,
    LociclustError,
    UndefinedReferenceError,
)
from .core.models import Contig, Genome, LociGroup, Locus
from .core.grouping import CANCEL, GroupCriteria, GroupingResult
from .core.extension import ExtensionEngine
from .config import ExtensionConfig, RunConfig

__all__ = [
    "Contig",
    "Genome",
    "Locus",
    "LociGroup",
    "GroupCriteria",
    "GroupingResult",
    "CANCEL",
    "ExtensionEngine",
    "ExtensionConfig",
    "RunConfig",
    "LociclustError",
    "GrammarError",
    "UndefinedReferenceError",
    "CyclicDefinitionError",
    "EvaluationError",
    "ConfigurationError",
    "CollaboratorError",
    "__version__",
]
