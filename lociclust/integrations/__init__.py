"""
External tool integrations: alignment and sequence search.
"""

from .aligners import (
    AlignerManager,
    AlignmentResult,
    GlobalAligner,
    MuscleAligner,
)
from .search import (
    BlastSearch,
    Hit,
    HmmerSearch,
    SearchQuery,
    SearchWorkspace,
    create_backend,
    search_genomes,
)

__all__ = [
    'AlignerManager',
    'AlignmentResult',
    'GlobalAligner',
    'MuscleAligner',
    'BlastSearch',
    'HmmerSearch',
    'Hit',
    'SearchQuery',
    'SearchWorkspace',
    'create_backend',
    'search_genomes',
]
