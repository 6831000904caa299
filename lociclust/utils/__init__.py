"""
Utility modules.
"""

from .sequence import (
    consensus_string,
    extract_subsequence,
    relative_subsequence,
    reverse_complement,
)

__all__ = [
    'reverse_complement',
    'extract_subsequence',
    'relative_subsequence',
    'consensus_string',
]
