"""
Sequence manipulation utilities.

Provides common functions for DNA sequence operations.
"""

import re
from collections import Counter
from typing import Dict

NUCLEOTIDE_PATTERN = re.compile(r'^[ACGTURYSWKMBDHVNacgturyswkmbdhvn]+$')

_COMPLEMENT = str.maketrans(
    'ACGTURYSWKMBDHVNacgturyswkmbdhvn',
    'TGCAAYRSWMKVHDBNtgcaayrswmkvhdbn',
)


def reverse_complement(seq: str) -> str:
    """Return reverse complement of DNA sequence (IUPAC aware)."""
    return seq.translate(_COMPLEMENT)[::-1]


def is_nucleotide_sequence(s: str) -> bool:
    """Check if string only contains IUPAC nucleotide codes."""
    return bool(s) and bool(NUCLEOTIDE_PATTERN.match(s))


def strip_n(seq: str) -> str:
    """Remove leading and trailing runs of N."""
    return seq.strip('Nn')


def extract_subsequence(sequence: str, start: int, end: int) -> str:
    """Extract a subsequence using 1-based inclusive coordinates.

    Coordinates are clamped to ``[1, len(sequence)]``. Returns an empty
    string when the clamped interval is empty.
    """
    start = max(start, 1)
    end = min(end, len(sequence))
    if start > end:
        return ''
    return sequence[start - 1:end]


def relative_subsequence(sequence: str, from_pos: int, to_pos: int) -> str:
    """Extract ``from_pos..to_pos`` (1-based), reverse-complemented if from > to."""
    lo, hi = min(from_pos, to_pos), max(from_pos, to_pos)
    sub = extract_subsequence(sequence, lo, hi)
    if from_pos > to_pos:
        return reverse_complement(sub)
    return sub


def consensus_string(alignment: Dict[str, str], threshold: float = 60.0) -> str:
    """Build a consensus from an aligned set of sequences.

    A column contributes its most frequent residue when that residue is
    present in at least ``threshold`` percent of the sequences, otherwise
    ``N``. Columns where gaps are the majority are dropped.

    Args:
        alignment: Mapping of sequence id to gapped, equal-length sequence
        threshold: Minimum percentage for a residue to be called

    Returns:
        Ungapped consensus sequence (uppercase)
    """
    rows = [s.upper() for s in alignment.values()]
    if not rows:
        return ''
    width = len(rows[0])
    if any(len(r) != width for r in rows):
        raise ValueError("Aligned sequences must have equal length")

    n_seqs = len(rows)
    consensus = []
    for col in range(width):
        column = [r[col] for r in rows]
        gaps = sum(1 for c in column if c in '-.')
        if gaps * 2 > n_seqs:
            continue
        counts = Counter(c for c in column if c not in '-.')
        residue, count = counts.most_common(1)[0]
        if count * 100.0 / n_seqs >= threshold:
            consensus.append(residue)
        else:
            consensus.append('N')
    return ''.join(consensus)


def n_fraction(seq: str) -> float:
    """Fraction of ambiguous N residues in a sequence (0.0 for empty)."""
    if not seq:
        return 0.0
    return sum(1 for c in seq if c in 'Nn') / len(seq)


def write_fasta(records: Dict[str, str], handle, width: int = 80) -> None:
    """Write records to an open text handle in FASTA format."""
    for name, sequence in records.items():
        handle.write(f">{name}\n")
        # Write sequence in 80-character lines
        for i in range(0, len(sequence), width):
            handle.write(sequence[i:i + width] + "\n")
