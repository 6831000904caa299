"""
Data models for loci, genomes and groups of loci.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from ..utils.sequence import extract_subsequence, reverse_complement, strip_n

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Contig:
    """
    A sequence (chromosome, contig or plasmid) of a genome.

    Attributes:
        id: Display identifier (first token of the FASTA header)
        sequence: Nucleotide sequence
        description: Rest of the FASTA header
    """
    id: str
    sequence: str
    description: str = ''

    @property
    def length(self) -> int:
        return len(self.sequence)

    def subseq(self, start: int, end: int) -> str:
        """Subsequence by 1-based inclusive coordinates, clamped to the contig."""
        return extract_subsequence(self.sequence, start, end)

    def __repr__(self) -> str:
        return f"Contig(id={self.id}, length={self.length})"


@dataclass(eq=False)
class Genome:
    """A genome: an ordered list of contigs with stable identifiers."""
    name: str
    contigs: List[Contig] = field(default_factory=list)

    def find_contig(self, accession: str) -> Optional[Contig]:
        """
        Resolve an accession to a contig.

        Matches either the exact display id or the accession as a whole
        id or as a field of a pipe-delimited id (e.g.
        ``gi|1234|ref|NC_000913.3|``), with an optional version suffix.
        """
        pattern = re.compile(r'(?:^|\|)' + re.escape(accession) + r'(\.\d+)?(?:\||\s*$)')
        for contig in self.contigs:
            if contig.id == accession or pattern.search(contig.id):
                return contig
        return None

    def __repr__(self) -> str:
        return f"Genome(name={self.name}, contigs={len(self.contigs)})"


@dataclass(eq=False)
class Locus:
    """
    A detected feature instance on a genome's contig.

    Coordinates are 1-based and inclusive. If created with ``start > end``
    the coordinates are swapped and the strand is set to '-' (unless a
    strand is given explicitly).

    Attributes:
        id: Locus identifier
        start: Leftmost position
        end: Rightmost position
        family: Detector-assigned family/type tag (e.g. "VNTR")
        contig: Contig the locus lies on
        genome_index: Index of the owning genome
        strand: '+' or '-'
        score: Optional score
        comment: Free-form comment
        base_feature: Locus this one was derived from (extension loci)
        type: Locus type ('generic' for loaded loci, 'extend' for new ones)
    """
    id: str
    start: int
    end: int
    family: str
    contig: Optional[Contig] = None
    genome_index: int = 0
    strand: Optional[str] = None
    score: Optional[float] = None
    comment: str = ''
    base_feature: Optional['Locus'] = None
    type: str = 'generic'

    def __post_init__(self):
        self.start = int(self.start)
        self.end = int(self.end)
        if self.start > self.end:
            self.start, self.end = self.end, self.start
            if self.strand is None:
                self.strand = '-'
        if self.strand is None:
            self.strand = '+'
        if self.strand not in ('+', '-'):
            raise ValueError(f"Invalid strand for locus {self.id}: {self.strand}")

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def sequence(self) -> str:
        """Sequence of the feature span, read on the forward strand."""
        if self.contig is None:
            raise ValueError(f"Locus {self.id} has no contig")
        return self.contig.subseq(self.start, self.end)

    def context(self, side: int, size: int = 0) -> Optional[str]:
        """
        Context sequence around the locus.

        Upstream (``side < 0``) and in-feature (``side == 0``) contexts are
        read in the feature orientation. Downstream (``side > 0``) context is
        read reverse-complemented, so that hits of upstream and downstream
        queries on a homologous locus fall on opposite strands.

        Returns:
            The context sequence without flanking N, or None if empty.
        """
        if self.contig is None:
            raise ValueError(f"Locus {self.id} has no contig")
        left = self.contig.subseq(self.start - size, self.start - 1) if size > 0 else ''
        right = self.contig.subseq(self.end + 1, self.end + size) if size > 0 else ''

        if side == 0:
            seq = self.contig.subseq(self.start, self.end)
            if self.strand == '-':
                seq = reverse_complement(seq)
        elif side < 0:
            seq = left if self.strand == '+' else reverse_complement(right)
        else:
            seq = reverse_complement(right) if self.strand == '+' else left

        seq = strip_n(seq)
        return seq or None

    def overlaps(self, other: 'Locus') -> bool:
        """Check if two loci share at least one position on the same contig."""
        if self.contig is not other.contig or self.genome_index != other.genome_index:
            return False
        return self.start <= other.end and self.end >= other.start

    def __repr__(self) -> str:
        contig_id = self.contig.id if self.contig is not None else None
        return (f"Locus(id={self.id}, family={self.family}, "
                f"{contig_id}:{self.start}-{self.end}{self.strand})")


class LociGroup:
    """
    A named collection of loci partitioned by genome.

    Loci keep their insertion order within each genome partition. A locus
    is always stored in the partition of the genome it references.
    """

    def __init__(self, name: Optional[str] = None, family: Optional[str] = None,
                 genomes: Optional[List[Genome]] = None):
        self.name = name
        self.family = family
        self.genomes = genomes
        self._loci: Dict[int, List[Locus]] = {}

    def add_loci(self, *loci: Locus) -> None:
        """Append loci to the partition of their genome."""
        for locus in loci:
            if not isinstance(locus, Locus):
                raise TypeError(f"Expecting a Locus object, got {type(locus).__name__}")
            self._loci.setdefault(locus.genome_index, []).append(locus)

    # Alias of add_loci()
    add_locus = add_loci

    @property
    def loci(self) -> List[Locus]:
        """All loci, by ascending genome index and insertion order."""
        out = []
        for genome_index in sorted(self._loci):
            out.extend(self._loci[genome_index])
        return out

    @property
    def structured_loci(self) -> Dict[int, List[Locus]]:
        """Loci keyed by genome index."""
        return {k: list(v) for k, v in sorted(self._loci.items())}

    def locus(self, locus_id: str) -> Optional[Locus]:
        """Get a locus by ID."""
        for locus in self.loci:
            if locus.id == locus_id:
                return locus
        return None

    def avg_length(self) -> Tuple[float, float]:
        """
        Mean and sample standard deviation of the loci lengths.

        The standard deviation is 0 when the group holds a single locus.
        """
        lengths = np.array([locus.length for locus in self.loci], dtype=float)
        if lengths.size == 0:
            return 0.0, 0.0
        if lengths.size == 1:
            return float(lengths[0]), 0.0
        return float(lengths.mean()), float(lengths.std(ddof=1))

    def __len__(self) -> int:
        return sum(len(v) for v in self._loci.values())

    def __iter__(self) -> Iterator[Locus]:
        return iter(self.loci)

    def __repr__(self) -> str:
        return f"LociGroup(name={self.name}, family={self.family}, loci={len(self)})"
