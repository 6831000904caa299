"""
Genome loading from FASTA files.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence

import pysam

from ..core.models import Contig, Genome

logger = logging.getLogger(__name__)


def load_genome(path: Path, name: Optional[str] = None) -> Genome:
    """
    Load a genome from a (optionally gzipped) FASTA file.

    Args:
        path: FASTA file, one record per contig
        name: Genome name (default: file name without extension)

    Returns:
        Genome with contigs in file order
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Genome file not found: {path}")
    if name is None:
        name = path.name.split('.')[0]

    contigs = []
    with pysam.FastxFile(str(path)) as fh:
        for entry in fh:
            contigs.append(Contig(
                id=entry.name,
                sequence=entry.sequence.upper(),
                description=entry.comment or '',
            ))

    if not contigs:
        logger.warning(f"No sequences found in {path}")
    logger.debug(f"Loaded genome {name}: {len(contigs)} contigs, "
                 f"{sum(c.length for c in contigs):,} bp")
    return Genome(name=name, contigs=contigs)


def load_genomes(paths: Sequence[Path], names: Optional[Sequence[str]] = None) -> List[Genome]:
    """Load several genomes; genome indexes follow the order of ``paths``."""
    genomes = []
    for k, path in enumerate(paths):
        name = names[k] if names and k < len(names) else None
        genomes.append(load_genome(path, name))
    logger.info(f"Loaded {len(genomes)} genomes")
    return genomes
