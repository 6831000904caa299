"""
Loci table parsing.

Author-facing format: a TSV with one locus per row.
"""

from pathlib import Path
from typing import List, Sequence

import pandas as pd
import logging

from ..core.models import Genome, LociGroup, Locus

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('genome', 'contig', 'start', 'end', 'family')


def _genome_index(value, genomes: Sequence[Genome]) -> int:
    """Resolve a genome column value: a genome name or a 1-based number."""
    text = str(value).strip()
    for k, genome in enumerate(genomes):
        if genome.name == text:
            return k
    try:
        number = int(float(text))
    except ValueError:
        raise ValueError(f"Unknown genome: {text}") from None
    if not 1 <= number <= len(genomes):
        raise ValueError(f"Genome number out of range: {number}")
    return number - 1


def load_loci(path: Path, genomes: Sequence[Genome], name: str = 'input') -> LociGroup:
    """
    Load loci from a TSV file.

    Required columns:
    - genome: Genome name, or 1-based genome number
    - contig: Contig accession (see ``Genome.find_contig``)
    - start, end: 1-based inclusive coordinates
    - family: Family tag

    Optional columns:
    - id: Locus identifier (default: ``<family>:<genome#>.<row#>``)
    - strand: '+' or '-'
    - score: Numeric score
    - comment: Free text

    Rows whose genome or contig cannot be resolved are skipped with a
    warning.

    Args:
        path: Path to loci TSV
        genomes: Loaded genomes
        name: Name of the returned group

    Returns:
        LociGroup holding all loci
    """
    df = pd.read_csv(path, sep='\t', dtype={'genome': str, 'contig': str, 'id': str,
                                             'family': str, 'strand': str})

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Loci table must have columns: {', '.join(missing)}")

    group = LociGroup(name=name, genomes=list(genomes))
    errors: List[str] = []

    for row_number, (_, row) in enumerate(df.iterrows(), start=1):
        try:
            genome_index = _genome_index(row['genome'], genomes)
        except ValueError as e:
            errors.append(f"row {row_number}: {e}")
            continue
        contig = genomes[genome_index].find_contig(str(row['contig']).strip())
        if contig is None:
            errors.append(f"row {row_number}: contig {row['contig']} not found in "
                          f"genome {genomes[genome_index].name}")
            continue

        family = str(row['family']).strip()
        locus_id = str(row['id']).strip() if 'id' in row and pd.notna(row.get('id')) else \
            f"{family}:{genome_index + 1}.{row_number}"
        strand = str(row['strand']).strip() if 'strand' in row and pd.notna(row.get('strand')) else None
        score = float(row['score']) if 'score' in row and pd.notna(row.get('score')) else None
        comment = str(row['comment']) if 'comment' in row and pd.notna(row.get('comment')) else ''

        group.add_loci(Locus(
            id=locus_id,
            start=int(row['start']),
            end=int(row['end']),
            family=family,
            contig=contig,
            genome_index=genome_index,
            strand=strand,
            score=score,
            comment=comment,
        ))

    if errors:
        logger.warning(f"Loci table validation found {len(errors)} errors:")
        for err in errors[:10]:
            logger.warning(f"  {err}")
        if len(errors) > 10:
            logger.warning(f"  ... and {len(errors) - 10} more")

    families = sorted({locus.family for locus in group.loci})
    logger.info(f"Loaded {len(group)} loci ({', '.join(families)}) from {path}")
    return group


def create_loci_template(output_path: Path):
    """Create a template loci table."""
    template = """genome\tcontig\tstart\tend\tfamily\tid\tstrand\tscore\tcomment
genome_A\tNC_000913\t1200\t1450\tVNTR\tVNTR:1.1\t+\t42.0\t
genome_A\tNC_000913\t88010\t88190\tVNTR\tVNTR:1.2\t-\t37.5\t
genome_B\tcontig_7\t5100\t5350\tVNTR\tVNTR:2.1\t+\t40.1\tmanual
"""
    with open(output_path, 'w') as f:
        f.write(template)

    logger.info(f"Created loci table template: {output_path}")
