"""
Output generation for grouping results.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
import logging

from ..core.models import LociGroup, Locus

logger = logging.getLogger(__name__)

GROUP_COLUMNS = ['rule', 'group', 'locus_id', 'family', 'type', 'genome', 'contig',
                 'start', 'end', 'strand', 'length', 'score', 'comment']


@dataclass
class RuleResult:
    """Results of one grouping rule."""
    rule: str
    source: str
    target: str
    groups: List[LociGroup] = field(default_factory=list)
    extensions: List[LociGroup] = field(default_factory=list)
    complete: bool = True
    evaluations: int = 0
    failures: int = 0

    @property
    def n_loci(self) -> int:
        return sum(len(g) for g in self.groups)

    @property
    def n_new_loci(self) -> int:
        return sum(len(g) for g in self.extensions)

    @property
    def largest_group(self) -> int:
        return max((len(g) for g in self.groups), default=0)


def _genome_name(group: LociGroup, locus: Locus) -> str:
    if group.genomes and locus.genome_index < len(group.genomes):
        return group.genomes[locus.genome_index].name
    return str(locus.genome_index + 1)


def _locus_row(rule: str, group: LociGroup, locus: Locus) -> dict:
    return {
        'rule': rule,
        'group': group.name,
        'locus_id': locus.id,
        'family': locus.family,
        'type': locus.type,
        'genome': _genome_name(group, locus),
        'contig': locus.contig.id if locus.contig is not None else '',
        'start': locus.start,
        'end': locus.end,
        'strand': locus.strand,
        'length': locus.length,
        'score': f"{locus.score:.2f}" if locus.score is not None else '',
        'comment': locus.comment,
    }


def write_groups_tsv(
    results: Sequence[RuleResult],
    output_path: Path,
    extended: bool = False,
) -> Path:
    """
    Write one row per grouped locus.

    Args:
        results: Per-rule results
        output_path: Path for output TSV
        extended: Write the loci found by extension instead of the groups

    Returns:
        Path to written file
    """
    rows = []
    for r in results:
        for group in (r.extensions if extended else r.groups):
            for locus in group.loci:
                rows.append(_locus_row(r.rule, group, locus))

    df = pd.DataFrame(rows, columns=GROUP_COLUMNS)
    df.to_csv(output_path, sep='\t', index=False)

    logger.info(f"Wrote {len(rows)} loci to {output_path}")

    return output_path


def write_matrix_tsv(
    matrix: np.ndarray,
    loci: Sequence[Locus],
    output_path: Path,
) -> Path:
    """
    Write a pairwise boolean matrix with locus ids as row and column labels.

    Returns:
        Path to written file
    """
    labels = [locus.id for locus in loci]
    df = pd.DataFrame(matrix.astype(int), index=labels, columns=labels)
    df.to_csv(output_path, sep='\t', index_label='locus_id')

    logger.info(f"Wrote {len(labels)}x{len(labels)} pair matrix to {output_path}")

    return output_path


def generate_summary_report(
    results: Sequence[RuleResult],
    output_path: Path,
    n_loci: Optional[int] = None,
    n_genomes: Optional[int] = None,
) -> Path:
    """
    Generate a summary report in markdown format.

    Args:
        results: Per-rule results
        output_path: Path for output markdown file
        n_loci: Number of input loci
        n_genomes: Number of genomes

    Returns:
        Path to written file
    """
    with open(output_path, 'w') as f:
        f.write("# Loci Grouping Summary\n\n")

        f.write("## Overview\n\n")
        if n_genomes is not None:
            f.write(f"- **Genomes:** {n_genomes}\n")
        if n_loci is not None:
            f.write(f"- **Input loci:** {n_loci:,}\n")
        f.write(f"- **Rules:** {len(results)}\n")
        f.write(f"- **Groups:** {sum(len(r.groups) for r in results)}\n")
        f.write(f"- **New loci from extension:** {sum(r.n_new_loci for r in results)}\n\n")

        f.write("## Rules\n\n")
        f.write("| Rule | Source | Target | Groups | Largest | Evaluations | Failed | New loci |\n")
        f.write("|------|--------|--------|--------|---------|-------------|--------|----------|\n")
        for r in results:
            status = '' if r.complete else ' (incomplete)'
            f.write(f"| {r.rule}{status} | {r.source} | {r.target} | {len(r.groups)} | "
                    f"{r.largest_group} | {r.evaluations:,} | {r.failures:,} | {r.n_new_loci} |\n")
        f.write("\n")

        for r in results:
            sized = sorted(r.groups, key=len, reverse=True)
            if not sized:
                continue
            f.write(f"## Top 10 Groups: {r.rule}\n\n")
            f.write("| Group | Loci | Mean length | SD |\n")
            f.write("|-------|------|-------------|----|\n")
            for group in sized[:10]:
                mean, sd = group.avg_length()
                f.write(f"| {group.name} | {len(group)} | {mean:.1f} | {sd:.1f} |\n")
            f.write("\n")

    logger.info(f"Wrote summary report to {output_path}")

    return output_path
