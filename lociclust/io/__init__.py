"""
I/O modules: genomes, loci tables, rule files and outputs.
"""

from .genomes import load_genome, load_genomes
from .loci import create_loci_template, load_loci
from .output import (
    RuleResult,
    generate_summary_report,
    write_groups_tsv,
    write_matrix_tsv,
)
from .rules import (
    GroupRule,
    RuleSet,
    dump_rule,
    dump_rules,
    load_rules,
    parse_rules,
)

__all__ = [
    'load_genome',
    'load_genomes',
    'load_loci',
    'create_loci_template',
    'RuleResult',
    'write_groups_tsv',
    'write_matrix_tsv',
    'generate_summary_report',
    'GroupRule',
    'RuleSet',
    'load_rules',
    'parse_rules',
    'dump_rules',
    'dump_rule',
]
