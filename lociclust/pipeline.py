"""
Main pipeline orchestration: rules + loci + genomes -> groups -> extension.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import ExtensionConfig, RunConfig
from .core.extension import ExtensionEngine
from .core.models import Genome, LociGroup
from .integrations.aligners import AlignerManager, MuscleAligner
from .io.genomes import load_genomes
from .io.loci import load_loci
from .io.output import (
    RuleResult,
    generate_summary_report,
    write_groups_tsv,
    write_matrix_tsv,
)
from .io.rules import RuleSet, load_rules

logger = logging.getLogger(__name__)

EngineFactory = Callable[[ExtensionConfig, Sequence[Genome]], ExtensionEngine]


class GroupingPipeline:
    """Main pipeline orchestrator."""

    def __init__(self, config: RunConfig, aligner=None,
                 engine_factory: Optional[EngineFactory] = None):
        self.config = config
        self.aligner = aligner
        self.engine_factory = engine_factory or self._default_engine

    def _default_engine(self, extension: ExtensionConfig, genomes: Sequence[Genome]) -> ExtensionEngine:
        extension = replace(
            extension,
            threads=max(extension.threads, self.config.threads),
            timeout=extension.timeout if extension.timeout is not None else self.config.search_timeout,
        )
        msa = MuscleAligner(
            executable=self.config.muscle,
            legacy=self.config.muscle_legacy,
            timeout=extension.timeout,
        )
        return ExtensionEngine(extension, genomes, msa=msa, aligner=self.aligner)

    def load(self):
        """Load genomes, loci and rules named by the configuration."""
        genomes = load_genomes(self.config.genomes, self.config.genome_names)
        loci = load_loci(self.config.loci, genomes)
        rules = load_rules(self.config.rules)
        return genomes, loci, rules

    def run(self) -> List[RuleResult]:
        """
        Run the full pipeline and write outputs.

        Returns:
            One RuleResult per grouping rule
        """
        genomes, loci, rules = self.load()

        if self.config.extend and any(rule.extension for rule in rules):
            algorithms = {rule.extension.algorithm for rule in rules if rule.extension}
            manager = AlignerManager()
            for algorithm in sorted(algorithms):
                missing = manager.check_requirements(algorithm)
                if missing:
                    logger.warning(
                        f"Missing tools for {algorithm} extension: {missing}. "
                        "Install with: conda install -c bioconda muscle blast hmmer"
                    )

        self.config.output_dir.mkdir(parents=True, exist_ok=True)

        results = self.group(rules, loci)
        self.write_outputs(results, loci, genomes)
        return results

    def group(self, rules: RuleSet, loci: LociGroup) -> List[RuleResult]:
        """Apply every rule to the loci, extending groups when configured."""
        results = []
        criteria_list = rules.build_criteria(loci, aligner=self.aligner)
        for k, (rule, criteria) in enumerate(zip(rules, criteria_list), start=1):
            name = rule.name or f"rule_{k}"
            logger.info(f"Applying rule {k}/{len(rules)}: {name} ({rule.source} -> {rule.target})")

            grouping = criteria.build_groups(workers=self.config.threads)
            result = RuleResult(
                rule=name,
                source=rule.source,
                target=rule.target,
                groups=grouping.groups,
                complete=grouping.complete,
                evaluations=grouping.evaluations,
                failures=grouping.failures,
            )
            logger.info(f"Rule {name}: {len(grouping.groups)} groups from "
                        f"{grouping.evaluations} evaluations ({grouping.failures} failed)")

            if self.config.write_matrix:
                matrix = criteria.build_binary_matrix(workers=self.config.threads)
                suffix = '' if len(rules) == 1 else f"_{k}"
                write_matrix_tsv(matrix, criteria.get_loci(),
                                 self.config.output_dir / f"pair_matrix{suffix}.tsv")

            if self.config.extend and rule.extension is not None:
                with self.engine_factory(rule.extension, loci.genomes or []) as engine:
                    for i, group in enumerate(grouping.groups):
                        logger.info(f"Extending group {i+1}/{len(grouping.groups)} ({len(group)} loci)")
                        extended = criteria.extend(group, engine=engine)
                        if extended is not None and len(extended):
                            result.extensions.append(extended)

            results.append(result)
        return results

    def write_outputs(self, results: List[RuleResult], loci: LociGroup,
                      genomes: Sequence[Genome]) -> Path:
        output_dir = self.config.output_dir
        write_groups_tsv(results, output_dir / "groups.tsv")
        if any(r.extensions for r in results):
            write_groups_tsv(results, output_dir / "extended_groups.tsv", extended=True)

        summary_file = output_dir / "summary_report.md"
        generate_summary_report(results, summary_file, n_loci=len(loci), n_genomes=len(genomes))
        return summary_file


def run_pipeline(
    genomes: List[Path],
    loci: Path,
    rules: Path,
    output_dir: Path,
    threads: int = 1,
    extend: bool = True,
    matrix: bool = False,
    search_timeout: Optional[float] = None,
) -> List[RuleResult]:
    """
    Convenience function to run the full pipeline.

    Args:
        genomes: Genome FASTA files
        loci: Loci TSV
        rules: Rule file
        output_dir: Output directory
        threads: Number of threads
        extend: Run group extensions defined in the rule file
        matrix: Also write the pairwise matrix of every rule
        search_timeout: Seconds allowed per search call

    Returns:
        List of RuleResult objects
    """
    config = RunConfig.from_dict({
        'genomes': [str(p) for p in genomes],
        'loci': str(loci),
        'rules': str(rules),
        'output_dir': str(output_dir),
        'threads': threads,
        'extend': extend,
        'matrix': matrix,
        'search_timeout': search_timeout,
    })
    pipeline = GroupingPipeline(config)
    return pipeline.run()
