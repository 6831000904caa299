"""
Command-line interface for lociclust.
"""

import logging
import sys
from pathlib import Path

import click

from . import __version__
from .errors import LociclustError


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )


@click.group()
@click.version_option(version=__version__)
def cli():
    """lociclust: group genomic loci and extend the groups by context search."""
    pass


@cli.command()
@click.option('--config', '-c', 'config_file', type=click.Path(exists=True),
              help='YAML run configuration (overrides the options below)')
@click.option('--genome', '-g', 'genomes', type=click.Path(exists=True), multiple=True,
              help='Genome FASTA file (repeat for several genomes)')
@click.option('--loci', '-l', type=click.Path(exists=True),
              help='Loci TSV file')
@click.option('--rules', '-r', type=click.Path(exists=True),
              help='Rule file')
@click.option('--output', '-o', type=click.Path(), default='./results',
              help='Output directory (default: ./results)')
@click.option('--threads', '-t', type=int, default=1,
              help='Number of threads (default: 1)')
@click.option('--extend/--no-extend', default=True,
              help='Run the group extensions defined in the rule file (default: enabled)')
@click.option('--matrix/--no-matrix', default=False,
              help='Also write the pairwise matrix of every rule')
@click.option('--timeout', type=float, default=None,
              help='Seconds allowed per search call')
@click.option('--verbose', '-v', is_flag=True, help='Verbose (debug) logging')
def group(config_file, genomes, loci, rules, output, threads, extend, matrix, timeout, verbose):
    """
    Group loci by the rules of a rule file.

    \b
    Example:
      lociclust group -g genomeA.fasta -g genomeB.fasta -l loci.tsv -r vntr.rules -o results/

    \b
    Example with a run configuration:
      lociclust group -c run.yaml
    """
    from .config import RunConfig
    from .pipeline import GroupingPipeline

    _setup_logging(verbose)

    try:
        if config_file:
            config = RunConfig.from_yaml(Path(config_file))
        else:
            if not genomes or not loci or not rules:
                click.echo("Error: --genome, --loci and --rules are required without --config", err=True)
                sys.exit(1)
            config = RunConfig.from_dict({
                'genomes': list(genomes),
                'loci': loci,
                'rules': rules,
                'output_dir': output,
                'threads': threads,
                'extend': extend,
                'matrix': matrix,
                'search_timeout': timeout,
            })
    except LociclustError as e:
        click.echo(f"Error reading configuration: {e}", err=True)
        sys.exit(1)

    errors = config.validate()
    if errors:
        for err in errors:
            click.echo(f"Error: {err}", err=True)
        sys.exit(1)

    click.echo(f"\nGrouping loci with {config.threads} threads...")
    try:
        results = GroupingPipeline(config).run()
    except (LociclustError, ValueError, FileNotFoundError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("\nGrouping complete!")
    for r in results:
        status = '' if r.complete else ' (incomplete)'
        click.echo(f"  {r.rule}{status}: {len(r.groups)} groups, {r.n_new_loci} new loci")
    click.echo(f"Results written to: {config.output_dir}")


@cli.command('check-rules')
@click.argument('rules', type=click.Path(exists=True))
@click.option('--dump', is_flag=True, help='Print the rules as normalized rule text')
@click.option('--verbose', '-v', is_flag=True, help='Verbose (debug) logging')
def check_rules(rules, dump, verbose):
    """Parse a rule file and report its grouping rules."""
    from .core.operators import iter_named_nodes, to_expression
    from .io.rules import dump_rule, load_rules

    _setup_logging(verbose)

    try:
        ruleset = load_rules(Path(rules))
    except LociclustError as e:
        click.echo(f"Error in {rules}: {e}", err=True)
        sys.exit(1)

    if not len(ruleset):
        click.echo(f"No grouping rules found in {rules}")
        return

    for k, rule in enumerate(ruleset, start=1):
        if dump:
            click.echo(dump_rule(rule))
            continue
        click.echo(f"Rule {k}: {rule.name} ({rule.source} -> {rule.target})")
        for node in iter_named_nodes(rule.condition):
            click.echo(f"  {node.kind.value:4s} {node.var} = {to_expression(node)}")
        if rule.extension is not None:
            click.echo(f"  extension: {rule.extension.to_text()}")


@cli.command()
@click.option('--genome', '-g', 'genomes', type=click.Path(exists=True), multiple=True, required=True,
              help='Genome FASTA file (repeat for several genomes)')
@click.option('--loci', '-l', type=click.Path(exists=True), required=True,
              help='Loci TSV file')
@click.option('--rules', '-r', type=click.Path(exists=True), required=True,
              help='Rule file')
@click.option('--rule-index', type=int, default=1,
              help='Rule to evaluate, 1-based (default: 1)')
@click.option('--output', '-o', type=click.Path(), required=True,
              help='Output TSV file')
@click.option('--complete', is_flag=True,
              help='Compute the full matrix instead of the lower triangle')
@click.option('--threads', '-t', type=int, default=1,
              help='Number of threads (default: 1)')
@click.option('--verbose', '-v', is_flag=True, help='Verbose (debug) logging')
def matrix(genomes, loci, rules, rule_index, output, complete, threads, verbose):
    """Write the all-pairs evaluation matrix of one rule."""
    from .io.genomes import load_genomes
    from .io.loci import load_loci
    from .io.output import write_matrix_tsv
    from .io.rules import load_rules

    _setup_logging(verbose)

    try:
        genome_list = load_genomes([Path(g) for g in genomes])
        locigroup = load_loci(Path(loci), genome_list)
        ruleset = load_rules(Path(rules))
    except (LociclustError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not 1 <= rule_index <= len(ruleset):
        click.echo(f"Error: rule index {rule_index} out of range (1..{len(ruleset)})", err=True)
        sys.exit(1)

    criteria = ruleset.rules[rule_index - 1].criteria(locigroup)
    pairs = criteria.build_binary_matrix(complete=complete, workers=threads)
    write_matrix_tsv(pairs, criteria.get_loci(), Path(output))

    groups = criteria.groups_from_matrix(pairs)
    click.echo(f"{len(criteria.get_loci())} loci, {int(pairs.sum())} matching pairs, {len(groups)} groups")
    click.echo(f"Matrix written to: {output}")


if __name__ == '__main__':
    cli()
