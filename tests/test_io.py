"""Tests for lociclust.io modules (genomes, loci tables, outputs)."""

import numpy as np
import pandas as pd
import pytest
from lociclust.core.models import Contig, Genome, LociGroup, Locus
from lociclust.io.genomes import load_genome, load_genomes
from lociclust.io.loci import create_loci_template, load_loci
from lociclust.io.output import (
    GROUP_COLUMNS,
    RuleResult,
    generate_summary_report,
    write_groups_tsv,
    write_matrix_tsv,
)


@pytest.fixture
def fasta(tmp_path):
    path = tmp_path / "genomeA.fasta"
    path.write_text(">NC_000913.3 Escherichia coli K-12\nacgtacgtac\ngtacgt\n>plasmid1\nGGCCGGCC\n")
    return path


@pytest.fixture
def genomes():
    return [
        Genome(name='genomeA', contigs=[Contig(id='NC_000913.3', sequence='ACGT' * 100)]),
        Genome(name='genomeB', contigs=[Contig(id='contig_7', sequence='GGCC' * 100)]),
    ]


class TestLoadGenome:
    """Test FASTA loading."""

    def test_contigs(self, fasta):
        genome = load_genome(fasta)
        assert genome.name == 'genomeA'
        assert [c.id for c in genome.contigs] == ['NC_000913.3', 'plasmid1']
        assert genome.contigs[0].sequence == 'ACGTACGTACGTACGT'
        assert genome.contigs[0].description == 'Escherichia coli K-12'

    def test_explicit_name(self, fasta):
        assert load_genome(fasta, name='K12').name == 'K12'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_genome(tmp_path / "missing.fasta")

    def test_load_genomes_keeps_order(self, fasta, tmp_path):
        other = tmp_path / "genomeB.fa"
        other.write_text(">c1\nAAAA\n")
        genomes = load_genomes([other, fasta], names=['B', 'A'])
        assert [g.name for g in genomes] == ['B', 'A']


class TestLoadLoci:
    """Test loci table loading."""

    def _write(self, tmp_path, text):
        path = tmp_path / "loci.tsv"
        path.write_text(text)
        return path

    def test_load(self, tmp_path, genomes):
        path = self._write(tmp_path, (
            "genome\tcontig\tstart\tend\tfamily\tid\tstrand\tscore\n"
            "genomeA\tNC_000913\t100\t150\tVNTR\tv1\t+\t42.5\n"
            "2\tcontig_7\t300\t200\tVNTR\t\t\t\n"
            "genomeA\tNC_000913.3\t10\t20\tCRISPR\tc1\t-\t\n"
        ))
        loci = load_loci(path, genomes)
        assert len(loci) == 3
        assert loci.genomes == genomes

        v1 = loci.locus('v1')
        assert v1.genome_index == 0
        assert v1.contig is genomes[0].contigs[0]
        assert v1.score == 42.5
        assert v1.strand == '+'

        second = loci.structured_loci[1][0]
        assert second.id == 'VNTR:2.2'
        assert (second.start, second.end, second.strand) == (200, 300, '-')
        assert second.score is None

        assert loci.locus('c1').strand == '-'
        assert loci.locus('c1').family == 'CRISPR'

    def test_unresolved_rows_skipped(self, tmp_path, genomes):
        path = self._write(tmp_path, (
            "genome\tcontig\tstart\tend\tfamily\n"
            "genomeC\tNC_000913\t100\t150\tVNTR\n"
            "5\tNC_000913\t100\t150\tVNTR\n"
            "genomeA\tchr9\t100\t150\tVNTR\n"
            "genomeA\tNC_000913\t100\t150\tVNTR\n"
        ))
        loci = load_loci(path, genomes)
        assert [l.id for l in loci] == ['VNTR:1.4']

    def test_missing_columns(self, tmp_path, genomes):
        path = self._write(tmp_path, "genome\tcontig\tstart\tend\nA\tc\t1\t2\n")
        with pytest.raises(ValueError, match="family"):
            load_loci(path, genomes)

    def test_template_is_loadable(self, tmp_path):
        path = tmp_path / "template.tsv"
        create_loci_template(path)
        genomes = [
            Genome(name='genome_A', contigs=[Contig(id='gi|1|ref|NC_000913.3|', sequence='A' * 100000)]),
            Genome(name='genome_B', contigs=[Contig(id='contig_7', sequence='A' * 10000)]),
        ]
        loci = load_loci(path, genomes)
        assert len(loci) == 3
        assert loci.locus('VNTR:1.2').strand == '-'


@pytest.fixture
def results(genomes):
    contig = genomes[0].contigs[0]
    group = LociGroup(name='1', family='VNTR', genomes=genomes)
    group.add_loci(
        Locus(id='v1', start=1, end=10, family='VNTR', contig=contig, score=3.14159),
        Locus(id='v2', start=21, end=40, family='VNTR', contig=contig),
    )
    single = LociGroup(name='2', family='VNTR', genomes=genomes)
    single.add_loci(Locus(id='v3', start=1, end=5, family='VNTR',
                          contig=genomes[1].contigs[0], genome_index=1))
    ext = LociGroup(name='1-ext', family='VNTR', genomes=genomes)
    ext.add_loci(Locus(id='VNTR-ext:1.1.1', start=101, end=110, family='VNTR', contig=contig,
                       comment='Based on group 1: v1, v2', type='extend'))
    return [
        RuleResult(rule='same', source='VNTR', target='VNTR', groups=[group, single],
                   extensions=[ext], evaluations=3, failures=1),
        RuleResult(rule='never', source='VNTR', target='VNTR', complete=False),
    ]


class TestOutputs:
    """Test output writers."""

    def test_rule_result_counts(self, results):
        assert results[0].n_loci == 3
        assert results[0].n_new_loci == 1
        assert results[0].largest_group == 2
        assert results[1].largest_group == 0

    def test_groups_tsv(self, tmp_path, results):
        path = write_groups_tsv(results, tmp_path / "groups.tsv")
        df = pd.read_csv(path, sep='\t')
        assert list(df.columns) == GROUP_COLUMNS
        assert list(df['locus_id']) == ['v1', 'v2', 'v3']
        assert list(df['genome']) == ['genomeA', 'genomeA', 'genomeB']
        assert list(df['length']) == [10, 20, 5]
        assert df.loc[0, 'score'] == pytest.approx(3.14)

    def test_extended_groups_tsv(self, tmp_path, results):
        path = write_groups_tsv(results, tmp_path / "extended.tsv", extended=True)
        df = pd.read_csv(path, sep='\t')
        assert list(df['locus_id']) == ['VNTR-ext:1.1.1']
        assert df.loc[0, 'type'] == 'extend'
        assert df.loc[0, 'group'] == '1-ext'

    def test_matrix_tsv(self, tmp_path, results):
        loci = results[0].groups[0].loci
        matrix = np.array([[True, False], [True, True]])
        path = write_matrix_tsv(matrix, loci, tmp_path / "matrix.tsv")
        df = pd.read_csv(path, sep='\t', index_col=0)
        assert list(df.index) == ['v1', 'v2']
        assert df.loc['v2', 'v1'] == 1
        assert df.loc['v1', 'v2'] == 0

    def test_summary_report(self, tmp_path, results):
        path = generate_summary_report(results, tmp_path / "summary.md", n_loci=3, n_genomes=2)
        text = path.read_text()
        assert text.startswith("# Loci Grouping Summary")
        assert "- **Genomes:** 2" in text
        assert "- **New loci from extension:** 1" in text
        assert "| never (incomplete) |" in text
        assert "## Top 10 Groups: same" in text
        assert "Top 10 Groups: never" not in text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
