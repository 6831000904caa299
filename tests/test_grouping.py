"""Tests for lociclust.core.grouping."""

import itertools

import numpy as np
import pytest
from lociclust.core.grouping import CANCEL, GroupCriteria
from lociclust.core.models import Contig, LociGroup, Locus
from lociclust.core.parser import ExpressionParser
from lociclust.errors import GrammarError

from conftest import ExactAligner

SAME_SEQUENCE = [
    ('seq', 's1', 'seq FEAT1'),
    ('seq', 's2', 'seq FEAT2'),
    ('num', 'sim', 's1 aln-sim with s2'),
    ('bool', 'same', 'sim > 0.99'),
]

# Matches both direct and inverted copies of a locus with 20 bp flanks
BIDIRECTIONAL = [
    ('seq', 'up1', 'FEAT1 at [-1,-20..-1]'),
    ('seq', 'up2', 'FEAT2 at [-1,-20..-1]'),
    ('seq', 'dn1', 'FEAT1 at [1,1..20]'),
    ('seq', 'dn2', 'FEAT2 at [1,1..20]'),
    ('seq', 'rdn1', 'revcomp dn1'),
    ('seq', 'rdn2', 'revcomp dn2'),
    ('num', 'sim', 'up1 aln-sim with up2'),
    ('num', 'simR', 'up1 aln-sim with rdn2'),
    ('bool', 'same', 'sim > 0.9'),
    ('bool', 'sameR', 'simR > 0.9'),
    ('bool', 'condition', 'same or sameR'),
]


def _condition(declarations, name):
    parser = ExpressionParser()
    for kind, var, text in declarations:
        parser.declare(kind, var, text)
    return parser.parse(name)


def _criteria(loci, declarations=SAME_SEQUENCE, name='same', source='VNTR', target='VNTR',
              aligner=None):
    if not isinstance(loci, LociGroup):
        group = LociGroup(name='input')
        group.add_loci(*loci)
        loci = group
    return GroupCriteria(source, target, _condition(declarations, name), loci,
                         aligner=aligner or ExactAligner())


def _ids(groups):
    return [[locus.id for locus in group.loci] for group in groups]


def _partition(groups):
    return {frozenset(locus.id for locus in group.loci) for group in groups}


class TestGroupCriteria:
    """Test rule binding and pairwise evaluation."""

    def test_non_boolean_condition(self, blocks_group):
        with pytest.raises(GrammarError):
            _criteria(blocks_group, name='sim')

    def test_missing_family(self, blocks_group):
        with pytest.raises(GrammarError):
            _criteria(blocks_group, source='')

    def test_family_mismatch_is_false(self, blocks_genome):
        """Test a pair outside the rule families is rejected without evaluating."""
        contig = blocks_genome.contigs[0]
        a = Locus(id='a', start=1, end=10, family='A', contig=contig)
        b = Locus(id='b', start=21, end=30, family='B', contig=contig)
        aligner = ExactAligner()
        criteria = _criteria([a, b], source='A', target='B', aligner=aligner)
        assert criteria.evaluate(b, a) is False
        assert aligner.calls == 0
        assert criteria.evaluate(a, b) is True

    def test_target_loci_first(self, blocks_genome):
        """Test target loci precede source loci in the working order."""
        contig = blocks_genome.contigs[0]
        families = ['A', 'B', 'C', 'A', 'B']
        loci = [Locus(id=f"{fam}{k}", start=1, end=10, family=fam, contig=contig)
                for k, fam in enumerate(families)]
        criteria = _criteria(loci, source='A', target='B')
        assert [l.id for l in criteria.get_loci()] == ['B1', 'B4', 'A0', 'A3', 'C2']
        assert criteria.get_locus(0).id == 'B1'

    def test_same_family_keeps_order(self, blocks_group):
        criteria = _criteria(blocks_group)
        assert [l.id for l in criteria.get_loci()] == [f"L{k}" for k in range(6)]


class TestBuildGroups:
    """Test transitive grouping."""

    def test_sequence_classes(self, blocks_group):
        result = _criteria(blocks_group).build_groups()
        assert result.complete
        assert _ids(result) == [['L0', 'L2', 'L5'], ['L1', 'L4'], ['L3']]
        assert [g.name for g in result] == ['1', '2', '3']
        assert all(g.family == 'VNTR' for g in result)
        assert result.failures == 0

    def test_every_locus_placed_once(self, blocks_group):
        result = _criteria(blocks_group).build_groups()
        placed = [locus.id for group in result for locus in group.loci]
        assert sorted(placed) == sorted(l.id for l in blocks_group.loci)

    def test_always_true_in_any_order(self, blocks_genome):
        """Test a constant true condition gives one group whatever the input order."""
        contig = blocks_genome.contigs[0]
        loci = [Locus(id=f"v{k}", start=10 * k + 1, end=10 * k + 10, family='VNTR',
                      contig=contig) for k in range(3)]
        for order in itertools.permutations(loci):
            result = _criteria(list(order), [('bool', 'always', 'true')], 'always').build_groups()
            assert len(result) == 1
            assert len(result.groups[0]) == 3

    def test_always_false(self, blocks_group):
        result = _criteria(blocks_group, [('bool', 'never', 'false')], 'never').build_groups()
        assert _ids(result) == [[f"L{k}"] for k in range(6)]
        assert result.evaluations == 15

    def test_stops_at_first_match(self, blocks_group):
        """Test a locus is not compared past its first match."""
        aligner = ExactAligner()
        _criteria(blocks_group, aligner=aligner).build_groups()
        # L1: 1, L2: 1, L3: 3, L4: 2 (match L1), L5: 1 (match L0)
        assert aligner.calls == 8

    def test_empty(self):
        result = _criteria(LociGroup()).build_groups()
        assert len(result) == 0
        assert result.complete

    def test_single_locus(self, blocks_group):
        loci = LociGroup()
        loci.add_loci(blocks_group.loci[0])
        result = _criteria(loci).build_groups()
        assert _ids(result) == [['L0']]

    def test_parallel_matches_sequential(self, blocks_group):
        sequential = _criteria(blocks_group).build_groups()
        parallel = _criteria(blocks_group).build_groups(workers=4)
        assert parallel.complete
        assert _ids(parallel) == _ids(sequential)
        assert parallel.evaluations == sequential.evaluations

    def test_progress_reports_pairs(self, blocks_genome):
        contig = blocks_genome.contigs[0]
        loci = [Locus(id=f"v{k}", start=1, end=10, family='VNTR', contig=contig)
                for k in range(3)]
        calls = []
        _criteria(loci, [('bool', 'never', 'false')], 'never').build_groups(
            progress=lambda i, j, n: calls.append((i, j, n)))
        assert calls == [(1, 0, 3), (2, 0, 3), (2, 1, 3)]

    def test_cancel(self, blocks_group):
        """Test cancellation returns the groups of the loci placed so far."""
        def progress(i, j, total):
            return CANCEL if i == 3 else None

        result = _criteria(blocks_group).build_groups(progress=progress)
        assert not result.complete
        assert _ids(result) == [['L0', 'L2'], ['L1']]

    def test_evaluation_failure_is_no_match(self):
        """Test a pair whose context falls off the contig counts as a failure."""
        contig = Contig(id='ctg1', sequence='A' * 40)
        loci = [
            Locus(id='edge', start=1, end=10, family='VNTR', contig=contig),
            Locus(id='inner', start=21, end=30, family='VNTR', contig=contig),
        ]
        decls = [
            ('seq', 'up1', 'FEAT1 at [-1,-5..-1]'),
            ('seq', 'up2', 'FEAT2 at [-1,-5..-1]'),
            ('num', 'sim', 'up1 aln-sim with up2'),
            ('bool', 'same', 'sim > 0.5'),
        ]
        result = _criteria(loci, decls, 'same').build_groups()
        assert len(result) == 2
        assert result.failures == 1
        assert result.evaluations == 1


class TestBinaryMatrix:
    """Test all-pairs evaluation."""

    def test_lower_triangle(self, blocks_group):
        matrix = _criteria(blocks_group).build_binary_matrix()
        assert matrix.dtype == bool
        assert matrix.shape == (6, 6)
        assert not np.triu(matrix, k=1).any()
        assert matrix[2, 0] and matrix[5, 2] and matrix[4, 1]
        assert not matrix[3, 0]
        assert all(matrix[k, k] for k in range(6))

    def test_complete_is_symmetric(self, blocks_group):
        matrix = _criteria(blocks_group).build_binary_matrix(complete=True)
        assert (matrix == matrix.T).all()

    def test_parallel_rows(self, blocks_group):
        criteria = _criteria(blocks_group)
        assert (criteria.build_binary_matrix(workers=3) == criteria.build_binary_matrix()).all()

    def test_groups_from_matrix_match_build_groups(self, blocks_group):
        criteria = _criteria(blocks_group)
        from_matrix = criteria.groups_from_matrix(criteria.build_binary_matrix())
        assert _partition(from_matrix) == _partition(criteria.build_groups())

    def test_matrix_shape_mismatch(self, blocks_group):
        with pytest.raises(ValueError):
            _criteria(blocks_group).groups_from_matrix(np.zeros((2, 2), dtype=bool))


class TestBidirectionalCondition:
    """Test a condition matching direct and inverted copies."""

    def test_symmetric(self, inverted_loci):
        criteria = _criteria(inverted_loci, BIDIRECTIONAL, 'condition')
        for a, b in itertools.permutations(inverted_loci, 2):
            assert criteria.evaluate(a, b) == criteria.evaluate(b, a)

    def test_inverted_copy_grouped(self, inverted_loci):
        result = _criteria(inverted_loci, BIDIRECTIONAL, 'condition').build_groups()
        assert _partition(result) == {frozenset({'fwd', 'inv'}), frozenset({'other'})}

    def test_direct_comparison_misses_inversion(self, inverted_loci):
        result = _criteria(inverted_loci, BIDIRECTIONAL, 'same').build_groups()
        assert len(result) == 3


class TestExtendWithoutExtension:
    """Test extend() on a rule without extension."""

    def test_returns_none(self, blocks_group):
        criteria = _criteria(blocks_group)
        assert criteria.extend(blocks_group) is None

    def test_group_ids_increment(self, blocks_group):
        criteria = _criteria(blocks_group)
        assert [criteria.next_group_id() for _ in range(3)] == [1, 2, 3]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
