"""Shared fixtures: synthetic genomes and fake alignment/search collaborators."""

import random

import pytest

from lociclust.core.models import Contig, Genome, LociGroup, Locus
from lociclust.integrations.aligners import AlignmentResult
from lociclust.integrations.search import SearchQuery
from lociclust.utils.sequence import reverse_complement


def random_sequence(length, seed):
    rng = random.Random(seed)
    return ''.join(rng.choice('ACGT') for _ in range(length))


class ExactAligner:
    """Pairwise aligner reporting identity 1.0 for equal sequences, else 0.0."""

    def __init__(self):
        self.calls = 0

    def align(self, a, b):
        self.calls += 1
        identity = 1.0 if a.upper() == b.upper() else 0.0
        return AlignmentResult(identity=identity, score=float(len(a)) * identity)


class IdentityMSA:
    """Multiple aligner returning its input unchanged."""

    def __init__(self):
        self.calls = []

    def align_multiple(self, records):
        self.calls.append(dict(records))
        return dict(records)


class FakeSearch:
    """Search backend returning preset hits per context name and genome."""

    name = 'fake'

    def __init__(self, hits=None, failing=None):
        self.hits = hits or {}
        self.failing = failing or {}
        self.searched = []

    def build_query(self, name, alignment):
        return SearchQuery(name=name, alignment=alignment, consensus='ACGT')

    def search(self, query, genome_index, workspace):
        self.searched.append((query.name, genome_index))
        if genome_index in self.failing:
            raise self.failing[genome_index]
        return list(self.hits.get((query.name, genome_index), []))


@pytest.fixture
def exact_aligner():
    return ExactAligner()


@pytest.fixture
def blocks_genome():
    """
    One contig made of 10 bp blocks X Y X Z Y X, so loci over the blocks
    fall in three classes by sequence: {0, 2, 5}, {1, 4}, {3}.
    """
    x, y, z = 'AAAAACCCCC', 'GGGGGTTTTT', 'ACACACACAC'
    contig = Contig(id='ctg1', sequence=x + y + x + z + y + x)
    return Genome(name='genomeA', contigs=[contig])


@pytest.fixture
def blocks_group(blocks_genome):
    contig = blocks_genome.contigs[0]
    group = LociGroup(name='input', genomes=[blocks_genome])
    for k in range(6):
        group.add_loci(Locus(id=f"L{k}", start=10 * k + 1, end=10 * k + 10,
                             family='VNTR', contig=contig))
    return group


@pytest.fixture
def inverted_genome():
    """
    Contig holding a feature F with flanks U and D, an inverted copy of
    U + F + D, and an unrelated feature. Flanks and features are 20 bp.
    """
    up, feat, down = random_sequence(20, 11), random_sequence(20, 12), random_sequence(20, 13)
    other = random_sequence(60, 14)
    filler = random_sequence(20, 15)
    sequence = (filler + up + feat + down + filler
                + reverse_complement(up + feat + down) + filler + other + filler)
    return Genome(name='genomeA', contigs=[Contig(id='ctg1', sequence=sequence)])


@pytest.fixture
def inverted_loci(inverted_genome):
    contig = inverted_genome.contigs[0]
    # filler(20) up(20) feat(20): feature at 41..60
    # filler(20) at 81..100, inverted copy at 101..160 with its feature at 121..140
    # filler(20) at 161..180, other(60) at 181..240 with its middle at 201..220
    return [
        Locus(id='fwd', start=41, end=60, family='VNTR', contig=contig),
        Locus(id='inv', start=121, end=140, family='VNTR', contig=contig),
        Locus(id='other', start=201, end=220, family='VNTR', contig=contig),
    ]
