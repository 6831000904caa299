"""
Group extension: find undetected members of a group by searching the
genomic context of its loci.

For each configured direction (upstream, downstream, in-feature) the
contexts of all loci are aligned, a query is built from the alignment and
searched against every genome. Upstream and downstream hits are paired
into new loci; in-feature hits either confirm the pairs or, without
borders, become new loci themselves.

Context orientation (see ``Locus.context``): upstream and in-feature
contexts are read in the feature orientation, downstream contexts are
reverse-complemented. A homologous locus on the forward strand therefore
gives an upstream hit on strand +1 and a downstream hit on strand -1, and
the inner edge (``Hit.anchor``) of each hit faces the feature.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from ..config import ExtensionConfig
from ..integrations.aligners import GlobalAligner, MuscleAligner
from ..integrations.search import Hit, SearchWorkspace, create_backend, search_genomes
from .models import Genome, LociGroup, Locus

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """A putative new locus, before it is resolved to a contig."""
    genome_index: int
    contig: str
    start: int
    end: int
    strand: int  # +1: same orientation as the group's loci
    score: float

    def __post_init__(self):
        if self.start > self.end:
            self.start, self.end = self.end, self.start

    def overlaps(self, locus: Locus) -> bool:
        if locus.genome_index != self.genome_index or locus.contig is None:
            return False
        if locus.contig.id != self.contig:
            return False
        return self.start < locus.end and self.end > locus.start


def max_feature_length(loci: Sequence[Locus], config: ExtensionConfig) -> float:
    """
    Maximum admissible length of a new locus.

    ``config.maxlen`` when set, otherwise mean + sd * ``config.lensd`` of
    the lengths of ``loci``.
    """
    if config.maxlen:
        return float(config.maxlen)
    group = LociGroup()
    group.add_loci(*loci)
    if len(group) < 2:
        logger.warning("Building size constraints based on one sequence only")
    mean, sd = group.avg_length()
    return mean + sd * config.lensd


def pair_borders(upstream: Sequence[Hit], downstream: Sequence[Hit],
                 max_len: float, min_len: float = 0) -> List[Candidate]:
    """
    Pair upstream and downstream hits into candidates.

    Each upstream hit is paired with the nearest downstream hit on the
    same contig and the opposite strand. The candidate spans the bases
    strictly between the two anchors, and its length must lie within
    ``[min_len, max_len]``. Among equally near downstream hits the first
    one found is kept. Upstream hits with no such partner are dropped.
    """
    candidates = []
    for us in upstream:
        best = None
        best_dist = None
        for ds in downstream:
            if ds.genome_index != us.genome_index or ds.contig != us.contig:
                continue
            if ds.strand == us.strand:
                continue
            # Anchors are the flank bases next to the feature
            dist = abs(ds.anchor - us.anchor) - 1
            if dist < 1 or dist > max_len or dist < min_len:
                continue
            if best_dist is not None and dist >= best_dist:
                continue
            best, best_dist = ds, dist
        if best is None:
            logger.debug(f"No downstream partner for upstream hit {us.contig}:{us.start}-{us.end}")
            continue
        left, right = sorted((us.anchor, best.anchor))
        candidates.append(Candidate(
            genome_index=us.genome_index,
            contig=us.contig,
            start=left + 1,
            end=right - 1,
            strand=us.strand,
            score=(us.score + best.score) / 2,
        ))
    return candidates


def one_side_candidates(hits: Sequence[Hit], length: float, downstream: bool = False) -> List[Candidate]:
    """
    Candidates from single border hits, extending ``length`` from the
    inner edge of each hit.
    """
    span = max(int(round(length)), 1)
    candidates = []
    for hit in hits:
        if hit.strand == 1:
            start, end = hit.anchor + 1, hit.anchor + span
        else:
            start, end = hit.anchor - span, hit.anchor - 1
        candidates.append(Candidate(
            genome_index=hit.genome_index,
            contig=hit.contig,
            start=max(start, 1),
            end=max(end, 1),
            strand=-hit.strand if downstream else hit.strand,
            score=hit.score,
        ))
    return candidates


def filter_by_feature(candidates: Sequence[Candidate], feature_hits: Sequence[Hit]) -> List[Candidate]:
    """
    Keep candidates overlapping an in-feature hit on the same contig and
    strand, blending the scores as (2 * border + feature) / 3.
    """
    kept = []
    for candidate in candidates:
        for hit in feature_hits:
            if hit.genome_index != candidate.genome_index or hit.contig != candidate.contig:
                continue
            if hit.strand != candidate.strand:
                continue
            if hit.start > candidate.end or hit.end < candidate.start:
                continue
            kept.append(replace(candidate, score=(2 * candidate.score + hit.score) / 3))
            break
    return kept


def hits_to_candidates(hits: Sequence[Hit]) -> List[Candidate]:
    return [Candidate(h.genome_index, h.contig, h.start, h.end, h.strand, h.score) for h in hits]


def _flip(locus: Locus) -> Locus:
    return replace(locus, strand='-' if locus.strand == '+' else '+')


def orient_loci(loci: Sequence[Locus], size: int, aligner=None) -> List[Locus]:
    """
    Orient loci consistently with the first one.

    Each locus is compared with the first by the identity of their
    upstream contexts, read on its current strand and on the opposite
    strand; it is flipped when the opposite strand aligns better. The
    input loci are not modified.
    """
    if len(loci) < 2 or size <= 0:
        return list(loci)
    aligner = aligner or GlobalAligner()
    reference = loci[0].context(-1, size)
    if reference is None:
        logger.warning(f"No upstream context for {loci[0].id}, strands left unchanged")
        return list(loci)

    oriented = [loci[0]]
    flipped_count = 0
    for locus in loci[1:]:
        flipped = _flip(locus)
        normal_ctx = locus.context(-1, size)
        flipped_ctx = flipped.context(-1, size)
        normal_id = aligner.align(reference, normal_ctx).identity if normal_ctx else 0.0
        flipped_id = aligner.align(reference, flipped_ctx).identity if flipped_ctx else 0.0
        if flipped_id > normal_id:
            oriented.append(flipped)
            flipped_count += 1
        else:
            oriented.append(locus)
    logger.debug(f"Flipped the strand of {flipped_count} of {len(loci)} loci")
    return oriented


class ExtensionEngine:
    """
    Extend groups of loci by context search.

    The search workspace is created on the first search and reused by
    every later extension. Use the engine as a context manager (or call
    ``close``) to remove it.

    Args:
        config: Extension options
        genomes: Genomes searched for new loci
        msa: Multiple aligner with ``align_multiple(records)``
        aligner: Pairwise aligner used to detect strands
        backend: Search backend (default chosen by ``config.algorithm``)

    Usage:
        with ExtensionEngine(config, genomes) as engine:
            for k, group in enumerate(groups, start=1):
                new_loci = engine.extend(group, group_id=k, reference=loci)
    """

    def __init__(self, config: ExtensionConfig, genomes: Optional[Sequence[Genome]] = None,
                 msa=None, aligner=None, backend=None):
        self.config = config.validate()
        self.genomes = list(genomes) if genomes is not None else None
        self.msa = msa if msa is not None else MuscleAligner(timeout=config.timeout)
        self.aligner = aligner
        self.backend = backend if backend is not None else create_backend(config, timeout=config.timeout)
        self._workspace: Optional[SearchWorkspace] = None

    def __enter__(self) -> 'ExtensionEngine':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def workspace(self, genomes: Sequence[Genome]) -> SearchWorkspace:
        """Search workspace for ``genomes``, replaced only if the genomes change."""
        if self._workspace is not None and not _same_genomes(self._workspace.genomes, genomes):
            self.close()
        if self._workspace is None:
            self._workspace = SearchWorkspace(genomes)
        return self._workspace

    def close(self):
        """Remove the search workspace, if any."""
        if self._workspace is not None:
            self._workspace.cleanup()
            self._workspace = None

    def extend(self, group: LociGroup, group_id: int = 1, source: Optional[str] = None,
               reference: Optional[LociGroup] = None) -> LociGroup:
        """
        Search for new members of a group.

        Args:
            group: Group to extend; it is not modified
            group_id: Number of this extension, used in new locus ids
            source: Family used as prefix of new locus ids
            reference: Loci whose lengths bound new loci when ``maxlen``
                is not set (default: the group itself)

        Returns:
            A new group named ``<name>-ext`` holding only the new loci
        """
        config = self.config
        genomes = self.genomes if self.genomes is not None else group.genomes
        new_group = LociGroup(
            name=f"{group.name}-ext" if group.name is not None else None,
            family=group.family,
            genomes=group.genomes,
        )
        input_loci = group.loci
        if not input_loci:
            return new_group
        if not genomes:
            logger.warning(f"No genomes to search for group {group.name}")
            return new_group

        logger.debug(f"--- Extending group {group.name} (based on {len(input_loci)} loci) ---")
        loci = input_loci
        if config.detectstrand and config.has_borders:
            loci = orient_loci(loci, config.context_size, self.aligner)

        workspace = self.workspace(genomes)
        upstream = downstream = feature = None
        if config.upstream:
            upstream = self._search_context(loci, -1, config.upstream, 'upstream', workspace)
        if config.downstream:
            downstream = self._search_context(loci, 1, config.downstream, 'downstream', workspace)
        if config.feature:
            feature = self._search_context(loci, 0, 0, 'feature', workspace)

        reference_loci = reference.loci if reference is not None else input_loci
        max_len = max_feature_length(reference_loci, config)
        logger.debug(f"Comparing results with maximum feature length of {max_len:.1f}")
        candidates = self._candidates(loci, upstream, downstream, feature, max_len)

        source = source or group.family or 'locus'
        ids = ', '.join(locus.id for locus in input_loci if locus.id)
        comment = f"Based on group {group_id}: {ids}"
        for candidate in candidates:
            if not config.alldetected and any(candidate.overlaps(l) for l in input_loci):
                logger.debug(f"Discarding {candidate.contig}:{candidate.start}-{candidate.end}, "
                             f"overlaps an existing locus")
                continue
            contig = genomes[candidate.genome_index].find_contig(candidate.contig)
            if contig is None:
                logger.warning(f"Cannot find sequence {candidate.contig} in genome "
                               f"{genomes[candidate.genome_index].name}, dropping candidate")
                continue
            new_group.add_loci(Locus(
                id=f"{source}-ext:{candidate.genome_index + 1}.{group_id}.{len(new_group) + 1}",
                start=candidate.start,
                end=candidate.end,
                family=group.family or source,
                contig=contig,
                genome_index=candidate.genome_index,
                strand='+' if candidate.strand == 1 else '-',
                score=candidate.score,
                comment=comment,
                base_feature=input_loci[0],
                type='extend',
            ))

        logger.info(f"Extension of group {group.name}: {len(new_group)} new loci")
        return new_group

    def _candidates(self, loci, upstream, downstream, feature, max_len) -> List[Candidate]:
        config = self.config
        if upstream is not None and downstream is not None:
            candidates = pair_borders(upstream, downstream, max_len, config.minlen)
            if config.oneside:
                mean_len, _ = _mean_length(loci)
                # Candidates span the bases between the two paired anchors
                paired = {(c.genome_index, c.contig, c.start - 1) for c in candidates}
                paired |= {(c.genome_index, c.contig, c.end + 1) for c in candidates}
                lonely_up = [h for h in upstream
                             if (h.genome_index, h.contig, h.anchor) not in paired]
                lonely_down = [h for h in downstream
                               if (h.genome_index, h.contig, h.anchor) not in paired]
                candidates += one_side_candidates(lonely_up, mean_len)
                candidates += one_side_candidates(lonely_down, mean_len, downstream=True)
            if feature is not None:
                candidates = filter_by_feature(candidates, feature)
            return candidates

        border = upstream if upstream is not None else downstream
        if border is not None:
            if config.oneside:
                mean_len, _ = _mean_length(loci)
                candidates = one_side_candidates(border, mean_len, downstream=upstream is None)
                if feature is not None:
                    candidates = filter_by_feature(candidates, feature)
                return candidates
            if feature is not None:
                return hits_to_candidates(feature)
            logger.warning("A single border was searched without oneside; no loci can be built")
            return []

        return hits_to_candidates(feature or [])

    def _search_context(self, loci: Sequence[Locus], side: int, size: int, name: str,
                        workspace: SearchWorkspace) -> List[Hit]:
        logger.debug(f"Searching {name} sequences")
        records = {}
        for k, locus in enumerate(loci):
            seq = locus.context(side, size)
            if seq:
                records[f"locus_{k}"] = seq
        if not records:
            logger.warning(f"No {name} context available for the group")
            return []

        alignment = self.msa.align_multiple(records)
        query = self.backend.build_query(name, alignment)
        if query is None:
            return []
        hits = search_genomes(self.backend, query, workspace,
                              threads=self.config.threads, timeout=self.config.timeout)
        logger.debug(f"{len(hits)} {name} results")
        return hits


def _mean_length(loci: Sequence[Locus]):
    group = LociGroup()
    group.add_loci(*loci)
    return group.avg_length()


def _same_genomes(a: Sequence[Genome], b: Sequence[Genome]) -> bool:
    return len(a) == len(b) and all(x is y for x, y in zip(a, b))
