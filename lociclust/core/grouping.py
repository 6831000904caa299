"""
Grouping engine: cluster loci by a pairwise boolean condition.

``GroupCriteria.build_groups`` assumes the condition is transitive: a
locus joins the group of the first earlier locus it matches, and is never
compared against the remaining loci once a match is found.
``build_binary_matrix`` and ``groups_from_matrix`` compute every pairwise
result explicitly, for auditing borderline pairs.
"""

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..errors import EvaluationError, GrammarError
from .evaluator import evaluate
from .models import Locus, LociGroup
from .operators import Kind, Node

logger = logging.getLogger(__name__)


class _Cancel:
    """Sentinel returned by a progress callback to stop grouping."""

    def __repr__(self) -> str:
        return 'CANCEL'


CANCEL = _Cancel()

ProgressCallback = Callable[[int, int, int], object]


@dataclass
class GroupingResult:
    """
    Groups produced by ``build_groups``.

    Attributes:
        groups: Output groups, in creation order
        complete: False if grouping was cancelled before all loci were placed
        evaluations: Number of pairwise evaluations performed
        failures: Number of evaluations that raised EvaluationError
    """
    groups: List[LociGroup] = field(default_factory=list)
    complete: bool = True
    evaluations: int = 0
    failures: int = 0

    def __len__(self) -> int:
        return len(self.groups)

    def __iter__(self):
        return iter(self.groups)


class GroupCriteria:
    """
    A grouping rule bound to a working set of loci.

    Args:
        source: Family of the loci bound to FEAT1
        target: Family of the loci bound to FEAT2
        condition: Boolean operator tree
        loci: Working set of loci
        extension: Optional ExtensionConfig used by ``extend``
        aligner: Pairwise aligner for ``aln-sim``/``aln-score``
    """

    def __init__(self, source: str, target: str, condition: Node, loci: LociGroup,
                 extension=None, aligner=None):
        if not source or not target:
            raise GrammarError("Grouping rule needs both source and target families",
                               text=f"source={source!r}, target={target!r}")
        if condition.kind != Kind.BOOL:
            raise GrammarError("Grouping condition must be boolean",
                               kind=condition.kind.value, name=condition.var)
        self.source = source
        self.target = target
        self.condition = condition
        self.locigroup = loci
        self.extension = extension
        self.aligner = aligner
        self._loci: Optional[List[Locus]] = None
        self._group_ids = itertools.count(1)
        self._counter_lock = threading.Lock()

    @property
    def genomes(self):
        return self.locigroup.genomes

    def get_loci(self) -> List[Locus]:
        """
        Working locus sequence.

        When source and target differ, target-family loci come first, then
        source-family loci, then everything else, so that every later
        (source) locus is compared against every earlier (target) locus.
        """
        if self._loci is None:
            loci = self.locigroup.loci
            if self.source != self.target:
                targets = [l for l in loci if l.family == self.target]
                sources = [l for l in loci if l.family == self.source]
                others = [l for l in loci if l.family not in (self.source, self.target)]
                loci = targets + sources + others
            self._loci = loci
        return self._loci

    def get_locus(self, index: int) -> Locus:
        return self.get_loci()[index]

    def evaluate(self, feat1: Locus, feat2: Locus) -> bool:
        """
        Evaluate the condition for a pair of loci.

        Returns False without evaluating if the families do not match
        source and target.

        Raises:
            EvaluationError: If the condition cannot be evaluated
        """
        if feat1.family != self.source or feat2.family != self.target:
            return False
        value = evaluate(self.condition, feat1, feat2, self.aligner)
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        raise EvaluationError(f"Condition '{self.condition.var}' did not produce a boolean")

    def evaluate_pair(self, i: int, j: int) -> bool:
        """Evaluate the condition with FEAT1 = loci[i] and FEAT2 = loci[j]."""
        loci = self.get_loci()
        return self.evaluate(loci[i], loci[j])

    def _try_pair(self, i: int, j: int) -> Tuple[bool, bool]:
        """(matched, failed) for a pair; an evaluation failure is no match."""
        try:
            return self.evaluate_pair(i, j), False
        except EvaluationError as e:
            loci = self.get_loci()
            logger.debug(f"Evaluation failed for [{loci[i].id} vs {loci[j].id}]: {e}")
            return False, True

    # ------------------------------------------------------------------
    # Transitive grouping
    # ------------------------------------------------------------------

    def build_groups(self, progress: Optional[ProgressCallback] = None,
                     workers: int = 1) -> GroupingResult:
        """
        Build groups assuming transitivity.

        Args:
            progress: Called as ``progress(i, j, total)`` before every pair
                evaluation; returning ``CANCEL`` stops grouping and returns
                the groups built so far, marked incomplete
            workers: Number of threads evaluating different loci
                concurrently; the result does not depend on it

        Returns:
            GroupingResult
        """
        loci = self.get_loci()
        total = len(loci)
        logger.debug(f"Building groups for {total} loci")
        if total == 0:
            logger.warning("Nothing to do, no loci stored")
            return GroupingResult()

        if workers > 1 and total > 2:
            first_match, done, evaluations, failures = self._first_matches_parallel(
                progress, workers)
        else:
            first_match, done, evaluations, failures = self._first_matches_sequential(progress)

        members = [[0]]
        group_of = {0: 0}
        for i in range(1, done):
            j = first_match[i]
            if j is None:
                group_of[i] = len(members)
                members.append([i])
            else:
                group_of[i] = group_of[j]
                members[group_of[j]].append(i)

        complete = done == total
        if not complete:
            logger.info(f"Grouping cancelled after {done} of {total} loci")
        return GroupingResult(
            groups=self._to_groups(members),
            complete=complete,
            evaluations=evaluations,
            failures=failures,
        )

    def _first_matches_sequential(self, progress):
        total = len(self.get_loci())
        first_match: Dict[int, Optional[int]] = {}
        evaluations = failures = 0
        for i in range(1, total):
            first_match[i] = None
            for j in range(i):
                if progress is not None and progress(i, j, total) is CANCEL:
                    return first_match, i, evaluations, failures
                matched, failed = self._try_pair(i, j)
                evaluations += 1
                failures += failed
                if matched:
                    first_match[i] = j
                    break
        return first_match, total, evaluations, failures

    def _first_matches_parallel(self, progress, workers: int):
        """
        First matching earlier locus for every locus, computed across
        threads. Within one locus, earlier loci are still tried in order.
        """
        total = len(self.get_loci())
        cancelled = threading.Event()
        lock = threading.Lock()
        stats = {'evaluations': 0, 'failures': 0}

        def scan(i: int):
            for j in range(i):
                if cancelled.is_set():
                    return i, None, False
                if progress is not None:
                    with lock:
                        signal = progress(i, j, total)
                    if signal is CANCEL:
                        cancelled.set()
                        return i, None, False
                matched, failed = self._try_pair(i, j)
                with lock:
                    stats['evaluations'] += 1
                    stats['failures'] += failed
                if matched:
                    return i, j, True
            return i, None, True

        first_match: Dict[int, Optional[int]] = {}
        finished = set()
        with ThreadPoolExecutor(max_workers=workers) as executor:
            for i, j, ok in executor.map(scan, range(1, total)):
                if ok:
                    first_match[i] = j
                    finished.add(i)

        # Only a contiguous prefix of placed loci is reported
        done = 1
        while done < total and done in finished:
            done += 1
        return first_match, done, stats['evaluations'], stats['failures']

    def _to_groups(self, members: List[List[int]]) -> List[LociGroup]:
        loci = self.get_loci()
        groups = []
        for gk, indexes in enumerate(members):
            group = LociGroup(name=str(gk + 1), family=self.source, genomes=self.genomes)
            group.add_loci(*(loci[k] for k in indexes))
            groups.append(group)
        return groups

    # ------------------------------------------------------------------
    # All-pairs matrix
    # ------------------------------------------------------------------

    def build_binary_matrix(self, complete: bool = False, workers: int = 1) -> np.ndarray:
        """
        Evaluate pairs explicitly.

        Args:
            complete: Compute the full matrix instead of the lower triangle
                (diagonal included)
            workers: Number of threads evaluating rows concurrently

        Returns:
            Boolean matrix ``m`` with ``m[i, j]`` = evaluate_pair(i, j);
            uncomputed cells are False
        """
        n = len(self.get_loci())
        matrix = np.zeros((n, n), dtype=bool)

        def row(i: int) -> int:
            failures = 0
            limit = n if complete else i + 1
            for j in range(limit):
                matrix[i, j], failed = self._try_pair(i, j)
                failures += failed
            return failures

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                failures = sum(executor.map(row, range(n)))
        else:
            failures = sum(row(i) for i in range(n))
        if failures:
            logger.debug(f"{failures} pairwise evaluations failed while building the matrix")
        return matrix

    def groups_from_matrix(self, matrix: np.ndarray) -> List[LociGroup]:
        """
        Build groups from a pairwise matrix assuming transitivity.

        A locus joins the first group holding a member it matches.
        """
        n = len(self.get_loci())
        if matrix.shape[0] != n:
            raise ValueError(f"Matrix has {matrix.shape[0]} rows for {n} loci")
        members: List[List[int]] = []
        for f in range(n):
            for group in members:
                if any(matrix[f, m] for m in group):
                    group.append(f)
                    break
            else:
                members.append([f])
        return self._to_groups(members)

    # ------------------------------------------------------------------
    # Extension
    # ------------------------------------------------------------------

    def next_group_id(self) -> int:
        """Incremental identifier of the next extended group."""
        with self._counter_lock:
            return next(self._group_ids)

    def extend(self, group: LociGroup, engine=None) -> Optional[LociGroup]:
        """
        Extend a group with the configured extension.

        New loci are bounded by the lengths of the whole working set when
        the extension sets no ``maxlen``.

        Returns:
            A new LociGroup holding only the new loci, or None if this rule
            has no extension
        """
        if self.extension is None:
            return None
        group_id = self.next_group_id()
        if engine is None:
            from .extension import ExtensionEngine
            with ExtensionEngine(self.extension, self.genomes) as engine:
                return engine.extend(group, group_id=group_id, source=self.source,
                                     reference=self.locigroup)
        return engine.extend(group, group_id=group_id, source=self.source, reference=self.locigroup)

    def __repr__(self) -> str:
        return (f"GroupCriteria(source={self.source}, target={self.target}, "
                f"condition={self.condition.var})")
