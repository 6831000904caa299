"""
Alignment collaborators: pairwise global alignment and MUSCLE multiple alignment.
"""

import logging
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pysam

from ..errors import CollaboratorError
from ..utils.sequence import write_fasta

logger = logging.getLogger(__name__)


@dataclass
class AlignmentResult:
    """Result of a pairwise alignment."""
    identity: float  # Identical columns over the length of the longer sequence
    score: float
    aligned_a: str = ""
    aligned_b: str = ""


class AlignerManager:
    """Detect which external alignment and search tools are available."""

    TOOLS = {
        'muscle': ['muscle', '-version'],
        'makeblastdb': ['makeblastdb', '-version'],
        'blastn': ['blastn', '-version'],
        'hmmbuild': ['hmmbuild', '-h'],
        'nhmmer': ['nhmmer', '-h'],
    }
    REQUIRED = {
        'blast': ['muscle', 'makeblastdb', 'blastn'],
        'hmmer': ['muscle', 'hmmbuild', 'nhmmer'],
    }

    def __init__(self):
        self.available = {}
        self._detect_tools()

    def _detect_tools(self):
        """Check which tools respond on the PATH."""
        for tool, cmd in self.TOOLS.items():
            try:
                subprocess.run(cmd, capture_output=True, timeout=5)
                self.available[tool] = True
            except (FileNotFoundError, subprocess.TimeoutExpired):
                self.available[tool] = False

    def check_requirements(self, algorithm: str = 'blast') -> List[str]:
        """Return list of missing tools for an extension algorithm."""
        return [t for t in self.REQUIRED.get(algorithm, []) if not self.available.get(t)]

    def get_installation_instructions(self, missing: List[str]) -> str:
        """Return installation instructions for missing tools."""
        return f"""
Missing tools: {', '.join(missing)}

Install via conda:
    conda install -c bioconda muscle blast hmmer

Or via mamba (faster):
    mamba install -c bioconda muscle blast hmmer
"""


class GlobalAligner:
    """
    In-process Needleman-Wunsch global aligner.

    Identity is the number of identical aligned columns divided by the
    length of the longer sequence, so it is symmetric and deterministic.
    """

    def __init__(self, match_score: int = 2, mismatch_score: int = -1, gap_score: int = -2):
        self.match_score = match_score
        self.mismatch_score = mismatch_score
        self.gap_score = gap_score

    def align(self, seq_a: str, seq_b: str) -> AlignmentResult:
        """Align two sequences and return identity and score."""
        a = seq_a.upper()
        b = seq_b.upper()
        if not a or not b:
            return AlignmentResult(identity=0.0, score=float(self.gap_score * max(len(a), len(b))))

        score, aligned_a, aligned_b = self._needleman_wunsch(a, b)
        matches = sum(1 for x, y in zip(aligned_a, aligned_b) if x == y and x != '-')
        identity = matches / max(len(a), len(b))
        return AlignmentResult(
            identity=identity,
            score=float(score),
            aligned_a=aligned_a,
            aligned_b=aligned_b,
        )

    def _needleman_wunsch(self, a: str, b: str) -> Tuple[int, str, str]:
        """Global alignment with linear gap scoring; returns (score, aln_a, aln_b)."""
        m, n = len(a), len(b)
        match_score = self.match_score
        mismatch_score = self.mismatch_score
        gap_score = self.gap_score

        # Initialize score matrix
        score = [[0] * (n + 1) for _ in range(m + 1)]

        # Initialize first row and column
        for i in range(m + 1):
            score[i][0] = i * gap_score
        for j in range(n + 1):
            score[0][j] = j * gap_score

        # Fill matrix
        for i in range(1, m + 1):
            row = score[i]
            prev = score[i - 1]
            ai = a[i - 1]
            for j in range(1, n + 1):
                match = prev[j - 1] + (match_score if ai == b[j - 1] else mismatch_score)
                delete = prev[j] + gap_score
                insert = row[j - 1] + gap_score
                row[j] = max(match, delete, insert)

        # Traceback
        aligned_a = []
        aligned_b = []
        i, j = m, n

        while i > 0 or j > 0:
            if i > 0 and j > 0:
                current = score[i][j]
                diag = score[i - 1][j - 1]
                match = match_score if a[i - 1] == b[j - 1] else mismatch_score

                if current == diag + match:
                    aligned_a.append(a[i - 1])
                    aligned_b.append(b[j - 1])
                    i -= 1
                    j -= 1
                elif current == score[i - 1][j] + gap_score:
                    aligned_a.append(a[i - 1])
                    aligned_b.append('-')
                    i -= 1
                else:
                    aligned_a.append('-')
                    aligned_b.append(b[j - 1])
                    j -= 1
            elif i > 0:
                aligned_a.append(a[i - 1])
                aligned_b.append('-')
                i -= 1
            else:
                aligned_a.append('-')
                aligned_b.append(b[j - 1])
                j -= 1

        return score[m][n], ''.join(reversed(aligned_a)), ''.join(reversed(aligned_b))


class MuscleAligner:
    """
    Multiple sequence alignment with MUSCLE.

    Supports the MUSCLE 5 command line (``-align``/``-output``) and, with
    ``legacy=True``, MUSCLE 3 (``-in``/``-out``).
    """

    def __init__(self, executable: str = 'muscle', legacy: bool = False,
                 timeout: Optional[float] = None):
        self.executable = executable
        self.legacy = legacy
        self.timeout = timeout

    def _build_command(self, input_fasta: Path, output_fasta: Path) -> List[str]:
        if self.legacy:
            return [self.executable, '-in', str(input_fasta), '-out', str(output_fasta), '-quiet']
        return [self.executable, '-align', str(input_fasta), '-output', str(output_fasta)]

    def align_multiple(self, records: Dict[str, str]) -> Dict[str, str]:
        """
        Align a set of sequences.

        Args:
            records: Mapping of sequence id to sequence

        Returns:
            Mapping of sequence id to gapped sequence, in input order

        Raises:
            CollaboratorError: If MUSCLE fails or times out
        """
        if len(records) < 2:
            return {k: v.upper() for k, v in records.items()}

        with tempfile.TemporaryDirectory(prefix='lociclust_muscle_') as tmp:
            input_fasta = Path(tmp) / 'input.fasta'
            output_fasta = Path(tmp) / 'aligned.fasta'
            with open(input_fasta, 'w') as f:
                write_fasta(records, f)

            cmd = self._build_command(input_fasta, output_fasta)
            logger.debug(f"Running {' '.join(cmd)}")
            try:
                subprocess.run(cmd, capture_output=True, check=True, timeout=self.timeout)
            except FileNotFoundError as e:
                raise CollaboratorError("MUSCLE is not available", tool='muscle') from e
            except subprocess.TimeoutExpired as e:
                raise CollaboratorError(f"MUSCLE timed out after {self.timeout}s", tool='muscle') from e
            except subprocess.CalledProcessError as e:
                raise CollaboratorError(
                    "MUSCLE failed", tool='muscle',
                    stderr=e.stderr.decode() if e.stderr else None) from e

            aligned = {}
            with pysam.FastxFile(str(output_fasta)) as fh:
                for entry in fh:
                    aligned[entry.name] = entry.sequence.upper()

        # MUSCLE may reorder its output
        return {k: aligned[k] for k in records if k in aligned}
