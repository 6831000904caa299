"""
Search collaborators: locate consensus or profile queries in genome sequences.

Two backends are provided:

- ``BlastSearch``: consensus sequence searched with ``blastn`` against a
  per-genome ``makeblastdb`` database, tabular output parsed with pandas.
- ``HmmerSearch``: profile built with ``hmmbuild`` and searched with
  ``nhmmer``; the ``--tblout`` table is parsed directly.

Both run against a ``SearchWorkspace``, a temporary directory holding one
FASTA snapshot (and database) per genome. It is created on first use and
removed when the workspace context exits.
"""

import io
import logging
import shutil
import subprocess
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from ..core.models import Contig, Genome
from ..errors import CollaboratorError, ConfigurationError
from ..utils.sequence import consensus_string, n_fraction, write_fasta

logger = logging.getLogger(__name__)

# Consensus queries with more N than this fraction are not searched
MAX_CONSENSUS_N = 0.25

BLAST_COLUMNS = ['sseqid', 'sstart', 'send', 'sstrand', 'pident', 'bitscore', 'score', 'evalue']


@dataclass
class Hit:
    """
    A search hit on a genome.

    ``start <= end`` always; ``strand`` is +1 when the hit lies on the
    same strand as the query and -1 otherwise.
    """
    genome_index: int
    contig: str
    start: int
    end: int
    strand: int
    score: float
    evalue: Optional[float] = None
    identity: Optional[float] = None

    @property
    def anchor(self) -> int:
        """Flank base of the hit next to the feature (3' end of the query match)."""
        return self.end if self.strand == 1 else self.start

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass
class SearchQuery:
    """A query built from a multiple alignment of one context."""
    name: str
    alignment: Dict[str, str]
    consensus: Optional[str] = None


class SearchWorkspace:
    """
    Temporary on-disk snapshot of the genomes used by searches.

    Usage:
        with SearchWorkspace(genomes) as workspace:
            hits = search_genomes(backend, query, workspace)
    """

    def __init__(self, genomes: Sequence[Genome], prefix: str = 'lociclust_'):
        self.genomes = list(genomes)
        self.prefix = prefix
        self._path: Optional[Path] = None
        self._fastas: Dict[int, Path] = {}
        self._databases: Dict[int, Path] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> 'SearchWorkspace':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    @property
    def path(self) -> Path:
        """Workspace directory, created on first access."""
        with self._lock:
            if self._path is None:
                self._path = Path(tempfile.mkdtemp(prefix=self.prefix))
                logger.debug(f"Created search workspace {self._path}")
            return self._path

    @staticmethod
    def contig_key(contig_index: int) -> str:
        """Identifier written to FASTA snapshots for a contig."""
        return f"contig_{contig_index}"

    def resolve_contig(self, genome_index: int, key: str) -> Optional[Contig]:
        """Map a snapshot identifier reported by a search tool back to a contig."""
        contigs = self.genomes[genome_index].contigs
        key = key.strip()
        if key.startswith('lcl|'):
            key = key[4:]
        if key.startswith('gnl|BL_ORD_ID|'):
            ordinal = int(key.rsplit('|', 1)[1])
            return contigs[ordinal] if ordinal < len(contigs) else None
        if key.startswith('contig_'):
            try:
                ordinal = int(key[len('contig_'):])
            except ValueError:
                return None
            return contigs[ordinal] if ordinal < len(contigs) else None
        return None

    def genome_fasta(self, genome_index: int) -> Path:
        """FASTA snapshot of one genome, written on first request."""
        root = self.path
        with self._lock:
            if genome_index not in self._fastas:
                path = root / f"genome_{genome_index}.fasta"
                records = {self.contig_key(i): contig.sequence
                           for i, contig in enumerate(self.genomes[genome_index].contigs)}
                with open(path, 'w') as f:
                    write_fasta(records, f)
                self._fastas[genome_index] = path
            return self._fastas[genome_index]

    def blast_db(self, genome_index: int, timeout: Optional[float] = None) -> Path:
        """BLAST nucleotide database of one genome, built on first request."""
        fasta = self.genome_fasta(genome_index)
        with self._lock:
            if genome_index not in self._databases:
                db = fasta.with_suffix('')
                cmd = ['makeblastdb', '-in', str(fasta), '-dbtype', 'nucl',
                       '-parse_seqids', '-out', str(db)]
                _run_tool(cmd, 'makeblastdb', timeout)
                self._databases[genome_index] = db
            return self._databases[genome_index]

    def cleanup(self):
        """Remove the workspace directory."""
        with self._lock:
            if self._path is not None and self._path.exists():
                shutil.rmtree(self._path, ignore_errors=True)
                logger.debug(f"Removed search workspace {self._path}")
            self._path = None
            self._fastas.clear()
            self._databases.clear()


def _run_tool(cmd: List[str], tool: str, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run an external tool, wrapping failures in CollaboratorError."""
    logger.debug(f"Running {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    except FileNotFoundError as e:
        raise CollaboratorError(f"{tool} is not available", tool=tool) from e
    except subprocess.TimeoutExpired as e:
        raise CollaboratorError(f"{tool} timed out after {timeout}s", tool=tool) from e
    except subprocess.CalledProcessError as e:
        raise CollaboratorError(f"{tool} failed with exit code {e.returncode}",
                                tool=tool, stderr=e.stderr) from e


class BlastSearch:
    """
    Consensus search with BLAST.

    Hits are kept when their identity fraction reaches ``similarity`` and
    their raw score reaches ``score``; ``evalue`` is passed to BLAST.
    """

    name = 'blast'

    def __init__(self, similarity: float = 0.8, score: float = 20, evalue: float = 0.1,
                 program: str = 'blastn', consensus_perc: float = 60.0,
                 timeout: Optional[float] = None):
        self.similarity = similarity
        self.score = score
        self.evalue = evalue
        self.program = program
        self.consensus_perc = consensus_perc
        self.timeout = timeout

    def build_query(self, name: str, alignment: Dict[str, str]) -> Optional[SearchQuery]:
        """Build a consensus query; None if the consensus is mostly undetermined."""
        consensus = consensus_string(alignment, self.consensus_perc)
        if not consensus or n_fraction(consensus) > MAX_CONSENSUS_N:
            logger.warning(f"Consensus for {name} context is too degenerate, skipping search")
            return None
        return SearchQuery(name=name, alignment=alignment, consensus=consensus)

    def search(self, query: SearchQuery, genome_index: int, workspace: SearchWorkspace) -> List[Hit]:
        db = workspace.blast_db(genome_index, self.timeout)
        query_fasta = workspace.path / f"{query.name}_{genome_index}.query.fasta"
        with open(query_fasta, 'w') as f:
            write_fasta({query.name: query.consensus}, f)

        cmd = [self.program, '-query', str(query_fasta), '-db', str(db),
               '-evalue', str(self.evalue), '-outfmt', '6 ' + ' '.join(BLAST_COLUMNS)]
        result = _run_tool(cmd, self.program, self.timeout)
        return self.parse_output(result.stdout, genome_index, workspace)

    def parse_output(self, text: str, genome_index: int, workspace: SearchWorkspace) -> List[Hit]:
        """Parse tabular BLAST output into filtered hits."""
        if not text.strip():
            return []
        df = pd.read_csv(io.StringIO(text), sep='\t', header=None, names=BLAST_COLUMNS)
        df = df[(df['pident'] / 100.0 >= self.similarity) & (df['score'] >= self.score)]

        hits = []
        for _, row in df.iterrows():
            contig = workspace.resolve_contig(genome_index, str(row['sseqid']))
            if contig is None:
                logger.warning(f"Unknown subject {row['sseqid']} in genome {genome_index}")
                continue
            start, end = int(row['sstart']), int(row['send'])
            strand = -1 if str(row['sstrand']).lower() == 'minus' or start > end else 1
            hits.append(Hit(
                genome_index=genome_index,
                contig=contig.id,
                start=min(start, end),
                end=max(start, end),
                strand=strand,
                score=float(row['bitscore']),
                evalue=float(row['evalue']),
                identity=float(row['pident']) / 100.0,
            ))
        return hits


class HmmerSearch:
    """
    Profile search with HMMER.

    Hits are kept when their bit score reaches ``score`` and their
    E-value does not exceed ``evalue``.
    """

    name = 'hmmer'

    def __init__(self, score: float = 20, evalue: float = 0.1, timeout: Optional[float] = None):
        self.score = score
        self.evalue = evalue
        self.timeout = timeout
        self._profiles: Dict[str, Path] = {}
        self._lock = threading.Lock()

    def build_query(self, name: str, alignment: Dict[str, str]) -> Optional[SearchQuery]:
        if not alignment:
            return None
        return SearchQuery(name=name, alignment=alignment)

    def _profile(self, query: SearchQuery, workspace: SearchWorkspace) -> Path:
        key = f"{workspace.path}:{query.name}"
        with self._lock:
            if key not in self._profiles:
                aln_path = workspace.path / f"{query.name}.afa"
                hmm_path = workspace.path / f"{query.name}.hmm"
                with open(aln_path, 'w') as f:
                    write_fasta(query.alignment, f)
                _run_tool(['hmmbuild', '--dna', '-n', query.name, str(hmm_path), str(aln_path)],
                          'hmmbuild', self.timeout)
                self._profiles[key] = hmm_path
            return self._profiles[key]

    def search(self, query: SearchQuery, genome_index: int, workspace: SearchWorkspace) -> List[Hit]:
        hmm_path = self._profile(query, workspace)
        fasta = workspace.genome_fasta(genome_index)
        tblout = workspace.path / f"{query.name}_{genome_index}.tbl"
        cmd = ['nhmmer', '--noali', '--tblout', str(tblout), '-E', str(self.evalue),
               str(hmm_path), str(fasta)]
        _run_tool(cmd, 'nhmmer', self.timeout)
        with open(tblout) as f:
            return self.parse_tblout(f.read(), genome_index, workspace)

    def parse_tblout(self, text: str, genome_index: int, workspace: SearchWorkspace) -> List[Hit]:
        """Parse an ``nhmmer --tblout`` table into filtered hits."""
        hits = []
        for line in text.splitlines():
            if not line.strip() or line.startswith('#'):
                continue
            fields = line.split()
            if len(fields) < 14:
                continue
            target = fields[0]
            ali_from, ali_to = int(fields[6]), int(fields[7])
            strand = -1 if fields[11] == '-' else 1
            evalue = float(fields[12])
            score = float(fields[13])
            if score < self.score or evalue > self.evalue:
                continue

            contig = workspace.resolve_contig(genome_index, target)
            if contig is None:
                logger.warning(f"Unknown target {target} in genome {genome_index}")
                continue
            hits.append(Hit(
                genome_index=genome_index,
                contig=contig.id,
                start=min(ali_from, ali_to),
                end=max(ali_from, ali_to),
                strand=strand,
                score=score,
                evalue=evalue,
            ))
        return hits


def search_genomes(backend, query: SearchQuery, workspace: SearchWorkspace,
                   threads: int = 1, timeout: Optional[float] = None) -> List[Hit]:
    """
    Search a query against every genome of the workspace.

    Genomes are searched concurrently. ``timeout`` is one deadline for the
    whole batch: a genome whose search fails or has not finished by then
    contributes no hits, the failure is logged and the other genomes are
    still reported. A search already running past the deadline is not
    awaited; it ends in the background, bounded by the subprocess timeout
    of the backend.

    Returns:
        Hits sorted by (genome index, contig, start)
    """
    hits: List[Hit] = []
    n_genomes = len(workspace.genomes)
    deadline = time.monotonic() + timeout if timeout is not None else None
    executor = ThreadPoolExecutor(max_workers=max(1, threads))
    try:
        futures = {
            genome_index: executor.submit(backend.search, query, genome_index, workspace)
            for genome_index in range(n_genomes)
        }
        for genome_index, future in futures.items():
            genome_name = workspace.genomes[genome_index].name
            remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
            try:
                hits.extend(future.result(timeout=remaining))
            except FutureTimeoutError:
                future.cancel()
                logger.warning(f"Search of {query.name} context timed out on genome {genome_name}")
            except CollaboratorError as e:
                logger.warning(f"Search of {query.name} context failed on genome {genome_name}: {e}")
    finally:
        executor.shutdown(wait=deadline is None)

    hits.sort(key=lambda h: (h.genome_index, h.contig, h.start))
    logger.debug(f"{len(hits)} hits for {query.name} context across {n_genomes} genomes")
    return hits


def create_backend(config, timeout: Optional[float] = None):
    """Instantiate the search backend named by an extension configuration."""
    if config.algorithm == 'blast':
        return BlastSearch(
            similarity=config.similarity,
            score=config.score,
            evalue=config.e,
            program=config.p,
            consensus_perc=config.consensusperc,
            timeout=timeout,
        )
    if config.algorithm == 'hmmer':
        return HmmerSearch(score=config.score, evalue=config.e, timeout=timeout)
    raise ConfigurationError(f"Unsupported search algorithm: {config.algorithm}")
