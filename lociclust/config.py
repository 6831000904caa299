"""
Configuration classes for lociclust.

``ExtensionConfig`` holds the options of a group extension, as written in
the ``[ groupextension ]`` section of a rule file::

    ext = '-function context -upstream 500 -downstream 500 -algorithm blast'

``RunConfig`` holds the inputs and knobs of a full run, read from YAML.
"""

import re
import shlex
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError

SUPPORTED_FUNCTIONS = ('context',)
SUPPORTED_ALGORITHMS = ('blast', 'hmmer')

# Option value coercions
_BOOL_OPTIONS = {'detectstrand', 'feature', 'alldetected', 'oneside'}
_INT_OPTIONS = {'upstream', 'downstream', 'maxlen', 'minlen', 'threads'}
_FLOAT_OPTIONS = {'lensd', 'similarity', 'score', 'consensusperc', 'e', 'timeout'}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in ('1', 't', 'true', 'yes', 'y'):
        return True
    if text in ('0', 'f', 'false', 'no', 'n', ''):
        return False
    raise ConfigurationError(f"Invalid boolean value: {value}")


@dataclass(frozen=True)
class ExtensionConfig:
    """
    Options of a group extension.

    Attributes:
        function: Extension function ('context')
        upstream: Upstream context size (bp); 0 disables the direction
        downstream: Downstream context size (bp); 0 disables the direction
        detectstrand: Orient loci before building alignments
        feature: Also search the feature span itself
        algorithm: Search algorithm ('blast' or 'hmmer')
        score: Minimum hit score
        similarity: Minimum hit identity fraction (blast)
        e: Maximum hit E-value
        consensusperc: Consensus threshold, percent (blast)
        lensd: Standard deviations above the mean feature length for the
            maximum new feature length
        maxlen: Explicit maximum new feature length (0 = use lensd)
        minlen: Minimum new feature length
        alldetected: Keep candidates overlapping loci already in the group
        oneside: Accept candidates found by only one border
        p: BLAST program
        threads: Concurrent per-genome searches
        timeout: Seconds allowed per search call (None = no limit)
    """
    function: str = 'context'
    upstream: int = 0
    downstream: int = 0
    detectstrand: bool = False
    feature: bool = False
    algorithm: str = 'blast'
    score: float = 20.0
    similarity: float = 0.8
    e: float = 0.1
    consensusperc: float = 60.0
    lensd: float = 1.5
    maxlen: int = 0
    minlen: int = 0
    alldetected: bool = False
    oneside: bool = False
    p: str = 'blastn'
    threads: int = 1
    timeout: Optional[float] = None

    @property
    def has_borders(self) -> bool:
        return self.upstream > 0 or self.downstream > 0

    @property
    def context_size(self) -> int:
        """Context length used when detecting strands."""
        return max(self.upstream, self.downstream)

    def validate(self) -> 'ExtensionConfig':
        """Raise ConfigurationError for unsupported or empty configurations."""
        if self.function not in SUPPORTED_FUNCTIONS:
            raise ConfigurationError(f"Unsupported extension function: {self.function}")
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(f"Unsupported search algorithm: {self.algorithm}")
        if not self.has_borders and not self.feature:
            raise ConfigurationError(
                "Extension needs at least one of upstream, downstream or feature")
        if self.upstream < 0 or self.downstream < 0:
            raise ConfigurationError("Context sizes must not be negative")
        if self.minlen < 0 or self.maxlen < 0:
            raise ConfigurationError("Feature length limits must not be negative")
        if self.maxlen and self.minlen > self.maxlen:
            raise ConfigurationError(f"minlen ({self.minlen}) exceeds maxlen ({self.maxlen})")
        if not 0 <= self.consensusperc <= 100:
            raise ConfigurationError(f"consensusperc must be within 0..100, got {self.consensusperc}")
        return self

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ExtensionConfig':
        """Create from a mapping of option names (with or without leading '-')."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in d.items():
            name = str(key).lstrip('-').lower()
            if name not in known:
                raise ConfigurationError(f"Unknown extension option: {key}")
            values[name] = _coerce(name, value)
        return cls(**values).validate()

    @classmethod
    def from_text(cls, text: str) -> 'ExtensionConfig':
        """
        Parse ``-key value`` pairs.

        Examples:
            >>> ExtensionConfig.from_text("-upstream 500 -downstream 500").upstream
            500
        """
        tokens = shlex.split(text)
        if len(tokens) % 2:
            raise ConfigurationError(f"Odd number of tokens in extension options: {text}")
        pairs = {}
        for key, value in zip(tokens[0::2], tokens[1::2]):
            if not key.startswith('-'):
                raise ConfigurationError(f"Expecting an option name, got '{key}'")
            pairs[key] = value
        return cls.from_dict(pairs)

    def to_text(self) -> str:
        """Render the non-default options as ``-key value`` pairs."""
        defaults = ExtensionConfig()
        parts = []
        for f in fields(self):
            value = getattr(self, f.name)
            if value == getattr(defaults, f.name) and f.name not in ('function', 'algorithm'):
                continue
            if isinstance(value, bool):
                value = int(value)
            parts.append(f"-{f.name} {value}")
        return ' '.join(parts)


def _coerce(name: str, value: Any) -> Any:
    try:
        if name in _BOOL_OPTIONS:
            return _to_bool(value)
        if name in _INT_OPTIONS:
            return int(float(value))
        if name in _FLOAT_OPTIONS:
            if name == 'timeout' and (value is None or str(value).lower() in ('none', '0', '')):
                return None
            return float(value)
        return str(value).strip().lower() if name in ('function', 'algorithm') else str(value).strip()
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for option '{name}': {value}") from None


@dataclass
class RunConfig:
    """Full run configuration."""
    genomes: List[Path]
    loci: Path
    rules: Path
    output_dir: Path = Path('./results')

    # Processing options
    threads: int = 1
    extend: bool = True
    search_timeout: Optional[float] = None
    write_matrix: bool = False

    # External tools
    muscle: str = 'muscle'
    muscle_legacy: bool = False

    genome_names: List[str] = field(default_factory=list)

    def validate(self) -> List[str]:
        """Validate input paths. Returns list of errors."""
        errors = []
        for path in self.genomes:
            if not path.exists():
                errors.append(f"Genome file not found: {path}")
        if not self.loci.exists():
            errors.append(f"Loci table not found: {self.loci}")
        if not self.rules.exists():
            errors.append(f"Rule file not found: {self.rules}")
        if self.threads < 1:
            errors.append(f"threads must be at least 1, got {self.threads}")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> 'RunConfig':
        """Create from a dictionary; relative paths are resolved against base_dir."""
        base = Path(base_dir) if base_dir is not None else Path('.')

        def resolve(p) -> Path:
            path = Path(p)
            return path if path.is_absolute() else base / path

        for key in ('genomes', 'loci', 'rules'):
            if not data.get(key):
                raise ConfigurationError(f"Run configuration must define '{key}'")

        genome_entries = data['genomes']
        if isinstance(genome_entries, (str, Path)):
            genome_entries = [genome_entries]

        genomes = []
        names = []
        for entry in genome_entries:
            # Either a path or {name: ..., path: ...}
            if isinstance(entry, dict):
                genomes.append(resolve(entry['path']))
                names.append(str(entry.get('name', Path(entry['path']).stem)))
            else:
                genomes.append(resolve(entry))
                names.append(_genome_name(entry))

        muscle = data.get('muscle', 'muscle')
        muscle_legacy = False
        if isinstance(muscle, dict):
            muscle_legacy = bool(muscle.get('legacy', False))
            muscle = muscle.get('executable', 'muscle')

        return cls(
            genomes=genomes,
            loci=resolve(data['loci']),
            rules=resolve(data['rules']),
            output_dir=resolve(data.get('output_dir', './results')),
            threads=int(data.get('threads', 1)),
            extend=bool(data.get('extend', True)),
            search_timeout=data.get('search_timeout'),
            write_matrix=bool(data.get('matrix', False)),
            muscle=str(muscle),
            muscle_legacy=muscle_legacy,
            genome_names=names,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> 'RunConfig':
        """Load configuration from YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Run configuration must be a mapping: {path}")
        return cls.from_dict(data, base_dir=path.parent)


def _genome_name(path) -> str:
    """Genome name from its file name, without FASTA extensions."""
    name = Path(path).name
    return re.sub(r'\.(fa|fasta|fna|fas)(\.gz)?$', '', name, flags=re.IGNORECASE)
