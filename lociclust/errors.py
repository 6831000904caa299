"""
Exception hierarchy for lociclust.

Authoring errors (grammar, references, cycles, configuration) are raised
while rule files are read and must be fixed by the author. Runtime errors
(evaluation, collaborators) are raised while loci are compared or groups
are extended.
"""

from typing import Optional, Sequence


class LociclustError(Exception):
    """Base class for all lociclust errors."""


class GrammarError(LociclustError, ValueError):
    """Expression text does not match the grammar of its declared kind."""

    def __init__(self, message: str, text: Optional[str] = None,
                 kind: Optional[str] = None, name: Optional[str] = None):
        self.text = text
        self.kind = kind
        self.name = name
        details = []
        if name is not None:
            details.append(f"variable '{name}'")
        if kind is not None:
            details.append(f"kind '{kind}'")
        if text is not None:
            details.append(f"text '{text}'")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class UndefinedReferenceError(LociclustError, ValueError):
    """A name is used but never declared."""

    def __init__(self, name: str, referrer: Optional[str] = None):
        self.name = name
        self.referrer = referrer
        message = f"Undefined variable '{name}'"
        if referrer is not None:
            message += f" referenced from '{referrer}'"
        super().__init__(message)


class CyclicDefinitionError(LociclustError, ValueError):
    """A variable refers back to itself, directly or indirectly."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic definition: {' -> '.join(self.cycle)}")


class EvaluationError(LociclustError):
    """An expression tree could not be evaluated for a pair of loci."""


class ConfigurationError(LociclustError, ValueError):
    """Invalid extension or run configuration."""


class CollaboratorError(LociclustError):
    """An external alignment or search backend failed."""

    def __init__(self, message: str, tool: Optional[str] = None,
                 stderr: Optional[str] = None):
        self.tool = tool
        self.stderr = stderr
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)
