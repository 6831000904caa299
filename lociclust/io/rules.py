"""
Rule files: grouping conditions and group extensions.

Example::

    [ rulegroup ]
    glob source = 'VNTR'
    glob target = 'VNTR'
    var seq  up1    = FEAT1 at [-1,-500..0]
    var seq  up2    = FEAT2 at [-1,-500..0]
    var num  up_sim = up1 aln-sim with up2
    var bool same   = up_sim > 0.75
    eval same

    [ groupextension ]
    ext = '-function context -upstream 500 -downstream 500'
    eval ext

Statements are read in two phases: every ``var`` declaration (and every
extension option string) is collected first, then the ``eval`` statements
are resolved in file order. Each ``eval`` in ``[ rulegroup ]`` creates a
rule with the source and target set at that point; an ``eval`` in
``[ groupextension ]`` attaches an extension to the latest rule.
Sections other than these two are ignored.
"""

import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from ..config import ExtensionConfig
from ..core.grouping import GroupCriteria
from ..core.models import LociGroup
from ..core.operators import (
    BinaryOp,
    Const,
    Kind,
    Literal,
    Node,
    UnaryOp,
    iter_named_nodes,
    to_expression,
)
from ..core.parser import ExpressionParser
from ..errors import ConfigurationError, GrammarError

logger = logging.getLogger(__name__)

SECTION_PATTERN = re.compile(r'^\[\s*([\w.-]+)\s*\]$')
GLOB_PATTERN = re.compile(r'^glob\s+(\w+)\s*=\s*([\'"])(.*)\2$', re.IGNORECASE)
VAR_PATTERN = re.compile(r'^var\s+(\S+)\s+([^\s=]+)\s*=\s*(.*?)\s*$', re.IGNORECASE)
EVAL_PATTERN = re.compile(r'^eval\s+(\S+)$', re.IGNORECASE)
KEY_PATTERN = re.compile(r'^([\w.-]+)\s*=\s*([\'"])(.*)\2$')

RULEGROUP = 'rulegroup'
GROUPEXTENSION = 'groupextension'


@dataclass
class GroupRule:
    """A grouping condition with its families and optional extension."""
    source: str
    target: str
    condition: Node
    extension: Optional[ExtensionConfig] = None

    @property
    def name(self) -> Optional[str]:
        return self.condition.var

    def criteria(self, loci: LociGroup, aligner=None) -> GroupCriteria:
        """Bind the rule to a working set of loci."""
        return GroupCriteria(self.source, self.target, self.condition, loci,
                             extension=self.extension, aligner=aligner)


class RuleSet:
    """Grouping rules read from a rule file."""

    def __init__(self, rules: Optional[List[GroupRule]] = None,
                 parser: Optional[ExpressionParser] = None):
        self.rules = rules if rules is not None else []
        self.parser = parser if parser is not None else ExpressionParser()

    def build_criteria(self, loci: LociGroup, aligner=None) -> List[GroupCriteria]:
        return [rule.criteria(loci, aligner) for rule in self.rules]

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[GroupRule]:
        return iter(self.rules)

    def __repr__(self) -> str:
        return f"RuleSet(rules={len(self.rules)}, variables={len(self.parser.declarations)})"


def _statements(text: str) -> Iterator[Tuple[int, Optional[str], str]]:
    """Yield (line number, section, statement) for every non-empty line."""
    section = None
    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.split('#', 1)[0].strip()
        if not line:
            continue
        match = SECTION_PATTERN.match(line)
        if match:
            section = match.group(1).lower()
            continue
        yield line_number, section, line


def parse_rules(text: str) -> RuleSet:
    """
    Parse rule-file text.

    Raises:
        GrammarError: Malformed statements or expressions
        UndefinedReferenceError: ``eval`` of an undeclared variable
        CyclicDefinitionError: Self-referential variables
        ConfigurationError: Invalid extension options, or an extension
            without a preceding grouping rule
    """
    parser = ExpressionParser()
    extension_options: Dict[str, str] = {}
    actions = []

    # Phase 1: collect declarations
    for line_number, section, line in _statements(text):
        if section not in (RULEGROUP, GROUPEXTENSION):
            logger.debug(f"Ignoring line {line_number} in section [{section}]")
            continue

        match = EVAL_PATTERN.match(line)
        if match:
            actions.append((line_number, section, 'eval', match.group(1)))
            continue

        if section == RULEGROUP:
            match = GLOB_PATTERN.match(line)
            if match:
                actions.append((line_number, section, match.group(1).lower(), match.group(3)))
                continue
            match = VAR_PATTERN.match(line)
            if match:
                kind, name, expression = match.groups()
                parser.declare(kind, name, expression)
                continue
        else:
            match = KEY_PATTERN.match(line)
            if match:
                extension_options[match.group(1)] = match.group(3)
                continue

        raise GrammarError(f"Bad statement at line {line_number} in [{section}]", text=line)

    # Phase 2: resolve evaluations in file order
    rules: List[GroupRule] = []
    globs: Dict[str, str] = {}
    for line_number, section, action, value in actions:
        if action != 'eval':
            globs[action] = value
            continue
        if section == RULEGROUP:
            source, target = globs.get('source'), globs.get('target')
            if not source or not target:
                raise GrammarError(f"'eval {value}' at line {line_number} needs glob source and target",
                                   name=value)
            condition = parser.parse(value)
            if condition.kind != Kind.BOOL:
                raise GrammarError("Grouping condition must be boolean", name=value,
                                   kind=condition.kind.value)
            rules.append(GroupRule(source=source, target=target, condition=condition))
            logger.debug(f"Grouping rule '{value}' ({source} -> {target})")
        else:
            if not rules:
                raise ConfigurationError(
                    f"Extension '{value}' at line {line_number} defined before any grouping rule")
            if value not in extension_options:
                raise ConfigurationError(f"Undefined extension '{value}' at line {line_number}")
            rules[-1].extension = ExtensionConfig.from_text(extension_options[value])

    logger.info(f"Parsed {len(rules)} grouping rules")
    return RuleSet(rules=rules, parser=parser)


def load_rules(path: Path) -> RuleSet:
    """Read a rule file."""
    with open(path) as f:
        return parse_rules(f.read())


def _name_nodes(root: Node) -> Node:
    """Give a variable name to every unnamed composite node."""
    counter = [0]

    def visit(node: Node) -> Node:
        if isinstance(node, (Const, Literal)):
            return node
        if isinstance(node, BinaryOp):
            node = replace(node, left=visit(node.left), right=visit(node.right))
        else:
            node = replace(node, operand=visit(node.operand))
        if node.var is None:
            counter[0] += 1
            node = replace(node, var=f"_v{counter[0]}")
        return node

    root = visit(root)
    if isinstance(root, Literal) and root.var is None:
        root = replace(root, var='condition')
    return root


def dump_rules(condition: Node, source: str = 'FEAT', target: Optional[str] = None,
               extension: Optional[ExtensionConfig] = None) -> str:
    """
    Write a condition tree as rule-file text.

    ``parse_rules`` reads the text back into an equivalent tree.
    """
    root = _name_nodes(condition)
    lines = ['[ rulegroup ]',
             f"glob source = '{source}'",
             f"glob target = '{target or source}'"]
    for node in iter_named_nodes(root):
        lines.append(f"var {node.kind.value} {node.var} = {to_expression(node)}")
    lines.append(f"eval {root.var}")

    if extension is not None:
        lines += ['', '[ groupextension ]',
                  f"ext = '{extension.to_text()}'",
                  'eval ext']
    return '\n'.join(lines) + '\n'


def dump_rule(rule: GroupRule) -> str:
    return dump_rules(rule.condition, rule.source, rule.target, rule.extension)
