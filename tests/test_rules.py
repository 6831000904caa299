"""Tests for lociclust.io.rules."""

import pytest
from lociclust.config import ExtensionConfig
from lociclust.core.evaluator import evaluate
from lociclust.core.operators import BinaryOp, Kind, Literal, Op
from lociclust.core.parser import ExpressionParser
from lociclust.errors import (
    ConfigurationError,
    CyclicDefinitionError,
    GrammarError,
    UndefinedReferenceError,
)
from lociclust.io.rules import dump_rule, dump_rules, load_rules, parse_rules

from conftest import ExactAligner

VNTR_RULES = """
# VNTR grouping by upstream context
[ rulegroup ]
glob source = 'VNTR'
glob target = 'VNTR'
var bool same   = up_sim > 0.75   # declared before its operands
var num  up_sim = up1 aln-sim with up2
var seq  up1    = FEAT1 at [-1,-20..-1]
var seq  up2    = FEAT2 at [-1,-20..-1]
eval same

[ groupextension ]
ext = '-function context -upstream 500 -downstream 500 -algorithm blast'
eval ext

[ notes ]
anything goes here
"""


class TestParseRules:
    """Test rule file parsing."""

    def test_single_rule(self):
        ruleset = parse_rules(VNTR_RULES)
        assert len(ruleset) == 1
        rule = ruleset.rules[0]
        assert rule.name == 'same'
        assert (rule.source, rule.target) == ('VNTR', 'VNTR')
        assert rule.condition.kind == Kind.BOOL
        assert rule.extension.upstream == 500
        assert rule.extension.downstream == 500
        assert 'up_sim' in ruleset.parser

    def test_globs_apply_to_following_evals(self):
        text = """
[ rulegroup ]
glob source = "A"
glob target = "B"
var bool always = true
eval always
glob source = 'C'
var bool never = false
eval never
"""
        ruleset = parse_rules(text)
        assert [(r.source, r.target, r.name) for r in ruleset] == [
            ('A', 'B', 'always'), ('C', 'B', 'never')]

    def test_extension_attaches_to_latest_rule(self):
        text = """
[ rulegroup ]
glob source = 'VNTR'
glob target = 'VNTR'
var bool a = true
var bool b = false
eval a
eval b
[ groupextension ]
ext = '-feature 1'
eval ext
"""
        ruleset = parse_rules(text)
        assert ruleset.rules[0].extension is None
        assert ruleset.rules[1].extension.feature is True

    def test_no_rules(self):
        assert len(parse_rules("# nothing\n[ notes ]\nfree text\n")) == 0

    def test_criteria(self, blocks_group):
        rule = parse_rules(VNTR_RULES).rules[0]
        criteria = rule.criteria(blocks_group, aligner=ExactAligner())
        assert criteria.source == 'VNTR'
        assert criteria.extension is rule.extension
        assert criteria.aligner is not None

    def test_load_rules(self, tmp_path):
        path = tmp_path / "vntr.rules"
        path.write_text(VNTR_RULES)
        assert len(load_rules(path)) == 1


class TestRuleErrors:
    """Test rule file errors."""

    def test_extension_before_rule(self):
        text = "[ groupextension ]\next = '-upstream 10'\neval ext\n"
        with pytest.raises(ConfigurationError):
            parse_rules(text)

    def test_undefined_extension(self):
        text = VNTR_RULES.replace("eval ext", "eval other")
        with pytest.raises(ConfigurationError):
            parse_rules(text)

    def test_invalid_extension_options(self):
        text = VNTR_RULES.replace("-algorithm blast", "-algorithm diamond")
        with pytest.raises(ConfigurationError):
            parse_rules(text)

    def test_bad_statement(self):
        with pytest.raises(GrammarError):
            parse_rules("[ rulegroup ]\nthis is not a statement\n")

    def test_missing_globs(self):
        with pytest.raises(GrammarError):
            parse_rules("[ rulegroup ]\nvar bool a = true\neval a\n")

    def test_non_boolean_eval(self):
        text = "[ rulegroup ]\nglob source = 'V'\nglob target = 'V'\nvar num n = 1 + 2\neval n\n"
        with pytest.raises(GrammarError):
            parse_rules(text)

    def test_undefined_eval(self):
        text = "[ rulegroup ]\nglob source = 'V'\nglob target = 'V'\neval missing\n"
        with pytest.raises(UndefinedReferenceError):
            parse_rules(text)

    def test_cycle(self):
        text = ("[ rulegroup ]\nglob source = 'V'\nglob target = 'V'\n"
                "var bool a = b & true\nvar bool b = a | false\neval a\n")
        with pytest.raises(CyclicDefinitionError):
            parse_rules(text)


ALL_OPERATORS = [
    ('seq', 'up1', 'FEAT1 at [-1,-5..-1]'),
    ('seq', 'up2', 'FEAT2 at [-1,-5..-1]'),
    ('seq', 'whole', 'FEAT1 at [0,0..0]'),
    ('seq', 'r2', 'revcomp up2'),
    ('seq', 's1', 'seq FEAT1'),
    ('seq', 'lit', 'ACGTA'),
    ('num', 'sim', 'up1 aln-sim with up2'),
    ('num', 'simr', 'up1 aln-score r2'),
    ('num', 'self', 's1 aln-sim whole'),
    ('num', 'other', 'lit aln-sim s1'),
    ('num', 'a', 'sim * 2'),
    ('num', 'b', 'a - 0.5'),
    ('num', 'c', 'b / 4'),
    ('num', 'd', 'c % 3'),
    ('num', 'e', 'd ** 2'),
    ('num', 'f', 'e + simr'),
    ('bool', 'g', 'f >= 0.1'),
    ('bool', 'h', 'sim < 0.5'),
    ('bool', 'i', 'g xor h'),
    ('bool', 'j', 'not i'),
    ('bool', 'k', 'j or g'),
    ('bool', 'l', 'k and true'),
    ('bool', 'm', 'self > other'),
    ('bool', 'n', 'l <= m'),
    ('bool', 'root', 'n | h'),
]


class TestDumpRules:
    """Test writing condition trees back to rule text."""

    def _condition(self):
        parser = ExpressionParser()
        for kind, name, text in ALL_OPERATORS:
            parser.declare(kind, name, text)
        return parser.parse('root')

    def test_round_trip_tree(self):
        """Test dumped text parses back to an equal tree."""
        condition = self._condition()
        text = dump_rules(condition, source='VNTR')
        parsed = parse_rules(text).rules[0]
        assert parsed.condition == condition
        assert (parsed.source, parsed.target) == ('VNTR', 'VNTR')

    def test_round_trip_values(self, blocks_group):
        condition = self._condition()
        parsed = parse_rules(dump_rules(condition, source='VNTR')).rules[0].condition
        loci = blocks_group.loci
        for feat1, feat2 in [(loci[2], loci[1]), (loci[4], loci[1]), (loci[5], loci[3])]:
            assert evaluate(parsed, feat1, feat2) == evaluate(condition, feat1, feat2)

    def test_dependencies_declared_first(self):
        lines = dump_rules(self._condition()).splitlines()
        declared = [line.split()[2] for line in lines if line.startswith('var ')]
        assert declared.index('up1') < declared.index('sim') < declared.index('root')
        assert lines[-1] == 'eval root'

    def test_unnamed_nodes_named(self):
        condition = BinaryOp(Kind.BOOL, Op.AND,
                             BinaryOp(Kind.BOOL, Op.GT, Literal(Kind.NUM, 3.0), Literal(Kind.NUM, 2.0)),
                             Literal(Kind.BOOL, True))
        text = dump_rules(condition)
        assert "var bool _v1 = 3 > 2" in text
        assert "var bool _v2 = _v1 and true" in text
        rule = parse_rules(text).rules[0]
        assert evaluate(rule.condition, None, None) is True

    def test_literal_condition(self):
        rule = parse_rules(dump_rules(Literal(Kind.BOOL, False))).rules[0]
        assert rule.name == 'condition'
        assert rule.condition.value is False

    def test_extension_round_trip(self):
        extension = ExtensionConfig(upstream=500, downstream=400, detectstrand=True,
                                    similarity=0.9, algorithm='hmmer')
        rule = parse_rules(VNTR_RULES).rules[0]
        rule.extension = extension
        parsed = parse_rules(dump_rule(rule)).rules[0]
        assert parsed.extension == extension
        assert parsed.condition == rule.condition


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
