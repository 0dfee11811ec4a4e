"""Rule evaluation pipeline.

This module exports the rule sets, the weighted checkpoint that aggregates them and
the report type both produce.
"""

from __future__ import annotations

from litestar_sagas.rules.checkpoint import Checkpoint, RuleEntry
from litestar_sagas.rules.report import RuleReport
from litestar_sagas.rules.ruleset import PredicateRuleSet, RequiredKeysRuleSet, RuleSet, ThresholdRuleSet

__all__ = [
    "Checkpoint",
    "PredicateRuleSet",
    "RequiredKeysRuleSet",
    "RuleEntry",
    "RuleReport",
    "RuleSet",
    "ThresholdRuleSet",
]
