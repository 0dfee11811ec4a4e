"""Weighted aggregation of rule sets into a single verdict.

A :class:`Checkpoint` runs its registered rules against a context and folds their
reports into one :class:`RuleReport`. The verdict passes only when no rule failed;
weights only influence the confidence score.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from litestar_sagas.rules.report import RuleReport

if TYPE_CHECKING:
    from datetime import timedelta

    from litestar_sagas.core.protocols import RuleSetProtocol

__all__ = ["Checkpoint", "RuleEntry"]

logger = logging.getLogger(__name__)


@dataclass
class RuleEntry:
    """A rule registered on a checkpoint.

    Attributes:
        key: Stable identifier used to remove, enable or disable the rule.
        rule: The rule set.
        weight: Positive weight applied to the rule's confidence.
        critical: Whether a failure of this rule is critical.
        enabled: Whether the rule takes part in evaluation.
    """

    key: str
    rule: RuleSetProtocol
    weight: float = 1.0
    critical: bool = False
    enabled: bool = True


class Checkpoint:
    """An ordered, keyed collection of weighted rules.

    Rules are registered once at setup time. Evaluation never mutates the
    checkpoint, so one instance can be shared by any number of concurrent runs.

    Example:
        >>> checkpoint = (
        ...     Checkpoint("order_validation", fail_fast=True)
        ...     .add_rule(RequiredKeysRuleSet(["customer_id", "items"]), critical=True)
        ...     .add_rule(ThresholdRuleSet("order_total", maximum=500), weight=0.5)
        ... )
        >>> report = await checkpoint.run({"customer_id": "c-1", "items": ["sku-1"], "order_total": 120})
        >>> report.passed, report.confidence
        (True, 100)
    """

    def __init__(
        self,
        name: str,
        *,
        fail_fast: bool = False,
        parallel: bool = False,
        rule_timeout: timedelta | None = None,
    ) -> None:
        """Initialize the checkpoint.

        Args:
            name: Name reported in the aggregate report.
            fail_fast: In sequential mode, skip the remaining rules once a
                critical rule fails.
            parallel: Evaluate all rules concurrently instead of in order.
            rule_timeout: Time limit for each rule evaluation.
        """
        self.name = name
        self.fail_fast = fail_fast
        self.parallel = parallel
        self.rule_timeout = rule_timeout
        self._entries: dict[str, RuleEntry] = {}

    def __repr__(self) -> str:
        return f"Checkpoint(name={self.name!r}, rules={list(self._entries)!r})"

    def __len__(self) -> int:
        return len(self._entries)

    def add_rule(
        self,
        rule: RuleSetProtocol,
        weight: float = 1.0,
        critical: bool = False,
        *,
        key: str | None = None,
    ) -> Checkpoint:
        """Register a rule.

        Args:
            rule: The rule set to register.
            weight: Positive weight for the confidence score.
            critical: Whether a failure of the rule is critical.
            key: Identifier of the rule; defaults to the rule's name.

        Returns:
            The checkpoint, for chaining.

        Raises:
            ValueError: If the weight is not positive or the key is taken.
        """
        if weight <= 0:
            msg = f"Rule weight must be positive, got {weight}"
            raise ValueError(msg)
        key = key or rule.name
        if key in self._entries:
            msg = f"Rule '{key}' is already registered on checkpoint '{self.name}'"
            raise ValueError(msg)
        self._entries[key] = RuleEntry(key=key, rule=rule, weight=weight, critical=critical)
        return self

    def remove_rule(self, key: str) -> RuleEntry:
        """Unregister a rule and return its entry.

        Raises:
            KeyError: If no rule has this key.
        """
        return self._entries.pop(self._require(key).key)

    def enable_rule(self, key: str) -> None:
        """Include a disabled rule in evaluation again."""
        self._require(key).enabled = True

    def disable_rule(self, key: str) -> None:
        """Exclude a rule from evaluation without unregistering it."""
        self._require(key).enabled = False

    def keys(self) -> list[str]:
        """Return the keys of all registered rules in registration order."""
        return list(self._entries)

    def get_entry(self, key: str) -> RuleEntry:
        """Return the entry registered under ``key``.

        Raises:
            KeyError: If no rule has this key.
        """
        return self._require(key)

    def _require(self, key: str) -> RuleEntry:
        try:
            return self._entries[key]
        except KeyError:
            msg = f"Rule '{key}' is not registered on checkpoint '{self.name}'"
            raise KeyError(msg) from None

    @property
    def enabled_entries(self) -> list[RuleEntry]:
        """Enabled rules in registration order."""
        return [entry for entry in self._entries.values() if entry.enabled]

    async def run(self, context: Mapping[str, Any]) -> RuleReport:
        """Evaluate every enabled rule and aggregate the reports.

        Rule failures, exceptions and timeouts are all reported through the
        returned report; this method does not raise for them.

        Args:
            context: The data to validate.

        Returns:
            The aggregate report. Its metadata carries ``rules_executed``,
            ``critical_failure``, ``skipped`` and ``individual_reports``.
        """
        started = time.perf_counter()
        entries = self.enabled_entries
        skipped: list[str] = []

        if self.parallel:
            reports = list(await asyncio.gather(*(self._evaluate(entry, context) for entry in entries)))
            executed = entries
        else:
            reports = []
            executed = []
            for index, entry in enumerate(entries):
                report = await self._evaluate(entry, context)
                reports.append(report)
                executed.append(entry)
                if self.fail_fast and _is_critical_failure(entry, report):
                    skipped = [remaining.key for remaining in entries[index + 1 :]]
                    logger.debug("Checkpoint %s stopped at critical rule %s", self.name, entry.key)
                    break

        return self._aggregate(executed, reports, skipped, (time.perf_counter() - started) * 1000)

    async def evaluate(self, context: Mapping[str, Any]) -> RuleReport:
        """Alias of :meth:`run`, so a checkpoint can be nested in another one."""
        return await self.run(context)

    async def analyze_rules(self, context: Mapping[str, Any]) -> dict[str, Any]:
        """Evaluate every enabled rule individually and describe the outcome.

        Unlike :meth:`run`, this never stops early and always evaluates rules in
        registration order.

        Args:
            context: The data to validate.

        Returns:
            A dict with the checkpoint name, a per-rule analysis and
            recommendations for the rules that failed.
        """
        rules: list[dict[str, Any]] = []
        recommendations: list[str] = []
        for entry in self.enabled_entries:
            report = await self._evaluate(entry, context)
            rules.append(
                {
                    "key": entry.key,
                    "rule_name": report.rule_name,
                    "weight": entry.weight,
                    "critical": entry.critical,
                    "passed": report.passed,
                    "confidence": report.effective_confidence,
                    "reasons": list(report.reasons),
                    "duration_ms": report.duration_ms,
                }
            )
            if report.passed:
                continue
            reasons = "; ".join(report.reasons) or "no reason given"
            if entry.critical or report.metadata.get("error"):
                recommendations.append(f"Critical rule '{entry.key}' failed and blocks the checkpoint: {reasons}")
            else:
                recommendations.append(f"Review rule '{entry.key}' (weight {entry.weight:g}): {reasons}")
        return {"checkpoint": self.name, "rules": rules, "recommendations": recommendations}

    async def _evaluate(self, entry: RuleEntry, context: Mapping[str, Any]) -> RuleReport:
        timeout = self.rule_timeout.total_seconds() if self.rule_timeout is not None else None
        started = time.perf_counter()
        try:
            if self.parallel and not _is_async(entry.rule):
                report = await asyncio.wait_for(asyncio.to_thread(entry.rule.evaluate, context), timeout)
            else:
                result = entry.rule.evaluate(context)
                report = await asyncio.wait_for(result, timeout) if inspect.isawaitable(result) else result
        except asyncio.TimeoutError:
            logger.warning("Rule %s on checkpoint %s timed out after %ss", entry.key, self.name, timeout)
            return RuleReport.failure(
                entry.rule.name,
                [f"Rule timed out after {timeout:g}s"],
                metadata={"timeout": True},
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        except Exception as exc:
            logger.error("Rule %s on checkpoint %s raised", entry.key, self.name, exc_info=True)
            return RuleReport.failure(
                entry.rule.name,
                [f"Rule raised {type(exc).__name__}: {exc}"],
                metadata={"error": type(exc).__name__},
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        logger.debug("Rule %s evaluated in %.2fms (passed=%s)", entry.key, report.duration_ms, report.passed)
        return report

    def _aggregate(
        self,
        entries: list[RuleEntry],
        reports: list[RuleReport],
        skipped: list[str],
        duration_ms: float,
    ) -> RuleReport:
        total_weight = sum(entry.weight for entry in entries)
        weighted = sum(entry.weight * report.effective_confidence for entry, report in zip(entries, reports))
        confidence = _round_half_up(weighted / total_weight) if total_weight else 0
        critical_failure = any(_is_critical_failure(entry, report) for entry, report in zip(entries, reports))
        reasons = [reason for report in reports if not report.passed for reason in report.reasons]

        return RuleReport(
            rule_name=self.name,
            passed=all(report.passed for report in reports),
            reasons=tuple(reasons),
            confidence=max(0, min(100, confidence)),
            metadata={
                "rules_executed": len(reports),
                "critical_failure": critical_failure,
                "skipped": skipped,
                "individual_reports": reports,
            },
            duration_ms=duration_ms,
        )


def _is_async(rule: RuleSetProtocol) -> bool:
    return inspect.iscoroutinefunction(rule.evaluate)


def _is_critical_failure(entry: RuleEntry, report: RuleReport) -> bool:
    # a rule that raised counts as critical whatever its registration says
    return not report.passed and (entry.critical or "error" in report.metadata)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)
