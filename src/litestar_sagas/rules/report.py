"""Rule evaluation reports."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

__all__ = ["RuleReport"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RuleReport:
    """Outcome of evaluating one rule, or the aggregate of a checkpoint.

    Reports are produced fresh by every evaluation and never mutated. The
    ``evaluated_at`` and ``duration_ms`` fields are excluded from equality, so
    two evaluations of a pure rule on the same context compare equal.

    Attributes:
        rule_name: Name of the rule or checkpoint.
        passed: Whether the rule passed.
        reasons: Human-readable failure reasons, in rule order.
        confidence: Confidence between 0 and 100, or ``None`` if the rule does
            not report one.
        metadata: Free-form details for debugging and analytics.
        evaluated_at: When the evaluation finished.
        duration_ms: How long the evaluation took.

    Example:
        >>> report = RuleReport.failure("credit_limit", ["Order exceeds credit limit"], confidence=20)
        >>> report.effective_confidence
        20
    """

    rule_name: str
    passed: bool
    reasons: tuple[str, ...] = ()
    confidence: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)
    evaluated_at: datetime = field(default_factory=_now, compare=False)
    duration_ms: float = field(default=0.0, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.reasons, tuple):
            object.__setattr__(self, "reasons", tuple(self.reasons))
        if self.confidence is not None and not 0 <= self.confidence <= 100:
            msg = f"confidence must be between 0 and 100, got {self.confidence}"
            raise ValueError(msg)
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def success(
        cls,
        rule_name: str,
        *,
        confidence: int | None = 100,
        metadata: Mapping[str, Any] | None = None,
        duration_ms: float = 0.0,
    ) -> RuleReport:
        """Build a passing report."""
        return cls(
            rule_name=rule_name,
            passed=True,
            confidence=confidence,
            metadata=metadata or {},
            duration_ms=duration_ms,
        )

    @classmethod
    def failure(
        cls,
        rule_name: str,
        reasons: Sequence[str],
        *,
        confidence: int | None = 0,
        metadata: Mapping[str, Any] | None = None,
        duration_ms: float = 0.0,
    ) -> RuleReport:
        """Build a failing report."""
        return cls(
            rule_name=rule_name,
            passed=False,
            reasons=tuple(reasons),
            confidence=confidence,
            metadata=metadata or {},
            duration_ms=duration_ms,
        )

    @property
    def effective_confidence(self) -> int:
        """Confidence used for weighting: 100 when passed, else the reported value or 0."""
        if self.passed:
            return 100
        return self.confidence or 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize the report to a JSON-compatible dict (nested reports included)."""
        metadata = {
            key: [item.to_dict() if isinstance(item, RuleReport) else item for item in value]
            if isinstance(value, (list, tuple))
            else value
            for key, value in self.metadata.items()
        }
        return {
            "rule_name": self.rule_name,
            "passed": self.passed,
            "reasons": list(self.reasons),
            "confidence": self.confidence,
            "metadata": metadata,
            "evaluated_at": self.evaluated_at.isoformat(),
            "duration_ms": self.duration_ms,
        }
