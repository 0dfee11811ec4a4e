"""Rule sets: pure validation functions over a context.

A rule set holds only configuration set at construction time (thresholds,
required keys) and scores a context into a :class:`RuleReport`. It must not
reach out to external services; everything it needs has to be in the context.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from litestar_sagas.rules.report import RuleReport

__all__ = ["PredicateRuleSet", "RequiredKeysRuleSet", "RuleSet", "ThresholdRuleSet"]


class RuleSet:
    """Base implementation for rule sets.

    Subclasses usually implement :meth:`check`, returning the list of failure
    reasons; an empty list means the rule passed. Override :meth:`evaluate`
    directly for rules that need to report a custom confidence.

    Example:
        >>> class ActiveCustomer(RuleSet):
        ...     def check(self, context):
        ...         status = context["customer"]["status"]
        ...         return [] if status == "active" else [f"Customer account is {status}"]
        >>> ActiveCustomer().evaluate({"customer": {"status": "banned"}}).passed
        False
    """

    name: str = ""
    """Name reported in :attr:`RuleReport.rule_name`; defaults to the class name."""

    def __init__(self, name: str | None = None) -> None:
        self.name = name or self.name or type(self).__name__

    def check(self, context: Mapping[str, Any]) -> list[str]:
        """Return the reasons ``context`` violates the rule.

        Args:
            context: The data to validate.

        Returns:
            Failure reasons, empty when the rule passes.

        Raises:
            NotImplementedError: Must be implemented by subclasses.
        """
        msg = f"Rule set {self.name} must implement check() or evaluate()"
        raise NotImplementedError(msg)

    def metadata(self, context: Mapping[str, Any]) -> dict[str, Any]:
        """Return extra details attached to every report; empty by default."""
        return {}

    def evaluate(self, context: Mapping[str, Any]) -> RuleReport:
        """Score ``context`` against the rule.

        Args:
            context: The data to validate.

        Returns:
            A new report; failed rules report confidence 0.
        """
        started = time.perf_counter()
        reasons = self.check(context)
        duration_ms = (time.perf_counter() - started) * 1000
        if reasons:
            return RuleReport.failure(
                self.name,
                reasons,
                metadata=self.metadata(context),
                duration_ms=duration_ms,
            )
        return RuleReport.success(self.name, metadata=self.metadata(context), duration_ms=duration_ms)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class PredicateRuleSet(RuleSet):
    """Rule passing when a predicate over the context holds.

    Example:
        >>> rule = PredicateRuleSet("in_stock", lambda ctx: ctx["stock"] > 0, "Product is out of stock")
    """

    def __init__(
        self,
        name: str,
        predicate: Callable[[Mapping[str, Any]], bool],
        reason: str,
        *,
        confidence_on_failure: int = 0,
    ) -> None:
        """Initialize the rule.

        Args:
            name: Rule name.
            predicate: Condition that must hold.
            reason: Reason reported when the predicate does not hold.
            confidence_on_failure: Confidence reported on failure.
        """
        super().__init__(name)
        self.predicate = predicate
        self.reason = reason
        self.confidence_on_failure = confidence_on_failure

    def evaluate(self, context: Mapping[str, Any]) -> RuleReport:
        started = time.perf_counter()
        passed = bool(self.predicate(context))
        duration_ms = (time.perf_counter() - started) * 1000
        if passed:
            return RuleReport.success(self.name, duration_ms=duration_ms)
        return RuleReport.failure(
            self.name,
            [self.reason],
            confidence=self.confidence_on_failure,
            duration_ms=duration_ms,
        )


class RequiredKeysRuleSet(RuleSet):
    """Rule requiring the context to carry non-empty values for the given keys."""

    def __init__(self, keys: Sequence[str], name: str | None = None) -> None:
        super().__init__(name)
        self.keys = tuple(keys)

    def check(self, context: Mapping[str, Any]) -> list[str]:
        return [f"Missing required value '{key}'" for key in self.keys if context.get(key) in (None, "", [], {})]


class ThresholdRuleSet(RuleSet):
    """Rule requiring a numeric context value to lie within bounds.

    Reports a partial confidence on failure proportional to how close the value
    is to the violated bound.

    Example:
        >>> rule = ThresholdRuleSet("order_total", maximum=500, name="new_customer_limit")
        >>> rule.evaluate({"order_total": 750}).reasons
        ('order_total is 750, above the maximum of 500',)
    """

    def __init__(
        self,
        key: str,
        *,
        minimum: float | None = None,
        maximum: float | None = None,
        name: str | None = None,
    ) -> None:
        """Initialize the rule.

        Args:
            key: Context key holding the value.
            minimum: Inclusive lower bound, if any.
            maximum: Inclusive upper bound, if any.
            name: Rule name; defaults to the class name.

        Raises:
            ValueError: If no bound is given or the bounds are inverted.
        """
        if minimum is None and maximum is None:
            msg = "ThresholdRuleSet needs a minimum or a maximum"
            raise ValueError(msg)
        if minimum is not None and maximum is not None and minimum > maximum:
            msg = f"minimum {minimum} is greater than maximum {maximum}"
            raise ValueError(msg)
        super().__init__(name)
        self.key = key
        self.minimum = minimum
        self.maximum = maximum

    def evaluate(self, context: Mapping[str, Any]) -> RuleReport:
        started = time.perf_counter()
        value = context.get(self.key)
        reasons: list[str] = []
        confidence = 100

        if not isinstance(value, (int, float)) or isinstance(value, bool):
            reasons.append(f"{self.key} is not a number: {value!r}")
            confidence = 0
        elif self.minimum is not None and value < self.minimum:
            reasons.append(f"{self.key} is {value:g}, below the minimum of {self.minimum:g}")
            confidence = self._closeness(value, self.minimum)
        elif self.maximum is not None and value > self.maximum:
            reasons.append(f"{self.key} is {value:g}, above the maximum of {self.maximum:g}")
            confidence = self._closeness(value, self.maximum)

        duration_ms = (time.perf_counter() - started) * 1000
        metadata = {"value": value, "minimum": self.minimum, "maximum": self.maximum}
        if reasons:
            return RuleReport.failure(self.name, reasons, confidence=confidence, metadata=metadata, duration_ms=duration_ms)
        return RuleReport.success(self.name, metadata=metadata, duration_ms=duration_ms)

    @staticmethod
    def _closeness(value: float, bound: float) -> int:
        if bound == 0:
            return 0
        ratio = min(value, bound) / max(value, bound) if value > 0 and bound > 0 else 0
        return max(0, min(99, int(ratio * 100)))
