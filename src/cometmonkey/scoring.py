"""
Deterministic scoring for audit results.

Every score is ``max(0, 100 - total_penalty)``. Findings-based audits
(accessibility, security) sum a per-finding penalty looked up in a fixed
weight table; the performance audit derives its penalty from measured
metrics crossing fixed thresholds. Grades are a step function over the
score with fixed cutpoints.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from cometmonkey.models import Finding, FindingCategory, Grade, Severity

MAX_SCORE = 100

# Lower bound (inclusive) of each grade band, checked top to bottom.
GRADE_CUTPOINTS: tuple[tuple[int, Grade], ...] = (
    (90, Grade.A),
    (80, Grade.B),
    (70, Grade.C),
    (50, Grade.D),
    (0, Grade.F),
)


@dataclass(frozen=True)
class PenaltyTable:
    """Point cost per (category, severity) for one analyzer."""

    name: str
    violation: Mapping[Severity, int]
    warning: Mapping[Severity, int]

    def penalty(self, finding: Finding) -> int:
        """Return the cost of one finding; passed and incomplete cost nothing."""
        if finding.severity is None:
            return 0
        if finding.category == FindingCategory.VIOLATION:
            return self.violation[finding.severity]
        if finding.category == FindingCategory.WARNING:
            return self.warning[finding.severity]
        return 0


def _flat(points: int) -> dict[Severity, int]:
    return {severity: points for severity in Severity}


ACCESSIBILITY_PENALTIES = PenaltyTable(
    name="accessibility",
    violation=_flat(10),
    warning=_flat(5),
)

SECURITY_PENALTIES = PenaltyTable(
    name="security",
    violation={
        Severity.CRITICAL: 20,
        Severity.HIGH: 10,
        Severity.MEDIUM: 5,
        Severity.LOW: 2,
    },
    warning={
        Severity.CRITICAL: 10,
        Severity.HIGH: 5,
        Severity.MEDIUM: 3,
        Severity.LOW: 1,
    },
)


@dataclass(frozen=True)
class MetricThreshold:
    """Threshold bands for one performance metric.

    Values above ``needs_improvement`` cost ``minor_penalty``; values above
    ``poor`` cost ``major_penalty`` instead. Missing metrics cost nothing.
    """

    metric: str
    label: str
    needs_improvement: float
    poor: float
    minor_penalty: int
    major_penalty: int
    unit: str = "ms"

    def rating(self, value: float | None) -> str | None:
        """Classify a measurement as good, needs-improvement or poor."""
        if value is None:
            return None
        if value > self.poor:
            return "poor"
        if value > self.needs_improvement:
            return "needs-improvement"
        return "good"

    def penalty(self, value: float | None) -> int:
        match self.rating(value):
            case "poor":
                return self.major_penalty
            case "needs-improvement":
                return self.minor_penalty
            case _:
                return 0


PERFORMANCE_THRESHOLDS: tuple[MetricThreshold, ...] = (
    MetricThreshold("lcp", "Largest Contentful Paint", 2500, 4000, 15, 35),
    MetricThreshold("fid", "First Input Delay", 100, 300, 10, 25),
    MetricThreshold("cls", "Cumulative Layout Shift", 0.1, 0.25, 10, 25, unit=""),
    MetricThreshold("total_time", "Total Load Time", 3000, 5000, 5, 15),
)


def clamp_score(penalty: int | float) -> int:
    """Convert a total penalty into a score in [0, 100]."""
    return int(max(0, MAX_SCORE - penalty))


def score_findings(findings: Iterable[Finding], table: PenaltyTable) -> int:
    """Score a collection of findings against a penalty table."""
    return clamp_score(sum(table.penalty(finding) for finding in findings))


def score_metrics(
    metrics: Mapping[str, Any],
    thresholds: Iterable[MetricThreshold] = PERFORMANCE_THRESHOLDS,
) -> int:
    """Score flat performance measurements against threshold bands.

    Args:
        metrics: Mapping of metric name to measured value (None if absent)
        thresholds: Threshold bands to apply

    Returns:
        Score in [0, 100]
    """
    total = 0
    for threshold in thresholds:
        value = metrics.get(threshold.metric)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        total += threshold.penalty(float(value))
    return clamp_score(total)


def grade_for_score(score: int) -> Grade:
    """Map a score onto its grade band."""
    for lower_bound, grade in GRADE_CUTPOINTS:
        if score >= lower_bound:
            return grade
    return Grade.F
