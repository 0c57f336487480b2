"""
Pydantic models shared by the interaction engine and every audit.

Defines the finding vocabulary (category, severity), the per-audit
result shape, the flat options structure, and the serializable page
report handed to the report layer.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Severity(StrEnum):
    """Ordinal severity of a violation or warning."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Return ordinal rank, higher is more severe."""
        match self:
            case Severity.CRITICAL:
                return 4
            case Severity.HIGH:
                return 3
            case Severity.MEDIUM:
                return 2
            case Severity.LOW:
                return 1

    @classmethod
    def from_impact(cls, impact: str | None) -> "Severity":
        """Map an axe-core impact level onto a severity."""
        mapping = {
            "critical": cls.CRITICAL,
            "serious": cls.HIGH,
            "moderate": cls.MEDIUM,
            "minor": cls.LOW,
        }
        return mapping.get((impact or "").lower(), cls.MEDIUM)


class FindingCategory(StrEnum):
    """Category every finding belongs to."""

    VIOLATION = "violation"
    WARNING = "warning"
    PASSED = "passed"
    INCOMPLETE = "incomplete"

    @property
    def requires_severity(self) -> bool:
        """Violations and warnings carry a severity, the others never do."""
        return self in (FindingCategory.VIOLATION, FindingCategory.WARNING)


class AuditType(StrEnum):
    """Audit subsystems."""

    ACCESSIBILITY = "accessibility"
    PERFORMANCE = "performance"
    SECURITY = "security"


class Grade(StrEnum):
    """Qualitative grade bands over a 0-100 score."""

    A = "A (Excellent)"
    B = "B (Good)"
    C = "C (Fair)"
    D = "D (Poor)"
    F = "F (Very Poor)"


class Finding(BaseModel):
    """One detected issue or confirmed-good condition."""

    id: str = Field(min_length=1, description="Stable check identifier")
    category: FindingCategory = Field(description="Finding category")
    severity: Severity | None = Field(
        default=None,
        description="Severity, present on violations and warnings only",
    )
    message: str = Field(default="", description="Short human-readable message")
    description: str = Field(default="", description="What the check looks for")
    recommendation: str = Field(default="", description="How to fix it")
    nodes: list[dict[str, Any]] = Field(
        default_factory=list,
        description="DOM-location descriptors implicated",
    )

    @model_validator(mode="after")
    def validate_severity(self) -> "Finding":
        """Severity is required iff the category is violation or warning."""
        if self.category.requires_severity and self.severity is None:
            raise ValueError(f"Finding '{self.id}' in category {self.category} requires a severity")
        if not self.category.requires_severity and self.severity is not None:
            raise ValueError(f"Finding '{self.id}' in category {self.category} must not carry a severity")
        return self


def empty_findings() -> dict[FindingCategory, list[Finding]]:
    """Return a findings mapping with all four categories in report order."""
    return {category: [] for category in FindingCategory}


class AuditResult(BaseModel):
    """Output of one audit subsystem for one page snapshot."""

    model_config = ConfigDict(frozen=True)

    audit: AuditType = Field(description="Audit that produced this result")
    url: str = Field(default="", description="Page URL at audit time")
    strategy: str = Field(default="", description="Detection strategy that produced the findings")
    findings: dict[FindingCategory, list[Finding]] = Field(default_factory=empty_findings)
    score: int = Field(ge=0, le=100, default=100, description="Score in [0, 100]")
    grade: Grade = Field(default=Grade.A, description="Grade band for the score")
    metrics: dict[str, Any] = Field(default_factory=dict, description="Raw measurements")
    notes: list[str] = Field(default_factory=list, description="Non-fatal log notes")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("findings")
    @classmethod
    def complete_categories(
        cls,
        v: dict[FindingCategory, list[Finding]],
    ) -> dict[FindingCategory, list[Finding]]:
        """Ensure every category key is present and findings sit in their own category."""
        complete = empty_findings()
        for category, items in v.items():
            for finding in items:
                if finding.category != category:
                    raise ValueError(
                        f"Finding '{finding.id}' of category {finding.category} filed under {category}"
                    )
            complete[FindingCategory(category)] = list(items)
        return complete

    @property
    def violations(self) -> list[Finding]:
        return self.findings[FindingCategory.VIOLATION]

    @property
    def warnings(self) -> list[Finding]:
        return self.findings[FindingCategory.WARNING]

    @property
    def passed(self) -> list[Finding]:
        return self.findings[FindingCategory.PASSED]

    @property
    def incomplete(self) -> list[Finding]:
        return self.findings[FindingCategory.INCOMPLETE]

    @property
    def counts(self) -> dict[FindingCategory, int]:
        """Count findings per category."""
        return {category: len(items) for category, items in self.findings.items()}

    @property
    def is_compliant(self) -> bool:
        """True when the audit found no violations."""
        return not self.violations


class InteractionOptions(BaseModel):
    """Flat options consumed by the interaction engine."""

    model_config = ConfigDict(extra="ignore")

    interaction_delay: int = Field(default=300, ge=0, description="Delay between interactions (ms)")
    max_interactions: int = Field(default=10, ge=0, description="Global interaction budget")
    timeout: int = Field(default=30000, gt=0, description="Navigation and wait ceiling (ms)")

    ENV_KEYS: ClassVar[dict[str, str]] = {
        "INTERACTION_DELAY": "interaction_delay",
        "MAX_INTERACTIONS": "max_interactions",
        "TIMEOUT": "timeout",
    }

    @classmethod
    def from_env(cls, base: dict[str, Any] | None = None) -> "InteractionOptions":
        """Build options from a mapping with environment variables taking precedence."""
        values: dict[str, Any] = dict(base or {})
        for env_key, option in cls.ENV_KEYS.items():
            raw = os.getenv(env_key)
            if raw:
                values[option] = raw
        return cls.model_validate(values)


class AuditOptions(BaseModel):
    """Options for the audit subsystems."""

    enabled_audits: set[AuditType] = Field(
        default_factory=lambda: set(AuditType),
        description="Audits to run after interaction",
    )
    axe_source_url: str = Field(
        default="https://cdnjs.cloudflare.com/ajax/libs/axe-core/4.7.2/axe.min.js",
        description="Where the accessibility rule engine is loaded from",
    )
    observation_window_ms: int = Field(
        default=3000,
        ge=0,
        le=30000,
        description="Web vitals observation window (ms)",
    )
    verify_ssl: bool = Field(default=True, description="Verify TLS when fetching headers out-of-band")
    fetch_timeout: float = Field(default=10.0, gt=0.0, description="Out-of-band HTTP timeout (s)")
    user_agent: str = Field(
        default="CometMonkey/1.0 (Interaction and Audit Engine)",
        description="User-Agent for out-of-band HTTP requests",
    )


class InteractionSummary(BaseModel):
    """Interaction engine summary for one page run."""

    interactions_performed: int = 0
    forms_tested: int = 0
    links_visited: int = 0
    buttons_clicked: int = 0
    forms_filled: list[dict[str, Any]] = Field(default_factory=list)
    links_clicked: list[dict[str, Any]] = Field(default_factory=list)
    buttons: list[dict[str, Any]] = Field(default_factory=list)
    visited_urls: list[str] = Field(default_factory=list)
    errors: list[dict[str, str]] = Field(default_factory=list)
    phases: list[str] = Field(default_factory=list)
    budget_exhausted: bool = False


class PageReport(BaseModel):
    """Everything produced for one page, safe to persist as JSON."""

    url: str
    final_url: str = ""
    interaction: InteractionSummary = Field(default_factory=InteractionSummary)
    audits: dict[AuditType, AuditResult] = Field(default_factory=dict)
    screenshots: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    events: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Console and network failures not reported by any audit",
    )
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    duration_seconds: float = 0.0

    @property
    def scores(self) -> dict[AuditType, int]:
        return {audit: result.score for audit, result in self.audits.items()}

    def finalize(self) -> None:
        """Mark the page run as complete and record its duration."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()
