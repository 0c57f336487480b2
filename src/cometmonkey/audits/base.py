"""
Base audit class defining the interface for all audit subsystems.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any

import structlog

from cometmonkey.models import (
    AuditOptions,
    AuditResult,
    AuditType,
    Finding,
    FindingCategory,
    Severity,
    empty_findings,
)
from cometmonkey.scoring import PenaltyTable, grade_for_score, score_findings

if TYPE_CHECKING:
    from cometmonkey.session import PageSession


class BaseAudit(ABC):
    """
    Abstract base class for audit subsystems.

    Provides logging, finding construction, per-check failure isolation and
    result assembly. Subclasses implement ``run_audit`` as a single pass:
    observe, evaluate a fixed rule set, classify, score.
    """

    audit_type: AuditType
    penalties: PenaltyTable | None = None

    def __init__(self, options: AuditOptions | None = None) -> None:
        """
        Initialize audit with options.

        Args:
            options: Audit options
        """
        self.options = options or AuditOptions()
        self.logger = structlog.get_logger(audit=self.audit_type.value)

    @abstractmethod
    async def run_audit(self, session: PageSession) -> AuditResult:
        """
        Audit the session's current page.

        Args:
            session: Page session to observe

        Returns:
            Audit result with all four finding categories present
        """
        pass

    def _create_finding(
        self,
        check_id: str,
        category: FindingCategory,
        message: str,
        severity: Severity | None = None,
        description: str = "",
        recommendation: str = "",
        nodes: list[dict[str, Any]] | None = None,
    ) -> Finding:
        """
        Create a Finding.

        Args:
            check_id: Stable check identifier
            category: Finding category
            message: Short message
            severity: Severity, required for violations and warnings
            description: What the check looks for
            recommendation: How to fix it
            nodes: Implicated DOM locations

        Returns:
            Validated Finding instance
        """
        return Finding(
            id=check_id,
            category=category,
            severity=severity,
            message=message,
            description=description,
            recommendation=recommendation,
            nodes=nodes or [],
        )

    async def _run_check(
        self,
        name: str,
        check: Callable[..., Awaitable[list[Finding]]],
        *args: Any,
        notes: list[str] | None = None,
    ) -> list[Finding]:
        """
        Run one check in isolation.

        A failing check is logged and omitted from the findings; the audit
        continues with the remaining checks.
        """
        try:
            return await check(*args)
        except Exception as e:
            self.logger.warning("check_failed", check=name, error=str(e))
            if notes is not None:
                notes.append(f"{name}: check failed ({e})")
            return []

    def _build_result(
        self,
        url: str,
        strategy: str,
        findings: Iterable[Finding],
        metrics: dict[str, Any] | None = None,
        notes: list[str] | None = None,
        score: int | None = None,
    ) -> AuditResult:
        """Group findings by category, score them and freeze the result."""
        grouped = empty_findings()
        for finding in findings:
            grouped[finding.category].append(finding)

        if score is None:
            if self.penalties is None:
                raise ValueError(f"{type(self).__name__} has no penalty table and no explicit score")
            score = score_findings(
                grouped[FindingCategory.VIOLATION] + grouped[FindingCategory.WARNING],
                self.penalties,
            )

        result = AuditResult(
            audit=self.audit_type,
            url=url,
            strategy=strategy,
            findings=grouped,
            score=score,
            grade=grade_for_score(score),
            metrics=metrics or {},
            notes=notes or [],
        )
        self.logger.info(
            "audit_complete",
            url=url,
            strategy=strategy,
            score=result.score,
            violations=len(result.violations),
            warnings=len(result.warnings),
        )
        return result

    async def _page_url(self, session: PageSession) -> str:
        try:
            return await session.current_url()
        except Exception as e:
            self.logger.debug("page_url_unavailable", error=str(e))
            response = session.response_info()
            return response.url if response else ""
