"""
comet-monkey - Autonomous interaction and audit engine.

Discovers the interactive surface of a web page, exercises it in a
prioritized, budgeted order, and audits the resulting page state for
accessibility, performance and security with deterministic scoring.
"""

__version__ = "1.0.0"
__author__ = "Olib AI"

from cometmonkey.audits import AccessibilityAudit, PerformanceAudit, SecurityAudit, build_audits
from cometmonkey.discovery import DiscoveredElement, DiscoveryResult, ElementDiscovery, ElementKind
from cometmonkey.exceptions import (
    AuditStrategyError,
    CometMonkeyError,
    DiscoveryError,
    ElementNotFoundError,
    ElementNotInteractableError,
    NavigationError,
)
from cometmonkey.interaction import InteractionState, SmartInteractionEngine, run_interactions
from cometmonkey.models import (
    AuditOptions,
    AuditResult,
    AuditType,
    Finding,
    FindingCategory,
    Grade,
    InteractionOptions,
    InteractionSummary,
    PageReport,
    Severity,
)
from cometmonkey.orchestrator import PageOrchestrator
from cometmonkey.scoring import grade_for_score, score_findings, score_metrics
from cometmonkey.session import PageSession
from cometmonkey.values import generate_smart_value

__all__ = [
    "__version__",
    "AccessibilityAudit",
    "AuditOptions",
    "AuditResult",
    "AuditStrategyError",
    "AuditType",
    "CometMonkeyError",
    "DiscoveredElement",
    "DiscoveryError",
    "DiscoveryResult",
    "ElementDiscovery",
    "ElementKind",
    "ElementNotFoundError",
    "ElementNotInteractableError",
    "Finding",
    "FindingCategory",
    "Grade",
    "InteractionOptions",
    "InteractionState",
    "InteractionSummary",
    "NavigationError",
    "PageOrchestrator",
    "PageReport",
    "PageSession",
    "PerformanceAudit",
    "SecurityAudit",
    "Severity",
    "SmartInteractionEngine",
    "build_audits",
    "generate_smart_value",
    "grade_for_score",
    "run_interactions",
    "score_findings",
    "score_metrics",
]
