"""
Audit subsystems for comet-monkey.

Each audit consumes the live page through a PageSession and produces one
AuditResult with violation/warning/passed/incomplete findings and a
deterministic 0-100 score.
"""

from cometmonkey.audits.base import BaseAudit
from cometmonkey.audits.accessibility import AccessibilityAudit
from cometmonkey.audits.performance import PerformanceAudit
from cometmonkey.audits.security import SecurityAudit
from cometmonkey.models import AuditOptions, AuditType

AUDIT_CLASSES: dict[AuditType, type[BaseAudit]] = {
    AuditType.ACCESSIBILITY: AccessibilityAudit,
    AuditType.PERFORMANCE: PerformanceAudit,
    AuditType.SECURITY: SecurityAudit,
}


def build_audits(options: AuditOptions | None = None) -> list[BaseAudit]:
    """Instantiate the enabled audits in their fixed run order."""
    options = options or AuditOptions()
    return [
        audit_class(options)
        for audit_type, audit_class in AUDIT_CLASSES.items()
        if audit_type in options.enabled_audits
    ]


__all__ = [
    "AUDIT_CLASSES",
    "AccessibilityAudit",
    "BaseAudit",
    "PerformanceAudit",
    "SecurityAudit",
    "build_audits",
]
