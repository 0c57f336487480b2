"""
Performance audit: Core Web Vitals, navigation and resource timing.

Web vitals are observed for a bounded window; each is independently
optional. The score is derived from thresholds on the measured metrics,
not from the number of findings. Findings describe each metric's rating,
large resources, and the console errors and failed requests buffered
while the page was exercised.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from cometmonkey.audits.base import BaseAudit
from cometmonkey.events import EventType, PageEvent
from cometmonkey.models import AuditResult, AuditType, Finding, FindingCategory, Severity
from cometmonkey.scoring import PERFORMANCE_THRESHOLDS, MetricThreshold, score_metrics

if TYPE_CHECKING:
    from cometmonkey.session import PageSession

STRATEGY = "performance-observer"

LARGE_RESOURCE_KB = 500
WINDOW_GRACE_SECONDS = 2.0

RECOMMENDATIONS: dict[str, str] = {
    "lcp": "LCP is slow: optimize images and lazy load content",
    "fid": "Input delay is high: reduce JavaScript execution time",
    "cls": "Layout shifts are high: set explicit dimensions on media and embeds",
    "total_time": "Page load time is high: enable compression and minify code",
}

VITALS_SCRIPT = """
(arg) => new Promise((resolve) => {
    const vitals = { lcp: null, fid: null, cls: null };
    const supported = (typeof PerformanceObserver !== 'undefined' && PerformanceObserver.supportedEntryTypes) || [];
    const observers = [];
    const observe = (type, callback) => {
        if (!supported.includes(type)) return;
        try {
            const observer = new PerformanceObserver((list) => callback(list.getEntries()));
            observer.observe({ type: type, buffered: true });
            observers.push(observer);
        } catch (e) {
            // entry type not observable in this browser
        }
    };
    observe('largest-contentful-paint', (entries) => {
        const last = entries[entries.length - 1];
        if (last) vitals.lcp = last.renderTime || last.loadTime || last.startTime;
    });
    observe('first-input', (entries) => {
        if (entries.length > 0) vitals.fid = entries[0].processingStart - entries[0].startTime;
    });
    if (supported.includes('layout-shift')) vitals.cls = 0;
    observe('layout-shift', (entries) => {
        entries.forEach((entry) => {
            if (!entry.hadRecentInput) vitals.cls += entry.value;
        });
    });
    setTimeout(() => {
        observers.forEach((observer) => observer.disconnect());
        resolve(vitals);
    }, arg.windowMs);
})
"""

NAVIGATION_TIMING_SCRIPT = """
(arg) => {
    const nav = performance.getEntriesByType('navigation')[0];
    const paint = performance.getEntriesByName('first-contentful-paint')[0];
    const fcp = paint ? paint.startTime : null;
    if (!nav) {
        const t = performance.timing;
        return {
            ttfb: t.responseStart - t.requestStart,
            fcp: fcp,
            dom_content_loaded: t.domContentLoadedEventEnd - t.domContentLoadedEventStart,
            load_complete: t.loadEventEnd - t.loadEventStart,
            total_time: t.loadEventEnd > 0 ? t.loadEventEnd - t.navigationStart : null
        };
    }
    return {
        ttfb: nav.responseStart - nav.requestStart,
        fcp: fcp,
        dom_content_loaded: nav.domContentLoadedEventEnd - nav.domContentLoadedEventStart,
        load_complete: nav.loadEventEnd - nav.loadEventStart,
        total_time: nav.loadEventEnd > 0 ? nav.loadEventEnd - nav.startTime : null,
        dns_lookup: nav.domainLookupEnd - nav.domainLookupStart,
        tcp_connect: nav.connectEnd - nav.connectStart,
        request_time: nav.responseStart - nav.requestStart,
        response_time: nav.responseEnd - nav.responseStart,
        render_time: nav.domInteractive - nav.responseEnd
    };
}
"""

RESOURCE_TIMING_SCRIPT = """
(arg) => {
    const resources = performance.getEntriesByType('resource');
    const byType = {};
    resources.forEach((resource) => {
        const type = resource.initiatorType || 'other';
        if (!byType[type]) byType[type] = { count: 0, total_time: 0, total_size: 0 };
        byType[type].count += 1;
        byType[type].total_time += resource.duration;
        byType[type].total_size += resource.transferSize || 0;
    });
    const describe = (r) => ({
        name: r.name.split('/').pop() || r.name,
        url: r.name,
        type: r.initiatorType,
        duration: Math.round(r.duration),
        size_kb: Math.round((r.transferSize || 0) / 1024)
    });
    return {
        total: resources.length,
        by_type: byType,
        slowest: [...resources].sort((a, b) => b.duration - a.duration).slice(0, 5).map(describe),
        largest: [...resources].sort((a, b) => (b.transferSize || 0) - (a.transferSize || 0)).slice(0, 5).map(describe)
    };
}
"""

MEMORY_SCRIPT = """
(arg) => {
    if (!performance.memory) return { available: false };
    const mb = (bytes) => Math.round(bytes / 1024 / 1024);
    return {
        available: true,
        used_js_heap_mb: mb(performance.memory.usedJSHeapSize),
        total_js_heap_mb: mb(performance.memory.totalJSHeapSize),
        js_heap_limit_mb: mb(performance.memory.jsHeapSizeLimit)
    };
}
"""


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class PerformanceAudit(BaseAudit):
    """
    Performance audit over the current page.

    Collection steps are independent; a failed step leaves its metrics
    empty and is surfaced as a low-severity warning.
    """

    audit_type = AuditType.PERFORMANCE

    async def run_audit(self, session: PageSession) -> AuditResult:
        url = await self._page_url(session)
        notes: list[str] = []
        findings: list[Finding] = []

        window_ms = self.options.observation_window_ms
        vitals = await self._collect(
            "core_web_vitals",
            asyncio.wait_for(
                session.evaluate(VITALS_SCRIPT, {"windowMs": window_ms}),
                timeout=window_ms / 1000 + WINDOW_GRACE_SECONDS,
            ),
            findings,
            notes,
        )
        navigation = await self._collect("navigation_timing", session.evaluate(NAVIGATION_TIMING_SCRIPT), findings, notes)
        resources = await self._collect("resource_timing", session.evaluate(RESOURCE_TIMING_SCRIPT), findings, notes)
        memory = await self._collect("memory", session.evaluate(MEMORY_SCRIPT), findings, notes)

        measured = self.measured_metrics(vitals, navigation)
        for threshold in PERFORMANCE_THRESHOLDS:
            findings.append(self._metric_finding(threshold, measured.get(threshold.metric)))

        findings.extend(self._resource_findings(resources))

        await session.collect_events()
        dropped = session.events.dropped
        events = session.events.flush()
        findings.extend(self._event_findings(events, dropped))

        score = score_metrics(measured, PERFORMANCE_THRESHOLDS)
        metrics = {
            "measured": measured,
            "core_web_vitals": vitals,
            "navigation_timing": navigation,
            "resource_timing": resources,
            "memory": memory,
            "events": [event.to_dict() for event in events],
            "events_dropped": dropped,
        }
        return self._build_result(url, STRATEGY, findings, metrics=metrics, notes=notes, score=score)

    async def _collect(
        self,
        name: str,
        pending: Any,
        findings: list[Finding],
        notes: list[str],
    ) -> dict[str, Any]:
        """Await one collection step, turning a failure into a warning."""
        try:
            result = await pending
        except Exception as e:
            message = str(e) or type(e).__name__
            self.logger.warning("collection_failed", step=name, error=message)
            notes.append(f"{name}: collection failed ({message})")
            findings.append(
                self._create_finding(
                    f"{name.replace('_', '-')}-unavailable",
                    FindingCategory.WARNING,
                    message=f"Could not collect {name.replace('_', ' ')}",
                    severity=Severity.LOW,
                    description=message,
                )
            )
            return {}
        return result if isinstance(result, dict) else {}

    @staticmethod
    def measured_metrics(vitals: dict[str, Any], navigation: dict[str, Any]) -> dict[str, float | None]:
        """Flatten the scored metrics; missing or non-numeric values become None."""
        return {
            "lcp": _number(vitals.get("lcp")),
            "fid": _number(vitals.get("fid")),
            "cls": _number(vitals.get("cls")),
            "total_time": _number(navigation.get("total_time")),
        }

    def _metric_finding(self, threshold: MetricThreshold, value: float | None) -> Finding:
        check_id = threshold.metric.replace("_", "-")
        rating = threshold.rating(value)
        if rating is None:
            return self._create_finding(
                check_id,
                FindingCategory.INCOMPLETE,
                message=f"{threshold.label} not available",
                description="The browser did not report this metric during the observation window",
            )

        shown = f"{value:.3f}" if threshold.unit == "" else f"{value:.0f}{threshold.unit}"
        bands = f"good <= {threshold.needs_improvement}{threshold.unit}, poor > {threshold.poor}{threshold.unit}"
        if rating == "good":
            return self._create_finding(
                check_id,
                FindingCategory.PASSED,
                message=f"{threshold.label} is good ({shown})",
            )
        category = FindingCategory.VIOLATION if rating == "poor" else FindingCategory.WARNING
        return self._create_finding(
            check_id,
            category,
            message=f"{threshold.label} is {rating.replace('-', ' ')} ({shown})",
            severity=Severity.HIGH if rating == "poor" else Severity.MEDIUM,
            description=bands,
            recommendation=RECOMMENDATIONS[threshold.metric],
            nodes=[{"metric": threshold.metric, "value": value, "rating": rating}],
        )

    def _resource_findings(self, resources: dict[str, Any]) -> list[Finding]:
        large = [r for r in resources.get("largest") or [] if (r.get("size_kb") or 0) > LARGE_RESOURCE_KB]
        if not large:
            return []
        return [
            self._create_finding(
                "large-resources",
                FindingCategory.WARNING,
                message=f"{len(large)} resource(s) larger than {LARGE_RESOURCE_KB}KB",
                severity=Severity.LOW,
                description="Large transfers delay rendering on slow connections",
                recommendation="Compress images and split code bundles",
                nodes=large,
            )
        ]

    def _event_findings(self, events: list[PageEvent], dropped: int) -> list[Finding]:
        findings: list[Finding] = []
        console = [e for e in events if e.event_type == EventType.CONSOLE_ERROR]
        network = [e for e in events if e.event_type == EventType.NETWORK_ERROR]
        truncated = f" ({dropped} older event(s) dropped)" if dropped else ""

        if console:
            findings.append(
                self._create_finding(
                    "console-errors",
                    FindingCategory.WARNING,
                    message=f"{len(console)} console error(s) while exercising the page{truncated}",
                    severity=Severity.LOW,
                    recommendation="Fix the script errors reported in the console",
                    nodes=[{"message": e.message} for e in console[:20]],
                )
            )
        if network:
            findings.append(
                self._create_finding(
                    "failed-requests",
                    FindingCategory.WARNING,
                    message=f"{len(network)} failed request(s) while exercising the page{truncated}",
                    severity=Severity.LOW,
                    recommendation="Fix broken resource URLs and failing endpoints",
                    nodes=[{"url": e.url, "status": e.status, "message": e.message} for e in network[:20]],
                )
            )
        return findings
