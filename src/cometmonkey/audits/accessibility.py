"""
WCAG 2.1 A/AA accessibility audit.

Primary strategy: load the axe-core rule engine, inject it into the page
and run it against the WCAG 2.1 A/AA tag sets. Fallback: a fixed battery
of custom checks (image alt text, form labels, heading hierarchy, colour
contrast, ARIA sanity, focus styles, document language).

When axe-core succeeds its violations are authoritative. Custom warnings
are appended only for concerns no evaluated axe rule covers, and the
warning list is de-duplicated by finding id.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx

from cometmonkey.audits.base import BaseAudit
from cometmonkey.discovery import DOM_HELPERS_JS
from cometmonkey.exceptions import AuditStrategyError
from cometmonkey.models import AuditOptions, AuditResult, AuditType, Finding, FindingCategory, Severity
from cometmonkey.scoring import ACCESSIBILITY_PENALTIES

if TYPE_CHECKING:
    from cometmonkey.session import PageSession

STRATEGY_AXE = "axe-core"
STRATEGY_CUSTOM = "custom-checks"

AXE_TAGS: tuple[str, ...] = ("wcag2a", "wcag2aa", "wcag21a", "wcag21aa")

MAX_NODES = 20
CONTRAST_SAMPLE_LIMIT = 200

# Normal text needs 4.5:1, large text 3:1 (WCAG 2.1 SC 1.4.3).
CONTRAST_RATIO_NORMAL = 4.5
CONTRAST_RATIO_LARGE = 3.0
LARGE_TEXT_PX = 24.0
LARGE_BOLD_TEXT_PX = 18.66

# axe rules that cover the same concern as a custom check.
CUSTOM_CHECK_AXE_RULES: dict[str, frozenset[str]] = {
    "image-alt-text": frozenset({"image-alt"}),
    "form-labels": frozenset({"label"}),
    "heading-hierarchy": frozenset({"heading-order"}),
    "color-contrast": frozenset({"color-contrast"}),
    "aria-attributes": frozenset({"aria-valid-attr", "aria-valid-attr-value", "aria-allowed-attr"}),
    "page-language": frozenset({"html-has-lang", "html-lang-valid"}),
    "keyboard-navigation": frozenset(),
}

AXE_INJECT_SCRIPT = """
(arg) => {
    if (typeof window.axe === 'undefined') {
        const script = document.createElement('script');
        script.textContent = arg.source;
        (document.head || document.documentElement).appendChild(script);
        script.remove();
    }
    return typeof window.axe !== 'undefined' ? (window.axe.version || 'unknown') : null;
}
"""

AXE_RUN_SCRIPT = """
(arg) => window.axe.run(document, {
    runOnly: { type: 'tag', values: arg.tags },
    resultTypes: ['violations', 'incomplete']
}).then((results) => {
    const compact = (rule) => ({
        id: rule.id,
        impact: rule.impact,
        description: rule.description,
        help: rule.help,
        helpUrl: rule.helpUrl,
        nodes: (rule.nodes || []).slice(0, arg.maxNodes).map((node) => ({
            target: (node.target || []).join(' '),
            html: (node.html || '').substring(0, 200),
            summary: node.failureSummary || ''
        }))
    });
    return {
        violations: results.violations.map(compact),
        incomplete: results.incomplete.map(compact),
        passes: results.passes.map((rule) => ({ id: rule.id, help: rule.help, description: rule.description })),
        inapplicable: results.inapplicable.map((rule) => rule.id)
    };
})
"""

IMAGE_ALT_SCRIPT = (
    "(arg) => {"
    + DOM_HELPERS_JS
    + """
    return Array.from(document.querySelectorAll('img'))
        .filter((img) => !img.hasAttribute('alt'))
        .filter((img) => img.getAttribute('aria-hidden') !== 'true' && img.getAttribute('role') !== 'presentation')
        .map((img) => ({ target: locatorFor(img), html: img.outerHTML.substring(0, 100) }));
}
"""
)

FORM_LABEL_SCRIPT = (
    "(arg) => {"
    + DOM_HELPERS_JS
    + """
    const skipped = ['hidden', 'submit', 'button', 'reset', 'image'];
    return Array.from(document.querySelectorAll('input, textarea, select'))
        .filter((el) => !skipped.includes((el.getAttribute('type') || '').toLowerCase()))
        .filter((el) => {
            const byFor = el.id && document.querySelector('label[for="' + CSS.escape(el.id) + '"]');
            return !(byFor || el.closest('label') || el.getAttribute('aria-label') ||
                     el.getAttribute('aria-labelledby') || el.getAttribute('title') || el.placeholder);
        })
        .map((el) => ({ target: locatorFor(el), name: el.name || '' }));
}
"""
)

HEADING_LEVELS_SCRIPT = """
(arg) => Array.from(document.querySelectorAll('h1, h2, h3, h4, h5, h6'))
    .map((heading) => parseInt(heading.tagName.substring(1), 10))
"""

CONTRAST_SAMPLES_SCRIPT = (
    "(arg) => {"
    + DOM_HELPERS_JS
    + """
    const alphaOf = (color) => {
        const m = (color || '').match(/rgba?\\(([^)]+)\\)/);
        if (!m) return 0;
        const parts = m[1].split(/[\\s,\\/]+/).filter((p) => p.length > 0);
        return parts.length > 3 ? parseFloat(parts[3]) : 1;
    };
    const backgroundOf = (el) => {
        let current = el;
        while (current && current.nodeType === 1) {
            const bg = window.getComputedStyle(current).backgroundColor;
            if (alphaOf(bg) > 0) return bg;
            current = current.parentElement;
        }
        return 'rgb(255, 255, 255)';
    };
    const samples = [];
    const selector = 'p, span, a, label, button, li, td, th, h1, h2, h3, h4, h5, h6';
    for (const el of document.querySelectorAll(selector)) {
        if (samples.length >= arg.limit) break;
        if (!isVisible(el)) continue;
        const ownText = Array.from(el.childNodes).some((n) => n.nodeType === 3 && n.textContent.trim().length > 0);
        if (!ownText) continue;
        const style = window.getComputedStyle(el);
        samples.push({
            target: locatorFor(el),
            color: style.color,
            background: backgroundOf(el),
            fontSize: parseFloat(style.fontSize) || 16,
            fontWeight: parseInt(style.fontWeight, 10) || 400,
            text: visibleText(el).substring(0, 40)
        });
    }
    return samples;
}
"""
)

ARIA_SCRIPT = (
    "(arg) => {"
    + DOM_HELPERS_JS
    + """
    const issues = [];
    document.querySelectorAll('[aria-label]').forEach((el) => {
        if (el.getAttribute('aria-label').trim() === '') {
            issues.push({ target: locatorFor(el), message: 'aria-label is empty' });
        }
    });
    ['aria-labelledby', 'aria-describedby'].forEach((attr) => {
        document.querySelectorAll('[' + attr + ']').forEach((el) => {
            const ids = el.getAttribute(attr).split(/\\s+/).filter((id) => id.length > 0);
            const missing = ids.filter((id) => !document.getElementById(id));
            if (ids.length === 0 || missing.length > 0) {
                issues.push({ target: locatorFor(el), message: attr + ' references missing id(s): ' + missing.join(', ') });
            }
        });
    });
    return issues;
}
"""
)

FOCUS_STYLES_SCRIPT = """
(arg) => {
    let hasFocusStyles = false;
    let unreadableSheets = 0;
    const scan = (rules) => {
        for (const rule of rules) {
            if (rule.selectorText && rule.selectorText.includes(':focus')) return true;
            if (rule.cssRules && scan(rule.cssRules)) return true;
        }
        return false;
    };
    for (const sheet of document.styleSheets) {
        try {
            if (scan(sheet.cssRules || [])) {
                hasFocusStyles = true;
                break;
            }
        } catch (e) {
            unreadableSheets += 1;
        }
    }
    const interactive = document.querySelectorAll('a, button, input, select, textarea, [tabindex]').length;
    return { hasFocusStyles: hasFocusStyles, interactive: interactive, unreadableSheets: unreadableSheets };
}
"""

LANGUAGE_SCRIPT = """
(arg) => document.documentElement.getAttribute('lang')
"""

_COLOR_RE = re.compile(
    r"rgba?\(\s*([\d.]+)[\s,]+([\d.]+)[\s,]+([\d.]+)(?:[\s,/]+([\d.]+)(%?))?\s*\)",
    re.IGNORECASE,
)


def heading_hierarchy_issues(levels: Sequence[int]) -> list[tuple[int, int]]:
    """
    Find skipped heading levels in document order.

    A heading may go down by any amount but up by at most one level
    (h1 -> h3 skips h2). The first heading is never a skip.

    Returns:
        (previous_level, level) pairs where a level was skipped
    """
    issues: list[tuple[int, int]] = []
    previous = 0
    for level in levels:
        if previous > 0 and level > previous + 1:
            issues.append((previous, level))
        previous = level
    return issues


def parse_css_color(value: str | None) -> tuple[float, float, float, float] | None:
    """Parse a computed ``rgb()``/``rgba()`` colour into (r, g, b, alpha)."""
    if not value:
        return None
    match = _COLOR_RE.search(value)
    if not match:
        return None
    red, green, blue = (float(match.group(i)) for i in (1, 2, 3))
    alpha = 1.0
    if match.group(4) is not None:
        alpha = float(match.group(4))
        if match.group(5):
            alpha /= 100
    return red, green, blue, max(0.0, min(1.0, alpha))


def relative_luminance(red: float, green: float, blue: float) -> float:
    """WCAG relative luminance of an sRGB colour with 0-255 channels."""

    def channel(value: float) -> float:
        c = value / 255
        return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4

    return 0.2126 * channel(red) + 0.7152 * channel(green) + 0.0722 * channel(blue)


def contrast_ratio(foreground: str, background: str) -> float | None:
    """
    Contrast ratio between two computed colours, in [1, 21].

    A translucent foreground is composited over the background first.
    Returns None when either colour cannot be parsed.
    """
    fg = parse_css_color(foreground)
    bg = parse_css_color(background)
    if fg is None or bg is None:
        return None
    alpha = fg[3]
    composited = tuple(fg[i] * alpha + bg[i] * (1 - alpha) for i in range(3))
    lighter, darker = sorted(
        (relative_luminance(*composited), relative_luminance(*bg[:3])),
        reverse=True,
    )
    return (lighter + 0.05) / (darker + 0.05)


def is_large_text(font_size_px: float, font_weight: int) -> bool:
    return font_size_px >= LARGE_TEXT_PX or (font_size_px >= LARGE_BOLD_TEXT_PX and font_weight >= 700)


class AccessibilityAudit(BaseAudit):
    """
    Accessibility audit with axe-core as primary strategy.

    Custom checks always run so their incomplete findings (manual-review
    items) and uncovered warnings can be reported alongside axe results.
    """

    audit_type = AuditType.ACCESSIBILITY
    penalties = ACCESSIBILITY_PENALTIES

    def __init__(self, options: AuditOptions | None = None, axe_source: str | None = None) -> None:
        """
        Initialize the audit.

        Args:
            options: Audit options
            axe_source: Preloaded axe-core source; fetched from
                ``options.axe_source_url`` when omitted
        """
        super().__init__(options)
        self._axe_source = axe_source

    async def run_audit(self, session: PageSession) -> AuditResult:
        url = await self._page_url(session)
        notes: list[str] = []

        custom = await self._run_custom_checks(session, notes)

        try:
            axe_results = await self._run_axe(session)
        except AuditStrategyError as e:
            self.logger.warning("axe_unavailable", url=url, error=str(e))
            notes.append(f"axe-core unavailable, custom checks only: {e}")
            return self._build_result(
                url,
                STRATEGY_CUSTOM,
                custom,
                metrics=self._metrics(custom, axe_version=None, rules_evaluated=0),
                notes=notes,
            )

        findings = self.combine_results(axe_results, custom)
        evaluated = _evaluated_rules(axe_results)
        return self._build_result(
            url,
            STRATEGY_AXE,
            findings,
            metrics=self._metrics(findings, axe_version=axe_results.get("version"), rules_evaluated=len(evaluated)),
            notes=notes,
        )

    async def _load_axe_source(self) -> str:
        """Fetch the axe-core source once per audit instance."""
        if self._axe_source is None:
            async with httpx.AsyncClient(
                verify=self.options.verify_ssl,
                timeout=self.options.fetch_timeout,
                follow_redirects=True,
            ) as client:
                response = await client.get(
                    self.options.axe_source_url,
                    headers={"User-Agent": self.options.user_agent},
                )
                response.raise_for_status()
                self._axe_source = response.text
        return self._axe_source

    async def _run_axe(self, session: PageSession) -> dict[str, Any]:
        """
        Inject and run axe-core.

        Raises:
            AuditStrategyError: If the engine cannot be loaded, injected or run
        """
        try:
            source = await self._load_axe_source()
            version = await session.evaluate(AXE_INJECT_SCRIPT, {"source": source})
            if not version:
                raise AuditStrategyError("axe-core did not register on the page")
            raw = await asyncio.wait_for(
                session.evaluate(AXE_RUN_SCRIPT, {"tags": list(AXE_TAGS), "maxNodes": MAX_NODES}),
                timeout=self.options.fetch_timeout * 3,
            )
        except AuditStrategyError:
            raise
        except Exception as e:
            raise AuditStrategyError(str(e) or type(e).__name__) from e

        if not isinstance(raw, dict) or not isinstance(raw.get("violations"), list):
            raise AuditStrategyError("axe-core returned an unexpected result")
        self.logger.debug("axe_complete", version=version, violations=len(raw["violations"]))
        return {**raw, "version": str(version)}

    def combine_results(self, axe_results: dict[str, Any], custom: list[Finding]) -> list[Finding]:
        """
        Merge axe-core results with custom check findings.

        axe violations and passes are authoritative. Warnings are axe
        incomplete results plus custom warnings for concerns no evaluated
        axe rule covers, de-duplicated by id. Incomplete findings come from
        the custom checks.
        """
        evaluated = _evaluated_rules(axe_results)
        findings: list[Finding] = []

        for rule in axe_results.get("violations") or []:
            findings.append(self._axe_finding(rule, FindingCategory.VIOLATION))

        warnings = [self._axe_finding(rule, FindingCategory.WARNING) for rule in axe_results.get("incomplete") or []]
        for finding in custom:
            if finding.category != FindingCategory.WARNING:
                continue
            if CUSTOM_CHECK_AXE_RULES.get(finding.id, frozenset()) & evaluated:
                continue
            warnings.append(finding)
        findings.extend(_dedupe_by_id(warnings))

        for rule in axe_results.get("passes") or []:
            findings.append(self._axe_finding(rule, FindingCategory.PASSED))

        findings.extend(f for f in custom if f.category == FindingCategory.INCOMPLETE)
        return findings

    def _axe_finding(self, rule: dict[str, Any], category: FindingCategory) -> Finding:
        severity = Severity.from_impact(rule.get("impact")) if category.requires_severity else None
        help_url = rule.get("helpUrl") or ""
        return self._create_finding(
            str(rule.get("id") or "axe-rule"),
            category,
            message=str(rule.get("help") or ""),
            severity=severity,
            description=str(rule.get("description") or ""),
            recommendation=f"See {help_url}" if help_url else "",
            nodes=list(rule.get("nodes") or [])[:MAX_NODES] if category.requires_severity else [],
        )

    async def _run_custom_checks(self, session: PageSession, notes: list[str]) -> list[Finding]:
        """Run every custom check, omitting any that fail."""
        findings: list[Finding] = []
        checks = (
            ("image-alt-text", self._check_image_alt_text),
            ("form-labels", self._check_form_labels),
            ("heading-hierarchy", self._check_heading_hierarchy),
            ("color-contrast", self._check_color_contrast),
            ("aria-attributes", self._check_aria_attributes),
            ("keyboard-navigation", self._check_keyboard_navigation),
            ("page-language", self._check_page_language),
        )
        for name, check in checks:
            findings.extend(await self._run_check(name, check, session, notes=notes))
        return findings

    async def _check_image_alt_text(self, session: PageSession) -> list[Finding]:
        nodes = await session.evaluate(IMAGE_ALT_SCRIPT)
        if nodes:
            return [
                self._create_finding(
                    "image-alt-text",
                    FindingCategory.VIOLATION,
                    message=f"{len(nodes)} image(s) missing alt text",
                    severity=Severity.CRITICAL,
                    description="Images must have alternative text",
                    recommendation="Add descriptive alt text, or alt=\"\" for decorative images",
                    nodes=nodes[:MAX_NODES],
                )
            ]
        return [self._passed("image-alt-text", "All images have alt text")]

    async def _check_form_labels(self, session: PageSession) -> list[Finding]:
        nodes = await session.evaluate(FORM_LABEL_SCRIPT)
        if nodes:
            return [
                self._create_finding(
                    "form-labels",
                    FindingCategory.VIOLATION,
                    message=f"{len(nodes)} form field(s) missing labels",
                    severity=Severity.HIGH,
                    description="Form fields must have an accessible label",
                    recommendation="Associate a <label> with each field or set aria-label",
                    nodes=nodes[:MAX_NODES],
                )
            ]
        return [self._passed("form-labels", "All form fields have labels")]

    async def _check_heading_hierarchy(self, session: PageSession) -> list[Finding]:
        levels = await session.evaluate(HEADING_LEVELS_SCRIPT)
        issues = heading_hierarchy_issues([int(level) for level in levels or []])
        if issues:
            return [
                self._create_finding(
                    "heading-hierarchy",
                    FindingCategory.WARNING,
                    message="Heading hierarchy skips levels: "
                    + ", ".join(f"H{previous} → H{level}" for previous, level in issues),
                    severity=Severity.MEDIUM,
                    description="Heading levels should only increase by one",
                    recommendation="Use sequential heading levels (H1 → H2 → H3)",
                    nodes=[{"from": f"h{previous}", "to": f"h{level}"} for previous, level in issues],
                )
            ]
        return [self._passed("heading-hierarchy", "Heading hierarchy is sequential")]

    async def _check_color_contrast(self, session: PageSession) -> list[Finding]:
        samples = await session.evaluate(CONTRAST_SAMPLES_SCRIPT, {"limit": CONTRAST_SAMPLE_LIMIT})
        failing: list[dict[str, Any]] = []
        for sample in samples or []:
            ratio = contrast_ratio(sample.get("color"), sample.get("background"))
            if ratio is None:
                continue
            large = is_large_text(float(sample.get("fontSize") or 16), int(sample.get("fontWeight") or 400))
            required = CONTRAST_RATIO_LARGE if large else CONTRAST_RATIO_NORMAL
            if ratio < required:
                failing.append(
                    {
                        "target": sample.get("target", ""),
                        "text": sample.get("text", ""),
                        "ratio": round(ratio, 2),
                        "required": required,
                    }
                )
        if failing:
            return [
                self._create_finding(
                    "color-contrast",
                    FindingCategory.VIOLATION,
                    message=f"{len(failing)} text element(s) with insufficient contrast",
                    severity=Severity.HIGH,
                    description="Text must have a contrast ratio of at least 4.5:1 (3:1 for large text)",
                    recommendation="Darken the text or lighten the background",
                    nodes=failing[:MAX_NODES],
                )
            ]
        return [self._passed("color-contrast", "Sampled text meets contrast requirements")]

    async def _check_aria_attributes(self, session: PageSession) -> list[Finding]:
        nodes = await session.evaluate(ARIA_SCRIPT)
        if nodes:
            return [
                self._create_finding(
                    "aria-attributes",
                    FindingCategory.WARNING,
                    message=f"{len(nodes)} ARIA attribute issue(s)",
                    severity=Severity.MEDIUM,
                    description="ARIA attributes must be non-empty and reference existing elements",
                    recommendation="Fix empty aria-label values and dangling id references",
                    nodes=nodes[:MAX_NODES],
                )
            ]
        return [self._passed("aria-attributes", "ARIA attributes are well-formed")]

    async def _check_keyboard_navigation(self, session: PageSession) -> list[Finding]:
        info = await session.evaluate(FOCUS_STYLES_SCRIPT) or {}
        if not info.get("hasFocusStyles") and int(info.get("interactive") or 0) > 0:
            return [
                self._create_finding(
                    "keyboard-navigation",
                    FindingCategory.INCOMPLETE,
                    message="No visible focus styles defined",
                    description="Keyboard users need a visible focus indicator",
                    recommendation="Verify keyboard navigation manually and add :focus styles",
                    nodes=[{"unreadable_stylesheets": int(info.get("unreadableSheets") or 0)}],
                )
            ]
        return [self._passed("keyboard-navigation", "Focus styles are defined")]

    async def _check_page_language(self, session: PageSession) -> list[Finding]:
        lang = await session.evaluate(LANGUAGE_SCRIPT)
        if not lang or not str(lang).strip():
            return [
                self._create_finding(
                    "page-language",
                    FindingCategory.WARNING,
                    message="Page language not specified",
                    severity=Severity.MEDIUM,
                    description="The <html> element should declare the page language",
                    recommendation="Add a lang attribute to <html>, e.g. lang=\"en\"",
                )
            ]
        return [self._passed("page-language", f"Page language is {lang}")]

    def _passed(self, check_id: str, message: str) -> Finding:
        return self._create_finding(check_id, FindingCategory.PASSED, message=message)

    @staticmethod
    def _metrics(findings: list[Finding], axe_version: str | None, rules_evaluated: int) -> dict[str, Any]:
        return {
            "axe_version": axe_version,
            "rules_evaluated": rules_evaluated,
            "is_compliant": not any(f.category == FindingCategory.VIOLATION for f in findings),
        }


def _evaluated_rules(axe_results: dict[str, Any]) -> set[str]:
    """Ids of every axe rule that ran, whatever its outcome."""
    evaluated: set[str] = set()
    for key in ("violations", "incomplete", "passes"):
        evaluated.update(str(rule.get("id")) for rule in axe_results.get(key) or [] if isinstance(rule, dict))
    evaluated.update(str(rule_id) for rule_id in axe_results.get("inapplicable") or [])
    return evaluated


def _dedupe_by_id(findings: list[Finding]) -> list[Finding]:
    seen: set[str] = set()
    unique: list[Finding] = []
    for finding in findings:
        if finding.id in seen:
            continue
        seen.add(finding.id)
        unique.append(finding)
    return unique
