"""
Security audit.

Checks response headers against a fixed required-header table, the
transport scheme, CSRF tokens on POST forms, password forms over plain
HTTP, static-source heuristics for unsafe DOM sinks and inline scripts,
and cookie Secure/HttpOnly flags. Every failed check maps to exactly one
finding with a fixed severity.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urldefrag, urlparse

import httpx

from cometmonkey.audits.base import BaseAudit
from cometmonkey.models import AuditResult, AuditType, Finding, FindingCategory, Severity
from cometmonkey.scoring import SECURITY_PENALTIES

if TYPE_CHECKING:
    from cometmonkey.session import PageSession

STRATEGY = "response-and-dom-inspection"

FORMS_SCRIPT = """
(arg) => Array.from(document.querySelectorAll('form')).map((form, index) => ({
    index: index,
    id: form.id || null,
    method: (form.getAttribute('method') || 'get').toLowerCase(),
    action: form.action || '',
    fieldNames: Array.from(form.querySelectorAll('input, [name]'))
        .map((el) => el.getAttribute('name') || '')
        .filter((name) => name.length > 0),
    hasPassword: form.querySelectorAll('input[type="password"]').length > 0
}))
"""

SOURCE_SCRIPT = """
(arg) => ({
    html: document.documentElement.outerHTML,
    inlineScripts: document.querySelectorAll('script:not([src])').length
})
"""


class SecurityAudit(BaseAudit):
    """
    Security audit over the current page and its navigation response.

    Headers come from the driver's navigation response when it reports
    them, otherwise from an out-of-band request (HEAD, then GET).
    """

    audit_type = AuditType.SECURITY
    penalties = SECURITY_PENALTIES

    # header -> (display name, severity, purpose)
    REQUIRED_HEADERS: dict[str, tuple[str, Severity, str]] = {
        "strict-transport-security": ("HSTS", Severity.HIGH, "Enforce HTTPS"),
        "content-security-policy": ("CSP", Severity.HIGH, "Prevent inline scripts and XSS"),
        "x-content-type-options": ("X-Content-Type-Options", Severity.MEDIUM, "Prevent MIME sniffing"),
        "x-frame-options": ("X-Frame-Options", Severity.HIGH, "Prevent clickjacking"),
        "x-xss-protection": ("X-XSS-Protection", Severity.LOW, "Legacy XSS protection"),
        "referrer-policy": ("Referrer-Policy", Severity.MEDIUM, "Control referrer information"),
    }

    CSRF_FIELD_PATTERN = re.compile(r"csrf|xsrf|token|authenticity", re.IGNORECASE)

    EVAL_PATTERN = re.compile(r"\beval\s*\(")

    UNSAFE_DOM_PATTERNS: dict[str, re.Pattern[str]] = {
        "innerHTML assignment": re.compile(r"\.innerHTML\s*(?:\+)?=(?!=)"),
        "outerHTML assignment": re.compile(r"\.outerHTML\s*=(?!=)"),
        "insertAdjacentHTML": re.compile(r"\.insertAdjacentHTML\s*\("),
        "document.write": re.compile(r"\bdocument\.write(?:ln)?\s*\("),
    }

    async def run_audit(self, session: PageSession) -> AuditResult:
        url = await self._page_url(session)
        notes: list[str] = []
        findings: list[Finding] = []

        headers, headers_source = await self._resolve_headers(session, url)
        findings.extend(await self._run_check("headers", self._check_headers, headers, notes=notes))
        findings.extend(await self._run_check("https", self._check_https, url, notes=notes))
        findings.extend(await self._run_check("forms", self._check_forms, session, url, notes=notes))
        findings.extend(await self._run_check("page-source", self._check_page_source, session, notes=notes))
        findings.extend(await self._run_check("cookies", self._check_cookies, session, notes=notes))

        metrics = {
            "headers": {
                name: {
                    "present": bool(headers and headers.get(header)),
                    "value": (headers or {}).get(header, "NOT SET"),
                    "severity": severity.value,
                }
                for header, (name, severity, _) in self.REQUIRED_HEADERS.items()
            },
            "headers_source": headers_source,
        }
        return self._build_result(url, STRATEGY, findings, metrics=metrics, notes=notes)

    async def _resolve_headers(
        self,
        session: PageSession,
        url: str,
    ) -> tuple[dict[str, str] | None, str | None]:
        """Return lower-cased headers of the current document and where they came from.

        Navigation headers are only trusted while the page is still the
        navigated document; after interaction moved elsewhere the current
        URL is fetched instead.
        """
        response = session.response_info()
        if response is not None and response.headers and _same_document(response.url, url):
            return response.headers, "navigation"

        target = url or (response.url if response else "")
        if not target:
            return None, None
        try:
            headers = await self._fetch_headers(target)
        except Exception as e:
            self.logger.warning("header_fetch_error", url=target, error=str(e))
            return None, None
        return (headers, "http") if headers else (None, None)

    async def _fetch_headers(self, url: str) -> dict[str, str]:
        """Fetch HTTP response headers using httpx."""
        request_headers = {"User-Agent": self.options.user_agent}
        async with httpx.AsyncClient(
            verify=self.options.verify_ssl,
            timeout=self.options.fetch_timeout,
            follow_redirects=True,
        ) as client:
            try:
                response = await client.head(url, headers=request_headers)
                if response.status_code < 400:
                    return {k.lower(): v for k, v in response.headers.items()}
            except httpx.HTTPError as e:
                self.logger.debug("header_fetch_head_failed", url=url, error=str(e))
            try:
                response = await client.get(url, headers=request_headers)
                return {k.lower(): v for k, v in response.headers.items()}
            except httpx.HTTPError as e:
                self.logger.warning("header_fetch_failed", url=url, error=str(e))
                return {}

    async def _check_headers(self, headers: dict[str, str] | None) -> list[Finding]:
        if headers is None:
            return [
                self._create_finding(
                    "headers-check-failed",
                    FindingCategory.WARNING,
                    message="Could not retrieve response headers",
                    severity=Severity.MEDIUM,
                    recommendation="Re-run the audit once the page responds",
                )
            ]

        findings: list[Finding] = []
        for header, (name, severity, purpose) in self.REQUIRED_HEADERS.items():
            if headers.get(header):
                findings.append(
                    self._create_finding(header, FindingCategory.PASSED, message=f"{name} header is set")
                )
            else:
                findings.append(
                    self._create_finding(
                        header,
                        FindingCategory.VIOLATION,
                        message=f"Missing security header: {name}",
                        severity=severity,
                        description=purpose,
                        recommendation=f"Add {name} header to server configuration",
                    )
                )

        if not (headers.get("permissions-policy") or headers.get("feature-policy")):
            findings.append(
                self._create_finding(
                    "permissions-policy",
                    FindingCategory.WARNING,
                    message="Permissions-Policy header not set (recommended)",
                    severity=Severity.LOW,
                    description="Restrict powerful browser features such as camera and geolocation",
                    recommendation="Add a Permissions-Policy header",
                )
            )
        return findings

    async def _check_https(self, url: str) -> list[Finding]:
        scheme = urlparse(url).scheme.lower()
        if scheme == "https":
            return [self._create_finding("https", FindingCategory.PASSED, message="Site uses HTTPS")]
        if scheme == "http":
            return [
                self._create_finding(
                    "https",
                    FindingCategory.VIOLATION,
                    message="Site uses unencrypted HTTP",
                    severity=Severity.CRITICAL,
                    description="All traffic is sent in plain text",
                    recommendation="Enable HTTPS on the server",
                )
            ]
        return []

    async def _check_forms(self, session: PageSession, url: str) -> list[Finding]:
        forms = await session.evaluate(FORMS_SCRIPT) or []
        findings: list[Finding] = []

        if not forms:
            return [
                self._create_finding(
                    "csrf-protection",
                    FindingCategory.INCOMPLETE,
                    message="No forms found to test for CSRF protection",
                )
            ]

        unprotected = [
            form
            for form in forms
            if form.get("method") == "post" and not self.has_csrf_token(form.get("fieldNames") or [])
        ]
        if unprotected:
            findings.append(
                self._create_finding(
                    "csrf-protection",
                    FindingCategory.VIOLATION,
                    message=f"{len(unprotected)} POST form(s) without CSRF token",
                    severity=Severity.HIGH,
                    description="Forms may be vulnerable to Cross-Site Request Forgery",
                    recommendation="Add CSRF tokens to all POST forms",
                    nodes=[_form_node(form) for form in unprotected],
                )
            )
        else:
            findings.append(
                self._create_finding(
                    "csrf-protection",
                    FindingCategory.PASSED,
                    message=f"{len(forms)} form(s) checked, no unprotected POST forms",
                )
            )

        page_https = urlparse(url).scheme.lower() == "https"
        insecure = [
            form
            for form in forms
            if form.get("hasPassword")
            and not (page_https or str(form.get("action") or "").lower().startswith("https://"))
        ]
        if insecure:
            findings.append(
                self._create_finding(
                    "password-form-not-https",
                    FindingCategory.VIOLATION,
                    message=f"{len(insecure)} password form(s) submit to non-HTTPS URL",
                    severity=Severity.CRITICAL,
                    description="Passwords transmitted over HTTP can be intercepted",
                    recommendation="Ensure password forms submit over HTTPS",
                    nodes=[_form_node(form) for form in insecure],
                )
            )
        else:
            findings.append(
                self._create_finding("form-security", FindingCategory.PASSED, message="All forms transmit securely")
            )
        return findings

    def has_csrf_token(self, field_names: list[str]) -> bool:
        return any(self.CSRF_FIELD_PATTERN.search(name) for name in field_names)

    async def _check_page_source(self, session: PageSession) -> list[Finding]:
        source = await session.evaluate(SOURCE_SCRIPT) or {}
        html = str(source.get("html") or "")
        inline_count = int(source.get("inlineScripts") or 0)
        findings: list[Finding] = []

        if inline_count > 0:
            findings.append(
                self._create_finding(
                    "inline-scripts",
                    FindingCategory.WARNING,
                    message=f"{inline_count} inline script(s) found",
                    severity=Severity.MEDIUM,
                    description="Inline scripts may bypass CSP and increase XSS risk",
                    recommendation="Move inline scripts to external files or use CSP nonces",
                )
            )

        if self.EVAL_PATTERN.search(html):
            findings.append(
                self._create_finding(
                    "eval-usage",
                    FindingCategory.VIOLATION,
                    message="eval() call detected",
                    severity=Severity.HIGH,
                    description="eval() executes arbitrary strings as code and is a common XSS vector",
                    recommendation="Remove eval() calls and use safer alternatives such as JSON.parse",
                )
            )

        unsafe = self.find_unsafe_sinks(html)
        if unsafe:
            findings.append(
                self._create_finding(
                    "unsafe-dom",
                    FindingCategory.WARNING,
                    message=f"Unsafe DOM methods detected: {', '.join(unsafe)}",
                    severity=Severity.MEDIUM,
                    description="These methods can introduce XSS vulnerabilities if used with user input",
                    recommendation="Use textContent instead of innerHTML, or sanitize input",
                )
            )
        else:
            findings.append(
                self._create_finding(
                    "xss-prevention",
                    FindingCategory.PASSED,
                    message="No obvious unsafe DOM sinks detected",
                )
            )
        return findings

    def find_unsafe_sinks(self, source: str) -> list[str]:
        return [name for name, pattern in self.UNSAFE_DOM_PATTERNS.items() if pattern.search(source)]

    async def _check_cookies(self, session: PageSession) -> list[Finding]:
        cookies = await session.get_cookies()
        if not cookies:
            return [self._create_finding("cookies", FindingCategory.PASSED, message="No cookies set")]

        findings: list[Finding] = []
        for cookie in cookies:
            issues = []
            if not cookie.get("secure"):
                issues.append("not HTTPS-only")
            if not cookie.get("httponly"):
                issues.append("accessible from JavaScript")
            if not issues:
                continue
            name = cookie.get("name") or "unnamed"
            findings.append(
                self._create_finding(
                    f"cookie-{name}",
                    FindingCategory.VIOLATION,
                    message=f'Cookie "{name}" is {" and ".join(issues)}',
                    severity=Severity.HIGH,
                    description="Insecure cookies can be intercepted or read by malicious scripts",
                    recommendation="Set Secure and HttpOnly flags on all sensitive cookies",
                    nodes=[{"name": name, "domain": cookie.get("domain", ""), "path": cookie.get("path", "/")}],
                )
            )

        if not findings:
            findings.append(
                self._create_finding(
                    "cookies",
                    FindingCategory.PASSED,
                    message=f"All {len(cookies)} cookie(s) have Secure and HttpOnly flags",
                )
            )
        return findings


def _form_node(form: dict[str, Any]) -> dict[str, Any]:
    return {
        "form": form.get("id") or f"form[{form.get('index', 0)}]",
        "method": form.get("method", ""),
        "action": form.get("action", ""),
    }


def _same_document(navigated: str, current: str) -> bool:
    """True when two URLs differ at most by fragment, or the current URL is unknown."""
    if not current:
        return True
    return urldefrag(navigated).url == urldefrag(current).url
