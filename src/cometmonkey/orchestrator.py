"""
Page run orchestrator.

Sequences one page run: navigate, screenshot, interact under the budget,
run the enabled audits, and assemble a serializable PageReport. Steps
are strictly sequential within a page; separate pages may run in
parallel, each with its own browser context and session.
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

import structlog

from cometmonkey.audits import BaseAudit, build_audits
from cometmonkey.interaction import InteractionState, SmartInteractionEngine
from cometmonkey.models import AuditOptions, InteractionOptions, PageReport
from cometmonkey.session import PageSession

if TYPE_CHECKING:
    from owl_browser import OwlBrowser

logger = structlog.get_logger(__name__)


class PageOrchestrator:
    """
    Runs interaction and audits against single pages.

    Usage:
        async with OwlBrowser(remote_config) as browser:
            orchestrator = PageOrchestrator(browser, InteractionOptions(max_interactions=5))
            report = await orchestrator.run_page("https://example.com")
    """

    def __init__(
        self,
        browser: OwlBrowser | None = None,
        interaction_options: InteractionOptions | None = None,
        audit_options: AuditOptions | None = None,
        audits: list[BaseAudit] | None = None,
        engine_options: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            browser: owl-browser SDK instance, required by run_page
            interaction_options: Interaction budget, delay and timeout
            audit_options: Which audits run and how
            audits: Audit instances overriding those built from audit_options
            engine_options: Extra keyword arguments for SmartInteractionEngine
        """
        self._browser = browser
        self.interaction_options = interaction_options or InteractionOptions()
        self.audit_options = audit_options or AuditOptions()
        self.audits = audits if audits is not None else build_audits(self.audit_options)
        self.engine_options = engine_options or {}
        self._log = logger.bind(component="page_orchestrator")

    async def run_page(self, url: str, screenshot_path: str | None = None) -> PageReport:
        """
        Run a page in a fresh browser context.

        Args:
            url: Page to exercise and audit
            screenshot_path: Where to save a full-page screenshot, if wanted

        Returns:
            Page report

        Raises:
            NavigationError: If the page cannot be reached
            DiscoveryError: If the page cannot be queried
        """
        if self._browser is None:
            raise ValueError("run_page requires a browser instance")

        ctx = await self._browser.create_context()
        context_id = ctx["context_id"] if isinstance(ctx, dict) else str(ctx)
        try:
            session = PageSession(self._browser, context_id, timeout_ms=self.interaction_options.timeout)
            return await self.run_session(session, url, screenshot_path=screenshot_path)
        finally:
            with contextlib.suppress(Exception):
                await self._browser.close_context(context_id=context_id)

    async def run_session(
        self,
        session: PageSession,
        url: str,
        screenshot_path: str | None = None,
    ) -> PageReport:
        """Run navigation, interaction and audits through an existing session."""
        report = PageReport(url=url)
        self._log.info("page_run_started", url=url, budget=self.interaction_options.max_interactions)

        await session.navigate(url, wait_until="domcontentloaded", timeout_ms=self.interaction_options.timeout)

        if screenshot_path:
            try:
                report.screenshots.append(await session.screenshot(screenshot_path))
            except Exception as e:
                self._log.warning("screenshot_failed", path=screenshot_path, error=str(e))
                report.errors.append(f"screenshot: {e}")

        engine = SmartInteractionEngine(session, self.interaction_options, **self.engine_options)
        report.interaction = await engine.run_interactions(state=InteractionState())
        await session.collect_events()

        for audit in self.audits:
            try:
                report.audits[audit.audit_type] = await audit.run_audit(session)
            except Exception as e:
                self._log.error("audit_failed", audit=audit.audit_type.value, error=str(e))
                report.errors.append(f"{audit.audit_type.value}: {e}")

        leftover = session.events.flush()
        if leftover:
            self._log.info("unreported_events", count=len(leftover))
            report.events = [event.to_dict() for event in leftover]

        try:
            report.final_url = await session.current_url() or url
        except Exception as e:
            self._log.debug("final_url_unavailable", error=str(e))
            report.final_url = url

        report.finalize()
        self._log.info(
            "page_run_complete",
            url=url,
            final_url=report.final_url,
            interactions=report.interaction.interactions_performed,
            scores={audit.value: score for audit, score in report.scores.items()},
            duration=report.duration_seconds,
        )
        return report
