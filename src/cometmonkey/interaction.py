"""
Autonomous interaction engine.

Exercises a page in three fixed phases (forms, then links, then buttons)
under a global interaction budget. Each phase draws a sub-budget from what
is left so early phases with many candidates cannot starve later ones.

Key properties:
- Caller-owned InteractionState, reset explicitly at the start of a run
- A fresh discovery pass after any interaction that may change the DOM
- Per-element failures are recorded and never abort a phase
- Discovery failures propagate; budget exhaustion ends the run cleanly
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum, auto
from typing import TYPE_CHECKING, Any

import structlog

from cometmonkey.discovery import (
    BUTTON_SELECTOR,
    DOM_HELPERS_JS,
    FIELD_SELECTOR,
    ButtonElement,
    DiscoveredElement,
    DiscoveryResult,
    ElementDiscovery,
    ElementKind,
    FormElement,
    LinkElement,
)
from cometmonkey.exceptions import ElementNotFoundError, ElementNotInteractableError
from cometmonkey.models import InteractionOptions, InteractionSummary
from cometmonkey.values import generate_smart_value, is_checkable, is_fillable

if TYPE_CHECKING:
    from cometmonkey.session import PageSession

logger = structlog.get_logger(__name__)


FORM_FIELDS_SCRIPT: str = (
    """
(arg) => {
"""
    + DOM_HELPERS_JS
    + """
    const form = document.querySelector(arg.locator);
    if (!form) return null;
    const controls = Array.from(form.querySelectorAll('"""
    + FIELD_SELECTOR
    + """'));
    const fields = controls.map((el) => {
        const tag = el.tagName.toLowerCase();
        const declared = el.getAttribute('type');
        return {
            selector: locatorFor(el),
            tag: tag,
            inputType: (tag === 'input' ? (declared || 'text') : tag).toLowerCase(),
            name: el.name || '',
            placeholder: el.placeholder || '',
            disabled: !!el.disabled || !!el.readOnly,
            visible: isVisible(el)
        };
    });
    const submit = form.querySelector('button[type="submit"], input[type="submit"]');
    return {
        id: form.id || form.getAttribute('name') || null,
        fieldCount: controls.length,
        fields: fields,
        submit: submit ? locatorFor(submit) : null
    };
}
"""
)

BUTTON_RESOLVE_SCRIPT: str = (
    """
(arg) => {
"""
    + DOM_HELPERS_JS
    + """
    const label = (arg.label || '').trim();
    const candidates = Array.from(document.querySelectorAll('"""
    + BUTTON_SELECTOR
    + """')).filter(isVisible);
    let match = null;
    if (label) {
        match = candidates.find((el) => (visibleText(el) || el.value || '').substring(0, 50).trim() === label)
            || candidates.find((el) => el.getAttribute('aria-label') === label)
            || null;
    }
    if (!match && arg.locator) {
        const el = document.querySelector(arg.locator);
        if (el && isVisible(el)) match = el;
    }
    if (!match) return null;
    return {
        locator: locatorFor(match),
        disabled: !!match.disabled || match.getAttribute('aria-disabled') === 'true'
    };
}
"""
)


class EnginePhase(StrEnum):
    """States of the interaction engine, entered strictly in this order."""

    IDLE = auto()
    DISCOVERING = auto()
    INTERACTING_FORMS = auto()
    INTERACTING_LINKS = auto()
    INTERACTING_BUTTONS = auto()
    DONE = auto()


@dataclass
class PhasePlan:
    """Which element kind a phase works on and its share of the remaining budget."""

    phase: EnginePhase
    kind: ElementKind
    error_type: str
    budget_fraction: float


PHASE_PLAN: tuple[PhasePlan, ...] = (
    PhasePlan(EnginePhase.INTERACTING_FORMS, ElementKind.FORM, "form_interaction", 0.5),
    PhasePlan(EnginePhase.INTERACTING_LINKS, ElementKind.LINK, "link_interaction", 0.5),
    PhasePlan(EnginePhase.INTERACTING_BUTTONS, ElementKind.BUTTON, "button_interaction", 1.0),
)


@dataclass
class InteractionState:
    """
    Per-run interaction bookkeeping.

    Owned by exactly one page run. ``interacted_elements`` only grows
    during a run and is cleared only by an explicit ``reset()``.
    """

    visited_urls: set[str] = field(default_factory=set)
    """URLs already followed via link interaction."""

    interacted_elements: set[str] = field(default_factory=set)
    """Identities of elements already acted upon."""

    forms_filled: list[dict[str, Any]] = field(default_factory=list)
    links_clicked: list[dict[str, Any]] = field(default_factory=list)
    buttons_clicked: list[dict[str, Any]] = field(default_factory=list)

    errors: list[dict[str, str]] = field(default_factory=list)
    """Interaction failures with their interaction type and message."""

    interactions_performed: int = 0
    """Attempted interactions charged against the budget."""

    phases: list[str] = field(default_factory=list)
    budget_exhausted: bool = False

    def reset(self) -> None:
        """Clear all bookkeeping for a new top-level run."""
        self.visited_urls.clear()
        self.interacted_elements.clear()
        self.forms_filled.clear()
        self.links_clicked.clear()
        self.buttons_clicked.clear()
        self.errors.clear()
        self.interactions_performed = 0
        self.phases.clear()
        self.budget_exhausted = False

    def record_error(self, error_type: str, message: str, element: str = "") -> None:
        entry = {"type": error_type, "error": message}
        if element:
            entry["element"] = element
        self.errors.append(entry)

    def to_summary(self) -> InteractionSummary:
        """Build the serializable summary handed to the report layer."""
        return InteractionSummary(
            interactions_performed=self.interactions_performed,
            forms_tested=len(self.forms_filled),
            links_visited=len(self.links_clicked),
            buttons_clicked=len(self.buttons_clicked),
            forms_filled=list(self.forms_filled),
            links_clicked=list(self.links_clicked),
            buttons=list(self.buttons_clicked),
            visited_urls=sorted(self.visited_urls),
            errors=list(self.errors),
            phases=list(self.phases),
            budget_exhausted=self.budget_exhausted,
        )


class SmartInteractionEngine:
    """
    Discovers and exercises interactive elements on one page.

    Usage:
        engine = SmartInteractionEngine(session, InteractionOptions(max_interactions=5))
        summary = await engine.run_interactions()
    """

    def __init__(
        self,
        session: PageSession,
        options: InteractionOptions | None = None,
        discovery: ElementDiscovery | None = None,
        form_settle_ms: int = 1000,
        button_settle_ms: int = 500,
        link_idle_timeout_ms: int = 5000,
    ) -> None:
        """
        Initialize the engine.

        Args:
            session: Page session to act through
            options: Interaction options (budget, delays, timeout)
            discovery: Element discovery instance
            form_settle_ms: Pause after a form submission
            button_settle_ms: Pause after a button click
            link_idle_timeout_ms: Ceiling on the network-idle wait after a link click
        """
        self.session = session
        self.options = options or InteractionOptions()
        self.discovery = discovery or ElementDiscovery()
        self.form_settle_ms = form_settle_ms
        self.button_settle_ms = button_settle_ms
        self.link_idle_timeout_ms = min(link_idle_timeout_ms, self.options.timeout)
        self.phase = EnginePhase.IDLE
        self._log = logger.bind(component="interaction_engine")

    async def run_interactions(
        self,
        state: InteractionState | None = None,
        abort: asyncio.Event | None = None,
    ) -> InteractionSummary:
        """
        Run the forms, links and buttons phases under the interaction budget.

        Args:
            state: Caller-owned state; reset before use. A new one is
                created when omitted.
            abort: Optional signal checked before each phase and element

        Returns:
            Summary of the run

        Raises:
            DiscoveryError: If the page cannot be queried
        """
        state = state if state is not None else InteractionState()
        state.reset()

        self._enter(EnginePhase.DISCOVERING, state)
        discovery = await self.discovery.discover(self.session)
        self._log.info(
            "interaction_run_started",
            url=discovery.url,
            candidates=discovery.total,
            budget=self.options.max_interactions,
        )

        stale = False
        for plan in PHASE_PLAN:
            if self._aborted(abort):
                self._log.info("interaction_run_aborted", phase=plan.phase.value)
                break
            if self._remaining(state) <= 0:
                state.budget_exhausted = True
                break
            self._enter(plan.phase, state)
            discovery, stale = await self._run_phase(plan, discovery, stale, state, abort)

        if self._remaining(state) <= 0:
            state.budget_exhausted = True
        self._enter(EnginePhase.DONE, state)
        self._log.info(
            "interaction_run_complete",
            interactions=state.interactions_performed,
            forms=len(state.forms_filled),
            links=len(state.links_clicked),
            buttons=len(state.buttons_clicked),
            errors=len(state.errors),
            budget_exhausted=state.budget_exhausted,
        )
        return state.to_summary()

    async def _run_phase(
        self,
        plan: PhasePlan,
        discovery: DiscoveryResult,
        stale: bool,
        state: InteractionState,
        abort: asyncio.Event | None,
    ) -> tuple[DiscoveryResult, bool]:
        """Work through one element kind until its sub-budget or the global budget is spent."""
        remaining = self._remaining(state)
        sub_budget = max(1, int(remaining * plan.budget_fraction))
        used = 0
        considered: set[str] = set()

        while used < sub_budget and self._remaining(state) > 0:
            if self._aborted(abort):
                break
            if stale:
                discovery = await self.discovery.discover(self.session)
                stale = False

            candidate = self._next_candidate(discovery, plan.kind, considered, state)
            if candidate is None:
                break
            considered.add(candidate.identity)

            try:
                target = await self._prepare(candidate, state)
            except Exception as e:
                self._charge(candidate, state)
                used += 1
                self._fail(plan, candidate, state, e)
                stale = True
                await self.session.sleep(self.options.interaction_delay)
                continue

            if target is None:
                continue

            self._charge(candidate, state)
            used += 1
            try:
                stale = await self._interact(candidate, target, state)
            except Exception as e:
                self._fail(plan, candidate, state, e)
                stale = True
            await self.session.sleep(self.options.interaction_delay)

        self._log.info(
            "phase_complete",
            phase=plan.phase.value,
            interactions=used,
            sub_budget=sub_budget,
            remaining=self._remaining(state),
        )
        return discovery, stale

    def _next_candidate(
        self,
        discovery: DiscoveryResult,
        kind: ElementKind,
        considered: set[str],
        state: InteractionState,
    ) -> DiscoveredElement | None:
        for element in discovery.of_kind(kind):
            if element.identity in considered or element.identity in state.interacted_elements:
                continue
            return element
        return None

    async def _prepare(self, element: DiscoveredElement, state: InteractionState) -> str | None:
        """Resolve the selector to act on, or None when the element is skipped."""
        if isinstance(element, LinkElement):
            skip = self._link_skip_reason(element, state)
            if skip:
                self._log.debug("link_skipped", href=element.href, reason=skip)
                return None
            return element.locator_key

        if isinstance(element, ButtonElement):
            resolved = await self.session.evaluate(
                BUTTON_RESOLVE_SCRIPT,
                {"label": element.label, "locator": element.locator_key},
            )
            if not isinstance(resolved, dict) or not resolved.get("locator"):
                raise ElementNotFoundError(f"Button '{element.label or element.locator_key}' not found")
            if resolved.get("disabled"):
                self._log.debug("button_skipped", button=element.label, reason="disabled")
                return None
            return str(resolved["locator"])

        return element.locator_key

    def _link_skip_reason(self, link: LinkElement, state: InteractionState) -> str | None:
        raw = link.raw_href.strip()
        if not link.href or not raw:
            return "empty"
        if raw.startswith("#"):
            return "fragment"
        if raw.lower().startswith("javascript:") or link.href.lower().startswith("javascript:"):
            return "script"
        if link.href in state.visited_urls:
            return "visited"
        return None

    async def _interact(self, element: DiscoveredElement, target: str, state: InteractionState) -> bool:
        """Act on one element. Returns True when the DOM may have changed."""
        if isinstance(element, FormElement):
            return await self._interact_with_form(element, target, state)
        if isinstance(element, LinkElement):
            return await self._interact_with_link(element, target, state)
        if isinstance(element, ButtonElement):
            return await self._interact_with_button(element, target, state)
        raise ElementNotInteractableError(f"No interaction defined for {element.kind.value}")

    async def _interact_with_form(self, form: FormElement, target: str, state: InteractionState) -> bool:
        info = await self.session.evaluate(FORM_FIELDS_SCRIPT, {"locator": target})
        if not isinstance(info, dict):
            raise ElementNotFoundError(f"Form '{target}' not found")

        filled = 0
        for field_info in info.get("fields") or []:
            if await self._fill_field(field_info):
                filled += 1

        submitted = False
        submit = info.get("submit")
        if submit and await self.session.is_enabled(submit):
            try:
                await self.session.click(submit)
                submitted = True
                # the submit control is rediscovered as a button; never click it again
                state.interacted_elements.add(
                    ButtonElement(kind=ElementKind.BUTTON, locator_key=submit, page_url=form.page_url).identity
                )
                await self.session.sleep(self.form_settle_ms)
            except Exception as e:
                self._log.debug("form_submit_failed", form=target, error=str(e))

        state.forms_filled.append(
            {
                "id": info.get("id") or form.form_id or target,
                "fields": int(info.get("fieldCount", form.field_count)),
                "filled": filled,
                "submitted": submitted,
            }
        )
        self._log.info("form_filled", form=target, fields=info.get("fieldCount"), submitted=submitted)
        return submitted

    async def _fill_field(self, field_info: dict[str, Any]) -> bool:
        """Set one field. Failures are tolerated and reported as False."""
        selector = field_info.get("selector")
        input_type = str(field_info.get("inputType") or "text")
        if not selector or not is_fillable(input_type):
            return False
        if field_info.get("disabled") or not field_info.get("visible", True):
            return False

        try:
            if is_checkable(input_type):
                await self.session.check(selector)
            elif input_type == "select":
                return await self.session.select_first_option(selector)
            else:
                value = generate_smart_value(
                    input_type,
                    field_info.get("placeholder"),
                    field_info.get("name"),
                )
                await self.session.fill(selector, value)
            return True
        except Exception as e:
            self._log.debug("field_fill_failed", field=selector, error=str(e))
            return False

    async def _interact_with_link(self, link: LinkElement, target: str, state: InteractionState) -> bool:
        state.visited_urls.add(link.href)
        await self.session.click(target)
        settled = await self.session.wait_for_network_idle(timeout_ms=self.link_idle_timeout_ms)
        state.links_clicked.append({"href": link.href, "text": link.text, "settled": settled})
        self._log.info("link_clicked", href=link.href, settled=settled)
        return True

    async def _interact_with_button(self, button: ButtonElement, target: str, state: InteractionState) -> bool:
        await self.session.click(target)
        await self.session.sleep(self.button_settle_ms)
        state.buttons_clicked.append({"text": button.label, "locator": target})
        self._log.info("button_clicked", button=button.label)
        return True

    def _remaining(self, state: InteractionState) -> int:
        return self.options.max_interactions - state.interactions_performed

    def _charge(self, element: DiscoveredElement, state: InteractionState) -> None:
        state.interacted_elements.add(element.identity)
        state.interactions_performed += 1

    def _fail(
        self,
        plan: PhasePlan,
        element: DiscoveredElement,
        state: InteractionState,
        error: Exception,
    ) -> None:
        state.record_error(plan.error_type, str(error) or type(error).__name__, element.locator_key)
        self._log.warning(
            "interaction_failed",
            phase=plan.phase.value,
            element=element.locator_key,
            error=str(error),
        )

    def _enter(self, phase: EnginePhase, state: InteractionState) -> None:
        self.phase = phase
        state.phases.append(phase.value)

    @staticmethod
    def _aborted(abort: asyncio.Event | None) -> bool:
        return abort is not None and abort.is_set()


async def run_interactions(
    session: PageSession,
    options: InteractionOptions | None = None,
    state: InteractionState | None = None,
    abort: asyncio.Event | None = None,
) -> InteractionSummary:
    """Run one interaction pass over the session's current page."""
    engine = SmartInteractionEngine(session, options)
    return await engine.run_interactions(state=state, abort=abort)
