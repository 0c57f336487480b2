"""
Tests for the interaction engine.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from cometmonkey.interaction import (
    EnginePhase,
    InteractionState,
    SmartInteractionEngine,
    run_interactions,
)
from cometmonkey.models import InteractionOptions

SIGNUP_FORM = {
    "locator": "#signup",
    "id": "signup",
    "fields": 1,
    "method": "post",
    "action": "/register",
}

SIGNUP_FIELDS = {
    "id": "signup",
    "fieldCount": 1,
    "fields": [
        {
            "selector": "#user_email",
            "tag": "input",
            "inputType": "text",
            "name": "user_email",
            "placeholder": "",
            "disabled": False,
            "visible": True,
        }
    ],
    "submit": "#signup-submit",
}


def _link(locator: str, href: str, raw_href: str | None = None, text: str = "") -> dict[str, Any]:
    return {"locator": locator, "href": href, "rawHref": raw_href if raw_href is not None else href, "text": text}


def _button(locator: str, text: str) -> dict[str, Any]:
    return {"locator": locator, "text": text, "ariaLabel": None, "inForm": False}


def _engine(session: Any, **options: Any) -> SmartInteractionEngine:
    options.setdefault("interaction_delay", 0)
    return SmartInteractionEngine(
        session,
        InteractionOptions(**options),
        form_settle_ms=0,
        button_settle_ms=0,
    )


class TestFormInteraction:
    """Test form filling and submission."""

    @pytest.mark.asyncio
    async def test_signup_form_filled_and_submitted(self, make_session: Callable[..., Any]) -> None:
        session = make_session(
            discovery={"forms": [SIGNUP_FORM], "buttons": [_button("#signup-submit", "Sign up")]},
            forms={"#signup": SIGNUP_FIELDS},
        )

        summary = await _engine(session, max_interactions=1).run_interactions()

        assert session.fills == [("#user_email", "test@example.com")]
        assert "#signup-submit" in session.clicks
        assert summary.forms_tested == 1
        assert summary.forms_filled[0]["fields"] == 1
        assert summary.forms_filled[0]["submitted"] is True
        assert summary.interactions_performed == 1

    @pytest.mark.asyncio
    async def test_submit_button_not_clicked_again(self, make_session: Callable[..., Any]) -> None:
        session = make_session(
            discovery={
                "forms": [SIGNUP_FORM],
                "buttons": [
                    {"locator": "#signup-submit", "text": "Sign up", "ariaLabel": None, "inForm": True},
                    _button("#help", "Help"),
                ],
            },
            forms={"#signup": SIGNUP_FIELDS},
        )

        summary = await _engine(session).run_interactions()

        assert session.clicks == ["#signup-submit", "#help"]
        assert summary.forms_tested == 1
        assert summary.buttons_clicked == 1
        assert summary.interactions_performed == 2

    @pytest.mark.asyncio
    async def test_field_kinds_handled(self, make_session: Callable[..., Any]) -> None:
        fields = [
            {"selector": "#agree", "inputType": "checkbox", "name": "agree", "visible": True},
            {"selector": "#country", "inputType": "select", "name": "country", "visible": True},
            {"selector": "#token", "inputType": "hidden", "name": "csrf_token", "visible": False},
            {"selector": "#locked", "inputType": "text", "name": "locked", "disabled": True, "visible": True},
            {"selector": "#secret", "inputType": "password", "name": "pw", "visible": True},
        ]
        session = make_session(
            discovery={"forms": [SIGNUP_FORM]},
            forms={"#signup": {"id": "signup", "fieldCount": 5, "fields": fields, "submit": None}},
        )

        summary = await _engine(session, max_interactions=1).run_interactions()

        assert session.checks == ["#agree"]
        assert session.selects == ["#country"]
        assert session.fills == [("#secret", "SecurePass123!@#")]
        assert summary.forms_filled[0]["filled"] == 3
        assert summary.forms_filled[0]["submitted"] is False

    @pytest.mark.asyncio
    async def test_disabled_submit_not_clicked(self, make_session: Callable[..., Any]) -> None:
        session = make_session(discovery={"forms": [SIGNUP_FORM]}, forms={"#signup": SIGNUP_FIELDS})
        session.disabled_selectors.add("#signup-submit")

        summary = await _engine(session, max_interactions=1).run_interactions()

        assert session.clicks == []
        assert summary.forms_filled[0]["submitted"] is False

    @pytest.mark.asyncio
    async def test_field_failure_tolerated(self, make_session: Callable[..., Any]) -> None:
        session = make_session(discovery={"forms": [SIGNUP_FORM]}, forms={"#signup": SIGNUP_FIELDS})
        session.failing_selectors.add("#user_email")

        summary = await _engine(session, max_interactions=1).run_interactions()

        assert summary.forms_filled[0]["filled"] == 0
        assert summary.forms_filled[0]["submitted"] is True
        assert summary.errors == []


class TestBudget:
    """Test the global interaction budget."""

    @pytest.mark.parametrize("budget", [0, 1, 2, 3, 7, 10])
    @pytest.mark.asyncio
    async def test_budget_never_exceeded(self, make_session: Callable[..., Any], budget: int) -> None:
        forms = [{**SIGNUP_FORM, "locator": f"#form-{i}"} for i in range(5)]
        links = [_link(f"#link-{i}", f"https://example.com/page-{i}") for i in range(5)]
        buttons = [_button(f"#button-{i}", f"Button {i}") for i in range(5)]
        session = make_session(
            discovery={"forms": forms, "links": links, "buttons": buttons},
            forms={form["locator"]: SIGNUP_FIELDS for form in forms},
        )

        summary = await _engine(session, max_interactions=budget).run_interactions()

        assert summary.interactions_performed <= budget
        assert summary.forms_tested + summary.links_visited + summary.buttons_clicked <= budget
        if budget < 15:
            assert summary.budget_exhausted

    @pytest.mark.asyncio
    async def test_phases_share_remaining_budget(self, make_session: Callable[..., Any]) -> None:
        forms = [{**SIGNUP_FORM, "locator": f"#form-{i}"} for i in range(10)]
        links = [_link(f"#link-{i}", f"https://example.com/page-{i}") for i in range(10)]
        buttons = [_button(f"#button-{i}", f"Button {i}") for i in range(10)]
        session = make_session(
            discovery={"forms": forms, "links": links, "buttons": buttons},
            forms={form["locator"]: SIGNUP_FIELDS for form in forms},
        )

        summary = await _engine(session, max_interactions=10).run_interactions()

        assert summary.forms_tested == 5
        assert summary.links_visited == 2
        assert summary.buttons_clicked == 3
        assert summary.interactions_performed == 10

    @pytest.mark.asyncio
    async def test_zero_budget_does_nothing(self, make_session: Callable[..., Any]) -> None:
        session = make_session(discovery={"links": [_link("#a", "https://example.com/a")]})

        summary = await _engine(session, max_interactions=0).run_interactions()

        assert session.clicks == []
        assert summary.interactions_performed == 0
        assert summary.budget_exhausted


class TestLinkInteraction:
    """Test link selection and de-duplication."""

    @pytest.mark.asyncio
    async def test_duplicate_href_skipped_without_charge(self, make_session: Callable[..., Any]) -> None:
        session = make_session(
            discovery={
                "links": [
                    _link("#header-about", "https://example.com/about", "/about"),
                    _link("#footer-about", "https://example.com/about", "/about"),
                ]
            }
        )

        summary = await _engine(session, max_interactions=10).run_interactions()

        assert session.clicks == ["#header-about"]
        assert summary.links_visited == 1
        assert summary.interactions_performed == 1
        assert summary.visited_urls == ["https://example.com/about"]

    @pytest.mark.asyncio
    async def test_fragment_and_script_links_skipped(self, make_session: Callable[..., Any]) -> None:
        session = make_session(
            discovery={
                "links": [
                    _link("#top", "https://example.com/#top", "#top"),
                    _link("#js", "javascript:void(0)"),
                    _link("#empty", "", ""),
                    _link("#docs", "https://example.com/docs", "/docs"),
                ]
            }
        )

        summary = await _engine(session, max_interactions=10).run_interactions()

        assert session.clicks == ["#docs"]
        assert summary.interactions_performed == 1


class TestButtonInteraction:
    """Test button resolution and clicking."""

    @pytest.mark.asyncio
    async def test_disabled_button_skipped(self, make_session: Callable[..., Any]) -> None:
        session = make_session(
            discovery={"buttons": [_button("#pay", "Pay now"), _button("#help", "Help")]}
        )
        session.disabled_selectors.add("#pay")

        summary = await _engine(session, max_interactions=10).run_interactions()

        assert session.clicks == ["#help"]
        assert summary.buttons_clicked == 1
        assert summary.interactions_performed == 1

    @pytest.mark.asyncio
    async def test_failure_recorded_and_phase_continues(self, make_session: Callable[..., Any]) -> None:
        session = make_session(
            discovery={"buttons": [_button("#broken", "Broken"), _button("#ok", "OK")]}
        )
        session.failing_selectors.add("#broken")

        summary = await _engine(session, max_interactions=10).run_interactions()

        assert session.clicks == ["#ok"]
        assert summary.buttons_clicked == 1
        assert summary.interactions_performed == 2
        assert len(summary.errors) == 1
        assert summary.errors[0]["type"] == "button_interaction"
        assert summary.errors[0]["element"] == "#broken"

    @pytest.mark.asyncio
    async def test_unresolvable_button_charged_as_error(self, make_session: Callable[..., Any]) -> None:
        session = make_session(discovery={"buttons": [_button("#ghost", "Ghost")]})
        session._resolve_button = lambda arg: None

        summary = await _engine(session, max_interactions=10).run_interactions()

        assert session.clicks == []
        assert summary.interactions_performed == 1
        assert summary.errors[0]["type"] == "button_interaction"


class TestRunLifecycle:
    """Test state ownership, phases and abort."""

    @pytest.mark.asyncio
    async def test_phases_entered_in_order(self, make_session: Callable[..., Any]) -> None:
        session = make_session()

        engine = _engine(session, max_interactions=5)
        summary = await engine.run_interactions()

        assert summary.phases == [
            EnginePhase.DISCOVERING.value,
            EnginePhase.INTERACTING_FORMS.value,
            EnginePhase.INTERACTING_LINKS.value,
            EnginePhase.INTERACTING_BUTTONS.value,
            EnginePhase.DONE.value,
        ]
        assert engine.phase == EnginePhase.DONE
        assert not summary.budget_exhausted

    @pytest.mark.asyncio
    async def test_state_reset_between_runs(self, make_session: Callable[..., Any]) -> None:
        session = make_session(discovery={"links": [_link("#a", "https://example.com/a")]})
        state = InteractionState()
        engine = _engine(session, max_interactions=5)

        await engine.run_interactions(state=state)
        summary = await engine.run_interactions(state=state)

        assert session.clicks == ["#a", "#a"]
        assert summary.interactions_performed == 1
        assert state.visited_urls == {"https://example.com/a"}

    @pytest.mark.asyncio
    async def test_abort_stops_before_interacting(self, make_session: Callable[..., Any]) -> None:
        session = make_session(discovery={"buttons": [_button("#go", "Go")]})
        abort = asyncio.Event()
        abort.set()

        summary = await _engine(session, max_interactions=5).run_interactions(abort=abort)

        assert session.clicks == []
        assert summary.interactions_performed == 0
        assert summary.phases[-1] == EnginePhase.DONE.value

    @pytest.mark.asyncio
    async def test_module_level_run(self, make_session: Callable[..., Any]) -> None:
        session = make_session(discovery={"buttons": [_button("#go", "Go")]})

        summary = await run_interactions(session, InteractionOptions(max_interactions=1, interaction_delay=0))

        assert summary.buttons_clicked == 1
