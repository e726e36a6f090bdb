"""Unit tests for the action executor.

Covers:
  - Leaf actions (navigate, wait, click, fill, select, extract, scroll, screenshot, evaluate)
  - Variable substitution and unresolved-variable warnings
  - Guards, conditional, loop and retry composites
  - Action-level retries, optional actions, screenshot on error
  - Nesting depth limit
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from sentinel.exceptions import ActionError
from sentinel.playbook.actions import ActionExecutor
from sentinel.playbook.models import (
    ErrorHandlingConfig,
    ExecutionContext,
    PlaybookAction,
    PlaybookDefinition,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _definition(**error_handling: Any) -> PlaybookDefinition:
    return PlaybookDefinition(
        id="test-pb",
        name="Test",
        version="1.0.0",
        error_handling=ErrorHandlingConfig(**{"retry_delay": 250, **error_handling}),
    )


def _action(**kwargs: Any) -> PlaybookAction:
    kwargs.setdefault("id", "a1")
    return PlaybookAction.model_validate(kwargs)


@pytest.fixture()
def context() -> ExecutionContext:
    return ExecutionContext(variables={"base": "https://grants.example.org"})


@pytest.fixture()
def make_executor(fake_page, context, sleep, tmp_path: Path):
    def _make(definition: PlaybookDefinition | None = None, **kwargs: Any) -> ActionExecutor:
        return ActionExecutor(
            fake_page,
            definition or _definition(),
            context,
            screenshot_dir=tmp_path / "shots",
            sleep=sleep,
            **kwargs,
        )

    return _make


def _slept(sleep) -> list[float]:
    return [c.args[0] for c in sleep.await_args_list]


# ---------------------------------------------------------------------------
# Leaf actions
# ---------------------------------------------------------------------------


class TestLeafActions:
    @pytest.mark.anyio
    async def test_navigate_substitutes_and_records_url(self, make_executor, fake_page, context) -> None:
        result = await make_executor().execute(_action(type="navigate", value="${base}/open-calls"))
        assert result.success
        assert fake_page.visited == ["https://grants.example.org/open-calls"]
        assert context.variables["currentUrl"] == "https://grants.example.org/open-calls"

    @pytest.mark.anyio
    async def test_unresolved_variable_warns_once(self, make_executor, fake_page, context) -> None:
        executor = make_executor()
        action = _action(type="navigate", value="https://x.org/${page}")
        await executor.execute(action)
        await executor.execute(action)
        assert fake_page.visited[-1] == "https://x.org/${page}"
        assert context.warnings == ["Unresolved variable ${page} in action a1"]

    @pytest.mark.anyio
    async def test_navigate_without_url_fails(self, make_executor) -> None:
        with pytest.raises(ActionError) as exc_info:
            await make_executor().execute(_action(type="navigate"))
        assert exc_info.value.action_id == "a1"

    @pytest.mark.anyio
    async def test_wait_for_time_uses_sleep(self, make_executor, sleep) -> None:
        await make_executor().execute(_action(type="wait", value=500))
        assert _slept(sleep) == [0.5]

    @pytest.mark.anyio
    async def test_wait_with_selector_and_time_fails(self, make_executor, fake_page) -> None:
        fake_page.add(".card", "x")
        with pytest.raises(ActionError, match="not both"):
            await make_executor().execute(_action(type="wait", selector=".card", value=500))

    @pytest.mark.anyio
    async def test_wait_without_target_fails(self, make_executor) -> None:
        with pytest.raises(ActionError, match="either selector or time"):
            await make_executor().execute(_action(type="wait"))

    @pytest.mark.anyio
    async def test_click_fill_select(self, make_executor, fake_page) -> None:
        for selector in ("#search", "#q", "#region"):
            fake_page.add(selector, "")
        executor = make_executor()
        await executor.execute(_action(id="q", type="fill", selector="#q", value="sculpture"))
        await executor.execute(_action(id="r", type="select", selector="#region", value=3))
        await executor.execute(_action(id="s", type="click", selector="#search"))
        assert fake_page.filled == {"#q": "sculpture"}
        assert fake_page.selected == {"#region": "3"}
        assert fake_page.clicks == ["#search"]

    @pytest.mark.anyio
    async def test_click_missing_element_raises(self, make_executor, fake_page) -> None:
        with pytest.raises(ActionError):
            await make_executor().execute(_action(type="click", selector="#missing"))
        assert fake_page.clicks == []

    @pytest.mark.anyio
    async def test_extract_single_match_projects_variables(self, make_executor, fake_page, context) -> None:
        fake_page.add("a.next", "Next", href="/page/2")
        action = _action(type="extract", selector="a.next", variables={"nextHref": "attributes.href"})
        result = await make_executor().execute(action)
        assert result.extracted_data["textContent"] == "Next"
        assert context.variables["nextHref"] == "/page/2"
        assert context.extracted_data["nextHref"] == "/page/2"

    @pytest.mark.anyio
    async def test_extract_many_matches_returns_list(self, make_executor, fake_page, context) -> None:
        fake_page.add(".title", "A", "B")
        action = _action(type="extract", selector=".title", variables={"firstTitle": "0.textContent"})
        result = await make_executor().execute(action)
        assert [item["textContent"] for item in result.extracted_data] == ["A", "B"]
        assert context.variables["firstTitle"] == "A"

    @pytest.mark.anyio
    async def test_optional_extract_without_match_succeeds(self, make_executor, context) -> None:
        result = await make_executor().execute(_action(type="extract", selector=".none", optional=True))
        assert result.success
        assert result.extracted_data is None
        assert context.warnings == []

    @pytest.mark.anyio
    async def test_scroll_variants(self, make_executor, fake_page) -> None:
        executor = make_executor()
        await executor.execute(_action(type="scroll", selector="#footer"))
        await executor.execute(_action(type="scroll", value=600))
        await executor.execute(_action(type="scroll", value=-200))
        await executor.execute(_action(type="scroll"))
        assert fake_page.scrolls == [("into_view", "#footer"), ("by", 600), ("to", 200), ("to", 0)]

    @pytest.mark.anyio
    async def test_screenshot_records_path(self, make_executor, fake_page, context, tmp_path: Path) -> None:
        result = await make_executor().execute(_action(type="screenshot", value="listing page"))
        assert result.screenshot in context.screenshots
        assert Path(result.screenshot).parent == tmp_path / "shots"
        assert Path(result.screenshot).name.startswith("listing_page_")
        assert fake_page.screenshots == [Path(result.screenshot)]

    @pytest.mark.anyio
    async def test_evaluate_projects_into_variables_only(self, make_executor, fake_page, context) -> None:
        fake_page.eval_results["document.title"] = {"title": "Open Calls"}
        action = _action(type="evaluate", value="document.title", variables={"pageTitle": "title"})
        await make_executor().execute(action)
        assert context.variables["pageTitle"] == "Open Calls"
        assert "pageTitle" not in context.extracted_data


# ---------------------------------------------------------------------------
# Guards and composites
# ---------------------------------------------------------------------------


class TestComposites:
    @pytest.mark.anyio
    async def test_false_guard_skips_action(self, make_executor, fake_page, context) -> None:
        action = _action(
            type="click",
            selector="#cookie-accept",
            conditions=[{"type": "exists", "selector": "#cookie-accept"}],
        )
        result = await make_executor().execute(action)
        assert result.success and result.skipped
        assert fake_page.clicks == []
        assert context.action_results[-1] is result

    @pytest.mark.anyio
    async def test_conditional_runs_children_when_true(self, make_executor, fake_page) -> None:
        fake_page.add("#cookie-accept", "Accept")
        action = _action(
            type="conditional",
            conditions=[{"type": "visible", "selector": "#cookie-accept"}],
            actions=[{"id": "accept", "type": "click", "selector": "#cookie-accept"}],
        )
        result = await make_executor().execute(action)
        assert result.success
        assert fake_page.clicks == ["#cookie-accept"]

    @pytest.mark.anyio
    async def test_conditional_without_children_fails(self, make_executor) -> None:
        action = _action(type="conditional", actions=[])
        with pytest.raises(ActionError, match="requires conditions and actions"):
            await make_executor().execute(action)

    @pytest.mark.anyio
    async def test_loop_stops_when_condition_fails(self, make_executor, fake_page) -> None:
        fake_page.add(".load-more", "Load more")

        def _load(page) -> None:
            if len(page.clicks) >= 2:
                page.elements.pop(".load-more")

        fake_page.on_click[".load-more"] = _load
        action = _action(
            type="loop",
            value=10,
            conditions=[{"type": "exists", "selector": ".load-more"}],
            actions=[{"id": "more", "type": "click", "selector": ".load-more"}],
        )
        result = await make_executor().execute(action)
        assert result.extracted_data == {"iterations": 2}
        assert fake_page.clicks == [".load-more", ".load-more"]

    @pytest.mark.anyio
    async def test_loop_is_bounded_by_max_iterations(self, make_executor, fake_page) -> None:
        fake_page.add(".next", "Next")
        action = _action(
            type="loop",
            value=3,
            conditions=[{"type": "exists", "selector": ".next"}],
            actions=[{"id": "n", "type": "click", "selector": ".next"}],
        )
        result = await make_executor().execute(action)
        assert result.extracted_data == {"iterations": 3}
        assert len(fake_page.clicks) == 3

    @pytest.mark.anyio
    async def test_loop_defaults_to_ten_iterations(self, make_executor, fake_page) -> None:
        fake_page.add(".next", "Next")
        action = _action(type="loop", value="lots", actions=[{"id": "n", "type": "click", "selector": ".next"}])
        await make_executor().execute(action)
        assert len(fake_page.clicks) == 10

    @pytest.mark.anyio
    async def test_retry_composite_recovers(self, make_executor, fake_page, sleep) -> None:
        fake_page.add("#go", "Go")
        fake_page.click_failures["#go"] = 2
        action = _action(
            type="retry",
            value=3,
            timeout=200,
            actions=[{"id": "go", "type": "click", "selector": "#go"}],
        )
        result = await make_executor().execute(action)
        assert result.success
        assert result.extracted_data == {"attempts": 3}
        assert _slept(sleep) == [0.2, 0.2]

    @pytest.mark.anyio
    async def test_retry_composite_exhausts_attempts(self, make_executor, fake_page, sleep) -> None:
        fake_page.add("#go", "Go")
        fake_page.click_failures["#go"] = 99
        action = _action(
            id="outer",
            type="retry",
            value=2,
            actions=[{"id": "go", "type": "click", "selector": "#go"}],
        )
        with pytest.raises(ActionError) as exc_info:
            await make_executor().execute(action)
        assert exc_info.value.action_id == "go"
        assert fake_page.click_failures["#go"] == 97
        assert _slept(sleep) == [1.0]

    @pytest.mark.anyio
    async def test_retry_composite_attempts_ignore_max_retries(self, make_executor, fake_page, sleep) -> None:
        fake_page.add("#go", "Go")
        fake_page.click_failures["#go"] = 99
        action = _action(
            id="outer",
            type="retry",
            value=3,
            timeout=50,
            actions=[{"id": "go", "type": "click", "selector": "#go"}],
        )
        executor = make_executor(_definition(max_retries=2, retry_delay=100))
        with pytest.raises(ActionError):
            await executor.execute(action)
        assert fake_page.click_failures["#go"] == 96
        assert _slept(sleep) == [0.05, 0.05]

    @pytest.mark.anyio
    async def test_explicit_retries_inside_retry_composite_still_apply(self, make_executor, fake_page, sleep) -> None:
        fake_page.add("#go", "Go")
        fake_page.click_failures["#go"] = 99
        action = _action(
            id="outer",
            type="retry",
            value=2,
            timeout=50,
            actions=[{"id": "go", "type": "click", "selector": "#go", "retries": 1}],
        )
        executor = make_executor(_definition(max_retries=5, retry_delay=100))
        with pytest.raises(ActionError):
            await executor.execute(action)
        assert fake_page.click_failures["#go"] == 95
        assert _slept(sleep) == [0.1, 0.05, 0.1]

    @pytest.mark.anyio
    async def test_max_retries_applies_again_after_retry_composite(self, make_executor, fake_page) -> None:
        fake_page.add("#ok", "Ok")
        fake_page.add("#go", "Go")
        fake_page.click_failures["#go"] = 1
        executor = make_executor(_definition(max_retries=1))
        await executor.execute(
            _action(id="outer", type="retry", value=1, actions=[{"id": "ok", "type": "click", "selector": "#ok"}])
        )
        result = await executor.execute(_action(id="after", type="click", selector="#go"))
        assert result.success and result.attempts == 2

    @pytest.mark.anyio
    async def test_nesting_depth_is_limited(self, make_executor, fake_page) -> None:
        fake_page.add("#x", "x")
        leaf = {"id": "leaf", "type": "click", "selector": "#x"}
        guard = [{"type": "exists", "selector": "#x"}]
        nested = {"id": "l2", "type": "conditional", "conditions": guard, "actions": [leaf]}
        action = _action(id="l1", type="conditional", conditions=guard, actions=[nested])
        with pytest.raises(ActionError, match="nesting depth"):
            await make_executor(max_depth=2).execute(action)
        assert fake_page.clicks == []


# ---------------------------------------------------------------------------
# Failure policy
# ---------------------------------------------------------------------------


class TestFailurePolicy:
    @pytest.mark.anyio
    async def test_action_retries_use_retry_delay(self, make_executor, fake_page, sleep) -> None:
        fake_page.add("#go", "Go")
        fake_page.click_failures["#go"] = 2
        result = await make_executor().execute(_action(type="click", selector="#go", retries=2))
        assert result.success
        assert result.attempts == 3
        assert _slept(sleep) == [0.25, 0.25]

    @pytest.mark.anyio
    async def test_retry_budget_falls_back_to_max_retries(self, make_executor, fake_page) -> None:
        fake_page.add("#go", "Go")
        fake_page.click_failures["#go"] = 1
        executor = make_executor(_definition(max_retries=1))
        result = await executor.execute(_action(type="click", selector="#go"))
        assert result.success and result.attempts == 2

    @pytest.mark.anyio
    async def test_explicit_zero_retries_overrides_max_retries(self, make_executor, fake_page, sleep) -> None:
        fake_page.add("#go", "Go")
        fake_page.click_failures["#go"] = 1
        executor = make_executor(_definition(max_retries=3))
        with pytest.raises(ActionError):
            await executor.execute(_action(type="click", selector="#go", retries=0))
        sleep.assert_not_awaited()

    @pytest.mark.anyio
    async def test_optional_failure_becomes_warning(self, make_executor, context) -> None:
        result = await make_executor().execute(_action(id="popup", type="click", selector="#popup", optional=True))
        assert not result.success
        assert result.error
        assert context.errors == []
        assert context.warnings[0].startswith("Optional action popup failed:")

    @pytest.mark.anyio
    async def test_screenshot_on_error(self, make_executor, fake_page, context) -> None:
        executor = make_executor(_definition(screenshot_on_error=True))
        with pytest.raises(ActionError):
            await executor.execute(_action(id="boom", type="click", selector="#missing"))
        failed = context.action_results[-1]
        assert failed.success is False
        assert failed.screenshot in context.screenshots
        assert Path(failed.screenshot).name.startswith("error_boom_")
