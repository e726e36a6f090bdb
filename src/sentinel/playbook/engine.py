"""Playbook engine — runs one definition against one browser page.

Each call to ``PlaybookEngine.execute`` is an independent run:

1. **Initializing** — build a fresh ``ExecutionContext`` (definition
   variables overridden by caller variables) and open a page.
2. **Running actions** — walk the root actions through the
   ``ActionExecutor``. A failure that is neither optional nor covered by
   ``continueOnError`` aborts the run and skips extraction.
3. **Extracting** — apply the extraction rules and assemble opportunities.
4. **Closing** — close the page (exactly once, on every path) and return
   a ``PlaybookExecutionResult``.

The engine keeps no state between runs, so one instance may serve
concurrent runs as long as the browser hands out distinct pages.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sentinel.exceptions import ActionError, ExtractionError, RunAbortError
from sentinel.playbook.actions import (
    DEFAULT_ELEMENT_TIMEOUT_MS,
    DEFAULT_MAX_DEPTH,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    ActionExecutor,
    Sleep,
)
from sentinel.playbook.extraction import ExtractionPipeline
from sentinel.playbook.models import (
    ExecutionContext,
    Opportunity,
    PlaybookAction,
    PlaybookDefinition,
    PlaybookExecutionResult,
)

if TYPE_CHECKING:
    from sentinel.browser.session import BrowserSession, PageSession
    from sentinel.settings.config import PlaybookSettings

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class PlaybookEngine:
    """Executes playbook definitions.

    Args:
        screenshot_dir: Directory for screenshot files.
        navigation_timeout_ms: Default ``navigate`` timeout.
        element_timeout_ms: Default element-wait timeout.
        max_action_depth: Maximum nesting depth of composite actions.
        max_run_duration_sec: Wall-clock budget per run; ``0`` disables it.
        sleep: Coroutine function used for all delays.
    """

    def __init__(
        self,
        *,
        screenshot_dir: Path | str = "screenshots",
        navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
        element_timeout_ms: int = DEFAULT_ELEMENT_TIMEOUT_MS,
        max_action_depth: int = DEFAULT_MAX_DEPTH,
        max_run_duration_sec: float = 0.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._screenshot_dir = Path(screenshot_dir)
        self._navigation_timeout_ms = navigation_timeout_ms
        self._element_timeout_ms = element_timeout_ms
        self._max_action_depth = max_action_depth
        self._max_run_duration_sec = max_run_duration_sec
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: PlaybookSettings | None = None, **overrides: Any) -> PlaybookEngine:
        """Build an engine from ``PlaybookSettings`` (defaults to the global settings)."""
        if settings is None:
            from sentinel.settings import get_settings

            settings = get_settings().playbook
        kwargs: dict[str, Any] = {
            "screenshot_dir": settings.screenshot_dir,
            "navigation_timeout_ms": settings.navigation_timeout_ms,
            "element_timeout_ms": settings.element_timeout_ms,
            "max_action_depth": settings.max_action_depth,
            "max_run_duration_sec": settings.max_run_duration_sec,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    async def execute(
        self,
        definition: PlaybookDefinition,
        browser: BrowserSession,
        initial_variables: Mapping[str, Any] | None = None,
        *,
        max_run_duration_sec: float | None = None,
    ) -> PlaybookExecutionResult:
        """Run *definition* in a new page of *browser*.

        Args:
            definition: The playbook to execute.
            browser: Source of the page used for this run.
            initial_variables: Caller overrides merged over the definition variables.
            max_run_duration_sec: Per-call override of the run deadline (``0`` disables).

        Returns:
            The run result. Failures are reported in the result, never raised.
        """
        start = time.monotonic()
        run_log = self._run_logger(definition)
        context = ExecutionContext(variables={**definition.variables, **(initial_variables or {})})
        opportunities: list[Opportunity] = []
        page: PageSession | None = None
        budget = self._max_run_duration_sec if max_run_duration_sec is None else max_run_duration_sec

        run_log.info("Executing playbook: %s (%s)", definition.name, definition.id)
        try:
            page = await browser.new_page()
            async with asyncio.timeout(budget if budget > 0 else None):
                await self._run_actions(page, definition, context, run_log)
                opportunities = await ExtractionPipeline(page, definition, context, run_log).run()
        except RunAbortError as exc:
            run_log.warning("Playbook %s aborted: %s", definition.id, exc)
        except ExtractionError as exc:
            context.errors.append(f"Opportunity extraction failed: {exc}")
            run_log.warning("Playbook %s extraction failed: %s", definition.id, exc)
        except TimeoutError as exc:
            if budget > 0:
                context.errors.append(f"Playbook execution exceeded the {budget:g}s run deadline")
                run_log.warning("Playbook %s exceeded its %gs deadline", definition.id, budget)
            else:
                context.errors.append(f"Playbook execution failed: {exc or 'timeout'}")
        except Exception as exc:
            context.errors.append(f"Playbook execution failed: {exc}")
            run_log.exception("Playbook %s failed unexpectedly", definition.id)
        finally:
            if page is not None:
                await self._close_page(page, context, run_log)

        context.execution_time = (time.monotonic() - start) * 1000
        success = not context.errors
        run_log.info(
            "Playbook %s: %s (%d actions, %d opportunities in %.0fms)",
            definition.id,
            "SUCCESS" if success else "FAILED",
            context.actions_executed,
            len(opportunities),
            context.execution_time,
        )
        return PlaybookExecutionResult(
            success=success,
            opportunities=opportunities,
            context=context,
            execution_time=context.execution_time,
            errors=context.errors,
            warnings=context.warnings,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_actions(
        self,
        page: PageSession,
        definition: PlaybookDefinition,
        context: ExecutionContext,
        run_log: logging.Logger,
    ) -> None:
        executor = ActionExecutor(
            page,
            definition,
            context,
            screenshot_dir=self._screenshot_dir,
            navigation_timeout_ms=self._navigation_timeout_ms,
            element_timeout_ms=self._element_timeout_ms,
            max_depth=self._max_action_depth,
            sleep=self._sleep,
            run_logger=run_log,
        )
        continue_on_error = definition.error_handling.continue_on_error

        for action in definition.actions:
            try:
                result = await executor.execute(action)
            except ActionError as exc:
                context.errors.append(_describe_failure(action, exc))
                if continue_on_error:
                    run_log.warning("Action %s failed, continuing: %s", action.id, exc)
                    continue
                raise RunAbortError(f"Action {action.id} failed") from exc
            if result.success:
                context.actions_executed += 1

    async def _close_page(self, page: PageSession, context: ExecutionContext, run_log: logging.Logger) -> None:
        try:
            await page.close()
        except Exception as exc:
            message = f"Failed to close page: {exc}"
            run_log.warning(message)
            context.warnings.append(message)

    @staticmethod
    def _run_logger(definition: PlaybookDefinition) -> logging.Logger:
        run_log = logger.getChild(definition.id or "anonymous")
        run_log.setLevel(_LOG_LEVELS.get(definition.error_handling.log_level, logging.INFO))
        return run_log


def _describe_failure(action: PlaybookAction, exc: ActionError) -> str:
    if exc.action_id and exc.action_id != action.id:
        return f"Action {action.id} failed: {exc} (in nested action {exc.action_id})"
    return f"Action {action.id} failed: {exc}"
