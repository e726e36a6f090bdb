"""Action executor — the recursive interpreter at the heart of a playbook run.

``ActionExecutor.execute`` performs one ``PlaybookAction`` against the
run's page and returns an ``ActionResult``. Composite actions
(``conditional``, ``loop``, ``retry``) call back into ``execute`` for
each nested action, strictly in order.

Failure policy per action:

* **Guard**: if ``conditions`` are present and false, the action is
  skipped and recorded as a success.
* **Action-level retry**: the budget is ``action.retries`` when set, else
  ``errorHandling.maxRetries`` for leaf actions. Attempts are separated
  by ``errorHandling.retryDelay`` milliseconds. Actions nested inside a
  ``retry`` composite only use an explicit ``retries``; the composite owns
  their attempt count.
* **Screenshot on error**: best effort, a failed capture is only logged.
* **Optional**: once retries are exhausted an optional action records a
  warning and returns a failed result instead of raising.

Everything else surfaces as ``ActionError`` to the engine.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sentinel.exceptions import ActionError
from sentinel.playbook.conditions import ConditionEvaluator
from sentinel.playbook.models import (
    COMPOSITE_ACTION_TYPES,
    ActionResult,
    ExecutionContext,
    PlaybookAction,
    PlaybookActionType,
    PlaybookDefinition,
)
from sentinel.playbook.variables import get_value_by_path, stringify, substitute_variables

if TYPE_CHECKING:
    from sentinel.browser.session import PageSession

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_NAVIGATION_TIMEOUT_MS = 30_000
DEFAULT_ELEMENT_TIMEOUT_MS = 10_000
DEFAULT_LOOP_ITERATIONS = 10
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 1_000
DEFAULT_MAX_DEPTH = 8

_UNSAFE_FILENAME_RE = re.compile(r"[^\w.-]+")


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


def _positive_int(value: Any, default: int) -> int:
    """Coerce *value* to a positive int, falling back to *default*."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    return float(value)


class ActionExecutor:
    """Interprets playbook actions for a single run.

    Args:
        page: The page owned by this run.
        definition: The playbook being executed (read only).
        context: The run's mutable execution context.
        screenshot_dir: Directory for screenshot files.
        navigation_timeout_ms: Default timeout for ``navigate``.
        element_timeout_ms: Default timeout for element waits.
        max_depth: Maximum nesting depth of composite actions.
        sleep: Coroutine function used for every delay (seconds).
        run_logger: Logger for progress messages; defaults to the module logger.
    """

    def __init__(
        self,
        page: PageSession,
        definition: PlaybookDefinition,
        context: ExecutionContext,
        *,
        screenshot_dir: Path | str = "screenshots",
        navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
        element_timeout_ms: int = DEFAULT_ELEMENT_TIMEOUT_MS,
        max_depth: int = DEFAULT_MAX_DEPTH,
        sleep: Sleep = asyncio.sleep,
        run_logger: logging.Logger | None = None,
    ) -> None:
        self._page = page
        self._definition = definition
        self._context = context
        self._screenshot_dir = Path(screenshot_dir)
        self._navigation_timeout_ms = navigation_timeout_ms
        self._element_timeout_ms = element_timeout_ms
        self._max_depth = max_depth
        self._sleep = sleep
        self._log = run_logger or logger
        self._conditions = ConditionEvaluator(page, context.variables)
        self._retry_scope = 0

        self._handlers = {
            PlaybookActionType.NAVIGATE: self._navigate,
            PlaybookActionType.WAIT: self._wait,
            PlaybookActionType.CLICK: self._click,
            PlaybookActionType.FILL: self._fill,
            PlaybookActionType.SELECT: self._select,
            PlaybookActionType.EXTRACT: self._extract,
            PlaybookActionType.SCROLL: self._scroll,
            PlaybookActionType.SCREENSHOT: self._screenshot,
            PlaybookActionType.EVALUATE: self._evaluate,
            PlaybookActionType.CONDITIONAL: self._conditional,
            PlaybookActionType.LOOP: self._loop,
            PlaybookActionType.RETRY: self._retry,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute(self, action: PlaybookAction, depth: int = 1) -> ActionResult:
        """Execute one action (and its subtree) with retry and failure policy.

        Args:
            action: The action to perform.
            depth: Nesting depth; root actions are depth 1.

        Returns:
            The ``ActionResult``, also appended to ``context.action_results``.

        Raises:
            ActionError: If a non-optional action fails after its retries.
        """
        start = time.monotonic()

        if depth > self._max_depth:
            raise ActionError(
                f"Maximum action nesting depth ({self._max_depth}) exceeded",
                action.id,
            )

        if action.conditions and not await self._conditions.evaluate_all(action.conditions):
            self._log.debug("Skipping action %s — conditions not met", action.id)
            return self._record(ActionResult(action_id=action.id, success=True, skipped=True))

        budget = max(self._retry_budget(action), 0)
        eh = self._definition.error_handling
        attempt = 0

        while True:
            attempt += 1
            result = ActionResult(action_id=action.id, success=False, attempts=attempt)
            self._log.debug(
                "Executing action %s (%s) attempt %d/%d",
                action.id, action.type.value, attempt, budget + 1,
            )
            try:
                resolved = self._resolve(action)
                await self._handlers[resolved.type](resolved, result, depth)
            except Exception as exc:
                result.error = str(exc)
                if eh.screenshot_on_error:
                    result.screenshot = await self._error_screenshot(action)

                if attempt <= budget:
                    self._log.info(
                        "Retrying action %s (%d attempts remaining): %s",
                        action.id, budget - attempt + 1, exc,
                    )
                    await self._sleep_ms(eh.retry_delay)
                    continue

                result.duration = _elapsed_ms(start)
                self._record(result)

                if action.optional:
                    message = f"Optional action {action.id} failed: {exc}"
                    self._log.warning(message)
                    self._context.warnings.append(message)
                    return result

                if isinstance(exc, ActionError):
                    raise
                raise ActionError(str(exc), action.id) from exc

            result.success = True
            result.duration = _elapsed_ms(start)
            return self._record(result)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _retry_budget(self, action: PlaybookAction) -> int:
        if action.retries is not None:
            return action.retries
        # Composite actions retry through their children; only explicit budgets apply.
        if action.type in COMPOSITE_ACTION_TYPES:
            return 0
        if self._retry_scope:
            return 0
        return self._definition.error_handling.max_retries

    def _record(self, result: ActionResult) -> ActionResult:
        self._context.action_results.append(result)
        return result

    def _resolve(self, action: PlaybookAction) -> PlaybookAction:
        """Return a copy of *action* with ``${var}`` tokens substituted."""
        unresolved: list[str] = []
        variables = self._context.variables
        update: dict[str, Any] = {}
        if action.selector:
            update["selector"] = substitute_variables(action.selector, variables, unresolved)
        if isinstance(action.value, str):
            update["value"] = substitute_variables(action.value, variables, unresolved)

        for name in unresolved:
            warning = f"Unresolved variable ${{{name}}} in action {action.id}"
            if warning not in self._context.warnings:
                self._context.warnings.append(warning)

        return action.model_copy(update=update) if update else action

    async def _sleep_ms(self, milliseconds: float) -> None:
        if milliseconds > 0:
            await self._sleep(milliseconds / 1000)

    def _element_timeout(self, action: PlaybookAction) -> int:
        return action.timeout if action.timeout is not None else self._element_timeout_ms

    async def _wait_for(self, action: PlaybookAction) -> None:
        await self._page.wait_for_selector(action.selector, self._element_timeout(action))

    async def take_screenshot(self, name: str) -> str:
        """Capture the page to ``<screenshot_dir>/<name>_<epoch-ms>.png`` and return the path."""
        safe = _UNSAFE_FILENAME_RE.sub("_", name).strip("_") or "screenshot"
        path = self._screenshot_dir / f"{safe}_{int(time.time() * 1000)}.png"
        await self._page.screenshot(path)
        return str(path)

    async def _error_screenshot(self, action: PlaybookAction) -> str | None:
        try:
            path = await self.take_screenshot(f"error_{action.id}")
        except Exception as exc:
            self._log.warning("Failed to take error screenshot for %s: %s", action.id, exc)
            return None
        self._context.screenshots.append(path)
        return path

    def _project(self, data: Any, mapping: dict[str, Any], *, into_extracted: bool) -> None:
        """Copy dotted-path projections of *data* into context variables."""
        for key, path in mapping.items():
            value = get_value_by_path(data, str(path))
            self._context.variables[key] = value
            if into_extracted:
                self._context.extracted_data[key] = value

    # ------------------------------------------------------------------
    # Leaf actions
    # ------------------------------------------------------------------

    async def _navigate(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if action.value is None or action.value == "":
            raise ActionError("Navigate action requires a URL value", action.id)
        timeout = action.timeout if action.timeout is not None else self._navigation_timeout_ms
        await self._page.goto(stringify(action.value), timeout)
        self._context.variables["currentUrl"] = self._page.url

    async def _wait(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        has_value = action.value is not None and action.value != ""
        if action.selector and has_value:
            raise ActionError("Wait action takes either a selector or a time value, not both", action.id)
        if action.selector:
            await self._wait_for(action)
        elif has_value:
            await self._sleep_ms(_to_number(action.value))
        else:
            raise ActionError("Wait action requires either selector or time value", action.id)

    async def _click(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if not action.selector:
            raise ActionError("Click action requires a selector", action.id)
        await self._wait_for(action)
        await self._page.click(action.selector)

    async def _fill(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if not action.selector or action.value is None:
            raise ActionError("Fill action requires a selector and a value", action.id)
        await self._wait_for(action)
        await self._page.fill(action.selector, stringify(action.value))

    async def _select(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if not action.selector or action.value is None:
            raise ActionError("Select action requires a selector and a value", action.id)
        await self._wait_for(action)
        await self._page.select_option(action.selector, stringify(action.value))

    async def _extract(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if not action.selector:
            raise ActionError("Extract action requires a selector", action.id)
        try:
            await self._wait_for(action)
        except Exception:
            if action.optional:
                self._log.debug("Optional extract %s found nothing", action.id)
                result.extracted_data = None
                return
            raise

        snapshots = await self._page.query_all(action.selector)
        items = [s.model_dump(by_alias=True) for s in snapshots]
        data: Any = items[0] if len(items) == 1 else items

        if action.variables:
            self._project(data, action.variables, into_extracted=True)
        result.extracted_data = data

    async def _scroll(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if action.selector:
            await self._page.scroll_into_view(action.selector, self._element_timeout(action))
            return
        try:
            pixels = int(_to_number(action.value)) if action.value not in (None, "") else 0
        except ValueError:
            pixels = 0
        if pixels > 0:
            await self._page.scroll_by(pixels)
        else:
            await self._page.scroll_to(abs(pixels))

    async def _screenshot(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        name = stringify(action.value) or "screenshot"
        path = await self.take_screenshot(name)
        self._context.screenshots.append(path)
        result.screenshot = path

    async def _evaluate(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if action.value is None or action.value == "":
            raise ActionError("Evaluate action requires an expression value", action.id)
        data = await self._page.evaluate(stringify(action.value))
        if action.variables:
            self._project(data, action.variables, into_extracted=False)
        result.extracted_data = data

    # ------------------------------------------------------------------
    # Composite actions
    # ------------------------------------------------------------------

    async def _conditional(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if not action.conditions or not action.actions:
            raise ActionError("Conditional action requires conditions and actions", action.id)

        if not await self._conditions.evaluate_all(action.conditions):
            self._log.debug("Conditions not met for %s, skipping sub-actions", action.id)
            return

        self._log.debug("Conditions met for %s, executing %d sub-actions", action.id, len(action.actions))
        for sub_action in action.actions:
            await self.execute(sub_action, depth + 1)

    async def _loop(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if not action.actions:
            raise ActionError("Loop action requires actions to execute", action.id)

        max_iterations = _positive_int(action.value, DEFAULT_LOOP_ITERATIONS)
        iterations = 0
        while iterations < max_iterations:
            if action.conditions and not await self._conditions.evaluate_all(action.conditions):
                self._log.debug("Loop %s exit condition reached", action.id)
                break
            self._log.debug("Loop %s iteration %d/%d", action.id, iterations + 1, max_iterations)
            for sub_action in action.actions:
                await self.execute(sub_action, depth + 1)
            iterations += 1

        result.extracted_data = {"iterations": iterations}

    async def _retry(self, action: PlaybookAction, result: ActionResult, depth: int) -> None:
        if not action.actions:
            raise ActionError("Retry action requires actions to execute", action.id)

        max_attempts = _positive_int(action.value, DEFAULT_RETRY_ATTEMPTS)
        delay_ms = action.timeout if action.timeout is not None else DEFAULT_RETRY_DELAY_MS
        last_error: ActionError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                self._log.debug("Retry %s attempt %d/%d", action.id, attempt, max_attempts)
                self._retry_scope += 1
                try:
                    for sub_action in action.actions:
                        await self.execute(sub_action, depth + 1)
                finally:
                    self._retry_scope -= 1
                result.extracted_data = {"attempts": attempt}
                return
            except ActionError as exc:
                last_error = exc
                if attempt < max_attempts:
                    self._log.info("Retry %s attempt %d failed, retrying in %dms", action.id, attempt, delay_ms)
                    await self._sleep_ms(delay_ms)

        raise last_error or ActionError("All retry attempts failed", action.id)
