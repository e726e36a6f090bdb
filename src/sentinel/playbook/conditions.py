"""Condition evaluator — yes/no questions about page state and variables.

Evaluation is a pure read: nothing on the page or in the context is
changed. Any error raised while querying the page degrades to ``False``
so a flaky condition can never abort a run on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from sentinel.playbook.models import ConditionType, PlaybookCondition
from sentinel.playbook.variables import stringify

if TYPE_CHECKING:
    from sentinel.browser.session import PageSession

logger = logging.getLogger(__name__)


class ConditionEvaluator:
    """Evaluates ``PlaybookCondition`` predicates against one page.

    Args:
        page: The run's page.
        variables: Live view of the run's context variables.
    """

    def __init__(self, page: PageSession | None, variables: Mapping[str, Any]) -> None:
        self._page = page
        self._variables = variables

    async def evaluate_all(self, conditions: Sequence[PlaybookCondition]) -> bool:
        """Return ``True`` only if every condition holds (implicit AND)."""
        if self._page is None:
            return False
        for condition in conditions:
            if not await self.evaluate(condition):
                return False
        return True

    async def evaluate(self, condition: PlaybookCondition) -> bool:
        """Evaluate a single condition, returning ``False`` on any error."""
        if self._page is None:
            return False
        try:
            return await self._evaluate(condition)
        except Exception as exc:
            logger.warning("Error evaluating %s condition: %s", condition.type.value, exc)
            return False

    async def _evaluate(self, condition: PlaybookCondition) -> bool:
        page = self._page
        selector = condition.selector
        ctype = condition.type

        if ctype in (ConditionType.EQUALS, ConditionType.NOT_EQUALS):
            equal = await self._compare(condition)
            if equal is None:
                return False
            return equal if ctype == ConditionType.EQUALS else not equal

        if not selector:
            return False

        if ctype == ConditionType.EXISTS:
            return await page.exists(selector)
        if ctype == ConditionType.NOT_EXISTS:
            return not await page.exists(selector)
        if ctype == ConditionType.VISIBLE:
            return await page.is_visible(selector)
        if ctype == ConditionType.HIDDEN:
            return await page.is_hidden(selector)

        text = await page.text_content(selector)
        needle = stringify(condition.value)
        if ctype == ConditionType.CONTAINS:
            return text is not None and needle in text
        if ctype == ConditionType.NOT_CONTAINS:
            return text is None or needle not in text

        logger.warning("Unknown condition type: %s", ctype)
        return False

    async def _compare(self, condition: PlaybookCondition) -> bool | None:
        """Compare a variable or element text with the expected value.

        Returns ``None`` when neither a variable nor a selector is given.
        """
        if condition.variable:
            return self._variables.get(condition.variable) == condition.value
        if condition.selector:
            text = await self._page.text_content(condition.selector)
            actual = text.strip() if text is not None else None
            return actual == stringify(condition.value)
        return None

