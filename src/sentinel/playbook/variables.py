"""Variable substitution and result projection for playbook actions.

``${name}`` tokens in selectors and string values are resolved against
the run's context variables just before an action executes. Unbound
tokens are left in place verbatim: a later action may bind the variable
and a subsequent action will then see the resolved value.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

# ${identifier}: word characters only.
_TOKEN_RE = re.compile(r"\$\{(\w+)\}")


def substitute_variables(
    template: str,
    variables: Mapping[str, Any],
    unresolved: list[str] | None = None,
) -> str:
    """Replace ``${name}`` tokens with the string form of bound variables.

    Args:
        template: String potentially containing ``${…}`` tokens.
        variables: Current context variables.
        unresolved: If given, names of tokens that could not be resolved
            are appended to it.

    Returns:
        The string with every bound token replaced.
    """
    if "${" not in template:
        return template

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in variables and variables[name] is not None:
            return stringify(variables[name])
        logger.debug("Unresolved variable: %s", name)
        if unresolved is not None:
            unresolved.append(name)
        return match.group(0)

    return _TOKEN_RE.sub(_replace, template)


def stringify(value: Any) -> str:
    """Render an action or condition value the way it reads in JSON (``true``, ``42``)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def get_value_by_path(obj: Any, path: str) -> Any:
    """Walk a dotted path through dicts, lists and models.

    ``"attributes.href"`` reads a mapping key, ``"0.textContent"`` indexes
    a list first. Any missing step yields ``None``.
    """
    current = obj
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return None
        else:
            current = getattr(current, key, None)
    return current
