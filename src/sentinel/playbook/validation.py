"""Structural validation of playbook definitions.

``validate_playbook`` never raises: it returns a ``ValidationResult``
listing every error (fatal) and warning (advisory) it found. Raw JSON
mappings are parsed first, and schema errors such as an unknown action
type are reported the same way as structural ones.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from sentinel.playbook.actions import DEFAULT_MAX_DEPTH
from sentinel.playbook.models import (
    COMPOSITE_ACTION_TYPES,
    PlaybookAction,
    PlaybookActionType,
    PlaybookDefinition,
    ValidationResult,
)

_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+")


def parse_definition(data: PlaybookDefinition | Mapping[str, Any]) -> PlaybookDefinition:
    """Return *data* as a ``PlaybookDefinition``, parsing mappings.

    Raises:
        pydantic.ValidationError: If a mapping does not fit the schema.
    """
    if isinstance(data, PlaybookDefinition):
        return data
    return PlaybookDefinition.model_validate(dict(data))


def validate_playbook(
    data: PlaybookDefinition | Mapping[str, Any],
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> ValidationResult:
    """Check a definition against the structural rules.

    Args:
        data: A parsed definition or its raw JSON mapping.
        max_depth: Maximum allowed nesting depth of actions.

    Returns:
        ``ValidationResult`` with ``is_valid`` false iff any error was found.
    """
    try:
        playbook = parse_definition(data)
    except ValidationError as exc:
        return ValidationResult(is_valid=False, errors=_schema_errors(exc))

    errors: list[str] = []
    warnings: list[str] = []

    if not playbook.id.strip():
        errors.append("Playbook ID is required")
    elif not _ID_RE.match(playbook.id):
        errors.append("Playbook ID must contain only letters, numbers, hyphens, and underscores")
    if not playbook.name.strip():
        errors.append("Playbook name is required")
    if not playbook.version.strip():
        errors.append("Playbook version is required")
    elif not _SEMVER_RE.match(playbook.version):
        warnings.append("Playbook version should follow semantic versioning (e.g., 1.0.0)")

    if not playbook.actions:
        errors.append("Playbook must have at least one action")
    for index, action in enumerate(playbook.actions):
        errors.extend(_validate_action(action, index, depth=1, max_depth=max_depth))

    for index, rule in enumerate(playbook.extraction_rules):
        if not rule.field.strip():
            errors.append(f"Extraction rule {index}: field is required")
        if not rule.selector.strip():
            errors.append(f"Extraction rule {index}: selector is required")

    eh = playbook.error_handling
    if eh.max_retries < 0:
        errors.append("Error handling maxRetries must be >= 0")
    if eh.retry_delay < 0:
        errors.append("Error handling retryDelay must be >= 0")

    meta = playbook.metadata
    if meta.estimated_duration < 0:
        warnings.append("Estimated duration should be positive")
    if not 0 <= meta.success_rate <= 100:
        warnings.append("Success rate should be between 0 and 100")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def _validate_action(action: PlaybookAction, index: int, *, depth: int, max_depth: int) -> list[str]:
    errors: list[str] = []
    kind = action.type

    if not action.id.strip():
        errors.append(f"Action {index}: id is required")
    if depth > max_depth:
        errors.append(f"Action {index}: nesting depth {depth} exceeds maximum of {max_depth}")
        return errors

    if kind == PlaybookActionType.NAVIGATE and _missing(action.value):
        errors.append(f"Action {index} (navigate): value (URL) is required")
    elif kind in (PlaybookActionType.CLICK, PlaybookActionType.EXTRACT) and not action.selector:
        errors.append(f"Action {index} ({kind.value}): selector is required")
    elif kind in (PlaybookActionType.FILL, PlaybookActionType.SELECT) and (
        not action.selector or action.value is None
    ):
        errors.append(f"Action {index} ({kind.value}): selector and value are required")
    elif kind in COMPOSITE_ACTION_TYPES and not action.actions:
        errors.append(f"Action {index} ({kind.value}): sub-actions are required")

    for sub_index, sub_action in enumerate(action.actions or []):
        for message in _validate_action(sub_action, sub_index, depth=depth + 1, max_depth=max_depth):
            errors.append(f"Action {index} > {message}")
    return errors


def _missing(value: Any) -> bool:
    return value is None or value == ""


def _schema_errors(exc: ValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return messages


