"""Sentinel exception hierarchy."""

from __future__ import annotations


class SentinelError(Exception):
    """Base exception for all Sentinel-specific errors."""


class PlaybookValidationError(SentinelError):
    """Raised when a playbook definition fails structural validation.

    Attributes:
        errors: Fatal validation messages.
        warnings: Advisory messages collected alongside the errors.
    """

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(f"Invalid playbook: {', '.join(self.errors)}")


class PlaybookNotFoundError(SentinelError):
    """Raised when a playbook id is not registered with the manager."""

    def __init__(self, playbook_id: str) -> None:
        self.playbook_id = playbook_id
        super().__init__(f"Playbook with ID '{playbook_id}' not found")


class DuplicatePlaybookError(SentinelError):
    """Raised when creating a playbook whose id already exists."""

    def __init__(self, playbook_id: str) -> None:
        self.playbook_id = playbook_id
        super().__init__(f"Playbook with ID '{playbook_id}' already exists")


class PlaybookStorageError(SentinelError):
    """Raised when a template or import file cannot be read or parsed."""


class ActionError(SentinelError):
    """Raised when a single playbook action fails after its retries.

    Attributes:
        action_id: Id of the innermost action that failed.
    """

    def __init__(self, message: str, action_id: str) -> None:
        self.action_id = action_id
        super().__init__(message)


class ExtractionError(SentinelError):
    """Raised when a required extraction rule yields nothing usable."""

    def __init__(self, field: str, reason: str = "") -> None:
        self.field = field
        detail = f": {reason}" if reason else ""
        super().__init__(f"Required field extraction failed: {field}{detail}")


class RunAbortError(SentinelError):
    """Raised inside the engine to stop a run after an unrecovered failure."""
