"""Playbook manager — definition CRUD, execution bookkeeping and statistics.

The manager owns three in-memory collections (definitions, stats,
history) backed by a ``PlaybookStore``. Construct one per process and
pass it to whatever serves callers (CLI, API); there is no module-level
instance. Mutating operations hold a re-entrant lock because the API
runs synchronous handlers on a thread pool.

Validation always happens before storage is touched: a definition that
fails ``validate_playbook`` raises ``PlaybookValidationError`` and leaves
both disk and memory unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sentinel.exceptions import (
    DuplicatePlaybookError,
    PlaybookNotFoundError,
    PlaybookStorageError,
    PlaybookValidationError,
)
from sentinel.playbook.actions import DEFAULT_MAX_DEPTH
from sentinel.playbook.engine import PlaybookEngine
from sentinel.playbook.models import (
    PlaybookDefinition,
    PlaybookExecutionHistory,
    PlaybookExecutionResult,
    PlaybookSearchFilters,
    PlaybookStats,
    ValidationResult,
)
from sentinel.playbook.store import PlaybookStore, read_json, write_json
from sentinel.playbook.validation import parse_definition, validate_playbook

if TYPE_CHECKING:
    from sentinel.browser.session import BrowserSession

logger = logging.getLogger(__name__)

DefinitionInput = PlaybookDefinition | Mapping[str, Any]


def _generate_history_id() -> str:
    return f"hist_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"


class PlaybookManager:
    """CRUD, search, execution and statistics for playbooks.

    Args:
        store: Persistence for definitions, templates and history.
        engine: Engine used for executions; built from settings if omitted.
        max_action_depth: Nesting limit enforced by validation.
    """

    def __init__(
        self,
        store: PlaybookStore,
        engine: PlaybookEngine | None = None,
        *,
        max_action_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._store = store
        self._engine = engine or PlaybookEngine.from_settings()
        self._max_action_depth = max_action_depth
        self._playbooks: dict[str, PlaybookDefinition] = {}
        self._stats: dict[str, PlaybookStats] = {}
        self._history: list[PlaybookExecutionHistory] = []
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls) -> PlaybookManager:
        """Build a manager wired to the configured store and engine."""
        from sentinel.settings import get_settings

        settings = get_settings().playbook
        return cls(
            PlaybookStore.from_settings(),
            PlaybookEngine.from_settings(settings),
            max_action_depth=settings.max_action_depth,
        )

    @property
    def store(self) -> PlaybookStore:
        return self._store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Create storage directories, load definitions and history, rebuild stats."""
        with self._lock:
            self._store.ensure_directories()
            self._playbooks.clear()
            self._stats.clear()
            for playbook in self._store.load_definitions():
                self._playbooks[playbook.id] = playbook
                self._init_stats(playbook)
            self._history = self._store.load_history()
            self._recalculate_stats()
        logger.info("Loaded %d playbooks and %d history entries", len(self._playbooks), len(self._history))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, definition: DefinitionInput) -> ValidationResult:
        """Run structural validation without touching storage."""
        return validate_playbook(definition, max_depth=self._max_action_depth)

    def _checked(self, definition: DefinitionInput) -> PlaybookDefinition:
        result = self.validate(definition)
        if not result.is_valid:
            raise PlaybookValidationError(result.errors, result.warnings)
        for warning in result.warnings:
            logger.warning("Playbook validation warning: %s", warning)
        return parse_definition(definition)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, definition: DefinitionInput) -> PlaybookDefinition:
        """Validate and store a new playbook.

        Raises:
            PlaybookValidationError: If the definition fails validation.
            DuplicatePlaybookError: If the id is already registered.
        """
        playbook = self._checked(definition)
        with self._lock:
            if playbook.id in self._playbooks:
                raise DuplicatePlaybookError(playbook.id)
            self._store.save_definition(playbook)
            self._playbooks[playbook.id] = playbook
            self._init_stats(playbook)
        logger.info("Created playbook: %s (%s)", playbook.name, playbook.id)
        return playbook

    def update(self, definition: DefinitionInput) -> PlaybookDefinition:
        """Validate and replace an existing playbook.

        Raises:
            PlaybookValidationError: If the definition fails validation.
            PlaybookNotFoundError: If the id is not registered.
        """
        playbook = self._checked(definition)
        with self._lock:
            if playbook.id not in self._playbooks:
                raise PlaybookNotFoundError(playbook.id)
            self._store.save_definition(playbook)
            self._playbooks[playbook.id] = playbook
            self._stats[playbook.id].name = playbook.name
        logger.info("Updated playbook: %s (%s)", playbook.name, playbook.id)
        return playbook

    def delete(self, playbook_id: str) -> None:
        """Remove a playbook from storage and memory. History is kept.

        Raises:
            PlaybookNotFoundError: If the id is not registered.
        """
        with self._lock:
            if playbook_id not in self._playbooks:
                raise PlaybookNotFoundError(playbook_id)
            try:
                self._store.delete_definition(playbook_id)
            except OSError as exc:
                logger.warning("Failed to delete playbook file for %s: %s", playbook_id, exc)
            del self._playbooks[playbook_id]
            self._stats.pop(playbook_id, None)
        logger.info("Deleted playbook: %s", playbook_id)

    def get(self, playbook_id: str) -> PlaybookDefinition | None:
        return self._playbooks.get(playbook_id)

    def require(self, playbook_id: str) -> PlaybookDefinition:
        """Return the playbook or raise ``PlaybookNotFoundError``."""
        playbook = self.get(playbook_id)
        if playbook is None:
            raise PlaybookNotFoundError(playbook_id)
        return playbook

    def list_playbooks(self) -> list[PlaybookDefinition]:
        return list(self._playbooks.values())

    def search(self, filters: PlaybookSearchFilters | None = None) -> list[PlaybookDefinition]:
        """Return playbooks matching every set filter.

        ``tags`` matches if any tag overlaps. ``min_success_rate`` is checked
        against the observed ``PlaybookStats``, not the authored metadata.
        """
        if filters is None:
            return self.list_playbooks()

        matches = []
        for playbook in self._playbooks.values():
            meta = playbook.metadata
            if filters.tags and not set(filters.tags) & set(playbook.tags):
                continue
            if filters.author and playbook.author != filters.author:
                continue
            if filters.target_site and meta.target_site != filters.target_site:
                continue
            if filters.complexity and meta.complexity != filters.complexity:
                continue
            if filters.requires_auth is not None and meta.requires_auth != filters.requires_auth:
                continue
            if filters.min_success_rate is not None:
                stats = self._stats.get(playbook.id)
                if stats is None or stats.success_rate < filters.min_success_rate:
                    continue
            matches.append(playbook)
        return matches

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        playbook_id: str,
        browser: BrowserSession,
        variables: Mapping[str, Any] | None = None,
        **engine_kwargs: Any,
    ) -> PlaybookExecutionResult:
        """Execute a stored playbook and record its history and stats.

        A history entry is written for every run, successful or not. Failed
        runs are never retried here.

        Raises:
            PlaybookNotFoundError: If the id is not registered.
        """
        playbook = self.require(playbook_id)
        overrides = dict(variables or {})
        executed_at = datetime.now(timezone.utc)

        result = await self._engine.execute(playbook, browser, overrides, **engine_kwargs)

        entry = PlaybookExecutionHistory(
            id=_generate_history_id(),
            playbook_id=playbook.id,
            executed_at=executed_at,
            success=result.success,
            opportunities_found=len(result.opportunities),
            execution_time=result.execution_time,
            errors=result.errors,
            warnings=result.warnings,
            variables=overrides,
        )
        # Bookkeeping takes the manager lock and writes a file; keep it off the event loop.
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.record_execution, entry)
        return result

    def record_execution(self, entry: PlaybookExecutionHistory) -> None:
        """Persist a history entry and fold it into the playbook's stats."""
        try:
            self._store.save_history(entry)
        except OSError as exc:
            logger.warning("Failed to save execution history %s: %s", entry.id, exc)
        with self._lock:
            self._history.append(entry)
            self._update_stats(entry)

    # ------------------------------------------------------------------
    # Stats and history
    # ------------------------------------------------------------------

    def stats(self, playbook_id: str) -> PlaybookStats | None:
        return self._stats.get(playbook_id)

    def all_stats(self) -> list[PlaybookStats]:
        return list(self._stats.values())

    def history(self, playbook_id: str) -> list[PlaybookExecutionHistory]:
        return [entry for entry in self._history if entry.playbook_id == playbook_id]

    def all_history(self) -> list[PlaybookExecutionHistory]:
        return list(self._history)

    def _init_stats(self, playbook: PlaybookDefinition) -> None:
        if playbook.id not in self._stats:
            self._stats[playbook.id] = PlaybookStats(
                id=playbook.id,
                name=playbook.name,
                success_rate=playbook.metadata.success_rate,
            )

    def _update_stats(self, entry: PlaybookExecutionHistory) -> None:
        stats = self._stats.get(entry.playbook_id)
        if stats is None:
            return
        self._apply_history(stats, self.history(entry.playbook_id))
        stats.last_executed = entry.executed_at

    def _recalculate_stats(self) -> None:
        for playbook_id, stats in self._stats.items():
            executions = self.history(playbook_id)
            if executions:
                self._apply_history(stats, executions)

    @staticmethod
    def _apply_history(stats: PlaybookStats, executions: list[PlaybookExecutionHistory]) -> None:
        total = len(executions)
        successes = sum(1 for e in executions if e.success)
        stats.total_executions = total
        stats.successful_executions = successes
        stats.failed_executions = total - successes
        stats.success_rate = successes / total * 100
        stats.average_execution_time = sum(e.execution_time for e in executions) / total
        stats.average_opportunities_found = sum(e.opportunities_found for e in executions) / total
        stats.last_executed = executions[-1].executed_at

    # ------------------------------------------------------------------
    # Templates, import and export
    # ------------------------------------------------------------------

    def create_from_template(
        self,
        template_name: str,
        playbook_id: str,
        overrides: Mapping[str, Any] | None = None,
    ) -> PlaybookDefinition:
        """Instantiate a template as a new playbook.

        The new definition takes the template document, the given id, a
        name of ``"<template name> (<id>)"``, then any *overrides*.

        Raises:
            PlaybookStorageError: If the template cannot be read.
            PlaybookValidationError: If the result fails validation.
            DuplicatePlaybookError: If the id is already registered.
        """
        template = self._store.load_template(template_name)
        data = {
            **template,
            "id": playbook_id,
            "name": f"{template.get('name', template_name)} ({playbook_id})",
            **dict(overrides or {}),
        }
        return self.create(data)

    def export(self, playbook_id: str, output_path: Path | str) -> Path:
        """Write a stored playbook to *output_path* as JSON."""
        playbook = self.require(playbook_id)
        path = Path(output_path)
        write_json(path, playbook.to_json_dict())
        logger.info("Exported playbook %s to %s", playbook_id, path)
        return path

    def import_(self, file_path: Path | str) -> PlaybookDefinition:
        """Create a playbook from an external JSON file.

        Raises:
            PlaybookStorageError: If the file cannot be read or is not an object.
            PlaybookValidationError: If the definition fails validation.
            DuplicatePlaybookError: If the id is already registered.
        """
        data = read_json(Path(file_path))
        if not isinstance(data, dict):
            raise PlaybookStorageError(f"Playbook file {file_path} is not a JSON object")
        return self.create(data)
