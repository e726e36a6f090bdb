"""File-backed persistence for playbook definitions, templates and history.

Layout::

    <definitions_dir>/<playbook-id>.json   one definition per file
    <templates_dir>/<template-name>.json   raw template documents
    <history_dir>/<history-id>.json        one execution record per file

Writes are whole-file replacements, so concurrent writers resolve as
last-writer-wins.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from sentinel.exceptions import PlaybookStorageError
from sentinel.playbook.loader import load_playbooks_from_dir
from sentinel.playbook.models import PlaybookDefinition, PlaybookExecutionHistory

logger = logging.getLogger(__name__)

_TEMPLATE_NAME_RE = re.compile(r"[A-Za-z0-9_-]+")


def write_json(path: Path, data: Any) -> None:
    """Write *data* as indented JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")


def read_json(path: Path) -> Any:
    """Read a JSON document.

    Raises:
        PlaybookStorageError: If the file is missing or not valid JSON.
    """
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise PlaybookStorageError(f"File not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise PlaybookStorageError(f"Invalid JSON in {path}: {exc}") from exc


class PlaybookStore:
    """JSON-file storage used by ``PlaybookManager``.

    Args:
        definitions_dir: Directory holding ``<id>.json`` definitions.
        templates_dir: Directory holding template documents.
        history_dir: Directory holding execution history entries.
    """

    def __init__(
        self,
        definitions_dir: Path | str,
        templates_dir: Path | str,
        history_dir: Path | str,
    ) -> None:
        self.definitions_dir = Path(definitions_dir)
        self.templates_dir = Path(templates_dir)
        self.history_dir = Path(history_dir)

    @classmethod
    def from_settings(cls) -> PlaybookStore:
        """Build a store from the configured playbook directories."""
        from sentinel.settings import get_settings

        pb = get_settings().playbook
        return cls(pb.definitions_dir, pb.templates_dir, pb.history_dir)

    def ensure_directories(self) -> None:
        """Create the storage directories if they do not exist."""
        for directory in (self.definitions_dir, self.templates_dir, self.history_dir):
            if not directory.is_dir():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info("Created directory: %s", directory)

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def definition_path(self, playbook_id: str) -> Path:
        return self.definitions_dir / f"{playbook_id}.json"

    def load_definitions(self) -> list[PlaybookDefinition]:
        return load_playbooks_from_dir(self.definitions_dir)

    def save_definition(self, playbook: PlaybookDefinition) -> Path:
        path = self.definition_path(playbook.id)
        write_json(path, playbook.to_json_dict())
        return path

    def delete_definition(self, playbook_id: str) -> None:
        """Remove a definition file.

        Raises:
            OSError: If the file cannot be removed.
        """
        self.definition_path(playbook_id).unlink()

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def list_templates(self) -> list[str]:
        if not self.templates_dir.is_dir():
            return []
        return sorted(p.stem for p in self.templates_dir.glob("*.json"))

    def load_template(self, name: str) -> dict[str, Any]:
        """Return the raw template document named *name*.

        Raises:
            PlaybookStorageError: If the name is not a plain file stem, or the
                template is missing or malformed.
        """
        if not _TEMPLATE_NAME_RE.fullmatch(name):
            raise PlaybookStorageError(f"Invalid template name: {name!r}")
        data = read_json(self.templates_dir / f"{name}.json")
        if not isinstance(data, dict):
            raise PlaybookStorageError(f"Template '{name}' is not a JSON object")
        return data

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def load_history(self) -> list[PlaybookExecutionHistory]:
        """Load every history entry, oldest first. Unreadable files are skipped."""
        if not self.history_dir.is_dir():
            logger.warning("History directory does not exist: %s", self.history_dir)
            return []

        entries: list[PlaybookExecutionHistory] = []
        for json_file in sorted(self.history_dir.glob("*.json")):
            try:
                entries.append(PlaybookExecutionHistory.model_validate(read_json(json_file)))
            except Exception:
                logger.exception("Failed to load history from %s", json_file)
        entries.sort(key=lambda e: e.executed_at)
        return entries

    def save_history(self, entry: PlaybookExecutionHistory) -> Path:
        path = self.history_dir / f"{entry.id}.json"
        write_json(path, entry.to_json_dict())
        return path
