"""Playbook loader — read playbook definitions from JSON files on disk.

Each ``.json`` file holds a single definition in the camelCase document
shape. Loading only checks the schema; structural rules are applied by
``validate_playbook`` when a definition is created or imported.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from sentinel.playbook.models import PlaybookDefinition

logger = logging.getLogger(__name__)


def load_playbook_from_file(path: Path) -> PlaybookDefinition:
    """Load a single playbook from a JSON file.

    Args:
        path: Path to the JSON file.

    Returns:
        The parsed ``PlaybookDefinition``.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        pydantic.ValidationError: If the data does not conform to the schema.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    return PlaybookDefinition.model_validate(data)


def load_playbooks_from_dir(directory: Path | str) -> list[PlaybookDefinition]:
    """Load all playbook JSON files from a directory.

    Files that fail to parse are logged and skipped rather than
    aborting the entire load.

    Args:
        directory: Path to the definitions directory.

    Returns:
        Successfully loaded definitions, in file-name order.
    """
    dir_path = Path(directory)
    if not dir_path.is_dir():
        logger.warning("Playbook directory does not exist: %s", dir_path)
        return []

    playbooks: list[PlaybookDefinition] = []
    for json_file in sorted(dir_path.glob("*.json")):
        try:
            pb = load_playbook_from_file(json_file)
        except Exception:
            logger.exception("Failed to load playbook from %s", json_file)
            continue
        playbooks.append(pb)
        logger.debug("Loaded playbook %s from %s", pb.id, json_file.name)
    return playbooks
