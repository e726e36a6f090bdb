"""Playbook engine — declarative browser workflows that harvest opportunities.

A playbook is a JSON definition holding a tree of actions (navigate,
click, loop, retry and so on) plus extraction rules. The engine
interprets it against one browser page and turns the extracted fields
into ``Opportunity`` records.

Modules:

* ``models`` — definition, run-state and manager record models.
* ``variables`` — ``${name}`` substitution and dotted-path lookup.
* ``conditions`` — ``ConditionEvaluator`` for action guards.
* ``actions`` — ``ActionExecutor``, the recursive action interpreter.
* ``extraction`` — ``ExtractionPipeline`` and record assembly.
* ``engine`` — ``PlaybookEngine``, one run from page open to close.
* ``validation`` — ``validate_playbook`` structural checks.
* ``loader`` / ``store`` — JSON files on disk.
* ``manager`` — ``PlaybookManager`` CRUD, search, history and stats.
"""

from sentinel.playbook.engine import PlaybookEngine
from sentinel.playbook.loader import load_playbook_from_file, load_playbooks_from_dir
from sentinel.playbook.manager import PlaybookManager
from sentinel.playbook.models import (
    PlaybookAction,
    PlaybookActionType,
    PlaybookDefinition,
    PlaybookExecutionResult,
    PlaybookSearchFilters,
    ValidationResult,
)
from sentinel.playbook.store import PlaybookStore
from sentinel.playbook.validation import validate_playbook

__all__ = [
    "PlaybookAction",
    "PlaybookActionType",
    "PlaybookDefinition",
    "PlaybookEngine",
    "PlaybookExecutionResult",
    "PlaybookManager",
    "PlaybookSearchFilters",
    "PlaybookStore",
    "ValidationResult",
    "load_playbook_from_file",
    "load_playbooks_from_dir",
    "validate_playbook",
]
