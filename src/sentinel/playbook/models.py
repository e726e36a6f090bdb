"""Playbook data models — declarative browser workflows and their run records.

A ``PlaybookDefinition`` is a JSON document describing a tree of
``PlaybookAction`` instructions plus the ``ExtractionRule`` list applied
to the final page. Definitions are authored in camelCase JSON
(``extractionRules``, ``errorHandling``); attributes are snake_case and
both spellings are accepted on input.

Models are deliberately permissive about content: an empty id or a
negative retry count still parses, so ``validate_playbook`` can report
every structural problem at once instead of failing on the first.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ActionValue = str | bool | int | float


class _CamelModel(BaseModel):
    """Base for models serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Definition
# ---------------------------------------------------------------------------


class PlaybookActionType(str, Enum):
    """Instruction kinds understood by the action executor."""

    NAVIGATE = "navigate"
    WAIT = "wait"
    CLICK = "click"
    FILL = "fill"
    SELECT = "select"
    EXTRACT = "extract"
    SCROLL = "scroll"
    SCREENSHOT = "screenshot"
    EVALUATE = "evaluate"
    CONDITIONAL = "conditional"
    LOOP = "loop"
    RETRY = "retry"


COMPOSITE_ACTION_TYPES = frozenset({
    PlaybookActionType.CONDITIONAL,
    PlaybookActionType.LOOP,
    PlaybookActionType.RETRY,
})


class ConditionType(str, Enum):
    """Predicates over page state or context variables."""

    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    VISIBLE = "visible"
    HIDDEN = "hidden"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"


class PlaybookCondition(_CamelModel):
    """Single predicate. A list of conditions is an implicit AND."""

    type: ConditionType
    selector: str | None = None
    variable: str | None = None
    value: ActionValue | None = None


class PlaybookAction(_CamelModel):
    """One interpreter instruction, leaf or composite.

    ``conditions`` act as a guard: when present and false the action and
    its subtree are skipped and counted as a success. ``actions`` holds the
    nested program of ``conditional``/``loop``/``retry`` actions.
    """

    id: str = ""
    type: PlaybookActionType
    description: str = ""
    selector: str | None = None
    value: ActionValue | None = None
    timeout: int | None = Field(default=None, description="Milliseconds; retry delay for ``retry`` actions.")
    retries: int | None = None
    conditions: list[PlaybookCondition] | None = None
    actions: list[PlaybookAction] | None = None
    variables: dict[str, Any] | None = Field(
        default=None,
        description="Context key → dotted path into the action's result.",
    )
    optional: bool = False


class ExtractionRule(_CamelModel):
    """Selector → output-field mapping applied after all actions finish."""

    field: str = ""
    selector: str = ""
    attribute: str | None = Field(default=None, description="Defaults to text content.")
    transform: str | None = None
    required: bool = False
    default_value: Any = None


class ErrorHandlingConfig(_CamelModel):
    """Run-level failure policy."""

    continue_on_error: bool = False
    max_retries: int = 0
    retry_delay: int = Field(default=1000, description="Milliseconds between action-level retries.")
    screenshot_on_error: bool = False
    log_level: Literal["debug", "info", "warn", "error"] = "info"


class PlaybookMetadata(_CamelModel):
    """Descriptive metadata used for search and reporting."""

    target_site: str = ""
    estimated_duration: float = Field(default=0, description="Seconds.")
    complexity: Literal["simple", "medium", "complex"] = "simple"
    last_tested: datetime | None = None
    success_rate: float = Field(default=0.0, description="Percentage recorded by the author.")
    uses_browser: bool = True
    requires_auth: bool = False


class PlaybookDefinition(_CamelModel):
    """Complete, versioned workflow description. Never mutated during a run."""

    id: str = ""
    name: str = ""
    description: str = ""
    version: str = ""
    author: str = ""
    tags: list[str] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    actions: list[PlaybookAction] = Field(default_factory=list)
    extraction_rules: list[ExtractionRule] = Field(default_factory=list)
    error_handling: ErrorHandlingConfig = Field(default_factory=ErrorHandlingConfig)
    metadata: PlaybookMetadata = Field(default_factory=PlaybookMetadata)


# ---------------------------------------------------------------------------
# Browser snapshots
# ---------------------------------------------------------------------------


class ElementSnapshot(_CamelModel):
    """Serialisable view of one element matched by a selector."""

    text_content: str = ""
    inner_html: str = Field(default="", alias="innerHTML")
    attributes: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Run state and results
# ---------------------------------------------------------------------------


class ActionResult(_CamelModel):
    """Outcome of one executed (or skipped) action."""

    action_id: str
    success: bool
    duration: float = Field(default=0.0, description="Milliseconds.")
    attempts: int = 1
    skipped: bool = False
    error: str | None = None
    extracted_data: Any = None
    screenshot: str | None = None


class ExecutionContext(_CamelModel):
    """Mutable state owned by the engine for the lifetime of one run."""

    variables: dict[str, Any] = Field(default_factory=dict)
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    screenshots: list[str] = Field(default_factory=list)
    execution_time: float = Field(default=0.0, description="Milliseconds.")
    actions_executed: int = 0
    action_results: list[ActionResult] = Field(default_factory=list)


class SourceMetadata(_CamelModel):
    """Provenance stamped onto every assembled opportunity."""

    playbook_id: str
    playbook_name: str
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source_url: str | None = None


class Opportunity(_CamelModel):
    """One grant, residency or exhibition record assembled from a page."""

    title: str
    url: str
    description: str = ""
    organization: str = ""
    deadline: datetime | None = None
    location: str = ""
    amount: str = ""
    tags: list[str] = Field(default_factory=list)
    source_type: str = "websearch"
    status: str = "new"
    processed: bool = False
    applied: bool = False
    starred: bool = False
    source_metadata: SourceMetadata


class PlaybookExecutionResult(_CamelModel):
    """Structured outcome of a full run. ``success`` iff no errors accumulated."""

    success: bool
    opportunities: list[Opportunity] = Field(default_factory=list)
    context: ExecutionContext
    execution_time: float = Field(default=0.0, description="Milliseconds.")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Manager records
# ---------------------------------------------------------------------------


class ValidationResult(_CamelModel):
    """Outcome of structural validation."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class PlaybookExecutionHistory(_CamelModel):
    """One persisted record per execution. Never mutated after creation."""

    id: str
    playbook_id: str
    executed_at: datetime
    success: bool
    opportunities_found: int = 0
    execution_time: float = 0.0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)


class PlaybookStats(_CamelModel):
    """Rolling per-playbook execution statistics."""

    id: str
    name: str = ""
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_execution_time: float = 0.0
    average_opportunities_found: float = 0.0
    last_executed: datetime | None = None
    success_rate: float = 0.0


class PlaybookSearchFilters(_CamelModel):
    """Filters accepted by ``PlaybookManager.search``. Unset fields do not filter."""

    tags: list[str] | None = None
    author: str | None = None
    target_site: str | None = None
    complexity: Literal["simple", "medium", "complex"] | None = None
    requires_auth: bool | None = None
    min_success_rate: float | None = None


PlaybookAction.model_rebuild()
