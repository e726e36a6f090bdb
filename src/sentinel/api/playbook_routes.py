"""Playbook management API endpoints.

Provides REST endpoints over ``PlaybookManager``:

* ``GET /playbooks`` — list playbooks, optionally filtered
* ``GET /playbooks/stats`` — statistics for every playbook
* ``POST /playbooks/validate`` — validate a definition without storing it
* ``POST /playbooks/from-template`` — instantiate a stored template
* ``GET /playbooks/{playbook_id}`` — get a single playbook
* ``POST /playbooks`` — create a new playbook
* ``PUT /playbooks/{playbook_id}`` — replace an existing playbook
* ``DELETE /playbooks/{playbook_id}`` — delete a playbook
* ``GET /playbooks/{playbook_id}/stats`` — statistics for one playbook
* ``GET /playbooks/{playbook_id}/history`` — execution history for one playbook

Definitions are accepted and returned in their camelCase JSON form.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Literal, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from sentinel.exceptions import (
    DuplicatePlaybookError,
    PlaybookNotFoundError,
    PlaybookStorageError,
    PlaybookValidationError,
)
from sentinel.playbook.manager import PlaybookManager
from sentinel.playbook.models import (
    PlaybookDefinition,
    PlaybookExecutionHistory,
    PlaybookSearchFilters,
    PlaybookStats,
    ValidationResult,
)

logger = logging.getLogger(__name__)

playbook_router = APIRouter(prefix="/playbooks", tags=["playbooks"])


@lru_cache(maxsize=1)
def get_manager() -> PlaybookManager:
    """Return the process-wide manager, initialized on first use."""
    manager = PlaybookManager.from_settings()
    manager.initialize()
    return manager


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------


class PlaybookSummary(BaseModel):
    """Lightweight playbook summary for list endpoints."""

    id: str
    name: str
    description: str = ""
    version: str = ""
    author: str = ""
    actions_count: int
    extraction_rules_count: int
    tags: list[str] = Field(default_factory=list)


class TemplateRequest(BaseModel):
    """Request body for creating a playbook from a template."""

    template: str = Field(..., description="Template name (file stem).")
    id: str = Field(..., description="ID for the new playbook.")
    overrides: dict[str, Any] = Field(default_factory=dict)


def _invalid(exc: PlaybookValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail={"errors": exc.errors, "warnings": exc.warnings})


def _summary(pb: PlaybookDefinition) -> PlaybookSummary:
    return PlaybookSummary(
        id=pb.id,
        name=pb.name,
        description=pb.description,
        version=pb.version,
        author=pb.author,
        actions_count=len(pb.actions),
        extraction_rules_count=len(pb.extraction_rules),
        tags=pb.tags,
    )


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@playbook_router.get("", response_model=list[PlaybookSummary])
def list_playbooks(
    tag: Optional[list[str]] = Query(None, description="Match playbooks carrying any of these tags."),
    author: Optional[str] = None,
    target_site: Optional[str] = None,
    complexity: Optional[Literal["simple", "medium", "complex"]] = None,
    requires_auth: Optional[bool] = None,
    min_success_rate: Optional[float] = Query(None, ge=0, le=100),
    manager: PlaybookManager = Depends(get_manager),
) -> list[PlaybookSummary]:
    """List playbooks matching every supplied filter."""
    filters = PlaybookSearchFilters(
        tags=tag,
        author=author,
        target_site=target_site,
        complexity=complexity,
        requires_auth=requires_auth,
        min_success_rate=min_success_rate,
    )
    return [_summary(pb) for pb in manager.search(filters)]


@playbook_router.get("/stats", response_model=list[PlaybookStats])
def list_stats(manager: PlaybookManager = Depends(get_manager)) -> list[PlaybookStats]:
    """Return execution statistics for every playbook."""
    return manager.all_stats()


@playbook_router.post("/validate", response_model=ValidationResult)
def validate_playbook(
    definition: dict[str, Any] = Body(...),
    manager: PlaybookManager = Depends(get_manager),
) -> ValidationResult:
    """Validate a definition without storing it."""
    return manager.validate(definition)


@playbook_router.post("/from-template", response_model=PlaybookDefinition, status_code=201)
def create_from_template(
    req: TemplateRequest,
    manager: PlaybookManager = Depends(get_manager),
) -> PlaybookDefinition:
    """Create a new playbook from a stored template."""
    try:
        return manager.create_from_template(req.template, req.id, req.overrides)
    except PlaybookStorageError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from None
    except PlaybookValidationError as exc:
        raise _invalid(exc) from None
    except DuplicatePlaybookError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from None


@playbook_router.post("", response_model=PlaybookDefinition, status_code=201)
def create_playbook(
    definition: dict[str, Any] = Body(...),
    manager: PlaybookManager = Depends(get_manager),
) -> PlaybookDefinition:
    """Validate and store a new playbook."""
    try:
        return manager.create(definition)
    except PlaybookValidationError as exc:
        raise _invalid(exc) from None
    except DuplicatePlaybookError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from None


# ---------------------------------------------------------------------------
# Item endpoints
# ---------------------------------------------------------------------------


@playbook_router.get("/{playbook_id}", response_model=PlaybookDefinition)
def get_playbook(playbook_id: str, manager: PlaybookManager = Depends(get_manager)) -> PlaybookDefinition:
    """Retrieve a single playbook by ID."""
    pb = manager.get(playbook_id)
    if pb is None:
        raise HTTPException(status_code=404, detail=f"Playbook '{playbook_id}' not found")
    return pb


@playbook_router.put("/{playbook_id}", response_model=PlaybookDefinition)
def update_playbook(
    playbook_id: str,
    definition: dict[str, Any] = Body(...),
    manager: PlaybookManager = Depends(get_manager),
) -> PlaybookDefinition:
    """Validate and replace an existing playbook."""
    if definition.get("id") != playbook_id:
        raise HTTPException(status_code=400, detail="Playbook ID in URL does not match body")
    try:
        return manager.update(definition)
    except PlaybookValidationError as exc:
        raise _invalid(exc) from None
    except PlaybookNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from None


@playbook_router.delete("/{playbook_id}", status_code=204)
def delete_playbook(playbook_id: str, manager: PlaybookManager = Depends(get_manager)) -> None:
    """Delete a playbook. Its execution history is kept."""
    try:
        manager.delete(playbook_id)
    except PlaybookNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from None


@playbook_router.get("/{playbook_id}/stats", response_model=PlaybookStats)
def get_stats(playbook_id: str, manager: PlaybookManager = Depends(get_manager)) -> PlaybookStats:
    """Return execution statistics for one playbook."""
    stats = manager.stats(playbook_id)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"Playbook '{playbook_id}' not found")
    return stats


@playbook_router.get("/{playbook_id}/history", response_model=list[PlaybookExecutionHistory])
def get_history(
    playbook_id: str,
    limit: int = Query(50, ge=1, le=1000),
    manager: PlaybookManager = Depends(get_manager),
) -> list[PlaybookExecutionHistory]:
    """Return the most recent executions of a playbook, oldest first."""
    return manager.history(playbook_id)[-limit:]
