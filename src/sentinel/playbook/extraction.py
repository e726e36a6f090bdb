"""Extraction pipeline — turn the final page state into opportunity records.

Each ``ExtractionRule`` collects one value per matching element into
``context.extracted_data[field]``. Records are then assembled with a
zip/broadcast policy: list-valued fields are zipped by index, scalar
fields are copied into every record. A record without both a ``title``
and a ``url`` is dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sentinel.exceptions import ExtractionError
from sentinel.playbook.models import (
    ElementSnapshot,
    ExecutionContext,
    ExtractionRule,
    Opportunity,
    PlaybookDefinition,
    SourceMetadata,
)

if TYPE_CHECKING:
    from sentinel.browser.session import PageSession

logger = logging.getLogger(__name__)

# Short field names accepted in extraction rules.
FIELD_ALIASES = {"org": "organization"}

# URLs a page reports before anything has been loaded.
_BLANK_URLS = frozenset({"", "about:blank"})


def read_attribute(snapshot: ElementSnapshot, attribute: str | None) -> str:
    """Read *attribute* from an element snapshot, defaulting to its text content."""
    if not attribute or attribute == "textContent":
        return snapshot.text_content
    if attribute == "innerHTML":
        return snapshot.inner_html
    if attribute in snapshot.attributes:
        return snapshot.attributes[attribute]
    return snapshot.text_content


def assemble_records(extracted: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Zip list-valued fields by index and broadcast scalar fields.

    ``{"title": ["A", "B"], "org": "X"}`` becomes
    ``[{"title": "A", "org": "X"}, {"title": "B", "org": "X"}]``.
    With no list-valued fields a single record is produced.
    """
    lengths = [len(v) for v in extracted.values() if isinstance(v, list)]
    count = max(lengths, default=0)
    if count == 0:
        return [dict(extracted)]

    records = []
    for i in range(count):
        record: dict[str, Any] = {}
        for field, value in extracted.items():
            if isinstance(value, list):
                record[field] = value[i] if i < len(value) else None
            else:
                record[field] = value
        records.append(record)
    return records


def _parse_deadline(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError:
        logger.debug("Unparseable deadline %r ignored", value)
        return None


def build_opportunity(
    data: Mapping[str, Any],
    source: SourceMetadata,
) -> Opportunity | None:
    """Build an ``Opportunity`` from one assembled record.

    Returns:
        The opportunity, or ``None`` if ``title`` or ``url`` is missing.
    """
    record = dict(data)
    for alias, canonical in FIELD_ALIASES.items():
        if record.get(canonical) in (None, "") and alias in record:
            record[canonical] = record[alias]

    title = record.get("title")
    url = record.get("url")
    if not title or not url:
        logger.debug("Skipping record without title/url: %s", sorted(record))
        return None

    tags = record.get("tags")
    return Opportunity(
        title=str(title),
        url=str(url),
        description=str(record.get("description") or ""),
        organization=str(record.get("organization") or ""),
        deadline=_parse_deadline(record.get("deadline")),
        location=str(record.get("location") or ""),
        amount=str(record.get("amount") or ""),
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
        source_metadata=source.model_copy(),
    )


class ExtractionPipeline:
    """Applies a playbook's extraction rules to the page left by its actions.

    Args:
        page: The run's page.
        definition: The playbook being executed.
        context: The run's execution context; ``extracted_data`` is filled in.
        run_logger: Logger for progress messages; defaults to the module logger.
    """

    def __init__(
        self,
        page: PageSession,
        definition: PlaybookDefinition,
        context: ExecutionContext,
        run_logger: logging.Logger | None = None,
    ) -> None:
        self._page = page
        self._definition = definition
        self._context = context
        self._log = run_logger or logger

    async def run(self) -> list[Opportunity]:
        """Apply every rule in order, then assemble opportunities.

        Raises:
            ExtractionError: If a required rule matches nothing usable.
        """
        for rule in self._definition.extraction_rules:
            await self._apply(rule)
        return self.build_opportunities()

    async def _apply(self, rule: ExtractionRule) -> None:
        extracted = self._context.extracted_data
        try:
            snapshots = await self._page.query_all(rule.selector)
        except Exception as exc:
            if rule.required:
                raise ExtractionError(rule.field, str(exc)) from exc
            message = f"Optional field extraction failed: {rule.field} ({exc})"
            self._log.warning(message)
            self._context.warnings.append(message)
            extracted[rule.field] = rule.default_value
            return

        values = [v for v in (read_attribute(s, rule.attribute) for s in snapshots) if v]
        if values:
            extracted[rule.field] = values
            return

        if rule.required:
            raise ExtractionError(rule.field, f"no match for selector '{rule.selector}'")
        if rule.default_value is not None:
            self._log.debug("Field %s matched nothing, using default", rule.field)
            extracted[rule.field] = rule.default_value
        else:
            extracted[rule.field] = []

    def _source_url(self) -> str | None:
        url = self._page.url
        if url and url not in _BLANK_URLS:
            return url
        fallback = self._context.variables.get("currentUrl")
        if fallback and fallback not in _BLANK_URLS:
            return str(fallback)
        return None

    def build_opportunities(self) -> list[Opportunity]:
        """Assemble opportunities from ``context.extracted_data``."""
        source = SourceMetadata(
            playbook_id=self._definition.id,
            playbook_name=self._definition.name,
            extracted_at=datetime.now(timezone.utc),
            source_url=self._source_url(),
        )
        records = assemble_records(self._context.extracted_data)
        opportunities = []
        for record in records:
            opportunity = build_opportunity(record, source)
            if opportunity is not None:
                opportunities.append(opportunity)

        skipped = len(records) - len(opportunities)
        if skipped:
            self._log.info("Skipped %d record(s) missing title or url", skipped)
        return opportunities
