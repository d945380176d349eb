"""Result classification and enrichment.

Turns each ToolOutcome into a QualityAnnotatedResult: a deterministic
quality class, a responsiveness check against the user's query, and the
compact payload the model actually sees. Failed and empty results carry
guidance that forbids the model from inventing data in their place.
"""

import json
import re
from typing import Any, List, Set

from conduit.config import ConduitSettings
from conduit.orchestration.models import (
    OutcomeKind,
    QualityAnnotatedResult,
    QualityClass,
    QueryMode,
    ToolOutcome,
)
from conduit.orchestration.payloads import compact_payload, select_count_fields
from conduit.orchestration.query_mode import matches_simple_pattern

MONTHS = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

_YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
_MONTH_RE = re.compile(r"\b(" + "|".join(MONTHS) + r")\b")

FAILED_GUIDANCE = (
    "The tool '{name}' failed: {error}. Tell the user this data is currently "
    "unavailable. Do not estimate, invent or substitute any figures for it."
)
EMPTY_GUIDANCE = (
    "The tool '{name}' returned no data for these parameters. State clearly that "
    "no data is available for this request. Do not fabricate or estimate values."
)
LIMITED_GUIDANCE = (
    "Only {count} record(s) were returned. Extract the maximum value from these "
    "records and mention that the sample is limited. Do not extrapolate beyond them."
)
GOOD_GUIDANCE = "Use these records to answer. Cite the figures exactly as given."


def temporal_references(text: str) -> Set[str]:
    """Years and month names mentioned in a piece of text."""
    lowered = text.lower()
    refs = {match.group(0) for match in _YEAR_RE.finditer(lowered)}
    refs.update(match.group(0) for match in _MONTH_RE.finditer(lowered))
    return refs


def _month_number(name: str) -> str:
    return f"{MONTHS.index(name) + 1:02d}"


def validate_outcome(outcome: ToolOutcome, query: str) -> bool:
    """Whether the outcome is plausibly responsive to the query.

    Only positive evidence validates: if the query names a year or month,
    at least one of them must appear in the result or in the parameters
    the tool was called with. Never raises.
    """
    if outcome.kind != OutcomeKind.SUCCESS:
        return False
    try:
        refs = temporal_references(query)
        if not refs:
            return True
        haystack = " ".join(
            [
                json.dumps(outcome.payload, default=str),
                json.dumps(outcome.parameters, default=str),
            ]
        ).lower()
        for ref in refs:
            if ref in haystack:
                return True
            if ref in MONTHS and f"-{_month_number(ref)}" in haystack:
                return True
        return False
    except (TypeError, ValueError):
        return False


def classify_outcome(outcome: ToolOutcome, min_data_threshold: int) -> QualityClass:
    """failed > empty > limited > good, decided from the outcome alone."""
    if outcome.kind == OutcomeKind.ERROR:
        return QualityClass.FAILED
    if outcome.kind == OutcomeKind.EMPTY:
        return QualityClass.EMPTY
    if outcome.record_count < min_data_threshold:
        return QualityClass.LIMITED
    return QualityClass.GOOD


class ResultEnricher:
    """Pure mapping from (outcome, query, mode) to an annotated result."""

    def __init__(self, settings: ConduitSettings) -> None:
        self.settings = settings

    def enrich(
        self, outcome: ToolOutcome, query: str, mode: QueryMode
    ) -> QualityAnnotatedResult:
        quality = classify_outcome(outcome, self.settings.min_data_threshold)
        validated = validate_outcome(outcome, query)

        if quality == QualityClass.FAILED:
            return QualityAnnotatedResult(
                request_id=outcome.request_id,
                tool_name=outcome.tool_name,
                quality=quality,
                summary=f"{outcome.tool_name} failed",
                validation_status=False,
                guidance_text=FAILED_GUIDANCE.format(
                    name=outcome.tool_name, error=outcome.error or "unknown error"
                ),
            )

        if quality == QualityClass.EMPTY:
            return QualityAnnotatedResult(
                request_id=outcome.request_id,
                tool_name=outcome.tool_name,
                quality=quality,
                summary=f"{outcome.tool_name} returned no data",
                validation_status=False,
                guidance_text=EMPTY_GUIDANCE.format(name=outcome.tool_name),
            )

        data = self._compact(outcome, query, mode)
        if quality == QualityClass.LIMITED:
            return QualityAnnotatedResult(
                request_id=outcome.request_id,
                tool_name=outcome.tool_name,
                quality=quality,
                summary=f"Limited data: {outcome.record_count} record(s)",
                validation_status=validated,
                guidance_text=LIMITED_GUIDANCE.format(count=outcome.record_count),
                record_count=outcome.record_count,
                data=data,
            )

        return QualityAnnotatedResult(
            request_id=outcome.request_id,
            tool_name=outcome.tool_name,
            quality=quality,
            summary=f"Retrieved {outcome.record_count} records",
            validation_status=validated,
            guidance_text=GOOD_GUIDANCE,
            record_count=outcome.record_count,
            data=data,
        )

    def enrich_all(
        self, outcomes: List[ToolOutcome], query: str, mode: QueryMode
    ) -> List[QualityAnnotatedResult]:
        return [self.enrich(outcome, query, mode) for outcome in outcomes]

    def _compact(self, outcome: ToolOutcome, query: str, mode: QueryMode) -> Any:
        payload = outcome.payload
        # Count-style lookups in simple mode only need the totals.
        if (
            mode == QueryMode.SIMPLE
            and isinstance(payload, dict)
            and ("count" in outcome.tool_name.lower() or matches_simple_pattern(query))
        ):
            counts = select_count_fields(payload)
            if counts:
                payload = counts
        return compact_payload(
            payload,
            max_records=self.settings.max_result_records,
            max_chars=self.settings.max_result_chars,
        )
