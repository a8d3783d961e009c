"""Response shaping: keep extracted datasets under the caller's size budget.

Three modes:

- ``summary``: counts and name lists only.
- ``filtered``: caller predicates (collection, name pattern, mode), ANDed.
- ``full``: the payload unchanged.

Whatever the requested mode, a result whose estimated size exceeds the
token budget is replaced by the summary and flagged as downgraded.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from ..token_counter import estimate_payload_tokens
from ..types import RESPONSE_MODES, ShapedResponse, ShapeFilters

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_BUDGET = 25_000


@dataclass(frozen=True)
class DatasetSchema:
    """Key names of the variables dataset returned by the sandbox query."""
    items: str = "variables"
    groups: str = "variableCollections"
    group_ref: str = "variableCollectionId"
    values: str = "valuesByMode"
    modes: str = "modes"
    mode_id: str = "modeId"
    name: str = "name"
    id: str = "id"


DEFAULT_SCHEMA = DatasetSchema()


def shape_response(
    payload: Any,
    mode: str = "summary",
    filters: ShapeFilters | None = None,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    schema: DatasetSchema = DEFAULT_SCHEMA,
) -> ShapedResponse:
    if mode not in RESPONSE_MODES:
        raise ValueError(f"Unknown response mode {mode!r}; expected one of {', '.join(RESPONSE_MODES)}")

    if mode == "summary":
        data = summarize(payload, schema)
    elif mode == "filtered":
        data = apply_filters(payload, filters or ShapeFilters(), schema)
    else:
        data = payload if isinstance(payload, dict) else {"value": payload}

    tokens = estimate_payload_tokens(data)
    downgraded = False
    if tokens > token_budget and mode != "summary":
        logger.info(
            "Response in %s mode is ~%d tokens (budget %d); downgrading to summary",
            mode, tokens, token_budget,
        )
        data = summarize(payload, schema)
        tokens = estimate_payload_tokens(data)
        downgraded = True
    names_omitted = False
    if tokens > token_budget:
        data = summarize(payload, schema, include_names=False)
        tokens = estimate_payload_tokens(data)
        names_omitted = bool(data.get("names_omitted"))
        if names_omitted:
            logger.info("Summary still over budget (budget %d); omitting variable names", token_budget)

    return ShapedResponse(
        mode="summary" if downgraded else mode,
        requested_mode=mode,
        data=data,
        estimated_tokens=tokens,
        downgraded=downgraded,
        filters=filters,
        names_omitted=names_omitted,
    )


def is_dataset(payload: Any, schema: DatasetSchema = DEFAULT_SCHEMA) -> bool:
    return isinstance(payload, dict) and isinstance(payload.get(schema.items), list)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def summarize(payload: Any, schema: DatasetSchema = DEFAULT_SCHEMA, include_names: bool = True) -> dict:
    """Counts per collection plus variable names (dropped when *include_names* is False)."""
    if not is_dataset(payload, schema):
        return _generic_summary(payload)

    items: list[dict] = payload[schema.items]
    groups: list[dict] = payload.get(schema.groups) or []

    by_group: dict[str, list[str]] = {}
    for item in items:
        by_group.setdefault(item.get(schema.group_ref, ""), []).append(item.get(schema.name, ""))

    collections = []
    for group in groups:
        names = by_group.get(group.get(schema.id, ""), [])
        entry: dict[str, Any] = {
            "id": group.get(schema.id),
            "name": group.get(schema.name),
            "modes": [m.get(schema.name) for m in group.get(schema.modes) or []],
            "variable_count": len(names),
        }
        if include_names:
            entry["variable_names"] = names
        collections.append(entry)

    summary: dict[str, Any] = {
        "total_variables": len(items),
        "total_collections": len(groups),
        "collections": collections,
    }
    if not include_names:
        summary["names_omitted"] = True
    return summary


def _generic_summary(payload: Any) -> dict:
    if isinstance(payload, dict):
        return {
            "keys": sorted(str(k) for k in payload),
            "sizes": {str(k): len(v) for k, v in payload.items() if isinstance(v, (list, dict, str))},
        }
    if isinstance(payload, list):
        return {"length": len(payload)}
    return {"type": type(payload).__name__}


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def compile_name_pattern(pattern: str) -> re.Pattern:
    """Compile *pattern* case-insensitively; invalid regexes match as literal substrings."""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return re.compile(re.escape(pattern), re.IGNORECASE)


def apply_filters(payload: Any, filters: ShapeFilters, schema: DatasetSchema = DEFAULT_SCHEMA) -> dict:
    if not is_dataset(payload, schema):
        return payload if isinstance(payload, dict) else {"value": payload}

    groups: list[dict] = payload.get(schema.groups) or []
    items: list[dict] = payload[schema.items]

    if filters.collection:
        needle = filters.collection.lower()
        groups = [
            g for g in groups
            if g.get(schema.id) == filters.collection or needle in str(g.get(schema.name, "")).lower()
        ]
        group_ids = {g.get(schema.id) for g in groups}
        items = [i for i in items if i.get(schema.group_ref) in group_ids]

    if filters.name_pattern:
        pattern = compile_name_pattern(filters.name_pattern)
        items = [i for i in items if pattern.search(str(i.get(schema.name, "")))]

    if filters.mode:
        mode_ids = _matching_mode_ids(groups, filters.mode, schema)
        narrowed = []
        for item in items:
            values = item.get(schema.values) or {}
            kept = {k: v for k, v in values.items() if k in mode_ids}
            if kept:
                narrowed.append({**item, schema.values: kept})
        items = narrowed

    data = {k: v for k, v in payload.items() if k not in (schema.items, schema.groups)}
    data[schema.groups] = groups
    data[schema.items] = items
    data["matched_variables"] = len(items)
    data["total_variables"] = len(payload[schema.items])
    return data


def _matching_mode_ids(groups: list[dict], mode: str, schema: DatasetSchema) -> set[str]:
    lowered = mode.lower()
    ids = {mode}
    for group in groups:
        for m in group.get(schema.modes) or []:
            if str(m.get(schema.name, "")).lower() == lowered:
                ids.add(m.get(schema.mode_id))
    return ids
