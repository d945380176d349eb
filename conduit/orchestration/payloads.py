"""Shape helpers for tool result payloads.

Tool services return loosely shaped JSON. These helpers are the only
place that sniffs shapes: the dispatcher calls them once per outcome and
everything downstream works from the resulting ``OutcomeKind`` and
``record_count``.
"""

import json
from typing import Any, Dict, List, Optional

COUNT_KEYS = ("count", "total_count", "record_count", "recordCount", "total_records")
DATA_KEYS = ("data", "results", "items", "records", "rows")


def unwrap_tool_result(result: Any) -> Any:
    """Return the useful body of a tool-service result.

    MCP-style results wrap their body as ``{"content": [{"type": "text",
    "text": "<json>"}]}``; text that parses as JSON is decoded, other text
    is returned as-is.
    """
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        texts = [
            block.get("text", "")
            for block in result["content"]
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        if texts:
            return _maybe_json("\n".join(texts))
        if not result["content"]:
            return []
    if isinstance(result, str):
        return _maybe_json(result)
    return result


def _maybe_json(text: str) -> Any:
    stripped = text.strip()
    if not stripped:
        return ""
    try:
        return json.loads(stripped)
    except (json.JSONDecodeError, ValueError):
        return text


def _as_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return max(int(value), 0)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def nested_records(payload: Any) -> Optional[List[Any]]:
    """The first list found under a data-like key, if any."""
    if not isinstance(payload, dict):
        return None
    for key in DATA_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return value
        if isinstance(value, dict):
            inner = nested_records(value)
            if inner is not None:
                return inner
    return None


def extract_record_count(payload: Any) -> int:
    """Best-effort record count.

    Priority: explicit count field, then top-level array length, then
    nested data-array length. Anything unparseable counts as 0.
    """
    try:
        if isinstance(payload, dict):
            for key in COUNT_KEYS:
                count = _as_count(payload.get(key))
                if count is not None:
                    return count
            summary = payload.get("summary")
            if isinstance(summary, dict):
                for key in COUNT_KEYS:
                    count = _as_count(summary.get(key))
                    if count is not None:
                        return count
        if isinstance(payload, list):
            return len(payload)
        records = nested_records(payload)
        if records is not None:
            return len(records)
    except (TypeError, AttributeError):
        return 0
    return 0


def is_empty_payload(payload: Any) -> bool:
    """Null, blank string, empty collection, or a data envelope with no records."""
    if payload is None:
        return True
    if isinstance(payload, str):
        return not payload.strip()
    if isinstance(payload, (list, tuple, dict)) and len(payload) == 0:
        return True
    if isinstance(payload, dict):
        records = nested_records(payload)
        if records is not None and len(records) == 0:
            explicit = [
                _as_count(payload.get(key)) for key in COUNT_KEYS if key in payload
            ]
            return not any(count for count in explicit if count)
    return False


def compact_payload(payload: Any, max_records: int, max_chars: int) -> Any:
    """Bound a payload for the working context.

    Lists (top level or under a data key) are cut to ``max_records``; if
    the JSON form is still over ``max_chars`` the payload is replaced by a
    truncated JSON string.
    """
    compacted = payload
    if isinstance(payload, list) and len(payload) > max_records:
        compacted = payload[:max_records]
    elif isinstance(payload, dict):
        compacted = dict(payload)
        for key in DATA_KEYS:
            value = compacted.get(key)
            if isinstance(value, list) and len(value) > max_records:
                compacted[key] = value[:max_records]
                compacted["records_shown"] = max_records

    text = json.dumps(compacted, default=str)
    if len(text) > max_chars:
        return text[: max_chars - 3] + "..."
    return compacted


def select_count_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only count/total style fields plus message/success flags."""
    return {
        key: value
        for key, value in payload.items()
        if "count" in key.lower()
        or "total" in key.lower()
        or key in ("message", "success")
    }
