"""
Response-shape normalization for File Service payloads.

The backend answers list endpoints with a bare array, ``{"files": [...]}``
or ``{"data": [...]}``, and single-record endpoints bare or wrapped in
``{"data": ...}`` / ``{"file": ...}``. Every component goes through these
helpers so that business code only ever sees the canonical shape.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger("dealerdocs.files.normalize")

LIST_KEYS = ("files", "data")
RECORD_KEYS = ("data", "file")
FAILURE_KEYS = ("failed", "errors")

M = TypeVar("M", bound=BaseModel)


def extract_list(payload: Any, keys: Sequence[str] = LIST_KEYS) -> List[Any]:
    """Flatten a list response; unknown shapes yield an empty list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def extract_record(payload: Any, keys: Sequence[str] = RECORD_KEYS) -> Optional[Dict[str, Any]]:
    """Unwrap a single-record response."""
    if not isinstance(payload, dict):
        return None
    for key in keys:
        value = payload.get(key)
        if isinstance(value, dict):
            return value
    return payload


def parse_models(items: Sequence[Any], model: Type[M], **defaults: Any) -> List[M]:
    """
    Validate each item into ``model``; malformed items are logged and skipped
    rather than failing the whole list.
    """
    parsed: List[M] = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning(f"Skipping non-object {model.__name__} item: {item!r}")
            continue
        try:
            parsed.append(model.model_validate({**defaults, **item}))
        except ValidationError as e:
            logger.warning(f"Skipping malformed {model.__name__} item: {e.error_count()} error(s)")
    return parsed


def extract_upload_results(payload: Any) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Split an upload response into created records and per-item failures.

    Accepts a bare array, ``{"files": [...]}``/``{"data": [...]}`` (optionally
    with ``failed``/``errors`` entries), or a single record.
    """
    failures: List[Dict[str, Any]] = []
    if isinstance(payload, dict):
        for key in FAILURE_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                failures.extend(f if isinstance(f, dict) else {"name": str(f)} for f in value)

    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)], failures

    records = extract_list(payload)
    if records:
        return [r for r in records if isinstance(r, dict)], failures

    if isinstance(payload, dict) and not failures:
        record = extract_record(payload)
        if record:
            return [record], failures
    return [], failures


def extract_share_token(result: Dict[str, Any]) -> Optional[str]:
    """Token from whichever field the backend filled, else the URL's last segment."""
    token = result.get("share_token") or result.get("token")
    if token:
        return str(token)
    url = result.get("share_url") or result.get("url") or ""
    tail = url.rstrip("/").split("/")[-1] if url else ""
    if tail:
        return tail
    if result.get("id") is not None:
        return str(result["id"])
    return None
