from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import requests


REQUEST_TIMEOUT_SECONDS = 8

logger = logging.getLogger(__name__)


class MalformedPayloadError(RuntimeError):
    pass


def fetch_json(
    source: str,
    url: str,
    timeout_seconds: float,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    auth: Optional[Tuple[str, str]] = None,
) -> Optional[Any]:
    """GET a JSON document, returning None on any transport or decoding failure."""
    try:
        response = requests.get(
            url,
            headers=headers,
            params=params,
            auth=auth,
            timeout=timeout_seconds,
        )
    except requests.Timeout:
        logger.warning("%s request timed out after %ss.", source, timeout_seconds)
        return None
    except requests.RequestException as exc:
        logger.warning("Network error while fetching %s: %s", source, exc)
        return None

    if response.status_code in {401, 403}:
        logger.error("%s request refused (HTTP %s).", source, response.status_code)
        return None
    if not response.ok:
        logger.warning("%s answered HTTP %s.", source, response.status_code)
        return None

    try:
        return response.json()
    except ValueError:
        logger.warning("%s response was not valid JSON.", source)
        return None


def first_text(*values: Any) -> str:
    for value in values:
        if isinstance(value, (str, int)) and str(value).strip():
            return str(value).strip()
    return ""


def as_mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}
