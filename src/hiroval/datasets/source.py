"""
Read GeoJSON FeatureCollections from a local file or an HTTP(S) URL.

Each lookup loads its dataset exactly once through a `Fetcher`, which is any
callable taking the configured source string and returning the decoded JSON.
Tests inject their own fetcher; production uses `read_feature_collection`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import requests

Fetcher = Callable[[str], Any]


class DatasetLoadError(RuntimeError):
    # Network, HTTP status, JSON decode or FeatureCollection shape failure.
    pass


def is_remote(source: str) -> bool:
    return str(source).startswith(("http://", "https://"))


def _fetch_remote(url: str, *, timeout_s: int, session: requests.Session | None) -> Any:
    http = session or requests.Session()
    try:
        resp = http.get(url, timeout=timeout_s)
        resp.raise_for_status()
        return resp.json()
    except requests.RequestException as e:
        raise DatasetLoadError(f"Failed to fetch dataset: {url} ({e})") from e
    except ValueError as e:
        raise DatasetLoadError(f"Dataset is not valid JSON: {url}") from e


def _read_local(path: Path) -> Any:
    if not path.exists():
        raise DatasetLoadError(f"Dataset file not found: {path}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise DatasetLoadError(f"Failed to read dataset: {path} ({e})") from e
    except json.JSONDecodeError as e:
        raise DatasetLoadError(f"Dataset is not valid JSON: {path} ({e.msg} at line {e.lineno})") from e


def feature_list(payload: Any, *, source: str) -> list[Any]:
    """Return `payload["features"]`, raising DatasetLoadError when it is not a FeatureCollection."""
    if not isinstance(payload, dict) or not isinstance(payload.get("features"), list):
        raise DatasetLoadError(f"GeoJSON must be a FeatureCollection with a features list: {source}")
    return payload["features"]


def read_feature_collection(
    source: str,
    *,
    timeout_s: int = 60,
    session: requests.Session | None = None,
) -> dict[str, Any]:
    if is_remote(source):
        payload = _fetch_remote(source, timeout_s=timeout_s, session=session)
    else:
        payload = _read_local(Path(source))
    feature_list(payload, source=source)
    return payload


def default_fetcher(*, timeout_s: int = 60, session: requests.Session | None = None) -> Fetcher:
    def _fetch(source: str) -> dict[str, Any]:
        return read_feature_collection(source, timeout_s=timeout_s, session=session)

    return _fetch
