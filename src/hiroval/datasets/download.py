"""
Local cache of the remote GeoJSON datasets.

The prefecture files are large (the A29 zoning file is ~18MB) and change a few
times a year, so `hiroval fetch-datasets` keeps one copy per dataset under
`raw_dir/datasets/<name>/` and records it in `raw_dir/datasets/manifest.json`:

    {"datasets": {"zoning": {"url": ..., "path": ..., "etag": ...,
                             "feature_count": 1234, ...}}}

Re-running the fetch sends the stored ETag / Last-Modified so an unchanged file
costs a 304. Lookups built from settings read the cached copy whenever it
exists (`dataset_source`), so processes start without touching the network.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import requests

from hiroval.datasets.source import DatasetLoadError, feature_list, is_remote
from hiroval.log import get_logger
from hiroval.settings import resolve_source

DATASET_NAMES = ("zoning", "flood", "stations")

STATUS_DOWNLOADED = "downloaded"
STATUS_NOT_MODIFIED = "not_modified"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _replace_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(path.name + ".part")
    partial.write_bytes(data)
    partial.replace(path)


@dataclass(frozen=True)
class CachedDataset:
    name: str
    url: str
    path: Path
    status: str
    fetched_at: str
    sha256: str
    feature_count: int
    etag: str | None = None
    last_modified: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "path": str(self.path),
            "status": self.status,
            "fetched_at": self.fetched_at,
            "sha256": self.sha256,
            "feature_count": self.feature_count,
            "etag": self.etag,
            "last_modified": self.last_modified,
        }


def cache_dir(settings: dict[str, Any]) -> Path:
    return Path(settings["paths"]["raw_dir"]) / "datasets"


def manifest_path(settings: dict[str, Any]) -> Path:
    return cache_dir(settings) / "manifest.json"


def cached_path(settings: dict[str, Any], name: str, url: str) -> Path:
    filename = Path(urlparse(url).path).name or f"{name}.geojson"
    return cache_dir(settings) / name / filename


def read_manifest(settings: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Dataset name -> manifest row. A missing or unreadable manifest is empty."""
    path = manifest_path(settings)
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        get_logger().warning("ignoring unreadable dataset manifest: %s", path)
        return {}
    rows = data.get("datasets") if isinstance(data, dict) else None
    if not isinstance(rows, dict):
        return {}
    return {str(k): v for k, v in rows.items() if isinstance(v, dict)}


def _record(settings: dict[str, Any], entry: CachedDataset) -> None:
    rows = read_manifest(settings)
    rows[entry.name] = entry.to_row()
    doc = {"updated_at": utc_now_iso(), "datasets": dict(sorted(rows.items()))}
    _replace_atomic(manifest_path(settings), json.dumps(doc, ensure_ascii=False, indent=2).encode("utf-8"))


def dataset_source(settings: dict[str, Any], name: str) -> str:
    """
    Where a lookup should read dataset `name` from.

    A remote `source` is swapped for its cached copy when `fetch-datasets` has
    stored one (set `datasets.<name>.prefer_cache: false` to always go to the
    network). Local paths resolve against the project root.
    """
    cfg = (settings.get("datasets", {}) or {}).get(name, {}) or {}
    source = resolve_source(settings, cfg["source"])
    if not is_remote(source) or not cfg.get("prefer_cache", True):
        return source
    paths = settings.get("paths", {}) or {}
    if not paths.get("raw_dir"):
        return source
    local = cached_path(settings, name, source)
    if local.exists():
        get_logger().debug("%s dataset: using cached copy %s", name, local)
        return str(local)
    return source


def _count_features(content: bytes, url: str) -> int:
    try:
        payload = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DatasetLoadError(f"Downloaded dataset is not valid JSON: {url}") from e
    return len(feature_list(payload, source=url))


def download_dataset(
    settings: dict[str, Any],
    name: str,
    url: str,
    *,
    timeout_s: int = 60,
    headers: dict[str, str] | None = None,
    session: requests.Session | None = None,
) -> CachedDataset:
    """
    Fetch `url` into the cache slot of dataset `name` and update the manifest.

    Validators from the previous manifest row are only sent while the file they
    describe is still on disk and came from the same URL. A body that is not a
    FeatureCollection is rejected before it replaces the cached copy.
    """
    path = cached_path(settings, name, url)
    prev = read_manifest(settings).get(name, {})
    req_headers = dict(headers or {})
    revalidating = path.exists() and prev.get("url") == url
    if revalidating:
        if prev.get("etag"):
            req_headers["If-None-Match"] = str(prev["etag"])
        if prev.get("last_modified"):
            req_headers["If-Modified-Since"] = str(prev["last_modified"])

    http = session or requests.Session()
    try:
        resp = http.get(url, headers=req_headers, timeout=timeout_s)
    except requests.RequestException as e:
        raise DatasetLoadError(f"Failed to download dataset: {url} ({e})") from e

    if resp.status_code == 304 and revalidating:
        content = path.read_bytes()
        entry = CachedDataset(
            name=name,
            url=url,
            path=path,
            status=STATUS_NOT_MODIFIED,
            fetched_at=utc_now_iso(),
            sha256=str(prev.get("sha256") or hashlib.sha256(content).hexdigest()),
            feature_count=int(prev.get("feature_count") or _count_features(content, url)),
            etag=prev.get("etag"),
            last_modified=prev.get("last_modified"),
        )
    else:
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise DatasetLoadError(f"Failed to download dataset: {url} (HTTP {resp.status_code})") from e
        if resp.status_code == 304:
            raise DatasetLoadError(f"Server answered 304 for an uncached dataset: {url}")
        feature_count = _count_features(resp.content, url)
        _replace_atomic(path, resp.content)
        entry = CachedDataset(
            name=name,
            url=url,
            path=path,
            status=STATUS_DOWNLOADED,
            fetched_at=utc_now_iso(),
            sha256=hashlib.sha256(resp.content).hexdigest(),
            feature_count=feature_count,
            etag=resp.headers.get("ETag"),
            last_modified=resp.headers.get("Last-Modified"),
        )

    _record(settings, entry)
    return entry


def fetch_datasets(
    settings: dict[str, Any],
    *,
    only: set[str] | None = None,
    session: requests.Session | None = None,
) -> dict[str, CachedDataset]:
    """Refresh the cached copy of every dataset whose configured `source` is a URL."""
    logger = get_logger()
    http_cfg = settings.get("http", {}) or {}
    timeout_s = int(http_cfg.get("request_timeout_s", 60) or 60)
    headers: dict[str, str] = {}
    ua = http_cfg.get("user_agent")
    if isinstance(ua, str) and ua.strip():
        headers["User-Agent"] = ua.strip()

    datasets = settings.get("datasets", {}) or {}
    out: dict[str, CachedDataset] = {}
    for name in DATASET_NAMES:
        if only and name not in only:
            continue
        source = str((datasets.get(name, {}) or {}).get("source") or "")
        if not is_remote(source):
            logger.info("%s dataset is local (%s); nothing to download", name, source or "<unset>")
            continue
        entry = download_dataset(settings, name, source, timeout_s=timeout_s, headers=headers, session=session)
        logger.info("%s dataset %s: features=%d path=%s", name, entry.status, entry.feature_count, entry.path)
        out[name] = entry
    return out
