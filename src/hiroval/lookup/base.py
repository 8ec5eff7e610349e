"""
Load-once lifecycle shared by the dataset lookups.

A lookup instance owns one dataset: `load()` fetches and parses it and builds
the grid index; queries are synchronous afterwards. A second `load()` returns
the cached count without fetching again. Querying before a successful load is
a programming error and raises `DatasetNotLoadedError`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

from hiroval.datasets.records import ParseFailure
from hiroval.datasets.source import Fetcher, default_fetcher, feature_list
from hiroval.log import get_logger


class DatasetNotLoadedError(RuntimeError):
    pass


def fetcher_from_settings(settings: dict[str, Any], *, session: requests.Session | None = None) -> Fetcher:
    timeout_s = int((settings.get("http", {}) or {}).get("request_timeout_s", 60) or 60)
    return default_fetcher(timeout_s=timeout_s, session=session)


class DatasetLookup:
    dataset_name = "dataset"

    def __init__(self, source: str, *, fetcher: Fetcher | None = None) -> None:
        self._source = str(source)
        self._fetcher = fetcher or default_fetcher()
        self._loaded = False
        self._count = 0
        # Features dropped at parse time plus items the grid rejected.
        self.skipped = 0

    @property
    def source(self) -> str:
        return self._source

    def _log(self) -> logging.Logger:
        return get_logger()

    def is_loaded(self) -> bool:
        return self._loaded

    def count(self) -> int:
        return self._count

    def load(self) -> int:
        # No lock: two overlapping first calls may both fetch, but end in the same state.
        if self._loaded:
            return self._count
        started = time.perf_counter()
        payload = self._fetcher(self._source)
        features = feature_list(payload, source=self._source)
        self._count = self._build(features)
        self._loaded = True
        self._log().info(
            "%s dataset loaded: items=%d skipped=%d source=%s elapsed_s=%.2f",
            self.dataset_name,
            self._count,
            self.skipped,
            self._source,
            time.perf_counter() - started,
        )
        return self._count

    def _build(self, features: list[Any]) -> int:
        raise NotImplementedError

    def _parse_all(self, features: list[Any], parse: Callable[[Any], Any]) -> tuple[list[Any], int]:
        records: list[Any] = []
        failures = 0
        for i, feature in enumerate(features):
            parsed = parse(feature)
            if isinstance(parsed, ParseFailure):
                failures += 1
                self._log().debug("%s feature %d skipped: %s", self.dataset_name, i, parsed.reason)
                continue
            records.append(parsed)
        return records, failures

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise DatasetNotLoadedError(
                f"{self.dataset_name} dataset is not loaded; call load() before querying"
            )
