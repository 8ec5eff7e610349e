"""
Settings bootstrap for hiroval.

Every CLI command and the API process read configuration through
`load_settings()` first. The base file (`config/default.yaml`) holds the
dataset knobs shared by all deployments; a prefecture override
(`config/prefectures/<name>.yaml`) points the lookups at that prefecture's
GeoJSON files and can tune grid sizes or the flood factor table.

Dataset sources can also come from the environment (or a `.env` file at the
project root): `HIROVAL_ZONING_SOURCE`, `HIROVAL_FLOOD_SOURCE` and
`HIROVAL_STATIONS_SOURCE` replace the configured `source` of that dataset.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any

# PyYAML parses the human-edited config files.
import yaml

from hiroval.log import configure_logging

SOURCE_ENV_TEMPLATE = "HIROVAL_{name}_SOURCE"


def _merge_into(target: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    # A prefecture file can change one dataset knob without restating the section.
    for key, value in override.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def _read_mapping(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Config file not found: {path}")
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML must be a mapping: {path}")
    return data


def _read_dotenv(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def _apply_source_env(settings: dict[str, Any]) -> list[str]:
    """Replace dataset sources named by HIROVAL_<NAME>_SOURCE; returns the overridden names."""
    overridden: list[str] = []
    datasets = settings.get("datasets") or {}
    for name, cfg in datasets.items():
        value = os.environ.get(SOURCE_ENV_TEMPLATE.format(name=str(name).upper()), "").strip()
        if value and isinstance(cfg, dict):
            cfg["source"] = value
            overridden.append(str(name))
    return overridden


def _check_datasets(settings: dict[str, Any], config_path: Path) -> None:
    datasets = settings.get("datasets") or {}
    if not isinstance(datasets, dict):
        raise ValueError(f"`datasets` must be a mapping: {config_path}")
    for name, cfg in datasets.items():
        if not isinstance(cfg, dict) or not str(cfg.get("source") or "").strip():
            raise ValueError(f"datasets.{name}.source is not set ({config_path})")


def project_root(config_path: Path) -> Path:
    # config/default.yaml lives one level below the project root.
    parent = config_path.resolve().parent
    return parent.parent if parent.name == "config" else parent


def resolve_source(settings: dict[str, Any], source: str) -> str:
    """
    Resolve a dataset `source` from config.

    URLs are returned unchanged; relative file paths are anchored at the project
    root so the CLI and the API resolve the same file regardless of the cwd.
    """
    text = str(source).strip()
    if text.startswith(("http://", "https://")):
        return text
    p = Path(text)
    if p.is_absolute():
        return str(p)
    root = Path((settings.get("paths", {}) or {}).get("root") or ".")
    return str(root / p)


def load_settings(config_path: Path, prefecture: str) -> dict[str, Any]:
    """
    Load base config and merge the prefecture override file if present.
    Also initializes runtime directories and logging.
    """
    config_path = config_path.resolve()
    root = project_root(config_path)

    # Exported variables win over .env entries.
    for key, value in _read_dotenv(root / ".env").items():
        os.environ.setdefault(key, value)

    override_path = root / "config" / "prefectures" / f"{prefecture}.yaml"
    settings = _merge_into(
        copy.deepcopy(_read_mapping(config_path, required=True)),
        _read_mapping(override_path, required=False),
    )
    env_sources = _apply_source_env(settings)
    _check_datasets(settings, config_path)

    project = settings.setdefault("project", {})
    raw_dir = root / project.get("raw_dir", "data/raw")
    logs_dir = root / project.get("logs_dir", "logs")
    # `hiroval fetch-datasets` stores remote datasets and their manifest here.
    (raw_dir / "datasets").mkdir(parents=True, exist_ok=True)
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = configure_logging(logs_dir, level=project.get("log_level", "INFO"))

    settings["_meta"] = {
        "config_path": str(config_path),
        "prefecture": prefecture,
        "prefecture_path": str(override_path),
        "env_sources": env_sources,
    }
    settings["paths"] = {"root": str(root), "raw_dir": str(raw_dir), "logs_dir": str(logs_dir)}
    logger.info(
        "Loaded settings: config=%s prefecture=%s datasets=%s",
        config_path,
        prefecture,
        ",".join(sorted(settings.get("datasets") or {})) or "-",
    )
    if env_sources:
        logger.info("Dataset sources taken from the environment: %s", ",".join(env_sources))
    return settings
