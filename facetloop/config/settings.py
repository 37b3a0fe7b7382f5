from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[import]

from facetloop.index.db import DATA_DIR


log = logging.getLogger(__name__)

SETTINGS_PATH = DATA_DIR / "settings.json"
DEFAULTS_PATH = Path(__file__).with_name("defaults.toml")
_DEFAULTS_CACHE: Dict[str, Any] | None = None


def _load_defaults() -> Dict[str, Any]:
    global _DEFAULTS_CACHE
    if _DEFAULTS_CACHE is not None:
        return _DEFAULTS_CACHE
    if not DEFAULTS_PATH.exists():
        _DEFAULTS_CACHE = {}
        return _DEFAULTS_CACHE
    try:
        with DEFAULTS_PATH.open("rb") as fh:
            _DEFAULTS_CACHE = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError):
        log.warning("Could not read %s", DEFAULTS_PATH, exc_info=True)
        _DEFAULTS_CACHE = {}
    return _DEFAULTS_CACHE


def _coerce_paths(raw_paths: Sequence[str]) -> List[Path]:
    paths: List[Path] = []
    for raw in raw_paths:
        p = Path(raw).expanduser()
        if p.exists() and p.is_dir():
            paths.append(p)
    return paths


def default_catalog_dirs() -> List[Path]:
    cfg = _load_defaults()
    raw = cfg.get("catalog_dirs", []) or []
    return _coerce_paths([str(p) for p in raw])


def default_no_results_text(fallback: str = "There are no items with that combination of filters.") -> str:
    cfg = _load_defaults()
    return str(cfg.get("no_results_text") or fallback)


def default_facet_cache_ttl(fallback: float = 300.0) -> float:
    cfg = _load_defaults()
    value = cfg.get("facet_cache_ttl")
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


def default_facet_workers(fallback: int = 4) -> int:
    env = os.environ.get("FACETLOOP_FACET_WORKERS")
    if env and env.isdigit():
        return max(1, int(env))
    cfg = _load_defaults()
    value = cfg.get("facet_workers")
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return fallback


@dataclass
class Settings:
    no_results_text: str = field(default_factory=default_no_results_text)
    secret: str = ""
    token_max_age: int = 12 * 3600
    catalog_dirs: List[str] = field(default_factory=list)
    facet_cache_ttl: float = field(default_factory=default_facet_cache_ttl)
    facet_workers: int = field(default_factory=default_facet_workers)

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        path = path or SETTINGS_PATH
        settings = cls()
        try:
            if path.exists():
                data = json.loads(path.read_text("utf-8"))
                known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
                settings = cls(**known)
        except (OSError, ValueError, TypeError):
            log.warning("Ignoring unreadable settings file %s", path, exc_info=True)
        env_secret = os.environ.get("FACETLOOP_SECRET")
        if env_secret:
            settings.secret = env_secret
        return settings

    def save(self, path: Path | None = None) -> None:
        path = path or SETTINGS_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(self), indent=2), encoding="utf-8")


def resolved_catalog_dirs_from_settings(settings: Settings) -> List[Path]:
    return _coerce_paths(settings.catalog_dirs)


def resolve_catalog_dirs(settings: Settings) -> List[Path]:
    env = os.environ.get("FACETLOOP_CATALOG_DIRS")
    if env:
        parts = [p.strip() for p in env.split(os.pathsep) if p.strip()]
        paths = _coerce_paths(parts)
        if paths:
            return paths
    saved = resolved_catalog_dirs_from_settings(settings)
    if saved:
        return saved
    return default_catalog_dirs()
