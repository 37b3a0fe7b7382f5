from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[import]

from facetloop.query.errors import ConfigurationError
from facetloop.query.model import AttributeField


log = logging.getLogger(__name__)


JSON_EXTS = {".json"}
TOML_EXTS = {".toml"}
CATALOG_EXTS = JSON_EXTS | TOML_EXTS


@dataclass
class CatalogFile:
    items: List[Dict[str, Any]] = field(default_factory=list)
    attributes: List[AttributeField] = field(default_factory=list)
    terms: List[Dict[str, Any]] = field(default_factory=list)


def is_catalog_file(path: Path) -> bool:
    return path.suffix.lower() in CATALOG_EXTS and not path.name.startswith(".")


def _read_raw(path: Path) -> Any:
    ext = path.suffix.lower()
    if ext in JSON_EXTS:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    with open(path, "rb") as f:
        return tomllib.load(f)


def _parse(raw: Any) -> CatalogFile:
    if isinstance(raw, list):
        raw = {"items": raw}
    if not isinstance(raw, Mapping):
        raise ValueError("catalog root must be an object or a list of items")
    if "id" in raw:
        raw = {"items": [raw]}
    items = raw.get("items") or []
    attributes = raw.get("attributes") or []
    terms = raw.get("terms") or []
    if not all(isinstance(x, Mapping) for x in (*items, *attributes, *terms)):
        raise ValueError("items, attributes and terms must be lists of objects")
    for t in terms:
        if not t.get("taxonomy") or not t.get("slug"):
            raise ValueError(f"term without taxonomy or slug: {dict(t)!r}")
    return CatalogFile(
        items=[dict(i) for i in items],
        attributes=[AttributeField.from_mapping(a) for a in attributes],
        terms=[dict(t) for t in terms],
    )


def load_catalog_file(path: Path) -> Optional[CatalogFile]:
    """Parse one catalog file; ``None`` when it is not a catalog or cannot be read."""
    if not is_catalog_file(path):
        return None
    try:
        return _parse(_read_raw(path))
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        log.warning("Could not read catalog %s: %s", path, exc)
    except (ValueError, ConfigurationError) as exc:
        log.warning("Malformed catalog %s: %s", path, exc)
    return None
