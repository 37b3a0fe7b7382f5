from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[import]

from facetloop.query.errors import ConfigurationError


log = logging.getLogger(__name__)


class Layout(str, Enum):
    GRID = "grid"
    CAROUSEL = "carousel"


class OverlapPolicy(str, Enum):
    # A trigger that arrives while a request is in flight is a no-op
    DROP = "drop"
    # The in-flight request is superseded; its response is discarded on arrival
    REPLACE = "replace"


@dataclass(frozen=True)
class CarouselOptions:
    columns: int = 3
    autoplay: bool = False
    autoplay_interval: int = 3000
    nav_buttons: bool = True
    page_dots: bool = True
    wrap_around: bool = False
    cell_align: str = "left"
    slides_to_move: int = 1
    draggable: bool = True
    adaptive_height: bool = False


LAYOUT_PRESETS: Dict[str, Dict[str, Any]] = {
    "default_grid": {"layout": "grid", "enable_load_more": True, "page_size": 9},
    "compact_grid": {"layout": "grid", "enable_load_more": True, "page_size": 12},
    "single_column_grid": {"layout": "grid", "enable_load_more": True, "page_size": 5},
    "autoplay_carousel": {
        "layout": "carousel",
        "carousel": {"columns": 3, "autoplay": True, "autoplay_interval": 3000, "nav_buttons": True,
                     "page_dots": False, "wrap_around": True, "cell_align": "left",
                     "draggable": True, "adaptive_height": False},
    },
    "minimal_carousel": {
        "layout": "carousel",
        "carousel": {"columns": 2, "autoplay": False, "nav_buttons": True, "page_dots": True,
                     "wrap_around": False, "cell_align": "center",
                     "draggable": True, "adaptive_height": True},
    },
    "single_slide_carousel": {
        "layout": "carousel",
        "carousel": {"columns": 1, "autoplay": False, "nav_buttons": True, "page_dots": True,
                     "wrap_around": False, "cell_align": "center",
                     "draggable": True, "adaptive_height": True},
    },
}


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "yes", "true", "on")
    return bool(value)


def _int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from None


@dataclass
class WidgetConfig:
    """Author-side configuration of one filtered listing."""

    template_ref: str = ""
    post_type: str = "product"
    page_size: int = 9
    base: Dict[str, Any] = field(default_factory=dict)
    filters: List[Dict[str, Any]] = field(default_factory=list)
    combination_mode: str = "AND"
    layout: Layout = Layout.GRID
    carousel: CarouselOptions = field(default_factory=CarouselOptions)
    enable_load_more: bool = True
    load_more_text: str = "Load More"
    no_more_text: str = "No More Items"
    enable_history: bool = False
    debounce_ms: int = 500
    overlap_policy: OverlapPolicy = OverlapPolicy.DROP

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "WidgetConfig":
        data = dict(raw)
        if "posts_per_page_initial" in data:
            # Older widget configurations call the page size posts_per_page_initial
            data.setdefault("page_size", data.pop("posts_per_page_initial"))
        preset = data.pop("layout_preset", None)
        if preset:
            if preset not in LAYOUT_PRESETS:
                raise ConfigurationError(f"unknown layout preset {preset!r}")
            # Preset values override what the author set, as the page builder did
            data.update({k: v for k, v in LAYOUT_PRESETS[preset].items()})
        try:
            layout = Layout(str(data.get("layout", "grid")))
            policy = OverlapPolicy(str(data.get("overlap_policy", "drop")))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from None
        carousel_raw = data.get("carousel") or {}
        if not isinstance(carousel_raw, Mapping):
            raise ConfigurationError("carousel options must be a table")
        unknown = set(carousel_raw) - set(CarouselOptions.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"unknown carousel options: {sorted(unknown)}")
        filters = data.get("filters") or []
        if not isinstance(filters, list):
            raise ConfigurationError("filters must be a list of tables")
        return cls(
            template_ref=str(data.get("template_ref") or data.get("template") or ""),
            post_type=str(data.get("post_type") or "product"),
            page_size=_int(data, "page_size", 9),
            base=dict(data.get("base") or {}),
            filters=[dict(f) for f in filters],
            combination_mode=str(data.get("combination_mode") or data.get("filter_logic") or "AND").upper(),
            layout=layout,
            carousel=CarouselOptions(**carousel_raw),
            enable_load_more=_flag(data.get("enable_load_more", True)),
            load_more_text=str(data.get("load_more_text") or "Load More"),
            no_more_text=str(data.get("no_more_text") or "No More Items"),
            enable_history=_flag(data.get("enable_history", False)),
            debounce_ms=_int(data, "debounce_ms", 500),
            overlap_policy=policy,
        )

    def with_preset(self, name: str) -> "WidgetConfig":
        if name not in LAYOUT_PRESETS:
            raise ConfigurationError(f"unknown layout preset {name!r}")
        preset = dict(LAYOUT_PRESETS[name])
        carousel = preset.pop("carousel", None)
        changes: Dict[str, Any] = {}
        if "layout" in preset:
            changes["layout"] = Layout(preset.pop("layout"))
        changes.update(preset)
        if carousel is not None:
            changes["carousel"] = CarouselOptions(**carousel)
        return replace(self, **changes)

    def request_payload(self, selections: Mapping[str, List[str]], page: int = 1, token: str = "") -> Dict[str, Any]:
        """Request body for one filter call with the given selections and page."""
        return {
            "token": token,
            "templateRef": self.template_ref,
            "postType": self.post_type,
            "pageSize": self.page_size,
            "page": page,
            "baseConstraints": dict(self.base),
            "filterConfig": [dict(f) for f in self.filters],
            "combinationMode": self.combination_mode,
            "selections": {k: list(v) for k, v in selections.items() if v},
        }


def load_widget_config(path: Path) -> WidgetConfig:
    try:
        with Path(path).open("rb") as fh:
            raw = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"{path}: {exc}") from None
    log.debug("Loaded widget configuration from %s", path)
    return WidgetConfig.from_mapping(raw.get("widget", raw))
