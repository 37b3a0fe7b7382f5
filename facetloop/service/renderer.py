from __future__ import annotations

import html
from datetime import datetime
from pathlib import Path
from string import Template
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

from facetloop.query.errors import ConfigurationError


class Renderer(Protocol):
    """Turns matched rows into an opaque markup fragment."""

    def has_template(self, template_ref: str) -> bool: ...

    def render(self, template_ref: str, rows: Sequence[Mapping[str, Any]]) -> str: ...


def template_fields(row: Mapping[str, Any]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for key in ("id", "title", "slug", "author", "body", "post_type", "status"):
        fields[key] = html.escape(str(row.get(key, "")))
    date_ts = int(row.get("date_ts") or 0)
    fields["date"] = datetime.fromtimestamp(date_ts).strftime("%Y-%m-%d") if date_ts else ""
    for taxonomy, terms in (row.get("terms") or {}).items():
        fields[f"terms_{taxonomy}"] = html.escape(", ".join(t["name"] for t in terms))
    for key, values in (row.get("meta") or {}).items():
        fields[f"meta_{key}"] = html.escape(", ".join(values))
    return fields


class _BlankFields(dict):
    def __missing__(self, key: str) -> str:
        return ""


class TemplateRenderer:
    """Renders each row through a ``$placeholder`` template named by reference.

    Templates come from ``<templates_dir>/<ref>.html`` or an in-memory mapping.
    Placeholders with no value for a row render empty.
    """

    def __init__(self, templates_dir: Optional[Path] = None, templates: Mapping[str, str] | None = None) -> None:
        self.templates_dir = templates_dir
        self._templates: Dict[str, str] = dict(templates or {})

    def _template_path(self, template_ref: str) -> Optional[Path]:
        if self.templates_dir is None or not template_ref.replace("-", "").replace("_", "").isalnum():
            return None
        return self.templates_dir / f"{template_ref}.html"

    def has_template(self, template_ref: str) -> bool:
        if template_ref in self._templates:
            return True
        path = self._template_path(template_ref)
        return bool(path and path.is_file())

    def _load(self, template_ref: str) -> Template:
        if template_ref not in self._templates:
            path = self._template_path(template_ref)
            if not path or not path.is_file():
                raise ConfigurationError(f"Template {template_ref!r} was not found.")
            self._templates[template_ref] = path.read_text(encoding="utf-8")
        return Template(self._templates[template_ref])

    def render(self, template_ref: str, rows: Sequence[Mapping[str, Any]]) -> str:
        tpl = self._load(template_ref)
        parts = []
        for row in rows:
            fields = template_fields(row)
            body = tpl.safe_substitute(_BlankFields(fields))
            parts.append(f'<div class="loop-item" data-id="{fields["id"]}">{body}</div>')
        return "\n".join(parts)
