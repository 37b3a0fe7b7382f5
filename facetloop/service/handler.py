from __future__ import annotations

import html
import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from facetloop.config.settings import Settings
from facetloop.index.items_repo import ItemsRepo
from facetloop.query.builder import build_query
from facetloop.query.errors import ConfigurationError, ValidationError
from facetloop.query.facets import FacetCache, compute_facets, facets_to_payload
from facetloop.query.model import BaseQueryConstraints, CombinationMode, SelectionState, resolve_config
from .renderer import Renderer
from .tokens import FILTER_ACTION, verify_token


log = logging.getLogger(__name__)

PLACEHOLDER_FRAGMENT = '<p class="configuration-error">Please select a template to display content.</p>'


def _get(payload: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in payload:
        return payload[camel]
    return payload.get(snake, default)


def _positive_int(value: Any, name: str, default: int) -> int:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer, got {value!r}") from None


@dataclass
class FilterRequest:
    template_ref: str
    post_type: str = "product"
    page: int = 1
    base: BaseQueryConstraints = field(default_factory=BaseQueryConstraints)
    filter_config: List[Mapping[str, Any]] = field(default_factory=list)
    mode: CombinationMode = CombinationMode.AND
    selections: SelectionState = field(default_factory=SelectionState)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "FilterRequest":
        if not isinstance(payload, Mapping):
            raise ValidationError("request body must be an object")
        page = max(1, _positive_int(payload.get("page"), "page", 1))
        page_size = _positive_int(_get(payload, "pageSize", "page_size"), "pageSize", 9)
        filter_config = _get(payload, "filterConfig", "filter_config", []) or []
        if not isinstance(filter_config, list):
            raise ValidationError("filterConfig must be a list")
        return cls(
            template_ref=str(_get(payload, "templateRef", "template_ref", "") or "").strip(),
            post_type=str(_get(payload, "postType", "post_type", "product") or "product"),
            page=page,
            base=BaseQueryConstraints.from_mapping(_get(payload, "baseConstraints", "base_constraints"), page_size),
            filter_config=filter_config,
            mode=CombinationMode.parse(_get(payload, "combinationMode", "combination_mode", "AND")),
            selections=SelectionState.from_mapping(payload.get("selections")),
        )


class FilterService:
    """Request boundary: validates, queries one page, renders it and computes facets."""

    def __init__(
        self,
        repo: ItemsRepo,
        renderer: Renderer,
        settings: Settings | None = None,
        cache: FacetCache | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.repo = repo
        self.renderer = renderer
        self.settings = settings or Settings()
        self.cache = cache
        self.executor = executor

    def handle(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            self._check_token(payload)
            request = FilterRequest.from_payload(payload)
        except ValidationError as exc:
            log.info("Rejected filter request: %s", exc)
            return {"success": False, "message": str(exc)}
        try:
            return self.run(request)
        except ConfigurationError as exc:
            log.warning("Filter configuration error: %s", exc)
            return {"success": False, "message": str(exc), "items": PLACEHOLDER_FRAGMENT}

    def invalidate_facets(self, _changed: object = None) -> None:
        """Drop cached facet counts; registered as a catalog importer change listener."""
        if self.cache is not None:
            self.cache.clear()

    def _check_token(self, payload: Mapping[str, Any]) -> None:
        if not self.settings.secret:
            return
        token = payload.get("token") if isinstance(payload, Mapping) else None
        verify_token(self.settings.secret, token, FILTER_ACTION, self.settings.token_max_age)

    def no_results_fragment(self) -> str:
        return f'<p class="no-results">{html.escape(self.settings.no_results_text)}</p>'

    def run(self, request: FilterRequest) -> Dict[str, Any]:
        if not request.template_ref:
            raise ConfigurationError("Template reference is missing.")
        if not self.renderer.has_template(request.template_ref):
            raise ConfigurationError(f"Template {request.template_ref!r} was not found.")
        attributes = self.repo.attributes()
        config = resolve_config(request.filter_config, attributes)
        unknown = set(request.selections.active_keys()) - {d.key for d in config}
        if unknown:
            log.debug("Ignoring selections for unconfigured dimensions: %s", sorted(unknown))

        spec = build_query(config, request.base, request.selections, request.mode,
                           post_type=request.post_type, page=request.page, attributes=attributes)
        page = self.repo.search(spec)
        if page.rows:
            items = self.renderer.render(request.template_ref, page.rows)
        else:
            items = self.no_results_fragment()

        facets = compute_facets(
            config, request.base, request.selections, request.mode,
            source=self.repo,
            post_type=request.post_type,
            attributes=attributes,
            executor=self.executor,
            max_workers=self.settings.facet_workers,
            cache=self.cache,
        )
        log.info("Filter page %d/%d (%d matches, %d active dimensions)",
                 page.page, page.total_pages, page.total, len(request.selections.active_keys()))
        return {
            "success": True,
            "items": items,
            "totalPages": page.total_pages,
            "total": page.total,
            "page": page.page,
            "facets": facets_to_payload(facets),
        }
