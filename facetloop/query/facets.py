from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol, Sequence, Tuple

from .builder import QuerySpec, build_query
from .model import (
    BOOLEAN_CHOICES,
    AttributeField,
    BaseQueryConstraints,
    CombinationMode,
    DimensionKind,
    FilterDimension,
    SelectionState,
    ValueType,
)


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FacetOption:
    label: str
    count: int = 0

    def to_payload(self) -> Dict[str, object]:
        return {"label": self.label, "count": self.count}


FacetMap = Dict[str, FacetOption]
FacetResult = Dict[str, FacetMap]


class FacetSource(Protocol):
    """Read-only view of the content repository needed to tally facets."""

    def term_options(self, taxonomy: str) -> Dict[str, str]: ...

    def term_counts(self, spec: QuerySpec, taxonomy: str) -> Dict[str, int]: ...

    def attribute_counts(self, spec: QuerySpec, key: str) -> Dict[str, int]: ...


def option_universe(dim: FilterDimension, source: FacetSource,
                    attributes: Mapping[str, AttributeField]) -> Dict[str, str]:
    if dim.kind is DimensionKind.CATEGORICAL:
        return source.term_options(dim.key)
    field_def = attributes.get(dim.key)
    if dim.value_type is ValueType.BOOLEAN:
        return field_def.options() if field_def and field_def.choices else dict(BOOLEAN_CHOICES)
    if dim.value_type is ValueType.ENUM:
        return field_def.options() if field_def else {}
    return {}


def facet_fingerprint(
    config: Sequence[FilterDimension],
    base: BaseQueryConstraints,
    selections: SelectionState,
    mode: CombinationMode,
    post_type: str,
) -> str:
    blob = json.dumps(
        {
            "config": [d.to_payload() for d in config],
            "base": base.to_payload(),
            "selections": selections.canonical(),
            "mode": mode.value,
            "post_type": post_type,
        },
        sort_keys=True,
    )
    return hashlib.sha1(blob.encode("utf-8")).hexdigest()


class FacetCache:
    """TTL cache of facet results keyed by the full request fingerprint."""

    def __init__(self, ttl: float = 300.0) -> None:
        self.ttl = ttl
        self._entries: Dict[str, Tuple[float, FacetResult]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[FacetResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if time.monotonic() - stored_at > self.ttl:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: FacetResult) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            self._entries[key] = (time.monotonic(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _facet_for_dimension(
    dim: FilterDimension,
    config: Sequence[FilterDimension],
    base: BaseQueryConstraints,
    selections: SelectionState,
    mode: CombinationMode,
    source: FacetSource,
    post_type: str,
    attributes: Mapping[str, AttributeField],
) -> FacetMap:
    universe = option_universe(dim, source, attributes)
    if not universe:
        return {}
    spec = build_query(config, base, selections, mode, exclude_dimension=dim.key,
                       post_type=post_type, ids_only=True, attributes=attributes)
    if dim.kind is DimensionKind.CATEGORICAL:
        counts = source.term_counts(spec, dim.key)
    else:
        counts = source.attribute_counts(spec, dim.key)
    return {value: FacetOption(label=label, count=counts.get(value, 0)) for value, label in universe.items()}


def compute_facets(
    config: Sequence[FilterDimension],
    base: BaseQueryConstraints,
    selections: SelectionState,
    mode: CombinationMode,
    *,
    source: FacetSource,
    post_type: str = "any",
    attributes: Mapping[str, AttributeField] | None = None,
    executor: Executor | None = None,
    max_workers: int = 4,
    cache: FacetCache | None = None,
) -> FacetResult:
    """Per dimension, count options over the query with that dimension's own selection lifted.

    Free-text and numeric dimensions have no option universe and get no entry. A
    dimension whose tally raises degrades to an empty map; the others are unaffected.
    """
    attributes = attributes or {}
    key = None
    if cache is not None:
        key = facet_fingerprint(config, base, selections, mode, post_type)
        hit = cache.get(key)
        if hit is not None:
            log.debug("Facet cache hit %s", key[:12])
            return hit

    dims = [d for d in config if d.has_option_universe]
    result: FacetResult = {}
    if not dims:
        return result
    degraded = False

    # Each task reads its own snapshot; nothing shared is mutated
    snapshot = selections.copy()
    own_pool = executor is None
    pool = executor or ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(dims))),
                                          thread_name_prefix="FacetCounter")
    try:
        futures = {
            d.key: pool.submit(_facet_for_dimension, d, config, base, snapshot, mode, source, post_type, attributes)
            for d in dims
        }
        for dim_key, fut in futures.items():
            try:
                result[dim_key] = fut.result()
            except Exception:
                log.warning("Facet computation failed for %r", dim_key, exc_info=True)
                result[dim_key] = {}
                degraded = True
    finally:
        if own_pool:
            pool.shutdown(wait=True)

    if cache is not None and key is not None and not degraded:
        cache.put(key, result)
    return result


def facets_to_payload(facets: FacetResult) -> Dict[str, Dict[str, Dict[str, object]]]:
    return {dim: {value: opt.to_payload() for value, opt in options.items()} for dim, options in facets.items()}
