from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import InvalidSelection
from .model import (
    AttributeField,
    AttributeFilter,
    BaseQueryConstraints,
    CombinationMode,
    Comparator,
    DimensionKind,
    FilterDimension,
    SelectionState,
    ValueType,
    normalize_boolean,
)


log = logging.getLogger(__name__)

# Taxonomies targeted by the fixed base filters
CATEGORY_TAXONOMY = "category"
PRODUCT_CATEGORY_TAXONOMY = "product_cat"
PRODUCT_TAG_TAXONOMY = "product_tag"


@dataclass(frozen=True)
class PostTypeIs:
    post_type: str


@dataclass(frozen=True)
class StatusIn:
    statuses: Tuple[str, ...]


@dataclass(frozen=True)
class IdsIn:
    ids: Tuple[int, ...]
    negate: bool = False


@dataclass(frozen=True)
class TermMatch:
    """Item carries a term of ``taxonomy`` whose ``field`` (id or slug) is in ``values``."""

    taxonomy: str
    field: str
    values: Tuple[str, ...]
    negate: bool = False


@dataclass(frozen=True)
class AttributeMatch:
    """Some stored value of ``key`` satisfies ``op`` (or none does, when negated).

    Ops: ``= > >= < <= IN BETWEEN CONTAINS EXISTS``.
    """

    key: str
    op: str
    values: Tuple[str, ...] = ()
    numeric: bool = False
    negate: bool = False


@dataclass(frozen=True)
class Group:
    relation: CombinationMode
    children: Tuple["Constraint", ...] = ()


Constraint = Union[PostTypeIs, StatusIn, IdsIn, TermMatch, AttributeMatch, Group]


@dataclass(frozen=True)
class Ordering:
    key: str
    direction: str


@dataclass(frozen=True)
class QuerySpec:
    base: Tuple[Constraint, ...]
    selection: Group
    order: Ordering
    page: int = 1
    page_size: int = 0
    ids_only: bool = False

    @property
    def unbounded(self) -> bool:
        return self.page_size <= 0

    def fingerprint(self) -> str:
        blob = json.dumps(asdict(self), sort_keys=True, default=str)
        return hashlib.sha1(blob.encode("utf-8")).hexdigest()

    def for_ids(self) -> "QuerySpec":
        return replace(self, page=1, page_size=0, ids_only=True)


def _numbers(key: str, raw_values: Sequence[str]) -> Tuple[str, ...]:
    out = []
    for raw in raw_values:
        try:
            num = float(str(raw).strip())
        except ValueError:
            raise InvalidSelection(key, raw, "not a number") from None
        if num != num or num in (float("inf"), float("-inf")):
            raise InvalidSelection(key, raw, "not a finite number")
        out.append(num)
    return tuple(repr(n) for n in sorted(set(out)))


def _range(key: str, raw_values: Sequence[str]) -> Tuple[str, str]:
    parts: List[str] = []
    for raw in raw_values:
        parts.extend(p.strip() for p in str(raw).split(",") if p.strip())
    if len(parts) != 2:
        raise InvalidSelection(key, list(raw_values), "a range needs exactly two bounds")
    bounds = []
    for part in parts:
        try:
            bounds.append(float(part))
        except ValueError:
            raise InvalidSelection(key, part, "not a number") from None
    low, high = sorted(bounds)
    return repr(low), repr(high)


def _dimension_constraint(dim: FilterDimension, values: Tuple[str, ...]) -> Constraint:
    if dim.kind is DimensionKind.CATEGORICAL:
        return TermMatch(taxonomy=dim.key, field="slug", values=values)
    vt = dim.value_type
    if vt is ValueType.TEXT:
        return AttributeMatch(key=dim.key, op="CONTAINS", values=values)
    if vt is ValueType.NUMBER:
        return _number_constraint(dim, values)
    if vt is ValueType.ENUM:
        return AttributeMatch(key=dim.key, op="IN", values=values)
    if vt is ValueType.BOOLEAN:
        canonical = []
        for v in values:
            b = normalize_boolean(v)
            if b is None:
                raise InvalidSelection(dim.key, v, "not a boolean")
            canonical.append(b)
        return AttributeMatch(key=dim.key, op="IN", values=tuple(sorted(set(canonical))))
    raise AssertionError(f"unhandled value type {vt!r}")


def _number_constraint(dim: FilterDimension, values: Tuple[str, ...]) -> Constraint:
    cmp = dim.comparator
    if cmp is Comparator.BETWEEN:
        return AttributeMatch(key=dim.key, op="BETWEEN", values=_range(dim.key, values), numeric=True)
    nums = _numbers(dim.key, values)
    if cmp is Comparator.EQ:
        return AttributeMatch(key=dim.key, op="IN", values=nums, numeric=True)
    if cmp is Comparator.NE:
        return AttributeMatch(key=dim.key, op="IN", values=nums, numeric=True, negate=True)
    if cmp in (Comparator.GT, Comparator.GE, Comparator.LT, Comparator.LE):
        parts = tuple(AttributeMatch(key=dim.key, op=cmp.value, values=(n,), numeric=True) for n in nums)
        return parts[0] if len(parts) == 1 else Group(CombinationMode.OR, parts)
    raise AssertionError(f"unhandled comparator {cmp!r}")


def _split(value: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in value.split(",") if p.strip())


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def _attribute_filter_constraint(flt: AttributeFilter, field_def: Optional[AttributeField]) -> Optional[Constraint]:
    compare = flt.compare
    negate = compare.startswith("NOT ") or compare == "!="
    positive = {"!=": "=", "NOT LIKE": "LIKE", "NOT IN": "IN", "NOT BETWEEN": "BETWEEN", "NOT EXISTS": "EXISTS"}.get(compare, compare)
    vt = field_def.value_type if field_def else None
    if positive == "EXISTS":
        return AttributeMatch(key=flt.key, op="EXISTS", negate=negate)
    if positive == "LIKE":
        if vt in (ValueType.ENUM, ValueType.BOOLEAN):
            # list-valued attributes: "contains" means one of the stored values is it
            return AttributeMatch(key=flt.key, op="IN", values=(flt.value,), negate=negate)
        return AttributeMatch(key=flt.key, op="CONTAINS", values=(flt.value,), negate=negate)
    if positive == "IN":
        return AttributeMatch(key=flt.key, op="IN", values=tuple(sorted(set(_split(flt.value)))), negate=negate)
    if positive == "BETWEEN":
        bounds = _split(flt.value)
        if len(bounds) != 2 or not all(_is_number(b) for b in bounds):
            log.warning("Ignoring BETWEEN filter on %r with bounds %r", flt.key, flt.value)
            return None
        low, high = sorted(float(b) for b in bounds)
        return AttributeMatch(key=flt.key, op="BETWEEN", values=(repr(low), repr(high)), numeric=True, negate=negate)
    numeric = vt is ValueType.NUMBER or (positive != "=" and _is_number(flt.value))
    value = flt.value
    if numeric:
        if not _is_number(value):
            log.warning("Ignoring numeric filter on %r with value %r", flt.key, value)
            return None
        value = repr(float(value))
    if vt is ValueType.BOOLEAN:
        value = normalize_boolean(value) or value
    op = "IN" if positive == "=" else positive
    return AttributeMatch(key=flt.key, op=op, values=(value,), numeric=numeric, negate=negate)


def base_constraints(
    base: BaseQueryConstraints,
    post_type: str = "any",
    attributes: Mapping[str, AttributeField] | None = None,
) -> Tuple[Constraint, ...]:
    attributes = attributes or {}
    out: List[Constraint] = []
    if post_type and post_type != "any":
        out.append(PostTypeIs(post_type))
    if base.status and "any" not in base.status:
        out.append(StatusIn(base.status))
    if base.include_ids:
        out.append(IdsIn(base.include_ids))
    if base.exclude_ids:
        out.append(IdsIn(base.exclude_ids, negate=True))

    def term_ids(taxonomy: str, ids: Tuple[int, ...], negate: bool = False) -> None:
        if ids:
            out.append(TermMatch(taxonomy=taxonomy, field="id", values=tuple(str(i) for i in ids), negate=negate))

    term_ids(CATEGORY_TAXONOMY, base.include_term_ids)
    term_ids(CATEGORY_TAXONOMY, base.exclude_term_ids, negate=True)
    term_ids(PRODUCT_CATEGORY_TAXONOMY, base.fixed_category_ids)
    term_ids(PRODUCT_TAG_TAXONOMY, base.fixed_tag_ids)
    for flt in base.attribute_filters:
        c = _attribute_filter_constraint(flt, attributes.get(flt.key))
        if c is not None:
            out.append(c)
    return tuple(out)


def build_query(
    config: Sequence[FilterDimension],
    base: BaseQueryConstraints,
    selections: SelectionState,
    mode: CombinationMode,
    exclude_dimension: Optional[str] = None,
    *,
    post_type: str = "any",
    page: int = 1,
    ids_only: bool = False,
    attributes: Mapping[str, AttributeField] | None = None,
) -> QuerySpec:
    """Combine base constraints and the active selections into one QuerySpec.

    ``exclude_dimension`` drops that dimension's own selection, which is how facet
    counts avoid locking the user out of sibling options. Selections for keys that are
    not configured are ignored; a selection that cannot be coerced for its dimension
    is skipped without affecting the others.
    """
    per_dim: Dict[str, Constraint] = {}
    for dim in config:
        if dim.key == exclude_dimension:
            continue
        values = selections.unique(dim.key)
        if not values:
            continue
        try:
            per_dim[dim.key] = _dimension_constraint(dim, values)
        except InvalidSelection as exc:
            log.info("Ignoring selection: %s", exc)
    selection = Group(mode, tuple(per_dim[k] for k in sorted(per_dim)))
    spec = QuerySpec(
        base=base_constraints(base, post_type, attributes),
        selection=selection,
        order=Ordering(base.sort_key, base.sort_dir),
        page=max(1, int(page or 1)),
        page_size=base.page_size,
    )
    return spec.for_ids() if ids_only else spec
