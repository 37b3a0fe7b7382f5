from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from .errors import ConfigurationError, ValidationError


log = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


class DimensionKind(str, Enum):
    CATEGORICAL = "categorical"
    CUSTOM_SCALAR = "customScalar"


class DisplayMode(str, Enum):
    DROPDOWN = "dropdown"
    MULTI_SELECT = "multiSelect"
    SINGLE_SELECT = "singleSelect"
    FREE_TEXT = "freeText"
    NUMERIC = "numeric"


class ValueType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"


class Comparator(str, Enum):
    EQ = "="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    BETWEEN = "between"


class CombinationMode(str, Enum):
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, raw: object) -> "CombinationMode":
        try:
            return cls(str(raw or "").strip().upper())
        except ValueError:
            return cls.AND


# Names used by older widget configurations
_KIND_ALIASES = {"taxonomy": "categorical", "acf": "customScalar", "custom": "customScalar"}
_DISPLAY_ALIASES = {
    "checkbox": "multiSelect",
    "radio": "singleSelect",
    "text": "freeText",
    "number": "numeric",
}
_VALUE_TYPE_ALIASES = {
    "select": "enum",
    "radio": "enum",
    "checkbox": "enum",
    "true_false": "boolean",
    "bool": "boolean",
}

BOOLEAN_CHOICES: Dict[str, str] = {"true": "Yes", "false": "No"}
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}

_COMPATIBLE_MODES: Dict[Optional[ValueType], Tuple[DisplayMode, ...]] = {
    None: (DisplayMode.DROPDOWN, DisplayMode.MULTI_SELECT, DisplayMode.SINGLE_SELECT),
    ValueType.TEXT: (DisplayMode.FREE_TEXT,),
    ValueType.NUMBER: (DisplayMode.NUMERIC,),
    ValueType.ENUM: (DisplayMode.DROPDOWN, DisplayMode.MULTI_SELECT, DisplayMode.SINGLE_SELECT),
    ValueType.BOOLEAN: (DisplayMode.DROPDOWN, DisplayMode.MULTI_SELECT, DisplayMode.SINGLE_SELECT),
}


def parse_enum(enum_cls: Type[E], raw: object, aliases: Mapping[str, str] | None = None, *, what: str) -> E:
    text = str(raw or "").strip()
    if aliases:
        text = aliases.get(text.lower(), text)
    try:
        return enum_cls(text)
    except ValueError:
        raise ConfigurationError(f"unknown {what}: {raw!r}") from None


def normalize_boolean(value: object) -> Optional[str]:
    """Canonical stored form of a boolean attribute value, or None if unrecognised."""
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return "true"
    if text in _FALSY:
        return "false"
    return None


@dataclass(frozen=True)
class AttributeField:
    """Definition of a custom attribute as held by the metadata store."""

    key: str
    label: str = ""
    value_type: ValueType = ValueType.TEXT
    choices: Tuple[Tuple[str, str], ...] = ()

    def options(self) -> Dict[str, str]:
        if self.value_type is ValueType.BOOLEAN and not self.choices:
            return dict(BOOLEAN_CHOICES)
        return dict(self.choices)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "AttributeField":
        key = str(raw.get("key") or raw.get("name") or "").strip()
        if not key:
            raise ConfigurationError("attribute definition without a key")
        value_type = parse_enum(ValueType, raw.get("value_type") or raw.get("type") or "text",
                                _VALUE_TYPE_ALIASES, what="attribute type")
        choices = raw.get("choices") or {}
        if isinstance(choices, str):
            choices = json.loads(choices or "{}")
        if isinstance(choices, Mapping):
            pairs = [(str(k), str(v)) for k, v in choices.items()]
        else:
            pairs = [(str(c), str(c)) for c in choices]
        if value_type is ValueType.BOOLEAN:
            pairs = [(normalize_boolean(k) or str(k), v) for k, v in pairs]
        return cls(key=key, label=str(raw.get("label") or key), value_type=value_type, choices=tuple(pairs))


@dataclass(frozen=True)
class FilterDimension:
    key: str
    kind: DimensionKind
    display_mode: DisplayMode
    value_type: Optional[ValueType] = None
    comparator: Comparator = Comparator.EQ
    label: str = ""

    def __post_init__(self) -> None:
        if not self.key:
            raise ConfigurationError("filter dimension without a key")
        if self.kind is DimensionKind.CATEGORICAL and self.value_type is not None:
            raise ConfigurationError(f"{self.key}: categorical dimensions carry no value type")
        if self.kind is DimensionKind.CUSTOM_SCALAR and self.value_type is None:
            raise ConfigurationError(f"{self.key}: custom attribute dimension needs a value type")
        allowed = _COMPATIBLE_MODES[self.value_type]
        if self.display_mode not in allowed:
            kind = self.value_type.value if self.value_type else self.kind.value
            raise ConfigurationError(
                f"{self.key}: display mode {self.display_mode.value!r} is not valid for {kind}"
            )
        if self.comparator is not Comparator.EQ and self.value_type is not ValueType.NUMBER:
            raise ConfigurationError(f"{self.key}: comparators only apply to number attributes")

    @property
    def has_option_universe(self) -> bool:
        return self.kind is DimensionKind.CATEGORICAL or self.value_type in (ValueType.ENUM, ValueType.BOOLEAN)

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "dimensionKey": self.key,
            "kind": self.kind.value,
            "displayMode": self.display_mode.value,
        }
        if self.value_type is not None:
            out["valueType"] = self.value_type.value
        if self.comparator is not Comparator.EQ:
            out["comparator"] = self.comparator.value
        if self.label:
            out["label"] = self.label
        return out


def _first(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in raw and raw[name] not in (None, ""):
            return raw[name]
    return None


def resolve_config(
    raw_filters: Iterable[Mapping[str, Any]],
    attributes: Mapping[str, AttributeField] | None = None,
) -> List[FilterDimension]:
    """Validate raw filter definitions into dimensions.

    Entries without a key, and custom attributes unknown to the metadata store that do
    not declare their own value type, are skipped. Everything else that cannot be
    served raises ConfigurationError.
    """
    attributes = attributes or {}
    dims: List[FilterDimension] = []
    seen: set[str] = set()
    for raw in raw_filters:
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"filter definition must be a mapping, got {type(raw).__name__}")
        kind = parse_enum(DimensionKind, _first(raw, "kind", "filter_type") or "categorical",
                          _KIND_ALIASES, what="dimension kind")
        key = str(_first(raw, "dimensionKey", "dimension_key", "key", "taxonomy_name", "acf_field_key") or "").strip()
        if not key:
            log.debug("Skipping filter definition without a key: %r", raw)
            continue
        if key in seen:
            raise ConfigurationError(f"duplicate filter dimension {key!r}")
        display = parse_enum(DisplayMode, _first(raw, "displayMode", "display_mode", "display_as") or "dropdown",
                             _DISPLAY_ALIASES, what="display mode")
        value_type: Optional[ValueType] = None
        label = str(_first(raw, "label") or "")
        if kind is DimensionKind.CUSTOM_SCALAR:
            raw_type = _first(raw, "valueType", "value_type")
            field_def = attributes.get(key)
            if raw_type is not None:
                value_type = parse_enum(ValueType, raw_type, _VALUE_TYPE_ALIASES, what="value type")
            elif field_def is not None:
                value_type = field_def.value_type
            else:
                log.warning("Skipping filter %r: no attribute definition found", key)
                continue
            if not label and field_def is not None:
                label = field_def.label
        comparator = parse_enum(Comparator, _first(raw, "comparator") or "=", {"eq": "=", "range": "between", "between": "between"},
                                what="comparator")
        dims.append(FilterDimension(key=key, kind=kind, display_mode=display, value_type=value_type,
                                    comparator=comparator, label=label))
        seen.add(key)
    return dims


class SelectionState:
    """Per-dimension selected values. An empty list means the dimension is inactive."""

    def __init__(self, values: Mapping[str, Sequence[str]] | None = None) -> None:
        self._values: Dict[str, List[str]] = {}
        for key, vals in (values or {}).items():
            self.set(key, vals)

    @classmethod
    def from_mapping(cls, raw: object) -> "SelectionState":
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ValidationError("selections must be an object")
        state = cls()
        for key, value in raw.items():
            if isinstance(value, Mapping):
                raise ValidationError(f"selection for {key!r} must be a value or a list of values")
            if isinstance(value, (list, tuple)):
                for v in value:
                    if isinstance(v, (Mapping, list, tuple)):
                        raise ValidationError(f"selection for {key!r} contains a nested value")
                state.set(str(key), list(value))
            else:
                state.set(str(key), [value])
        return state

    def set(self, key: str, values: Sequence[object]) -> None:
        cleaned = [str(v) for v in values if v is not None and str(v) != ""]
        self._values[key] = cleaned

    def get(self, key: str) -> List[str]:
        return list(self._values.get(key, []))

    def unique(self, key: str) -> Tuple[str, ...]:
        return tuple(sorted(set(self._values.get(key, []))))

    def clear(self, key: str) -> None:
        self._values[key] = []

    def clear_all(self) -> None:
        for key in self._values:
            self._values[key] = []

    def is_active(self, key: str) -> bool:
        return bool(self._values.get(key))

    def has_any(self) -> bool:
        return any(self._values.values())

    def active_keys(self) -> List[str]:
        return sorted(k for k, v in self._values.items() if v)

    def keys(self) -> List[str]:
        return list(self._values)

    def copy(self) -> "SelectionState":
        return SelectionState(self._values)

    def as_dict(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self._values.items()}

    def canonical(self) -> Dict[str, Tuple[str, ...]]:
        return {k: self.unique(k) for k in self.active_keys()}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SelectionState):
            return NotImplemented
        return self.canonical() == other.canonical()

    def __repr__(self) -> str:
        return f"SelectionState({self.canonical()!r})"


SORT_KEYS = ("date", "modified", "title", "name", "author", "parent", "menu_order", "comment_count", "ID", "rand")
DEFAULT_SORT_KEY = "date"
DEFAULT_SORT_DIR = "DESC"

BASE_COMPARES = (
    "=", "!=", ">", ">=", "<", "<=", "LIKE", "NOT LIKE", "IN", "NOT IN",
    "BETWEEN", "NOT BETWEEN", "EXISTS", "NOT EXISTS",
)


@dataclass(frozen=True)
class AttributeFilter:
    key: str
    value: str
    compare: str = "="

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Optional["AttributeFilter"]:
        key = str(_first(raw, "key", "acf_meta_key") or "").strip()
        value = _first(raw, "value", "acf_meta_value")
        compare = str(_first(raw, "compare", "acf_meta_compare") or "=").strip().upper()
        if compare not in BASE_COMPARES:
            raise ValidationError(f"unsupported attribute comparison {compare!r}")
        if not key:
            return None
        if value is None and compare not in ("EXISTS", "NOT EXISTS"):
            return None
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        return cls(key=key, value="" if value is None else str(value), compare=compare)


def _int_list(raw: object, name: str) -> Tuple[int, ...]:
    if raw in (None, ""):
        return ()
    if isinstance(raw, (str, int)):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"{name} must be a list of ids")
    out = []
    for item in raw:
        try:
            out.append(int(item))
        except (TypeError, ValueError):
            raise ValidationError(f"{name} contains a non-numeric id: {item!r}") from None
    return tuple(sorted(set(out)))


@dataclass(frozen=True)
class BaseQueryConstraints:
    include_ids: Tuple[int, ...] = ()
    exclude_ids: Tuple[int, ...] = ()
    include_term_ids: Tuple[int, ...] = ()
    exclude_term_ids: Tuple[int, ...] = ()
    fixed_category_ids: Tuple[int, ...] = ()
    fixed_tag_ids: Tuple[int, ...] = ()
    status: Tuple[str, ...] = ("publish",)
    sort_key: str = DEFAULT_SORT_KEY
    sort_dir: str = DEFAULT_SORT_DIR
    attribute_filters: Tuple[AttributeFilter, ...] = ()
    page_size: int = 9

    def __post_init__(self) -> None:
        # Invalid sort settings fall back to most-recent-first
        if self.sort_key not in SORT_KEYS:
            object.__setattr__(self, "sort_key", DEFAULT_SORT_KEY)
        direction = str(self.sort_dir or "").upper()
        object.__setattr__(self, "sort_dir", direction if direction in ("ASC", "DESC") else DEFAULT_SORT_DIR)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None, page_size: int | None = None) -> "BaseQueryConstraints":
        raw = raw or {}
        if not isinstance(raw, Mapping):
            raise ValidationError("baseConstraints must be an object")
        status = _first(raw, "status", "post_status") or ["publish"]
        if isinstance(status, str):
            status = [status]
        filters_raw = _first(raw, "customAttributeBaseFilters", "attribute_filters", "acf_meta_query_repeater") or []
        if not isinstance(filters_raw, (list, tuple)):
            raise ValidationError("customAttributeBaseFilters must be a list")
        attr_filters = []
        for item in filters_raw:
            if not isinstance(item, Mapping):
                raise ValidationError("attribute base filter must be an object")
            parsed = AttributeFilter.from_mapping(item)
            if parsed is not None:
                attr_filters.append(parsed)
        size = page_size if page_size is not None else _first(raw, "pageSize", "page_size")
        try:
            size_int = int(size) if size is not None else 9
        except (TypeError, ValueError):
            raise ValidationError(f"page size must be an integer, got {size!r}") from None
        return cls(
            include_ids=_int_list(_first(raw, "includeIds", "include_ids", "posts_include_by_ids"), "includeIds"),
            exclude_ids=_int_list(_first(raw, "excludeIds", "exclude_ids", "posts_exclude_by_ids"), "excludeIds"),
            include_term_ids=_int_list(_first(raw, "includeTermIds", "include_term_ids", "terms_include"), "includeTermIds"),
            exclude_term_ids=_int_list(_first(raw, "excludeTermIds", "exclude_term_ids", "terms_exclude"), "excludeTermIds"),
            fixed_category_ids=_int_list(_first(raw, "fixedCategoryIds", "fixed_category_ids"), "fixedCategoryIds"),
            fixed_tag_ids=_int_list(_first(raw, "fixedTagIds", "fixed_tag_ids"), "fixedTagIds"),
            status=tuple(sorted({str(s) for s in status})),
            sort_key=str(_first(raw, "sortKey", "sort_key", "orderby") or DEFAULT_SORT_KEY),
            sort_dir=str(_first(raw, "sortDir", "sort_dir", "order") or DEFAULT_SORT_DIR),
            attribute_filters=tuple(attr_filters),
            page_size=size_int,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "includeIds": list(self.include_ids),
            "excludeIds": list(self.exclude_ids),
            "includeTermIds": list(self.include_term_ids),
            "excludeTermIds": list(self.exclude_term_ids),
            "fixedCategoryIds": list(self.fixed_category_ids),
            "fixedTagIds": list(self.fixed_tag_ids),
            "status": list(self.status),
            "sortKey": self.sort_key,
            "sortDir": self.sort_dir,
            "customAttributeBaseFilters": [
                {"key": f.key, "value": f.value, "compare": f.compare} for f in self.attribute_filters
            ],
        }
