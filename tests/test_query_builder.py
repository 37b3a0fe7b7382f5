from __future__ import annotations

import unittest

from facetloop.query.builder import (
    AttributeMatch,
    Group,
    IdsIn,
    PostTypeIs,
    StatusIn,
    TermMatch,
    build_query,
)
from facetloop.query.errors import ConfigurationError, ValidationError
from facetloop.query.model import (
    AttributeField,
    BaseQueryConstraints,
    CombinationMode,
    DimensionKind,
    DisplayMode,
    FilterDimension,
    SelectionState,
    ValueType,
    resolve_config,
)
from facetloop.query.sql import compile_query

from catalog_fixtures import ATTRIBUTES, FILTERS


ATTRS = {a["key"]: AttributeField.from_mapping(a) for a in ATTRIBUTES}


class ResolveConfigTestCase(unittest.TestCase):
    def test_resolves_kinds_and_value_types(self) -> None:
        dims = {d.key: d for d in resolve_config(FILTERS, ATTRS)}
        self.assertEqual(dims["color"].kind, DimensionKind.CATEGORICAL)
        self.assertIsNone(dims["color"].value_type)
        self.assertEqual(dims["in_stock"].value_type, ValueType.BOOLEAN)
        self.assertEqual(dims["in_stock"].label, "In stock")
        self.assertEqual(dims["price"].display_mode, DisplayMode.NUMERIC)

    def test_legacy_names_are_accepted(self) -> None:
        dims = resolve_config(
            [{"filter_type": "taxonomy", "taxonomy_name": "color", "display_as": "checkbox"}], ATTRS
        )
        self.assertEqual(dims[0].display_mode, DisplayMode.MULTI_SELECT)

    def test_incompatible_display_mode_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            resolve_config([{"dimensionKey": "price", "kind": "customScalar", "displayMode": "dropdown"}], ATTRS)
        with self.assertRaises(ConfigurationError):
            FilterDimension("color", DimensionKind.CATEGORICAL, DisplayMode.FREE_TEXT)

    def test_unknown_kind_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            resolve_config([{"dimensionKey": "x", "kind": "geo"}], ATTRS)

    def test_undefined_attribute_and_missing_key_are_skipped(self) -> None:
        dims = resolve_config(
            [
                {"kind": "categorical"},
                {"dimensionKey": "ghost", "kind": "customScalar", "displayMode": "freeText"},
                {"dimensionKey": "color", "kind": "categorical"},
            ],
            ATTRS,
        )
        self.assertEqual([d.key for d in dims], ["color"])

    def test_duplicate_keys_are_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            resolve_config([{"dimensionKey": "color"}, {"dimensionKey": "color"}], ATTRS)


class SelectionStateTestCase(unittest.TestCase):
    def test_equality_ignores_order_duplicates_and_empty_dimensions(self) -> None:
        a = SelectionState({"color": ["red", "blue", "red"], "size": []})
        b = SelectionState({"color": ["blue", "red"]})
        self.assertEqual(a, b)
        self.assertTrue(a.has_any())
        a.clear_all()
        self.assertFalse(a.has_any())
        self.assertEqual(a.keys(), ["color", "size"])

    def test_from_mapping_rejects_nested_values(self) -> None:
        with self.assertRaises(ValidationError):
            SelectionState.from_mapping({"color": {"a": 1}})
        with self.assertRaises(ValidationError):
            SelectionState.from_mapping(["red"])
        self.assertEqual(SelectionState.from_mapping({"color": "red"}).get("color"), ["red"])


class BaseConstraintsTestCase(unittest.TestCase):
    def test_invalid_sort_falls_back_to_date_desc(self) -> None:
        base = BaseQueryConstraints.from_mapping({"sortKey": "popularity", "sortDir": "sideways"})
        self.assertEqual((base.sort_key, base.sort_dir), ("date", "DESC"))

    def test_non_numeric_ids_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            BaseQueryConstraints.from_mapping({"includeIds": ["3", "x"]})

    def test_base_nodes(self) -> None:
        base = BaseQueryConstraints.from_mapping({
            "includeIds": [3, 1, 3],
            "excludeIds": [2],
            "fixedCategoryIds": [7],
            "status": "any",
            "customAttributeBaseFilters": [
                {"key": "in_stock", "value": "1", "compare": "="},
                {"key": "price", "value": "10,40", "compare": "NOT BETWEEN"},
                {"key": "", "value": "ignored"},
            ],
        })
        spec = build_query([], base, SelectionState(), CombinationMode.AND, post_type="product", attributes=ATTRS)
        self.assertEqual(spec.base[0], PostTypeIs("product"))
        self.assertNotIn(StatusIn(("any",)), spec.base)
        self.assertIn(IdsIn((1, 3)), spec.base)
        self.assertIn(IdsIn((2,), negate=True), spec.base)
        self.assertIn(TermMatch("product_cat", "id", ("7",)), spec.base)
        self.assertIn(AttributeMatch("in_stock", "IN", ("true",)), spec.base)
        self.assertIn(AttributeMatch("price", "BETWEEN", ("10.0", "40.0"), numeric=True, negate=True), spec.base)


class BuildQueryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.config = resolve_config(FILTERS, ATTRS)
        self.base = BaseQueryConstraints()

    def test_idempotent(self) -> None:
        sel = SelectionState({"color": ["red", "blue"], "price": ["30"]})
        a = build_query(self.config, self.base, sel, CombinationMode.AND)
        b = build_query(self.config, self.base, sel.copy(), CombinationMode.AND)
        self.assertEqual(a, b)
        self.assertEqual(a.fingerprint(), b.fingerprint())
        self.assertEqual(compile_query(a), compile_query(b))

    def test_self_exclusion_without_active_dimensions_is_identity(self) -> None:
        sel = SelectionState({"color": []})
        plain = build_query(self.config, self.base, sel, CombinationMode.OR)
        for dim in self.config:
            self.assertEqual(build_query(self.config, self.base, sel, CombinationMode.OR, dim.key), plain)

    def test_self_exclusion_drops_only_that_dimension(self) -> None:
        sel = SelectionState({"color": ["red"], "size": ["m"]})
        spec = build_query(self.config, self.base, sel, CombinationMode.AND, exclude_dimension="color")
        self.assertEqual(spec.selection, Group(CombinationMode.AND, (AttributeMatch("size", "IN", ("m",)),)))

    def test_unknown_dimension_keys_are_ignored(self) -> None:
        with_unknown = SelectionState({"color": ["red"], "weight": ["3"]})
        without = SelectionState({"color": ["red"]})
        self.assertEqual(
            build_query(self.config, self.base, with_unknown, CombinationMode.AND),
            build_query(self.config, self.base, without, CombinationMode.AND),
        )

    def test_non_numeric_number_selection_is_skipped(self) -> None:
        sel = SelectionState({"price": ["cheap"], "color": ["red"]})
        spec = build_query(self.config, self.base, sel, CombinationMode.AND)
        self.assertEqual(spec.selection.children, (TermMatch("color", "slug", ("red",)),))

    def test_boolean_and_comparator_shapes(self) -> None:
        sel = SelectionState({"in_stock": ["Yes"], "price": ["20", "40"]})
        spec = build_query(self.config, self.base, sel, CombinationMode.AND)
        in_stock, price = spec.selection.children
        self.assertEqual(in_stock, AttributeMatch("in_stock", "IN", ("true",)))
        self.assertEqual(
            price,
            Group(CombinationMode.OR, (
                AttributeMatch("price", "<=", ("20.0",), numeric=True),
                AttributeMatch("price", "<=", ("40.0",), numeric=True),
            )),
        )

    def test_between_accepts_min_max_text(self) -> None:
        config = resolve_config(
            [{"dimensionKey": "price", "kind": "customScalar", "displayMode": "numeric", "comparator": "between"}], ATTRS
        )
        spec = build_query(config, self.base, SelectionState({"price": ["50, 10"]}), CombinationMode.AND)
        self.assertEqual(spec.selection.children, (AttributeMatch("price", "BETWEEN", ("10.0", "50.0"), numeric=True),))

    def test_page_and_size_come_from_request(self) -> None:
        base = BaseQueryConstraints.from_mapping({}, page_size=9)
        spec = build_query(self.config, base, SelectionState(), CombinationMode.AND, page=2)
        self.assertEqual((spec.page, spec.page_size), (2, 9))
        self.assertTrue(spec.for_ids().unbounded)


if __name__ == "__main__":
    unittest.main()
