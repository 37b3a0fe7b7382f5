from __future__ import annotations

import gc
import tempfile
import unittest
from pathlib import Path

from facetloop.index.db import initialize
from facetloop.index.items_repo import ItemsRepo
from facetloop.query.builder import build_query
from facetloop.query.model import BaseQueryConstraints, CombinationMode, SelectionState, resolve_config

from catalog_fixtures import FEATURES_FILTER, FILTERS, load_sample


class ItemsRepoTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self._tmpdir.name)
        self.db_path = self.root / "test.db"
        initialize(self.db_path)
        self.repo = ItemsRepo(db_path=self.db_path)
        load_sample(self.repo)
        self.attributes = self.repo.attributes()
        self.config = resolve_config(FILTERS, self.attributes)

    def tearDown(self) -> None:
        self.repo = None
        gc.collect()
        self._tmpdir.cleanup()

    def _ids(self, selections, mode=CombinationMode.AND, base=None):
        spec = build_query(self.config, base or BaseQueryConstraints(page_size=0), SelectionState(selections), mode,
                           post_type="product", attributes=self.attributes)
        return set(self.repo.fetch_ids(spec))

    def test_and_is_intersection_or_is_union(self) -> None:
        red = self._ids({"color": ["red"]})
        medium = self._ids({"size": ["m"]})
        self.assertEqual(red, {1, 2, 3, 4, 5})
        self.assertEqual(medium, {4, 5, 6, 7, 8})
        self.assertEqual(self._ids({"color": ["red"], "size": ["m"]}), red & medium)
        self.assertEqual(self._ids({"color": ["red"], "size": ["m"]}, CombinationMode.OR), red | medium)

    def test_or_stays_within_base_constraints(self) -> None:
        base = BaseQueryConstraints(exclude_ids=(4, 6), page_size=0)
        got = self._ids({"color": ["red"], "size": ["m"]}, CombinationMode.OR, base)
        self.assertEqual(got, {1, 2, 3, 5, 7, 8})

    def test_values_within_a_dimension_are_any_of(self) -> None:
        self.assertEqual(self._ids({"color": ["blue", "green"]}), {6, 7, 8, 9, 10})

    def test_multi_valued_attribute_matches_any_stored_value(self) -> None:
        self.config = resolve_config(FILTERS + [FEATURES_FILTER], self.attributes)
        self.assertEqual(self._ids({"features": ["wifi"]}), {1, 6})
        self.assertEqual(self._ids({"features": ["bluetooth"]}), {1, 2})
        self.assertEqual(self._ids({"features": ["wifi", "bluetooth"]}), {1, 2, 6})
        self.assertEqual(self._ids({"features": ["wifi"], "color": ["red"]}), {1})
        self.assertEqual(self._ids({"features": ["nfc"]}), set())

    def test_number_boolean_and_text_dimensions(self) -> None:
        self.assertEqual(self._ids({"price": ["15"]}), {1, 6, 11})
        self.assertEqual(self._ids({"in_stock": ["no"]}), set(range(6, 13)))
        self.assertEqual(self._ids({"note": ["NUMBER 1"]}), {1, 10, 11, 12})

    def test_page_two_of_nine(self) -> None:
        spec = build_query(self.config, BaseQueryConstraints(page_size=9), SelectionState(), CombinationMode.AND,
                           post_type="product", page=2)
        page = self.repo.search(spec)
        self.assertEqual(page.total, 12)
        self.assertEqual(page.total_pages, 2)
        self.assertEqual(len(page.rows), 3)
        # Newest first, so the last page holds the oldest items
        self.assertEqual([r["id"] for r in page.rows], [3, 2, 1])
        self.assertEqual(page.rows[0]["terms"]["color"], [{"slug": "red", "name": "Red"}])
        self.assertEqual(page.rows[0]["meta"]["in_stock"], ["true"])

    def test_unbounded_page_size_returns_everything(self) -> None:
        spec = build_query(self.config, BaseQueryConstraints(page_size=0), SelectionState(), CombinationMode.AND)
        page = self.repo.search(spec)
        self.assertEqual((len(page.rows), page.total_pages), (12, 1))

    def test_empty_result_has_zero_pages(self) -> None:
        spec = build_query(self.config, BaseQueryConstraints(), SelectionState({"color": ["purple"]}),
                           CombinationMode.AND)
        page = self.repo.search(spec)
        self.assertEqual((page.rows, page.total, page.total_pages), ([], 0, 0))

    def test_sort_by_title_ascending(self) -> None:
        spec = build_query(self.config, BaseQueryConstraints(sort_key="title", sort_dir="asc", page_size=3),
                           SelectionState(), CombinationMode.AND)
        self.assertEqual([r["id"] for r in self.repo.search(spec).rows], [1, 2, 3])

    def test_import_with_source_retracts_missing_items(self) -> None:
        self.repo.import_items([{"id": 100, "title": "a"}, {"id": 101, "title": "b"}], source="cat.json")
        self.assertEqual(self.repo.count_items(), 14)
        self.repo.import_items([{"id": 101, "title": "b2"}], source="cat.json")
        self.assertEqual(self.repo.count_items(), 13)
        self.assertEqual(self.repo.delete_source("cat.json"), 1)
        self.assertEqual(self.repo.count_items(), 12)

    def test_term_options_include_empty_terms(self) -> None:
        self.assertEqual(list(self.repo.term_options("color")), ["red", "blue", "green", "purple"])


if __name__ == "__main__":
    unittest.main()
