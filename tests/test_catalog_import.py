from __future__ import annotations

import gc
import json
import tempfile
import time
import unittest
from pathlib import Path

from facetloop.catalog.router import load_catalog_file
from facetloop.config.settings import Settings
from facetloop.config.widget import WidgetConfig
from facetloop.index.db import initialize
from facetloop.index.items_repo import ItemsRepo
from facetloop.query.facets import FacetCache
from facetloop.query.model import ValueType
from facetloop.service.handler import FilterService
from facetloop.service.importer import CatalogImporter
from facetloop.service.renderer import TemplateRenderer

try:
    import watchdog  # type: ignore[unused-import]
except ModuleNotFoundError:  # pragma: no cover
    WATCHDOG_AVAILABLE = False
else:
    WATCHDOG_AVAILABLE = True

if WATCHDOG_AVAILABLE:
    from facetloop.service.watcher import WatchService, WatcherConfig
else:  # pragma: no cover
    WatchService = WatcherConfig = None


CATALOG = {
    "attributes": [{"key": "in_stock", "label": "In stock", "type": "true_false"}],
    "terms": [{"taxonomy": "color", "slug": "red", "name": "Red"}],
    "items": [
        {"id": 1, "title": "One", "terms": {"color": ["red"]}, "meta": {"in_stock": "yes"}},
        {"id": 2, "title": "Two", "terms": {"color": [{"slug": "blue", "name": "Blue"}]}, "meta": {"in_stock": 0}},
    ],
}

TOML_CATALOG = """
id = 7
title = "Seven"
[terms]
color = ["red"]
[meta]
price = 12.5
"""


class CatalogRouterTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self._tmpdir.name)

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_json_and_single_item_toml(self) -> None:
        (self.root / "a.json").write_text(json.dumps(CATALOG), encoding="utf-8")
        (self.root / "b.toml").write_text(TOML_CATALOG, encoding="utf-8")
        a = load_catalog_file(self.root / "a.json")
        b = load_catalog_file(self.root / "b.toml")
        self.assertEqual(len(a.items), 2)
        self.assertEqual(a.attributes[0].value_type, ValueType.BOOLEAN)
        self.assertEqual([i["id"] for i in b.items], [7])

    def test_unreadable_files_are_skipped(self) -> None:
        (self.root / "broken.json").write_text("{", encoding="utf-8")
        (self.root / "bad.json").write_text(json.dumps({"items": ["x"]}), encoding="utf-8")
        (self.root / "notes.txt").write_text("hello", encoding="utf-8")
        self.assertIsNone(load_catalog_file(self.root / "broken.json"))
        self.assertIsNone(load_catalog_file(self.root / "bad.json"))
        self.assertIsNone(load_catalog_file(self.root / "notes.txt"))
        self.assertIsNone(load_catalog_file(self.root / "missing.json"))


class CatalogImporterTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self._tmpdir.name)
        self.db_path = self.root / "test.db"
        initialize(self.db_path)
        self.repo = ItemsRepo(db_path=self.db_path)
        self.importer = CatalogImporter(self.repo)
        self.changed: list[Path] = []
        self.importer.on_change(self.changed.append)

    def tearDown(self) -> None:
        self.importer.stop()
        self.repo = None
        self.importer = None
        gc.collect()
        self._tmpdir.cleanup()

    def test_import_normalizes_and_retracts(self) -> None:
        path = self.root / "catalog.json"
        path.write_text(json.dumps(CATALOG), encoding="utf-8")
        self.assertEqual(self.importer.import_file(path), 2)
        self.assertEqual(self.repo.term_options("color"), {"red": "Red", "blue": "Blue"})
        self.assertEqual(self.repo.attributes()["in_stock"].value_type, ValueType.BOOLEAN)
        self.assertEqual(self.changed, [path])

        trimmed = dict(CATALOG, items=CATALOG["items"][:1])
        path.write_text(json.dumps(trimmed), encoding="utf-8")
        self.importer.import_file(path)
        self.assertEqual(self.repo.count_items(), 1)

        self.assertEqual(self.importer.retract_file(path), 1)
        self.assertEqual(self.repo.count_items(), 0)

    def test_item_without_id_skips_the_file(self) -> None:
        path = self.root / "catalog.json"
        path.write_text(json.dumps({"items": [{"title": "nameless"}]}), encoding="utf-8")
        self.assertIsNone(self.importer.import_file(path))
        self.assertEqual(self.changed, [])

    def test_reimport_refreshes_cached_facets(self) -> None:
        service = FilterService(self.repo, TemplateRenderer(templates={"card": "$title"}),
                                settings=Settings(secret=""), cache=FacetCache(ttl=600))
        self.importer.on_change(service.invalidate_facets)
        widget = WidgetConfig(template_ref="card", filters=[
            {"dimensionKey": "color", "kind": "categorical", "displayMode": "multiSelect"},
        ])
        path = self.root / "catalog.json"
        path.write_text(json.dumps(CATALOG), encoding="utf-8")
        self.importer.import_file(path)
        first = service.handle(widget.request_payload({}))
        self.assertEqual(first["facets"]["color"]["blue"]["count"], 1)
        self.assertEqual(len(service.cache), 1)

        recoloured = dict(CATALOG, items=[
            CATALOG["items"][0],
            dict(CATALOG["items"][1], terms={"color": ["red"]}),
        ])
        path.write_text(json.dumps(recoloured), encoding="utf-8")
        self.importer.import_file(path)
        second = service.handle(widget.request_payload({}))
        self.assertEqual(second["facets"]["color"]["red"]["count"], 2)
        self.assertEqual(second["facets"]["color"]["blue"]["count"], 0)

    def test_background_queue(self) -> None:
        path = self.root / "catalog.json"
        path.write_text(json.dumps(CATALOG), encoding="utf-8")
        self.importer.start()
        self.importer.enqueue(path)
        self.importer.join()
        self.assertEqual(self.repo.count_items(), 2)


@unittest.skipUnless(WATCHDOG_AVAILABLE, "watchdog not installed")
class WatchServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self._tmpdir.name)
        self.watch_root = self.root / "watched"
        (self.watch_root / "shop").mkdir(parents=True)
        (self.watch_root / ".git").mkdir()
        (self.watch_root / "shop" / "a.json").write_text(json.dumps(CATALOG), encoding="utf-8")
        (self.watch_root / ".git" / "b.json").write_text(json.dumps(CATALOG), encoding="utf-8")
        (self.watch_root / "shop" / "readme.md").write_text("x", encoding="utf-8")
        self.db_path = self.root / "test.db"
        initialize(self.db_path)
        self.repo = ItemsRepo(db_path=self.db_path)
        self.importer = CatalogImporter(self.repo)
        self.watcher = WatchService(self.importer, WatcherConfig(roots=[self.watch_root]))
        self.statuses: list[str] = []
        self.watcher.on_status(self.statuses.append)

    def tearDown(self) -> None:
        self.watcher.stop()
        self.repo = None
        self.importer = None
        self.watcher = None
        gc.collect()
        self._tmpdir.cleanup()

    def test_scan_root_queues_catalogs_only(self) -> None:
        queued = self.watcher._scan_root(self.watch_root)
        self.assertEqual(queued, 1)
        self.assertEqual(self.importer.queue_size(), 1)
        self.assertTrue(any("Scanning" in msg for msg in self.statuses))

    def test_deleted_catalog_is_retracted(self) -> None:
        self.watcher.start_in_thread()
        self.assertTrue(self.watcher.wait_ready(timeout=10))
        self.importer.join()
        self.assertEqual(self.repo.count_items(), 2)
        (self.watch_root / "shop" / "a.json").unlink()
        deadline = time.monotonic() + 10
        while self.repo.count_items() and time.monotonic() < deadline:
            time.sleep(0.1)
        self.assertEqual(self.repo.count_items(), 0)


if __name__ == "__main__":
    unittest.main()
