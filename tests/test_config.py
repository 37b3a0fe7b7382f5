from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from facetloop.config.settings import Settings, resolve_catalog_dirs
from facetloop.config.widget import Layout, OverlapPolicy, WidgetConfig, load_widget_config
from facetloop.query.errors import ConfigurationError


WIDGET_TOML = """
[widget]
template_ref = "card"
post_type = "product"
page_size = 6
combination_mode = "or"
enable_history = true
overlap_policy = "replace"

[widget.base]
sortKey = "title"
sortDir = "ASC"

[[widget.filters]]
dimensionKey = "color"
kind = "categorical"
displayMode = "multiSelect"

[[widget.filters]]
dimensionKey = "price"
kind = "customScalar"
displayMode = "numeric"
comparator = "between"
"""


class WidgetConfigTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self._tmpdir.name)

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_load_from_toml(self) -> None:
        path = self.root / "widget.toml"
        path.write_text(WIDGET_TOML, encoding="utf-8")
        widget = load_widget_config(path)
        self.assertEqual(widget.template_ref, "card")
        self.assertEqual(widget.combination_mode, "OR")
        self.assertEqual(widget.overlap_policy, OverlapPolicy.REPLACE)
        self.assertTrue(widget.enable_history)
        payload = widget.request_payload({"color": ["red"], "price": []}, page=3)
        self.assertEqual(payload["pageSize"], 6)
        self.assertEqual(payload["page"], 3)
        self.assertEqual(payload["selections"], {"color": ["red"]})
        self.assertEqual(payload["baseConstraints"]["sortKey"], "title")
        self.assertEqual(len(payload["filterConfig"]), 2)

    def test_broken_toml_is_a_configuration_error(self) -> None:
        path = self.root / "widget.toml"
        path.write_text("template_ref = ", encoding="utf-8")
        with self.assertRaises(ConfigurationError):
            load_widget_config(path)

    def test_layout_preset(self) -> None:
        widget = WidgetConfig.from_mapping({"template_ref": "card", "layout_preset": "minimal_carousel"})
        self.assertEqual(widget.layout, Layout.CAROUSEL)
        self.assertEqual(widget.carousel.columns, 2)
        grid = widget.with_preset("compact_grid")
        self.assertEqual((grid.layout, grid.page_size), (Layout.GRID, 12))
        with self.assertRaises(ConfigurationError):
            WidgetConfig.from_mapping({"layout_preset": "spiral"})

    def test_invalid_values_are_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            WidgetConfig.from_mapping({"layout": "masonry"})
        with self.assertRaises(ConfigurationError):
            WidgetConfig.from_mapping({"carousel": {"speed": 3}})
        with self.assertRaises(ConfigurationError):
            WidgetConfig.from_mapping({"page_size": "nine"})
        with self.assertRaises(ConfigurationError):
            WidgetConfig.from_mapping({"debounce_ms": [500]})

    def test_carousel_drag_and_height_options(self) -> None:
        autoplay = WidgetConfig.from_mapping({"layout_preset": "autoplay_carousel"}).carousel
        self.assertEqual((autoplay.draggable, autoplay.adaptive_height), (True, False))
        single = WidgetConfig().with_preset("single_slide_carousel").carousel
        self.assertTrue(single.adaptive_height)
        custom = WidgetConfig.from_mapping({"layout": "carousel", "carousel": {"draggable": False}})
        self.assertFalse(custom.carousel.draggable)

    def test_initial_page_size_alias(self) -> None:
        self.assertEqual(WidgetConfig.from_mapping({"posts_per_page_initial": 12}).page_size, 12)
        both = WidgetConfig.from_mapping({"posts_per_page_initial": 12, "page_size": 6})
        self.assertEqual(both.page_size, 6)


class SettingsTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self._tmpdir.name)

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_save_and_load_round_trip(self) -> None:
        path = self.root / "settings.json"
        Settings(no_results_text="Nothing", facet_workers=3, catalog_dirs=[str(self.root)]).save(path)
        with mock.patch.dict(os.environ):
            os.environ.pop("FACETLOOP_SECRET", None)
            os.environ.pop("FACETLOOP_CATALOG_DIRS", None)
            loaded = Settings.load(path)
            self.assertEqual(resolve_catalog_dirs(loaded), [self.root])
        self.assertEqual((loaded.no_results_text, loaded.facet_workers), ("Nothing", 3))

    def test_unreadable_file_falls_back_to_defaults(self) -> None:
        path = self.root / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        self.assertEqual(Settings.load(path).token_max_age, Settings().token_max_age)

    def test_unknown_keys_are_ignored(self) -> None:
        path = self.root / "settings.json"
        path.write_text(json.dumps({"facet_cache_ttl": 5, "theme": "dark"}), encoding="utf-8")
        self.assertEqual(Settings.load(path).facet_cache_ttl, 5)

    def test_environment_overrides(self) -> None:
        other = self.root / "catalogs"
        other.mkdir()
        env = {"FACETLOOP_SECRET": "from-env", "FACETLOOP_CATALOG_DIRS": str(other)}
        with mock.patch.dict(os.environ, env):
            settings = Settings.load(self.root / "missing.json")
            self.assertEqual(settings.secret, "from-env")
            self.assertEqual(resolve_catalog_dirs(settings), [other])


if __name__ == "__main__":
    unittest.main()
