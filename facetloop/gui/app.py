from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from PySide6 import QtWidgets

from facetloop.config.settings import Settings, resolve_catalog_dirs
from facetloop.config.widget import WidgetConfig, load_widget_config
from facetloop.index.db import DATA_DIR, initialize
from facetloop.index.items_repo import ItemsRepo
from facetloop.query.facets import FacetCache
from facetloop.service.handler import FilterService
from facetloop.service.importer import CatalogImporter
from facetloop.service.renderer import TemplateRenderer
from facetloop.service.watcher import WatchService, WatcherConfig
from .views.main_window import MainWindow


log = logging.getLogger(__name__)

DEFAULT_TEMPLATE_REF = "card"
DEFAULT_TEMPLATE = "<h3>$title</h3><p>$terms_product_cat</p><p>$body</p>"


def _templates_dir(widget_path: Optional[Path]) -> Path:
    if widget_path is not None and (widget_path.parent / "templates").is_dir():
        return widget_path.parent / "templates"
    return DATA_DIR / "templates"


def run_gui(widget_path: Optional[Path] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

    initialize()

    app = QtWidgets.QApplication([])
    app.setOrganizationName("FacetLoop")
    app.setApplicationName("FacetLoop")

    settings = Settings.load()
    widget = load_widget_config(widget_path) if widget_path else WidgetConfig()
    if not widget.template_ref:
        widget = replace(widget, template_ref=DEFAULT_TEMPLATE_REF)

    repo = ItemsRepo()
    cache = FacetCache(ttl=settings.facet_cache_ttl)
    renderer = TemplateRenderer(_templates_dir(widget_path), {DEFAULT_TEMPLATE_REF: DEFAULT_TEMPLATE})
    service = FilterService(repo, renderer, settings=settings, cache=cache)

    importer = CatalogImporter(repo)
    importer.on_change(service.invalidate_facets)
    catalog_dirs = resolve_catalog_dirs(settings)
    log.info("Watching catalog folders: %s", ", ".join(str(p) for p in catalog_dirs) or "(none)")
    watcher = WatchService(importer, WatcherConfig(roots=catalog_dirs))

    win = MainWindow(service=service, widget=widget, watcher=watcher, settings=settings,
                     attributes=repo.attributes())
    win.resize(1100, 720)
    win.show()

    watcher.start_in_thread()

    app.exec()


if __name__ == "__main__":
    run_gui()
