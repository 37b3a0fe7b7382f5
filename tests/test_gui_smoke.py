from __future__ import annotations

import os
import unittest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6 import QtCore, QtWidgets

from facetloop.config.settings import Settings
from facetloop.config.widget import CarouselOptions, Layout, WidgetConfig
from facetloop.gui.views.carousel_view import CarouselView
from facetloop.gui.views.main_window import MainWindow
from facetloop.query.model import AttributeField

from catalog_fixtures import ATTRIBUTES, FILTERS


class DummyService:
    def __init__(self) -> None:
        self.payloads = []

    def handle(self, payload):
        self.payloads.append(payload)
        return {
            "success": True,
            "items": '<div class="loop-item" data-id="1">One</div>\n<div class="loop-item" data-id="2">Two</div>',
            "totalPages": 2,
            "total": 12,
            "page": payload["page"],
            "facets": {"color": {"red": {"label": "Red", "count": 5}, "blue": {"label": "Blue", "count": 0}}},
        }


class DummyWatcher:
    def on_status(self, fn):
        self._cb = fn

    def start_in_thread(self):
        pass

    def stop(self):
        pass


def _wait_until(predicate, timeout_ms: int = 5000) -> bool:
    timer = QtCore.QElapsedTimer()
    timer.start()
    while not predicate() and timer.elapsed() < timeout_ms:
        QtWidgets.QApplication.processEvents(QtCore.QEventLoop.ProcessEventsFlag.AllEvents, 50)
    return predicate()


class MainWindowSmokeTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.app = QtWidgets.QApplication.instance() or QtWidgets.QApplication([])
        self.attributes = {a["key"]: AttributeField.from_mapping(a) for a in ATTRIBUTES}

    def _window(self, **widget_args) -> MainWindow:
        widget = WidgetConfig(template_ref="card", filters=[dict(f) for f in FILTERS], **widget_args)
        self.service = DummyService()
        return MainWindow(service=self.service, widget=widget, watcher=DummyWatcher(),
                          settings=Settings(), attributes=self.attributes)

    def test_main_window_loads_first_page_and_closes(self) -> None:
        win = self._window(enable_history=True)
        win.show()
        self.assertTrue(_wait_until(lambda: win.load_more_btn.isVisible()))
        self.assertEqual(len(self.service.payloads), 1)
        self.assertIn("Two", win.results.toPlainText())
        self.assertTrue(win.load_more_btn.isEnabled())
        self.assertEqual(set(win.filters_panel.controls), {"color", "in_stock", "size", "price", "note"})
        win.filters_panel.set_options("note", [])
        self.assertEqual(win.filters_panel.controls["note"].values(), [])
        win.close()
        QtWidgets.QApplication.processEvents()

    def test_carousel_layout_hides_load_more(self) -> None:
        win = self._window(layout=Layout.CAROUSEL)
        win.show()
        self.assertTrue(_wait_until(lambda: win.sync.carousels.current is not None))
        self.assertFalse(win.load_more_btn.isVisible())
        win.close()
        QtWidgets.QApplication.processEvents()

    def test_carousel_swipe_pages_cells(self) -> None:
        carousel = CarouselView(CarouselOptions(columns=2, adaptive_height=True), ["a", "b", "c", "d"])
        carousel.swipe(-120)
        self.assertEqual(carousel.index, 1)
        carousel.swipe(10)
        self.assertEqual(carousel.index, 1)
        carousel.swipe(120)
        self.assertEqual(carousel.index, 0)
        carousel.dispose()
        self.assertTrue(carousel.disposed)


if __name__ == "__main__":
    unittest.main()
