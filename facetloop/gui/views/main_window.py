from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Tuple

from PySide6 import QtCore, QtGui, QtWidgets

from facetloop.client.history import BrowserHistory
from facetloop.client.synchronizer import (
    ClientSynchronizer,
    FailureCallback,
    LoadMoreAffordance,
    OptionState,
    ResponseCallback,
)
from facetloop.config.settings import Settings
from facetloop.config.widget import CarouselOptions, WidgetConfig
from facetloop.query.model import AttributeField, SelectionState
from facetloop.service.tokens import issue_token
from .carousel_view import CarouselView
from .filters_panel import FiltersPanel
from .results_view import ResultsView, split_items


log = logging.getLogger(__name__)


class _TimerHandle:
    def __init__(self, timer: QtCore.QTimer) -> None:
        self._timer = timer

    def cancel(self) -> None:
        self._timer.stop()
        self._timer.deleteLater()


class QtScheduler:
    """Single-shot timers on the UI thread's event loop."""

    def __init__(self, parent: QtCore.QObject) -> None:
        self._parent = parent

    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> _TimerHandle:
        timer = QtCore.QTimer(self._parent)
        timer.setSingleShot(True)
        timer.setInterval(max(0, int(delay_ms)))
        timer.timeout.connect(fn)
        timer.timeout.connect(timer.deleteLater)
        timer.start()
        return _TimerHandle(timer)


class FilterWorker(QtCore.QObject):
    finished = QtCore.Signal(int, object)  # seq, response
    failed = QtCore.Signal(int, str)

    def __init__(self, service) -> None:
        super().__init__()
        self.service = service

    @QtCore.Slot(int, object)
    def run_request(self, seq: int, payload: object) -> None:
        try:
            response = self.service.handle(payload)
        except Exception as exc:
            log.exception("Filter request #%d failed", seq)
            self.failed.emit(seq, str(exc))
            return
        self.finished.emit(seq, response)


class WorkerTransport(QtCore.QObject):
    """Runs requests on a worker thread; callbacks fire back on the UI thread."""

    requestSubmitted = QtCore.Signal(int, object)

    def __init__(self, service, parent: QtCore.QObject | None = None) -> None:
        super().__init__(parent)
        self._seq = 0
        self._pending: Dict[int, Tuple[ResponseCallback, FailureCallback]] = {}
        self._thread = QtCore.QThread(self)
        self._worker = FilterWorker(service)
        self._worker.moveToThread(self._thread)
        self._thread.start()
        self.requestSubmitted.connect(self._worker.run_request)
        self._worker.finished.connect(self._on_finished)
        self._worker.failed.connect(self._on_failed)

    def send(self, payload: Dict[str, Any], on_response: ResponseCallback, on_failure: FailureCallback) -> None:
        self._seq += 1
        self._pending[self._seq] = (on_response, on_failure)
        self.requestSubmitted.emit(self._seq, payload)

    @QtCore.Slot(int, object)
    def _on_finished(self, seq: int, response: object) -> None:
        callbacks = self._pending.pop(seq, None)
        if callbacks:
            callbacks[0](response)  # type: ignore[arg-type]

    @QtCore.Slot(int, str)
    def _on_failed(self, seq: int, message: str) -> None:
        callbacks = self._pending.pop(seq, None)
        if callbacks:
            callbacks[1](message)

    def shutdown(self) -> None:
        self._thread.quit()
        self._thread.wait(2000)


class MainWindow(QtWidgets.QMainWindow):
    statusMessage = QtCore.Signal(str)

    def __init__(
        self,
        service,
        widget: WidgetConfig,
        watcher=None,
        settings: Settings | None = None,
        attributes: Mapping[str, AttributeField] | None = None,
    ) -> None:
        super().__init__()
        self.setWindowTitle("FacetLoop")
        self.widget = widget
        self.watcher = watcher
        self.settings = settings or Settings()
        self.history = BrowserHistory()

        # Toolbar: history navigation + location
        toolbar = QtWidgets.QToolBar()
        toolbar.setMovable(False)
        self.addToolBar(toolbar)
        self.back_action = QtGui.QAction("Back", self)
        self.back_action.setShortcut(QtGui.QKeySequence.StandardKey.Back)
        self.back_action.triggered.connect(lambda: self.history.back())
        self.forward_action = QtGui.QAction("Forward", self)
        self.forward_action.setShortcut(QtGui.QKeySequence.StandardKey.Forward)
        self.forward_action.triggered.connect(lambda: self.history.forward())
        toolbar.addAction(self.back_action)
        toolbar.addAction(self.forward_action)
        toolbar.addSeparator()
        self.location_label = QtWidgets.QLabel()
        toolbar.addWidget(self.location_label)
        for action in (self.back_action, self.forward_action):
            action.setVisible(widget.enable_history)

        splitter = QtWidgets.QSplitter()
        self.setCentralWidget(splitter)

        token_provider = self._issue_token if self.settings.secret else None

        self.transport = WorkerTransport(service, self)
        self.sync = ClientSynchronizer(
            widget, self, self.transport, QtScheduler(self),
            history=self.history, attributes=attributes, token_provider=token_provider,
        )

        self.filters_panel = FiltersPanel(self.sync.dimensions)
        splitter.addWidget(self.filters_panel)

        center = QtWidgets.QWidget()
        self._center_layout = QtWidgets.QVBoxLayout(center)
        self.error_label = QtWidgets.QLabel()
        self.error_label.setStyleSheet("color: #d93025")
        self.error_label.setVisible(False)
        self._center_layout.addWidget(self.error_label)
        self.results = ResultsView()
        self._center_layout.addWidget(self.results, 1)
        self.load_more_btn = QtWidgets.QPushButton(widget.load_more_text)
        self.load_more_btn.setVisible(False)
        self.load_more_btn.clicked.connect(lambda: self.sync.load_more())
        self._center_layout.addWidget(self.load_more_btn)
        splitter.addWidget(center)
        splitter.setStretchFactor(0, 0)
        splitter.setStretchFactor(1, 1)

        self.status = self.statusBar()
        self._status_label = QtWidgets.QLabel("Ready")
        self.status.addPermanentWidget(self._status_label)

        self.filters_panel.selectionChanged.connect(self.sync.select)
        self.filters_panel.textChanged.connect(self.sync.set_text)
        self.filters_panel.clearAllRequested.connect(lambda: self.sync.clear_all())
        # Watcher status arrives from its own thread
        self.statusMessage.connect(self._set_status)
        if self.watcher:
            self.watcher.on_status(lambda msg: self.statusMessage.emit(msg))

        self._refresh_navigation()
        QtCore.QTimer.singleShot(0, self.sync.start)

    def _set_status(self, text: str) -> None:
        self._status_label.setText(text)

    def _issue_token(self) -> str:
        return issue_token(self.settings.secret)

    def _refresh_navigation(self) -> None:
        self.back_action.setEnabled(self.history.can_go_back())
        self.forward_action.setEnabled(self.history.can_go_forward())
        location = self.history.location()
        self.location_label.setText(f"?{location}" if location else "")

    # View capability set used by the synchronizer
    def render_items(self, fragment: str, append: bool) -> None:
        self.error_label.setVisible(False)
        self.results.set_fragment(fragment, append=append)

    def set_option_availability(self, key: str, options: List[OptionState]) -> None:
        self.filters_panel.set_options(key, options)

    def set_pagination_affordance(self, affordance: LoadMoreAffordance) -> None:
        self.load_more_btn.setVisible(affordance.visible)
        self.load_more_btn.setEnabled(affordance.enabled)
        self.load_more_btn.setText(affordance.text)
        pages = self.sync.pagination
        self._status_label.setText(f"Page {pages.current_page} of {pages.total_pages}")

    def set_clear_all_visible(self, visible: bool) -> None:
        self.filters_panel.set_clear_all_visible(visible)

    def set_loading(self, loading: bool) -> None:
        self.results.setEnabled(not loading)
        if loading:
            self._status_label.setText("Loading…")
        else:
            self._status_label.setText("Ready")
            # History is pushed after the response settles
            QtCore.QTimer.singleShot(0, self._refresh_navigation)

    def set_control_values(self, selections: SelectionState) -> None:
        self.filters_panel.set_values(selections)

    def show_error(self, message: str) -> None:
        self.error_label.setText(message)
        self.error_label.setVisible(True)

    def create_carousel(self, options: CarouselOptions) -> CarouselView:
        carousel = CarouselView(options, split_items(self.results.fragment()))
        self.results.setVisible(False)
        self._center_layout.insertWidget(1, carousel, 1)
        return carousel

    def closeEvent(self, event: QtGui.QCloseEvent) -> None:  # type: ignore[override]
        self.sync.dispose()
        if self.watcher:
            self.watcher.stop()
        self.transport.shutdown()
        super().closeEvent(event)
