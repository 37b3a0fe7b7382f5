from __future__ import annotations

from typing import List

from PySide6 import QtCore, QtWidgets

from facetloop.config.widget import CarouselOptions


SWIPE_THRESHOLD = 40


class CarouselView(QtWidgets.QWidget):
    """Slides over item cells, ``columns`` at a time."""

    def __init__(self, options: CarouselOptions, cells: List[str], parent: QtWidgets.QWidget | None = None) -> None:
        super().__init__(parent)
        self.options = options
        self._cells = cells
        self._index = 0
        self.disposed = False
        self._press_x: float | None = None

        layout = QtWidgets.QVBoxLayout(self)
        row = QtWidgets.QHBoxLayout()
        self.prev_btn = QtWidgets.QToolButton()
        self.prev_btn.setArrowType(QtCore.Qt.ArrowType.LeftArrow)
        self.next_btn = QtWidgets.QToolButton()
        self.next_btn.setArrowType(QtCore.Qt.ArrowType.RightArrow)
        self._slides = QtWidgets.QHBoxLayout()
        self._pages: List[QtWidgets.QTextBrowser] = []
        for _ in range(max(1, options.columns)):
            page = QtWidgets.QTextBrowser()
            page.setOpenLinks(False)
            if options.draggable:
                page.viewport().installEventFilter(self)
            self._pages.append(page)
            self._slides.addWidget(page)
        row.addWidget(self.prev_btn)
        row.addLayout(self._slides, 1)
        row.addWidget(self.next_btn)
        layout.addLayout(row)
        self.dots = QtWidgets.QLabel()
        self.dots.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(self.dots)

        self.prev_btn.setVisible(options.nav_buttons)
        self.next_btn.setVisible(options.nav_buttons)
        self.dots.setVisible(options.page_dots)
        self.prev_btn.clicked.connect(self.previous)
        self.next_btn.clicked.connect(self.next)

        self._timer = QtCore.QTimer(self)
        self._timer.setInterval(max(100, options.autoplay_interval))
        self._timer.timeout.connect(self.next)
        if options.autoplay and len(cells) > options.columns:
            self._timer.start()
        self._show()

    @property
    def index(self) -> int:
        return self._index

    def _max_index(self) -> int:
        return max(0, len(self._cells) - max(1, self.options.columns))

    def _move(self, step: int) -> None:
        target = self._index + step * max(1, self.options.slides_to_move)
        last = self._max_index()
        if self.options.wrap_around:
            if target > last:
                target = 0
            elif target < 0:
                target = last
        self._index = min(max(0, target), last)
        self._show()

    def next(self) -> None:
        self._move(1)

    def previous(self) -> None:
        self._move(-1)

    def swipe(self, dx: float) -> None:
        """Horizontal drag of ``dx`` pixels; dragging left shows the next cells."""
        if abs(dx) < SWIPE_THRESHOLD:
            return
        self._move(1 if dx < 0 else -1)

    def eventFilter(self, watched: QtCore.QObject, event: QtCore.QEvent) -> bool:  # type: ignore[override]
        kind = event.type()
        if kind == QtCore.QEvent.Type.MouseButtonPress:
            self._press_x = event.position().x()  # type: ignore[attr-defined]
        elif kind == QtCore.QEvent.Type.MouseButtonRelease and self._press_x is not None:
            self.swipe(event.position().x() - self._press_x)  # type: ignore[attr-defined]
            self._press_x = None
        return super().eventFilter(watched, event)

    def _show(self) -> None:
        for offset, page in enumerate(self._pages):
            i = self._index + offset
            page.setHtml(self._cells[i] if i < len(self._cells) else "")
            if self.options.adaptive_height:
                page.document().setTextWidth(page.viewport().width())
                page.setFixedHeight(int(page.document().size().height()) + 2 * page.frameWidth())
        if self.options.page_dots:
            total = self._max_index() + 1
            self.dots.setText(" ".join("●" if i == self._index else "○" for i in range(total)))

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._timer.stop()
        self.setParent(None)
        self.deleteLater()
