from __future__ import annotations

from typing import Dict, List, Sequence

from PySide6 import QtCore, QtWidgets

from facetloop.client.synchronizer import OptionState
from facetloop.query.model import Comparator, DisplayMode, FilterDimension, SelectionState


class _DimensionControl(QtWidgets.QGroupBox):
    selectionChanged = QtCore.Signal(str, list)

    def __init__(self, dim: FilterDimension) -> None:
        super().__init__(dim.label or dim.key)
        self.dim = dim
        self.setLayout(QtWidgets.QVBoxLayout())

    def set_options(self, options: Sequence[OptionState]) -> None:
        raise NotImplementedError

    def set_values(self, values: List[str]) -> None:
        raise NotImplementedError

    def values(self) -> List[str]:
        raise NotImplementedError

    def _emit(self) -> None:
        self.selectionChanged.emit(self.dim.key, self.values())


class _ComboControl(_DimensionControl):
    def __init__(self, dim: FilterDimension) -> None:
        super().__init__(dim)
        self.combo = QtWidgets.QComboBox()
        self.combo.addItem("Any", "")
        self.combo.currentIndexChanged.connect(lambda _i: self._emit())
        self.layout().addWidget(self.combo)

    def set_options(self, options: Sequence[OptionState]) -> None:
        current = self.combo.currentData()
        self.combo.blockSignals(True)
        self.combo.clear()
        self.combo.addItem("Any", "")
        for opt in options:
            self.combo.addItem(opt.label, opt.value)
            item = self.combo.model().item(self.combo.count() - 1)
            if item is not None:
                item.setEnabled(opt.enabled)
        self.combo.setCurrentIndex(max(0, self.combo.findData(current)))
        self.combo.blockSignals(False)

    def set_values(self, values: List[str]) -> None:
        self.combo.blockSignals(True)
        idx = self.combo.findData(values[0]) if values else 0
        if idx < 0:
            # Value restored from history before its option arrived
            self.combo.addItem(values[0], values[0])
            idx = self.combo.count() - 1
        self.combo.setCurrentIndex(idx)
        self.combo.blockSignals(False)

    def values(self) -> List[str]:
        value = self.combo.currentData()
        return [value] if value else []


class _ButtonsControl(_DimensionControl):
    """Checkboxes for multi-select, radio buttons (with an "Any" choice) for single-select."""

    def __init__(self, dim: FilterDimension, exclusive: bool) -> None:
        super().__init__(dim)
        self._exclusive = exclusive
        self._buttons: Dict[str, QtWidgets.QAbstractButton] = {}
        self._group = QtWidgets.QButtonGroup(self)
        self._group.setExclusive(exclusive)
        self._selected: List[str] = []

    def set_options(self, options: Sequence[OptionState]) -> None:
        layout = self.layout()
        while layout.count():
            w = layout.takeAt(0).widget()
            if w:
                self._group.removeButton(w)  # type: ignore[arg-type]
                w.deleteLater()
        self._buttons.clear()
        entries = list(options)
        if self._exclusive:
            entries.insert(0, OptionState(value="", label="Any", count=0, enabled=True))
        for opt in entries:
            btn: QtWidgets.QAbstractButton
            btn = QtWidgets.QRadioButton(opt.label) if self._exclusive else QtWidgets.QCheckBox(opt.label)
            btn.setProperty("option_value", opt.value)
            btn.setEnabled(opt.enabled)
            btn.setChecked(opt.value in self._selected or (self._exclusive and not opt.value and not self._selected))
            btn.toggled.connect(self._on_toggled)
            self._group.addButton(btn)
            layout.addWidget(btn)
            self._buttons[opt.value] = btn

    def _on_toggled(self, checked: bool) -> None:
        # Radio groups toggle twice per change; react to the newly checked one only
        if self._exclusive and not checked:
            return
        self._selected = [v for v, b in self._buttons.items() if v and b.isChecked()]
        self._emit()

    def set_values(self, values: List[str]) -> None:
        self._selected = list(values)
        for value, btn in self._buttons.items():
            btn.blockSignals(True)
            btn.setChecked(value in values or (self._exclusive and not value and not values))
            btn.blockSignals(False)

    def values(self) -> List[str]:
        return list(self._selected)


class _TextControl(_DimensionControl):
    textChanged = QtCore.Signal(str, str)

    def __init__(self, dim: FilterDimension) -> None:
        super().__init__(dim)
        self.edit = QtWidgets.QLineEdit()
        if dim.display_mode is DisplayMode.NUMERIC:
            hint = "min,max" if dim.comparator is Comparator.BETWEEN else f"{dim.comparator.value} value"
            self.edit.setPlaceholderText(hint)
        else:
            self.edit.setPlaceholderText("Type to filter…")
        self.edit.textEdited.connect(lambda text: self.textChanged.emit(self.dim.key, text))
        self.layout().addWidget(self.edit)

    def set_options(self, options: Sequence[OptionState]) -> None:
        # typed input has no option list
        return None

    def set_values(self, values: List[str]) -> None:
        self.edit.setText(values[0] if values else "")

    def values(self) -> List[str]:
        text = self.edit.text().strip()
        return [text] if text else []


def _control_for(dim: FilterDimension) -> _DimensionControl:
    mode = dim.display_mode
    if mode is DisplayMode.DROPDOWN:
        return _ComboControl(dim)
    if mode is DisplayMode.MULTI_SELECT:
        return _ButtonsControl(dim, exclusive=False)
    if mode is DisplayMode.SINGLE_SELECT:
        return _ButtonsControl(dim, exclusive=True)
    if mode in (DisplayMode.FREE_TEXT, DisplayMode.NUMERIC):
        return _TextControl(dim)
    raise ValueError(f"unhandled display mode {mode!r}")


class FiltersPanel(QtWidgets.QScrollArea):
    selectionChanged = QtCore.Signal(str, list)
    textChanged = QtCore.Signal(str, str)
    clearAllRequested = QtCore.Signal()

    def __init__(self, dimensions: Sequence[FilterDimension]) -> None:
        super().__init__()
        self.setWidgetResizable(True)
        self._inner = QtWidgets.QWidget()
        self.setWidget(self._inner)
        self._layout = QtWidgets.QVBoxLayout(self._inner)
        self.controls: Dict[str, _DimensionControl] = {}

        for dim in dimensions:
            control = _control_for(dim)
            if isinstance(control, _TextControl):
                control.textChanged.connect(self.textChanged.emit)
            else:
                control.selectionChanged.connect(self.selectionChanged.emit)
            self._layout.addWidget(control)
            self.controls[dim.key] = control

        self.clear_btn = QtWidgets.QPushButton("Clear all")
        self.clear_btn.clicked.connect(self.clearAllRequested.emit)
        self.clear_btn.setVisible(False)
        self._layout.addWidget(self.clear_btn)
        self._layout.addStretch(1)

    def set_options(self, key: str, options: Sequence[OptionState]) -> None:
        control = self.controls.get(key)
        if control is not None:
            control.set_options(options)

    def set_values(self, selections: SelectionState) -> None:
        for key, control in self.controls.items():
            control.set_values(selections.get(key))

    def set_clear_all_visible(self, visible: bool) -> None:
        self.clear_btn.setVisible(visible)
