from __future__ import annotations

import re
from typing import List

from PySide6 import QtWidgets


_ITEM_START = re.compile(r'(?=<div class="loop-item")')


def split_items(fragment: str) -> List[str]:
    """Item cells of a rendered fragment; markup without item wrappers is one cell."""
    cells = [c.strip() for c in _ITEM_START.split(fragment) if c.strip()]
    return cells or ([fragment] if fragment.strip() else [])


class ResultsView(QtWidgets.QTextBrowser):
    def __init__(self) -> None:
        super().__init__()
        self.setOpenLinks(False)
        self._fragments: List[str] = []

    def set_fragment(self, fragment: str, append: bool = False) -> None:
        if append:
            self._fragments.append(fragment)
        else:
            self._fragments = [fragment]
        bar = self.verticalScrollBar()
        pos = bar.value()
        self.setHtml("\n".join(self._fragments))
        if append:
            bar.setValue(pos)

    def fragment(self) -> str:
        return "\n".join(self._fragments)

