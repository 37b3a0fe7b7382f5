from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode

from facetloop.query.model import DimensionKind, FilterDimension, SelectionState


log = logging.getLogger(__name__)

TAXONOMY_PREFIX = "fl_tax_"
ATTRIBUTE_PREFIX = "fl_attr_"


def _param_name(dim: FilterDimension) -> str:
    prefix = TAXONOMY_PREFIX if dim.kind is DimensionKind.CATEGORICAL else ATTRIBUTE_PREFIX
    return prefix + dim.key


def encode_selection(config: Iterable[FilterDimension], selections: SelectionState) -> str:
    """Query string for the active selections, one repeated parameter per value."""
    pairs = []
    for dim in config:
        for value in selections.unique(dim.key):
            pairs.append((_param_name(dim), value))
    return urlencode(pairs)


def decode_selection(config: Iterable[FilterDimension], query: str) -> SelectionState:
    """Selections held in a query string; parameters of unknown dimensions are ignored."""
    by_param = {_param_name(d): d.key for d in config}
    values: dict[str, List[str]] = {}
    for name, value in parse_qsl(query.lstrip("?"), keep_blank_values=False):
        key = by_param.get(name)
        if key is None:
            continue
        values.setdefault(key, []).append(value)
    return SelectionState(values)


class BrowserHistory:
    """In-process navigable history of query strings.

    ``push`` drops any forward entries. ``back``/``forward`` move the cursor and notify the
    listener with the new location, like a browser's popstate.
    """

    def __init__(self, initial: str = "") -> None:
        self._entries: List[str] = [initial]
        self._index = 0
        self._listener: Optional[Callable[[str], None]] = None

    def listen(self, fn: Callable[[str], None]) -> None:
        self._listener = fn

    def location(self) -> str:
        return self._entries[self._index]

    def push(self, query: str) -> None:
        if query == self.location():
            return
        del self._entries[self._index + 1:]
        self._entries.append(query)
        self._index += 1
        log.debug("History push ?%s", query)

    def can_go_back(self) -> bool:
        return self._index > 0

    def can_go_forward(self) -> bool:
        return self._index < len(self._entries) - 1

    def back(self) -> None:
        if self.can_go_back():
            self._index -= 1
            self._fire()

    def forward(self) -> None:
        if self.can_go_forward():
            self._index += 1
            self._fire()

    def _fire(self) -> None:
        if self._listener:
            self._listener(self.location())

    def __len__(self) -> int:
        return len(self._entries)
