from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from facetloop.config.widget import CarouselOptions, Layout, OverlapPolicy, WidgetConfig
from facetloop.query.model import AttributeField, FilterDimension, SelectionState, resolve_config
from .carousel import Carousel, CarouselHost
from .history import BrowserHistory, decode_selection, encode_selection
from .pagination import PaginationState, RenderMode


log = logging.getLogger(__name__)

ERROR_TEXT = "Error loading items. Please try again."


class SyncState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    IN_FLIGHT = "inFlight"


@dataclass(frozen=True)
class OptionState:
    value: str
    label: str
    count: int
    enabled: bool


@dataclass(frozen=True)
class LoadMoreAffordance:
    visible: bool
    enabled: bool = False
    text: str = ""


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> Cancellable: ...


ResponseCallback = Callable[[Mapping[str, Any]], None]
FailureCallback = Callable[[str], None]


class Transport(Protocol):
    """Delivers one request; exactly one of the callbacks fires, possibly later."""

    def send(self, payload: Dict[str, Any], on_response: ResponseCallback, on_failure: FailureCallback) -> None: ...


class View(Protocol):
    def render_items(self, fragment: str, append: bool) -> None: ...

    def set_option_availability(self, key: str, options: List[OptionState]) -> None: ...

    def set_pagination_affordance(self, affordance: LoadMoreAffordance) -> None: ...

    def set_clear_all_visible(self, visible: bool) -> None: ...

    def set_loading(self, loading: bool) -> None: ...

    def set_control_values(self, selections: SelectionState) -> None: ...

    def show_error(self, message: str) -> None: ...

    def create_carousel(self, options: CarouselOptions) -> Carousel: ...


class ClientSynchronizer:
    """Keeps one widget's controls, history, pagination and items in step with the server.

    Free-text and numeric input is debounced; everything else requests at once. With
    the ``drop`` overlap policy a trigger that arrives while a request is in flight is
    ignored. With ``replace`` a new request goes out and the older response is discarded
    when it lands.
    """

    def __init__(
        self,
        widget: WidgetConfig,
        view: View,
        transport: Transport,
        scheduler: Scheduler,
        *,
        history: BrowserHistory | None = None,
        attributes: Mapping[str, AttributeField] | None = None,
        token_provider: Callable[[], str] | None = None,
    ) -> None:
        self.widget = widget
        self.view = view
        self.transport = transport
        self.scheduler = scheduler
        self.history = history if widget.enable_history else None
        self.token_provider = token_provider
        self.dimensions: List[FilterDimension] = resolve_config(widget.filters, attributes)
        self._by_key = {d.key: d for d in self.dimensions}
        self.selections = SelectionState({d.key: [] for d in self.dimensions})
        self.pagination = PaginationState(page_size=widget.page_size)
        self.carousels: CarouselHost | None = None
        if widget.layout is Layout.CAROUSEL:
            self.carousels = CarouselHost(view.create_carousel, widget.carousel)
        self._seq = 0
        self._in_flight = False
        self._debounce: Optional[Cancellable] = None

    @property
    def state(self) -> SyncState:
        if self._in_flight:
            return SyncState.IN_FLIGHT
        if self._debounce is not None:
            return SyncState.DEBOUNCING
        return SyncState.IDLE

    def start(self) -> None:
        """Restore selections from the current location, if any, and load the first page."""
        if self.history is not None:
            self.history.listen(self.on_history_navigate)
            restored = decode_selection(self.dimensions, self.history.location())
            if restored.has_any():
                self._adopt_selection(restored)
        self.view.set_clear_all_visible(self.selections.has_any())
        self._request(RenderMode.REPLACE, push=False)

    def dispose(self) -> None:
        self._cancel_debounce()
        if self.carousels is not None:
            self.carousels.dispose()

    def select(self, key: str, values: List[str]) -> bool:
        """Discrete control change (dropdown, checkbox, radio)."""
        if key not in self._by_key:
            log.debug("Ignoring selection for unknown dimension %r", key)
            return False
        self._cancel_debounce()
        self.selections.set(key, values)
        self.view.set_clear_all_visible(self.selections.has_any())
        return self._request(RenderMode.REPLACE, push=True)

    def set_text(self, key: str, text: str) -> None:
        """Typed input; the request waits for a quiet period."""
        if key not in self._by_key:
            log.debug("Ignoring input for unknown dimension %r", key)
            return
        self.selections.set(key, [text.strip()])
        self.view.set_clear_all_visible(self.selections.has_any())
        self._cancel_debounce()
        self._debounce = self.scheduler.call_later(self.widget.debounce_ms, self._debounce_elapsed)

    def _debounce_elapsed(self) -> None:
        self._debounce = None
        self._request(RenderMode.REPLACE, push=True)

    def _cancel_debounce(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    def load_more(self) -> bool:
        # total_pages belongs to the last settled request; a pending selection change invalidates it
        if self.state is not SyncState.IDLE:
            log.debug("Load more ignored while %s", self.state.value)
            return False
        if not self.pagination.can_load_more():
            return False
        return self._request(RenderMode.APPEND, push=False)

    def clear_all(self) -> bool:
        self._cancel_debounce()
        self.selections.clear_all()
        self.view.set_control_values(self.selections.copy())
        self.view.set_clear_all_visible(False)
        return self._request(RenderMode.REPLACE, push=True)

    def on_history_navigate(self, location: str) -> None:
        self._cancel_debounce()
        self._adopt_selection(decode_selection(self.dimensions, location))
        self.view.set_clear_all_visible(self.selections.has_any())
        self._request(RenderMode.REPLACE, push=False)

    def _adopt_selection(self, restored: SelectionState) -> None:
        self.selections.clear_all()
        for key in restored.active_keys():
            self.selections.set(key, restored.get(key))
        self.view.set_control_values(self.selections.copy())

    def _request(self, mode: RenderMode, push: bool) -> bool:
        if self._in_flight and self.widget.overlap_policy is OverlapPolicy.DROP:
            log.debug("Request dropped: another one is in flight")
            return False
        if mode is RenderMode.APPEND:
            self.pagination.advance()
        else:
            self.pagination.reset()
        self._seq += 1
        seq = self._seq
        self._in_flight = True
        self.view.set_loading(True)
        token = self.token_provider() if self.token_provider else ""
        payload = self.widget.request_payload(self.selections.as_dict(), self.pagination.current_page, token)
        log.debug("Request #%d page %d (%s)", seq, self.pagination.current_page, mode.value)
        self.transport.send(
            payload,
            lambda response: self._on_response(seq, mode, push, response),
            lambda message: self._on_failure(seq, mode, message),
        )
        return True

    def _settle(self, seq: int) -> bool:
        if seq != self._seq:
            log.debug("Discarding stale response #%d (latest #%d)", seq, self._seq)
            return False
        self._in_flight = False
        self.view.set_loading(False)
        return True

    def _on_failure(self, seq: int, mode: RenderMode, message: str) -> None:
        if not self._settle(seq):
            return
        log.warning("Filter request failed: %s", message)
        self._fail(mode, ERROR_TEXT)

    def _fail(self, mode: RenderMode, message: str, fragment: str = "") -> None:
        if mode is RenderMode.APPEND:
            # Items on screen still belong to the current selection
            self.pagination.retreat()
        else:
            # The cursor was already reset for the new selection; the old items must go too
            self.pagination.adopt(0)
            self._render(fragment, append=False)
            self.view.set_pagination_affordance(self.load_more_affordance())
        self.view.show_error(message)

    def _render(self, fragment: str, append: bool) -> None:
        if self.carousels is not None:
            self.view.render_items(fragment, append=False)
            self.carousels.remount()
        else:
            self.view.render_items(fragment, append=append)

    def _on_response(self, seq: int, mode: RenderMode, push: bool, response: Mapping[str, Any]) -> None:
        if not self._settle(seq):
            return
        if not response.get("success"):
            self._fail(mode, str(response.get("message") or ERROR_TEXT), str(response.get("items") or ""))
            return

        self.pagination.adopt(int(response.get("totalPages") or 0))
        self._render(str(response.get("items") or ""), append=mode is RenderMode.APPEND)
        self.apply_facets(response.get("facets") or {})
        self.view.set_clear_all_visible(self.selections.has_any())
        self.view.set_pagination_affordance(self.load_more_affordance())
        if push and self.history is not None:
            self.history.push(encode_selection(self.dimensions, self.selections))

    def apply_facets(self, facets: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> None:
        for dim in self.dimensions:
            if not dim.has_option_universe or dim.key not in facets:
                continue
            selected = set(self.selections.get(dim.key))
            options = []
            for value, info in facets[dim.key].items():
                count = int(info.get("count") or 0)
                label = str(info.get("label") or value)
                options.append(OptionState(
                    value=value,
                    label=f"{label} ({count})",
                    count=count,
                    enabled=count > 0 or value in selected,
                ))
            self.view.set_option_availability(dim.key, options)

    def load_more_affordance(self) -> LoadMoreAffordance:
        if self.widget.layout is Layout.CAROUSEL or not self.widget.enable_load_more:
            return LoadMoreAffordance(visible=False)
        if self.pagination.can_load_more():
            return LoadMoreAffordance(visible=True, enabled=True, text=self.widget.load_more_text)
        return LoadMoreAffordance(visible=True, enabled=False, text=self.widget.no_more_text)
