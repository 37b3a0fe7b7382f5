from __future__ import annotations

from typing import Callable, Optional, Protocol

from facetloop.config.widget import CarouselOptions


class Carousel(Protocol):
    def dispose(self) -> None: ...


CarouselFactory = Callable[[CarouselOptions], Carousel]


class CarouselHost:
    """Owns at most one live carousel; a remount always disposes the previous one first."""

    def __init__(self, factory: CarouselFactory, options: CarouselOptions) -> None:
        self._factory = factory
        self.options = options
        self._current: Optional[Carousel] = None

    @property
    def current(self) -> Optional[Carousel]:
        return self._current

    def remount(self) -> Carousel:
        self.dispose()
        self._current = self._factory(self.options)
        return self._current

    def dispose(self) -> None:
        carousel, self._current = self._current, None
        if carousel is not None:
            carousel.dispose()

    def __enter__(self) -> "CarouselHost":
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()
