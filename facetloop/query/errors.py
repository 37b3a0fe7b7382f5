from __future__ import annotations


class FacetLoopError(Exception):
    """Base class for errors resolved at the request boundary."""


class ConfigurationError(FacetLoopError):
    """Author configuration cannot be served (missing template, bad dimension)."""


class ValidationError(FacetLoopError):
    """The request itself is rejected before any query runs."""


class InvalidSelection(FacetLoopError):
    """A selected value cannot be turned into a constraint for its dimension."""

    def __init__(self, key: str, value: object, reason: str) -> None:
        super().__init__(f"{key}: {reason} ({value!r})")
        self.key = key
        self.value = value
