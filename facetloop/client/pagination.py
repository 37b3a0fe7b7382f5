from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RenderMode(str, Enum):
    REPLACE = "replace"
    APPEND = "append"


@dataclass
class PaginationState:
    current_page: int = 1
    total_pages: int = 0
    page_size: int = 9

    def reset(self) -> RenderMode:
        """Any selection change starts over from the first page."""
        self.current_page = 1
        return RenderMode.REPLACE

    def can_load_more(self) -> bool:
        return self.current_page < self.total_pages

    def advance(self) -> RenderMode:
        if not self.can_load_more():
            raise ValueError(f"no page after {self.current_page} of {self.total_pages}")
        self.current_page += 1
        return RenderMode.APPEND

    def retreat(self) -> None:
        # A failed load-more leaves the cursor where it was
        self.current_page = max(1, self.current_page - 1)

    def adopt(self, total_pages: int) -> None:
        self.total_pages = max(0, int(total_pages))
