from __future__ import annotations

import logging
import threading
from queue import Queue, Empty, Full
from pathlib import Path
from typing import Callable, List, Optional

from facetloop.catalog.router import load_catalog_file
from facetloop.index.items_repo import ItemsRepo


log = logging.getLogger(__name__)


class CatalogImporter:
    """Background queue that loads catalog files into the repository.

    Listeners registered with ``on_change`` run after every file that changed the
    repository; the host uses them to drop cached facet counts.
    """

    def __init__(self, repo: ItemsRepo, workers: int = 1) -> None:
        self.repo = repo
        self.q: Queue[Path] = Queue(maxsize=10000)
        self._threads: list[threading.Thread] = []
        self._stop = threading.Event()
        self._workers = max(1, workers)
        self._listeners: List[Callable[[Path], None]] = []
        # Writers share one sqlite file; serialise them
        self._write_lock = threading.Lock()

    def on_change(self, fn: Callable[[Path], None]) -> None:
        self._listeners.append(fn)

    def _notify(self, path: Path) -> None:
        for fn in self._listeners:
            fn(path)

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for i in range(self._workers):
            t = threading.Thread(target=self._run, name=f"CatalogImporter-{i}", daemon=True)
            t.start()
            self._threads.append(t)

    def stop(self) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout=2.0)
        self._threads.clear()

    def enqueue(self, path: Path) -> None:
        try:
            self.q.put_nowait(path)
        except Full:
            log.warning("Import queue full, dropping %s", path)

    def queue_size(self) -> int:
        return self.q.qsize()

    def join(self) -> None:
        self.q.join()

    def import_file(self, path: Path) -> Optional[int]:
        """Import one file; returns the number of items it now holds, or ``None`` if skipped."""
        catalog = load_catalog_file(path)
        if catalog is None:
            return None
        source = str(path.resolve())
        with self._write_lock:
            with self.repo._connect() as con:
                for attr in catalog.attributes:
                    self.repo.upsert_attribute(attr, connection=con)
                for term in catalog.terms:
                    self.repo.upsert_term(str(term["taxonomy"]), str(term["slug"]), term.get("name"),
                                          term.get("position"), connection=con)
            try:
                ids = self.repo.import_items(catalog.items, source=source)
            except ValueError as exc:
                log.warning("Skipping catalog %s: %s", path, exc)
                return None
        log.info("Imported %d items from %s", len(ids), path)
        self._notify(path)
        return len(ids)

    def retract_file(self, path: Path) -> int:
        with self._write_lock:
            removed = self.repo.delete_source(str(path.resolve()))
        if removed:
            log.info("Removed %d items of deleted catalog %s", removed, path)
            self._notify(path)
        return removed

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                p = self.q.get(timeout=0.5)
            except Empty:
                continue
            try:
                if p.is_file():
                    self.import_file(p)
            except Exception:
                log.exception("Import of %s failed", p)
            finally:
                self.q.task_done()
