from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence, Set

from watchdog.events import FileSystemEventHandler, FileSystemEvent
from watchdog.observers import Observer

from facetloop.catalog.router import is_catalog_file
from .importer import CatalogImporter


log = logging.getLogger(__name__)


DEFAULT_EXCLUDES = {".git", "node_modules", "venv", ".venv", "__pycache__", ".idea", ".vscode"}


@dataclass
class WatcherConfig:
    roots: Sequence[Path]
    exclude_dir_names: Set[str] = field(default_factory=lambda: set(DEFAULT_EXCLUDES))
    initial_scan: bool = True


class _Handler(FileSystemEventHandler):
    def __init__(self, importer: CatalogImporter) -> None:
        super().__init__()
        self.importer = importer

    def _enqueue(self, raw_path: str) -> None:
        p = Path(raw_path)
        if is_catalog_file(p):
            self.importer.enqueue(p)

    def on_created(self, event: FileSystemEvent):  # type: ignore[override]
        if event.is_directory:
            return
        self._enqueue(event.src_path)

    def on_modified(self, event: FileSystemEvent):  # type: ignore[override]
        if event.is_directory:
            return
        self._enqueue(event.src_path)

    def on_moved(self, event):  # type: ignore[override]
        if event.is_directory:
            return
        if getattr(event, "dest_path", None):
            self._enqueue(event.dest_path)
        if is_catalog_file(Path(event.src_path)):
            self.importer.retract_file(Path(event.src_path))

    def on_deleted(self, event: FileSystemEvent):  # type: ignore[override]
        if event.is_directory:
            return
        if is_catalog_file(Path(event.src_path)):
            self.importer.retract_file(Path(event.src_path))


class WatchService:
    """Imports every catalog under the roots, then re-imports files as they change."""

    def __init__(self, importer: CatalogImporter, cfg: WatcherConfig) -> None:
        self.importer = importer
        self.cfg = cfg
        self._observers: List[Observer] = []
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._ready = threading.Event()
        self._on_status: Callable[[str], None] | None = None

    def on_status(self, fn: Callable[[str], None]) -> None:
        self._on_status = fn

    def _emit_status(self, msg: str) -> None:
        log.info(msg)
        if self._on_status:
            self._on_status(msg)

    def _scan_root(self, root: Path) -> int:
        queued = 0
        self._emit_status(f"Scanning {root}…")
        for dirpath, dirnames, filenames in os_walk_filtered(root, self.cfg.exclude_dir_names):
            for fn in filenames:
                p = Path(dirpath) / fn
                if not is_catalog_file(p):
                    continue
                self.importer.enqueue(p)
                queued += 1
                if self._stop_event.is_set():
                    return queued
        return queued

    def start(self) -> None:
        self._stop_event.clear()
        self.importer.start()
        if self.cfg.initial_scan:
            total = 0
            for root in self.cfg.roots:
                if self._stop_event.is_set():
                    break
                total += self._scan_root(root)
            self._emit_status(f"Queued {total} catalog files")

        handler = _Handler(self.importer)
        for root in self.cfg.roots:
            ob = Observer()
            ob.schedule(handler, str(root), recursive=True)
            ob.daemon = True
            ob.start()
            self._observers.append(ob)
        self._ready.set()
        self._emit_status("Watching for catalog changes…")

        while not self._stop_event.is_set():
            time.sleep(0.5)

    def wait_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def start_in_thread(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self.start, name="WatchService", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        for ob in self._observers:
            ob.stop()
            ob.join(timeout=2.0)
        self._observers.clear()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self._thread = None
        self._stop_event = threading.Event()
        self._ready.clear()
        self.importer.stop()


def os_walk_filtered(root: Path, exclude_dir_names: Set[str]):
    from os import walk
    lowered = {name.lower() for name in exclude_dir_names}
    for dirpath, dirnames, filenames in walk(root):
        dirnames[:] = [d for d in dirnames if d.lower() not in lowered]
        yield dirpath, dirnames, filenames
