from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

import typer

from facetloop.config.settings import Settings, resolve_catalog_dirs
from facetloop.index.db import DATA_DIR, DB_PATH, initialize
from facetloop.index.items_repo import ItemsRepo

app = typer.Typer(help="FacetLoop CLI")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="[%(levelname)s] %(message)s")


@app.command()
def gui(widget: Optional[Path] = typer.Option(None, help="Widget configuration (TOML).")) -> None:
    """Launch the FacetLoop desktop host."""
    from facetloop.gui.app import run_gui

    run_gui(widget)


@app.command("init-db")
def init_db(db: Path = typer.Option(DB_PATH, help="Database file.")) -> None:
    """Create or migrate the content database."""
    _setup_logging(False)
    initialize(db)
    typer.echo(f"Initialized {db}")


@app.command("import-catalog")
def import_catalog(
    paths: List[Path] = typer.Argument(..., help="Catalog files or folders."),
    db: Path = typer.Option(DB_PATH, help="Database file."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Load catalog files (JSON/TOML) into the content database."""
    from facetloop.catalog.router import is_catalog_file
    from facetloop.service.importer import CatalogImporter
    from facetloop.service.watcher import DEFAULT_EXCLUDES, os_walk_filtered

    _setup_logging(verbose)
    initialize(db)
    importer = CatalogImporter(ItemsRepo(db_path=db))
    files: List[Path] = []
    for path in paths:
        if path.is_dir():
            for dirpath, _dirs, names in os_walk_filtered(path, DEFAULT_EXCLUDES):
                files.extend(Path(dirpath) / n for n in sorted(names) if is_catalog_file(Path(n)))
        else:
            files.append(path)
    imported = 0
    for f in files:
        count = importer.import_file(f)
        if count is None:
            typer.echo(f"Skipped {f}", err=True)
        else:
            imported += count
    typer.echo(f"Imported {imported} items from {len(files)} files")


@app.command()
def query(
    request: Path = typer.Argument(..., help="Request payload (JSON), '-' for stdin."),
    db: Path = typer.Option(DB_PATH, help="Database file."),
    templates: Path = typer.Option(DATA_DIR / "templates", help="Folder of <ref>.html templates."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Run one filter request and print the JSON response."""
    from facetloop.service.handler import FilterService
    from facetloop.service.renderer import TemplateRenderer

    _setup_logging(verbose)
    raw = sys.stdin.read() if str(request) == "-" else request.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        typer.echo(f"Invalid request JSON: {exc}", err=True)
        raise typer.Exit(code=2)
    initialize(db)
    service = FilterService(ItemsRepo(db_path=db), TemplateRenderer(templates), settings=Settings.load())
    response = service.handle(payload)
    typer.echo(json.dumps(response, indent=2))
    if not response.get("success"):
        raise typer.Exit(code=1)


@app.command()
def watch(
    dirs: Optional[List[Path]] = typer.Argument(None, help="Catalog folders; defaults to the configured ones."),
    db: Path = typer.Option(DB_PATH, help="Database file."),
) -> None:
    """Import catalog folders and keep re-importing them as files change."""
    from facetloop.service.importer import CatalogImporter
    from facetloop.service.watcher import WatchService, WatcherConfig

    _setup_logging(False)
    initialize(db)
    roots = [d for d in dirs or [] if d.is_dir()] or resolve_catalog_dirs(Settings.load())
    if not roots:
        typer.echo("No catalog folders to watch", err=True)
        raise typer.Exit(code=1)
    watcher = WatchService(CatalogImporter(ItemsRepo(db_path=db)), WatcherConfig(roots=roots))
    watcher.start_in_thread()
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        watcher.stop()


if __name__ == "__main__":
    sys.exit(app())
