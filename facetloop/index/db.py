from __future__ import annotations

import sqlite3
from pathlib import Path

try:
    from platformdirs import user_data_dir
except ModuleNotFoundError:  # pragma: no cover
    def user_data_dir(app_name: str, app_author: str) -> str:
        return str(Path.home() / f".{app_name.lower()}")


APP_NAME = "FacetLoop"
APP_AUTHOR = "FacetLoop"
DATA_DIR = Path(user_data_dir(APP_NAME, APP_AUTHOR))
DB_PATH = DATA_DIR / "facetloop.db"


def ensure_data_dir() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)


def connect(db_path: Path | str = DB_PATH) -> sqlite3.Connection:
    ensure_data_dir()
    con = sqlite3.connect(str(db_path), timeout=10.0)
    con.row_factory = sqlite3.Row
    # Facet queries run from several threads; WAL keeps readers off the writer's lock
    pragmas = [
        ("journal_mode", "WAL"),
        ("synchronous", "NORMAL"),
        ("temp_store", "MEMORY"),
        ("mmap_size", 268435456),
        ("foreign_keys", 1),
    ]
    cur = con.cursor()
    for key, value in pragmas:
        cur.execute(f"PRAGMA {key}={value}")
    cur.close()
    return con


def initialize(db_path: Path | str = DB_PATH) -> None:
    ensure_data_dir()
    schema_path = Path(__file__).with_name("schema.sql")
    with connect(db_path) as con:
        with open(schema_path, "r", encoding="utf-8") as f:
            con.executescript(f.read())
        _migrate(con)


def _migrate(con: sqlite3.Connection) -> None:
    # Columns added after the first schema revision
    cur = con.execute("PRAGMA table_info(items)")
    cols = {row[1] for row in cur.fetchall()}  # name is at index 1
    to_add = []
    if "comment_count" not in cols:
        to_add.append("ALTER TABLE items ADD COLUMN comment_count INTEGER NOT NULL DEFAULT 0")
    if "source" not in cols:
        to_add.append("ALTER TABLE items ADD COLUMN source TEXT NOT NULL DEFAULT ''")
    if "menu_order" not in cols:
        to_add.append("ALTER TABLE items ADD COLUMN menu_order INTEGER NOT NULL DEFAULT 0")
    cur = con.execute("PRAGMA table_info(item_meta)")
    if "num" not in {row[1] for row in cur.fetchall()}:
        to_add.append("ALTER TABLE item_meta ADD COLUMN num REAL")
    for stmt in to_add:
        con.execute(stmt)
    con.execute("CREATE INDEX IF NOT EXISTS idx_items_source ON items(source)")
