from __future__ import annotations

import json
import math
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from facetloop.query.builder import QuerySpec
from facetloop.query.model import AttributeField, ValueType, normalize_boolean
from facetloop.query.sql import compile_query
from .db import DB_PATH, connect


ITEM_COLUMNS = (
    "id", "post_type", "status", "title", "slug", "author", "body",
    "date_ts", "modified_ts", "parent_id", "menu_order", "comment_count", "source",
)


def to_timestamp(value: Any) -> int:
    if value in (None, ""):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        return int(value.timestamp())
    try:
        return int(datetime.fromisoformat(str(value)).timestamp())
    except ValueError:
        return 0


def numeric_shadow(value: str) -> Optional[float]:
    try:
        num = float(value)
    except ValueError:
        return None
    return num if math.isfinite(num) else None


@dataclass
class SearchPage:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    total_pages: int = 0
    page: int = 1


class ItemsRepo:
    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        return connect(self.db_path)

    # Terms map: (taxonomy, slug) → id
    def ensure_term(self, con: sqlite3.Connection, taxonomy: str, slug: str, name: str | None = None,
                    position: int | None = None) -> int:
        cur = con.execute("SELECT id FROM terms WHERE taxonomy=? AND slug=?", (taxonomy, slug))
        row = cur.fetchone()
        if row:
            if name is not None or position is not None:
                con.execute(
                    "UPDATE terms SET name=COALESCE(?, name), position=COALESCE(?, position) WHERE id=?",
                    (name, position, int(row[0])),
                )
            return int(row[0])
        cur = con.execute(
            "INSERT INTO terms(taxonomy, slug, name, position) VALUES(?, ?, ?, ?)",
            (taxonomy, slug, name if name is not None else slug, position or 0),
        )
        return int(cur.lastrowid)

    def upsert_term(self, taxonomy: str, slug: str, name: str | None = None, position: int | None = None,
                    connection: sqlite3.Connection | None = None) -> int:
        if connection is not None:
            return self.ensure_term(connection, taxonomy, slug, name, position)
        with self._connect() as con:
            return self.ensure_term(con, taxonomy, slug, name, position)

    def upsert_attribute(self, attr: AttributeField, connection: sqlite3.Connection | None = None) -> None:
        sql = (
            "INSERT INTO attributes(key, label, value_type, choices) VALUES(?, ?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET label=excluded.label, value_type=excluded.value_type, "
            "choices=excluded.choices"
        )
        params = (attr.key, attr.label, attr.value_type.value, json.dumps(dict(attr.choices)))
        if connection is not None:
            connection.execute(sql, params)
            return
        with self._connect() as con:
            con.execute(sql, params)

    def attributes(self) -> Dict[str, AttributeField]:
        with self._connect() as con:
            cur = con.execute("SELECT key, label, value_type, choices FROM attributes ORDER BY key")
            return {r["key"]: AttributeField.from_mapping(dict(r)) for r in cur.fetchall()}

    def term_options(self, taxonomy: str) -> Dict[str, str]:
        """All terms of a taxonomy, empty ones included, as slug → name."""
        with self._connect() as con:
            cur = con.execute(
                "SELECT slug, name FROM terms WHERE taxonomy=? ORDER BY position, name COLLATE NOCASE, slug",
                (taxonomy,),
            )
            return {str(r[0]): str(r[1] or r[0]) for r in cur.fetchall()}

    def upsert_item(self, item: Mapping[str, Any], connection: sqlite3.Connection | None = None,
                    source: str = "") -> int:
        try:
            item_id = int(item["id"])
        except (KeyError, TypeError, ValueError):
            raise ValueError(f"item without a numeric id: {item!r}") from None
        row = (
            item_id,
            str(item.get("post_type") or "product"),
            str(item.get("status") or "publish"),
            str(item.get("title") or ""),
            str(item.get("slug") or item.get("name") or ""),
            str(item.get("author") or ""),
            str(item.get("body") or item.get("content") or ""),
            to_timestamp(item.get("date")),
            to_timestamp(item.get("modified") or item.get("date")),
            int(item.get("parent") or 0),
            int(item.get("menu_order") or 0),
            int(item.get("comment_count") or 0),
            source,
        )
        con = connection or self._connect()
        try:
            con.execute(
                f"""
                INSERT INTO items({", ".join(ITEM_COLUMNS)})
                VALUES({", ".join("?" * len(ITEM_COLUMNS))})
                ON CONFLICT(id) DO UPDATE SET
                  post_type=excluded.post_type,
                  status=excluded.status,
                  title=excluded.title,
                  slug=excluded.slug,
                  author=excluded.author,
                  body=excluded.body,
                  date_ts=excluded.date_ts,
                  modified_ts=excluded.modified_ts,
                  parent_id=excluded.parent_id,
                  menu_order=excluded.menu_order,
                  comment_count=excluded.comment_count,
                  source=excluded.source
                """,
                row,
            )
            con.execute("DELETE FROM item_terms WHERE item_id=?", (item_id,))
            for taxonomy, terms in (item.get("terms") or {}).items():
                if isinstance(terms, (str, Mapping)):
                    terms = [terms]
                for term in terms:
                    if isinstance(term, Mapping):
                        term_id = self.ensure_term(con, taxonomy, str(term["slug"]), term.get("name"))
                    else:
                        term_id = self.ensure_term(con, taxonomy, str(term))
                    con.execute("INSERT OR IGNORE INTO item_terms(item_id, term_id) VALUES(?, ?)", (item_id, term_id))
            con.execute("DELETE FROM item_meta WHERE item_id=?", (item_id,))
            types = {
                r[0]: r[1] for r in con.execute("SELECT key, value_type FROM attributes").fetchall()
            }
            for key, values in (item.get("meta") or {}).items():
                self._insert_meta(con, item_id, key, values, types.get(key))
            if connection is None:
                con.commit()
        finally:
            if connection is None:
                con.close()
        return item_id

    @staticmethod
    def _insert_meta(con: sqlite3.Connection, item_id: int, key: str, values: Any, value_type: str | None) -> None:
        if not isinstance(values, (list, tuple)):
            values = [values]
        for value in values:
            if value is None:
                continue
            text = str(value)
            if value_type == ValueType.BOOLEAN.value or isinstance(value, bool):
                text = normalize_boolean(value) or text
            con.execute(
                "INSERT INTO item_meta(item_id, key, value, num) VALUES(?, ?, ?, ?)",
                (item_id, key, text, numeric_shadow(text)),
            )

    def delete_item(self, item_id: int) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM items WHERE id=?", (int(item_id),))

    def count_items(self) -> int:
        with self._connect() as con:
            row = con.execute("SELECT COUNT(*) FROM items").fetchone()
            return int(row[0]) if row else 0

    def search(self, spec: QuerySpec) -> SearchPage:
        q = compile_query(spec)
        with self._connect() as con:
            con.execute("PRAGMA query_only=1")
            cur = con.execute(f"SELECT COUNT(*) FROM items WHERE {q.where_sql}", q.params)
            total = int(cur.fetchone()[0])
            if spec.unbounded:
                total_pages = 1 if total else 0
                limit_sql, limit_params = "", []
            else:
                total_pages = math.ceil(total / spec.page_size)
                limit_sql = " LIMIT ? OFFSET ?"
                limit_params = [spec.page_size, (spec.page - 1) * spec.page_size]
            columns = "items.id" if spec.ids_only else "items.*"
            cur = con.execute(
                f"SELECT {columns} FROM items WHERE {q.where_sql} ORDER BY {q.order_sql}{limit_sql}",
                (*q.params, *limit_params),
            )
            rows = [dict(r) for r in cur.fetchall()]
            if rows and not spec.ids_only:
                self._attach_terms_and_meta(con, rows)
        return SearchPage(rows=rows, total=total, total_pages=total_pages, page=spec.page)

    def fetch_ids(self, spec: QuerySpec) -> List[int]:
        return [int(r["id"]) for r in self.search(spec.for_ids()).rows]

    def _attach_terms_and_meta(self, con: sqlite3.Connection, rows: List[Dict[str, Any]]) -> None:
        by_id = {int(r["id"]): r for r in rows}
        for r in rows:
            r["terms"] = {}
            r["meta"] = {}
        placeholders = ",".join(["?"] * len(by_id))
        cur = con.execute(
            "SELECT it.item_id, t.taxonomy, t.slug, t.name FROM item_terms it JOIN terms t ON t.id = it.term_id "
            f"WHERE it.item_id IN ({placeholders}) ORDER BY t.position, t.name",
            list(by_id),
        )
        for item_id, taxonomy, slug, name in cur.fetchall():
            by_id[int(item_id)]["terms"].setdefault(taxonomy, []).append({"slug": slug, "name": name})
        cur = con.execute(
            f"SELECT item_id, key, value FROM item_meta WHERE item_id IN ({placeholders}) ORDER BY rowid",
            list(by_id),
        )
        for item_id, key, value in cur.fetchall():
            by_id[int(item_id)]["meta"].setdefault(key, []).append(value)

    # Facet tallies run over the ids matched by a (self-excluded) spec
    def term_counts(self, spec: QuerySpec, taxonomy: str) -> Dict[str, int]:
        q = compile_query(spec.for_ids())
        with self._connect() as con:
            con.execute("PRAGMA query_only=1")
            cur = con.execute(
                "SELECT t.slug, COUNT(DISTINCT it.item_id) FROM item_terms it JOIN terms t ON t.id = it.term_id "
                f"WHERE t.taxonomy = ? AND it.item_id IN (SELECT items.id FROM items WHERE {q.where_sql}) "
                "GROUP BY t.slug",
                (taxonomy, *q.params),
            )
            return {str(r[0]): int(r[1]) for r in cur.fetchall()}

    def attribute_counts(self, spec: QuerySpec, key: str) -> Dict[str, int]:
        q = compile_query(spec.for_ids())
        with self._connect() as con:
            con.execute("PRAGMA query_only=1")
            cur = con.execute(
                "SELECT m.value, COUNT(DISTINCT m.item_id) FROM item_meta m "
                f"WHERE m.key = ? AND m.item_id IN (SELECT items.id FROM items WHERE {q.where_sql}) "
                "GROUP BY m.value",
                (key, *q.params),
            )
            return {str(r[0]): int(r[1]) for r in cur.fetchall()}

    def import_items(self, items: Iterable[Mapping[str, Any]], source: str = "") -> List[int]:
        """Upsert items; with a source, items that source no longer lists are removed."""
        ids: List[int] = []
        with self._connect() as con:
            for item in items:
                ids.append(self.upsert_item(item, connection=con, source=source))
            if source:
                self._retract(con, source, ids)
        return ids

    def delete_source(self, source: str) -> int:
        with self._connect() as con:
            return self._retract(con, source, [])

    @staticmethod
    def _retract(con: sqlite3.Connection, source: str, keep_ids: List[int]) -> int:
        if keep_ids:
            placeholders = ",".join(["?"] * len(keep_ids))
            cur = con.execute(f"DELETE FROM items WHERE source=? AND id NOT IN ({placeholders})", (source, *keep_ids))
        else:
            cur = con.execute("DELETE FROM items WHERE source=?", (source,))
        return cur.rowcount
