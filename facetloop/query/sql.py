from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .builder import (
    AttributeMatch,
    Constraint,
    Group,
    IdsIn,
    PostTypeIs,
    QuerySpec,
    StatusIn,
    TermMatch,
)


ORDER_COLUMNS = {
    "date": "items.date_ts",
    "modified": "items.modified_ts",
    "title": "items.title COLLATE NOCASE",
    "name": "items.slug",
    "author": "items.author COLLATE NOCASE",
    "parent": "items.parent_id",
    "menu_order": "items.menu_order",
    "comment_count": "items.comment_count",
    "ID": "items.id",
    "rand": "RANDOM()",
}


@dataclass
class CompiledQuery:
    where_sql: str
    params: List[object]
    order_sql: str


def _placeholders(values: Sequence[object]) -> str:
    return ",".join(["?"] * len(values))


def _like_pattern(text: str) -> str:
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _attribute_condition(c: AttributeMatch) -> Tuple[str, List[object]]:
    column = "m.num" if c.numeric else "m.value"
    values: List[object] = [float(v) for v in c.values] if c.numeric else list(c.values)
    if c.op == "EXISTS":
        return "", []
    if c.op == "IN":
        return f"{column} IN ({_placeholders(values)})", values
    if c.op in ("=", ">", ">=", "<", "<="):
        return f"{column} {c.op} ?", values[:1]
    if c.op == "BETWEEN":
        return f"{column} BETWEEN ? AND ?", values[:2]
    if c.op == "CONTAINS":
        clauses = " OR ".join(["LOWER(m.value) LIKE ? ESCAPE '\\'"] * len(c.values))
        return f"({clauses})", [_like_pattern(v) for v in c.values]
    raise AssertionError(f"unhandled attribute op {c.op!r}")


def compile_constraint(c: Constraint) -> Tuple[str, List[object]]:
    """Translate one constraint node into a WHERE fragment over ``items``.

    An empty fragment means the node imposes nothing.
    """
    if isinstance(c, PostTypeIs):
        return "items.post_type = ?", [c.post_type]
    if isinstance(c, StatusIn):
        return f"items.status IN ({_placeholders(c.statuses)})", list(c.statuses)
    if isinstance(c, IdsIn):
        neg = "NOT " if c.negate else ""
        return f"items.id {neg}IN ({_placeholders(c.ids)})", list(c.ids)
    if isinstance(c, TermMatch):
        neg = "NOT " if c.negate else ""
        column = "t.id" if c.field == "id" else "t.slug"
        values: List[object] = [int(v) for v in c.values] if c.field == "id" else list(c.values)
        sql = (
            f"items.id {neg}IN (SELECT it.item_id FROM item_terms it JOIN terms t ON t.id = it.term_id "
            f"WHERE t.taxonomy = ? AND {column} IN ({_placeholders(values)}))"
        )
        return sql, [c.taxonomy, *values]
    if isinstance(c, AttributeMatch):
        neg = "NOT " if c.negate else ""
        cond, params = _attribute_condition(c)
        cond_sql = f" AND {cond}" if cond else ""
        sql = f"items.id {neg}IN (SELECT m.item_id FROM item_meta m WHERE m.key = ?{cond_sql})"
        return sql, [c.key, *params]
    if isinstance(c, Group):
        parts: List[str] = []
        params: List[object] = []
        for child in c.children:
            sql, p = compile_constraint(child)
            if sql:
                parts.append(sql)
                params.extend(p)
        if not parts:
            return "", []
        if len(parts) == 1:
            return parts[0], params
        return "(" + f" {c.relation.value} ".join(parts) + ")", params
    raise AssertionError(f"unhandled constraint {c!r}")


def compile_query(spec: QuerySpec) -> CompiledQuery:
    where: List[str] = []
    params: List[object] = []
    # Base constraints and the selection group are always joined with AND
    for node in (*spec.base, spec.selection):
        sql, p = compile_constraint(node)
        if sql:
            where.append(sql)
            params.extend(p)
    where_sql = " AND ".join(where) if where else "1"
    column = ORDER_COLUMNS.get(spec.order.key, ORDER_COLUMNS["date"])
    direction = "ASC" if spec.order.direction == "ASC" else "DESC"
    order_sql = column if column == "RANDOM()" else f"{column} {direction}, items.id {direction}"
    return CompiledQuery(where_sql=where_sql, params=params, order_sql=order_sql)
