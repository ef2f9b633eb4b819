"""Generic row-level access to the CMMS tables.

Every page operation goes through these helpers: one select / insert /
update / delete against a named table, with each mutation appended to
``data_ledger`` together with the acting user.
"""
import re
import sqlite3
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException

from .utils import diff_rows, json_dumps

logger = logging.getLogger(__name__)

TABLES = {
    "machine", "parts", "part_inventory", "maintenance_records",
    "maintenance_parts_used", "preventive_schedules", "sensor_readings",
    "vendors", "purchase_orders", "alerts", "data_ledger",
}
VIEWS = {"v_parts_stock", "v_purchase_list"}

# Tablas con columna updated_at
TIMESTAMPED = {
    "machine", "parts", "part_inventory", "maintenance_records",
    "preventive_schedules", "vendors", "purchase_orders",
}

NOT_FOUND_LABELS = {
    "machine": "Máquina no encontrada",
    "parts": "Repuesto no encontrado",
    "part_inventory": "Inventario no encontrado",
    "maintenance_records": "Orden de trabajo no encontrada",
    "preventive_schedules": "Plan preventivo no encontrado",
    "sensor_readings": "Lectura no encontrada",
    "vendors": "Proveedor no encontrado",
    "purchase_orders": "Orden de compra no encontrada",
    "alerts": "Alerta no encontrada",
}

_IDENT = re.compile(r"^[a-z_][a-z0-9_]*$")


def _check_table(table: str, readable: bool = False) -> None:
    if table in TABLES or (readable and table in VIEWS):
        return
    raise ValueError(f"Tabla desconocida: {table}")


def _check_columns(cols) -> None:
    for c in cols:
        if not _IDENT.match(c):
            raise ValueError(f"Columna inválida: {c}")


def log_ledger(cur, table_name: str, action: str, row_id: Optional[int], details: Dict[str, Any], actor: Optional[Dict[str, Any]] = None) -> None:
    actor_user_id = None
    actor_username = None
    if actor:
        try:
            actor_user_id = int(actor.get("id"))
        except (TypeError, ValueError):
            actor_user_id = None
        actor_username = actor.get("username")
    cur.execute(
        "INSERT INTO data_ledger(table_name, action, row_id, actor_user_id, actor_username, details) VALUES (?,?,?,?,?,?)",
        (table_name, action, row_id, actor_user_id, actor_username, json_dumps(details))
    )


def select_rows(
    cur,
    table: str,
    filters: Optional[Dict[str, Any]] = None,
    order_by: Optional[Sequence[Tuple[str, bool]]] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Equality filters (a list/tuple/set value becomes ``IN``); ``order_by``
    is a sequence of ``(column, descending)`` pairs."""
    _check_table(table, readable=True)
    filters = filters or {}
    _check_columns(filters.keys())
    q = f"SELECT * FROM {table}"
    params: Dict[str, Any] = {}
    where = []
    for k, v in filters.items():
        if isinstance(v, (list, tuple, set)):
            names = []
            for i, item in enumerate(v):
                params[f"{k}_{i}"] = item
                names.append(f":{k}_{i}")
            where.append(f"{k} IN ({','.join(names) or 'NULL'})")
        elif v is None:
            where.append(f"{k} IS NULL")
        else:
            params[k] = v
            where.append(f"{k} = :{k}")
    if where:
        q += " WHERE " + " AND ".join(where)
    if order_by:
        _check_columns(c for c, _ in order_by)
        q += " ORDER BY " + ", ".join(f"{c} {'DESC' if d else 'ASC'}" for c, d in order_by)
    if limit is not None:
        q += " LIMIT :limit OFFSET :offset"
        params.update({"limit": limit, "offset": offset})
    return [dict(r) for r in cur.execute(q, params).fetchall()]


def get_row(cur, table: str, row_id: int) -> Optional[Dict[str, Any]]:
    _check_table(table, readable=True)
    r = cur.execute(f"SELECT * FROM {table} WHERE id=?", (row_id,)).fetchone()
    return dict(r) if r else None


def get_row_or_404(cur, table: str, row_id: int) -> Dict[str, Any]:
    r = get_row(cur, table, row_id)
    if r is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_LABELS.get(table, "Registro no encontrado"))
    return r


def insert_row(cur, table: str, values: Dict[str, Any], actor: Optional[Dict[str, Any]] = None) -> int:
    _check_table(table)
    # Los NULL se omiten para que apliquen los DEFAULT de la tabla
    values = {k: v for k, v in values.items() if v is not None}
    _check_columns(values.keys())
    cols = ",".join(values.keys())
    vals = ":" + ",:".join(values.keys())
    try:
        cur.execute(f"INSERT INTO {table}({cols}) VALUES ({vals})", values)
    except sqlite3.IntegrityError as e:
        logger.warning("Inserción rechazada en %s: %s", table, e)
        raise HTTPException(status_code=409, detail=f"Conflicto al insertar en {table}: {e}")
    row_id = cur.lastrowid
    log_ledger(cur, table, "INSERT", row_id, {"action": "INSERT", "table": table, "values": values}, actor)
    logger.info("%s #%s creado", table, row_id)
    return row_id


def update_row(cur, table: str, row_id: int, values: Dict[str, Any], actor: Optional[Dict[str, Any]] = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Apply ``values`` to one row and return ``(before, after)``."""
    _check_table(table)
    _check_columns(values.keys())
    before = get_row_or_404(cur, table, row_id)
    if not values:
        return before, before
    sets = [f"{k}=:{k}" for k in values.keys()]
    if table in TIMESTAMPED:
        sets.append("updated_at=datetime('now')")
    try:
        cur.execute(f"UPDATE {table} SET " + ", ".join(sets) + " WHERE id=:id", {**values, "id": row_id})
    except sqlite3.IntegrityError as e:
        logger.warning("Actualización rechazada en %s #%s: %s", table, row_id, e)
        raise HTTPException(status_code=409, detail=f"Conflicto al actualizar {table}: {e}")
    after = get_row(cur, table, row_id)
    changed = diff_rows(before, after)
    changed.pop("updated_at", None)
    if changed:
        log_ledger(cur, table, "UPDATE", row_id, {"action": "UPDATE", "table": table, "diff": changed}, actor)
    return before, after


def delete_row(cur, table: str, row_id: int, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    _check_table(table)
    before = get_row_or_404(cur, table, row_id)
    try:
        cur.execute(f"DELETE FROM {table} WHERE id=?", (row_id,))
    except sqlite3.IntegrityError as e:
        logger.warning("Borrado rechazado en %s #%s: %s", table, row_id, e)
        raise HTTPException(status_code=409, detail=f"No se puede borrar: el registro está referenciado ({table})")
    log_ledger(cur, table, "DELETE", row_id, {"action": "DELETE", "table": table, "values": before}, actor)
    logger.info("%s #%s borrado", table, row_id)
    return before
