import os
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException

from .tables import select_rows, update_row, insert_row

logger = logging.getLogger(__name__)

LOW_STOCK_ALERTS = os.getenv("LOW_STOCK_ALERTS", "true").lower() in ("1", "true", "yes")


def available_quantity(on_hand: int, reserved: int) -> int:
    return max(0, int(on_hand or 0) - int(reserved or 0))


def stock_status(part: Dict[str, Any]) -> str:
    """``part`` is a ``v_parts_stock`` row (inventory columns may be NULL)."""
    if part.get("inventory_id") is None:
        return "no_data"
    qty = part.get("quantity_available") or 0
    if qty <= 0:
        return "out_of_stock"
    if qty <= (part.get("reorder_point") or 0):
        return "low_stock"
    return "in_stock"


def get_inventory(cur, part_id: int) -> Optional[Dict[str, Any]]:
    rows = select_rows(cur, "part_inventory", {"part_id": part_id})
    return rows[0] if rows else None


def set_counts(cur, part_id: int, quantity_on_hand: int, quantity_reserved: Optional[int] = None,
               location: Optional[str] = None, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    inv = get_inventory(cur, part_id)
    if inv is None:
        raise HTTPException(status_code=404, detail="No existe registro de inventario para el repuesto")
    reserved = inv["quantity_reserved"] if quantity_reserved is None else quantity_reserved
    values = {
        "quantity_on_hand": quantity_on_hand,
        "quantity_reserved": reserved,
        "quantity_available": available_quantity(quantity_on_hand, reserved),
    }
    if location is not None:
        values["location"] = location
    update_row(cur, "part_inventory", inv["id"], values, actor)
    cur.execute("UPDATE part_inventory SET last_counted_at=datetime('now') WHERE id=?", (inv["id"],))
    return get_inventory(cur, part_id)


def consume(cur, part: Dict[str, Any], quantity: int, actor: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Take ``quantity`` units of ``part`` out of stock (never below zero).

    Returns the updated inventory row, or None when the part has no
    inventory record. Raises a low-stock alert when the available quantity
    reaches the part's reorder point.
    """
    inv = get_inventory(cur, part["id"])
    if inv is None:
        logger.warning("Repuesto %s sin inventario; no se descuenta stock", part["part_number"])
        return None
    on_hand = max(0, inv["quantity_on_hand"] - int(quantity))
    available = available_quantity(on_hand, inv["quantity_reserved"])
    _, after = update_row(cur, "part_inventory", inv["id"], {
        "quantity_on_hand": on_hand,
        "quantity_available": available,
    }, actor)
    if LOW_STOCK_ALERTS and available <= (part.get("reorder_point") or 0):
        raise_low_stock_alert(cur, part, available, actor)
    return after


def raise_low_stock_alert(cur, part: Dict[str, Any], available: int, actor: Optional[Dict[str, Any]] = None) -> int:
    """Create or refresh the part's open ``low_stock`` alert and return its id.

    A part keeps at most one unresolved low-stock alert; later consumptions
    update its message and severity instead of adding another.
    """
    values = {
        "severity": "critical" if available <= 0 else "warning",
        "title": f"Stock bajo: {part['name']}" if available > 0 else f"Sin stock: {part['name']}",
        "message": (
            f"{part['part_number']} disponible {available} {part.get('unit_of_measure') or ''} "
            f"(punto de pedido {part.get('reorder_point') or 0}, pedir {part.get('reorder_quantity') or 0})"
        ).replace("  ", " "),
    }
    open_alerts = select_rows(cur, "alerts", {
        "alert_type": "low_stock",
        "related_entity_type": "part",
        "related_entity_id": part["id"],
        "is_resolved": 0,
    })
    if open_alerts:
        update_row(cur, "alerts", open_alerts[0]["id"], values, actor)
        return open_alerts[0]["id"]
    return insert_row(cur, "alerts", {
        "alert_type": "low_stock",
        "related_entity_type": "part",
        "related_entity_id": part["id"],
        **values,
    }, actor)
