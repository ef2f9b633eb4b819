import json
import hashlib
from datetime import datetime, date
from typing import Optional, Dict, Any, Iterable

import pandas as pd

def sha256_bytes(b: bytes) -> str:
    h = hashlib.sha256()
    h.update(b)
    return h.hexdigest()

def strip_or_none(x: Optional[str]):
    if x is None:
        return None
    s = str(x).strip().replace("\t", "")
    return s if s else None

def to_int_or_none(x):
    if x is None or x == "":
        return None
    try:
        if isinstance(x, str):
            x = x.replace(",", "")
        return int(float(x))
    except (TypeError, ValueError):
        return None

def to_float_or_none(x):
    if x is None or x == "":
        return None
    try:
        if isinstance(x, str):
            x = x.replace(",", "")
        return float(x)
    except (TypeError, ValueError):
        return None

def to_bool_int(x):
    if x in (True, False, 0, 1, "0", "1"):
        return int(x) if not isinstance(x, bool) else int(x)
    if isinstance(x, str) and x.strip().lower() in ("true", "false"):
        return 1 if x.strip().lower() == "true" else 0
    return None

def _to_timestamp(x, utc: bool = False):
    if not isinstance(x, (str, date, datetime)):
        return None
    if str(x).strip() == "":
        return None
    ts = pd.to_datetime(x, errors="coerce", utc=utc)
    return None if pd.isna(ts) else ts

def to_date_iso(x: Optional[str]):
    ts = _to_timestamp(x)
    return ts.date().isoformat() if ts is not None else None

def to_datetime_iso(x: Optional[str]):
    # Con zona horaria se convierte a UTC; sin zona se asume UTC
    ts = _to_timestamp(x, utc=True)
    if ts is None:
        return None
    return ts.tz_convert(None).floor("s").isoformat()

def to_text_list(x):
    # Acepta lista o texto con un ítem por línea
    if x is None:
        return None
    if isinstance(x, str):
        items = [s.strip() for s in x.split("\n")]
    elif isinstance(x, (list, tuple)):
        items = [str(s).strip() for s in x if s is not None]
    else:
        return None
    items = [s for s in items if s]
    return json.dumps(items, ensure_ascii=False) if items else None

TEXT, INT, FLOAT, BOOL, DATE, DATETIME, LIST = "text", "int", "float", "bool", "date", "datetime", "list"

_CONVERTERS = {
    TEXT: strip_or_none,
    INT: to_int_or_none,
    FLOAT: to_float_or_none,
    BOOL: to_bool_int,
    DATE: to_date_iso,
    DATETIME: to_datetime_iso,
    LIST: to_text_list,
}

# Campos editables por tabla (el resto se ignora)
TABLE_FIELDS: Dict[str, Dict[str, str]] = {
    "machine": {
        "name": TEXT, "model": TEXT, "manufacturer": TEXT, "serial_number": TEXT,
        "installation_date": DATE, "location": TEXT, "description": TEXT,
        "image_url": TEXT, "status": TEXT,
    },
    "parts": {
        "part_number": TEXT, "name": TEXT, "description": TEXT, "category": TEXT,
        "unit_cost": FLOAT, "unit_of_measure": TEXT, "min_stock_level": INT,
        "reorder_point": INT, "reorder_quantity": INT, "lead_time_days": INT,
        "supplier_part_number": TEXT, "specifications": TEXT,
    },
    "part_inventory": {
        "quantity_on_hand": INT, "quantity_reserved": INT, "location": TEXT,
    },
    "maintenance_records": {
        "work_order_number": TEXT, "maintenance_type": TEXT, "priority": TEXT,
        "status": TEXT, "failure_description": TEXT, "root_cause": TEXT,
        "corrective_action": TEXT, "labor_hours": FLOAT, "downtime_hours": FLOAT,
        "parts_replaced": TEXT, "reported_by": TEXT, "assigned_to": TEXT,
        "started_at": DATETIME, "completed_at": DATETIME,
        "next_maintenance_date": DATE, "notes": TEXT,
    },
    "preventive_schedules": {
        "schedule_name": TEXT, "description": TEXT, "frequency_type": TEXT,
        "frequency_value": INT, "next_due_date": DATE, "last_performed_date": DATE,
        "assigned_to": TEXT, "estimated_duration_hours": FLOAT,
        "checklist_items": LIST, "is_active": BOOL,
    },
    "sensor_readings": {
        "sensor_name": TEXT, "sensor_type": TEXT, "reading_value": FLOAT,
        "unit": TEXT, "threshold_min": FLOAT, "threshold_max": FLOAT,
        "reading_timestamp": DATETIME, "notes": TEXT,
    },
    "vendors": {
        "name": TEXT, "contact_person": TEXT, "email": TEXT, "phone": TEXT,
        "address": TEXT, "website": TEXT, "notes": TEXT, "is_active": BOOL,
    },
    "purchase_orders": {
        "po_number": TEXT, "part_id": INT, "vendor_id": INT, "order_date": DATE,
        "expected_delivery_date": DATE, "quantity": INT, "unit_price": FLOAT,
        "notes": TEXT,
    },
    "alerts": {
        "alert_type": TEXT, "severity": TEXT, "title": TEXT, "message": TEXT,
        "related_entity_type": TEXT, "related_entity_id": INT,
    },
}

# Valores permitidos para columnas de estado/tipo
CHOICES: Dict[str, Dict[str, set]] = {
    "machine": {"status": {"operational", "maintenance", "down", "decommissioned"}},
    "maintenance_records": {
        "maintenance_type": {"corrective", "preventive", "predictive"},
        "priority": {"low", "medium", "high", "critical"},
        "status": {"open", "in_progress", "completed", "cancelled"},
    },
    "preventive_schedules": {"frequency_type": {"daily", "weekly", "monthly", "quarterly", "yearly"}},
    "sensor_readings": {"sensor_type": {"temperature", "vibration", "pressure", "humidity", "flow", "speed", "power"}},
    "purchase_orders": {"status": {"pending", "ordered", "delivered", "cancelled"}},
    "alerts": {"severity": {"info", "warning", "critical"}},
}

def normalize_payload(table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the known fields of ``table`` and coerce their types.

    Choice columns are lowercased and checked; an invalid value raises
    ValueError naming the field.
    """
    fields = TABLE_FIELDS[table]
    out = {}
    for k, v in payload.items():
        kind = fields.get(k)
        if kind is None:
            continue
        out[k] = _CONVERTERS[kind](v)
    for k, allowed in CHOICES.get(table, {}).items():
        if k in out and out[k] is not None:
            out[k] = out[k].lower()
            if out[k] not in allowed:
                raise ValueError(f"{k} inválido '{out[k]}'")
    return out

def require_fields(data: Dict[str, Any], names: Iterable[str]) -> None:
    missing = [n for n in names if data.get(n) is None]
    if missing:
        raise ValueError("Campos requeridos: " + ", ".join(missing))

def require_non_negative(data: Dict[str, Any], names: Iterable[str]) -> None:
    for n in names:
        v = data.get(n)
        if v is not None and v < 0:
            raise ValueError(f"{n} inválido (no negativo)")

def diff_rows(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    changed = {}
    keys = set(before.keys()) | set(after.keys())
    for k in keys:
        if before.get(k) != after.get(k):
            changed[k] = {"from": before.get(k), "to": after.get(k)}
    return changed

def json_dumps(obj) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)

def decode_json_field(row: Dict[str, Any], field: str, default=None) -> Dict[str, Any]:
    raw = row.get(field)
    try:
        row[field] = json.loads(raw) if raw else default
    except (TypeError, ValueError):
        row[field] = {"raw": raw}
    return row
