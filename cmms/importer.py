import io
import logging
from typing import List, Dict, Any, Optional

import pandas as pd

from .tables import insert_row, update_row, select_rows
from .inventory import available_quantity
from .utils import sha256_bytes

logger = logging.getLogger(__name__)

def strip_or_none(x):
    if pd.isna(x):
        return None
    s = str(x).strip().replace("\t","")
    return s if s != "" else None

def upper_or_none(x):
    s = strip_or_none(x)
    return s.upper() if s else None

def to_int_or_none(x):
    if pd.isna(x) or x == "":
        return None
    try:
        if isinstance(x, str):
            x = x.replace(",", "")
        return int(float(x))
    except (TypeError, ValueError):
        return None

def to_float_or_none(x):
    if pd.isna(x) or x == "":
        return None
    try:
        if isinstance(x, str):
            x = x.replace(",", "").replace("$", "")
        return float(x)
    except (TypeError, ValueError):
        return None

REQUIRED_COLS = ['Part Number', 'Name', 'Category']

OPTIONAL_COLS = [
    'Description', 'Unit Cost', 'Unit Of Measure', 'Min Stock Level', 'Reorder Point',
    'Reorder Quantity', 'Lead Time Days', 'Supplier Part Number', 'Specifications',
    'Quantity On Hand',
]

INT_FIELDS = ["min_stock_level", "reorder_point", "reorder_quantity", "lead_time_days", "quantity_on_hand"]

def sanitize_dataframe(df: pd.DataFrame) -> pd.DataFrame:
    # Columnas opcionales ausentes se tratan como vacías
    for c in OPTIONAL_COLS:
        if c not in df.columns:
            df[c] = None
    san = pd.DataFrame()
    san["part_number"] = df["Part Number"].map(upper_or_none)
    san["name"] = df["Name"].map(strip_or_none)
    san["category"] = df["Category"].map(strip_or_none)
    san["description"] = df["Description"].map(strip_or_none)
    san["unit_cost"] = df["Unit Cost"].map(to_float_or_none)
    san["unit_of_measure"] = df["Unit Of Measure"].map(strip_or_none)
    san["min_stock_level"] = df["Min Stock Level"].map(to_int_or_none)
    san["reorder_point"] = df["Reorder Point"].map(to_int_or_none)
    san["reorder_quantity"] = df["Reorder Quantity"].map(to_int_or_none)
    san["lead_time_days"] = df["Lead Time Days"].map(to_int_or_none)
    san["supplier_part_number"] = df["Supplier Part Number"].map(strip_or_none)
    san["specifications"] = df["Specifications"].map(strip_or_none)
    san["quantity_on_hand"] = df["Quantity On Hand"].map(to_int_or_none)
    return san

def to_records(san: pd.DataFrame) -> List[Dict[str, Any]]:
    # NaN de pandas pasa a None antes de validar o insertar
    records = []
    for rec in san.to_dict("records"):
        row = {k: (None if pd.isna(v) else v) for k, v in rec.items()}
        for field in INT_FIELDS:
            if row[field] is not None:
                row[field] = int(row[field])
        records.append(row)
    return records

def validate_rows(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    errors: List[Dict[str, Any]] = []
    def add_error(i, field, msg, severity="error"):
        errors.append({"row_index": int(i), "field": field, "message": msg, "severity": severity})
    seen = set()
    for i, row in enumerate(records):
        for field in ["part_number", "name", "category"]:
            if not row[field]:
                add_error(i, field, f"{field} es requerido.")
        for field in INT_FIELDS + ["unit_cost"]:
            v = row[field]
            if v is not None and v < 0:
                add_error(i, field, "Debe ser >= 0.")
        pn = row["part_number"]
        if pn:
            if pn in seen:
                add_error(i, "part_number", f"Part Number duplicado en el archivo '{pn}'.")
            seen.add(pn)
        if row["unit_cost"] is None:
            add_error(i, "unit_cost", "Sin costo unitario; se usará 0.", "warning")
    return errors

def _part_values(row: Dict[str, Any]) -> Dict[str, Any]:
    values = {
        "part_number": row["part_number"],
        "name": row["name"],
        "category": row["category"],
        "description": row["description"],
        "supplier_part_number": row["supplier_part_number"],
        "specifications": row["specifications"],
    }
    for field in ["unit_cost", "unit_of_measure", "min_stock_level", "reorder_point", "reorder_quantity", "lead_time_days"]:
        if row[field] is not None:
            values[field] = row[field]
    return values

def import_parts_csv(cur, file_name: str, content: bytes, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Upsert the parts catalog from a CSV export.

    Rows with hard errors are skipped; new parts get an inventory row
    seeded from the optional "Quantity On Hand" column.
    """
    df = pd.read_csv(io.BytesIO(content), dtype=str)
    missing = [c for c in REQUIRED_COLS if c not in df.columns]
    if missing:
        raise ValueError(f"Faltan columnas esperadas: {missing}")
    san = sanitize_dataframe(df)
    records = to_records(san)
    errors = validate_rows(records)
    hard_error_rows = set(e["row_index"] for e in errors if e["severity"] == "error")

    inserted = 0
    updated = 0
    for i, rec in enumerate(records):
        if i in hard_error_rows:
            continue
        values = _part_values(rec)
        existing = select_rows(cur, "parts", {"part_number": rec["part_number"]})
        if existing:
            update_row(cur, "parts", existing[0]["id"], values, actor)
            updated += 1
            continue
        part_id = insert_row(cur, "parts", values, actor)
        on_hand = rec["quantity_on_hand"] or 0
        insert_row(cur, "part_inventory", {
            "part_id": part_id,
            "quantity_on_hand": on_hand,
            "quantity_reserved": 0,
            "quantity_available": available_quantity(on_hand, 0),
        }, actor)
        inserted += 1

    logger.info("Importación %s: %d nuevos, %d actualizados, %d errores", file_name, inserted, updated, len(errors))
    return {
        "file_name": file_name,
        "file_sha256": sha256_bytes(content),
        "total_rows": len(records),
        "inserted_rows": int(inserted),
        "updated_rows": int(updated),
        "skipped_rows": int(len(hard_error_rows)),
        "errors": errors,
        "status": "loaded" if not hard_error_rows else "partial",
    }
