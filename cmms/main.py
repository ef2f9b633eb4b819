import os
import time
import logging
from typing import Optional, Dict, Any, List
from datetime import datetime, date, timedelta
from fastapi import FastAPI, UploadFile, File, HTTPException, Depends, Response
from fastapi.responses import HTMLResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .db import connect
from .schema_sql import SCHEMA_SQL
from .utils import normalize_payload, require_fields, require_non_negative, to_date_iso, to_int_or_none, decode_json_field
from .tables import select_rows, get_row, get_row_or_404, insert_row, update_row, delete_row
from .kpis import compute_kpis
from .predictive import is_alarm, validate_thresholds, reading_status, alarm_alert
from .preventive import advance_due_date, due_info
from .inventory import stock_status, set_counts, consume
from .importer import import_parts_csv
from .auth import (
    WRITE_ROLES,
    authenticate,
    cookie_settings,
    ensure_default_users,
    create_session,
    delete_session,
    require_role,
    require_user,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Machine CMMS")

def _env_list(name: str, default: str = "*") -> List[str]:
    # "*" o lista separada por comas
    raw = os.getenv(name, default).strip()
    if raw == "*":
        return ["*"]
    return [p.strip() for p in raw.split(",") if p.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_env_list("ALLOWED_ORIGINS"),
    allow_credentials=os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() in ("1", "true", "yes"),
    allow_methods=_env_list("CORS_ALLOW_METHODS"),
    allow_headers=_env_list("CORS_ALLOW_HEADERS"),
)

# /static/* y la página de inicio
STATIC_DIR = os.path.join(os.path.dirname(__file__), "static")
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


def ensure_machine(cur) -> None:
    n = cur.execute("SELECT COUNT(*) AS n FROM machine").fetchone()["n"]
    if n:
        return
    cur.execute(
        """
        INSERT INTO machine(name, model, manufacturer, serial_number, installation_date, location)
        VALUES (?,?,?,?,?,?)
        """,
        (
            os.getenv("MACHINE_NAME", "Machine"),
            os.getenv("MACHINE_MODEL", "N/A"),
            os.getenv("MACHINE_MANUFACTURER", "N/A"),
            os.getenv("MACHINE_SERIAL", "N/A"),
            to_date_iso(os.getenv("MACHINE_INSTALLATION_DATE")) or date.today().isoformat(),
            os.getenv("MACHINE_LOCATION"),
        ),
    )
    logger.info("Máquina inicial creada")


@app.on_event("startup")
def startup():
    # Ensure schema
    with connect() as con:
        cur = con.cursor()
        cur.executescript(SCHEMA_SQL)
        ensure_default_users(cur)
        ensure_machine(cur)
        con.commit()


def _normalize(table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return normalize_payload(table, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

def _require(data: Dict[str, Any], names: List[str], non_negative: List[str] = ()) -> None:
    try:
        require_fields(data, names)
        require_non_negative(data, non_negative)
    except ValueError as e:
        logger.warning("Solicitud rechazada: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

def _machine_id(cur) -> int:
    r = cur.execute("SELECT id FROM machine ORDER BY id LIMIT 1").fetchone()
    if not r:
        raise HTTPException(status_code=404, detail="Máquina no encontrada")
    return r["id"]


# ---------------------- Auth ----------------------
@app.post("/auth/login")
def login(payload: Dict[str, str], response: Response):
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not username or not password:
        raise HTTPException(status_code=400, detail="Usuario y contraseña requeridos")
    with connect() as con:
        cur = con.cursor()
        user = authenticate(cur, username, password)
        if user is None:
            raise HTTPException(status_code=401, detail="Credenciales inválidas")
        session = create_session(cur, user["id"])
        con.commit()
    response.set_cookie(key="session", value=session["token"], **cookie_settings())
    return {"token": session["token"], "expires_at": session["expires_at"], "user": user}


@app.post("/auth/logout")
def logout(response: Response, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        delete_session(con.cursor(), current_user["session_token"])
        con.commit()
    response.delete_cookie("session", path="/")
    return {"ok": True}


@app.get("/auth/session")
def session(current_user: Dict[str, Any] = Depends(require_user)):
    user = {k: current_user[k] for k in ("id", "username", "role")}
    return {"active": True, "user": user, "expires_at": current_user["session_expires_at"]}

@app.get("/", response_class=HTMLResponse)
def index():
    path = os.path.join(STATIC_DIR, "index.html")
    with open(path, "r", encoding="utf-8") as f:
        return HTMLResponse(f.read())

# ---------------------- Dashboard ----------------------
@app.get("/dashboard/kpis")
def dashboard_kpis(current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        records = select_rows(cur, "maintenance_records", {"status": "completed"})
        active = cur.execute("SELECT COUNT(*) AS n FROM alerts WHERE is_resolved=0").fetchone()["n"]
    return compute_kpis(records, active)

# ---------------------- Machine ----------------------
@app.get("/machine")
def get_machine(current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        return get_row_or_404(cur, "machine", _machine_id(cur))

@app.put("/machine")
def update_machine(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("machine", payload)
    if not data:
        raise HTTPException(status_code=400, detail="Sin cambios")
    for k in ["name", "model", "manufacturer", "serial_number", "installation_date", "status"]:
        if k in data and data[k] is None:
            raise HTTPException(status_code=400, detail=f"{k} requerido")
    with connect() as con:
        cur = con.cursor()
        _, after = update_row(cur, "machine", _machine_id(cur), data, current_user)
        con.commit()
        return after

# ---------------------- Parts & inventory ----------------------
def _with_stock(row: Dict[str, Any]) -> Dict[str, Any]:
    row["stock_status"] = stock_status(row)
    return row

@app.get("/parts")
def list_parts(
    search: Optional[str] = None,
    category: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(require_user),
):
    q = "SELECT * FROM v_parts_stock WHERE 1=1"
    params: Dict[str, Any] = {}
    if search:
        q += " AND (name LIKE :kw OR part_number LIKE :kw OR description LIKE :kw)"
        params["kw"] = f"%{search}%"
    if category:
        q += " AND category = :category"
        params["category"] = category
    q += " ORDER BY name"
    with connect() as con:
        rows = con.execute(q, params).fetchall()
        return [_with_stock(dict(r)) for r in rows]

@app.get("/parts/low-stock")
def list_low_stock(current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        rows = select_rows(con.cursor(), "v_parts_stock", order_by=[("name", False)])
    out = [_with_stock(r) for r in rows]
    return [r for r in out if r["stock_status"] in ("low_stock", "out_of_stock")]

@app.post("/parts/import")
async def upload_parts(
    file: UploadFile = File(...),
    current_user: Dict[str, Any] = Depends(require_role("admin")),
):
    content = await file.read()
    with connect() as con:
        try:
            result = import_parts_csv(con.cursor(), file.filename, content, current_user)
            con.commit()
            return result
        except HTTPException:
            con.rollback()
            raise
        except Exception as e:
            con.rollback()
            logger.warning("Importación fallida (%s): %s", file.filename, e)
            raise HTTPException(status_code=400, detail=str(e))

@app.post("/parts")
def create_part(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("parts", payload)
    _require(
        data,
        ["part_number", "name", "category"],
        ["unit_cost", "min_stock_level", "reorder_point", "reorder_quantity", "lead_time_days"],
    )
    with connect() as con:
        cur = con.cursor()
        part_id = insert_row(cur, "parts", data, current_user)
        # Cada repuesto nace con su registro de inventario en cero
        insert_row(cur, "part_inventory", {
            "part_id": part_id,
            "quantity_on_hand": 0,
            "quantity_reserved": 0,
            "quantity_available": 0,
        }, current_user)
        con.commit()
        return _with_stock(get_row(cur, "v_parts_stock", part_id))

@app.get("/parts/{part_id}")
def get_part(part_id: int, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        r = get_row(cur, "v_parts_stock", part_id)
        if not r:
            raise HTTPException(status_code=404, detail="Repuesto no encontrado")
        return _with_stock(r)

@app.put("/parts/{part_id}")
def update_part(part_id: int, payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("parts", payload)
    if not data:
        raise HTTPException(status_code=400, detail="Sin cambios")
    for k in ["part_number", "name", "category"]:
        if k in data and data[k] is None:
            raise HTTPException(status_code=400, detail=f"{k} requerido")
    _require(data, [], ["unit_cost", "min_stock_level", "reorder_point", "reorder_quantity", "lead_time_days"])
    with connect() as con:
        cur = con.cursor()
        update_row(cur, "parts", part_id, data, current_user)
        con.commit()
        return _with_stock(get_row(cur, "v_parts_stock", part_id))

@app.put("/parts/{part_id}/inventory")
def update_inventory(part_id: int, payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role(*WRITE_ROLES))):
    data = _normalize("part_inventory", payload)
    _require(data, ["quantity_on_hand"], ["quantity_on_hand", "quantity_reserved"])
    with connect() as con:
        cur = con.cursor()
        get_row_or_404(cur, "parts", part_id)
        inv = set_counts(
            cur, part_id, data["quantity_on_hand"], data.get("quantity_reserved"),
            data.get("location"), current_user,
        )
        con.commit()
        return inv

# ---------------------- Maintenance (work orders) ----------------------
def _check_time_order(started_at: Optional[str], completed_at: Optional[str]) -> None:
    if started_at and completed_at and completed_at < started_at:
        raise HTTPException(status_code=400, detail="completed_at no puede ser anterior a started_at")

def _parts_used(cur, record_id: int) -> List[Dict[str, Any]]:
    rows = cur.execute(
        """
        SELECT pu.*, p.part_number, p.name AS part_name
        FROM maintenance_parts_used pu
        JOIN parts p ON p.id = pu.part_id
        WHERE pu.maintenance_record_id=?
        ORDER BY pu.id
        """,
        (record_id,),
    ).fetchall()
    return [dict(r) for r in rows]

@app.get("/maintenance")
def list_maintenance(
    status: Optional[str] = None,
    maintenance_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    current_user: Dict[str, Any] = Depends(require_user),
):
    filters = {}
    if status:
        filters["status"] = status
    if maintenance_type:
        filters["maintenance_type"] = maintenance_type
    with connect() as con:
        return select_rows(
            con.cursor(), "maintenance_records", filters,
            order_by=[("created_at", True), ("id", True)], limit=limit, offset=offset,
        )

@app.post("/maintenance")
def create_maintenance(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role(*WRITE_ROLES))):
    data = _normalize("maintenance_records", payload)
    _require(data, ["maintenance_type", "failure_description"], ["labor_hours", "downtime_hours"])
    _check_time_order(data.get("started_at"), data.get("completed_at"))
    if not data.get("work_order_number"):
        data["work_order_number"] = f"WO-{int(time.time() * 1000)}"
    if not data.get("priority"):
        data["priority"] = "medium"
    if not data.get("status"):
        data["status"] = "completed" if data.get("completed_at") else "in_progress"

    parts = payload.get("parts") or []
    if not isinstance(parts, list) or not all(isinstance(e, dict) for e in parts):
        raise HTTPException(status_code=400, detail="parts debe ser una lista de {part_id, quantity}")
    requested = []
    for entry in parts:
        if entry.get("part_id") in (None, ""):
            continue
        part_id = to_int_or_none(entry["part_id"])
        if part_id is None:
            raise HTTPException(status_code=400, detail="part_id inválido")
        try:
            qty = int(entry.get("quantity", 1))
        except (TypeError, ValueError):
            qty = 0
        if qty <= 0:
            raise HTTPException(status_code=400, detail="quantity de repuesto debe ser > 0")
        requested.append((part_id, qty))

    with connect() as con:
        cur = con.cursor()
        used = []
        for part_id, qty in requested:
            used.append((get_row_or_404(cur, "parts", part_id), qty))
        data["cost"] = round(sum(p["unit_cost"] * q for p, q in used), 2)
        data["machine_id"] = _machine_id(cur)
        record_id = insert_row(cur, "maintenance_records", data, current_user)
        for part, qty in used:
            insert_row(cur, "maintenance_parts_used", {
                "maintenance_record_id": record_id,
                "part_id": part["id"],
                "quantity_used": qty,
                "cost_per_unit": part["unit_cost"],
                "total_cost": round(part["unit_cost"] * qty, 2),
            }, current_user)
            consume(cur, part, qty, current_user)
        con.commit()
        record = get_row(cur, "maintenance_records", record_id)
        record["parts_used"] = _parts_used(cur, record_id)
        return record

@app.get("/maintenance/{record_id}")
def get_maintenance(record_id: int, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        record = get_row_or_404(cur, "maintenance_records", record_id)
        record["parts_used"] = _parts_used(cur, record_id)
        return record

@app.put("/maintenance/{record_id}")
def update_maintenance(record_id: int, payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role(*WRITE_ROLES))):
    data = _normalize("maintenance_records", payload)
    if not data:
        raise HTTPException(status_code=400, detail="Sin cambios")
    for k in ["work_order_number", "maintenance_type", "priority", "status"]:
        if k in data and data[k] is None:
            raise HTTPException(status_code=400, detail=f"{k} requerido")
    _require(data, [], ["labor_hours", "downtime_hours"])
    with connect() as con:
        cur = con.cursor()
        current = get_row_or_404(cur, "maintenance_records", record_id)
        merged = {**current, **data}
        _check_time_order(merged.get("started_at"), merged.get("completed_at"))
        if data.get("completed_at") and "status" not in data:
            data["status"] = "completed"
        _, after = update_row(cur, "maintenance_records", record_id, data, current_user)
        con.commit()
        after["parts_used"] = _parts_used(cur, record_id)
        return after

@app.delete("/maintenance/{record_id}")
def delete_maintenance(record_id: int, current_user: Dict[str, Any] = Depends(require_role("admin"))):
    with connect() as con:
        cur = con.cursor()
        delete_row(cur, "maintenance_records", record_id, current_user)
        con.commit()
        return {"ok": True}

# ---------------------- Preventive schedules ----------------------
def _schedule_out(row: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    decode_json_field(row, "checklist_items", default=[])
    row.update(due_info(row, today))
    return row

@app.get("/preventive")
def list_preventive(active_only: int = 0, current_user: Dict[str, Any] = Depends(require_user)):
    filters = {"is_active": 1} if active_only else {}
    with connect() as con:
        rows = select_rows(con.cursor(), "preventive_schedules", filters, order_by=[("next_due_date", False), ("id", False)])
    return [_schedule_out(r) for r in rows]

@app.get("/preventive/due")
def list_preventive_due(days: int = 7, current_user: Dict[str, Any] = Depends(require_user)):
    if days < 0:
        raise HTTPException(status_code=400, detail="days debe ser >= 0")
    limit_date = (date.today() + timedelta(days=days)).isoformat()
    with connect() as con:
        rows = con.execute(
            "SELECT * FROM preventive_schedules WHERE is_active=1 AND next_due_date <= ? ORDER BY next_due_date, id",
            (limit_date,),
        ).fetchall()
    return [_schedule_out(dict(r)) for r in rows]

@app.post("/preventive")
def create_preventive(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("preventive_schedules", payload)
    _require(data, ["schedule_name", "frequency_type", "next_due_date"], ["estimated_duration_hours"])
    if data.get("frequency_value") is None:
        data["frequency_value"] = 1
    if data["frequency_value"] < 1:
        raise HTTPException(status_code=400, detail="frequency_value debe ser >= 1")
    with connect() as con:
        cur = con.cursor()
        data["machine_id"] = _machine_id(cur)
        schedule_id = insert_row(cur, "preventive_schedules", data, current_user)
        con.commit()
        return _schedule_out(get_row(cur, "preventive_schedules", schedule_id))

@app.put("/preventive/{schedule_id}")
def update_preventive(schedule_id: int, payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("preventive_schedules", payload)
    if not data:
        raise HTTPException(status_code=400, detail="Sin cambios")
    for k in ["schedule_name", "frequency_type", "frequency_value", "next_due_date", "is_active"]:
        if k in data and data[k] is None:
            raise HTTPException(status_code=400, detail=f"{k} requerido")
    if data.get("frequency_value") is not None and data["frequency_value"] < 1:
        raise HTTPException(status_code=400, detail="frequency_value debe ser >= 1")
    with connect() as con:
        cur = con.cursor()
        _, after = update_row(cur, "preventive_schedules", schedule_id, data, current_user)
        con.commit()
        return _schedule_out(after)

@app.delete("/preventive/{schedule_id}")
def delete_preventive(schedule_id: int, current_user: Dict[str, Any] = Depends(require_role("admin"))):
    with connect() as con:
        cur = con.cursor()
        delete_row(cur, "preventive_schedules", schedule_id, current_user)
        con.commit()
        return {"ok": True}

@app.post("/preventive/{schedule_id}/perform")
def perform_preventive(schedule_id: int, payload: Optional[Dict[str, Any]] = None, current_user: Dict[str, Any] = Depends(require_role(*WRITE_ROLES))):
    payload = payload or {}
    performed = to_date_iso(payload.get("performed_date")) if payload.get("performed_date") else date.today().isoformat()
    if not performed:
        raise HTTPException(status_code=400, detail="performed_date requerido en formato YYYY-MM-DD")
    if performed > date.today().isoformat():
        raise HTTPException(status_code=400, detail="performed_date no puede ser futuro")
    with connect() as con:
        cur = con.cursor()
        s = get_row_or_404(cur, "preventive_schedules", schedule_id)
        try:
            next_due = advance_due_date(date.fromisoformat(performed), s["frequency_type"], s["frequency_value"])
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        _, after = update_row(cur, "preventive_schedules", schedule_id, {
            "last_performed_date": performed,
            "next_due_date": next_due.isoformat(),
        }, current_user)
        con.commit()
        return _schedule_out(after)

# ---------------------- Predictive (sensor readings) ----------------------
def _reading_out(row: Dict[str, Any]) -> Dict[str, Any]:
    row["is_alarm"] = bool(row["is_alarm"])
    row["status"] = reading_status(row)
    return row

@app.get("/predictive/readings")
def list_readings(
    sensor_name: Optional[str] = None,
    alarms_only: int = 0,
    limit: int = 100,
    offset: int = 0,
    current_user: Dict[str, Any] = Depends(require_user),
):
    filters: Dict[str, Any] = {}
    if sensor_name:
        filters["sensor_name"] = sensor_name
    if alarms_only:
        filters["is_alarm"] = 1
    with connect() as con:
        rows = select_rows(
            con.cursor(), "sensor_readings", filters,
            order_by=[("reading_timestamp", True), ("id", True)], limit=limit, offset=offset,
        )
    return [_reading_out(r) for r in rows]

@app.get("/predictive/summary")
def readings_summary(current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        cur = con.cursor()
        total = cur.execute("SELECT COUNT(*) AS n FROM sensor_readings").fetchone()["n"]
        alarms = cur.execute("SELECT COUNT(*) AS n FROM sensor_readings WHERE is_alarm=1").fetchone()["n"]
        latest = select_rows(cur, "sensor_readings", order_by=[("reading_timestamp", True), ("id", True)], limit=10)
    return {"total_readings": total, "alarm_count": alarms, "latest": [_reading_out(r) for r in latest]}

@app.post("/predictive/readings")
def create_reading(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role(*WRITE_ROLES))):
    data = _normalize("sensor_readings", payload)
    _require(data, ["sensor_name", "sensor_type", "reading_value", "unit"])
    try:
        validate_thresholds(data.get("threshold_min"), data.get("threshold_max"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    data["is_alarm"] = int(is_alarm(data["reading_value"], data.get("threshold_min"), data.get("threshold_max")))
    if not data.get("reading_timestamp"):
        data["reading_timestamp"] = datetime.utcnow().replace(microsecond=0).isoformat()
    with connect() as con:
        cur = con.cursor()
        data["machine_id"] = _machine_id(cur)
        reading_id = insert_row(cur, "sensor_readings", data, current_user)
        reading = get_row(cur, "sensor_readings", reading_id)
        alert_id = None
        if reading["is_alarm"]:
            alert_id = insert_row(cur, "alerts", alarm_alert(reading), current_user)
            logger.warning("Lectura fuera de rango en %s: %s", reading["sensor_name"], reading["reading_value"])
        con.commit()
    out = _reading_out(reading)
    out["alert_id"] = alert_id
    return out

# ---------------------- Schedule (calendar) ----------------------
@app.get("/schedule/events")
def schedule_events(
    start: Optional[str] = None,
    end: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(require_user),
):
    start_d = to_date_iso(start) if start else None
    end_d = to_date_iso(end) if end else None
    if (start and not start_d) or (end and not end_d):
        raise HTTPException(status_code=400, detail="start/end en formato YYYY-MM-DD")
    with connect() as con:
        cur = con.cursor()
        schedules = select_rows(cur, "preventive_schedules", {"is_active": 1})
        records = select_rows(cur, "maintenance_records", {"status": ["open", "in_progress"]})
    events: List[Dict[str, Any]] = []
    for s in schedules:
        events.append({
            "date": s["next_due_date"][:10],
            "type": "preventive",
            "title": s["schedule_name"],
            "id": s["id"],
            "frequency": f"{s['frequency_value']} {s['frequency_type']}",
            "assigned_to": s["assigned_to"],
        })
    for r in records:
        if not r["started_at"]:
            continue
        events.append({
            "date": r["started_at"][:10],
            "type": "maintenance",
            "title": f"{r['work_order_number']} - {r['maintenance_type']}",
            "id": r["id"],
            "status": r["status"],
            "priority": r["priority"],
        })
    by_date: Dict[str, List[Dict[str, Any]]] = {}
    for e in events:
        if start_d and e["date"] < start_d:
            continue
        if end_d and e["date"] > end_d:
            continue
        by_date.setdefault(e.pop("date"), []).append(e)
    return [{"date": d, "events": by_date[d]} for d in sorted(by_date)]

# ---------------------- Vendors ----------------------
@app.get("/vendors")
def list_vendors(active_only: int = 0, current_user: Dict[str, Any] = Depends(require_user)):
    filters = {"is_active": 1} if active_only else {}
    with connect() as con:
        return select_rows(con.cursor(), "vendors", filters, order_by=[("name", False)])

@app.post("/vendors")
def create_vendor(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("vendors", payload)
    _require(data, ["name"])
    with connect() as con:
        cur = con.cursor()
        vendor_id = insert_row(cur, "vendors", data, current_user)
        con.commit()
        return get_row(cur, "vendors", vendor_id)

@app.put("/vendors/{vendor_id}")
def update_vendor(vendor_id: int, payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("vendors", payload)
    if not data:
        raise HTTPException(status_code=400, detail="Sin cambios")
    if "name" in data and not data["name"]:
        raise HTTPException(status_code=400, detail="name requerido")
    with connect() as con:
        cur = con.cursor()
        _, after = update_row(cur, "vendors", vendor_id, data, current_user)
        con.commit()
        return after

@app.delete("/vendors/{vendor_id}")
def delete_vendor(vendor_id: int, current_user: Dict[str, Any] = Depends(require_role("admin"))):
    with connect() as con:
        cur = con.cursor()
        delete_row(cur, "vendors", vendor_id, current_user)
        con.commit()
        return {"ok": True}

# ---------------------- Purchases ----------------------
PO_STATUSES = {"pending", "ordered", "delivered", "cancelled"}

@app.get("/purchases")
def list_purchases(status: Optional[str] = None, current_user: Dict[str, Any] = Depends(require_user)):
    filters = {"status": status} if status else {}
    with connect() as con:
        return select_rows(con.cursor(), "v_purchase_list", filters, order_by=[("order_date", True), ("id", True)])

@app.get("/purchases/summary")
def purchases_summary(current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        r = con.execute(
            "SELECT COUNT(*) AS n, COALESCE(SUM(total_price), 0) AS total FROM purchase_orders WHERE status='pending'"
        ).fetchone()
    return {"pending_count": r["n"], "pending_total": round(float(r["total"]), 2)}

@app.get("/purchases/{po_id}")
def get_purchase(po_id: int, current_user: Dict[str, Any] = Depends(require_user)):
    with connect() as con:
        r = get_row(con.cursor(), "v_purchase_list", po_id)
        if not r:
            raise HTTPException(status_code=404, detail="Orden de compra no encontrada")
        return r

@app.post("/purchases")
def create_purchase(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("purchase_orders", payload)
    if not data.get("part_id") or not data.get("vendor_id"):
        raise HTTPException(status_code=400, detail="Seleccione un repuesto y un proveedor")
    _require(data, ["po_number", "order_date", "quantity", "unit_price"], ["unit_price"])
    if data["quantity"] <= 0:
        raise HTTPException(status_code=400, detail="quantity debe ser > 0")
    if data.get("expected_delivery_date") and data["expected_delivery_date"] < data["order_date"]:
        raise HTTPException(status_code=400, detail="expected_delivery_date anterior a order_date")
    data["total_price"] = round(data["quantity"] * data["unit_price"], 2)
    data["status"] = "pending"
    with connect() as con:
        cur = con.cursor()
        get_row_or_404(cur, "parts", data["part_id"])
        get_row_or_404(cur, "vendors", data["vendor_id"])
        po_id = insert_row(cur, "purchase_orders", data, current_user)
        con.commit()
        return get_row(cur, "v_purchase_list", po_id)

@app.put("/purchases/{po_id}/status")
def update_purchase_status(po_id: int, payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    status = payload.get("status")
    if not isinstance(status, str):
        raise HTTPException(status_code=400, detail="status requerido")
    status = status.strip().lower()
    if status not in PO_STATUSES:
        raise HTTPException(status_code=400, detail=f"status inválido '{status}'")
    values: Dict[str, Any] = {"status": status}
    if status == "delivered":
        values["actual_delivery_date"] = date.today().isoformat()
    with connect() as con:
        cur = con.cursor()
        update_row(cur, "purchase_orders", po_id, values, current_user)
        con.commit()
        return get_row(cur, "v_purchase_list", po_id)

# ---------------------- Alerts ----------------------
def _alert_out(row: Dict[str, Any]) -> Dict[str, Any]:
    row["is_read"] = bool(row["is_read"])
    row["is_resolved"] = bool(row["is_resolved"])
    return row

@app.get("/alerts")
def list_alerts(unresolved_only: int = 0, current_user: Dict[str, Any] = Depends(require_user)):
    filters = {"is_resolved": 0} if unresolved_only else {}
    with connect() as con:
        rows = select_rows(con.cursor(), "alerts", filters, order_by=[("created_at", True), ("id", True)])
    return [_alert_out(r) for r in rows]

@app.post("/alerts")
def create_alert(payload: Dict[str, Any], current_user: Dict[str, Any] = Depends(require_role("admin"))):
    data = _normalize("alerts", payload)
    _require(data, ["alert_type", "title", "message"])
    with connect() as con:
        cur = con.cursor()
        alert_id = insert_row(cur, "alerts", data, current_user)
        con.commit()
        return _alert_out(get_row(cur, "alerts", alert_id))

@app.post("/alerts/{alert_id}/read")
def mark_alert_read(alert_id: int, current_user: Dict[str, Any] = Depends(require_role(*WRITE_ROLES))):
    with connect() as con:
        cur = con.cursor()
        _, after = update_row(cur, "alerts", alert_id, {"is_read": 1}, current_user)
        con.commit()
        return _alert_out(after)

@app.post("/alerts/{alert_id}/resolve")
def resolve_alert(alert_id: int, current_user: Dict[str, Any] = Depends(require_role(*WRITE_ROLES))):
    with connect() as con:
        cur = con.cursor()
        a = get_row_or_404(cur, "alerts", alert_id)
        if a["is_resolved"]:
            return _alert_out(a)
        _, after = update_row(cur, "alerts", alert_id, {
            "is_resolved": 1,
            "resolved_at": datetime.utcnow().replace(microsecond=0).isoformat(),
        }, current_user)
        con.commit()
        return _alert_out(after)

# ---------------------- Audit ----------------------
@app.get("/audit")
def get_audit(
    table_name: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    current_user: Dict[str, Any] = Depends(require_user),
):
    """
    Devuelve eventos del ledger (más recientes primero), opcionalmente
    filtrados por tabla.
    """
    filters = {"table_name": table_name} if table_name else {}
    with connect() as con:
        rows = select_rows(con.cursor(), "data_ledger", filters, order_by=[("ts", True), ("id", True)], limit=limit, offset=offset)
    return [decode_json_field(r, "details", default={}) for r in rows]
