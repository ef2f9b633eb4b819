"""Dashboard statistics for the machine.

All figures come from completed work orders; the observation window is a
fixed calendar year of operation.
"""
from typing import Any, Dict, List, Optional

import pandas as pd

HOURS_PER_YEAR = 24 * 365


def _fmt_hours(v: Optional[float], empty: str) -> str:
    return empty if v is None else f"{v:.1f} hrs"


def _col(df: pd.DataFrame, name: str) -> pd.Series:
    if name in df:
        return df[name]
    return pd.Series([None] * len(df), index=df.index, dtype="object")


def repair_hours(records: pd.DataFrame) -> pd.Series:
    """Hours between started_at and completed_at for rows having both."""
    if records.empty or "started_at" not in records or "completed_at" not in records:
        return pd.Series(dtype="float64")
    started = pd.to_datetime(records["started_at"], errors="coerce")
    completed = pd.to_datetime(records["completed_at"], errors="coerce")
    delta = (completed - started).dropna()
    return delta.dt.total_seconds() / 3600.0


def compute_kpis(completed_records: List[Dict[str, Any]], active_alerts: int = 0) -> Dict[str, Any]:
    df = pd.DataFrame(completed_records)
    if df.empty:
        return {
            "mtbf_hours": None,
            "mttr_hours": None,
            "availability_pct": None,
            "total_cost": 0.0,
            "active_alerts": int(active_alerts),
            "failures": 0,
            "completed_records": 0,
            "display": {
                "mtbf": "No data",
                "mttr": "No data",
                "availability": "No data",
                "total_cost": "$0.00",
            },
        }

    failures = int((_col(df, "maintenance_type") == "corrective").sum())
    downtime = pd.to_numeric(_col(df, "downtime_hours"), errors="coerce").fillna(0).sum()
    cost = pd.to_numeric(_col(df, "cost"), errors="coerce").fillna(0).sum()

    # Con una sola falla no hay intervalo entre fallas
    mtbf = HOURS_PER_YEAR / failures if failures > 1 else None
    repairs = repair_hours(df)
    mttr = float(repairs.mean()) if len(repairs) else 0.0
    availability = (HOURS_PER_YEAR - float(downtime)) / HOURS_PER_YEAR * 100

    return {
        "mtbf_hours": round(mtbf, 1) if mtbf is not None else None,
        "mttr_hours": round(mttr, 1),
        "availability_pct": round(availability, 1),
        "total_cost": round(float(cost), 2),
        "active_alerts": int(active_alerts),
        "failures": failures,
        "completed_records": int(len(df)),
        "display": {
            "mtbf": _fmt_hours(mtbf, "N/A"),
            "mttr": _fmt_hours(mttr, "N/A"),
            "availability": f"{availability:.1f}%",
            "total_cost": f"${cost:,.2f}",
        },
    }
