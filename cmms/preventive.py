from datetime import date
from typing import Any, Dict, Optional

import pandas as pd

# Desplazamiento de calendario por unidad de frecuencia
FREQUENCY_OFFSETS = {
    "daily": {"days": 1},
    "weekly": {"days": 7},
    "monthly": {"months": 1},
    "quarterly": {"months": 3},
    "yearly": {"months": 12},
}


def advance_due_date(start: date, frequency_type: str, frequency_value: int) -> date:
    if frequency_type not in FREQUENCY_OFFSETS:
        raise ValueError(f"frequency_type inválido '{frequency_type}'")
    if frequency_value is None or int(frequency_value) < 1:
        raise ValueError("frequency_value debe ser >= 1")
    offset = {k: v * int(frequency_value) for k, v in FREQUENCY_OFFSETS[frequency_type].items()}
    return (pd.Timestamp(start) + pd.DateOffset(**offset)).date()


def due_info(schedule: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    due = date.fromisoformat(str(schedule["next_due_date"])[:10])
    days = (due - today).days
    return {"days_until_due": days, "is_overdue": days < 0}
