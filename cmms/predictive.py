from typing import Any, Dict, Optional

# Banda de aviso: 10% antes de alcanzar el umbral
WARNING_MARGIN = 0.1


def is_alarm(value: float, threshold_min: Optional[float], threshold_max: Optional[float]) -> bool:
    if threshold_min is not None and value < threshold_min:
        return True
    if threshold_max is not None and value > threshold_max:
        return True
    return False


def validate_thresholds(threshold_min: Optional[float], threshold_max: Optional[float]) -> None:
    if threshold_min is not None and threshold_max is not None and threshold_min > threshold_max:
        raise ValueError("threshold_min no puede ser mayor que threshold_max")


def reading_status(reading: Dict[str, Any]) -> str:
    """Classify a stored reading as ``alarm``, ``warning`` or ``normal``."""
    if reading.get("is_alarm"):
        return "alarm"
    value = reading.get("reading_value")
    if value is None:
        return "normal"
    tmin = reading.get("threshold_min")
    tmax = reading.get("threshold_max")
    if tmin is not None and value < tmin * (1 + WARNING_MARGIN):
        return "warning"
    if tmax is not None and value > tmax * (1 - WARNING_MARGIN):
        return "warning"
    return "normal"


def alarm_alert(reading: Dict[str, Any]) -> Dict[str, Any]:
    tmin = reading.get("threshold_min")
    tmax = reading.get("threshold_max")
    limits = " - ".join("" if t is None else f"{t:g}" for t in (tmin, tmax))
    return {
        "alert_type": "sensor_alarm",
        "severity": "critical",
        "title": f"Alarma en sensor {reading['sensor_name']}",
        "message": (
            f"{reading['sensor_type']}: {reading['reading_value']:g} {reading['unit']} "
            f"fuera del rango [{limits}]"
        ),
        "related_entity_type": "sensor_reading",
        "related_entity_id": reading.get("id"),
    }
