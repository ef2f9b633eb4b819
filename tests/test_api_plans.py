from datetime import date, timedelta

from cmms.preventive import advance_due_date


def _schedule(client, headers, **overrides):
    payload = {
        "schedule_name": "Cambio de aceite hidráulico",
        "frequency_type": "monthly",
        "frequency_value": 1,
        "next_due_date": (date.today() + timedelta(days=3)).isoformat(),
        "checklist_items": ["Drenar aceite", "Cambiar filtro"],
        "assigned_to": "Turno A",
    }
    payload.update(overrides)
    r = client.post("/preventive", json=payload, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


class TestPreventive:
    def test_create_and_due_info(self, client, admin):
        s = _schedule(client, admin)
        assert s["checklist_items"] == ["Drenar aceite", "Cambiar filtro"]
        assert s["days_until_due"] == 3
        assert s["is_overdue"] is False
        assert s["is_active"] == 1

    def test_default_frequency_value(self, client, admin):
        s = _schedule(client, admin, frequency_value=None)
        assert s["frequency_value"] == 1

    def test_due_date_in_other_format(self, client, admin):
        s = _schedule(client, admin, next_due_date="2026/03/01")
        assert s["next_due_date"] == "2026-03-01"

    def test_invalid_frequency(self, client, admin):
        r = client.post("/preventive", json={
            "schedule_name": "x", "frequency_type": "hourly", "next_due_date": "2026-01-01",
        }, headers=admin)
        assert r.status_code == 400
        r = client.post("/preventive", json={
            "schedule_name": "x", "frequency_type": "daily", "frequency_value": 0, "next_due_date": "2026-01-01",
        }, headers=admin)
        assert r.status_code == 400

    def test_technician_cannot_create(self, client, tech):
        r = client.post("/preventive", json={"schedule_name": "x"}, headers=tech)
        assert r.status_code == 403

    def test_due_window(self, client, admin, viewer):
        soon = _schedule(client, admin, schedule_name="Pronto")
        _schedule(client, admin, schedule_name="Lejano", next_due_date=(date.today() + timedelta(days=40)).isoformat())
        late = _schedule(client, admin, schedule_name="Atrasado", next_due_date=(date.today() - timedelta(days=2)).isoformat())
        off = _schedule(client, admin, schedule_name="Inactivo")
        client.put(f"/preventive/{off['id']}", json={"is_active": False}, headers=admin)
        due = client.get("/preventive/due", params={"days": 7}, headers=viewer).json()
        assert [s["id"] for s in due] == [late["id"], soon["id"]]
        assert due[0]["is_overdue"] is True
        active = client.get("/preventive", params={"active_only": 1}, headers=viewer).json()
        assert off["id"] not in [s["id"] for s in active]
        assert len(client.get("/preventive", headers=viewer).json()) == 4

    def test_perform_advances_due_date(self, client, admin, tech):
        s = _schedule(client, admin, frequency_type="weekly", frequency_value=2)
        r = client.post(f"/preventive/{s['id']}/perform", headers=tech)
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["last_performed_date"] == date.today().isoformat()
        assert body["next_due_date"] == advance_due_date(date.today(), "weekly", 2).isoformat()

    def test_perform_with_past_date(self, client, admin, tech):
        s = _schedule(client, admin)
        r = client.post(f"/preventive/{s['id']}/perform", json={"performed_date": "2026-01-31"}, headers=tech)
        assert r.status_code == 200
        assert r.json()["next_due_date"] == "2026-02-28"

    def test_perform_future_date_rejected(self, client, admin, tech):
        s = _schedule(client, admin)
        future = (date.today() + timedelta(days=1)).isoformat()
        r = client.post(f"/preventive/{s['id']}/perform", json={"performed_date": future}, headers=tech)
        assert r.status_code == 400

    def test_delete(self, client, admin):
        s = _schedule(client, admin)
        assert client.delete(f"/preventive/{s['id']}", headers=admin).status_code == 200
        assert client.post(f"/preventive/{s['id']}/perform", headers=admin).status_code == 404


class TestPredictive:
    def _reading(self, client, headers, value, **kw):
        payload = {
            "sensor_name": "Rodamiento motor", "sensor_type": "temperature",
            "reading_value": value, "unit": "C", "threshold_min": 10, "threshold_max": 80,
        }
        payload.update(kw)
        r = client.post("/predictive/readings", json=payload, headers=headers)
        return r

    def test_normal_reading(self, client, tech):
        r = self._reading(client, tech, 40)
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["is_alarm"] is False
        assert body["status"] == "normal"
        assert body["alert_id"] is None
        assert body["reading_timestamp"]

    def test_alarm_creates_alert(self, client, tech):
        body = self._reading(client, tech, 95.5).json()
        assert body["is_alarm"] is True
        assert body["status"] == "alarm"
        alerts = client.get("/alerts", headers=tech).json()
        assert alerts[0]["id"] == body["alert_id"]
        assert alerts[0]["alert_type"] == "sensor_alarm"
        assert alerts[0]["related_entity_id"] == body["id"]

    def test_warning_band(self, client, tech):
        assert self._reading(client, tech, 78).json()["status"] == "warning"

    def test_inverted_thresholds(self, client, tech):
        r = self._reading(client, tech, 40, threshold_min=90, threshold_max=10)
        assert r.status_code == 400

    def test_unknown_sensor_type(self, client, tech):
        assert self._reading(client, tech, 40, sensor_type="sound").status_code == 400

    def test_list_and_summary(self, client, tech, viewer):
        self._reading(client, tech, 40, reading_timestamp="2026-01-01T08:00:00")
        self._reading(client, tech, 120, reading_timestamp="2026-01-02T08:00:00")
        self._reading(client, tech, 30, sensor_name="Bomba", sensor_type="pressure", unit="bar",
                      reading_timestamp="2026-01-03T08:00:00")
        rows = client.get("/predictive/readings", headers=viewer).json()
        assert [r["reading_timestamp"] for r in rows][0] == "2026-01-03T08:00:00"
        alarms = client.get("/predictive/readings", params={"alarms_only": 1}, headers=viewer).json()
        assert len(alarms) == 1
        bomba = client.get("/predictive/readings", params={"sensor_name": "Bomba"}, headers=viewer).json()
        assert len(bomba) == 1
        summary = client.get("/predictive/summary", headers=viewer).json()
        assert summary["total_readings"] == 3
        assert summary["alarm_count"] == 1

    def test_viewer_cannot_record(self, client, viewer):
        assert self._reading(client, viewer, 40).status_code == 403


class TestScheduleEvents:
    def test_groups_by_date(self, client, admin, tech):
        _schedule(client, admin, schedule_name="Lubricación", next_due_date="2026-06-10")
        client.post("/maintenance", json={
            "maintenance_type": "corrective", "failure_description": "Fuga",
            "started_at": "2026-06-10T07:30:00",
        }, headers=tech)
        client.post("/maintenance", json={
            "maintenance_type": "corrective", "failure_description": "Cerrada",
            "started_at": "2026-06-11T07:30:00", "completed_at": "2026-06-11T09:30:00",
        }, headers=tech)
        _schedule(client, admin, schedule_name="Fuera", next_due_date="2026-08-01")
        r = client.get("/schedule/events", params={"start": "2026-06-01", "end": "2026-06-30"}, headers=tech)
        assert r.status_code == 200
        days = r.json()
        assert [d["date"] for d in days] == ["2026-06-10"]
        types = sorted(e["type"] for e in days[0]["events"])
        assert types == ["maintenance", "preventive"]

    def test_bad_range(self, client, tech):
        r = client.get("/schedule/events", params={"start": "junio"}, headers=tech)
        assert r.status_code == 400
