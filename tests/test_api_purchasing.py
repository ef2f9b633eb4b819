from datetime import date

from conftest import make_part


def _vendor(client, headers, name="Rodamientos del Norte"):
    r = client.post("/vendors", json={"name": name, "email": "ventas@rdn.example", "phone": "555-0101"}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def _po(client, headers, part, vendor, **overrides):
    payload = {
        "po_number": "PO-0001",
        "part_id": part["id"],
        "vendor_id": vendor["id"],
        "order_date": "2026-02-01",
        "expected_delivery_date": "2026-02-15",
        "quantity": 4,
        "unit_price": 11.25,
    }
    payload.update(overrides)
    return client.post("/purchases", json=payload, headers=headers)


class TestVendors:
    def test_crud(self, client, admin, viewer):
        v = _vendor(client, admin)
        assert v["is_active"] == 1
        r = client.put(f"/vendors/{v['id']}", json={"is_active": False}, headers=admin)
        assert r.json()["is_active"] == 0
        assert client.get("/vendors", params={"active_only": 1}, headers=viewer).json() == []
        assert len(client.get("/vendors", headers=viewer).json()) == 1
        assert client.delete(f"/vendors/{v['id']}", headers=admin).status_code == 200

    def test_name_required(self, client, admin):
        assert client.post("/vendors", json={"email": "a@b.c"}, headers=admin).status_code == 400

    def test_referenced_vendor_cannot_be_deleted(self, client, admin):
        v = _vendor(client, admin)
        _po(client, admin, make_part(client, admin), v)
        assert client.delete(f"/vendors/{v['id']}", headers=admin).status_code == 409


class TestPurchases:
    def test_create_computes_total(self, client, admin):
        part, vendor = make_part(client, admin), _vendor(client, admin)
        r = _po(client, admin, part, vendor)
        assert r.status_code == 200, r.text
        po = r.json()
        assert po["total_price"] == 45.0
        assert po["status"] == "pending"
        assert po["part_number"] == "BRG-6204"
        assert po["vendor_name"] == "Rodamientos del Norte"

    def test_requires_part_and_vendor(self, client, admin):
        vendor = _vendor(client, admin)
        r = client.post("/purchases", json={"po_number": "PO-1", "vendor_id": vendor["id"]}, headers=admin)
        assert r.status_code == 400
        assert r.json()["detail"] == "Seleccione un repuesto y un proveedor"

    def test_invalid_quantity_and_dates(self, client, admin):
        part, vendor = make_part(client, admin), _vendor(client, admin)
        assert _po(client, admin, part, vendor, quantity=0).status_code == 400
        assert _po(client, admin, part, vendor, expected_delivery_date="2026-01-01").status_code == 400

    def test_unknown_vendor(self, client, admin):
        part = make_part(client, admin)
        assert _po(client, admin, part, {"id": 999}).status_code == 404

    def test_duplicate_po_number(self, client, admin):
        part, vendor = make_part(client, admin), _vendor(client, admin)
        _po(client, admin, part, vendor)
        assert _po(client, admin, part, vendor).status_code == 409

    def test_status_flow_and_summary(self, client, admin, viewer):
        part, vendor = make_part(client, admin), _vendor(client, admin)
        first = _po(client, admin, part, vendor).json()
        _po(client, admin, part, vendor, po_number="PO-0002", quantity=2, unit_price=10)
        summary = client.get("/purchases/summary", headers=viewer).json()
        assert summary == {"pending_count": 2, "pending_total": 65.0}

        r = client.put(f"/purchases/{first['id']}/status", json={"status": "Delivered"}, headers=admin)
        assert r.status_code == 200
        assert r.json()["status"] == "delivered"
        assert r.json()["actual_delivery_date"] == date.today().isoformat()
        assert client.get("/purchases/summary", headers=viewer).json()["pending_count"] == 1
        delivered = client.get("/purchases", params={"status": "delivered"}, headers=viewer).json()
        assert [p["id"] for p in delivered] == [first["id"]]

    def test_invalid_status(self, client, admin):
        part, vendor = make_part(client, admin), _vendor(client, admin)
        po = _po(client, admin, part, vendor).json()
        assert client.put(f"/purchases/{po['id']}/status", json={"status": "lost"}, headers=admin).status_code == 400
        for bad in ({"status": 3}, {"status": ["delivered"]}, {}):
            r = client.put(f"/purchases/{po['id']}/status", json=bad, headers=admin)
            assert r.status_code == 400
            assert r.json()["detail"]

    def test_order_date_in_other_format(self, client, admin):
        part, vendor = make_part(client, admin), _vendor(client, admin)
        r = _po(client, admin, part, vendor, order_date="2026/02/01", expected_delivery_date="02/15/2026")
        assert r.status_code == 200, r.text
        assert r.json()["order_date"] == "2026-02-01"
        assert r.json()["expected_delivery_date"] == "2026-02-15"

    def test_unknown_purchase(self, client, viewer):
        assert client.get("/purchases/42", headers=viewer).status_code == 404


class TestAlerts:
    def test_manual_alert_read_and_resolve(self, client, admin, tech):
        r = client.post("/alerts", json={
            "alert_type": "maintenance_due", "severity": "Warning",
            "title": "Revisión pendiente", "message": "Revisar tensión de correa",
        }, headers=admin)
        assert r.status_code == 200, r.text
        alert = r.json()
        assert alert["is_read"] is False
        assert client.post(f"/alerts/{alert['id']}/read", headers=tech).json()["is_read"] is True
        resolved = client.post(f"/alerts/{alert['id']}/resolve", headers=tech).json()
        assert resolved["is_resolved"] is True
        assert resolved["resolved_at"]
        again = client.post(f"/alerts/{alert['id']}/resolve", headers=tech).json()
        assert again["resolved_at"] == resolved["resolved_at"]
        assert client.get("/alerts", params={"unresolved_only": 1}, headers=tech).json() == []

    def test_active_alerts_counted_on_dashboard(self, client, admin, viewer):
        client.post("/alerts", json={"alert_type": "info", "title": "A", "message": "a"}, headers=admin)
        assert client.get("/dashboard/kpis", headers=viewer).json()["active_alerts"] == 1

    def test_viewer_cannot_resolve(self, client, admin, viewer):
        alert = client.post("/alerts", json={"alert_type": "info", "title": "A", "message": "a"}, headers=admin).json()
        assert client.post(f"/alerts/{alert['id']}/resolve", headers=viewer).status_code == 403

    def test_unknown_alert(self, client, tech):
        assert client.post("/alerts/77/read", headers=tech).status_code == 404


class TestAudit:
    def test_mutations_are_recorded(self, client, admin, viewer):
        v = _vendor(client, admin)
        client.put(f"/vendors/{v['id']}", json={"phone": "555-0199"}, headers=admin)
        events = client.get("/audit", params={"table_name": "vendors"}, headers=viewer).json()
        assert [e["action"] for e in events] == ["UPDATE", "INSERT"]
        assert events[0]["actor_username"] == "admin"
        assert events[0]["details"]["diff"]["phone"] == {"from": "555-0101", "to": "555-0199"}
