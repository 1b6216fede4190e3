from uuid import uuid4

import pytest
from conftest import CITIZEN, MONDAY_10AM
from fastapi.testclient import TestClient

from atende.config import settings
from atende.database import get_db
from atende.main import app
from atende.models import BusinessHoursRule
from atende.services import case_repository, message_log
from atende.services.message_log import ContentType, Direction
from atende.services.state_machine import CaseStatus

HEADERS = {"X-Admin-Token": "admin-secret"}


@pytest.fixture
def client(db, tenant, monkeypatch):
    monkeypatch.setattr(settings, "admin_token", "admin-secret")
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def closed_case(db, tenant, departments):
    case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
    case_repository.apply_fields(case, {"citizen_name": "Maria", "department_id": departments[0].id}, MONDAY_10AM)
    case_repository.set_status(db, case, CaseStatus.ASK_DEPARTMENT, MONDAY_10AM)
    case_repository.set_status(db, case, CaseStatus.FINISHED, MONDAY_10AM)
    case.protocol = "ATD-20261019-ABCDEF12"
    message_log.append(db, case.id, tenant.id, Direction.CITIZEN, ContentType.TEXT, "oi", CITIZEN)
    message_log.append(db, case.id, tenant.id, Direction.SYSTEM, ContentType.TEXT, "Olá!", None)
    db.commit()
    return case


class TestAuth:
    def test_missing_token(self, client):
        assert client.get("/admin/cases").status_code == 401

    def test_wrong_token(self, client):
        assert client.get("/admin/cases", headers={"X-Admin-Token": "nope"}).status_code == 401

    def test_token_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "admin_token", None)
        assert client.get("/admin/cases", headers=HEADERS).status_code == 500


class TestCases:
    def test_list_cases(self, client, tenant, closed_case):
        body = client.get("/admin/cases", params={"tenant_id": tenant.id, "status": "FINISHED"}, headers=HEADERS).json()
        assert body["count"] == 1
        assert body["cases"][0]["protocol"] == "ATD-20261019-ABCDEF12"

    def test_case_detail_with_history(self, client, closed_case):
        body = client.get(f"/admin/cases/{closed_case.id}", headers=HEADERS).json()
        assert body["case"]["citizen_name"] == "Maria"
        assert body["status_history"] == ["ASK_NAME", "ASK_DEPARTMENT", "FINISHED"]

    def test_case_messages_in_order(self, client, closed_case):
        body = client.get(f"/admin/cases/{closed_case.id}/messages", headers=HEADERS).json()
        assert [(m["direction"], m["body"]) for m in body] == [("CITIZEN", "oi"), ("SYSTEM", "Olá!")]

    def test_unknown_case(self, client):
        assert client.get(f"/admin/cases/{uuid4()}", headers=HEADERS).status_code == 404

    def test_protocol_lookup(self, client, closed_case):
        body = client.get("/admin/protocols/atd-20261019-abcdef12", headers=HEADERS).json()
        assert body["case_id"] == str(closed_case.id)
        assert body["status_description"] == "Atendimento encerrado"

    def test_unknown_protocol(self, client):
        assert client.get("/admin/protocols/ATD-20261019-00000000", headers=HEADERS).status_code == 404


class TestDepartments:
    def test_create_and_list(self, client, tenant):
        response = client.post(
            "/admin/departments",
            json={"tenant_id": tenant.id, "name": "Educação", "responsible_number": "+55 (85) 99999-0003"},
            headers=HEADERS,
        )
        assert response.status_code == 201
        assert response.json()["responsible_number"] == "5585999990003"

        listed = client.get("/admin/departments", params={"tenant_id": tenant.id}, headers=HEADERS).json()
        assert [d["name"] for d in listed] == ["Educação"]

    def test_create_for_unknown_tenant(self, client):
        response = client.post("/admin/departments", json={"tenant_id": 999, "name": "X"}, headers=HEADERS)
        assert response.status_code == 404

    def test_empty_name_rejected(self, client, tenant):
        response = client.post("/admin/departments", json={"tenant_id": tenant.id, "name": ""}, headers=HEADERS)
        assert response.status_code == 422

    def test_deactivate(self, client, departments):
        response = client.patch(f"/admin/departments/{departments[0].id}", json={"is_active": False}, headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert response.json()["name"] == "Obras"

    def test_update_unknown(self, client):
        assert client.patch("/admin/departments/999", json={"name": "X"}, headers=HEADERS).status_code == 404


class TestBusinessHours:
    def _create(self, client, tenant, **overrides):
        payload = {"tenant_id": tenant.id, "weekdays": "seg,ter", "start_time": "08:00", "end_time": "12:00"}
        payload.update(overrides)
        return client.post("/admin/business-hours", json=payload, headers=HEADERS)

    def test_create_normalizes_weekdays(self, client, tenant):
        response = self._create(client, tenant)
        assert response.status_code == 201
        assert response.json()["weekdays"] == "SEG,TER"

    def test_overlap_is_conflict(self, client, tenant):
        self._create(client, tenant)
        response = self._create(client, tenant, weekdays="TER", start_time="11:00", end_time="14:00")
        assert response.status_code == 409

    def test_adjacent_rule_is_accepted(self, client, tenant):
        self._create(client, tenant)
        assert self._create(client, tenant, start_time="12:00", end_time="18:00").status_code == 201

    def test_invalid_time(self, client, tenant):
        assert self._create(client, tenant, start_time="25:00").status_code == 422

    def test_inactive_rule_skips_overlap_check(self, client, tenant):
        self._create(client, tenant)
        assert self._create(client, tenant, is_active=False).status_code == 201

    def test_unknown_department(self, client, tenant):
        assert self._create(client, tenant, department_id=999).status_code == 404

    def test_list_and_delete(self, client, db, tenant):
        rule_id = self._create(client, tenant).json()["id"]
        listed = client.get("/admin/business-hours", params={"tenant_id": tenant.id}, headers=HEADERS).json()
        assert [r["id"] for r in listed] == [rule_id]

        assert client.delete(f"/admin/business-hours/{rule_id}", headers=HEADERS).status_code == 200
        db.expire_all()
        assert db.query(BusinessHoursRule).count() == 0
        assert client.delete(f"/admin/business-hours/{rule_id}", headers=HEADERS).status_code == 404
