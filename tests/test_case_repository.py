from datetime import timedelta
from uuid import uuid4

import pytest
from conftest import AGENT_OBRAS, CITIZEN, MONDAY_10AM

from atende.models import CaseEvent
from atende.services import case_repository
from atende.services.case_repository import CaseNotFoundError, ClosedCaseError
from atende.services.state_machine import CaseStatus, InvalidTransitionError


class TestCreateAndFind:
    def test_create_case_starts_at_ask_name(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, "+55 85 98888-7777", MONDAY_10AM)
        db.commit()

        assert case.status == CaseStatus.ASK_NAME.value
        assert case.citizen_number == CITIZEN
        assert case.protocol is None
        assert case_repository.status_history(db, case.id) == ["ASK_NAME"]

    def test_find_open_case_ignores_finished(self, db, tenant):
        old = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case_repository.set_status(db, old, CaseStatus.ASK_DEPARTMENT, MONDAY_10AM)
        case_repository.set_status(db, old, CaseStatus.FINISHED, MONDAY_10AM)
        db.commit()
        assert case_repository.find_open_case_for_citizen(db, tenant.id, CITIZEN) is None

        new = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM + timedelta(minutes=1))
        db.commit()
        assert case_repository.find_open_case_for_citizen(db, tenant.id, CITIZEN).id == new.id

    def test_find_survey_case_respects_window(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case_repository.set_status(db, case, CaseStatus.ASK_DEPARTMENT, MONDAY_10AM)
        case_repository.set_status(db, case, CaseStatus.FINISHED, MONDAY_10AM)
        case.survey_step = "resolved"
        db.commit()

        found = case_repository.find_survey_case(db, tenant.id, CITIZEN, MONDAY_10AM - timedelta(minutes=30))
        assert found.id == case.id
        assert case_repository.find_survey_case(db, tenant.id, CITIZEN, MONDAY_10AM + timedelta(minutes=1)) is None

    def test_find_by_protocol_is_case_insensitive(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case.protocol = "ATD-20261019-ABCDEF12"
        db.commit()
        assert case_repository.find_by_protocol(db, "atd-20261019-abcdef12").id == case.id
        assert case_repository.find_by_protocol(db, "ATD-20261019-ABCDEF12", tenant_id=tenant.id + 1) is None


class TestUpdates:
    def test_update_case_partial_fields_and_status(self, db, tenant, departments):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case_repository.update_case(
            db,
            case.id,
            {"citizen_name": "Maria", "status": CaseStatus.ASK_DEPARTMENT},
            MONDAY_10AM,
        )
        case_repository.update_case(db, case.id, {"department_id": departments[0].id}, MONDAY_10AM)
        db.commit()

        assert case.citizen_name == "Maria"
        assert case.department_id == departments[0].id
        assert case.status == CaseStatus.ASK_DEPARTMENT.value

    def test_update_unknown_case(self, db, tenant):
        with pytest.raises(CaseNotFoundError):
            case_repository.update_case(db, uuid4(), {"citizen_name": "x"})

    def test_update_rejects_unknown_fields(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        with pytest.raises(ValueError):
            case_repository.update_case(db, case.id, {"protocol": "ATD-1"})

    def test_invalid_status_change_is_rejected(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        with pytest.raises(InvalidTransitionError):
            case_repository.update_case(db, case.id, {"status": CaseStatus.ACTIVE})
        assert case.status == CaseStatus.ASK_NAME.value

    def test_agent_number_sets_agent_key(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case_repository.apply_fields(case, {"agent_number": "+55 85 99999-0001"})
        assert case.agent_number == AGENT_OBRAS
        assert case.agent_key == "99990001"

    def test_finished_case_only_accepts_survey_fields(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case_repository.set_status(db, case, CaseStatus.ASK_DEPARTMENT, MONDAY_10AM)
        case_repository.set_status(db, case, CaseStatus.FINISHED, MONDAY_10AM)

        case_repository.apply_fields(case, {"resolved": True, "satisfaction_rating": 5})
        with pytest.raises(ClosedCaseError):
            case_repository.apply_fields(case, {"citizen_name": "Outro"})

    def test_finishing_sets_closed_at_and_history(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case_repository.set_status(db, case, CaseStatus.ASK_DEPARTMENT, MONDAY_10AM)
        case_repository.set_status(db, case, CaseStatus.FINISHED, MONDAY_10AM, detail={"reason": "test"})
        db.commit()

        assert case.closed_at is not None
        assert case_repository.status_history(db, case.id) == ["ASK_NAME", "ASK_DEPARTMENT", "FINISHED"]
        last = db.query(CaseEvent).filter(CaseEvent.case_id == case.id).order_by(CaseEvent.id.desc()).first()
        assert last.from_status == "ASK_DEPARTMENT"
        assert last.detail == {"reason": "test"}


class TestAgentQueue:
    def _routed(self, db, tenant, number, status, minutes):
        case = case_repository.create_case(db, tenant.id, number, MONDAY_10AM + timedelta(minutes=minutes))
        case_repository.apply_fields(case, {"agent_number": AGENT_OBRAS})
        case_repository.set_status(db, case, CaseStatus.ASK_DEPARTMENT, MONDAY_10AM)
        case_repository.set_status(db, case, status, MONDAY_10AM)
        db.commit()
        return case

    def test_busy_when_agent_has_waiting_or_active_case(self, db, tenant):
        active = self._routed(db, tenant, "5585900000001", CaseStatus.WAITING_AGENT_CONFIRMATION, 0)
        assert case_repository.is_agent_busy(db, tenant.id, "99990001")
        assert not case_repository.is_agent_busy(db, tenant.id, "99990001", exclude_case_id=active.id)

    def test_queue_order_and_position(self, db, tenant):
        self._routed(db, tenant, "5585900000001", CaseStatus.WAITING_AGENT_CONFIRMATION, 0)
        first = self._routed(db, tenant, "5585900000002", CaseStatus.IN_QUEUE, 1)
        second = self._routed(db, tenant, "5585900000003", CaseStatus.IN_QUEUE, 2)

        assert case_repository.next_in_queue(db, tenant.id, "99990001").id == first.id
        assert case_repository.queue_position(db, second) == 2

    def test_list_cases_filters(self, db, tenant):
        self._routed(db, tenant, "5585900000001", CaseStatus.WAITING_AGENT_CONFIRMATION, 0)
        self._routed(db, tenant, "5585900000002", CaseStatus.IN_QUEUE, 1)

        queued = case_repository.list_cases(db, tenant_id=tenant.id, status=CaseStatus.IN_QUEUE)
        assert [c.citizen_number for c in queued] == ["5585900000002"]
        assert len(case_repository.list_cases(db, tenant_id=tenant.id, limit=1)) == 1
