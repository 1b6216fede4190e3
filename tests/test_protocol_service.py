from datetime import datetime, timezone
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

import pytest
from conftest import CITIZEN, MONDAY_10AM

from atende.services import case_repository, protocol_service
from atende.services.case_repository import CaseNotFoundError
from atende.services.state_machine import CaseStatus

FORTALEZA = ZoneInfo("America/Fortaleza")


class TestGenerate:
    def test_format(self):
        case_id = UUID("1a2b3c4d-0000-0000-0000-000000000000")
        code = protocol_service.generate_protocol(case_id, MONDAY_10AM, FORTALEZA)
        assert code == "ATD-20261019-1A2B3C4D"
        assert protocol_service.is_protocol(code)

    def test_date_uses_tenant_local_day(self):
        # 01:00 UTC on the 20th is still the 19th in Fortaleza
        at = datetime(2026, 10, 20, 1, 0, tzinfo=timezone.utc)
        assert protocol_service.generate_protocol(uuid4(), at, FORTALEZA).startswith("ATD-20261019-")

    def test_extract_protocol_code(self):
        assert protocol_service.extract_protocol_code("meu protocolo é atd-20261019-1a2b3c4d ok") == (
            "ATD-20261019-1A2B3C4D"
        )
        assert protocol_service.extract_protocol_code("sem código") is None
        assert protocol_service.extract_protocol_code(None) is None


class TestEnsureAndClose:
    def _case(self, db, tenant):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case_repository.set_status(db, case, CaseStatus.ASK_DEPARTMENT, MONDAY_10AM)
        db.commit()
        return case

    def test_ensure_protocol_is_idempotent(self, db, tenant):
        case = self._case(db, tenant)
        first = protocol_service.ensure_protocol(db, case.id, MONDAY_10AM, FORTALEZA)
        second = protocol_service.ensure_protocol(db, case.id, datetime(2027, 1, 1, tzinfo=timezone.utc), FORTALEZA)
        assert first == second == case.protocol

    def test_ensure_protocol_unknown_case(self, db, tenant):
        with pytest.raises(CaseNotFoundError):
            protocol_service.ensure_protocol(db, uuid4())

    def test_close_case_issues_protocol_and_finishes(self, db, tenant):
        case = self._case(db, tenant)
        code = protocol_service.close_case(db, case.id, MONDAY_10AM, FORTALEZA, survey_step="resolved")
        db.commit()

        assert case.status == CaseStatus.FINISHED.value
        assert case.protocol == code
        assert case.survey_step == "resolved"
        assert case.closed_at is not None

    def test_close_twice_returns_same_code(self, db, tenant):
        case = self._case(db, tenant)
        first = protocol_service.close_case(db, case.id, MONDAY_10AM)
        second = protocol_service.close_case(db, case.id, MONDAY_10AM)
        assert first == second
        assert case_repository.status_history(db, case.id).count("FINISHED") == 1


class TestSummary:
    def test_build_status_summary(self, db, tenant, departments):
        case = case_repository.create_case(db, tenant.id, CITIZEN, MONDAY_10AM)
        case.protocol = "ATD-20261019-1A2B3C4D"
        case.satisfaction_rating = 4
        db.commit()

        text = protocol_service.build_status_summary(case, "Obras", FORTALEZA)
        assert "ATD-20261019-1A2B3C4D" in text
        assert "*Obras*" in text
        assert "Aguardando identificação do cidadão" in text
        assert "19/10/2026 10:00" in text
        assert "4/5" in text

    def test_describe_unknown_status(self):
        assert protocol_service.describe_status("WHATEVER") == "WHATEVER"
        assert protocol_service.describe_status("ACTIVE") == "Em atendimento"
