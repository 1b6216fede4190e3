import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from atende.database import Base  # noqa: E402
from atende.models import Department, Tenant  # noqa: E402
from atende.services.whatsapp_gateway import DeliveryResult  # noqa: E402

# Monday 2026-10-19 10:00 in America/Fortaleza (UTC-3)
MONDAY_10AM = datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc)

AGENT_OBRAS = "5585999990001"
AGENT_SAUDE = "5585999990002"
CITIZEN = "5585988887777"


class FakeGateway:
    """Records outbound sends instead of calling the Cloud API."""

    def __init__(self, fail_to=None):
        self.sent = []
        self.fail_to = set(fail_to or [])

    async def send(self, tenant, to, body):
        return self._record(to, body, None)

    async def send_media(self, tenant, to, content_type, media_id, caption=None):
        return self._record(to, caption, media_id)

    def _record(self, to, body, media_id):
        if to in self.fail_to:
            return DeliveryResult(ok=False, error="http_500")
        self.sent.append({"to": to, "body": body, "media_id": media_id})
        return DeliveryResult(ok=True, provider_message_id=f"wamid.out.{len(self.sent)}")

    def to(self, number):
        return [item["body"] for item in self.sent if item["to"] == number]

    def last_to(self, number):
        bodies = self.to(number)
        return bodies[-1] if bodies else None


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the dedup guard."""

    def __init__(self):
        self.store = {}

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'atende.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tenant(db):
    tenant = Tenant(
        name="Prefeitura de Aurora",
        whatsapp_phone_number_id="1000",
        whatsapp_access_token="token",
        whatsapp_verify_token="verify-aurora",
        timezone="America/Fortaleza",
    )
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def departments(db, tenant):
    rows = [
        Department(tenant_id=tenant.id, name="Obras", responsible_name="Carlos", responsible_number=AGENT_OBRAS),
        Department(tenant_id=tenant.id, name="Saúde", responsible_name="Ana", responsible_number=AGENT_SAUDE),
        Department(tenant_id=tenant.id, name="Ouvidoria"),
    ]
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture
def gateway():
    return FakeGateway()
