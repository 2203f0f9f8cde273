# tests/conftest.py
import os
import tempfile

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="voucherpay-tests-")
os.environ.setdefault(
    "DATABASE_URL", "sqlite:///" + os.path.join(_DB_DIR, "test.sqlite3"))

from app import create_app  # noqa: E402
from models.base import Base, init_engine_and_session  # noqa: E402
from tests.utils import FakeGateway, FakeTransport  # noqa: E402

# settings read env first, so a developer .env must not leak into tests
_GATEWAY_ENV = (
    "MERCADOPAGO_WEBHOOK_SECRET", "MERCADOPAGO_ACCESS_TOKEN", "RESEND_API_KEY",
    "ADMIN_API_TOKEN", "EMAIL_DISPATCH_MODE",
)


@pytest.fixture(scope="session", autouse=True)
def _set_env():
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "1")
    os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
    os.environ.setdefault("AUDIT_ANONYMIZE_IP", "1")
    yield


@pytest.fixture(autouse=True)
def _clean_gateway_env(monkeypatch):
    for k in _GATEWAY_ENV:
        monkeypatch.delenv(k, raising=False)
    yield


@pytest.fixture(scope="session")
def app():
    return create_app({"TESTING": True})


@pytest.fixture(scope="session")
def db_engine():
    engine, _Session = init_engine_and_session()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def _db_clean(db_engine):
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def wired(monkeypatch, gateway, transport):
    """Route the HTTP webhook path to the fake gateway and email transport."""
    import controllers.webhooks as wh
    monkeypatch.setattr(wh, "get_gateway", lambda name: gateway)
    monkeypatch.setattr(wh, "ResendTransport", lambda: transport)
    return gateway, transport
