import itertools
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_receipts.db")

import pytest
import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from stk_service.config import Settings
from stk_service.database import Base
from stk_service.gateway import SwiftWalletClient
from stk_service.main import app as fastapi_app
from stk_service.orchestrator import PaymentOrchestrator
from stk_service.routes import get_orchestrator
from stk_service.store import ReceiptStore

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def settings():
    return Settings(
        swift_api_key="test-api-key",
        swift_channel_id="000260",
        swift_api_base_url="https://gateway.test",
        callback_base_url="https://service.test",
        database_url=SQLALCHEMY_DATABASE_URL,
    )


@pytest.fixture
def store():
    return ReceiptStore(TestingSessionLocal)


@pytest.fixture
def orchestrator(store, settings):
    # One second per reference keeps generated references distinct.
    ticks = itertools.count(1_700_000_000)
    return PaymentOrchestrator(
        store=store,
        gateway=SwiftWalletClient.from_settings(settings),
        settings=settings,
        clock=lambda: next(ticks),
    )


@pytest.fixture
def mock_gateway(mocker):
    """Patch the outbound STK push call; returns the ``requests.post`` mock."""

    def _mock(body=None, status_code=200, side_effect=None):
        if side_effect is not None:
            return mocker.patch("stk_service.gateway.requests.post", side_effect=side_effect)

        response = mocker.Mock()
        response.status_code = status_code
        if isinstance(body, Exception):
            response.json.side_effect = body
        else:
            response.json.return_value = body
        if status_code >= 400:
            response.raise_for_status.side_effect = requests.HTTPError(response=response)
        return mocker.patch("stk_service.gateway.requests.post", return_value=response)

    return _mock


@pytest.fixture
def client(orchestrator):
    fastapi_app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def initiated():
    return {
        "success": True,
        "status": "INITIATED",
        "message": "STK push initiated",
        "transaction_id": "T1",
        "checkout_request_id": "ws_CO_1",
        "merchant_request_id": "MR1",
    }
