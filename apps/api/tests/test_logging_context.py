from __future__ import annotations

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from crm_analytics.context import bind_request_context
from crm_analytics.core.auth import AuthUser, get_current_user
from crm_analytics.core.config import get_settings
from crm_analytics.core.database import Base, get_session_factory
from crm_analytics.logging import JsonLogFormatter, RequestContextFilter
from crm_analytics.main import app


@pytest.fixture()
def session_factory(tmp_path: Path) -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'logging.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def client(session_factory: sessionmaker[Session]) -> Generator[TestClient, None, None]:
    get_settings.cache_clear()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="rep-1", roles=["rep"])
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get("/api/reports", params={"groupBy": "month"}, headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 200

    records = [
        record
        for record in caplog.records
        if record.name == "crm_analytics.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/reports"
        and getattr(record, "status_code", None) == 200
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_input_warnings_share_the_request_correlation_id(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    client.get("/api/reports", params={"startDate": "soon"}, headers={"X-Correlation-Id": "corr-warn"})

    warnings = [record for record in caplog.records if record.getMessage() == "analytics.input_defaulted"]
    assert warnings
    assert all(getattr(record, "correlation_id", None) == "corr-warn" for record in warnings)


def test_json_formatter_emits_known_fields_and_request_context() -> None:
    logger = logging.getLogger("crm_analytics.tests")
    with bind_request_context(correlation_id="corr-json", user_id="rep-7"):
        record = logger.makeRecord(
            logger.name,
            logging.ERROR,
            __file__,
            1,
            "analytics.report_failed",
            (),
            None,
            extra={"metric": "win_rate", "error": "x" * 600, "unrelated": "dropped"},
        )
        RequestContextFilter().filter(record)

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "analytics.report_failed"
    assert payload["correlation_id"] == "corr-json"
    assert payload["fields"]["metric"] == "win_rate"
    assert payload["fields"]["user_id"] == "rep-7"
    assert len(payload["fields"]["error"]) == 500
    assert "unrelated" not in payload["fields"]
