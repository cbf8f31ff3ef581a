from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app


ORG_HEADERS = {"x-organization-id": "org-a"}


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="admin-1", roles=["admin"])

    get_settings.cache_clear()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    get_settings.cache_clear()


def _as_role(role: str) -> None:
    def scoped_user() -> AuthUser:
        return AuthUser(sub=f"{role}-1", roles=[role])

    app.dependency_overrides[get_current_user] = scoped_user


@pytest.fixture()
def accounts(client: TestClient) -> dict[str, str]:
    period = client.post(
        "/api/accounting-periods",
        json={"name": "FY2024", "start_date": "2024-01-01", "end_date": "2024-12-31"},
        headers=ORG_HEADERS,
    )
    assert period.status_code == 201

    seeded = client.post("/api/accounts/seed", headers=ORG_HEADERS)
    assert seeded.status_code == 200
    return {item["name"]: item["id"] for item in seeded.json()}


def _entry_payload(accounts: dict[str, str], *, debit: str = "1000", credit: str = "1000") -> dict[str, object]:
    return {
        "entry_date": "2024-03-15",
        "description": "Cash sale",
        "document_number": "INV-100",
        "lines": [
            {"account_id": accounts["Cash"], "debit_amount": debit, "credit_amount": "0"},
            {"account_id": accounts["Sales"], "debit_amount": "0", "credit_amount": credit},
        ],
    }


def test_journal_entry_lifecycle(client: TestClient, accounts: dict[str, str]) -> None:
    _as_role("accountant")
    created = client.post("/api/journal-entries", json=_entry_payload(accounts), headers=ORG_HEADERS)
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "DRAFT"
    assert body["entry_number"] == "2024030001"
    assert [line["account"]["code"] for line in body["lines"]] == ["1110", "4110"]
    assert Decimal(body["lines"][0]["debit_amount"]) == Decimal("1000")
    entry_id = body["id"]

    fetched = client.get(f"/api/journal-entries/{entry_id}", headers=ORG_HEADERS)
    assert fetched.status_code == 200
    assert fetched.json()["document_number"] == "INV-100"

    updated = client.put(
        f"/api/journal-entries/{entry_id}",
        json={"description": "Cash sale (corrected)"},
        headers=ORG_HEADERS,
    )
    assert updated.status_code == 200
    assert updated.json()["description"] == "Cash sale (corrected)"
    assert len(updated.json()["lines"]) == 2

    approved = client.post(f"/api/journal-entries/{entry_id}/approve", headers=ORG_HEADERS)
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"
    assert approved.json()["approved_by"] == "accountant-1"

    blocked = client.put(
        f"/api/journal-entries/{entry_id}",
        json={"description": "after approval"},
        headers=ORG_HEADERS,
    )
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "ENTRY_APPROVED"

    _as_role("admin")
    blocked_delete = client.delete(f"/api/journal-entries/{entry_id}", headers=ORG_HEADERS)
    assert blocked_delete.status_code == 409
    assert blocked_delete.json()["code"] == "ENTRY_APPROVED"


def test_delete_draft_entry(client: TestClient, accounts: dict[str, str]) -> None:
    created = client.post("/api/journal-entries", json=_entry_payload(accounts), headers=ORG_HEADERS)
    assert created.status_code == 201
    entry_id = created.json()["id"]

    deleted = client.delete(f"/api/journal-entries/{entry_id}", headers=ORG_HEADERS)
    assert deleted.status_code == 204

    missing = client.get(f"/api/journal-entries/{entry_id}", headers=ORG_HEADERS)
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_unbalanced_entry_returns_error_envelope(client: TestClient, accounts: dict[str, str]) -> None:
    response = client.post(
        "/api/journal-entries",
        json=_entry_payload(accounts, debit="1000", credit="999"),
        headers={**ORG_HEADERS, "X-Correlation-Id": "unbalanced-1"},
    )
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "UNBALANCED_ENTRY"
    assert body["message"]
    assert body["correlation_id"] == "unbalanced-1"


def test_single_line_payload_is_a_validation_error(client: TestClient, accounts: dict[str, str]) -> None:
    payload = _entry_payload(accounts)
    payload["lines"] = payload["lines"][:1]  # type: ignore[index]

    response = client.post("/api/journal-entries", json=payload, headers=ORG_HEADERS)
    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert response.json()["details"]


def test_negative_amount_is_a_validation_error(client: TestClient, accounts: dict[str, str]) -> None:
    response = client.post(
        "/api/journal-entries",
        json=_entry_payload(accounts, debit="-1000", credit="-1000"),
        headers=ORG_HEADERS,
    )
    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_missing_organization_header_is_rejected(client: TestClient) -> None:
    response = client.get("/api/journal-entries")
    assert response.status_code == 400
    assert response.json()["code"] == "ORGANIZATION_REQUIRED"


def test_date_without_period_is_rejected(client: TestClient, accounts: dict[str, str]) -> None:
    payload = _entry_payload(accounts)
    payload["entry_date"] = "2025-02-01"

    response = client.post("/api/journal-entries", json=payload, headers=ORG_HEADERS)
    assert response.status_code == 422
    assert response.json()["code"] == "NO_ACCOUNTING_PERIOD"


def test_viewer_can_read_but_not_post(client: TestClient, accounts: dict[str, str]) -> None:
    created = client.post("/api/journal-entries", json=_entry_payload(accounts), headers=ORG_HEADERS)
    assert created.status_code == 201

    _as_role("viewer")
    listed = client.get("/api/journal-entries", headers=ORG_HEADERS)
    assert listed.status_code == 200
    assert listed.json()["meta"]["total"] == 1

    forbidden = client.post("/api/journal-entries", json=_entry_payload(accounts), headers=ORG_HEADERS)
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "FORBIDDEN"

    approve = client.post(f"/api/journal-entries/{created.json()['id']}/approve", headers=ORG_HEADERS)
    assert approve.status_code == 403


def test_entries_are_isolated_by_organization(client: TestClient, accounts: dict[str, str]) -> None:
    created = client.post("/api/journal-entries", json=_entry_payload(accounts), headers=ORG_HEADERS)
    assert created.status_code == 201

    other = {"x-organization-id": "org-b"}
    assert client.get(f"/api/journal-entries/{created.json()['id']}", headers=other).status_code == 404
    assert client.get("/api/journal-entries", headers=other).json()["meta"]["total"] == 0


def test_list_entries_filters(client: TestClient, accounts: dict[str, str]) -> None:
    for entry_date in ("2024-02-10", "2024-03-15", "2024-03-20"):
        payload = _entry_payload(accounts)
        payload["entry_date"] = entry_date
        assert client.post("/api/journal-entries", json=payload, headers=ORG_HEADERS).status_code == 201

    march = client.get(
        "/api/journal-entries",
        params={"from": "2024-03-01", "to": "2024-03-31", "limit": 1, "page": 2},
        headers=ORG_HEADERS,
    )
    assert march.status_code == 200
    body = march.json()
    assert body["meta"] == {"page": 2, "limit": 1, "total": 2, "total_pages": 2}
    assert body["data"][0]["entry_number"] == "2024030001"

    drafts = client.get("/api/journal-entries", params={"status": "APPROVED"}, headers=ORG_HEADERS)
    assert drafts.json()["meta"]["total"] == 0


def test_csv_import_endpoint(client: TestClient, accounts: dict[str, str]) -> None:
    csv_body = (
        "date,debit_account,credit_account,amount,description\n"
        "2024-03-01,Cash,Sales,1000,Sale 1\n"
        "2024-03-02,Purchases,Cash,400,Stock\n"
    ).encode("utf-8")

    response = client.post(
        "/api/journal-entries/import",
        files={"file": ("entries.csv", csv_body, "text/csv")},
        headers=ORG_HEADERS,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["created"] == 2
    assert [entry["entry_number"] for entry in body["entries"]] == ["2024030001", "2024030002"]


def test_csv_import_failure_lists_row_errors(client: TestClient, accounts: dict[str, str]) -> None:
    csv_body = (
        "date,debit_account,credit_account,amount,description\n"
        "2024-03-01,Cash,Sales,1000,ok\n"
        "2024-03-02,Bank,Sales,400,bad\n"
    ).encode("utf-8")

    response = client.post(
        "/api/journal-entries/import",
        files={"file": ("entries.csv", csv_body, "text/csv")},
        headers=ORG_HEADERS,
    )
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "CSV_IMPORT_FAILED"
    assert body["details"] == ['Row 2: debit account "Bank" not found']

    listed = client.get("/api/journal-entries", headers=ORG_HEADERS)
    assert listed.json()["meta"]["total"] == 0


def test_unknown_entry_id_is_not_found(client: TestClient) -> None:
    response = client.post(f"/api/journal-entries/{uuid.uuid4()}/approve", headers=ORG_HEADERS)
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"
