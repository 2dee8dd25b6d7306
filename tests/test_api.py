# tests/test_api.py

from __future__ import annotations

import asyncio
import importlib
import inspect

from lawpractice.auth import create_user_token
from lawpractice.config import settings
from lawpractice.main import app
from lawpractice.models.database import Document, DocumentVersion
from lawpractice.services.tenancy_service import tenancy_service

# The services package re-exports a same-named instance, so resolve the submodule itself.
processor_module = importlib.import_module("lawpractice.services.document_processor")

API = "/api/v1"


def _outsider_headers(db) -> dict:
    _, outsider = tenancy_service.register_firm(db, "Wang Law", "wang", "wang@wanglaw.cn", "password123")
    return {"Authorization": f"Bearer {create_user_token(outsider)}"}


def test_health_and_info(api, db) -> None:
    health = api.get("/health")
    assert health.status_code == 200
    assert health.json()["services"]["database"] == "healthy"
    assert health.headers["X-Process-Time"]

    info = api.get(f"{API}/info").json()
    assert "txt" in info["supported_file_formats"]


def test_register_firm_then_me(api, db) -> None:
    response = api.post(f"{API}/auth/register-firm", json={
        "firm_name": "Li & Co",
        "username": "lihua",
        "email": "lihua@lico.cn",
        "password": "password123",
    })
    assert response.status_code == 201
    body = response.json()
    assert body["user"]["role"] == "ADMIN"
    assert body["firm"]["name"] == "Li & Co"

    me = api.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["username"] == "lihua"

    duplicate = api.post(f"{API}/auth/register-firm", json={
        "firm_name": "Copycat", "username": "lihua", "email": "other@lico.cn", "password": "password123",
    })
    assert duplicate.status_code == 409
    assert "timestamp" in duplicate.json()


def test_login_and_rate_limit(api, admin) -> None:
    ok = api.post(f"{API}/auth/login", json={"username": "admin", "password": "password123"})
    assert ok.status_code == 200
    assert ok.json()["token_type"] == "bearer"

    codes = [
        api.post(f"{API}/auth/login", json={"username": "admin", "password": "wrong"}).status_code
        for _ in range(6)
    ]
    assert codes == [401] * 5 + [429]


def test_protected_routes_need_token(api, db) -> None:
    assert api.get(f"{API}/auth/me").status_code in (401, 403)
    assert api.get(f"{API}/auth/me", headers={"Authorization": "Bearer nonsense"}).status_code == 401


def test_admin_only_user_management(api, admin, lawyer, admin_headers, lawyer_headers) -> None:
    assert api.get(f"{API}/auth/users", headers=lawyer_headers).status_code == 403

    users = api.get(f"{API}/auth/users", headers=admin_headers).json()
    assert {u["username"] for u in users} == {"admin", "lawyer"}

    created = api.post(f"{API}/auth/users", headers=admin_headers, json={
        "username": "assistant", "email": "assistant@lawfirm.cn", "password": "password123", "role": "ASSISTANT",
    })
    assert created.status_code == 201
    assert created.json()["firm_id"] == admin.firm_id

    own = api.post(f"{API}/auth/users/{admin.id}/deactivate", headers=admin_headers)
    assert own.status_code == 400

    off = api.post(f"{API}/auth/users/{lawyer.id}/deactivate", headers=admin_headers)
    assert off.json()["is_active"] is False
    assert api.get(f"{API}/auth/me", headers=lawyer_headers).status_code == 401


def test_clients_are_isolated_per_firm(api, db, client_record, lawyer_headers) -> None:
    assert api.get(f"{API}/clients/{client_record.id}", headers=lawyer_headers).status_code == 200

    outsider = _outsider_headers(db)
    missing = api.get(f"{API}/clients/{client_record.id}", headers=outsider)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Client not found"
    assert api.get(f"{API}/clients", headers=outsider).json() == []


def test_client_crud_and_delete_guard(api, case, client_record, lawyer_headers) -> None:
    created = api.post(f"{API}/clients", headers=lawyer_headers, json={
        "first_name": "Zhou", "last_name": "Min", "company": "Hangzhou Textiles", "email": "zhou@hztex.cn",
    })
    assert created.status_code == 201
    client_id = created.json()["id"]

    found = api.get(f"{API}/clients", headers=lawyer_headers, params={"search": "textiles"}).json()
    assert [c["id"] for c in found] == [client_id]

    updated = api.put(f"{API}/clients/{client_id}", headers=lawyer_headers, json={"phone": "13900001111"})
    assert updated.json()["phone"] == "13900001111"

    blocked = api.delete(f"{API}/clients/{client_record.id}", headers=lawyer_headers)
    assert blocked.status_code == 409

    assert api.delete(f"{API}/clients/{client_id}", headers=lawyer_headers).status_code == 200
    assert api.get(f"{API}/clients/{client_id}", headers=lawyer_headers).status_code == 404


def test_case_lifecycle_over_http(api, client_record, lawyer_headers) -> None:
    created = api.post(f"{API}/cases", headers=lawyer_headers, json={
        "title": "Unpaid wages",
        "case_type": "LABOR_DISPUTE",
        "client_id": client_record.id,
        "details": {"clientInformation": "Chen Jing", "caseDescription": "Three months unpaid"},
    })
    assert created.status_code == 201
    case_id = created.json()["case"]["id"]
    assert created.json()["warnings"]

    prohibited = api.post(f"{API}/cases", headers=lawyer_headers, json={
        "title": "Bad", "case_type": "LABOR_DISPUTE", "client_id": client_record.id,
        "details": {"medicalHistory": "n/a"},
    })
    assert prohibited.status_code == 400
    assert prohibited.json()["errors"]

    rejected = api.post(f"{API}/cases/{case_id}/transition", headers=lawyer_headers,
                        json={"target_phase": "PRE_PROCEEDING_PREP"})
    assert rejected.status_code == 422

    moved = api.post(f"{API}/cases/{case_id}/transition", headers=lawyer_headers, json={
        "target_phase": "PRE_PROCEEDING_PREP",
        "details": {"initialEvidence": "Pay slips", "riskAssessmentCompleted": True},
    })
    assert moved.status_code == 200
    assert moved.json()["case"]["status"] == "ACTIVE"
    assert len(moved.json()["created_tasks"]) == 3

    history = api.get(f"{API}/cases/{case_id}/history", headers=lawyer_headers).json()
    assert [entry["phase"] for entry in history] == ["INTAKE_RISK_ASSESSMENT", "PRE_PROCEEDING_PREP"]


def test_fee_calculation_endpoint(api, lawyer_headers) -> None:
    response = api.post(f"{API}/billing/fees/calculate", headers=lawyer_headers, json={
        "fee_type": "FLAT", "base_amount": "10000", "jurisdiction": "provincial", "complexity": "complex",
    })
    assert response.status_code == 200
    assert response.json()["total_with_vat"] == 22896.0

    invalid = api.post(f"{API}/billing/fees/calculate", headers=lawyer_headers, json={"fee_type": "HOURLY"})
    assert invalid.status_code == 400


def test_document_upload_versions_and_search(api, db, case, lawyer_headers) -> None:
    uploaded = api.post(
        f"{API}/documents/upload",
        headers=lawyer_headers,
        files={"file": ("supply_contract.txt", b"Party A shall deliver the goods before March 1.", "text/plain")},
        data={"document_type": "CONTRACT", "case_id": str(case.id), "tags": "supply, goods",
              "category": "ContractDocument"},
    )
    assert uploaded.status_code == 201
    document = uploaded.json()
    assert document["version"] == 1
    assert document["file_format"] == "txt"
    assert document["tags"] == ["supply", "goods"]
    assert document["extracted_metadata"]["word_count"] > 0

    revised = api.post(
        f"{API}/documents/{document['id']}/versions",
        headers=lawyer_headers,
        files={"file": ("supply_contract_v2.txt", b"Party A shall deliver the goods before April 1.", "text/plain")},
        data={"changes": "Moved delivery date"},
    )
    assert revised.status_code == 201
    second = revised.json()
    assert second["version"] == 2
    assert second["parent_id"] == document["id"]

    versions = api.get(f"{API}/documents/{second['id']}/versions", headers=lawyer_headers).json()
    assert [v["version"] for v in versions] == [1, 2]
    assert versions[1]["changes"] == "Moved delivery date"

    listed = api.get(f"{API}/documents", headers=lawyer_headers, params={"case_id": case.id}).json()
    assert [d["id"] for d in listed] == [second["id"]]

    skipped = api.post(f"{API}/documents/{second['id']}/status", headers=lawyer_headers, json={"status": "APPROVED"})
    assert skipped.status_code == 422
    review = api.post(f"{API}/documents/{second['id']}/status", headers=lawyer_headers, json={"status": "REVIEW"})
    assert review.json()["status"] == "REVIEW"

    results = api.post(f"{API}/documents/search", headers=lawyer_headers, json={"query": "April"}).json()
    assert [r["document_id"] for r in results["results"]] == [second["id"]]

    download = api.get(f"{API}/documents/{second['id']}/download", headers=lawyer_headers)
    assert download.status_code == 200
    assert download.content == b"Party A shall deliver the goods before April 1."

    assert api.get(f"{API}/documents/{second['id']}", headers=_outsider_headers(db)).status_code == 404

    deleted = api.delete(f"{API}/documents/{document['id']}", headers=lawyer_headers)
    assert deleted.status_code == 200
    assert api.get(f"{API}/documents/{second['id']}", headers=lawyer_headers).status_code == 404


def test_upload_rejects_bad_files(api, lawyer_headers) -> None:
    unsupported = api.post(f"{API}/documents/upload", headers=lawyer_headers,
                           files={"file": ("tool.exe", b"MZ\x90\x00", "application/octet-stream")})
    assert unsupported.status_code == 400

    empty = api.post(f"{API}/documents/upload", headers=lawyer_headers,
                     files={"file": ("empty.txt", b"", "text/plain")})
    assert empty.status_code == 400


def test_notification_endpoints(api, case, lawyer, admin_headers, lawyer_headers) -> None:
    sent = api.post(f"{API}/notifications/system", headers=admin_headers, json={
        "title": "Office closed", "message": "The office is closed on Friday", "user_ids": [lawyer.id],
    })
    assert sent.status_code == 200
    assert len(sent.json()) == 1

    assert api.post(f"{API}/notifications/system", headers=lawyer_headers,
                    json={"title": "x", "message": "y"}).status_code == 403

    assert api.get(f"{API}/notifications/unread-count", headers=lawyer_headers).json() == {"unread": 1}
    notification_id = api.get(f"{API}/notifications", headers=lawyer_headers).json()[0]["id"]
    read = api.post(f"{API}/notifications/{notification_id}/read", headers=lawyer_headers)
    assert read.json()["is_read"] is True
    assert api.get(f"{API}/notifications/unread-count", headers=lawyer_headers).json() == {"unread": 0}

    prefs = api.get(f"{API}/notifications/preferences", headers=lawyer_headers).json()
    assert prefs["timezone"] == "Asia/Shanghai"

    bad = api.put(f"{API}/notifications/preferences", headers=lawyer_headers, json={"quiet_hours_start": "25:00"})
    assert bad.status_code in (400, 422)

    updated = api.put(f"{API}/notifications/preferences", headers=lawyer_headers, json={
        "quiet_hours_start": "22:00", "quiet_hours_end": "07:00", "email_frequency": "DAILY",
    })
    assert updated.status_code == 200
    assert updated.json()["email_frequency"] == "DAILY"


def test_search_limit_defaults_to_setting(api, db, lawyer, lawyer_headers, monkeypatch) -> None:
    for name in ("lease_a.txt", "lease_b.txt"):
        db.add(Document(firm_id=lawyer.firm_id, filename=name, original_name=name, path=f"/tmp/{name}",
                        size=10, file_format="txt", uploaded_by_id=lawyer.id, is_latest=True,
                        extracted_text="The tenant shall pay rent monthly."))
    db.commit()
    monkeypatch.setattr(settings, "search_default_limit", 1)

    default = api.post(f"{API}/documents/search", headers=lawyer_headers, json={"query": "rent"}).json()
    assert len(default["results"]) == 1

    explicit = api.post(f"{API}/documents/search", headers=lawyer_headers,
                        json={"query": "rent", "limit": 5}).json()
    assert len(explicit["results"]) == 2


def test_upload_over_size_limit_is_rejected(api, lawyer_headers, monkeypatch) -> None:
    monkeypatch.setattr(settings, "max_upload_size_mb", 1)
    oversized = b"a" * (1024 * 1024 + 1)

    response = api.post(f"{API}/documents/upload", headers=lawyer_headers,
                        files={"file": ("big.txt", oversized, "text/plain")})

    assert response.status_code == 413
    assert response.json()["detail"] == "File exceeds the 1 MB upload limit"


def test_change_password_rules(api, lawyer_headers) -> None:
    short = api.post(f"{API}/auth/change-password", headers=lawyer_headers,
                     json={"current_password": "password123", "new_password": "short"})
    assert short.status_code == 400

    wrong = api.post(f"{API}/auth/change-password", headers=lawyer_headers,
                     json={"current_password": "not-my-password", "new_password": "longenough1"})
    assert wrong.status_code == 400

    changed = api.post(f"{API}/auth/change-password", headers=lawyer_headers,
                       json={"current_password": "password123", "new_password": "longenough1"})
    assert changed.status_code == 200

    login = api.post(f"{API}/auth/login", json={"username": "lawyer", "password": "longenough1"})
    assert login.status_code == 200


def test_new_versions_hang_off_the_root_document(api, db, case, lawyer_headers) -> None:
    def upload_version(document_id: int, body: bytes) -> dict:
        response = api.post(f"{API}/documents/{document_id}/versions", headers=lawyer_headers,
                            files={"file": ("lease.txt", body, "text/plain")})
        assert response.status_code == 201
        return response.json()

    first = api.post(f"{API}/documents/upload", headers=lawyer_headers,
                     files={"file": ("lease.txt", b"Rent is 5000 per month.", "text/plain")},
                     data={"case_id": str(case.id)}).json()
    second = upload_version(first["id"], b"Rent is 5500 per month.")
    third = upload_version(second["id"], b"Rent is 6000 per month.")

    assert third["version"] == 3
    assert third["parent_id"] == first["id"]

    latest = {doc.id: doc.is_latest for doc in db.query(Document).all()}
    assert latest == {first["id"]: False, second["id"]: False, third["id"]: True}

    recorded = db.query(DocumentVersion).filter(DocumentVersion.document_id == first["id"]).all()
    assert sorted(v.version for v in recorded) == [1, 2, 3]


def test_blocking_work_stays_off_the_event_loop(tmp_path, monkeypatch) -> None:
    mailing = [route for route in app.routes
               if getattr(route, "path", "").startswith((f"{API}/notifications", f"{API}/tasks"))]
    assert mailing
    assert not any(inspect.iscoroutinefunction(route.endpoint) for route in mailing)

    offloaded = []

    async def recording_threadpool(func, *args):
        offloaded.append(func.__name__)
        return func(*args)

    monkeypatch.setattr(processor_module, "run_in_threadpool", recording_threadpool)
    path = tmp_path / "memo.txt"
    path.write_text("Rent review due in June.")

    text, ocr_status = asyncio.run(processor_module.document_processor.extract_text(path, "txt"))

    assert offloaded == ["_extract_text_sync"]
    assert text == "Rent review due in June."
    assert ocr_status == "not_required"
