"""
HTTP surface: citizen intake, officer review, admin oversight.
"""
import uuid

import pytest

from egov_portal.models.models import RequestStatus, Role, ServiceRequest, User
from egov_portal.routes.citizen import get_storage
from egov_portal.services import request_service
from egov_portal.storage.provider import StorageProvider

from conftest import actor, auth_headers


def _apply(client, user, service, files=None, notes="Please process"):
    return client.post(
        "/citizen/apply",
        data={"service_id": str(service.id), "notes": notes},
        files=files,
        headers=auth_headers(user),
    )


@pytest.fixture
def applied(client, citizen, birth_certificate):
    files = [
        ("documents", ("birth-notice.pdf", b"%PDF-1.4 notice", "application/pdf")),
        ("documents", ("parent-id.png", b"\x89PNG parent", "image/png")),
    ]
    resp = _apply(client, citizen, birth_certificate, files=files)
    assert resp.status_code == 201
    return resp.json()["request_id"]


# ----- Citizen -----

def test_root_and_request_id_header(client):
    resp = client.get("/", headers={"X-Request-ID": "abc-123"})
    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"] == "abc-123"


def test_citizen_apply_and_pay(client, applied, citizen):
    headers = auth_headers(citizen)

    listing = client.get("/citizen/dashboard", headers=headers).json()["requests"]
    assert [r["id"] for r in listing] == [applied]
    assert listing[0]["status"] == "submitted"
    assert listing[0]["service"]["fee"] == "250.00"

    detail = client.get(f"/citizen/requests/{applied}", headers=headers).json()
    assert {d["filename"] for d in detail["documents"]} == {"birth-notice.pdf", "parent-id.png"}
    assert detail["payment"]["amount"] == "250.00"
    assert detail["payment"]["status"] == "pending"
    assert [e["action"] for e in detail["history"]] == ["submitted"]

    resp = client.post(f"/citizen/payment/{applied}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Payment completed successfully"
    assert resp.json()["payment"]["status"] == "completed"

    # Paying again is a no-op
    again = client.post(f"/citizen/payment/{applied}", headers=headers)
    assert again.status_code == 200
    assert again.json()["payment"]["payment_date"] == resp.json()["payment"]["payment_date"]

    notes = client.get("/notifications", headers=headers).json()["notifications"]
    assert notes[0]["message"] == "Your Birth Certificate request has been submitted successfully."


def test_citizen_apply_without_documents(client, citizen, free_service):
    resp = _apply(client, citizen, free_service)
    assert resp.status_code == 201
    detail = client.get(f"/citizen/requests/{resp.json()['request_id']}", headers=auth_headers(citizen)).json()
    assert detail["payment"] is None
    assert detail["documents"] == []


def test_citizen_apply_rejects_bad_file(client, db, citizen, birth_certificate):
    files = [("documents", ("script.sh", b"#!/bin/sh", "text/x-shellscript"))]
    resp = _apply(client, citizen, birth_certificate, files=files)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Only PDF, JPG, JPEG, PNG files allowed"}
    assert db.query(ServiceRequest).count() == 0


def test_citizen_apply_unknown_service(client, citizen):
    resp = client.post(
        "/citizen/apply",
        data={"service_id": "00000000-0000-0000-0000-000000000000"},
        headers=auth_headers(citizen),
    )
    assert resp.status_code == 404
    assert resp.json() == {"error": "Service not found"}


def test_citizen_cannot_see_other_request(client, applied, other_citizen):
    headers = auth_headers(other_citizen)
    assert client.get(f"/citizen/requests/{applied}", headers=headers).status_code == 403
    assert client.post(f"/citizen/payment/{applied}", headers=headers).status_code == 403


def test_services_catalog(client, citizen, birth_certificate, licence_renewal):
    services = client.get("/citizen/services", headers=auth_headers(citizen)).json()["services"]
    assert [s["name"] for s in services] == ["Birth Certificate", "Driving Licence Renewal"]
    assert services[0]["department_name"] == "Civil Registration"


# ----- Officer -----

def test_officer_review_flow(client, applied, officer, department_head, citizen):
    head = auth_headers(department_head)
    resp = client.post(f"/officer/requests/{applied}/assign", json={"officer_id": str(officer.id)}, headers=head)
    assert resp.status_code == 200
    assert resp.json()["request"]["reviewed_by"]["id"] == str(officer.id)

    headers = auth_headers(officer)
    dashboard = client.get("/officer/dashboard", headers=headers).json()
    assert [r["id"] for r in dashboard["requests"]] == [applied]
    assert dashboard["department_name"] == "Civil Registration"
    assert dashboard["stats"]["in_progress"] == 1

    resp = client.post(
        f"/officer/requests/{applied}/status",
        json={"status": "approved", "officer_notes": "verified"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["request"]["status"] == "approved"

    resp = client.post(f"/officer/requests/{applied}/status", json={"status": "rejected"}, headers=headers)
    assert resp.status_code == 409

    detail = client.get(f"/citizen/requests/{applied}", headers=auth_headers(citizen)).json()
    assert detail["status"] == "approved"
    assert "Officer notes: verified" in detail["notes"]


def test_officer_outside_department(client, applied, transport_officer, db):
    resp = client.post(
        f"/officer/requests/{applied}/status",
        json={"status": "approved"},
        headers=auth_headers(transport_officer),
    )
    assert resp.status_code == 403
    assert db.get(ServiceRequest, uuid.UUID(applied)).status == RequestStatus.SUBMITTED


def test_officer_cannot_assign(client, applied, officer, second_officer):
    resp = client.post(
        f"/officer/requests/{applied}/assign",
        json={"officer_id": str(second_officer.id)},
        headers=auth_headers(officer),
    )
    assert resp.status_code == 403


def test_invalid_decision_payload(client, applied, officer):
    resp = client.post(f"/officer/requests/{applied}/status", json={"status": "archived"}, headers=auth_headers(officer))
    assert resp.status_code == 400


def test_start_and_reopen(client, applied, officer, department_head):
    headers = auth_headers(officer)
    assert client.post(f"/officer/requests/{applied}/start", headers=headers).status_code == 200
    client.post(f"/officer/requests/{applied}/status", json={"status": "rejected", "reason": "Unreadable"}, headers=headers)

    assert client.post(f"/officer/requests/{applied}/reopen", json={}, headers=headers).status_code == 403
    resp = client.post(
        f"/officer/requests/{applied}/reopen", json={"reason": "New scan"}, headers=auth_headers(department_head)
    )
    assert resp.status_code == 200
    assert resp.json()["request"]["status"] == "under_review"


def test_department_officers(client, officer, second_officer, department_head):
    rows = client.get("/officer/department/officers", headers=auth_headers(department_head)).json()
    assert {r["name"] for r in rows} == {"Omar Officer", "Olga Officer", "Dana Head"}


class SignedUrlStorage(StorageProvider):
    """In-memory stand-in for a provider that hands out signed URLs."""

    name = "memory"

    def __init__(self):
        self.blobs = {}

    def store(self, data, key, content_type=None):
        self.blobs[key] = data
        return f"https://files.example.com{key}"

    def get_download_url(self, key, expires_s):
        if key not in self.blobs:
            return None
        return f"https://files.example.com{key}?sig=test&ttl={expires_s}"

    def exists(self, key):
        return key in self.blobs

    def delete(self, key):
        self.blobs.pop(key, None)


def _document_path(client, request_id, citizen, filename):
    detail = client.get(f"/citizen/requests/{request_id}", headers=auth_headers(citizen)).json()
    doc = next(d for d in detail["documents"] if d["filename"] == filename)
    return f"/requests/{request_id}/documents/{doc['id']}"


def test_document_download(client, applied, citizen, officer):
    path = _document_path(client, applied, citizen, "birth-notice.pdf")

    resp = client.get("/citizen" + path, headers=auth_headers(citizen))
    assert resp.status_code == 200
    assert resp.content == b"%PDF-1.4 notice"
    assert resp.headers["content-type"] == "application/pdf"
    assert "birth-notice.pdf" in resp.headers["content-disposition"]

    resp = client.get("/officer" + path, headers=auth_headers(officer))
    assert resp.status_code == 200
    assert resp.content == b"%PDF-1.4 notice"


def test_document_download_scoping(client, applied, citizen, other_citizen, transport_officer):
    path = _document_path(client, applied, citizen, "parent-id.png")

    resp = client.get("/citizen" + path, headers=auth_headers(other_citizen))
    assert resp.status_code == 403
    resp = client.get("/officer" + path, headers=auth_headers(transport_officer))
    assert resp.status_code == 403

    resp = client.get(f"/citizen/requests/{applied}/documents/not-a-uuid", headers=auth_headers(citizen))
    assert resp.status_code == 404
    assert resp.json() == {"error": "Document not found"}


def test_document_must_belong_to_request(client, applied, citizen, free_service):
    path = _document_path(client, applied, citizen, "parent-id.png")
    doc_id = path.rsplit("/", 1)[1]
    other = _apply(client, citizen, free_service).json()["request_id"]

    resp = client.get(f"/citizen/requests/{other}/documents/{doc_id}", headers=auth_headers(citizen))
    assert resp.status_code == 404


def test_document_download_from_blob_storage(client, citizen, officer, birth_certificate):
    blobs = SignedUrlStorage()
    client.app.dependency_overrides[get_storage] = lambda: blobs
    files = [("documents", ("birth-notice.pdf", b"%PDF-1.4 notice", "application/pdf"))]
    request_id = _apply(client, citizen, birth_certificate, files=files).json()["request_id"]
    path = _document_path(client, request_id, citizen, "birth-notice.pdf")

    resp = client.get("/officer" + path, headers=auth_headers(officer))
    assert resp.status_code == 200
    body = resp.json()
    assert body["expires_in"] == 300
    assert body["download_url"].startswith("https://files.example.com/requests/")
    assert "sig=test" in body["download_url"]


def test_unknown_request_id(client, officer):
    resp = client.get("/officer/requests/not-a-uuid", headers=auth_headers(officer))
    assert resp.status_code == 404
    assert resp.json() == {"error": "Request not found"}


# ----- Admin -----

def test_admin_dashboard_and_reports(client, db, storage, citizen, officer, birth_certificate, admin):
    req = request_service.submit_create(db, actor(citizen), birth_certificate.id, storage=storage)
    request_service.decide(db, actor(officer), req.id, "approved")
    request_service.confirm_payment(db, actor(citizen), req.id)

    headers = auth_headers(admin)
    data = client.get("/admin/dashboard", headers=headers).json()
    assert data["stats"]["total_revenue"] == "250.00"
    assert data["stats"]["total_requests"] == 1
    assert data["recent_requests"][0]["id"] == str(req.id)

    report = client.get("/admin/reports?period=year", headers=headers).json()
    assert report["revenue_report"][0]["total_amount"] == "250.00"
    assert client.get("/admin/reports?period=decade", headers=headers).status_code == 400


def test_admin_request_filters(client, db, storage, citizen, birth_certificate, licence_renewal, transport, admin):
    request_service.submit_create(db, actor(citizen), birth_certificate.id, storage=storage)
    licence = request_service.submit_create(db, actor(citizen), licence_renewal.id, storage=storage)

    headers = auth_headers(admin)
    rows = client.get(f"/admin/requests?department={transport.id}", headers=headers).json()["requests"]
    assert [r["id"] for r in rows] == [str(licence.id)]
    rows = client.get("/admin/requests?status=approved", headers=headers).json()["requests"]
    assert rows == []


def test_admin_manages_catalog(client, admin, db):
    headers = auth_headers(admin)
    resp = client.post("/admin/departments", json={"name": "Lands", "description": "Land records"}, headers=headers)
    assert resp.status_code == 201
    dept_id = resp.json()["department"]["id"]
    assert client.post("/admin/departments", json={"name": "Lands"}, headers=headers).status_code == 409

    resp = client.post(
        "/admin/services",
        json={"name": "Title Search", "department_id": dept_id, "fee": "500.00"},
        headers=headers,
    )
    assert resp.status_code == 201
    service_id = resp.json()["service"]["id"]
    assert resp.json()["service"]["fee"] == "500.00"

    resp = client.put(
        f"/admin/services/{service_id}",
        json={"name": "Title Search", "department_id": dept_id, "fee": "650.00"},
        headers=headers,
    )
    assert resp.json()["service"]["fee"] == "650.00"

    bad_fee = client.post(
        "/admin/services", json={"name": "Refund", "department_id": dept_id, "fee": "-1"}, headers=headers
    )
    assert bad_fee.status_code == 400

    departments = client.get("/admin/departments", headers=headers).json()["departments"]
    lands = next(d for d in departments if d["name"] == "Lands")
    assert lands["service_count"] == 1

    services = client.get("/admin/services", headers=headers).json()["services"]
    assert services[0]["request_count"] == 0


def test_admin_manages_users(client, db, admin, civil):
    headers = auth_headers(admin)
    payload = {
        "national_id": "OFF-900",
        "name": "Nora New",
        "email": "nora@example.com",
        "password": "officer-pass",
        "role": "officer",
    }
    resp = client.post("/admin/users", json=payload, headers=headers)
    assert resp.status_code == 400

    payload["department_id"] = str(civil.id)
    resp = client.post("/admin/users", json=payload, headers=headers)
    assert resp.status_code == 201
    user_id = resp.json()["user"]["id"]
    assert resp.json()["user"]["department_name"] == "Civil Registration"

    assert client.post("/admin/users", json=payload, headers=headers).status_code == 409

    resp = client.put(f"/admin/users/{user_id}", json={"role": "admin", "password": ""}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "admin"
    assert resp.json()["user"]["department_id"] is None

    listing = client.get("/admin/users?role=admin", headers=headers).json()["users"]
    assert {u["email"] for u in listing} == {"ada@example.com", "nora@example.com"}

    assert client.delete(f"/admin/users/{user_id}", headers=headers).status_code == 200
    assert db.query(User).filter(User.email == "nora@example.com").count() == 0


def test_admin_cannot_delete_self_or_users_with_history(client, db, storage, admin, citizen, free_service):
    headers = auth_headers(admin)
    assert client.delete(f"/admin/users/{admin.id}", headers=headers).status_code == 400

    request_service.submit_create(db, actor(citizen), free_service.id, storage=storage)
    resp = client.delete(f"/admin/users/{citizen.id}", headers=headers)
    assert resp.status_code == 409
    assert db.query(User).filter(User.id == citizen.id).count() == 1


def test_admin_cannot_strand_open_reviews(client, db, applied, admin, officer, transport):
    assert client.post(f"/officer/requests/{applied}/start", headers=auth_headers(officer)).status_code == 200
    headers = auth_headers(admin)

    resp = client.put(f"/admin/users/{officer.id}", json={"role": "citizen"}, headers=headers)
    assert resp.status_code == 409
    resp = client.put(
        f"/admin/users/{officer.id}",
        json={"role": "officer", "department_id": str(transport.id)},
        headers=headers,
    )
    assert resp.status_code == 409
    db.refresh(officer)
    assert officer.role == Role.OFFICER
    assert officer.department_id != transport.id

    # A promotion inside the same department keeps the review valid
    resp = client.put(f"/admin/users/{officer.id}", json={"role": "department_head"}, headers=headers)
    assert resp.status_code == 200

    decided = client.post(
        f"/officer/requests/{applied}/status", json={"status": "approved"}, headers=auth_headers(officer)
    )
    assert decided.status_code == 200
    resp = client.put(f"/admin/users/{officer.id}", json={"department_id": str(transport.id)}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["department_id"] == str(transport.id)
