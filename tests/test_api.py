from __future__ import annotations

from io import BytesIO

from app.core.models import Program
from app.review.catalogue import required_document_types

from conftest import HOUSING_PAYLOAD, ZONING_PAYLOAD

CITIZEN = "citizen@portal.local"
ZONING = "zoning@portal.local"
BUILDING = "building@portal.local"


def _multipart(payload: dict[str, str], program: Program) -> dict[str, object]:
    data: dict[str, object] = dict(payload)
    for document_type in required_document_types(program):
        data[document_type] = (BytesIO(f"{document_type} scan".encode()), f"{document_type}.pdf")
    return data


def _submit(client, login, payload=ZONING_PAYLOAD, program=Program.ZONING_CLEARANCE, email=CITIZEN) -> dict:
    login(email)
    response = client.post("/applications", data=_multipart(payload, program), content_type="multipart/form-data")
    assert response.status_code == 201, response.get_json()
    client.post("/auth/logout")
    return response.get_json()["application"]


def _ids(application: dict, category: str) -> list[int]:
    return [doc["id"] for doc in application["documents"] if doc["category"] == category]


def test_login_required_returns_json(client):
    response = client.get("/applications/1")
    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_login_with_bad_password_is_refused(client):
    response = client.post("/auth/login", json={"email": ZONING, "password": "nope"})
    assert response.status_code == 401
    assert response.get_json()["error"] == "invalid_credentials"


def test_citizen_submits_and_sees_only_own_applications(client, login):
    application = _submit(client, login)
    assert application["application_number"] == "ZC-000001"
    assert application["status"] == "pending"
    assert application["payment_status"] == "pending"
    assert application["fees"] == {"base": "650.00", "processing": "450.00", "total": "1100.00"}
    assert len(application["documents"]) == len(required_document_types(Program.ZONING_CLEARANCE))

    login(CITIZEN)
    listing = client.get("/applications").get_json()["applications"]
    assert [row["application_number"] for row in listing] == ["ZC-000001"]

    login("citizen2@portal.local")
    assert client.get(f"/applications/{application['id']}").status_code == 404
    assert client.get("/applications").get_json()["applications"] == []


def test_submission_missing_documents_is_422(client, login):
    login(CITIZEN)
    response = client.post(
        "/applications",
        data={**ZONING_PAYLOAD, "proof_of_ownership": (BytesIO(b"deed"), "deed.pdf")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 422
    body = response.get_json()
    assert body["error"] == "validation_error"
    assert "vicinity_map" in body["message"]


def test_full_zoning_review_over_http(client, login, user_id):
    application = _submit(client, login)
    app_id = application["id"]
    base = f"/applications/{app_id}"

    login(ZONING)
    refused = client.post(f"{base}/start-initial-review")
    assert refused.status_code == 400
    assert refused.get_json()["error"] == "guard_not_satisfied"
    assert "Payment" in refused.get_json()["message"]

    assert client.post(f"{base}/payment/confirm", json={"note": "OR 2026-0042"}).status_code == 200
    started = client.post(f"{base}/start-initial-review").get_json()["application"]
    assert started["status"] == "initial_review"
    assert started["custody"] == {"initial_review": user_id(ZONING)}
    assert "forward_to_technical" in started["available_transitions"]

    early = client.post(f"{base}/forward-to-technical")
    assert early.status_code == 400

    for document_id in _ids(application, "initial_review"):
        response = client.post(f"{base}/documents/{document_id}/verify", json={"remarks": "ok"})
        assert response.get_json()["document"]["verification_status"] == "approved"
    forwarded = client.post(f"{base}/forward-to-technical", json={"remarks": "Zoning compliant"})
    assert forwarded.get_json()["application"]["status"] == "technical_review"

    login(BUILDING)
    assigned = client.post(f"{base}/assign-technical-staff", json={}).get_json()["application"]
    assert assigned["custody"]["technical_review"] == user_id(BUILDING)
    for document_id in _ids(application, "technical_review"):
        assert client.post(f"{base}/documents/{document_id}/verify").status_code == 200
    returned = client.post(f"{base}/return-to-zoning", json={"remarks": "Plans comply"}).get_json()["application"]
    assert returned["status"] == "awaiting_approval"
    assert returned["active_custodian_id"] == user_id(ZONING)

    login(ZONING)
    approved = client.post(f"{base}/approve").get_json()["application"]
    assert approved["status"] == "approved"
    assert approved["approved_at"] is not None

    entries = client.get(f"{base}/history").get_json()["history"]
    transitions = [entry["payload"].get("transition") for entry in entries if entry["action"] == "status_changed"]
    assert transitions == ["start_initial_review", "forward_to_technical", "return_to_zoning", "approve"]
    assert entries[0]["action"] == "created"

    verification = client.get(f"{base}/history/verify").get_json()
    assert verification["chain_valid"] is True
    assert verification["replay_consistent"] is True
    assert verification["reconstructed_status"] == "approved"
    assert verification["matches_current"] is True


def test_document_rejection_and_reupload_over_http(client, login):
    application = _submit(client, login)
    base = f"/applications/{application['id']}"
    document_id = _ids(application, "initial_review")[0]

    login(ZONING)
    client.post(f"{base}/payment/confirm")
    client.post(f"{base}/start-initial-review")

    missing = client.post(f"{base}/documents/{document_id}/reject", json={"remarks": ""})
    assert missing.status_code == 422
    assert missing.get_json()["error"] == "validation_error"

    rejected = client.post(f"{base}/documents/{document_id}/reject", json={"remarks": "Expired tax clearance"})
    assert rejected.get_json()["document"]["review_remarks"] == "Expired tax clearance"
    changes = client.post(f"{base}/request-changes", json={"reason": "Please renew the tax clearance"})
    assert changes.get_json()["application"]["status"] == "requires_changes"

    login(CITIZEN)
    response = client.post(
        f"{base}/documents/{document_id}/reupload",
        data={"file": (BytesIO(b"renewed clearance"), "renewed.pdf")},
        content_type="multipart/form-data",
    )
    document = response.get_json()["document"]
    assert document["verification_status"] == "pending"
    assert document["review_remarks"] is None
    assert client.post(f"{base}/resubmit").get_json()["application"]["status"] == "pending"


def test_extra_document_upload(client, login):
    application = _submit(client, login)
    login(CITIZEN)
    response = client.post(
        f"/applications/{application['id']}/documents",
        data={"document_type": "business_permit", "file": (BytesIO(b"permit"), "permit.pdf")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 201
    assert response.get_json()["document"]["category"] == "initial_review"


def test_unknown_application_is_404(client, login):
    login(ZONING)
    response = client.post("/applications/999/start-initial-review")
    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"


def test_wrong_office_gets_403(client, login):
    application = _submit(client, login)
    login(BUILDING)
    response = client.post(f"/applications/{application['id']}/payment/confirm")
    assert response.status_code == 403
    assert response.get_json()["error"] == "authorization_error"


def test_eligibility_report_is_staff_only(client, login):
    application = _submit(
        client,
        login,
        payload=HOUSING_PAYLOAD,
        program=Program.HOUSING_ASSISTANCE,
        email="citizen2@portal.local",
    )
    login("citizen2@portal.local")
    assert client.get(f"/applications/{application['id']}/eligibility").status_code == 403

    login("housing@portal.local")
    report = client.get(f"/applications/{application['id']}/eligibility").get_json()
    assert report["fee"]["total"] == "1200.00"
    assert report["eligibility"] == {"passed": True, "reasons": []}
    assert report["score"]["weighted"] == "58.05"
    assert report["score"]["bonus"] == "25.00"


def test_config_visibility_and_updates(client, login):
    login(CITIZEN)
    public = client.get("/config").get_json()["config"]
    assert "pwd_bonus" in public and "income_weight" not in public

    login(ZONING)
    assert client.put("/config", json={"values": {"pwd_bonus": "20"}}).status_code == 403

    login("admin@portal.local")
    bad = client.put("/config", json={"values": {"income_weight": "0.9"}})
    assert bad.status_code == 422
    assert bad.get_json()["error"] == "configuration_error"

    good = client.put("/config", json={"values": {"pwd_bonus": "20"}})
    assert good.status_code == 200
    assert good.get_json()["config"]["pwd_bonus"] == "20"


def test_admin_sees_every_config_value(client, login):
    login("admin@portal.local")
    config = client.get("/config").get_json()["config"]
    assert config["income_weight"] == "0.40"


def test_config_update_needs_an_object_of_values(client, login):
    login("admin@portal.local")
    for body in ([{"pwd_bonus": "20"}], {"values": ["pwd_bonus", "20"]}, {"values": "pwd_bonus=20"}):
        response = client.put("/config", json=body)
        assert response.status_code == 422
        assert response.get_json()["error"] == "validation_error"


def test_applicant_withdraws_over_http(client, login):
    application = _submit(client, login)
    base = f"/applications/{application['id']}"

    login("citizen2@portal.local")
    assert client.post(f"{base}/withdraw").status_code == 403

    login(CITIZEN)
    detail = client.get(base).get_json()["application"]
    assert "withdraw" in detail["available_transitions"]
    withdrawn = client.post(f"{base}/withdraw", json={"note": "Moving abroad"}).get_json()["application"]
    assert withdrawn["status"] == "withdrawn"
    assert withdrawn["available_transitions"] == []

    login(ZONING)
    assert client.post(f"{base}/start-initial-review").status_code == 400
