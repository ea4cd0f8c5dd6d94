from __future__ import annotations

from decimal import Decimal

from flask import jsonify, request
from flask_login import login_required

from app.core.context import RequestContext
from app.core.errors import ValidationError
from app.core.permissions import require_role, require_staff
from app.review import config_store, custody, history, ledger, machine, review_bp
from app.review.services import (
    application_for,
    create_application,
    eligibility_report,
    list_applications,
    reupload_document,
    upload_document,
)


def _body() -> dict:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _remarks(body: dict, *keys: str) -> str | None:
    for key in keys:
        value = body.get(key)
        if value is not None:
            return str(value)
    return None


def _application_response(application, status: int = 200):
    ctx = RequestContext.from_request()
    data = application.to_dict()
    data["available_transitions"] = machine.available_transitions(application, ctx)
    return jsonify({"success": True, "application": data}), status


@review_bp.get("/applications")
@login_required
def applications_index():
    ctx = RequestContext.from_request()
    rows = list_applications(ctx, request.args.to_dict())
    return jsonify({"success": True, "applications": [row.to_dict(include_documents=False) for row in rows]})


@review_bp.post("/applications")
@login_required
def applications_create():
    files = {key: file_obj for key, file_obj in request.files.items() if file_obj and file_obj.filename}
    application = create_application(_body(), files, RequestContext.from_request())
    return _application_response(application, 201)


@review_bp.get("/applications/<int:application_id>")
@login_required
def application_detail(application_id: int):
    return _application_response(application_for(application_id, RequestContext.from_request()))


@review_bp.get("/applications/<int:application_id>/history")
@login_required
def application_history(application_id: int):
    application = application_for(application_id, RequestContext.from_request())
    entries = [entry.to_dict() for entry in history.list_for(application.id)]
    return jsonify({"success": True, "application_number": application.application_number, "history": entries})


@review_bp.get("/applications/<int:application_id>/history/verify")
@login_required
def application_history_verify(application_id: int):
    application = application_for(application_id, RequestContext.from_request())
    chain = history.verify_chain(application.id)
    replay = history.reconstruct_status(application.id)
    return jsonify(
        {
            "success": True,
            "chain_valid": chain.valid,
            "entries": chain.entries,
            "broken_at": chain.broken_at,
            "replay_consistent": replay.consistent,
            "reconstructed_status": replay.status.value if replay.status else None,
            "current_status": application.status.value,
            "matches_current": replay.consistent and replay.status == application.status,
        }
    )


@review_bp.get("/applications/<int:application_id>/eligibility")
@login_required
@require_staff
def application_eligibility(application_id: int):
    report = eligibility_report(application_id, RequestContext.from_request())
    return jsonify({"success": True, **report})


def _transition(application_id: int, action: str):
    body = _body()
    if machine.TRANSITIONS[action].requires_reason:
        reason, note = _remarks(body, "reason", "remarks"), _remarks(body, "note")
    else:
        reason, note = None, _remarks(body, "note", "remarks")
    application = machine.apply_transition(
        application_id,
        action,
        RequestContext.from_request(),
        reason=reason,
        note=note,
    )
    return _application_response(application)


@review_bp.post("/applications/<int:application_id>/start-initial-review")
@login_required
def start_initial_review(application_id: int):
    return _transition(application_id, "start_initial_review")


@review_bp.post("/applications/<int:application_id>/forward-to-technical")
@login_required
def forward_to_technical(application_id: int):
    return _transition(application_id, "forward_to_technical")


@review_bp.post("/applications/<int:application_id>/return-to-zoning")
@login_required
def return_to_zoning(application_id: int):
    return _transition(application_id, "return_to_zoning")


@review_bp.post("/applications/<int:application_id>/approve")
@login_required
def approve(application_id: int):
    return _transition(application_id, "approve")


@review_bp.post("/applications/<int:application_id>/reject")
@login_required
def reject(application_id: int):
    return _transition(application_id, "reject")


@review_bp.post("/applications/<int:application_id>/request-changes")
@login_required
def request_changes(application_id: int):
    return _transition(application_id, "request_changes")


@review_bp.post("/applications/<int:application_id>/resubmit")
@login_required
def resubmit(application_id: int):
    return _transition(application_id, "resubmit")


@review_bp.post("/applications/<int:application_id>/withdraw")
@login_required
def withdraw(application_id: int):
    return _transition(application_id, "withdraw")


@review_bp.post("/applications/<int:application_id>/assign-staff")
@login_required
def assign_staff(application_id: int):
    body = _body()
    application = custody.assign_staff(application_id, body.get("staff_id"), RequestContext.from_request())
    return _application_response(application)


@review_bp.post("/applications/<int:application_id>/assign-technical-staff")
@login_required
def assign_technical_staff(application_id: int):
    body = _body()
    application = custody.assign_technical_staff(
        application_id,
        RequestContext.from_request(),
        staff_id=body.get("staff_id"),
    )
    return _application_response(application)


@review_bp.post("/applications/<int:application_id>/payment/confirm")
@login_required
def payment_confirm(application_id: int):
    body = _body()
    application = machine.confirm_payment(application_id, RequestContext.from_request(), note=_remarks(body, "note"))
    return _application_response(application)


@review_bp.post("/applications/<int:application_id>/payment/unpay")
@login_required
def payment_unpay(application_id: int):
    body = _body()
    application = machine.mark_unpaid(application_id, RequestContext.from_request(), note=_remarks(body, "note"))
    return _application_response(application)


@review_bp.post("/applications/<int:application_id>/documents")
@login_required
def document_create(application_id: int):
    document = upload_document(
        application_id,
        request.form.get("document_type", ""),
        request.files.get("file"),
        RequestContext.from_request(),
    )
    return jsonify({"success": True, "document": document.to_dict()}), 201


@review_bp.post("/applications/<int:application_id>/documents/<int:document_id>/verify")
@login_required
def document_verify(application_id: int, document_id: int):
    body = _body()
    document = ledger.verify(application_id, document_id, RequestContext.from_request(), _remarks(body, "remarks"))
    return jsonify({"success": True, "document": document.to_dict()})


@review_bp.post("/applications/<int:application_id>/documents/<int:document_id>/reject")
@login_required
def document_reject(application_id: int, document_id: int):
    body = _body()
    document = ledger.reject(application_id, document_id, RequestContext.from_request(), _remarks(body, "remarks"))
    return jsonify({"success": True, "document": document.to_dict()})


@review_bp.post("/applications/<int:application_id>/documents/<int:document_id>/reupload")
@login_required
def document_reupload(application_id: int, document_id: int):
    document = reupload_document(
        application_id,
        document_id,
        request.files.get("file"),
        RequestContext.from_request(),
    )
    return jsonify({"success": True, "document": document.to_dict()})


def _config_response(values: dict[str, object]):
    serialized = {key: str(value) if isinstance(value, Decimal) else value for key, value in values.items()}
    return jsonify({"success": True, "config": serialized})


@review_bp.get("/config")
@login_required
def config_index():
    ctx = RequestContext.from_request()
    return _config_response(config_store.snapshot(public_only=not ctx.is_admin))


@review_bp.put("/config")
@login_required
@require_role("admin")
def config_update():
    body = request.get_json(silent=True)
    changes = body.get("values") if isinstance(body, dict) else None
    if not isinstance(changes, dict):
        raise ValidationError("Send the changes as a JSON object under \"values\"")
    values = config_store.set_values(changes, RequestContext.from_request())
    return _config_response(values)
