from __future__ import annotations

import hashlib
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from app.core.errors import AuthorizationError, GuardNotSatisfied, ValidationError
from app.core.extensions import db
from app.core.models import (
    Application,
    ApplicationStatus,
    DocumentRecord,
    HistoryAction,
    HistoryEntry,
    Program,
    ReviewStage,
    VerificationStatus,
)
from app.review import custody, history, ledger, machine
from app.review.catalogue import required_document_types
from app.review.services import create_application, reupload_document, upload_document
from app.review.storage import storage_root

from conftest import HOUSING_PAYLOAD, ZONING_PAYLOAD

ZONING = "zoning@portal.local"
CITIZEN = "citizen@portal.local"


def _first_document(application_id: int, stage: ReviewStage = ReviewStage.INITIAL_REVIEW) -> DocumentRecord:
    return (
        DocumentRecord.query.filter_by(application_id=application_id, category=stage)
        .order_by(DocumentRecord.id.asc())
        .first()
    )


def _start(application_id: int, ctx) -> None:
    machine.confirm_payment(application_id, ctx)
    machine.apply_transition(application_id, "start_initial_review", ctx)


def test_submission_creates_pending_ledger_and_numbers(app, zoning_application, housing_application, ctx_for, upload):
    zoning = db.session.get(Application, zoning_application)
    housing = db.session.get(Application, housing_application)
    assert zoning.application_number == "ZC-000001"
    assert housing.application_number == "HA-000001"
    assert zoning.submitted_at is not None

    assert sorted(doc.document_type for doc in zoning.documents) == sorted(
        required_document_types(Program.ZONING_CLEARANCE)
    )
    assert {doc.verification_status for doc in zoning.documents} == {VerificationStatus.PENDING}
    assert {doc.category for doc in zoning.documents} == {ReviewStage.INITIAL_REVIEW, ReviewStage.TECHNICAL_REVIEW}

    files = {doc: upload(f"{doc}.pdf") for doc in required_document_types(Program.ZONING_CLEARANCE)}
    second = create_application(dict(ZONING_PAYLOAD), files, ctx_for(CITIZEN))
    assert second.application_number == "ZC-000002"


def test_submission_stores_fee_breakdown(app, zoning_application, housing_application):
    zoning = db.session.get(Application, zoning_application)
    assert (zoning.base_fee, zoning.processing_fee, zoning.total_fee) == (
        Decimal("650.00"),
        Decimal("450.00"),
        Decimal("1100.00"),
    )
    housing = db.session.get(Application, housing_application)
    assert housing.total_fee == Decimal("1200.00")
    assert housing.birthdate == date(1958, 3, 14)
    assert housing.is_pwd is True
    assert housing.is_ofw is False


def test_submission_without_required_documents_is_rejected(app, ctx_for, upload):
    files = {"proof_of_ownership": upload()}
    with pytest.raises(ValidationError) as excinfo:
        create_application(dict(ZONING_PAYLOAD), files, ctx_for(CITIZEN))
    assert "vicinity_map" in excinfo.value.message
    assert Application.query.count() == 0


def test_submission_validates_payload(app, ctx_for, upload):
    files = {doc: upload() for doc in required_document_types(Program.HOUSING_ASSISTANCE)}
    with pytest.raises(ValidationError):
        create_application({**HOUSING_PAYLOAD, "program_type": "mansion"}, files, ctx_for(CITIZEN))
    with pytest.raises(ValidationError):
        create_application({**HOUSING_PAYLOAD, "requested_units": "5"}, files, ctx_for(CITIZEN))
    with pytest.raises(ValidationError):
        create_application({**HOUSING_PAYLOAD, "birthdate": "14/03/1958"}, files, ctx_for(CITIZEN))
    with pytest.raises(ValidationError):
        create_application({**HOUSING_PAYLOAD, "program": "fishing_permit"}, files, ctx_for(CITIZEN))
    assert Application.query.count() == 0


def test_uploaded_files_are_stored_with_digest(app, zoning_application):
    document = _first_document(zoning_application)
    stored = storage_root() / document.file_path
    assert stored.is_file()
    assert Path(app.config["STORAGE_ROOT"]) in stored.parents
    assert document.file_sha256 == hashlib.sha256(stored.read_bytes()).hexdigest()
    assert document.file_size == stored.stat().st_size
    assert document.mime_type == "application/pdf"


def test_record_document_checks_catalogue_and_duplicates(app, zoning_application, ctx_for, upload):
    citizen = ctx_for(CITIZEN)
    with pytest.raises(ValidationError):
        upload_document(zoning_application, "income_proof", upload(), citizen)
    with pytest.raises(ValidationError):
        upload_document(zoning_application, "vicinity_map", upload(), citizen)
    with pytest.raises(ValidationError):
        upload_document(zoning_application, "fire_safety_clearance", None, citizen)


def test_record_optional_document_after_submission_is_logged(app, zoning_application, ctx_for, upload):
    document = upload_document(zoning_application, "business_permit", upload("permit.pdf"), ctx_for(CITIZEN))
    assert document.category == ReviewStage.INITIAL_REVIEW
    assert document.verification_status == VerificationStatus.PENDING

    entry = history.list_for(zoning_application).all()[-1]
    assert entry.action == HistoryAction.DOCUMENT_RECORDED
    assert entry.payload["document_type"] == "business_permit"


def test_other_citizens_cannot_add_documents(app, zoning_application, ctx_for, upload):
    from app.core.errors import NotFoundError

    with pytest.raises(NotFoundError):
        upload_document(zoning_application, "business_permit", upload(), ctx_for("citizen2@portal.local"))


def test_verify_requires_custody_and_pending_status(app, zoning_application, ctx_for):
    zoning = ctx_for(ZONING)
    document = _first_document(zoning_application)

    # Nobody holds the first stage until review starts.
    with pytest.raises(AuthorizationError):
        ledger.verify(zoning_application, document.id, zoning)

    _start(zoning_application, zoning)
    verified = ledger.verify(zoning_application, document.id, zoning, "Title matches records")
    assert verified.verification_status == VerificationStatus.APPROVED
    assert verified.review_remarks == "Title matches records"
    assert verified.reviewed_by_id == zoning.actor_id

    with pytest.raises(GuardNotSatisfied):
        ledger.verify(zoning_application, document.id, zoning)
    with pytest.raises(GuardNotSatisfied):
        ledger.reject(zoning_application, document.id, zoning, "changed my mind")


def test_second_stage_documents_belong_to_the_technical_office(app, zoning_application, ctx_for):
    _start(zoning_application, ctx_for(ZONING))
    document = _first_document(zoning_application, ReviewStage.TECHNICAL_REVIEW)
    with pytest.raises(AuthorizationError):
        ledger.verify(zoning_application, document.id, ctx_for(ZONING))


def test_document_rejection_requires_remarks(app, zoning_application, ctx_for):
    zoning = ctx_for(ZONING)
    _start(zoning_application, zoning)
    document = _first_document(zoning_application)
    count = HistoryEntry.query.filter_by(application_id=zoning_application).count()

    with pytest.raises(ValidationError):
        ledger.reject(zoning_application, document.id, zoning, "")
    assert HistoryEntry.query.filter_by(application_id=zoning_application).count() == count

    remarks = "  Signature missing on page 2  "
    rejected = ledger.reject(zoning_application, document.id, zoning, remarks)
    assert rejected.verification_status == VerificationStatus.REJECTED
    assert rejected.review_remarks == remarks

    entry = history.list_for(zoning_application).all()[-1]
    assert entry.action == HistoryAction.DOCUMENT_REJECTED
    assert entry.reason == remarks
    assert entry.old_status is None and entry.new_status is None


def test_reupload_resets_review_fields(app, zoning_application, ctx_for, upload):
    zoning = ctx_for(ZONING)
    _start(zoning_application, zoning)
    document = _first_document(zoning_application)
    original_sha = document.file_sha256

    ledger.reject(zoning_application, document.id, zoning, "Blurry")
    refreshed = reupload_document(zoning_application, document.id, upload("retake.pdf", b"sharper"), ctx_for(CITIZEN))

    assert refreshed.verification_status == VerificationStatus.PENDING
    assert refreshed.reviewed_by_id is None
    assert refreshed.reviewed_at is None
    assert refreshed.review_remarks is None
    assert refreshed.file_name == "retake.pdf"
    assert refreshed.file_sha256 != original_sha

    entry = history.list_for(zoning_application).all()[-1]
    assert entry.action == HistoryAction.DOCUMENT_REUPLOADED
    assert entry.payload["previous_sha256"] == original_sha


def test_reupload_after_verification_returns_document_to_review(app, zoning_application, ctx_for, upload):
    zoning = ctx_for(ZONING)
    _start(zoning_application, zoning)
    document = _first_document(zoning_application)
    with pytest.raises(GuardNotSatisfied):
        reupload_document(zoning_application, document.id, upload(), ctx_for(CITIZEN))

    ledger.verify(zoning_application, document.id, zoning, "Looks fine")
    refreshed = reupload_document(zoning_application, document.id, upload("newer.pdf", b"newer"), ctx_for(CITIZEN))

    assert refreshed.verification_status == VerificationStatus.PENDING
    assert refreshed.reviewed_by_id is None
    assert refreshed.reviewed_at is None
    assert refreshed.review_remarks is None
    assert ledger.is_stage_complete(zoning_application, ReviewStage.INITIAL_REVIEW) is False


def _verify_all(application_id: int, stage: ReviewStage, ctx) -> None:
    for document in DocumentRecord.query.filter_by(application_id=application_id, category=stage).all():
        ledger.verify(application_id, document.id, ctx)


def _advance_to_awaiting_approval(application_id: int, ctx_for) -> None:
    zoning = ctx_for(ZONING)
    building = ctx_for("building@portal.local")
    _start(application_id, zoning)
    _verify_all(application_id, ReviewStage.INITIAL_REVIEW, zoning)
    machine.apply_transition(application_id, "forward_to_technical", zoning)
    custody.assign_technical_staff(application_id, building)
    _verify_all(application_id, ReviewStage.TECHNICAL_REVIEW, building)
    machine.apply_transition(application_id, "return_to_zoning", building)


def test_documents_of_a_finished_stage_are_frozen(app, zoning_application, ctx_for, upload):
    citizen = ctx_for(CITIZEN)
    zoning = ctx_for(ZONING)
    _start(zoning_application, zoning)
    _verify_all(zoning_application, ReviewStage.INITIAL_REVIEW, zoning)
    machine.apply_transition(zoning_application, "forward_to_technical", zoning)

    with pytest.raises(GuardNotSatisfied):
        upload_document(zoning_application, "business_permit", upload("permit.pdf"), citizen)
    verified = _first_document(zoning_application)
    with pytest.raises(GuardNotSatisfied):
        reupload_document(zoning_application, verified.id, upload(), citizen)
    assert ledger.is_stage_complete(zoning_application, ReviewStage.INITIAL_REVIEW) is True

    # The technical stage is still open, so its optional documents can be added.
    late = upload_document(zoning_application, "fire_safety_clearance", upload("fire.pdf"), citizen)
    assert late.category == ReviewStage.TECHNICAL_REVIEW


def test_approval_cannot_pick_up_unreviewed_documents(app, zoning_application, ctx_for, upload):
    citizen = ctx_for(CITIZEN)
    _advance_to_awaiting_approval(zoning_application, ctx_for)

    with pytest.raises(GuardNotSatisfied):
        upload_document(zoning_application, "business_permit", upload("permit.pdf"), citizen)
    with pytest.raises(GuardNotSatisfied):
        upload_document(zoning_application, "subdivision_permit", upload("subdivision.pdf"), citizen)

    application = machine.apply_transition(zoning_application, "approve", ctx_for(ZONING))
    assert application.status == ApplicationStatus.APPROVED
    statuses = {doc.verification_status for doc in DocumentRecord.query.filter_by(application_id=zoning_application)}
    assert statuses == {VerificationStatus.APPROVED}


def test_stage_completeness(app, housing_application, ctx_for):
    housing = ctx_for("housing@portal.local")
    _start(housing_application, housing)

    # Housing applications carry no technical documents yet: empty is never complete.
    assert ledger.is_stage_complete(housing_application, ReviewStage.TECHNICAL_REVIEW) is False
    assert ledger.is_stage_complete(housing_application, ReviewStage.INITIAL_REVIEW) is False

    for document in DocumentRecord.query.filter_by(application_id=housing_application).all():
        ledger.verify(housing_application, document.id, housing)
    assert ledger.is_stage_complete(housing_application, ReviewStage.INITIAL_REVIEW) is True
