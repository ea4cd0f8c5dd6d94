from __future__ import annotations

import logging

from app.core.context import RequestContext
from app.core.errors import AuthorizationError, GuardNotSatisfied, ValidationError
from app.core.extensions import db
from app.core.models import (
    Application,
    ApplicationStatus,
    DocumentRecord,
    HistoryAction,
    ReviewStage,
    VerificationStatus,
    utcnow,
)
from app.review import history
from app.review.catalogue import document_spec, office_roles
from app.review.custody import ensure_custody, ensure_office_role
from app.review.repository import get_document_or_404, locked_application
from app.review.storage import StoredFile

logger = logging.getLogger(__name__)

# Stages whose documents are frozen once the application has moved past them.
CLOSED_STAGES_BY_STATUS: dict[ApplicationStatus, frozenset[ReviewStage]] = {
    ApplicationStatus.TECHNICAL_REVIEW: frozenset({ReviewStage.INITIAL_REVIEW}),
    ApplicationStatus.AWAITING_APPROVAL: frozenset({ReviewStage.INITIAL_REVIEW, ReviewStage.TECHNICAL_REVIEW}),
}


def _document_payload(document: DocumentRecord, **extra: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "document_id": document.id,
        "document_type": document.document_type,
        "category": document.category.value,
    }
    payload.update(extra)
    return payload


def _ensure_open(application: Application) -> None:
    if application.is_terminal:
        raise GuardNotSatisfied(f"Application is already {application.status.value}")


def _ensure_stage_open(application: Application, category: ReviewStage) -> None:
    if category in CLOSED_STAGES_BY_STATUS.get(application.status, frozenset()):
        raise GuardNotSatisfied(
            f"The {category.value.replace('_', ' ')} stage is already complete; its documents can no longer change"
        )


def _may_upload(application: Application, category: ReviewStage, ctx: RequestContext) -> bool:
    if ctx.is_admin or ctx.actor_id == application.applicant_id:
        return True
    return ctx.role in office_roles(application.program, category) and application.custody.get(category) in (
        None,
        ctx.actor_id,
    )


def add_document(
    application: Application,
    document_type: str,
    stored: StoredFile,
    uploader_id: int | None,
    category: ReviewStage | None = None,
) -> DocumentRecord:
    spec = document_spec(application.program, document_type)
    if spec is None:
        raise ValidationError(
            f"{document_type} is not a document type of the {application.program.value.replace('_', ' ')} program"
        )
    if category is not None and category != spec.stage:
        raise ValidationError(f"{document_type} belongs to the {spec.stage.value} stage, not {category.value}")
    if any(doc.document_type == document_type for doc in application.documents):
        raise ValidationError(f"{document_type} is already on file; re-upload it instead")

    document = DocumentRecord(
        document_type=document_type,
        category=spec.stage,
        verification_status=VerificationStatus.PENDING,
        file_name=stored.name,
        file_path=stored.path,
        file_sha256=stored.sha256,
        file_size=stored.size,
        mime_type=stored.mime_type,
        uploaded_by_id=uploader_id,
        uploaded_at=utcnow(),
    )
    application.documents.append(document)
    db.session.add(document)
    return document


def record_document(
    application_id: int,
    document_type: str,
    stored: StoredFile,
    ctx: RequestContext,
    category: ReviewStage | None = None,
) -> DocumentRecord:
    with locked_application(application_id) as application:
        _ensure_open(application)
        spec = document_spec(application.program, document_type)
        if spec is not None:
            if not _may_upload(application, spec.stage, ctx):
                raise AuthorizationError("You cannot add documents to this application")
            _ensure_stage_open(application, spec.stage)
        document = add_document(application, document_type, stored, ctx.actor_id, category)
        db.session.flush()
        if application.submitted_at is not None:
            history.append(
                application.id,
                HistoryAction.DOCUMENT_RECORDED,
                ctx,
                note=f"{document_type} uploaded",
                payload=_document_payload(document, sha256=stored.sha256),
            )
    logger.info("Recorded %s on %s", document_type, application.application_number)
    return document


def _review(
    application_id: int,
    document_id: int,
    ctx: RequestContext,
    outcome: VerificationStatus,
    remarks: str | None,
) -> DocumentRecord:
    with locked_application(application_id) as application:
        document = get_document_or_404(application, document_id)
        _ensure_open(application)
        ensure_office_role(application, document.category, ctx)
        ensure_custody(application, document.category, ctx, strict=True)
        if outcome == VerificationStatus.REJECTED and not (remarks or "").strip():
            raise ValidationError("Remarks are required to reject a document")
        if document.verification_status != VerificationStatus.PENDING:
            raise GuardNotSatisfied(
                f"{document.document_type} is already {document.verification_status.value}; only pending documents can be reviewed"
            )

        document.verification_status = outcome
        document.reviewed_by_id = ctx.actor_id
        document.reviewed_at = utcnow()
        document.review_remarks = remarks if remarks else None
        db.session.add(document)

        action = (
            HistoryAction.DOCUMENT_VERIFIED
            if outcome == VerificationStatus.APPROVED
            else HistoryAction.DOCUMENT_REJECTED
        )
        history.append(
            application.id,
            action,
            ctx,
            reason=remarks if outcome == VerificationStatus.REJECTED else None,
            note=remarks if outcome == VerificationStatus.APPROVED else None,
            payload=_document_payload(document),
        )
    logger.info(
        "Document %s (%s) on %s marked %s by %s",
        document_id,
        document.document_type,
        application.application_number,
        outcome.value,
        ctx.actor_id,
    )
    return document


def verify(application_id: int, document_id: int, ctx: RequestContext, remarks: str | None = None) -> DocumentRecord:
    return _review(application_id, document_id, ctx, VerificationStatus.APPROVED, remarks)


def reject(application_id: int, document_id: int, ctx: RequestContext, remarks: str | None) -> DocumentRecord:
    return _review(application_id, document_id, ctx, VerificationStatus.REJECTED, remarks)


def reupload(application_id: int, document_id: int, stored: StoredFile, ctx: RequestContext) -> DocumentRecord:
    with locked_application(application_id) as application:
        document = get_document_or_404(application, document_id)
        _ensure_open(application)
        if not (
            ctx.is_admin
            or ctx.actor_id == application.applicant_id
            or application.custody.get(document.category) == ctx.actor_id
        ):
            raise AuthorizationError("Only the applicant or the reviewing officer can re-upload this document")
        if document.verification_status == VerificationStatus.PENDING:
            raise GuardNotSatisfied(f"{document.document_type} is still awaiting review")
        _ensure_stage_open(application, document.category)

        previous_sha256 = document.file_sha256
        document.file_name = stored.name
        document.file_path = stored.path
        document.file_sha256 = stored.sha256
        document.file_size = stored.size
        document.mime_type = stored.mime_type
        document.uploaded_by_id = ctx.actor_id
        document.uploaded_at = utcnow()
        document.verification_status = VerificationStatus.PENDING
        document.reviewed_by_id = None
        document.reviewed_at = None
        document.review_remarks = None
        db.session.add(document)

        history.append(
            application.id,
            HistoryAction.DOCUMENT_REUPLOADED,
            ctx,
            payload=_document_payload(document, previous_sha256=previous_sha256, sha256=stored.sha256),
        )
    logger.info("Document %s on %s re-uploaded by %s", document_id, application.application_number, ctx.actor_id)
    return document


def is_stage_complete(application_id: int, category: ReviewStage) -> bool:
    """True when the category has documents and every one of them is approved."""
    statuses = [
        status
        for (status,) in db.session.query(DocumentRecord.verification_status)
        .filter(DocumentRecord.application_id == application_id, DocumentRecord.category == category)
        .all()
    ]
    return bool(statuses) and all(status == VerificationStatus.APPROVED for status in statuses)


def has_rejected_documents(application_id: int) -> bool:
    return (
        db.session.query(DocumentRecord.id)
        .filter(
            DocumentRecord.application_id == application_id,
            DocumentRecord.verification_status == VerificationStatus.REJECTED,
        )
        .first()
        is not None
    )
