from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError
from werkzeug.datastructures import FileStorage

from app.core.context import RequestContext
from app.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.core.extensions import db
from app.core.models import (
    Application,
    ApplicationStatus,
    DocumentRecord,
    HistoryAction,
    Program,
    utcnow,
)
from app.core.permissions import STAFF_ROLES
from app.review import config_store, history, ledger
from app.review.catalogue import NUMBER_PREFIX_KEYS, document_spec, required_document_types
from app.review.eligibility import check_eligibility, compute_fee, score_breakdown
from app.review.repository import get_application_or_404, get_document_or_404, next_application_number
from app.review.storage import StoredFile, discard, store_file

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}


def _text(payload: dict, key: str, max_length: int = 500) -> str:
    value = payload.get(key)
    return str(value).strip()[:max_length] if value is not None else ""


def _required_text(payload: dict, key: str, label: str) -> str:
    value = _text(payload, key)
    if not value:
        raise ValidationError(f"{label} is required")
    return value


def _parse_iso_date(payload: dict, key: str, label: str) -> date:
    raw = _text(payload, key)
    if not raw:
        raise ValidationError(f"{label} is required")
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid date format for {label}") from exc


def _parse_decimal(payload: dict, key: str, label: str, required: bool = True) -> Decimal | None:
    raw = _text(payload, key).replace(",", "")
    if not raw:
        if required:
            raise ValidationError(f"{label} is required")
        return None
    try:
        value = Decimal(raw).quantize(Decimal("0.01"))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount for {label}") from exc
    if value < 0:
        raise ValidationError(f"{label} cannot be negative")
    return value


def _parse_int(payload: dict, key: str, label: str, required: bool = True, minimum: int = 0) -> int | None:
    raw = _text(payload, key)
    if not raw:
        if required:
            raise ValidationError(f"{label} is required")
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{label} must be a whole number") from exc
    if value < minimum:
        raise ValidationError(f"{label} must be at least {minimum}")
    return value


def _parse_flag(payload: dict, key: str) -> bool:
    value = payload.get(key)
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in TRUE_VALUES


def _validate_email(value: str) -> str:
    if "@" not in value or value.startswith("@") or value.endswith("@"):
        raise ValidationError("Invalid email address")
    return value


def _parse_program(value: object) -> Program:
    raw = str(value or "").strip().lower()
    try:
        return Program(raw)
    except ValueError as exc:
        raise ValidationError(f"Unknown program: {raw or '(empty)'}") from exc


def _applicant_fields(payload: dict) -> dict[str, object]:
    return {
        "first_name": _required_text(payload, "first_name", "First name"),
        "last_name": _required_text(payload, "last_name", "Last name"),
        "email": _validate_email(_required_text(payload, "email", "Email")),
        "contact_number": _text(payload, "contact_number", 30),
        "address": _text(payload, "address"),
    }


def _zoning_fields(payload: dict) -> dict[str, object]:
    return {
        "project_type": _required_text(payload, "project_type", "Project type"),
        "project_description": _text(payload, "project_description", 1000),
        "project_location": _required_text(payload, "project_location", "Project location"),
        "total_lot_area_sqm": _parse_decimal(payload, "total_lot_area_sqm", "Lot area", required=False),
        "total_floor_area_sqm": _parse_decimal(payload, "total_floor_area_sqm", "Floor area"),
    }


def _housing_fields(payload: dict) -> dict[str, object]:
    program_types = config_store.get_value("housing_program_types", [])
    program_type = _required_text(payload, "program_type", "Program type")
    if program_type not in program_types:
        raise ValidationError(f"Unknown housing program type: {program_type}")
    max_units = int(config_store.get_value("max_units_per_application", Decimal("1")))
    requested_units = _parse_int(payload, "requested_units", "Requested units", required=False, minimum=1) or 1
    if requested_units > max_units:
        raise ValidationError(f"At most {max_units} units may be requested per application")
    monthly_income = _parse_decimal(payload, "monthly_income", "Monthly income")
    return {
        "birthdate": _parse_iso_date(payload, "birthdate", "Birthdate"),
        "household_size": _parse_int(payload, "household_size", "Household size", minimum=1),
        "years_at_address": _parse_int(payload, "years_at_address", "Years at address"),
        "monthly_income": monthly_income,
        "total_household_income": _parse_decimal(
            payload, "total_household_income", "Total household income", required=False
        )
        or monthly_income,
        "housing_type": _text(payload, "housing_type", 30).lower(),
        "rooms": _parse_int(payload, "rooms", "Rooms", required=False),
        "floor_area": _parse_decimal(payload, "floor_area", "Floor area", required=False),
        "program_type": program_type,
        "requested_units": requested_units,
        "is_pwd": _parse_flag(payload, "is_pwd"),
        "is_solo_parent": _parse_flag(payload, "is_solo_parent"),
        "is_ofw": _parse_flag(payload, "is_ofw"),
    }


def create_application(
    payload: dict,
    files: dict[str, FileStorage],
    ctx: RequestContext,
) -> Application:
    program = _parse_program(payload.get("program"))
    values = _applicant_fields(payload)
    if program == Program.ZONING_CLEARANCE:
        values.update(_zoning_fields(payload))
    else:
        values.update(_housing_fields(payload))

    for document_type in files:
        if document_spec(program, document_type) is None:
            raise ValidationError(f"{document_type} is not a document type of this program")
    missing = [doc for doc in required_document_types(program) if doc not in files]
    if missing:
        raise ValidationError(f"Missing required documents: {', '.join(missing)}")

    config = config_store.load_scoring_config()
    prefix_key, fallback = NUMBER_PREFIX_KEYS[program]
    number = next_application_number(str(config_store.get_value(prefix_key, fallback)))
    application = Application(
        application_number=number,
        program=program,
        status=ApplicationStatus.PENDING,
        applicant_id=ctx.actor_id,
        submitted_at=utcnow(),
        **values,
    )
    fee = compute_fee(application, config)
    application.base_fee = fee.base
    application.processing_fee = fee.processing
    application.total_fee = fee.total

    stored_files: list[StoredFile] = []
    try:
        for document_type, file_obj in files.items():
            stored = store_file(file_obj, number, document_type)
            stored_files.append(stored)
            ledger.add_document(application, document_type, stored, ctx.actor_id)
        db.session.add(application)
        db.session.flush()
        history.append(
            application.id,
            HistoryAction.CREATED,
            ctx,
            new_status=ApplicationStatus.PENDING,
            note=f"{program.value} application submitted",
            payload={"application_number": number, "program": program.value, "total_fee": f"{fee.total:.2f}"},
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        for stored in stored_files:
            discard(stored)
        raise ConflictError("Another application took the same number; submit again") from exc
    except Exception:
        db.session.rollback()
        for stored in stored_files:
            discard(stored)
        raise

    logger.info("Application %s created by user %s", number, ctx.actor_id)
    return application


def _is_staff(ctx: RequestContext) -> bool:
    return ctx.role in STAFF_ROLES


def application_for(application_id: int, ctx: RequestContext) -> Application:
    application = get_application_or_404(application_id)
    if not _is_staff(ctx) and application.applicant_id != ctx.actor_id:
        raise NotFoundError(f"Application {application_id} not found")
    return application


def list_applications(ctx: RequestContext, filters: dict[str, str]) -> list[Application]:
    query = Application.query
    if not _is_staff(ctx):
        query = query.filter_by(applicant_id=ctx.actor_id)
    if filters.get("program"):
        query = query.filter_by(program=_parse_program(filters["program"]))
    status = (filters.get("status") or "").strip().lower()
    if status:
        try:
            query = query.filter_by(status=ApplicationStatus(status))
        except ValueError as exc:
            raise ValidationError(f"Unknown status: {status}") from exc
    return query.order_by(Application.created_at.desc(), Application.id.desc()).limit(200).all()


def upload_document(
    application_id: int,
    document_type: str,
    file_obj: FileStorage | None,
    ctx: RequestContext,
) -> DocumentRecord:
    application = application_for(application_id, ctx)
    document_type = (document_type or "").strip()
    if not document_type:
        raise ValidationError("document_type is required")
    if document_spec(application.program, document_type) is None:
        raise ValidationError(f"{document_type} is not a document type of this program")
    stored = store_file(file_obj, application.application_number, document_type)
    try:
        return ledger.record_document(application_id, document_type, stored, ctx)
    except Exception:
        discard(stored)
        raise


def reupload_document(
    application_id: int,
    document_id: int,
    file_obj: FileStorage | None,
    ctx: RequestContext,
) -> DocumentRecord:
    application = application_for(application_id, ctx)
    document = get_document_or_404(application, document_id)
    stored = store_file(file_obj, application.application_number, document.document_type)
    try:
        return ledger.reupload(application_id, document_id, stored, ctx)
    except Exception:
        discard(stored)
        raise


def eligibility_report(application_id: int, ctx: RequestContext) -> dict[str, object]:
    if not _is_staff(ctx):
        raise AuthorizationError("Only staff can view eligibility reports")
    application = get_application_or_404(application_id)
    config = config_store.load_scoring_config()
    fee = compute_fee(application, config)
    report: dict[str, object] = {
        "application_number": application.application_number,
        "program": application.program.value,
        "fee": fee.to_dict(),
    }
    if application.program == Program.HOUSING_ASSISTANCE:
        breakdown = score_breakdown(application, config)
        result = check_eligibility(application, config)
        report["score"] = {
            "factors": {name: f"{value:.2f}" for name, value in breakdown.factors.items()},
            "weighted": f"{breakdown.weighted:.2f}",
            "bonus": f"{breakdown.bonus:.2f}",
            "total": f"{breakdown.total:.2f}",
        }
        report["eligibility"] = {"passed": result.passed, "reasons": result.reasons}
    return report


def stale_change_requests(cutoff: datetime) -> list[Application]:
    """Applications waiting on the applicant since before ``cutoff``."""
    return (
        Application.query.filter(
            Application.status == ApplicationStatus.REQUIRES_CHANGES,
            Application.changes_requested_at.is_not(None),
            Application.changes_requested_at < cutoff,
        )
        .order_by(Application.changes_requested_at.asc(), Application.id.asc())
        .all()
    )
