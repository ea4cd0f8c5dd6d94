from __future__ import annotations

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import JSON, Enum as SAEnum, ForeignKey, Index, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship
from werkzeug.security import generate_password_hash

from app.core.errors import WorkflowError
from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Program(str, Enum):
    ZONING_CLEARANCE = "zoning_clearance"
    HOUSING_ASSISTANCE = "housing_assistance"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    INITIAL_REVIEW = "initial_review"
    TECHNICAL_REVIEW = "technical_review"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    REQUIRES_CHANGES = "requires_changes"
    WITHDRAWN = "withdrawn"


TERMINAL_STATUSES = frozenset(
    {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN}
)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class ReviewStage(str, Enum):
    # Doubles as the document category: which office reviews the document.
    INITIAL_REVIEW = "initial_review"
    TECHNICAL_REVIEW = "technical_review"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class HistoryAction(str, Enum):
    CREATED = "created"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_UNCONFIRMED = "payment_unconfirmed"
    STATUS_CHANGED = "status_changed"
    DOCUMENT_RECORDED = "document_recorded"
    DOCUMENT_VERIFIED = "document_verified"
    DOCUMENT_REJECTED = "document_rejected"
    DOCUMENT_REUPLOADED = "document_reuploaded"
    STAFF_ASSIGNED = "staff_assigned"


class ConfigDataType(str, Enum):
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING = "string"
    JSON = "json"


# Status -> stage whose office currently holds the application.
ACTIVE_STAGE_BY_STATUS: dict[ApplicationStatus, ReviewStage] = {
    ApplicationStatus.INITIAL_REVIEW: ReviewStage.INITIAL_REVIEW,
    ApplicationStatus.TECHNICAL_REVIEW: ReviewStage.TECHNICAL_REVIEW,
    ApplicationStatus.AWAITING_APPROVAL: ReviewStage.INITIAL_REVIEW,
}


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def _money(value: Decimal | None) -> str | None:
    return f"{value:.2f}" if value is not None else None


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    # citizen | zoning_officer | building_officer | housing_officer | housing_inspector | admin
    role: Mapped[str] = mapped_column(db.String(30), nullable=False, default="citizen")
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    def to_dict(self) -> dict[str, object]:
        return {"id": self.id, "email": self.email, "full_name": self.full_name, "role": self.role}


class Application(db.Model):
    __tablename__ = "application"
    __table_args__ = (
        Index("ix_application_program_status", "program", "status"),
        Index("ix_application_applicant", "applicant_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_number: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    program: Mapped[Program] = mapped_column(SAEnum(Program, name="program"), nullable=False)
    status: Mapped[ApplicationStatus] = mapped_column(
        SAEnum(ApplicationStatus, name="application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    applicant_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)

    # Applicant identity and contact
    first_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    email: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    contact_number: Mapped[str] = mapped_column(db.String(30), nullable=False, default="")
    address: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")

    # Zoning clearance payload
    project_type: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    project_description: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    project_location: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    total_lot_area_sqm: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 2), nullable=True)
    total_floor_area_sqm: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 2), nullable=True)

    # Housing assistance payload
    birthdate: Mapped[date | None] = mapped_column(nullable=True)
    household_size: Mapped[int | None] = mapped_column(nullable=True)
    years_at_address: Mapped[int | None] = mapped_column(nullable=True)
    monthly_income: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 2), nullable=True)
    total_household_income: Mapped[Decimal | None] = mapped_column(db.Numeric(12, 2), nullable=True)
    housing_type: Mapped[str] = mapped_column(db.String(30), nullable=False, default="")
    rooms: Mapped[int | None] = mapped_column(nullable=True)
    floor_area: Mapped[Decimal | None] = mapped_column(db.Numeric(10, 2), nullable=True)
    program_type: Mapped[str] = mapped_column(db.String(40), nullable=False, default="")
    requested_units: Mapped[int] = mapped_column(nullable=False, default=1)
    is_pwd: Mapped[bool] = mapped_column(nullable=False, default=False)
    is_solo_parent: Mapped[bool] = mapped_column(nullable=False, default=False)
    is_ofw: Mapped[bool] = mapped_column(nullable=False, default=False)

    # Fee breakdown computed at submission
    base_fee: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False, default=0)
    processing_fee: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False, default=0)
    total_fee: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False, default=0)

    # Stage timestamps, null until reached
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    initial_review_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    forwarded_to_technical_at: Mapped[datetime | None] = mapped_column(nullable=True)
    returned_from_technical_at: Mapped[datetime | None] = mapped_column(nullable=True)
    changes_requested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(db.String(500), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    applicant = relationship("User")
    documents = relationship(
        "DocumentRecord",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="DocumentRecord.id",
    )
    assignments = relationship(
        "ReviewAssignment",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="ReviewAssignment.id",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_payment_confirmed(self) -> bool:
        return self.payment_status == PaymentStatus.CONFIRMED

    @property
    def custody(self) -> dict[ReviewStage, int]:
        return {assignment.stage: assignment.staff_id for assignment in self.assignments}

    @property
    def active_stage(self) -> ReviewStage | None:
        return ACTIVE_STAGE_BY_STATUS.get(self.status)

    @property
    def active_custodian_id(self) -> int | None:
        stage = self.active_stage
        return self.custody.get(stage) if stage else None

    def documents_for(self, stage: ReviewStage) -> list["DocumentRecord"]:
        return [doc for doc in self.documents if doc.category == stage]

    def to_dict(self, include_documents: bool = True) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "application_number": self.application_number,
            "program": self.program.value,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "applicant_id": self.applicant_id,
            "full_name": self.full_name,
            "email": self.email,
            "contact_number": self.contact_number,
            "address": self.address,
            "project_type": self.project_type,
            "project_description": self.project_description,
            "project_location": self.project_location,
            "total_lot_area_sqm": _money(self.total_lot_area_sqm),
            "total_floor_area_sqm": _money(self.total_floor_area_sqm),
            "birthdate": _iso(self.birthdate),
            "household_size": self.household_size,
            "years_at_address": self.years_at_address,
            "monthly_income": _money(self.monthly_income),
            "total_household_income": _money(self.total_household_income),
            "housing_type": self.housing_type,
            "rooms": self.rooms,
            "floor_area": _money(self.floor_area),
            "program_type": self.program_type,
            "requested_units": self.requested_units,
            "is_pwd": self.is_pwd,
            "is_solo_parent": self.is_solo_parent,
            "is_ofw": self.is_ofw,
            "fees": {
                "base": _money(self.base_fee),
                "processing": _money(self.processing_fee),
                "total": _money(self.total_fee),
            },
            "custody": {stage.value: staff_id for stage, staff_id in self.custody.items()},
            "active_stage": self.active_stage.value if self.active_stage else None,
            "active_custodian_id": self.active_custodian_id,
            "created_at": _iso(self.created_at),
            "submitted_at": _iso(self.submitted_at),
            "payment_confirmed_at": _iso(self.payment_confirmed_at),
            "initial_review_started_at": _iso(self.initial_review_started_at),
            "forwarded_to_technical_at": _iso(self.forwarded_to_technical_at),
            "returned_from_technical_at": _iso(self.returned_from_technical_at),
            "changes_requested_at": _iso(self.changes_requested_at),
            "reviewed_at": _iso(self.reviewed_at),
            "approved_at": _iso(self.approved_at),
            "rejected_at": _iso(self.rejected_at),
            "rejection_reason": self.rejection_reason,
        }
        if include_documents:
            data["documents"] = [doc.to_dict() for doc in self.documents]
        return data


class DocumentRecord(db.Model):
    __tablename__ = "document_record"
    __table_args__ = (
        UniqueConstraint("application_id", "document_type", name="uq_document_application_type"),
        Index("ix_document_application_category_status", "application_id", "category", "verification_status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("application.id"), nullable=False, index=True)
    document_type: Mapped[str] = mapped_column(db.String(60), nullable=False)
    category: Mapped[ReviewStage] = mapped_column(SAEnum(ReviewStage, name="review_stage"), nullable=False)
    verification_status: Mapped[VerificationStatus] = mapped_column(
        SAEnum(VerificationStatus, name="verification_status"),
        nullable=False,
        default=VerificationStatus.PENDING,
    )
    file_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(db.String(500), nullable=False)
    file_sha256: Mapped[str] = mapped_column(db.String(64), nullable=False, default="")
    file_size: Mapped[int] = mapped_column(nullable=False, default=0)
    mime_type: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    uploaded_by_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    reviewed_by_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    review_remarks: Mapped[str | None] = mapped_column(db.String(500), nullable=True)

    application = relationship("Application", back_populates="documents")
    uploaded_by = relationship("User", foreign_keys="DocumentRecord.uploaded_by_id")
    reviewer = relationship("User", foreign_keys="DocumentRecord.reviewed_by_id")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "document_type": self.document_type,
            "category": self.category.value,
            "verification_status": self.verification_status.value,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_sha256": self.file_sha256,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "uploaded_by_id": self.uploaded_by_id,
            "uploaded_at": _iso(self.uploaded_at),
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": _iso(self.reviewed_at),
            "review_remarks": self.review_remarks,
        }


class ReviewAssignment(db.Model):
    # One row per (application, stage); reassignment overwrites staff_id.
    __tablename__ = "review_assignment"
    __table_args__ = (UniqueConstraint("application_id", "stage", name="uq_assignment_application_stage"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("application.id"), nullable=False, index=True)
    stage: Mapped[ReviewStage] = mapped_column(SAEnum(ReviewStage, name="review_stage"), nullable=False)
    staff_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    application = relationship("Application", back_populates="assignments")
    staff = relationship("User")


class HistoryEntry(db.Model):
    """Append-only audit record; entries of one application form a hash chain."""

    __tablename__ = "history_entry"
    __table_args__ = (
        Index("ix_history_application_created", "application_id", "created_at", "id"),
        Index("ix_history_action", "action"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("application.id"), nullable=False)
    action: Mapped[HistoryAction] = mapped_column(SAEnum(HistoryAction, name="history_action"), nullable=False)
    old_status: Mapped[str | None] = mapped_column(db.String(30), nullable=True)
    new_status: Mapped[str | None] = mapped_column(db.String(30), nullable=True)
    reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    note: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    actor_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    ip_address: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    previous_hash: Mapped[str] = mapped_column(db.String(64), nullable=False, default="")
    entry_hash: Mapped[str] = mapped_column(db.String(64), nullable=False)

    actor = relationship("User")

    def compute_hash(self) -> str:
        created = self.created_at
        if created is not None and created.tzinfo is not None:
            # SQLite hands datetimes back naive; hash the naive UTC form.
            created = created.astimezone(timezone.utc).replace(tzinfo=None)
        action = self.action.value if isinstance(self.action, HistoryAction) else self.action
        content = json.dumps(
            {
                "application_id": self.application_id,
                "action": action,
                "old_status": self.old_status,
                "new_status": self.new_status,
                "reason": self.reason,
                "note": self.note,
                "actor_id": self.actor_id,
                "ip_address": self.ip_address,
                "user_agent": self.user_agent,
                "payload": self.payload or {},
                "created_at": created.isoformat(timespec="microseconds") if created else None,
                "previous_hash": self.previous_hash or "",
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "action": self.action.value,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "reason": self.reason,
            "note": self.note,
            "actor_id": self.actor_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "payload": self.payload or {},
            "created_at": _iso(self.created_at),
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
        }


class ConfigValue(db.Model):
    __tablename__ = "config_value"

    id: Mapped[int] = mapped_column(primary_key=True)
    config_key: Mapped[str] = mapped_column(db.String(80), unique=True, nullable=False)
    config_value: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    data_type: Mapped[ConfigDataType] = mapped_column(
        SAEnum(ConfigDataType, name="config_data_type"),
        nullable=False,
        default=ConfigDataType.STRING,
    )
    description: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    is_public: Mapped[bool] = mapped_column(nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


@event.listens_for(HistoryEntry, "before_insert")
def history_entry_before_insert(_mapper, _connection, target: HistoryEntry) -> None:
    if target.created_at is None:
        target.created_at = utcnow()
    target.entry_hash = target.compute_hash()


@event.listens_for(HistoryEntry, "before_update")
def history_entry_before_update(_mapper, _connection, target: HistoryEntry) -> None:
    raise WorkflowError(f"History entry {target.id} is immutable")


@event.listens_for(HistoryEntry, "before_delete")
def history_entry_before_delete(_mapper, _connection, target: HistoryEntry) -> None:
    raise WorkflowError(f"History entry {target.id} cannot be deleted")


# (key, value, data_type, description, is_public)
DEFAULT_CONFIG_VALUES: list[tuple[str, str, ConfigDataType, str, bool]] = [
    ("max_monthly_income_rental_subsidy", "25000", ConfigDataType.NUMBER, "Income ceiling, rental subsidy (PHP)", True),
    ("max_monthly_income_socialized_housing", "20000", ConfigDataType.NUMBER, "Income ceiling, socialized housing (PHP)", True),
    ("max_monthly_income_in_city_relocation", "30000", ConfigDataType.NUMBER, "Income ceiling, in-city relocation (PHP)", True),
    ("min_household_size", "2", ConfigDataType.NUMBER, "Minimum household size", True),
    ("max_household_size", "8", ConfigDataType.NUMBER, "Maximum household size", True),
    ("min_residency_years", "2", ConfigDataType.NUMBER, "Minimum years of residency in the city", True),
    ("income_weight", "0.40", ConfigDataType.NUMBER, "Weight of the income factor", False),
    ("household_size_weight", "0.20", ConfigDataType.NUMBER, "Weight of the household size factor", False),
    ("vulnerability_weight", "0.25", ConfigDataType.NUMBER, "Weight of the vulnerability factor", False),
    ("residency_weight", "0.10", ConfigDataType.NUMBER, "Weight of the residency factor", False),
    ("housing_condition_weight", "0.05", ConfigDataType.NUMBER, "Weight of the housing condition factor", False),
    ("senior_citizen_bonus", "10", ConfigDataType.NUMBER, "Bonus points for senior citizens (60+)", True),
    ("pwd_bonus", "15", ConfigDataType.NUMBER, "Bonus points for persons with disabilities", True),
    ("solo_parent_bonus", "10", ConfigDataType.NUMBER, "Bonus points for solo parents", True),
    ("ofw_bonus", "5", ConfigDataType.NUMBER, "Bonus points for overseas Filipino workers", True),
    ("max_bonus_points", "", ConfigDataType.NUMBER, "Cap on summed bonus points (empty = no cap)", False),
    ("info_request_timeout_days", "45", ConfigDataType.NUMBER, "Days before an open change request is auto-rejected", False),
    ("max_units_per_application", "2", ConfigDataType.NUMBER, "Maximum units per housing application", True),
    ("zoning_number_prefix", "ZC", ConfigDataType.STRING, "Prefix for zoning clearance numbers", False),
    ("housing_number_prefix", "HA", ConfigDataType.STRING, "Prefix for housing application numbers", False),
    ("zoning_base_fee", "650.00", ConfigDataType.NUMBER, "Zoning filing plus base fee (PHP)", True),
    ("zoning_fee_per_sqm", "3.00", ConfigDataType.NUMBER, "Zoning processing fee per sqm of floor area", True),
    ("housing_base_fee_rental_subsidy", "500.00", ConfigDataType.NUMBER, "Housing base fee, rental subsidy", True),
    ("housing_base_fee_socialized_housing", "1000.00", ConfigDataType.NUMBER, "Housing base fee, socialized housing", True),
    ("housing_base_fee_in_city_relocation", "750.00", ConfigDataType.NUMBER, "Housing base fee, in-city relocation", True),
    ("housing_processing_fee_per_unit", "200.00", ConfigDataType.NUMBER, "Housing processing fee per requested unit", True),
    ("housing_program_types", '["rental_subsidy", "socialized_housing", "in_city_relocation"]', ConfigDataType.JSON, "Housing program types", True),
    ("email_notifications_enabled", "true", ConfigDataType.BOOLEAN, "Send status change e-mails", False),
]


DEMO_USERS: list[tuple[str, str, str, str]] = [
    ("admin@portal.local", "Portal Administrator", "admin123", "admin"),
    ("zoning@portal.local", "Zoning Officer", "zoning123", "zoning_officer"),
    ("zoning2@portal.local", "Second Zoning Officer", "zoning123", "zoning_officer"),
    ("building@portal.local", "Building Officer", "building123", "building_officer"),
    ("building2@portal.local", "Second Building Officer", "building123", "building_officer"),
    ("housing@portal.local", "Housing Officer", "housing123", "housing_officer"),
    ("inspector@portal.local", "Housing Inspector", "inspector123", "housing_inspector"),
    ("citizen@portal.local", "Maria Santos", "citizen123", "citizen"),
    ("citizen2@portal.local", "Jose Reyes", "citizen123", "citizen"),
]


def seed_default_config(session) -> None:
    existing = {row.config_key for row in session.query(ConfigValue).all()}
    for key, value, data_type, description, is_public in DEFAULT_CONFIG_VALUES:
        if key in existing:
            continue
        session.add(
            ConfigValue(
                config_key=key,
                config_value=value,
                data_type=data_type,
                description=description,
                is_public=is_public,
            )
        )


def seed_demo_data(session) -> None:
    for email, full_name, password, role in DEMO_USERS:
        session.add(
            User(
                email=email,
                full_name=full_name,
                password_hash=generate_password_hash(password),
                role=role,
            )
        )
    seed_default_config(session)
    session.commit()
