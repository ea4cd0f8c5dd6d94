from __future__ import annotations

import logging

from app.core.context import RequestContext
from app.core.errors import AuthorizationError, GuardNotSatisfied, NotFoundError, ValidationError
from app.core.extensions import db
from app.core.models import (
    Application,
    ApplicationStatus,
    HistoryAction,
    ReviewAssignment,
    ReviewStage,
    User,
    utcnow,
)
from app.review import history
from app.review.catalogue import office_roles
from app.review.repository import locked_application

logger = logging.getLogger(__name__)


def ensure_office_role(application: Application, stage: ReviewStage, ctx: RequestContext) -> None:
    if ctx.is_admin:
        return
    if ctx.role not in office_roles(application.program, stage):
        logger.info(
            "User %s (%s) refused on %s: not staff of the %s office",
            ctx.actor_id,
            ctx.role,
            application.application_number,
            stage.value,
        )
        raise AuthorizationError(f"Your role cannot act for the {stage.value.replace('_', ' ')} stage")


def ensure_custody(application: Application, stage: ReviewStage, ctx: RequestContext, strict: bool = False) -> None:
    """Only the custodian of ``stage`` may act for it once one is set.

    With ``strict`` the stage must already have a custodian.
    """
    if ctx.is_admin:
        return
    custodian_id = application.custody.get(stage)
    if custodian_id is None and not strict:
        return
    if custodian_id != ctx.actor_id:
        logger.info(
            "User %s refused on %s: custody of %s is held by %s",
            ctx.actor_id,
            application.application_number,
            stage.value,
            custodian_id,
        )
        raise AuthorizationError("You do not hold custody of this application for this stage")


def set_custodian(application: Application, stage: ReviewStage, staff_id: int) -> int | None:
    """Point ``stage`` at ``staff_id`` and return the previous holder."""
    assignment = next((row for row in application.assignments if row.stage == stage), None)
    previous = assignment.staff_id if assignment else None
    if assignment is None:
        assignment = ReviewAssignment(application_id=application.id, stage=stage, staff_id=staff_id)
        application.assignments.append(assignment)
    else:
        assignment.staff_id = staff_id
        assignment.assigned_at = utcnow()
    db.session.add(assignment)
    return previous


def _staff_member(application: Application, stage: ReviewStage, staff_id: object) -> User:
    try:
        staff_pk = int(staff_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError("staff_id must be a user id") from exc
    staff = db.session.get(User, staff_pk)
    if not staff or not staff.is_active:
        raise NotFoundError(f"Staff member {staff_id} not found")
    if staff.role != "admin" and staff.role not in office_roles(application.program, stage):
        raise ValidationError(f"{staff.full_name} is not staff of the {stage.value.replace('_', ' ')} office")
    return staff


def _assign(application: Application, stage: ReviewStage, staff: User, ctx: RequestContext) -> Application:
    previous = set_custodian(application, stage, staff.id)
    history.append(
        application.id,
        HistoryAction.STAFF_ASSIGNED,
        ctx,
        note=f"{stage.value} assigned to {staff.full_name}",
        payload={"stage": stage.value, "previous_staff_id": previous, "staff_id": staff.id},
    )
    logger.info(
        "Application %s %s custody: %s -> %s (by %s)",
        application.application_number,
        stage.value,
        previous,
        staff.id,
        ctx.actor_id,
    )
    return application


def assign_staff(application_id: int, staff_id: object, ctx: RequestContext) -> Application:
    stage = ReviewStage.INITIAL_REVIEW
    with locked_application(application_id) as application:
        if application.is_terminal:
            raise GuardNotSatisfied(f"Application is already {application.status.value}")
        ensure_office_role(application, stage, ctx)
        ensure_custody(application, stage, ctx)
        staff = _staff_member(application, stage, staff_id)
        _assign(application, stage, staff, ctx)
    return application


def assign_technical_staff(application_id: int, ctx: RequestContext, staff_id: object | None = None) -> Application:
    stage = ReviewStage.TECHNICAL_REVIEW
    with locked_application(application_id) as application:
        if application.status != ApplicationStatus.TECHNICAL_REVIEW:
            raise GuardNotSatisfied("Technical staff can only be assigned once the application is in technical review")
        ensure_office_role(application, stage, ctx)
        ensure_custody(application, stage, ctx)
        staff = _staff_member(application, stage, ctx.actor_id if staff_id in (None, "") else staff_id)
        _assign(application, stage, staff, ctx)
    return application
