from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from app.core.context import RequestContext
from app.core.errors import AuthorizationError, GuardNotSatisfied, ValidationError
from app.core.extensions import db
from app.core.models import (
    Application,
    ApplicationStatus,
    HistoryAction,
    PaymentStatus,
    ReviewStage,
    utcnow,
)
from app.review import history
from app.review.catalogue import office_roles
from app.review.custody import ensure_custody, ensure_office_role, set_custodian
from app.review.ledger import has_rejected_documents, is_stage_complete
from app.review.repository import locked_application

logger = logging.getLogger(__name__)

Guard = Callable[[Application], str | None]


def _payment_confirmed(application: Application) -> str | None:
    if application.payment_status != PaymentStatus.CONFIRMED:
        return "Payment must be confirmed before initial review can start"
    return None


def _first_stage_complete(application: Application) -> str | None:
    if not is_stage_complete(application.id, ReviewStage.INITIAL_REVIEW):
        return "All initial review documents must be verified before forwarding to technical review"
    return None


def _second_stage_complete(application: Application) -> str | None:
    if not is_stage_complete(application.id, ReviewStage.TECHNICAL_REVIEW):
        return "All technical documents must be verified before returning the application"
    return None


def _has_rejected_document(application: Application) -> str | None:
    if not has_rejected_documents(application.id):
        return "Reject at least one document before requesting changes"
    return None


def _no_rejected_documents(application: Application) -> str | None:
    if has_rejected_documents(application.id):
        return "Re-upload every rejected document before resubmitting"
    return None


@dataclass(frozen=True)
class Transition:
    name: str
    sources: frozenset[ApplicationStatus]
    target: ApplicationStatus
    # Office that acts; None means the office holding the current status.
    stage: ReviewStage | None = None
    guard: Guard | None = None
    requires_reason: bool = False
    claims_custody: bool = False
    applicant_may_act: bool = False
    applicant_only: bool = False
    timestamp_field: str | None = None


OPEN_REVIEW_STATUSES = frozenset(
    {ApplicationStatus.PENDING, ApplicationStatus.INITIAL_REVIEW, ApplicationStatus.TECHNICAL_REVIEW}
)

TRANSITIONS: dict[str, Transition] = {
    "start_initial_review": Transition(
        name="start_initial_review",
        sources=frozenset({ApplicationStatus.PENDING}),
        target=ApplicationStatus.INITIAL_REVIEW,
        stage=ReviewStage.INITIAL_REVIEW,
        guard=_payment_confirmed,
        claims_custody=True,
        timestamp_field="initial_review_started_at",
    ),
    "forward_to_technical": Transition(
        name="forward_to_technical",
        sources=frozenset({ApplicationStatus.INITIAL_REVIEW}),
        target=ApplicationStatus.TECHNICAL_REVIEW,
        stage=ReviewStage.INITIAL_REVIEW,
        guard=_first_stage_complete,
        timestamp_field="forwarded_to_technical_at",
    ),
    "return_to_zoning": Transition(
        name="return_to_zoning",
        sources=frozenset({ApplicationStatus.TECHNICAL_REVIEW}),
        target=ApplicationStatus.AWAITING_APPROVAL,
        stage=ReviewStage.TECHNICAL_REVIEW,
        guard=_second_stage_complete,
        claims_custody=True,
        timestamp_field="returned_from_technical_at",
    ),
    "approve": Transition(
        name="approve",
        sources=frozenset({ApplicationStatus.AWAITING_APPROVAL}),
        target=ApplicationStatus.APPROVED,
        stage=ReviewStage.INITIAL_REVIEW,
        timestamp_field="approved_at",
    ),
    "reject": Transition(
        name="reject",
        sources=OPEN_REVIEW_STATUSES | {ApplicationStatus.REQUIRES_CHANGES},
        target=ApplicationStatus.REJECTED,
        requires_reason=True,
        timestamp_field="rejected_at",
    ),
    "request_changes": Transition(
        name="request_changes",
        sources=OPEN_REVIEW_STATUSES,
        target=ApplicationStatus.REQUIRES_CHANGES,
        guard=_has_rejected_document,
        requires_reason=True,
        timestamp_field="changes_requested_at",
    ),
    "resubmit": Transition(
        name="resubmit",
        sources=frozenset({ApplicationStatus.REQUIRES_CHANGES}),
        target=ApplicationStatus.PENDING,
        stage=ReviewStage.INITIAL_REVIEW,
        guard=_no_rejected_documents,
        applicant_may_act=True,
    ),
    "withdraw": Transition(
        name="withdraw",
        sources=frozenset({ApplicationStatus.PENDING, ApplicationStatus.REQUIRES_CHANGES}),
        target=ApplicationStatus.WITHDRAWN,
        stage=ReviewStage.INITIAL_REVIEW,
        applicant_may_act=True,
        applicant_only=True,
    ),
}


def acting_stage(transition: Transition, application: Application) -> ReviewStage:
    if transition.stage is not None:
        return transition.stage
    return application.active_stage or ReviewStage.INITIAL_REVIEW


def _authorize(transition: Transition, application: Application, ctx: RequestContext) -> ReviewStage:
    stage = acting_stage(transition, application)
    if transition.applicant_may_act and ctx.actor_id == application.applicant_id:
        return stage
    if transition.applicant_only:
        raise AuthorizationError(f"Only the applicant can {transition.name.replace('_', ' ')} this application")
    ensure_office_role(application, stage, ctx)
    return stage


def available_transitions(application: Application, ctx: RequestContext) -> list[str]:
    """Names of transitions whose source status and role match; guards are not evaluated."""
    names = []
    for transition in TRANSITIONS.values():
        if application.status not in transition.sources:
            continue
        stage = acting_stage(transition, application)
        if transition.applicant_only:
            if ctx.actor_id == application.applicant_id:
                names.append(transition.name)
            continue
        if ctx.is_admin or ctx.role in office_roles(application.program, stage):
            names.append(transition.name)
        elif transition.applicant_may_act and ctx.actor_id == application.applicant_id:
            names.append(transition.name)
    return names


def apply_transition(
    application_id: int,
    action: str,
    ctx: RequestContext,
    reason: str | None = None,
    note: str | None = None,
) -> Application:
    transition = TRANSITIONS.get(action)
    if transition is None:
        raise ValidationError(f"Unknown transition: {action}")

    with locked_application(application_id) as application:
        stage = _authorize(transition, application, ctx)
        old_status = application.status
        if old_status not in transition.sources:
            raise GuardNotSatisfied(
                f"Cannot {transition.name.replace('_', ' ')} an application that is {old_status.value}"
            )
        is_applicant = transition.applicant_may_act and ctx.actor_id == application.applicant_id
        if not is_applicant:
            ensure_custody(application, stage, ctx)
        if transition.requires_reason and not (reason or "").strip():
            raise ValidationError(f"A reason is required to {transition.name.replace('_', ' ')}")
        if transition.guard is not None:
            failure = transition.guard(application)
            if failure:
                logger.info(
                    "Transition %s refused on %s: %s",
                    transition.name,
                    application.application_number,
                    failure,
                )
                raise GuardNotSatisfied(failure)

        now = utcnow()
        application.status = transition.target
        if transition.timestamp_field:
            setattr(application, transition.timestamp_field, now)
        if transition.target in (ApplicationStatus.APPROVED, ApplicationStatus.REJECTED):
            application.reviewed_at = now
        if transition.target == ApplicationStatus.REJECTED:
            application.rejection_reason = reason.strip()

        payload: dict[str, object] = {"transition": transition.name, "stage": stage.value}
        if transition.claims_custody and application.custody.get(stage) is None:
            set_custodian(application, stage, ctx.actor_id)
            payload["custodian_id"] = ctx.actor_id
        db.session.add(application)

        history.append(
            application.id,
            HistoryAction.STATUS_CHANGED,
            ctx,
            old_status=old_status,
            new_status=transition.target,
            reason=reason.strip() if reason else None,
            note=note or None,
            payload=payload,
        )
    logger.info(
        "Application %s: %s -> %s (%s by %s)",
        application.application_number,
        old_status.value,
        transition.target.value,
        transition.name,
        ctx.actor_id,
    )
    return application


def _set_payment(application_id: int, ctx: RequestContext, target: PaymentStatus, note: str | None) -> Application:
    with locked_application(application_id) as application:
        if not ctx.is_admin and ctx.role not in office_roles(application.program, ReviewStage.INITIAL_REVIEW):
            raise AuthorizationError("Only staff of the receiving office can change payment status")
        previous = application.payment_status
        if previous == target:
            raise GuardNotSatisfied(f"Payment is already {target.value}")

        application.payment_status = target
        application.payment_confirmed_at = utcnow() if target == PaymentStatus.CONFIRMED else None
        db.session.add(application)
        history.append(
            application.id,
            HistoryAction.PAYMENT_CONFIRMED if target == PaymentStatus.CONFIRMED else HistoryAction.PAYMENT_UNCONFIRMED,
            ctx,
            note=note or None,
            payload={"previous_payment_status": previous.value, "payment_status": target.value},
        )
    logger.info("Application %s payment %s -> %s by %s", application.application_number, previous.value, target.value, ctx.actor_id)
    return application


def confirm_payment(application_id: int, ctx: RequestContext, note: str | None = None) -> Application:
    return _set_payment(application_id, ctx, PaymentStatus.CONFIRMED, note)


def mark_unpaid(application_id: int, ctx: RequestContext, note: str | None = None) -> Application:
    return _set_payment(application_id, ctx, PaymentStatus.PENDING, note)
