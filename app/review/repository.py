from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import func, select
from sqlalchemy.orm import joinedload
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import ConflictError, NotFoundError
from app.core.extensions import db
from app.core.models import Application, DocumentRecord, utcnow

logger = logging.getLogger(__name__)


def get_application_or_404(application_id: int) -> Application:
    application = (
        Application.query.options(
            joinedload(Application.documents),
            joinedload(Application.assignments),
        )
        .filter_by(id=application_id)
        .first()
    )
    if not application:
        raise NotFoundError(f"Application {application_id} not found")
    return application


def get_document_or_404(application: Application, document_id: int) -> DocumentRecord:
    document = DocumentRecord.query.filter_by(application_id=application.id, id=document_id).first()
    if not document:
        raise NotFoundError(f"Document {document_id} not found on application {application.application_number}")
    return document


@contextmanager
def locked_application(application_id: int) -> Iterator[Application]:
    """Run one read-check-write operation on an application as a single transaction.

    The row is selected FOR UPDATE where the backend supports it and its
    version counter is bumped on commit, so a concurrent writer that read the
    same version fails with ``ConflictError`` instead of overwriting.
    Any error rolls the whole unit back.
    """
    application = (
        db.session.execute(
            select(Application)
            .where(Application.id == application_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .first()
    )
    if application is None:
        db.session.rollback()
        raise NotFoundError(f"Application {application_id} not found")

    try:
        yield application
        application.updated_at = utcnow()
        db.session.add(application)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent modification of application %s", application_id)
        raise ConflictError("The application was modified by another request; reload and retry") from exc
    except Exception:
        db.session.rollback()
        raise


def next_application_number(prefix: str) -> str:
    value_prefix = f"{prefix}-"
    count = (
        db.session.query(func.count(Application.id))
        .filter(Application.application_number.like(f"{value_prefix}%"))
        .scalar()
    )
    return f"{value_prefix}{count + 1:06d}"
