# Overview: Service-layer operations for document numbering; atomic per-day sequences.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ValidationError
from ..models import DocumentSequence
from ledgerpos.time_utils import today


DOCUMENT_TYPE_SALE = "SALE"
DOCUMENT_TYPE_PURCHASE = "PURCHASE"


def _increment(document_type: str, for_date: date) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.sequence_date == for_date,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, sequence_date=for_date)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    for_date: date | None = None,
    pad: int | None = None,
) -> str:
    """
    Atomically allocate the next document number for a type and calendar day.

    Format: {prefix}-{YYYYMMDD}-{NNNN}; numbering restarts at 1 every day.

    The counter row is bumped with a single UPDATE, which takes a row lock
    for the rest of the caller's transaction, so two concurrent writers can
    never receive the same number. The first number of a day inserts the row
    inside a SAVEPOINT; losing that insert race falls back to the UPDATE.

    Runs inside the caller's unit of work: if the caller rolls back, the
    number is released again.
    """
    if not document_type:
        raise ValidationError("document_type is required")
    if not prefix:
        raise ValidationError("prefix is required")

    for_date = for_date or today()
    if pad is None:
        pad = int(current_app.config.get("DOCUMENT_NUMBER_PAD", 4))

    next_num = _increment(document_type, for_date)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(
                    document_type=document_type,
                    sequence_date=for_date,
                    next_number=2,
                ))
            next_num = 1
        except IntegrityError:
            next_num = _increment(document_type, for_date)
            if next_num is None:
                raise

    return f"{prefix}-{for_date:%Y%m%d}-{next_num:0{pad}d}"

