# Overview: Branch-scoped daily invoice numbering backed by atomic counters.

from __future__ import annotations

from datetime import date, datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Branch, InvoiceSequence
from branchledger.time_utils import business_date
from ..validation import ValidationError, UnexpectedStorageError
from .concurrency import insert_if_absent


def format_invoice_number(branch_code: str, day: date, sequence: int, pad: int = 4) -> str:
    """{branch_code}-{YYYYMMDD}-{sequence zero-padded}; sequences past the pad keep all digits."""
    return f"{branch_code}-{day:%Y%m%d}-{sequence:0{pad}d}"


def _bump(branch_id: int, day: date) -> int | None:
    stmt = (
        update(InvoiceSequence)
        .where(
            InvoiceSequence.branch_id == branch_id,
            InvoiceSequence.business_date == day,
        )
        .values(next_number=InvoiceSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(InvoiceSequence.next_number)
        .filter_by(branch_id=branch_id, business_date=day)
        .scalar()
    )
    return current - 1


def allocate_sequence(branch_id: int, day: date) -> int:
    """
    Atomically allocate the next sequence for (branch, business day).

    The first bill of the day creates the counter row; a concurrent creator
    that loses the insert race falls through to the UPDATE. No commit: the
    increment rolls back with the caller's transaction.
    """
    allocated = _bump(branch_id, day)
    if allocated is not None:
        return allocated

    if insert_if_absent(InvoiceSequence(branch_id=branch_id, business_date=day, next_number=2)):
        return 1

    allocated = _bump(branch_id, day)
    if allocated is None:
        raise UnexpectedStorageError(f"could not allocate invoice sequence for branch {branch_id}")
    return allocated


def next_invoice_number(branch: Branch, now: datetime | None = None) -> str:
    """
    Allocate the next invoice number for a branch.

    The business day is the branch-local calendar date, so the sequence
    restarts at the branch's midnight, not the server's.
    """
    if not branch.code:
        raise ValidationError(f"branch {branch.id} has no code")

    tz_name = branch.timezone or current_app.config.get("DEFAULT_BRANCH_TIMEZONE", "UTC")
    day = business_date(tz_name, now)
    sequence = allocate_sequence(branch.id, day)
    pad = current_app.config.get("INVOICE_SEQUENCE_PAD", 4)
    return format_invoice_number(branch.code, day, sequence, pad)
