"""
Serial Inventory Service

WHY: Serialized goods (phones, appliances) are sold unit by unit. On-hand for
such a product is the number of SerialUnit rows with status 'available' in the
branch, never a free-standing counter.

SNAPSHOT SYNC: every change to the available count is mirrored into
StockSnapshot through ledger_service.record_delta with the exact number of
units that changed (+n added, -1 removed, -n sold). Deltas compose under the
conditional snapshot UPDATE, so concurrent writers cannot overwrite each
other's counts.

ACTIVATION: stock coming in re-activates an inactive product; removing the
last available serial deactivates it (ledger_service.sync_product_activation).
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import delete, update

from ..extensions import db
from ..models import Branch, Product, SerialUnit, SerialStatus, MovementType
from ..validation import ValidationError, NotFoundError, ConflictError, DuplicateError, InsufficientStockError
from branchledger.time_utils import utcnow
from .ledger_service import resolve_branch, resolve_product, record_delta, sync_product_activation
from .concurrency import lock_for_update, run_with_retry


def normalize_serials(serials) -> list[str]:
    """Trim and drop blanks; order is preserved."""
    if not isinstance(serials, (list, tuple)):
        raise ValidationError("serial_numbers must be a list")
    return [str(s).strip() for s in serials if s is not None and str(s).strip()]


def find_duplicates(serials: list[str]) -> list[str]:
    seen = set()
    dupes = []
    for s in serials:
        if s in seen and s not in dupes:
            dupes.append(s)
        seen.add(s)
    return dupes


def _require_serial_product(branch: Branch, product_id) -> Product:
    product = resolve_product(branch, product_id, lock=True)
    if not product.is_serial_tracked:
        raise ValidationError(
            "This product does not use serial number tracking",
            details={"product_id": product.id},
        )
    return product


def add_serial_numbers(
    *,
    branch_id: int,
    product_id: int,
    serials,
    actor_id: str | None = None,
) -> list[SerialUnit]:
    """
    Register new available units for a serial-tracked product.

    Rejects the whole batch when it repeats a serial or when any serial already
    exists for (branch, product). Re-activates an inactive product.
    """
    cleaned = normalize_serials(serials)
    if not cleaned:
        raise ValidationError("At least one valid serial number is required")

    dupes = find_duplicates(cleaned)
    if dupes:
        raise DuplicateError("Duplicate serial numbers in input", details={"duplicates": dupes})

    def _op():
        branch = resolve_branch(branch_id)
        product = _require_serial_product(branch, product_id)

        existing = [
            row.serial_number
            for row in db.session.query(SerialUnit.serial_number).filter(
                SerialUnit.branch_id == branch.id,
                SerialUnit.product_id == product.id,
                SerialUnit.serial_number.in_(cleaned),
            ).all()
        ]
        if existing:
            raise DuplicateError(
                "Some serial numbers already exist",
                details={"duplicates": sorted(existing)},
            )

        units = [
            SerialUnit(
                tenant_id=branch.tenant_id,
                branch_id=branch.id,
                product_id=product.id,
                serial_number=serial,
                status=SerialStatus.AVAILABLE.value,
            )
            for serial in cleaned
        ]
        db.session.add_all(units)
        db.session.flush()

        entry = record_delta(
            branch=branch,
            product=product,
            movement_type=MovementType.STOCK_IN,
            delta=len(units),
            reason=f"Serial numbers added ({len(units)})",
            actor_id=actor_id,
        )
        sync_product_activation(product, entry)

        db.session.commit()
        current_app.logger.info(
            "Added %s serials branch=%s product=%s on_hand=%s",
            len(units), branch.id, product.id, entry.resulting_stock,
        )
        return units

    return run_with_retry(_op)


def consume_serials(
    *,
    branch: Branch,
    product: Product,
    serials: list[str],
    bill_id: int,
    reason: str | None = None,
    actor_id: str | None = None,
):
    """
    Mark serials sold for a bill and record the billing movement.

    Conditional UPDATE on status='available': if fewer rows change than were
    requested, some serial was missing or already sold and the caller's
    transaction must roll back. The movement is exactly -len(serials).
    No retry or commit; billing owns the transaction.
    """
    stmt = (
        update(SerialUnit)
        .where(
            SerialUnit.branch_id == branch.id,
            SerialUnit.product_id == product.id,
            SerialUnit.serial_number.in_(serials),
            SerialUnit.status == SerialStatus.AVAILABLE.value,
        )
        .values(status=SerialStatus.SOLD.value, bill_id=bill_id, sold_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if result.rowcount != len(serials):
        raise InsufficientStockError(
            f"Some serial numbers are not available for {product.name}",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "serial_numbers": list(serials),
            },
        )

    return record_delta(
        branch=branch,
        product=product,
        movement_type=MovementType.BILLING,
        delta=-len(serials),
        reason=reason,
        reference_id=str(bill_id),
        actor_id=actor_id,
    )


def unavailable_serials(branch_id: int, product_id: int, serials: list[str]) -> list[str]:
    """Requested serials that are not currently available (missing or sold)."""
    available = {
        row.serial_number
        for row in db.session.query(SerialUnit.serial_number).filter(
            SerialUnit.branch_id == branch_id,
            SerialUnit.product_id == product_id,
            SerialUnit.serial_number.in_(serials),
            SerialUnit.status == SerialStatus.AVAILABLE.value,
        ).all()
    }
    return [s for s in serials if s not in available]


def list_serial_numbers(*, branch_id: int, product_id: int, status: str | None = None) -> list[SerialUnit]:
    branch = resolve_branch(branch_id)
    product = resolve_product(branch, product_id)
    if not product.is_serial_tracked:
        raise ValidationError("This product does not use serial number tracking")

    q = db.session.query(SerialUnit).filter_by(branch_id=branch.id, product_id=product.id)
    if status:
        try:
            q = q.filter(SerialUnit.status == SerialStatus(status).value)
        except ValueError:
            raise ValidationError("status must be one of: available, sold, reserved")

    return q.order_by(SerialUnit.created_at.desc(), SerialUnit.id.desc()).all()


def remove_serial_number(
    *,
    branch_id: int,
    product_id: int,
    serial_number: str,
    actor_id: str | None = None,
) -> SerialUnit:
    """
    Delete an unsold serial (entered by mistake) and resync the snapshot.

    Sold serials are history and cannot be removed. Removing an available
    unit records a -1 adjustment; removing the last one deactivates the product.
    """
    def _op():
        branch = resolve_branch(branch_id)
        product = _require_serial_product(branch, product_id)

        unit = lock_for_update(db.session.query(SerialUnit).filter_by(
            branch_id=branch.id,
            product_id=product.id,
            serial_number=serial_number,
        )).first()
        if unit is None:
            raise NotFoundError("Serial number not found", details={"serial_number": serial_number})
        if unit.status == SerialStatus.SOLD.value:
            raise ValidationError("Cannot delete a sold serial number", details={"serial_number": serial_number})

        # Status must not have moved since the read (a concurrent sale wins)
        result = db.session.execute(
            delete(SerialUnit)
            .where(SerialUnit.id == unit.id, SerialUnit.status == unit.status)
            .execution_options(synchronize_session="fetch")
        )
        if not result.rowcount:
            raise ConflictError(
                "Serial number changed while it was being removed",
                details={"serial_number": serial_number},
            )

        if unit.status == SerialStatus.AVAILABLE.value:
            entry = record_delta(
                branch=branch,
                product=product,
                movement_type=MovementType.ADJUSTMENT,
                delta=-1,
                reason=f"Serial {serial_number} removed",
                actor_id=actor_id,
            )
            sync_product_activation(product, entry)

        db.session.commit()
        return unit

    return run_with_retry(_op)
