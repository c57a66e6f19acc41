# Overview: Service-layer operations for the stock ledger and stock snapshot; encapsulates business logic and database work.

from __future__ import annotations

import uuid

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Branch, Product, StockSnapshot, StockLedgerEntry, MovementType
from ..validation import ValidationError, NotFoundError, InsufficientStockError, coerce_int
from .concurrency import lock_for_update, run_with_retry, insert_if_absent
"""
Stock Ledger Invariants (authoritative)

Ledger:
- StockLedgerEntry rows are append-only; resulting = previous + signed_quantity.
- Entries are written in the same DB transaction as the snapshot change they record.

Snapshot:
- StockSnapshot.quantity == resulting_stock of the newest entry for (branch, product)
  == SUM(signed_quantity) over all entries for (branch, product).
- quantity >= 0 always; enforced by a conditional UPDATE (rows-affected checked)
  and by a CHECK constraint as the backstop.
- Only this module writes snapshots.

Signs:
- stock_in / transfer_in / purchase add; stock_out / billing / transfer_out subtract.
- adjustment is target-driven (delta = target - previous) and only via adjust_stock().
- Serial-tracked products move only through serial_service, by explicit deltas (record_delta).
"""


def resolve_branch(branch_id) -> Branch:
    branch = db.session.query(Branch).filter_by(id=branch_id).first()
    if branch is None:
        raise NotFoundError("Branch not found", details={"branch_id": branch_id})
    return branch


def resolve_product(branch: Branch, product_id, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    # Foreign-tenant products are reported as missing, not as forbidden
    if product is None or product.tenant_id != branch.tenant_id:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def get_quantity(branch_id: int, product_id: int) -> int:
    """Current snapshot quantity, 0 when the product never moved in this branch."""
    qty = db.session.query(StockSnapshot.quantity).filter_by(
        branch_id=branch_id,
        product_id=product_id,
    ).scalar()
    return int(qty or 0)


def _ensure_snapshot(branch: Branch, product: Product) -> None:
    exists = db.session.query(StockSnapshot.id).filter_by(
        branch_id=branch.id,
        product_id=product.id,
    ).scalar()
    if exists is None:
        insert_if_absent(StockSnapshot(
            tenant_id=branch.tenant_id,
            branch_id=branch.id,
            product_id=product.id,
            quantity=0,
        ))


def _apply_delta(branch: Branch, product: Product, delta: int) -> tuple[int, int]:
    """
    Atomically add delta to the snapshot unless that would go negative.

    Returns (previous, resulting). The check and the write are one statement,
    so two concurrent depletions cannot both pass on a stale read.
    """
    _ensure_snapshot(branch, product)

    stmt = (
        update(StockSnapshot)
        .where(
            StockSnapshot.branch_id == branch.id,
            StockSnapshot.product_id == product.id,
            StockSnapshot.quantity + delta >= 0,
        )
        .values(quantity=StockSnapshot.quantity + delta)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        available = get_quantity(branch.id, product.id)
        current_app.logger.warning(
            "Rejected stock movement branch=%s product=%s delta=%s available=%s",
            branch.id, product.id, delta, available,
        )
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}. Available: {available}, Required: {-delta}",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "available": available,
                "requested": -delta,
            },
        )

    resulting = get_quantity(branch.id, product.id)
    return resulting - delta, resulting


def _append_entry(
    *,
    branch: Branch,
    product: Product,
    movement_type: MovementType,
    previous: int,
    resulting: int,
    reason: str | None,
    reference_id: str | None,
    actor_id: str | None,
) -> StockLedgerEntry:
    entry = StockLedgerEntry(
        tenant_id=branch.tenant_id,
        branch_id=branch.id,
        product_id=product.id,
        movement_type=movement_type,
        signed_quantity=resulting - previous,
        previous_stock=previous,
        resulting_stock=resulting,
        reference_id=str(reference_id) if reference_id is not None else None,
        reason=reason,
        actor_id=str(actor_id) if actor_id is not None else None,
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def _coerce_movement_type(value) -> MovementType:
    try:
        return MovementType(value)
    except ValueError:
        allowed = ", ".join(m.value for m in MovementType)
        raise ValidationError(f"movement_type must be one of: {allowed}")


def record_delta(
    *,
    branch: Branch,
    product: Product,
    movement_type: MovementType,
    delta: int,
    reason: str | None,
    reference_id: str | None = None,
    actor_id: str | None = None,
) -> StockLedgerEntry:
    """
    Apply an explicit signed delta and append its entry.

    Used where the caller knows exactly how many units changed (serials added,
    removed or sold), so concurrent writers compose through the conditional
    UPDATE instead of overwriting each other's counts. No retry or commit;
    callers own the transaction.
    """
    previous, resulting = _apply_delta(branch, product, delta)
    return _append_entry(
        branch=branch,
        product=product,
        movement_type=movement_type,
        previous=previous,
        resulting=resulting,
        reason=reason,
        reference_id=reference_id,
        actor_id=actor_id,
    )


def _record_movement_inner(
    *,
    branch: Branch,
    product: Product,
    movement_type: MovementType,
    quantity: int,
    reason: str | None,
    reference_id: str | None,
    actor_id: str | None,
) -> StockLedgerEntry:
    """Core movement logic without retry or commit; callers own the transaction."""
    return record_delta(
        branch=branch,
        product=product,
        movement_type=movement_type,
        delta=movement_type.sign * quantity,
        reason=reason,
        reference_id=reference_id,
        actor_id=actor_id,
    )


def sync_product_activation(product: Product, entry: StockLedgerEntry) -> None:
    """
    Re-activate an inactive product when stock comes in; deactivate it when
    a depletion leaves the branch at zero.
    """
    if entry.signed_quantity > 0 and not product.is_active:
        product.is_active = True
        current_app.logger.info("Product %s re-activated by %s", product.id, entry.movement_type)
    elif entry.signed_quantity < 0 and entry.resulting_stock == 0 and product.is_active:
        product.is_active = False
        current_app.logger.info("Product %s deactivated: stock reached 0", product.id)


def record_movement(
    *,
    branch_id: int,
    product_id: int,
    movement_type,
    quantity,
    reason: str | None = None,
    reference_id: str | None = None,
    actor_id: str | None = None,
) -> StockLedgerEntry:
    """
    Record a signed stock movement and update the snapshot.

    quantity is the positive magnitude; the sign follows movement_type.
    Depleting movements that would take on-hand below zero raise
    InsufficientStockError and leave no trace. Stock coming in re-activates
    an inactive product; stock going out to zero deactivates it.
    """
    movement = _coerce_movement_type(movement_type)
    if movement is MovementType.ADJUSTMENT:
        raise ValidationError("adjustments must use adjust_stock with a target quantity")
    quantity = coerce_int(quantity, "quantity", minimum=1)

    def _op():
        branch = resolve_branch(branch_id)
        product = resolve_product(branch, product_id, lock=True)
        if product.is_serial_tracked:
            raise ValidationError(
                f"{product.name} is serial-tracked; stock moves through serial numbers",
                details={"product_id": product.id},
            )

        entry = _record_movement_inner(
            branch=branch,
            product=product,
            movement_type=movement,
            quantity=quantity,
            reason=reason,
            reference_id=reference_id,
            actor_id=actor_id,
        )
        sync_product_activation(product, entry)

        db.session.commit()
        return entry

    return run_with_retry(_op)


def record_recount(
    *,
    branch: Branch,
    product: Product,
    target_quantity: int,
    movement_type: MovementType,
    reason: str | None,
    reference_id: str | None = None,
    actor_id: str | None = None,
) -> StockLedgerEntry:
    """
    Move the snapshot to an absolute target under a row lock, logging the delta.

    Used when on-hand is set by a physical count. The target does not depend
    on anything read before the lock. No retry or commit; callers own the
    transaction.
    """
    if target_quantity < 0:
        raise ValidationError("target quantity must be >= 0")

    _ensure_snapshot(branch, product)
    snapshot = lock_for_update(
        db.session.query(StockSnapshot).filter_by(branch_id=branch.id, product_id=product.id)
    ).populate_existing().one()

    delta = target_quantity - snapshot.quantity
    previous, resulting = _apply_delta(branch, product, delta)
    return _append_entry(
        branch=branch,
        product=product,
        movement_type=movement_type,
        previous=previous,
        resulting=resulting,
        reason=reason,
        reference_id=reference_id,
        actor_id=actor_id,
    )


def adjust_stock(
    *,
    branch_id: int,
    product_id: int,
    target_quantity,
    reason: str,
    actor_id: str | None = None,
) -> StockLedgerEntry:
    """
    Correct on-hand to an absolute target (e.g. after a physical count).

    Negative targets are rejected; any non-negative target is allowed,
    including a zero delta, which is still recorded as a confirmed count.
    """
    target = coerce_int(target_quantity, "target_quantity", minimum=0)
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required for adjustments")

    def _op():
        branch = resolve_branch(branch_id)
        product = resolve_product(branch, product_id)
        if product.is_serial_tracked:
            raise ValidationError(
                f"{product.name} is serial-tracked; add or remove serial numbers instead",
                details={"product_id": product.id},
            )

        entry = record_recount(
            branch=branch,
            product=product,
            target_quantity=target,
            movement_type=MovementType.ADJUSTMENT,
            reason=reason,
            actor_id=actor_id,
        )
        db.session.commit()
        current_app.logger.info(
            "Stock adjusted branch=%s product=%s %s -> %s",
            branch.id, product.id, entry.previous_stock, entry.resulting_stock,
        )
        return entry

    return run_with_retry(_op)


def transfer_stock(
    *,
    from_branch_id: int,
    to_branch_id: int,
    product_id: int,
    quantity,
    reason: str | None = None,
    actor_id: str | None = None,
) -> tuple[StockLedgerEntry, StockLedgerEntry]:
    """
    Move stock between two branches of the same tenant.

    Both legs share one transaction and one transfer reference: if the
    destination leg fails, the source deduction is rolled back with it.
    """
    quantity = coerce_int(quantity, "quantity", minimum=1)
    if from_branch_id == to_branch_id:
        raise ValidationError("Cannot transfer to the same branch")

    def _op():
        source = resolve_branch(from_branch_id)
        destination = resolve_branch(to_branch_id)
        if source.tenant_id != destination.tenant_id:
            raise ValidationError("Cannot transfer between branches of different tenants")

        product = resolve_product(source, product_id)
        if product.is_serial_tracked:
            raise ValidationError(
                f"{product.name} is serial-tracked; transfer is not supported for serial stock",
                details={"product_id": product.id},
            )

        transfer_ref = f"TRF-{uuid.uuid4().hex[:12].upper()}"
        note = reason or f"Transfer {source.code} -> {destination.code}"

        out_entry = _record_movement_inner(
            branch=source,
            product=product,
            movement_type=MovementType.TRANSFER_OUT,
            quantity=quantity,
            reason=note,
            reference_id=transfer_ref,
            actor_id=actor_id,
        )
        in_entry = _record_movement_inner(
            branch=destination,
            product=product,
            movement_type=MovementType.TRANSFER_IN,
            quantity=quantity,
            reason=note,
            reference_id=transfer_ref,
            actor_id=actor_id,
        )

        db.session.commit()
        current_app.logger.info(
            "Transfer %s product=%s qty=%s %s -> %s",
            transfer_ref, product.id, quantity, source.id, destination.id,
        )
        return out_entry, in_entry

    return run_with_retry(_op)


def get_ledger(*, branch_id: int, product_id: int, limit: int | None = None) -> list[StockLedgerEntry]:
    """Ledger entries for (branch, product), newest first, at most LEDGER_PAGE_LIMIT."""
    branch = resolve_branch(branch_id)
    resolve_product(branch, product_id)
    page_limit = current_app.config.get("LEDGER_PAGE_LIMIT", 200)
    limit = page_limit if limit is None else min(coerce_int(limit, "limit", minimum=1), page_limit)

    return (
        db.session.query(StockLedgerEntry)
        .filter_by(branch_id=branch_id, product_id=product_id)
        .order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def get_current_stock(*, branch_id: int) -> list[tuple[Product, int]]:
    """(product, quantity) for every active product with stock in the branch."""
    resolve_branch(branch_id)
    rows = (
        db.session.query(Product, StockSnapshot.quantity)
        .join(StockSnapshot, StockSnapshot.product_id == Product.id)
        .filter(
            StockSnapshot.branch_id == branch_id,
            StockSnapshot.quantity > 0,
            Product.is_active.is_(True),
        )
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    return [(product, int(qty)) for product, qty in rows]


def verify_snapshots(*, branch_id: int | None = None) -> list[dict]:
    """
    Reconcile snapshots against the ledger.

    Returns one dict per (branch, product) whose snapshot differs from the
    newest entry's resulting_stock or from the sum of signed deltas.
    """
    sums = (
        db.session.query(
            StockLedgerEntry.branch_id,
            StockLedgerEntry.product_id,
            func.coalesce(func.sum(StockLedgerEntry.signed_quantity), 0).label("total"),
            func.max(StockLedgerEntry.id).label("last_id"),
        )
        .group_by(StockLedgerEntry.branch_id, StockLedgerEntry.product_id)
    )
    snapshots = db.session.query(StockSnapshot)
    if branch_id is not None:
        sums = sums.filter(StockLedgerEntry.branch_id == branch_id)
        snapshots = snapshots.filter(StockSnapshot.branch_id == branch_id)

    ledger = {(row.branch_id, row.product_id): row for row in sums.all()}
    mismatches = []
    seen = set()

    for snap in snapshots.all():
        key = (snap.branch_id, snap.product_id)
        seen.add(key)
        row = ledger.get(key)
        total = int(row.total) if row else 0
        newest = (
            db.session.query(StockLedgerEntry.resulting_stock).filter_by(id=row.last_id).scalar()
            if row else 0
        )
        if snap.quantity != total or snap.quantity != newest:
            mismatches.append({
                "branch_id": snap.branch_id,
                "product_id": snap.product_id,
                "snapshot": snap.quantity,
                "ledger_sum": total,
                "newest_resulting": newest,
            })

    for key, row in ledger.items():
        if key not in seen:
            mismatches.append({
                "branch_id": key[0],
                "product_id": key[1],
                "snapshot": None,
                "ledger_sum": int(row.total),
                "newest_resulting": None,
            })

    return mismatches
