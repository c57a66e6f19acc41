from __future__ import annotations

import enum

from sqlalchemy import event

from ..extensions import db
from ..validation import LedgerImmutableError
from branchledger.time_utils import to_utc_z


class MovementType(str, enum.Enum):
    """Closed set of stock movement kinds recorded in the ledger."""
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    ADJUSTMENT = "adjustment"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    BILLING = "billing"
    PURCHASE = "purchase"

    @property
    def is_depleting(self) -> bool:
        return self in DEPLETING_MOVEMENTS

    @property
    def sign(self) -> int:
        """+1 for additions, -1 for depletions; 0 for ADJUSTMENT (delta is target-driven)."""
        if self is MovementType.ADJUSTMENT:
            return 0
        return -1 if self.is_depleting else 1


DEPLETING_MOVEMENTS = frozenset({
    MovementType.STOCK_OUT,
    MovementType.BILLING,
    MovementType.TRANSFER_OUT,
})


class StockTrackingMode(str, enum.Enum):
    QUANTITY = "quantity"
    SERIAL = "serial"


class SerialStatus(str, enum.Enum):
    AVAILABLE = "available"
    SOLD = "sold"
    RESERVED = "reserved"


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products belong to a tenant and are stocked per branch.
    Catalogue management is external; this core only reads price/GST/tracking
    mode and flips is_active on serial stock transitions.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")

    # Authoritative storage in minor units; rates in basis points (1800 = 18%)
    selling_price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    purchase_price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    gst_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    min_stock = db.Column(db.Integer, nullable=False, default=0)
    stock_tracking_mode = db.Column(
        db.String(16),
        nullable=False,
        default=StockTrackingMode.QUANTITY.value,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))

    @property
    def is_serial_tracked(self) -> bool:
        return self.stock_tracking_mode == StockTrackingMode.SERIAL.value

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "sku": self.sku,
            "unit": self.unit,
            "selling_price_cents": self.selling_price_cents,
            "purchase_price_cents": self.purchase_price_cents,
            "gst_rate_bps": self.gst_rate_bps,
            "min_stock": self.min_stock,
            "stock_tracking_mode": self.stock_tracking_mode,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StockSnapshot(db.Model):
    """
    Current quantity per (branch, product), materialized from the ledger.

    Never written directly by callers: ledger_service is the only writer, and it
    always appends the matching StockLedgerEntry in the same transaction.
    """
    __tablename__ = "stock_snapshots"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_stock_snapshots_branch_product"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_snapshots_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockLedgerEntry(db.Model):
    """
    Append-only record of one stock movement.

    IMMUTABLE: rows are never updated or deleted (enforced by mapper events
    below and by the CHECK on resulting = previous + signed).
    """
    __tablename__ = "stock_ledger"
    __table_args__ = (
        db.Index("ix_stock_ledger_branch_product_created", "branch_id", "product_id", "created_at"),
        db.Index("ix_stock_ledger_reference", "reference_id"),
        db.CheckConstraint(
            "resulting_stock = previous_stock + signed_quantity",
            name="ck_stock_ledger_arithmetic",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)

    signed_quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    resulting_stock = db.Column(db.Integer, nullable=False)

    # Back-reference only (bill id, transfer ref); never used for cleanup
    reference_id = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    actor_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __init__(self, **kwargs):
        movement_type = kwargs.get("movement_type")
        if isinstance(movement_type, MovementType):
            kwargs["movement_type"] = movement_type.value
        elif movement_type not in {m.value for m in MovementType}:
            raise ValueError(f"unknown movement_type {movement_type!r}")

        previous = kwargs.get("previous_stock")
        signed = kwargs.get("signed_quantity")
        resulting = kwargs.get("resulting_stock")
        if None in (previous, signed, resulting) or resulting != previous + signed:
            raise ValueError("resulting_stock must equal previous_stock + signed_quantity")
        super().__init__(**kwargs)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "signed_quantity": self.signed_quantity,
            "previous_stock": self.previous_stock,
            "resulting_stock": self.resulting_stock,
            "reference_id": self.reference_id,
            "reason": self.reason,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockLedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise LedgerImmutableError(f"stock ledger entry {target.id} is immutable")


@event.listens_for(StockLedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(f"stock ledger entry {target.id} cannot be deleted")


class SerialUnit(db.Model):
    """
    One individually identified unit of a serial-tracked product.

    On-hand for serial products = COUNT(status='available') per (branch, product),
    mirrored into StockSnapshot through the ledger.
    """
    __tablename__ = "serial_units"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "branch_id", "product_id", "serial_number",
            name="uq_serial_units_branch_product_serial",
        ),
        db.Index("ix_serial_units_branch_product_status", "branch_id", "product_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    serial_number = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SerialStatus.AVAILABLE.value)

    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "serial_number": self.serial_number,
            "status": self.status,
            "bill_id": self.bill_id,
            "sold_at": to_utc_z(self.sold_at) if self.sold_at else None,
            "created_at": to_utc_z(self.created_at),
        }
