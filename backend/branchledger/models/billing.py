from __future__ import annotations

from ..extensions import db
from branchledger.time_utils import to_utc_z

class Bill(db.Model):
    """
    Sales bill (invoice header).

    Created once at checkout, together with its items and stock deductions, in
    one DB transaction. paid/due may later be changed by payment collection
    (outside this core). Never deleted.

    All amounts in minor units (cents/paise).
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "invoice_number", name="uq_bills_branch_invoice"),
        db.Index("ix_bills_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Human-readable invoice number (e.g., "MUM1-20260117-0001")
    invoice_number = db.Column(db.String(64), nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    subtotal_cents = db.Column(db.BigInteger, nullable=False, default=0)
    discount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    gst_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    profit_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    # Payment tracking: credit sales start fully due
    paid_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    due_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    payment_mode = db.Column(db.String(32), nullable=False, default="cash")

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("bills", lazy=True))
    items = db.relationship(
        "BillItem",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillItem.id",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Bill id={self.id} invoice_number={self.invoice_number!r} branch_id={self.branch_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "invoice_number": self.invoice_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "gst_amount_cents": self.gst_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "profit_amount_cents": self.profit_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "due_amount_cents": self.due_amount_cents,
            "payment_mode": self.payment_mode,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }

class BillItem(db.Model):
    """Line item on a bill; product_name/prices are snapshots at sale time."""
    __tablename__ = "bill_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    purchase_price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    gst_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    gst_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    discount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount_cents = db.Column(db.BigInteger, nullable=False)
    profit_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    serial_numbers = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bill = db.relationship("Bill", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "purchase_price_cents": self.purchase_price_cents,
            "gst_rate_bps": self.gst_rate_bps,
            "gst_amount_cents": self.gst_amount_cents,
            "discount_cents": self.discount_cents,
            "total_amount_cents": self.total_amount_cents,
            "profit_amount_cents": self.profit_amount_cents,
            "serial_numbers": self.serial_numbers,
            "created_at": to_utc_z(self.created_at),
        }

class InvoiceSequence(db.Model):
    """
    Atomic per-branch, per-business-day invoice counters.

    WHY: counting today's bills and adding one lets two concurrent checkouts
    compute the same number; the counter row is bumped with a single UPDATE.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "business_date", name="uq_invoice_sequences_branch_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "business_date": self.business_date.isoformat(),
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
