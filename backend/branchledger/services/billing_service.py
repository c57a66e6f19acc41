"""
Billing Service - checkout as one transaction

WHY: A bill is only meaningful together with its items and the stock it took.
Header, items, invoice sequence and ledger movements are written in a single
DB transaction: either all of them exist afterwards or none do.

ORDER (fixed):
1. Resolve branch -> tenant, validate inputs
2. Pre-validate stock (fast failure, no writes)
3. Compute totals
4. Allocate invoice number, add Bill header
5. Per item: add BillItem, record billing movement (or consume serials)
6. Commit; any failure in 4-5 rolls everything back

The pre-check in step 2 is advisory: the authoritative check is the
conditional snapshot UPDATE in step 5, which cannot oversell under
concurrent checkouts.

ROUNDING (single discipline, integer minor units):
- item_subtotal = quantity * unit_price
- after_discount = item_subtotal - item_discount
- item_gst = round_half_up(after_discount * gst_rate_bps / 10000)
- item_total = after_discount + item_gst
- bill figures are exact sums of the rounded item figures; the overall
  discount is added to the discount total and never re-rounded.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Bill, BillItem, Product, MovementType
from ..validation import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    DuplicateError,
    UnexpectedStorageError,
    coerce_int,
    coerce_str,
    coerce_str_list,
    enforce_rules_price,
    enforce_rules_rate,
)
from .ledger_service import resolve_branch, resolve_product, get_quantity, _record_movement_inner
from .serial_service import consume_serials, unavailable_serials, find_duplicates
from .invoice_service import next_invoice_number
from .concurrency import run_with_retry


PAYMENT_MODES = ("cash", "card", "upi", "bank_transfer", "credit")
CREDIT_MODE = "credit"

BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class LineItemInput:
    """One requested bill line, validated at construction."""
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    gst_rate_bps: int | None = None
    discount_cents: int = 0
    serial_numbers: tuple[str, ...] = ()

    def __post_init__(self):
        if not self.product_name:
            raise ValidationError("product_name is required")
        if self.quantity <= 0:
            raise ValidationError(
                f"Invalid quantity for {self.product_name}. Quantity must be greater than 0."
            )
        enforce_rules_price(self.unit_price_cents, "unit_price_cents")
        if self.gst_rate_bps is not None:
            enforce_rules_rate(self.gst_rate_bps, "gst_rate_bps")
        if self.discount_cents < 0:
            raise ValidationError("discount_cents must be >= 0")
        if self.discount_cents > self.quantity * self.unit_price_cents:
            raise ValidationError(
                f"Discount for {self.product_name} exceeds the line amount",
            )
        if self.serial_numbers:
            dupes = find_duplicates(list(self.serial_numbers))
            if dupes:
                raise ValidationError(
                    f"Duplicate serial numbers for {self.product_name}",
                    details={"duplicates": dupes},
                )

    @classmethod
    def from_payload(cls, raw, index: int = 0) -> "LineItemInput":
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")

        missing = [k for k in ("product_id", "product_name", "quantity", "unit_price_cents") if raw.get(k) is None]
        if missing:
            raise ValidationError(
                "Each item must have product_id, product_name, quantity, and unit_price_cents",
                details={"index": index, "missing": missing},
            )

        serials = raw.get("serial_numbers")
        return cls(
            product_id=coerce_int(raw["product_id"], "product_id", minimum=1),
            product_name=coerce_str(raw["product_name"], "product_name", max_length=255),
            quantity=coerce_int(raw["quantity"], "quantity"),
            unit_price_cents=coerce_int(raw["unit_price_cents"], "unit_price_cents"),
            gst_rate_bps=(
                coerce_int(raw["gst_rate_bps"], "gst_rate_bps")
                if raw.get("gst_rate_bps") is not None else None
            ),
            discount_cents=coerce_int(raw.get("discount_cents") or 0, "discount_cents"),
            serial_numbers=tuple(
                s.strip() for s in coerce_str_list(serials, "serial_numbers") if s.strip()
            ) if serials is not None else (),
        )


@dataclass(frozen=True)
class CustomerInfo:
    name: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class LineTotals:
    subtotal_cents: int
    discount_cents: int
    gst_amount_cents: int
    total_amount_cents: int


@dataclass(frozen=True)
class BillTotals:
    subtotal_cents: int
    discount_cents: int
    gst_amount_cents: int
    total_amount_cents: int
    lines: tuple[LineTotals, ...] = ()


@dataclass
class BillResult:
    bill: Bill
    items: list[BillItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "bill": self.bill.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up (non-negative numerator)."""
    return (numerator + (denominator // 2)) // denominator


def compute_line_totals(
    *,
    quantity: int,
    unit_price_cents: int,
    discount_cents: int,
    gst_rate_bps: int,
) -> LineTotals:
    subtotal = quantity * unit_price_cents
    after_discount = subtotal - discount_cents
    gst = round_half_up_div(after_discount * gst_rate_bps, BPS_DENOMINATOR)
    return LineTotals(
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        gst_amount_cents=gst,
        total_amount_cents=after_discount + gst,
    )


def compute_bill_totals(lines: list[LineTotals], overall_discount_cents: int = 0) -> BillTotals:
    """
    Aggregate rounded line figures.

    Per-item and overall discounts are additive. The overall discount comes off
    the total only; GST stays as computed per item.
    """
    subtotal = sum(line.subtotal_cents for line in lines)
    item_discount = sum(line.discount_cents for line in lines)
    gst = sum(line.gst_amount_cents for line in lines)

    if overall_discount_cents < 0:
        raise ValidationError("overall_discount_cents must be >= 0")
    if overall_discount_cents > subtotal - item_discount:
        raise ValidationError("Overall discount exceeds the discounted subtotal")

    discount = item_discount + overall_discount_cents
    return BillTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        gst_amount_cents=gst,
        total_amount_cents=subtotal - discount + gst,
        lines=tuple(lines),
    )


def _validate_stock(branch, resolved: list[tuple[LineItemInput, Product]]) -> None:
    """Read-only pre-check; raises before any write."""
    quantity_totals: dict[int, int] = {}
    products: dict[int, Product] = {}
    serials_by_product: dict[int, list[str]] = {}

    for item, product in resolved:
        products[product.id] = product
        if product.is_serial_tracked:
            if len(item.serial_numbers) != item.quantity:
                raise ValidationError(
                    f"Quantity mismatch for {product.name}. Selected {len(item.serial_numbers)} "
                    f"serials but quantity is {item.quantity}",
                    details={"product_id": product.id},
                )
            serials_by_product.setdefault(product.id, []).extend(item.serial_numbers)
        else:
            if item.serial_numbers:
                raise ValidationError(
                    f"{product.name} is not serial-tracked; serial_numbers are not accepted",
                    details={"product_id": product.id},
                )
            quantity_totals[product.id] = quantity_totals.get(product.id, 0) + item.quantity

    insufficient = []
    for product_id, requested in quantity_totals.items():
        available = get_quantity(branch.id, product_id)
        if available < requested:
            insufficient.append({
                "product_id": product_id,
                "product_name": products[product_id].name,
                "available": available,
                "requested": requested,
            })

    for product_id, serials in serials_by_product.items():
        dupes = find_duplicates(serials)
        if dupes:
            raise ValidationError(
                f"Serial numbers repeated across lines for {products[product_id].name}",
                details={"duplicates": dupes},
            )
        missing = unavailable_serials(branch.id, product_id, serials)
        if missing:
            insufficient.append({
                "product_id": product_id,
                "product_name": products[product_id].name,
                "unavailable_serial_numbers": missing,
            })

    if insufficient:
        first = insufficient[0]
        if "unavailable_serial_numbers" in first:
            message = f"Some serial numbers are not available for {first['product_name']}"
        else:
            message = (
                f"Insufficient stock for {first['product_name']}. "
                f"Available: {first['available']}, Required: {first['requested']}"
            )
        raise InsufficientStockError(message, details={"items": insufficient})


def create_bill(
    *,
    branch_id: int,
    line_items,
    customer: CustomerInfo | None = None,
    payment_mode: str = "cash",
    overall_discount_cents: int = 0,
    actor_id: str | None = None,
) -> BillResult:
    """
    Create a bill with its items and stock deductions, all or nothing.

    line_items: LineItemInput instances or raw dicts (validated here).
    Raises ValidationError / NotFoundError / InsufficientStockError before any
    write; DuplicateError or UnexpectedStorageError if persistence fails
    (everything rolled back).
    """
    if not line_items:
        raise ValidationError("branch_id and items are required")
    items = [
        item if isinstance(item, LineItemInput) else LineItemInput.from_payload(item, i)
        for i, item in enumerate(line_items)
    ]
    if payment_mode not in PAYMENT_MODES:
        raise ValidationError(f"payment_mode must be one of: {', '.join(PAYMENT_MODES)}")
    overall_discount_cents = coerce_int(overall_discount_cents or 0, "overall_discount_cents", minimum=0)
    customer = customer or CustomerInfo()

    def _op():
        branch = resolve_branch(branch_id)
        resolved = [(item, resolve_product(branch, item.product_id)) for item in items]

        _validate_stock(branch, resolved)

        line_totals = [
            compute_line_totals(
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                discount_cents=item.discount_cents,
                gst_rate_bps=_effective_rate(item, product),
            )
            for item, product in resolved
        ]
        totals = compute_bill_totals(line_totals, overall_discount_cents)
        profit = sum(
            (item.unit_price_cents - (product.purchase_price_cents or 0)) * item.quantity
            for item, product in resolved
        )

        is_credit = payment_mode == CREDIT_MODE

        try:
            invoice_number = next_invoice_number(branch)
            bill = Bill(
                tenant_id=branch.tenant_id,
                branch_id=branch.id,
                invoice_number=invoice_number,
                customer_name=customer.name,
                customer_phone=customer.phone,
                subtotal_cents=totals.subtotal_cents,
                discount_cents=totals.discount_cents,
                gst_amount_cents=totals.gst_amount_cents,
                total_amount_cents=totals.total_amount_cents,
                profit_amount_cents=profit,
                paid_amount_cents=0 if is_credit else totals.total_amount_cents,
                due_amount_cents=totals.total_amount_cents if is_credit else 0,
                payment_mode=payment_mode,
                created_by=str(actor_id) if actor_id is not None else None,
            )
            db.session.add(bill)
            db.session.flush()  # bill.id for item FKs and ledger references

            reason = f"Billing - Invoice {invoice_number}"
            for (item, product), line in zip(resolved, line_totals):
                purchase_price = product.purchase_price_cents or 0
                bill.items.append(BillItem(
                    product_id=product.id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    purchase_price_cents=purchase_price,
                    gst_rate_bps=_effective_rate(item, product),
                    gst_amount_cents=line.gst_amount_cents,
                    discount_cents=item.discount_cents,
                    total_amount_cents=line.total_amount_cents,
                    profit_amount_cents=(item.unit_price_cents - purchase_price) * item.quantity,
                    serial_numbers=list(item.serial_numbers) if item.serial_numbers else None,
                ))
                db.session.flush()

                if product.is_serial_tracked:
                    consume_serials(
                        branch=branch,
                        product=product,
                        serials=list(item.serial_numbers),
                        bill_id=bill.id,
                        reason=reason,
                        actor_id=actor_id,
                    )
                else:
                    _record_movement_inner(
                        branch=branch,
                        product=product,
                        movement_type=MovementType.BILLING,
                        quantity=item.quantity,
                        reason=reason,
                        reference_id=str(bill.id),
                        actor_id=actor_id,
                    )

            db.session.commit()
        except (OperationalError, StaleDataError):
            raise
        except IntegrityError as exc:
            raise DuplicateError(
                "Bill could not be saved: invoice number already in use",
                details={"branch_id": branch.id},
            ) from exc
        except SQLAlchemyError as exc:
            raise UnexpectedStorageError(f"Failed to persist bill: {exc.__class__.__name__}") from exc

        current_app.logger.info(
            "Bill %s created branch=%s items=%s total_cents=%s",
            bill.invoice_number, branch.id, len(bill.items), bill.total_amount_cents,
        )
        return BillResult(bill=bill, items=list(bill.items))

    return run_with_retry(_op)


def _effective_rate(item: LineItemInput, product: Product) -> int:
    return item.gst_rate_bps if item.gst_rate_bps is not None else (product.gst_rate_bps or 0)


def get_bill(bill_id: int) -> Bill:
    bill = db.session.query(Bill).filter_by(id=bill_id).first()
    if bill is None:
        raise NotFoundError("Bill not found", details={"bill_id": bill_id})
    return bill


def list_bills(*, branch_id: int, limit: int = 100) -> list[Bill]:
    resolve_branch(branch_id)
    return (
        db.session.query(Bill)
        .filter_by(branch_id=branch_id)
        .order_by(Bill.created_at.desc(), Bill.id.desc())
        .limit(limit)
        .all()
    )
