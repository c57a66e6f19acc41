# Overview: Flask API routes for billing; parses input and returns JSON responses.

# backend/branchledger/routes/bills.py
"""Billing API routes"""

from flask import Blueprint, request, g

from ..validation import PayloadPolicy, ValidationError, check_payload, coerce_int, coerce_str
from ..decorators import require_actor, handle_domain_errors
from ..services import billing_service
from ..services.billing_service import CustomerInfo


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")

CREATE_BILL_POLICY = PayloadPolicy(
    writable_fields={
        "branch_id",
        "items",
        "customer_name",
        "customer_phone",
        "payment_mode",
        "overall_discount_cents",
    },
    required={"branch_id", "items"},
)


@bills_bp.post("")
@require_actor
@handle_domain_errors("create bill")
def create_bill_route():
    """
    Create a bill: header, items and stock deduction in one transaction.

    201 with {bill, items}; 400 invalid input; 404 unknown branch/product;
    409 insufficient stock (details.items lists each short product).
    """
    payload = check_payload(request.get_json(silent=True), CREATE_BILL_POLICY)

    items = payload["items"]
    if not isinstance(items, list) or not items:
        raise ValidationError("branch_id and items are required")

    result = billing_service.create_bill(
        branch_id=coerce_int(payload["branch_id"], "branch_id", minimum=1),
        line_items=items,
        customer=CustomerInfo(
            name=coerce_str(payload.get("customer_name"), "customer_name", max_length=255),
            phone=coerce_str(payload.get("customer_phone"), "customer_phone", max_length=32),
        ),
        payment_mode=payload.get("payment_mode") or "cash",
        overall_discount_cents=payload.get("overall_discount_cents") or 0,
        actor_id=g.actor_id,
    )
    return result.to_dict(), 201


@bills_bp.get("")
@require_actor
@handle_domain_errors("list bills")
def list_bills_route():
    raw = request.args.get("branch_id")
    if raw is None:
        raise ValidationError("branch_id is required")

    bills = billing_service.list_bills(branch_id=coerce_int(raw, "branch_id", minimum=1))
    return {"bills": [b.to_dict() for b in bills]}, 200


@bills_bp.get("/<int:bill_id>")
@require_actor
@handle_domain_errors("load bill")
def get_bill_route(bill_id: int):
    bill = billing_service.get_bill(bill_id)
    return {
        "bill": bill.to_dict(),
        "items": [item.to_dict() for item in bill.items],
    }, 200
