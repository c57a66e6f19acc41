# backend/branchledger/routes/stock.py
"""
Stock ledger routes.

Actor identity comes from the upstream auth layer (X-Actor-Id); branch
permissions are decided before requests reach this service.

- POST /api/stock/movements   record stock_in / stock_out / purchase / ...
- POST /api/stock/adjust      set on-hand to an absolute target
- POST /api/stock/transfer    move stock between branches (both legs atomic)
- GET  /api/stock/ledger      ledger for (branch, product), newest first
- GET  /api/stock             current stock for a branch (quantity > 0)
"""
from flask import Blueprint, request, g

from ..validation import PayloadPolicy, ValidationError, check_payload, coerce_int
from ..decorators import require_actor, handle_domain_errors
from ..services import ledger_service


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

MOVEMENT_POLICY = PayloadPolicy(
    writable_fields={"branch_id", "product_id", "movement_type", "quantity", "reason", "reference_id"},
    required={"branch_id", "product_id", "movement_type", "quantity"},
)

ADJUST_POLICY = PayloadPolicy(
    writable_fields={"branch_id", "product_id", "new_quantity", "reason"},
    required={"branch_id", "product_id", "new_quantity", "reason"},
)

TRANSFER_POLICY = PayloadPolicy(
    writable_fields={"from_branch_id", "to_branch_id", "product_id", "quantity", "reason"},
    required={"from_branch_id", "to_branch_id", "product_id", "quantity"},
)


def _required_int_arg(name: str) -> int:
    raw = request.args.get(name)
    if raw is None:
        raise ValidationError(f"{name} is required")
    return coerce_int(raw, name, minimum=1)


@stock_bp.post("/movements")
@require_actor
@handle_domain_errors("record stock movement")
def record_movement_route():
    payload = check_payload(request.get_json(silent=True), MOVEMENT_POLICY)

    entry = ledger_service.record_movement(
        branch_id=coerce_int(payload["branch_id"], "branch_id", minimum=1),
        product_id=coerce_int(payload["product_id"], "product_id", minimum=1),
        movement_type=payload["movement_type"],
        quantity=payload["quantity"],
        reason=payload.get("reason"),
        reference_id=payload.get("reference_id"),
        actor_id=g.actor_id,
    )
    return {"ledger_entry": entry.to_dict()}, 201


@stock_bp.post("/adjust")
@require_actor
@handle_domain_errors("adjust stock")
def adjust_stock_route():
    """
    Adjust stock to a counted quantity.

    The ledger records the difference; negative targets are rejected.
    """
    payload = check_payload(request.get_json(silent=True), ADJUST_POLICY)

    entry = ledger_service.adjust_stock(
        branch_id=coerce_int(payload["branch_id"], "branch_id", minimum=1),
        product_id=coerce_int(payload["product_id"], "product_id", minimum=1),
        target_quantity=payload["new_quantity"],
        reason=payload["reason"],
        actor_id=g.actor_id,
    )
    return {"ledger_entry": entry.to_dict()}, 201


@stock_bp.post("/transfer")
@require_actor
@handle_domain_errors("transfer stock")
def transfer_stock_route():
    payload = check_payload(request.get_json(silent=True), TRANSFER_POLICY)

    out_entry, in_entry = ledger_service.transfer_stock(
        from_branch_id=coerce_int(payload["from_branch_id"], "from_branch_id", minimum=1),
        to_branch_id=coerce_int(payload["to_branch_id"], "to_branch_id", minimum=1),
        product_id=coerce_int(payload["product_id"], "product_id", minimum=1),
        quantity=payload["quantity"],
        reason=payload.get("reason"),
        actor_id=g.actor_id,
    )
    return {
        "success": True,
        "transfer_out": out_entry.to_dict(),
        "transfer_in": in_entry.to_dict(),
    }, 201


@stock_bp.get("/ledger")
@require_actor
@handle_domain_errors("load stock ledger")
def ledger_route():
    branch_id = _required_int_arg("branch_id")
    product_id = _required_int_arg("product_id")
    limit = request.args.get("limit")

    entries = ledger_service.get_ledger(branch_id=branch_id, product_id=product_id, limit=limit)
    return {"ledger": [e.to_dict() for e in entries]}, 200


@stock_bp.get("")
@require_actor
@handle_domain_errors("load current stock")
def current_stock_route():
    branch_id = _required_int_arg("branch_id")

    rows = ledger_service.get_current_stock(branch_id=branch_id)
    return {
        "stock": [
            {
                "product": product.to_dict(),
                "quantity": quantity,
                "low_stock": quantity <= (product.min_stock or 0),
            }
            for product, quantity in rows
        ]
    }, 200
