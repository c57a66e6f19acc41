# backend/branchledger/routes/serials.py
"""Serial number routes for serial-tracked products."""

from flask import Blueprint, request, g

from ..validation import PayloadPolicy, ValidationError, check_payload, coerce_int
from ..decorators import require_actor, handle_domain_errors
from ..services import serial_service


serials_bp = Blueprint("serials", __name__, url_prefix="/api/products")

ADD_SERIALS_POLICY = PayloadPolicy(
    writable_fields={"branch_id", "serial_numbers"},
    required={"branch_id", "serial_numbers"},
)


def _branch_arg() -> int:
    raw = request.args.get("branch_id")
    if raw is None:
        raise ValidationError("branch_id is required")
    return coerce_int(raw, "branch_id", minimum=1)


@serials_bp.get("/<int:product_id>/serials")
@require_actor
@handle_domain_errors("list serial numbers")
def list_serials_route(product_id: int):
    units = serial_service.list_serial_numbers(
        branch_id=_branch_arg(),
        product_id=product_id,
        status=request.args.get("status"),
    )
    return {"serial_numbers": [u.to_dict() for u in units]}, 200


@serials_bp.post("/<int:product_id>/serials")
@require_actor
@handle_domain_errors("add serial numbers")
def add_serials_route(product_id: int):
    """
    Add serial numbers for a product in a branch.

    Duplicates (within the batch or already stored) reject the whole batch
    with 409 and the offending serials in details.duplicates.
    """
    payload = check_payload(request.get_json(silent=True), ADD_SERIALS_POLICY)

    units = serial_service.add_serial_numbers(
        branch_id=coerce_int(payload["branch_id"], "branch_id", minimum=1),
        product_id=product_id,
        serials=payload["serial_numbers"],
        actor_id=g.actor_id,
    )
    return {"serial_numbers": [u.to_dict() for u in units]}, 201


@serials_bp.delete("/<int:product_id>/serials/<serial_number>")
@require_actor
@handle_domain_errors("remove serial number")
def remove_serial_route(product_id: int, serial_number: str):
    unit = serial_service.remove_serial_number(
        branch_id=_branch_arg(),
        product_id=product_id,
        serial_number=serial_number,
        actor_id=g.actor_id,
    )
    return {"removed": serial_number, "status": unit.status}, 200
