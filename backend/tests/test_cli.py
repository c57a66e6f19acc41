# Overview: Pytest coverage for the Flask CLI commands.

import pytest
from sqlalchemy import update

from branchledger.models import Tenant, Branch, Product, StockSnapshot
from branchledger.services import ledger_service


pytestmark = pytest.mark.cli


def test_seed_demo_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "seed-demo"])
    second = runner.invoke(args=["system", "seed-demo"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert db_session.query(Tenant).count() == 1
    assert db_session.query(Branch).count() == 2
    assert db_session.query(Product).count() == 2


def test_ledger_command_prints_entries(app, db_session, branch_a, product_a):
    ledger_service.record_movement(
        branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=5, reason="opening",
    )
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "stock", "ledger", "--branch-id", str(branch_a.id), "--product-id", str(product_a.id),
    ])

    assert result.exit_code == 0, result.output
    assert "stock_in" in result.output
    assert "opening" in result.output


def test_ledger_command_unknown_branch(app, db_session):
    result = app.test_cli_runner().invoke(args=["stock", "ledger", "--branch-id", "999", "--product-id", "1"])
    assert result.exit_code != 0
    assert "Branch not found" in result.output


def test_verify_passes_then_flags_drift(app, db_session, branch_a, product_a):
    ledger_service.record_movement(
        branch_id=branch_a.id, product_id=product_a.id, movement_type="stock_in", quantity=5,
    )
    runner = app.test_cli_runner()

    clean = runner.invoke(args=["stock", "verify"])
    assert clean.exit_code == 0, clean.output
    assert "PASS" in clean.output

    db_session.execute(update(StockSnapshot).values(quantity=1))
    db_session.commit()

    drifted = runner.invoke(args=["stock", "verify", "--branch-id", str(branch_a.id)])
    assert drifted.exit_code != 0
    assert "FAIL" in drifted.output
