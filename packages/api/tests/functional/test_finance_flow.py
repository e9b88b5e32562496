"""Functional tests: budget administration and disbursement by finance staff."""

from decimal import Decimal

import pytest

from .flows import approve_all_stages, create_draft, endorse, ok

pytestmark = pytest.mark.functional


@pytest.fixture
def staff(make_client):
    return {
        name: make_client(name)
        for name in ("ana", "officer", "council", "budget", "education", "chair", "admin", "finance")
    }


async def _approved(staff, period, amount="4000.00") -> int:
    application = await create_draft(staff["ana"], period.id)
    await endorse(staff["ana"], staff["officer"], application["id"])
    await approve_all_stages(staff, application["id"])
    ok(
        await staff["chair"].post(
            f"/api/ssc/applications/{application['id']}/final-approval",
            json={"approved_amount": amount},
        )
    )
    return application["id"]


# ---------------------------------------------------------------------------
# Budget administration
# ---------------------------------------------------------------------------


async def test_admin_allocates_budget(staff, period):
    body = ok(
        await staff["admin"].post(
            "/api/budgets/",
            json={"school_id": "SCH-777", "academic_period_id": period.id, "amount": "100000.00"},
        )
    )

    assert body["status"] == "active"
    assert Decimal(body["allocated_amount"]) == Decimal("100000.00")
    assert Decimal(body["available_amount"]) == Decimal("100000.00")

    transactions = ok(await staff["finance"].get(f"/api/budgets/{body['id']}/transactions"))
    assert transactions["pagination"]["total"] == 1
    assert transactions["data"][0]["transaction_type"] == "adjustment"
    assert transactions["data"][0]["notes"] == "Initial allocation"
    assert transactions["data"][0]["reference"] == "manual:Initial allocation"


async def test_duplicate_allocation_is_a_validation_error(staff, period, budget):
    resp = await staff["admin"].post(
        "/api/budgets/",
        json={"school_id": "SCH-001", "academic_period_id": period.id, "amount": "500.00"},
    )

    assert resp.status_code == 422
    assert resp.json()["context"]["errors"][0]["field"] == "school_id"


async def test_finance_cannot_allocate(staff, period):
    resp = await staff["finance"].post(
        "/api/budgets/",
        json={"school_id": "SCH-778", "academic_period_id": period.id, "amount": "500.00"},
    )

    assert resp.status_code == 403


async def test_adjustment_cannot_cut_below_commitments(staff, period, budget):
    await _approved(staff, period, amount="4000.00")

    resp = await staff["admin"].post(
        f"/api/budgets/{budget.id}/adjustments",
        json={"delta": "-7000.00", "reason": "Cut"},
    )

    assert resp.status_code == 409
    assert resp.json()["kind"] == "InsufficientFunds"

    raised = ok(
        await staff["admin"].post(
            f"/api/budgets/{budget.id}/adjustments",
            json={"delta": "2500.00", "reason": "Council supplement"},
        )
    )
    assert Decimal(raised["balance_after"]) == Decimal("8500.00")


async def test_listing_filters_by_school(staff, period, budget):
    ok(
        await staff["admin"].post(
            "/api/budgets/",
            json={"school_id": "SCH-002", "academic_period_id": period.id, "amount": "2500.00"},
        )
    )

    listing = ok(await staff["finance"].get("/api/budgets/", params={"school_id": "SCH-002"}))

    assert listing["pagination"]["total"] == 1
    assert listing["data"][0]["school_id"] == "SCH-002"


async def test_unknown_budget_is_404(staff):
    resp = await staff["finance"].get("/api/budgets/9999")

    assert resp.status_code == 404
    assert resp.json()["code"] == "BUDGET_NOT_FOUND"


# ---------------------------------------------------------------------------
# Disbursement
# ---------------------------------------------------------------------------


async def test_process_and_release_spends_the_reservation(staff, period, budget, notifier):
    application_id = await _approved(staff, period)
    base = f"/api/applications/{application_id}"

    processing = ok(
        await staff["finance"].post(f"{base}/process", json={"disbursement_method": "bank_transfer"})
    )
    assert processing["data"]["status"] == "processing"
    assert processing["data"]["disbursement_id"] is not None

    released = ok(await staff["finance"].post(f"{base}/release", json={"reference_number": "BT-2026-0042"}))
    assert released["data"]["status"] == "disbursed"
    assert released["data"]["released_at"] is not None

    balance = ok(await staff["finance"].get(f"/api/budgets/{budget.id}"))
    assert Decimal(balance["spent_amount"]) == Decimal("4000.00")
    assert Decimal(balance["reserved_amount"]) == Decimal("0.00")
    assert Decimal(balance["available_amount"]) == Decimal("6000.00")

    report = ok(await staff["finance"].get(f"/api/budgets/{budget.id}/reconciliation"))
    assert report["balanced"] is True
    assert report["first_break_id"] is None
    assert report["transactions_checked"] == 3

    assert notifier.events[-1].to_status == "disbursed"


async def test_officer_cannot_release(staff, period, budget):
    application_id = await _approved(staff, period)
    base = f"/api/applications/{application_id}"
    ok(await staff["finance"].post(f"{base}/process", json={"disbursement_method": "check"}))

    resp = await staff["officer"].post(f"{base}/release")

    assert resp.status_code == 403


async def test_rejection_during_processing_returns_funds(staff, period, budget):
    application_id = await _approved(staff, period)
    base = f"/api/applications/{application_id}"
    ok(await staff["finance"].post(f"{base}/process", json={"disbursement_method": "e_wallet"}))

    rejected = ok(await staff["officer"].post(f"{base}/reject", json={"rejection_reason": "Fraudulent enrollment"}))

    assert rejected["data"]["status"] == "rejected"
    balance = ok(await staff["finance"].get(f"/api/budgets/{budget.id}"))
    assert Decimal(balance["reserved_amount"]) == Decimal("0.00")
    assert Decimal(balance["available_amount"]) == Decimal("10000.00")

    transactions = ok(await staff["finance"].get(f"/api/budgets/{budget.id}/transactions"))
    assert [t["transaction_type"] for t in transactions["data"]][-1] == "release"


async def test_admin_direct_award(staff, period, budget):
    application = await create_draft(staff["ana"], period.id)
    await endorse(staff["ana"], staff["officer"], application["id"])

    resp = await staff["officer"].post(
        f"/api/applications/{application['id']}/approve", json={"approved_amount": "1000.00"}
    )
    assert resp.status_code == 403

    body = ok(
        await staff["admin"].post(
            f"/api/applications/{application['id']}/approve", json={"approved_amount": "1000.00"}
        )
    )
    assert body["data"]["status"] == "approved"
    assert body["data"]["fund_reserved_at"] is not None
