"""Functional tests: applicant creates, submits and withdraws applications."""

from decimal import Decimal

import pytest

from .flows import create_draft, ok

pytestmark = pytest.mark.functional


async def test_create_returns_draft_with_allowed_operations(make_client, period):
    ana = make_client("ana")

    body = await create_draft(ana, period.id)

    assert body["status"] == "draft"
    assert body["applicant_id"] == "ana-santos-001"
    assert Decimal(body["requested_amount"]) == Decimal("5000.00")
    assert body["application_number"].startswith("SCH-")
    assert body["allowed_operations"] == ["submit", "reject"]


async def test_submit_records_history(make_client, period):
    ana = make_client("ana")
    application = await create_draft(ana, period.id)

    body = ok(await ana.post(f"/api/applications/{application['id']}/submit"))

    assert body["data"]["status"] == "submitted"
    assert body["data"]["submitted_at"] is not None
    assert body["history_entry"]["sequence"] == 1
    assert body["history_entry"]["previous_status"] == "draft"
    assert body["warnings"] == []

    history = ok(await ana.get(f"/api/applications/{application['id']}/history"))
    assert history["count"] == 1
    assert history["history"][0]["operation"] == "submit"


async def test_withdraw_after_submit(make_client, period):
    ana = make_client("ana")
    application = await create_draft(ana, period.id)
    ok(await ana.post(f"/api/applications/{application['id']}/submit"))

    body = ok(
        await ana.post(
            f"/api/applications/{application['id']}/withdraw",
            json={"reason": "Accepted another grant"},
        )
    )

    assert body["data"]["status"] == "withdrawn"
    assert body["data"]["allowed_operations"] == []


async def test_terminal_application_refuses_more_operations(make_client, period):
    ana = make_client("ana")
    application = await create_draft(ana, period.id)
    ok(await ana.post(f"/api/applications/{application['id']}/submit"))
    ok(await ana.post(f"/api/applications/{application['id']}/withdraw"))

    resp = await ana.post(f"/api/applications/{application['id']}/submit")

    assert resp.status_code == 409
    body = resp.json()
    assert body["kind"] == "InvalidStateTransition"
    assert body["context"] == {"operation": "submit", "current_status": "withdrawn"}


async def test_stale_expected_status_is_rejected(make_client, period):
    ana = make_client("ana")
    application = await create_draft(ana, period.id)

    resp = await ana.post(
        f"/api/applications/{application['id']}/submit",
        json={"expected_status": "submitted"},
    )

    assert resp.status_code == 409
    assert resp.json()["kind"] == "StaleStateError"
    assert resp.json()["context"]["current_status"] == "draft"


async def test_applicants_only_see_their_own(make_client, period):
    ana = make_client("ana")
    ben = make_client("ben")
    mine = await create_draft(ana, period.id)
    await create_draft(ben, period.id)

    listing = ok(await ana.get("/api/applications/"))
    assert listing["pagination"]["total"] == 1
    assert [app["id"] for app in listing["data"]] == [mine["id"]]

    resp = await ben.get(f"/api/applications/{mine['id']}")
    assert resp.status_code == 404
    assert resp.json()["code"] == "APPLICATION_NOT_FOUND"


async def test_other_applicant_cannot_submit(make_client, period):
    ana = make_client("ana")
    ben = make_client("ben")
    application = await create_draft(ana, period.id)

    resp = await ben.post(f"/api/applications/{application['id']}/submit")

    assert resp.status_code == 404


async def test_applicant_cannot_run_officer_operations(make_client, period):
    ana = make_client("ana")
    application = await create_draft(ana, period.id)
    ok(await ana.post(f"/api/applications/{application['id']}/submit"))

    resp = await ana.post(f"/api/applications/{application['id']}/review")

    assert resp.status_code == 403
    assert "Insufficient permissions" in resp.json()["detail"]


async def test_timeline_lists_each_status(make_client, period):
    ana = make_client("ana")
    application = await create_draft(ana, period.id)
    ok(await ana.post(f"/api/applications/{application['id']}/submit"))

    timeline = ok(await ana.get(f"/api/applications/{application['id']}/timeline"))

    assert timeline["current_status"] == "submitted"
    assert [segment["status"] for segment in timeline["segments"]] == ["draft", "submitted"]
    assert timeline["segments"][-1]["left_at"] is None
