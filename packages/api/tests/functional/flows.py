"""HTTP walkthroughs shared by the functional tests."""

from datetime import date, timedelta

import httpx


def ok(resp: httpx.Response) -> dict:
    assert resp.status_code in (200, 201), resp.text
    return resp.json()


async def create_draft(client: httpx.AsyncClient, period_id: int, amount: str = "5000.00", **extra) -> dict:
    body = {"academic_period_id": period_id, "requested_amount": amount, "school_id": "SCH-001", **extra}
    return ok(await client.post("/api/applications/", json=body))


async def endorse(applicant: httpx.AsyncClient, officer: httpx.AsyncClient, application_id: int) -> dict:
    """Drive a draft through the officer pipeline up to endorsed_to_ssc."""
    base = f"/api/applications/{application_id}"
    ok(await applicant.post(f"{base}/submit"))
    ok(await officer.post(f"{base}/review"))
    ok(await officer.post(f"{base}/approve-for-verification"))
    ok(
        await officer.post(
            f"{base}/verify-enrollment",
            json={
                "enrollment_proof_document_id": 77,
                "enrollment_year": "2026-2027",
                "enrollment_term": "first",
                "is_currently_enrolled": True,
            },
        )
    )
    ok(
        await officer.post(
            f"{base}/schedule-interview",
            json={
                "interview_date": (date.today() + timedelta(days=3)).isoformat(),
                "interview_time": "10:00:00",
                "interview_type": "in_person",
                "interviewer_name": "Carla Dizon",
                "location": "City Hall, Room 4",
            },
        )
    )
    ok(
        await officer.post(
            f"{base}/complete-interview",
            json={"interview_result": "passed", "interview_notes": "Clear goals"},
        )
    )
    return ok(await officer.post(f"{base}/endorse-to-ssc"))


async def approve_all_stages(clients: dict[str, httpx.AsyncClient], application_id: int) -> dict:
    """Approve the three parallel stages, each by its own committee member."""
    body = None
    for persona, stage in (
        ("council", "document_verification"),
        ("budget", "financial_review"),
        ("education", "academic_review"),
    ):
        body = ok(
            await clients[persona].post(f"/api/ssc/applications/{application_id}/stages/{stage}/approve")
        )
    return body
