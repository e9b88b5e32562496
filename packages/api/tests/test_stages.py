"""Tests for committee stage map helpers."""

from datetime import UTC, datetime

from scholarship_db.enums import ReviewStage, StageOutcome

from scholarship_api.domain.stages import (
    all_stages_approved,
    mark_stage,
    pending_stage_status,
    reset_from,
    stage_outcome,
)

_AT = datetime(2026, 10, 1, 9, 30, tzinfo=UTC)


def _mark(stage_status, stage, outcome, data=None):
    return mark_stage(
        stage_status,
        stage,
        outcome,
        reviewer_id="reviewer-1",
        reviewer_role="city_council",
        notes="ok",
        data=data,
        at=_AT,
    )


def test_pending_covers_parallel_stages_only():
    status = pending_stage_status()
    assert set(status) == {"document_verification", "financial_review", "academic_review"}
    assert all(entry["status"] == "pending" for entry in status.values())


def test_mark_stage_returns_new_dict():
    original = pending_stage_status()
    updated = _mark(original, ReviewStage.DOCUMENT_VERIFICATION, StageOutcome.APPROVED)

    assert original["document_verification"]["status"] == "pending"
    assert updated["document_verification"]["status"] == "approved"
    assert updated["document_verification"]["timestamp"] == _AT.isoformat()
    assert updated["financial_review"]["status"] == "pending"


def test_mark_stage_merges_data():
    first = _mark(None, ReviewStage.FINANCIAL_REVIEW, StageOutcome.REVISION_REQUESTED, {"income": 1})
    second = _mark(first, ReviewStage.FINANCIAL_REVIEW, StageOutcome.APPROVED, {"siblings": 2})
    assert second["financial_review"]["data"] == {"income": 1, "siblings": 2}


def test_stage_outcome_defaults_to_pending():
    assert stage_outcome(None, ReviewStage.ACADEMIC_REVIEW) == StageOutcome.PENDING
    assert stage_outcome({}, ReviewStage.ACADEMIC_REVIEW) == StageOutcome.PENDING


def test_all_stages_approved_needs_every_track():
    status = pending_stage_status()
    status = _mark(status, ReviewStage.DOCUMENT_VERIFICATION, StageOutcome.APPROVED)
    status = _mark(status, ReviewStage.ACADEMIC_REVIEW, StageOutcome.APPROVED)
    assert not all_stages_approved(status)

    status = _mark(status, ReviewStage.FINANCIAL_REVIEW, StageOutcome.APPROVED)
    assert all_stages_approved(status)


def test_reset_from_clears_stage_and_later():
    status = pending_stage_status()
    for stage in ReviewStage.parallel_stages():
        status = _mark(status, stage, StageOutcome.APPROVED)

    reset = reset_from(status, ReviewStage.FINANCIAL_REVIEW)

    assert reset["document_verification"]["status"] == "approved"
    assert reset["financial_review"] == {"status": "pending"}
    assert reset["academic_review"] == {"status": "pending"}
    assert status["financial_review"]["status"] == "approved"
