"""Committee stage map helpers.

``stage_status`` on an application maps each parallel stage name to
``{status, reviewer, reviewer_role, notes, data, timestamp}``. These helpers
always return a new dict so the JSON column sees the change.
"""

from datetime import datetime

from scholarship_db.enums import ReviewStage, StageOutcome

PARALLEL_STAGES = ReviewStage.parallel_stages()


def pending_stage_status() -> dict:
    return {stage.value: {"status": StageOutcome.PENDING.value} for stage in PARALLEL_STAGES}


def stage_outcome(stage_status: dict | None, stage: ReviewStage) -> StageOutcome:
    entry = (stage_status or {}).get(ReviewStage(stage).value) or {}
    return StageOutcome(entry.get("status", StageOutcome.PENDING.value))


def mark_stage(
    stage_status: dict | None,
    stage: ReviewStage,
    outcome: StageOutcome,
    *,
    reviewer_id: str,
    reviewer_role: str,
    notes: str | None,
    data: dict | None,
    at: datetime,
) -> dict:
    """Record a verdict on one stage, merging stage data into earlier data."""
    updated = {key: dict(value) for key, value in (stage_status or pending_stage_status()).items()}
    previous = updated.get(stage.value, {})
    merged_data = dict(previous.get("data") or {})
    merged_data.update(data or {})
    updated[stage.value] = {
        "status": outcome.value,
        "reviewer": reviewer_id,
        "reviewer_role": reviewer_role,
        "notes": notes,
        "data": merged_data,
        "timestamp": at.isoformat(),
    }
    return updated


def all_stages_approved(stage_status: dict | None) -> bool:
    return all(stage_outcome(stage_status, stage) == StageOutcome.APPROVED for stage in PARALLEL_STAGES)


def reset_from(stage_status: dict | None, stage: ReviewStage) -> dict:
    """Reset ``stage`` and every stage after it to pending for a revision round."""
    updated = {key: dict(value) for key, value in (stage_status or pending_stage_status()).items()}
    start = PARALLEL_STAGES.index(ReviewStage(stage))
    for later in PARALLEL_STAGES[start:]:
        updated[later.value] = {"status": StageOutcome.PENDING.value}
    return updated
