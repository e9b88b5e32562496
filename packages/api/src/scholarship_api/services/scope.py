"""Shared data scope filtering for service queries."""

from scholarship_db import Application

from ..schemas.auth import DataScope


def apply_data_scope(stmt, scope: DataScope):
    """Restrict an Application query to what the caller may see.

    Applicants only see their own applications; staff see the full pipeline.
    """
    if scope.own_data_only:
        stmt = stmt.where(Application.applicant_id == scope.user_id)
    elif not scope.full_pipeline:
        stmt = stmt.where(Application.id.is_(None))
    return stmt
