"""
SQLAdmin configuration for the read-only database dashboard

Access the admin panel at: http://localhost:8000/admin

Every view is read-only: status and money only change through the API
operations, never by editing rows here.

When AUTH_DISABLED=false, requires admin credentials via login form.
When AUTH_DISABLED=true, admin panel is open (dev mode).
"""

from scholarship_db import (
    AcademicPeriod,
    Application,
    AuditEvent,
    Budget,
    BudgetTransaction,
    Disbursement,
    SscDecision,
    StageReview,
    StatusHistoryEntry,
)
from scholarship_db.database import engine
from sqladmin import Admin, ModelView
from sqladmin.authentication import AuthenticationBackend
from starlette.requests import Request
from starlette.responses import Response

from .core.config import settings


class AdminAuth(AuthenticationBackend):
    """Session-based auth gate for SQLAdmin.

    When AUTH_DISABLED=true, authenticate() always returns True (dev mode).
    Otherwise, requires login with SQLADMIN_USER / SQLADMIN_PASSWORD.
    """

    async def login(self, request: Request) -> bool:
        form = await request.form()
        username = form.get("username")
        password = form.get("password")
        if username == settings.SQLADMIN_USER and password == settings.SQLADMIN_PASSWORD:
            request.session.update({"admin_authenticated": True})
            return True
        return False

    async def logout(self, request: Request) -> bool:
        request.session.clear()
        return True

    async def authenticate(self, request: Request) -> Response | bool:
        if settings.AUTH_DISABLED:
            return True
        return request.session.get("admin_authenticated", False)


class ReadOnlyView(ModelView):
    can_create = False
    can_edit = False
    can_delete = False


class AcademicPeriodAdmin(ReadOnlyView, model=AcademicPeriod):
    column_list = [
        AcademicPeriod.id,
        AcademicPeriod.name,
        AcademicPeriod.school_year,
        AcademicPeriod.term,
        AcademicPeriod.is_active,
    ]
    name = "Academic Period"
    name_plural = "Academic Periods"
    icon = "fa-solid fa-calendar"


class ApplicationAdmin(ReadOnlyView, model=Application):
    column_list = [
        Application.id,
        Application.application_number,
        Application.applicant_id,
        Application.school_id,
        Application.status,
        Application.requested_amount,
        Application.approved_amount,
        Application.updated_at,
    ]
    column_searchable_list = [Application.application_number, Application.applicant_id]
    column_sortable_list = [Application.id, Application.status, Application.updated_at]
    column_default_sort = [(Application.updated_at, True)]
    name = "Application"
    name_plural = "Applications"
    icon = "fa-solid fa-file-alt"


class StatusHistoryAdmin(ReadOnlyView, model=StatusHistoryEntry):
    column_list = [
        StatusHistoryEntry.id,
        StatusHistoryEntry.application_id,
        StatusHistoryEntry.sequence,
        StatusHistoryEntry.operation,
        StatusHistoryEntry.previous_status,
        StatusHistoryEntry.status,
        StatusHistoryEntry.actor_id,
        StatusHistoryEntry.changed_at,
    ]
    column_default_sort = [(StatusHistoryEntry.id, True)]
    name = "Status Change"
    name_plural = "Status History"
    icon = "fa-solid fa-history"


class StageReviewAdmin(ReadOnlyView, model=StageReview):
    column_list = [
        StageReview.id,
        StageReview.application_id,
        StageReview.stage,
        StageReview.outcome,
        StageReview.reviewer_id,
        StageReview.cycle,
        StageReview.reviewed_at,
    ]
    column_default_sort = [(StageReview.reviewed_at, True)]
    name = "Stage Review"
    name_plural = "Stage Reviews"
    icon = "fa-solid fa-gavel"


class SscDecisionAdmin(ReadOnlyView, model=SscDecision):
    column_list = [
        SscDecision.id,
        SscDecision.application_id,
        SscDecision.decision,
        SscDecision.approved_amount,
        SscDecision.decided_by,
        SscDecision.decided_at,
    ]
    name = "Committee Decision"
    name_plural = "Committee Decisions"
    icon = "fa-solid fa-check-double"


class BudgetAdmin(ReadOnlyView, model=Budget):
    column_list = [
        Budget.id,
        Budget.school_id,
        Budget.academic_period_id,
        Budget.allocated_amount,
        Budget.spent_amount,
        Budget.reserved_amount,
        Budget.status,
    ]
    name = "Budget"
    name_plural = "Budgets"
    icon = "fa-solid fa-wallet"


class BudgetTransactionAdmin(ReadOnlyView, model=BudgetTransaction):
    column_list = [
        BudgetTransaction.id,
        BudgetTransaction.budget_id,
        BudgetTransaction.transaction_type,
        BudgetTransaction.amount,
        BudgetTransaction.balance_before,
        BudgetTransaction.balance_after,
        BudgetTransaction.application_id,
        BudgetTransaction.created_at,
    ]
    column_default_sort = [(BudgetTransaction.id, True)]
    name = "Ledger Transaction"
    name_plural = "Ledger Transactions"
    icon = "fa-solid fa-book"


class DisbursementAdmin(ReadOnlyView, model=Disbursement):
    column_list = [
        Disbursement.id,
        Disbursement.application_id,
        Disbursement.amount,
        Disbursement.disbursement_method,
        Disbursement.status,
        Disbursement.disbursement_date,
    ]
    name = "Disbursement"
    name_plural = "Disbursements"
    icon = "fa-solid fa-money-bill"


class AuditEventAdmin(ReadOnlyView, model=AuditEvent):
    column_list = [
        AuditEvent.id,
        AuditEvent.timestamp,
        AuditEvent.event_type,
        AuditEvent.user_id,
        AuditEvent.user_role,
        AuditEvent.application_id,
        AuditEvent.budget_id,
    ]
    column_sortable_list = [AuditEvent.id, AuditEvent.timestamp, AuditEvent.event_type]
    column_default_sort = [(AuditEvent.timestamp, True)]
    name = "Audit Event"
    name_plural = "Audit Events"
    icon = "fa-solid fa-shield-alt"


def setup_admin(app):
    """Set up SQLAdmin and mount it to the FastAPI app."""
    auth_backend = AdminAuth(
        secret_key=settings.SQLADMIN_SECRET_KEY,
    )
    admin = Admin(app, engine, title="Scholarship Aid Admin", authentication_backend=auth_backend)

    admin.add_view(AcademicPeriodAdmin)
    admin.add_view(ApplicationAdmin)
    admin.add_view(StatusHistoryAdmin)
    admin.add_view(StageReviewAdmin)
    admin.add_view(SscDecisionAdmin)
    admin.add_view(BudgetAdmin)
    admin.add_view(BudgetTransactionAdmin)
    admin.add_view(DisbursementAdmin)
    admin.add_view(AuditEventAdmin)

    return admin
