"""Billing: payment cycles, billing windows, monthly summaries and follow-up tasks."""

from psi_agenda.billing.cycles import (
    BillingWindow,
    billing_windows,
    build_payment_events,
    sum_billable,
)
from psi_agenda.billing.summary import (
    MonthSummary,
    PatientFlow,
    Receivables,
    RevenueSummary,
    patient_flow,
    receivables,
    revenue_summary,
    summarize,
)
from psi_agenda.billing.tasks import Task, TaskList, TaskType, derive_tasks

__all__ = [
    "BillingWindow",
    "MonthSummary",
    "PatientFlow",
    "Receivables",
    "RevenueSummary",
    "Task",
    "TaskList",
    "TaskType",
    "billing_windows",
    "build_payment_events",
    "derive_tasks",
    "patient_flow",
    "receivables",
    "revenue_summary",
    "sum_billable",
    "summarize",
]
