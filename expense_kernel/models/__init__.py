"""ORM models for the expense kernel."""

from expense_kernel.models.approval import ItemApprovalModel, StageApprovalModel
from expense_kernel.models.expense import (
    ExpenseItemModel,
    ExpenseNoteModel,
    ExpenseRequestModel,
    PastorRemarkModel,
)
from expense_kernel.models.report import (
    ApprovedReportItemModel,
    ExpenseReportModel,
    ReportApprovalModel,
    ReportAttachmentModel,
    ReportNoteModel,
)
from expense_kernel.models.status_event import StatusEventModel

__all__ = [
    "ApprovedReportItemModel",
    "ExpenseItemModel",
    "ExpenseNoteModel",
    "ExpenseReportModel",
    "ExpenseRequestModel",
    "ItemApprovalModel",
    "PastorRemarkModel",
    "ReportApprovalModel",
    "ReportAttachmentModel",
    "ReportNoteModel",
    "StageApprovalModel",
    "StatusEventModel",
]
