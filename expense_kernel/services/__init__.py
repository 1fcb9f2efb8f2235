"""Kernel services.  Each flushes only; module services own the transaction."""

from expense_kernel.services.approval_recorder import ApprovalRecorder
from expense_kernel.services.audit_trail import AuditTrailWriter

__all__ = ["ApprovalRecorder", "AuditTrailWriter"]
