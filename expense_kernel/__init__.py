"""
Expense Kernel

The persistent core of the expense-request lifecycle:
- Typed errors and structured logging
- ORM models for requests, items, decisions, reports and the audit trail
- Idempotent decision recording (upsert by unique key)
- Append-only status history
"""

__version__ = "0.1.0"
