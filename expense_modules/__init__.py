"""
Expense Modules.

Thin orchestration layers over the expense kernel and engines.
Each module contains:
- Domain models (drafts and operation outcomes)
- Workflows (state machines)
- Configuration schemas (policy and settings)
- Services that own the transaction boundary

Modules:
- Expense: requests, approvals, payment, post-payment reports

Actual processing logic lives in the kernel and engines.
"""
