"""
Treasury modules.

Transactional orchestration over ``treasury_kernel``.  Modules own the
commit/rollback boundary and publish domain events; all balance logic
lives in the kernel.

Modules:
- settlement: treasuries, transfers, receipts, installments, counterparties
  and financial contacts behind one facade
"""
