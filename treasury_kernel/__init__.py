"""
Treasury Kernel

Treasury accounts, multi-currency payment receipts settled by installments,
inter-treasury transfers and running-balance account ledgers, with:
- One atomic unit of work per settlement action
- Append-only transaction logs that replay to the stored balances
- Per-treasury serialization of balance changes
"""

__version__ = "0.1.0"
