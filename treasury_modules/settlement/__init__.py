"""Settlement module: the committed entry point for every treasury action."""

from treasury_modules.settlement.service import SettlementService, is_retryable_db_error

__all__ = ["SettlementService", "is_retryable_db_error"]
