"""
Domain Services
"""
from app.domain.services.settings_provider import SettingsProvider, PlatformConfig
from app.domain.services.outbox_service import OutboxService
from app.domain.services.wallet_service import WalletLedgerService
from app.domain.services.cod_service import CODReconciliationService
from app.domain.services.settlement_service import SettlementService
from app.domain.services.order_service import OrderService
from app.domain.services.payout_service import PayoutService
from app.domain.services.finance_service import FinanceService

__all__ = [
    "SettingsProvider",
    "PlatformConfig",
    "OutboxService",
    "WalletLedgerService",
    "CODReconciliationService",
    "SettlementService",
    "OrderService",
    "PayoutService",
    "FinanceService",
]
