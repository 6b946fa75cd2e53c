"""
Database Models
"""
from app.db.models.restaurant import Restaurant, Product
from app.db.models.rider import Rider
from app.db.models.voucher import Voucher
from app.db.models.order import Order
from app.db.models.restaurant_wallet import RestaurantWallet
from app.db.models.rider_wallet import RiderWallet
from app.db.models.transaction import Transaction
from app.db.models.cod_ledger import CODLedgerEntry, CODSettlement
from app.db.models.payout import Payout
from app.db.models.platform_settings import PlatformSettings
from app.db.models.outbox_message import OutboxMessage
from app.db.models.order_audit_log import OrderAuditLog
from app.db.models.rider_bonus import RiderDailyBonus

__all__ = [
    "Restaurant",
    "Product",
    "Rider",
    "Voucher",
    "Order",
    "RestaurantWallet",
    "RiderWallet",
    "Transaction",
    "CODLedgerEntry",
    "CODSettlement",
    "Payout",
    "PlatformSettings",
    "OutboxMessage",
    "OrderAuditLog",
    "RiderDailyBonus",
]
