from .tenancy import Tenant, Order
from .wallets import CookWallet, ClientWallet, WalletTransaction
from .clearances import OrderClearance, PendingDeduction, DeductionSettlement
from .payouts import WithdrawalRequest, PayoutTask
from .commission import CommissionChange
from .audit import AuditEvent

__all__ = [
    'Tenant', 'Order',
    'CookWallet', 'ClientWallet', 'WalletTransaction',
    'OrderClearance', 'PendingDeduction', 'DeductionSettlement',
    'WithdrawalRequest', 'PayoutTask',
    'CommissionChange',
    'AuditEvent',
]
