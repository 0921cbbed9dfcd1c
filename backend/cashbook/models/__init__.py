from .base import Reference
from .auth import User, UserPermission
from .registers import RegisterSession, CashRegisterSessionAccessRequest, CashRegisterSessionAudit
from .ledger import BankAccount, MoneyTransaction
from .inventory import Item, ItemLog, StockAdjustment, Assembly, AssemblyPart
from .sales import Customer, Sale, SaleItem, IncomeExpense

__all__ = [
    'Reference',
    'User', 'UserPermission',
    'RegisterSession', 'CashRegisterSessionAccessRequest', 'CashRegisterSessionAudit',
    'BankAccount', 'MoneyTransaction',
    'Item', 'ItemLog', 'StockAdjustment', 'Assembly', 'AssemblyPart',
    'Customer', 'Sale', 'SaleItem', 'IncomeExpense',
]
