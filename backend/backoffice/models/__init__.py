from .auth import User, SessionToken
from .catalog import Product, Category
from .customers import Customer
from .orders import Order, OrderItem, Installment, InstallmentPayment
from .commissions import CommissionPayment
from .audit import AuditLogEntry

__all__ = [
    'User', 'SessionToken',
    'Product', 'Category',
    'Customer',
    'Order', 'OrderItem', 'Installment', 'InstallmentPayment',
    'CommissionPayment',
    'AuditLogEntry',
]
