from .admin_users import AdminUser, AdminBackupCode
from .security import RateLimit, AuditLog, ImmutableRecordError
from .gift_cards import GiftCard, GiftCardTransaction
from .orders import Order
from .settings import SiteSettings

__all__ = [
    'AdminUser', 'AdminBackupCode',
    'RateLimit', 'AuditLog', 'ImmutableRecordError',
    'GiftCard', 'GiftCardTransaction',
    'Order',
    'SiteSettings',
]
