"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .inventory_lock import InventoryLock
from .local_lock import LocalInventoryLock
from .payment import PaymentGateway, PaymentResult
from .notifier import CacheInvalidator, EventPublisher

__all__ = [
    'InventoryLock', 'LocalInventoryLock',
    'PaymentGateway', 'PaymentResult',
    'CacheInvalidator', 'EventPublisher',
]
