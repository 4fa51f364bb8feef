# Importing this package registers every table on Base.metadata
from storefront.models.audit import AuditRecord
from storefront.models.order import ORDER_STATUSES, Order, OrderItem
from storefront.models.product import FeaturedProduct
from storefront.models.session import Session
from storefront.models.user import Role, User

__all__ = [
    "AuditRecord",
    "FeaturedProduct",
    "ORDER_STATUSES",
    "Order",
    "OrderItem",
    "Role",
    "Session",
    "User",
]
