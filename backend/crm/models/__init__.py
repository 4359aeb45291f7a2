"""ORM model exports for convenient imports elsewhere in the app."""

from crm.models.audit import AuditLog
from crm.models.base import Base
from crm.models.campaign import Campaign
from crm.models.customer import Customer
from crm.models.user import User

__all__ = [
    "AuditLog",
    "Base",
    "Campaign",
    "Customer",
    "User",
]
