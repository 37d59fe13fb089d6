# Import the Base class to make it accessible for models
# and for Alembic discovery via Base.metadata
from app.db.base_class import Base  # noqa: F401

from .tenant import Tenant
from .api_key import ApiKey
from .user import User
from .referral import Referral
from .reward_ledger import RewardLedgerEntry
from .event import DomainEvent
from .webhook_delivery import WebhookDelivery
from .rate_limit import RateLimitCounter

__all__ = [
    "Base",
    "Tenant",
    "ApiKey",
    "User",
    "Referral",
    "RewardLedgerEntry",
    "DomainEvent",
    "WebhookDelivery",
    "RateLimitCounter",
]
