from . import rate_limiter
from . import reward_rules
from . import webhook_service
from . import ledger_service
from . import user_service
from . import claim_service
from . import webhook_dispatcher
from . import tenant_service

__all__ = [
    "rate_limiter",
    "reward_rules",
    "webhook_service",
    "ledger_service",
    "user_service",
    "claim_service",
    "webhook_dispatcher",
    "tenant_service",
]
