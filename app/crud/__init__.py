# Import individual CRUD modules so they can be accessed via the package
from . import crud_tenant # noqa
from . import crud_api_key # noqa
from . import crud_user # noqa
from . import crud_referral # noqa
from . import crud_ledger # noqa
from . import crud_rate_limit # noqa
from .crud_event import event # Make event log instance directly available on crud package
from .crud_webhook_delivery import webhook_delivery

__all__ = [
    "crud_tenant",
    "crud_api_key",
    "crud_user",
    "crud_referral",
    "crud_ledger",
    "crud_rate_limit",
    "event",
    "webhook_delivery",
]
