# Models package: import all models here so Alembic can discover them.

from courtly.models.user import User  # noqa: F401
from courtly.models.club import (  # noqa: F401
    Club,
    ClubMember,
    Court,
    MembershipPlan,
)
from courtly.models.booking import Booking  # noqa: F401
from courtly.models.membership import MembershipSubscription  # noqa: F401
from courtly.models.webhook_event import WebhookEvent  # noqa: F401
from courtly.models.balance import AccountBalance, BalanceTransaction  # noqa: F401
from courtly.models.audit import AuditEvent  # noqa: F401
