"""
Database models for tenants, subscriptions and usage.

All tenant-owned models inherit TenantScopedMixin.
"""

from genbook.models.appointment import Appointment
from genbook.models.subscription import SubscriptionStatus, UserSubscription
from genbook.models.team_invite import InviteStatus, TeamInvite
from genbook.models.tenant import Tenant, TenantStatus
from genbook.models.usage import UsageCounter
from genbook.models.user import User, UserRole, normalize_role

__all__ = [
    "Appointment",
    "InviteStatus",
    "SubscriptionStatus",
    "TeamInvite",
    "Tenant",
    "TenantStatus",
    "UsageCounter",
    "User",
    "UserRole",
    "UserSubscription",
    "normalize_role",
]
