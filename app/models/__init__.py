"""ORM models package."""
from .activity import ActivityLog
from .api_key import ApiKey
from .base import Base
from .bill import Bill, BillStatus, BillStatusEvent
from .mda import Mda
from .notification import Notification, NotificationKind
from .side_effect import SideEffect, SideEffectKind, SideEffectStatus
from .user import Role, User

__all__ = [
    "ActivityLog",
    "ApiKey",
    "Base",
    "Bill",
    "BillStatus",
    "BillStatusEvent",
    "Mda",
    "Notification",
    "NotificationKind",
    "Role",
    "SideEffect",
    "SideEffectKind",
    "SideEffectStatus",
    "User",
]
