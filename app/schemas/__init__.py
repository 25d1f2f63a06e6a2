"""Schema package exports."""
from .activity import ActivityRead
from .bill import (
    AmendTermsPayload,
    ApprovalPayload,
    AvailableActionsRead,
    BillCreate,
    BillRead,
    BillSummary,
    CertificationPayload,
    OfferCreate,
    PaymentTermsPreview,
    PaymentTermsRead,
    RejectionPayload,
    SpvOffersRead,
    StatusBreakdownRead,
    StatusEventRead,
    TransitionNote,
)
from .notification import NotificationRead
from .side_effect import DispatchRead, SideEffectRead
from .user import MdaCreate, MdaRead, UserCreate, UserRead

__all__ = [
    "ActivityRead",
    "AmendTermsPayload",
    "ApprovalPayload",
    "AvailableActionsRead",
    "BillCreate",
    "BillRead",
    "BillSummary",
    "CertificationPayload",
    "OfferCreate",
    "PaymentTermsPreview",
    "PaymentTermsRead",
    "RejectionPayload",
    "SpvOffersRead",
    "StatusBreakdownRead",
    "StatusEventRead",
    "TransitionNote",
    "NotificationRead",
    "DispatchRead",
    "SideEffectRead",
    "MdaCreate",
    "MdaRead",
    "UserCreate",
    "UserRead",
]
