"""Payment schedule preview (no bill is touched)."""
from fastapi import APIRouter, Depends

from app.config import get_settings
from app.schemas.bill import PaymentTermsPreview, PaymentTermsRead, payment_terms_read
from app.security import require_actor
from app.services.lifecycle import Actor
from app.services.payment_terms import compute_schedule

router = APIRouter(prefix="/payment-terms", tags=["payment-terms"])


@router.post("/preview", response_model=PaymentTermsRead)
def preview_schedule(
    payload: PaymentTermsPreview,
    actor: Actor = Depends(require_actor),
) -> PaymentTermsRead:
    schedule = compute_schedule(
        payload.principal,
        payload.payment_quarters,
        payload.start_quarter,
        annual_rate=payload.annual_rate,
        rate_overrides=payload.rate_overrides,
        as_of=payload.as_of,
        paid_quarters=payload.paid_quarters,
        allowed_quarters=get_settings().ALLOWED_PAYMENT_QUARTERS,
    )
    return payment_terms_read(schedule)
