import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from core.exceptions import SettlementError
from models.user import User
from schemas.payment import PaymentOut, PaymentVerifyRequest, PaymentVerifyResponse
from security.deps import get_optional_user, require_admin
from services.notifications import NotificationGateway
from services.payments import PaymentRecordStore
from services.paystack import PaystackClient
from services.settlement import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payments"])


def get_payment_gateway() -> PaystackClient:
    return PaystackClient()


def get_notification_gateway() -> NotificationGateway:
    return NotificationGateway()


@router.post("/verify", response_model=PaymentVerifyResponse, response_model_exclude_none=True)
def verify_payment(
    data: PaymentVerifyRequest,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    gateway: PaystackClient = Depends(get_payment_gateway),
    notifier: NotificationGateway = Depends(get_notification_gateway),
):
    service = PaymentService(db, gateway=gateway, notifier=notifier)
    try:
        result = service.verify_and_settle(
            reference=data.reference,
            declared_amount=data.amount,
            metadata=data.metadata,
            user_id=user.id if user else None,
        )
    except SettlementError:
        raise
    except Exception:
        logger.exception("Payment verification error for %s", data.reference)
        raise SettlementError("Internal server error processing payment")

    return PaymentVerifyResponse(message=result.message, code=result.code)


@router.get("/unsettled", response_model=List[PaymentOut])
def list_unsettled_payments(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    """Verified payments whose booking/order/code was never applied."""
    return PaymentRecordStore(db).list_unsettled()
