import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.db import unit_of_work
from core.exceptions import DuplicateReferenceError, GatewayDeclinedError
from models.activation_code import ActivationCode
from models.booking import Booking
from models.order import Order
from models.payment import Payment
from services.paystack import SUCCESS_STATUS

logger = logging.getLogger(__name__)


class PaymentRecordStore:
    """One immutable Payment per verified gateway reference."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_reference(self, reference: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.reference == reference).one_or_none()

    def record(
        self,
        reference: str,
        amount: Decimal,
        currency: str,
        status: str,
        purpose: str,
        user_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        target_id: Optional[str] = None,
    ) -> Payment:
        """Insert the Payment row in its own unit of work.

        The unique index on ``reference`` decides concurrent verifications of
        the same payment: the loser gets ``DuplicateReferenceError`` holding
        the winner's row.
        """
        if status != SUCCESS_STATUS:
            raise GatewayDeclinedError(reference, status)

        payment = Payment(
            reference=reference,
            amount=amount,
            currency=currency,
            status=status,
            purpose=purpose,
            target_id=target_id,
            user_id=user_id,
            gateway_metadata=metadata or {},
        )
        try:
            with unit_of_work(self.db):
                self.db.add(payment)
        except IntegrityError:
            existing = self.get_by_reference(reference)
            if existing is None:
                # Some other constraint failed (e.g. unknown user id)
                raise
            logger.info("Payment %s already recorded, replaying", reference)
            raise DuplicateReferenceError(existing)

        logger.info("Recorded payment %s: %s %s for %s", reference, amount, currency, purpose)
        return payment

    def _settled_clause(self):
        return or_(
            exists().where(ActivationCode.payment_id == Payment.id),
            exists().where(Booking.payment_id == Payment.id),
            exists().where(Order.payment_id == Payment.id),
        )

    def is_settled(self, payment: Payment) -> bool:
        stmt = select(self._settled_clause()).select_from(Payment).where(Payment.id == payment.id)
        return bool(self.db.execute(stmt).scalar())

    def list_unsettled(self) -> List[Payment]:
        """Verified payments whose side effects were never applied."""
        stmt = select(Payment).where(~self._settled_clause()).order_by(Payment.created_at)
        return list(self.db.execute(stmt).scalars())
