"""Payment verification and settlement.

``PaymentService`` runs the whole pipeline for one gateway reference:

    verify -> record Payment -> settle (one unit of work) -> notify

``SettlementDispatcher`` owns the settle step. Each purpose maps to exactly
one branch; a branch either commits all of its effects (status transition,
``payment_id``, ledger entry, balance) or none of them. The Payment row is
committed before settlement starts, so a verified payment whose settlement
failed stays visible to reconciliation and is settled by the next retry of
the same reference.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.db import unit_of_work
from core.exceptions import (
    AmountMismatchError,
    DuplicateReferenceError,
    GatewayDeclinedError,
    InvalidPurposeError,
    SettlementConflictError,
    SettlementError,
    SettlementTargetNotFoundError,
)
from models.activation_code import ActivationCode
from models.booking import Booking, BookingStatus
from models.business import Business, ManagerProfile
from models.order import Order, OrderStatus
from models.payment import Payment, PaymentPurpose
from models.user import User
from models.wallet import TransactionType, WalletTransaction
from schemas.payment import parse_purpose
from services.ledger import WalletLedger
from services.notifications import Notification, NotificationGateway
from services.payments import PaymentRecordStore
from services.paystack import PaystackClient

logger = logging.getLogger(__name__)

GENERATED_BY_PAYMENT = "SYSTEM_PAYMENT"


class SettlementOutcome(str, Enum):
    CODE_ISSUED = "CODE_ISSUED"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"


@dataclass
class SettlementResult:
    outcome: SettlementOutcome
    payment: Payment
    code: Optional[str] = None
    target_id: Optional[str] = None
    wallet_transaction: Optional[WalletTransaction] = None
    notification: Optional[Notification] = None
    replayed: bool = False

    @property
    def message(self) -> str:
        if self.replayed:
            return "Payment already verified"
        return "Payment verified successfully"


@dataclass(frozen=True)
class ManagerRef:
    manager_id: str
    push_token: Optional[str] = None


def generate_activation_code() -> str:
    # 8 random bytes -> 16 upper-case hex characters
    return secrets.token_hex(8).upper()


def resolve_manager(db: Session, business_id: str) -> Optional[ManagerRef]:
    """Manager of ``business_id``, or None when the business has none."""
    row = db.execute(
        select(ManagerProfile.id, User.push_token)
        .join(Business, Business.manager_id == ManagerProfile.id)
        .join(User, User.id == ManagerProfile.user_id)
        .where(Business.id == business_id)
    ).first()
    if row is None:
        return None
    return ManagerRef(manager_id=row[0], push_token=row[1])


class SettlementDispatcher:
    def __init__(self, db: Session, ledger: Optional[WalletLedger] = None):
        self.db = db
        self.ledger = ledger or WalletLedger(db)
        self._branches: Dict[PaymentPurpose, Callable[[Payment], SettlementResult]] = {
            PaymentPurpose.ACCESS_KEY: self._issue_code,
            PaymentPurpose.BOOKING: self._confirm_booking,
            PaymentPurpose.ORDER: self._confirm_order,
        }

    def _purpose_of(self, payment: Payment) -> PaymentPurpose:
        try:
            return PaymentPurpose(payment.purpose)
        except ValueError:
            raise InvalidPurposeError("Invalid payment purpose", {"purpose": payment.purpose})

    def settle(self, payment: Payment) -> SettlementResult:
        branch = self._branches[self._purpose_of(payment)]
        try:
            with unit_of_work(self.db):
                result = branch(payment)
        except DuplicateReferenceError:
            # A concurrent request settled this payment first
            return self.replay(payment)
        except IntegrityError:
            if PaymentRecordStore(self.db).is_settled(payment):
                return self.replay(payment)
            raise
        except SettlementTargetNotFoundError as exc:
            logger.error(
                "Payment %s verified but %s; needs manual reconciliation",
                payment.reference, exc.message,
            )
            raise
        except SettlementError as exc:
            logger.error("Settlement of payment %s failed: %s %s", payment.reference, exc.message, exc.details)
            raise

        logger.info("Payment %s settled: %s", payment.reference, result.outcome.value)
        return result

    def replay(self, payment: Payment) -> SettlementResult:
        """Report the outcome a recorded payment already produced.

        A payment that was recorded but never settled is settled now.
        """
        purpose = self._purpose_of(payment)
        if purpose is PaymentPurpose.ACCESS_KEY:
            activation = (
                self.db.query(ActivationCode).filter(ActivationCode.payment_id == payment.id).one_or_none()
            )
            if activation is not None:
                return SettlementResult(
                    SettlementOutcome.CODE_ISSUED, payment, code=activation.code, replayed=True
                )
        else:
            model, outcome = (
                (Booking, SettlementOutcome.BOOKING_CONFIRMED)
                if purpose is PaymentPurpose.BOOKING
                else (Order, SettlementOutcome.ORDER_CONFIRMED)
            )
            target = self.db.query(model).filter(model.payment_id == payment.id).one_or_none()
            if target is not None:
                credit = (
                    self.db.query(WalletTransaction)
                    .filter(
                        WalletTransaction.reference == payment.reference,
                        WalletTransaction.type == TransactionType.CREDIT.value,
                    )
                    .one_or_none()
                )
                return SettlementResult(
                    outcome, payment, target_id=target.id, wallet_transaction=credit, replayed=True
                )

        logger.warning("Payment %s was recorded but never settled; settling now", payment.reference)
        return self.settle(payment)

    # ------------------------------------------------------------------
    # Branches. Each runs inside the settle() unit of work.
    # ------------------------------------------------------------------

    def _issue_code(self, payment: Payment) -> SettlementResult:
        code = generate_activation_code()
        self.db.add(
            ActivationCode(
                code=code,
                price=payment.amount,
                generated_by=GENERATED_BY_PAYMENT,
                is_used=False,
                payment_id=payment.id,
            )
        )
        self.db.flush()
        return SettlementResult(SettlementOutcome.CODE_ISSUED, payment, code=code)

    def _confirm(self, payment: Payment, model: Any, kind: str, confirmed_status: str) -> Any:
        """Move the target to its confirmed state and bind it to ``payment``.

        The ``payment_id IS NULL`` guard makes the transition a compare-and-set,
        so two payments can never both confirm (and credit) the same target.
        """
        target_id = payment.target_id
        if not target_id:
            raise InvalidPurposeError(f"{kind} id is required", {"reference": payment.reference})

        result = self.db.execute(
            update(model)
            .where(model.id == target_id, model.payment_id.is_(None))
            .values(status=confirmed_status, payment_id=payment.id, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        target = self.db.get(model, target_id, populate_existing=True)
        if result.rowcount == 1:
            return target

        if target is None:
            raise SettlementTargetNotFoundError(kind, target_id, payment.reference)
        if target.payment_id == payment.id:
            raise DuplicateReferenceError(payment)
        raise SettlementConflictError(kind, target_id, payment.reference)

    def _credit_manager(self, payment: Payment, business_id: str, description: str):
        manager = resolve_manager(self.db, business_id)
        if manager is None:
            logger.info("Business %s has no manager; payment %s credits no wallet", business_id, payment.reference)
            return None, None
        entry = self.ledger.credit(manager.manager_id, payment.amount, payment.reference, description)
        return manager, entry

    def _confirm_booking(self, payment: Payment) -> SettlementResult:
        booking = self._confirm(payment, Booking, "Booking", BookingStatus.CONFIRMED.value)
        _, entry = self._credit_manager(
            payment, booking.business_id, f"Booking Revenue #{booking.id[:8]}..."
        )
        return SettlementResult(
            SettlementOutcome.BOOKING_CONFIRMED, payment, target_id=booking.id, wallet_transaction=entry
        )

    def _confirm_order(self, payment: Payment) -> SettlementResult:
        order = self._confirm(payment, Order, "Order", OrderStatus.CONFIRMED.value)
        manager, entry = self._credit_manager(
            payment, order.business_id, f"Order Revenue #{order.id[:8]}..."
        )
        notification = None
        if manager is not None and manager.push_token:
            notification = Notification(
                destination=manager.push_token,
                title="New Order Received!",
                body=f"Order #{order.id[:5]} has been paid and confirmed.",
                data={"type": "NEW_ORDER", "orderId": order.id},
            )
        return SettlementResult(
            SettlementOutcome.ORDER_CONFIRMED,
            payment,
            target_id=order.id,
            wallet_transaction=entry,
            notification=notification,
        )


class PaymentService:
    def __init__(
        self,
        db: Session,
        gateway: Optional[PaystackClient] = None,
        notifier: Optional[NotificationGateway] = None,
    ):
        self.db = db
        self.gateway = gateway or PaystackClient()
        self.notifier = notifier or NotificationGateway()
        self.store = PaymentRecordStore(db)
        self.dispatcher = SettlementDispatcher(db)

    def _known_user(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        if self.db.get(User, user_id) is None:
            logger.warning("Payment names unknown user %s; recording without user", user_id)
            return None
        return user_id

    def verify_and_settle(
        self,
        reference: str,
        declared_amount: Optional[Decimal],
        metadata: Optional[Dict[str, Any]],
        user_id: Optional[str] = None,
    ) -> SettlementResult:
        purpose = parse_purpose(metadata)

        existing = self.store.get_by_reference(reference)
        if existing is not None:
            logger.info("Reference %s already recorded; replaying settlement", reference)
            return self._notify(self.dispatcher.replay(existing))

        verification = self.gateway.verify(reference)
        if not verification.succeeded:
            logger.info("Gateway declined %s with status %s", reference, verification.status)
            raise GatewayDeclinedError(reference, verification.status)

        if purpose.purpose == PaymentPurpose.ACCESS_KEY.value and declared_amount is not None:
            if Decimal(str(declared_amount)) != verification.amount:
                logger.warning(
                    "Declared amount %s for %s differs from verified %s",
                    declared_amount, reference, verification.amount,
                )
                raise AmountMismatchError(Decimal(str(declared_amount)), verification.amount)

        try:
            payment = self.store.record(
                reference=reference,
                amount=verification.amount,
                currency=verification.currency,
                status=verification.status,
                purpose=purpose.purpose,
                user_id=self._known_user(user_id or purpose.user_id),
                metadata=verification.metadata,
                target_id=purpose.target_id,
            )
        except DuplicateReferenceError as dup:
            return self._notify(self.dispatcher.replay(dup.payment))

        return self._notify(self.dispatcher.settle(payment))

    def _notify(self, result: SettlementResult) -> SettlementResult:
        # Outside the settlement transaction; never affects the result
        if result.notification is not None:
            self.notifier.dispatch(result.notification)
        return result
