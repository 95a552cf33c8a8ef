"""Wallet ledger.

The only code that writes ``Wallet.balance``. Every balance change is a
single SQL increment issued in the same unit of work as the
WalletTransaction that justifies it, so concurrent writers serialize on the
wallet row instead of overwriting each other. Nothing here commits: the
caller's unit of work decides.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import (
    InsufficientBalanceError,
    InvalidArgumentError,
    LedgerInconsistencyError,
    PayoutNotFoundError,
    PayoutStateError,
)
from models.wallet import TransactionStatus, TransactionType, Wallet, WalletTransaction

logger = logging.getLogger(__name__)

PAYOUT_DESCRIPTION = "Payout Request"


def _to_decimal(value: float | int | str | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class WalletLedger:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    def get_wallet(self, manager_id: str) -> Optional[Wallet]:
        return self.db.query(Wallet).filter(Wallet.manager_id == manager_id).one_or_none()

    def _ensure_wallet(self, manager_id: str) -> str:
        """Insert the manager's wallet unless it exists; return its id."""
        now = datetime.utcnow()
        values = {
            "id": str(uuid.uuid4()),
            "manager_id": manager_id,
            "balance": Decimal("0.00"),
            "currency": settings.DEFAULT_CURRENCY,
            "created_at": now,
            "updated_at": now,
        }
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(Wallet.__table__).values(**values).on_conflict_do_nothing(index_elements=["manager_id"])
            self.db.execute(stmt)
        elif dialect == "sqlite":
            stmt = sqlite_insert(Wallet.__table__).values(**values).on_conflict_do_nothing(index_elements=["manager_id"])
            self.db.execute(stmt)
        else:
            raise RuntimeError(f"Unsupported database dialect for wallets: {dialect}")

        return self.db.execute(select(Wallet.id).where(Wallet.manager_id == manager_id)).scalar_one()

    def get_or_create_wallet(self, manager_id: str) -> Wallet:
        wallet_id = self._ensure_wallet(manager_id)
        return self.db.get(Wallet, wallet_id)

    def _lock_wallet(self, wallet_id: str) -> Wallet:
        # Row lock on PostgreSQL; SQLite serializes writers on its own
        stmt = (
            select(Wallet)
            .where(Wallet.id == wallet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()

    def _apply(self, wallet_id: str, delta: Decimal, floor: Optional[Decimal] = None) -> None:
        stmt = update(Wallet).where(Wallet.id == wallet_id)
        if floor is not None:
            stmt = stmt.where(Wallet.balance >= floor)
        stmt = stmt.values(balance=Wallet.balance + delta, updated_at=datetime.utcnow())
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            raise LedgerInconsistencyError(
                "Wallet balance update did not apply",
                {"wallet_id": wallet_id, "delta": str(delta)},
            )
        # Reload the cached row so callers see the new balance
        self.db.get(Wallet, wallet_id, populate_existing=True)

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    def credit(self, manager_id: str, amount: Decimal, reference: str, description: str) -> WalletTransaction:
        """Append a CREDIT/SUCCESS entry and raise the balance by ``amount``."""
        amount = _to_decimal(amount)
        if amount <= 0:
            raise InvalidArgumentError(amount)

        wallet_id = self._ensure_wallet(manager_id)
        entry = WalletTransaction(
            wallet_id=wallet_id,
            amount=amount,
            type=TransactionType.CREDIT.value,
            status=TransactionStatus.SUCCESS.value,
            reference=reference,
            description=description,
        )
        self.db.add(entry)
        self.db.flush()
        self._apply(wallet_id, amount)

        logger.info("Credited wallet %s of manager %s with %s (%s)", wallet_id, manager_id, amount, reference)
        return entry

    # ------------------------------------------------------------------
    # Reads and reconciliation
    # ------------------------------------------------------------------

    def recent_transactions(self, wallet: Wallet, limit: int = 20) -> List[WalletTransaction]:
        return (
            self.db.query(WalletTransaction)
            .filter(WalletTransaction.wallet_id == wallet.id)
            .order_by(WalletTransaction.created_at.desc())
            .limit(limit)
            .all()
        )

    def ledger_balance(self, wallet_id: str) -> Decimal:
        signed = case(
            (WalletTransaction.type == TransactionType.CREDIT.value, WalletTransaction.amount),
            else_=-WalletTransaction.amount,
        )
        total = self.db.execute(
            select(func.coalesce(func.sum(signed), 0)).where(
                WalletTransaction.wallet_id == wallet_id,
                WalletTransaction.status == TransactionStatus.SUCCESS.value,
            )
        ).scalar_one()
        return _to_decimal(total).quantize(Decimal("0.01"))

    def verify_balance(self, wallet: Wallet) -> Decimal:
        """Recompute the balance from the ledger; raise if the cache drifted."""
        self.db.refresh(wallet)
        expected = self.ledger_balance(wallet.id)
        if _to_decimal(wallet.balance) != expected:
            logger.error("Wallet %s drifted: balance=%s ledger=%s", wallet.id, wallet.balance, expected)
            raise LedgerInconsistencyError(
                "Wallet balance does not match its ledger",
                {"wallet_id": wallet.id, "balance": str(wallet.balance), "ledger": str(expected)},
            )
        return expected

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def _resolutions(self, references: Iterable[str]) -> Dict[str, str]:
        refs = [r for r in references if r]
        if not refs:
            return {}
        rows = self.db.execute(
            select(WalletTransaction.reference, WalletTransaction.status).where(
                WalletTransaction.type == TransactionType.DEBIT.value,
                WalletTransaction.status.in_([TransactionStatus.SUCCESS.value, TransactionStatus.FAILED.value]),
                WalletTransaction.reference.in_(refs),
            )
        ).all()
        return {ref: status for ref, status in rows}

    def _pending_payouts(self, wallet_id: str) -> List[WalletTransaction]:
        requests_ = (
            self.db.query(WalletTransaction)
            .filter(
                WalletTransaction.wallet_id == wallet_id,
                WalletTransaction.type == TransactionType.DEBIT.value,
                WalletTransaction.status == TransactionStatus.PENDING.value,
            )
            .all()
        )
        resolved = self._resolutions(r.reference for r in requests_)
        return [r for r in requests_ if r.reference not in resolved]

    def available_balance(self, wallet: Wallet) -> Decimal:
        held = sum((_to_decimal(r.amount) for r in self._pending_payouts(wallet.id)), Decimal("0.00"))
        return _to_decimal(wallet.balance) - held

    def request_payout(self, manager_id: str, amount: Decimal) -> WalletTransaction:
        """Hold ``amount`` for withdrawal until an admin resolves it."""
        amount = _to_decimal(amount)
        if amount <= 0:
            raise InvalidArgumentError(amount)

        wallet = self.get_wallet(manager_id)
        if wallet is None:
            raise InsufficientBalanceError(amount, Decimal("0.00"))

        wallet = self._lock_wallet(wallet.id)
        available = self.available_balance(wallet)
        if available < amount:
            raise InsufficientBalanceError(amount, available)

        entry = WalletTransaction(
            wallet_id=wallet.id,
            amount=amount,
            type=TransactionType.DEBIT.value,
            status=TransactionStatus.PENDING.value,
            reference=f"payout-{uuid.uuid4().hex}",
            description=PAYOUT_DESCRIPTION,
        )
        self.db.add(entry)
        self.db.flush()
        logger.info("Payout of %s requested from wallet %s (%s)", amount, wallet.id, entry.reference)
        return entry

    def process_payout(
        self, transaction_id: str, approve: bool, rejection_reason: Optional[str] = None
    ) -> WalletTransaction:
        """Resolve a pending payout with a terminal entry carrying the same reference."""
        request = self.db.get(WalletTransaction, transaction_id)
        if (
            request is None
            or request.type != TransactionType.DEBIT.value
            or request.status != TransactionStatus.PENDING.value
        ):
            raise PayoutNotFoundError("Transaction not found", {"transaction_id": transaction_id})

        self._lock_wallet(request.wallet_id)
        if request.reference in self._resolutions([request.reference]):
            raise PayoutStateError("Transaction is not pending", {"transaction_id": transaction_id})

        amount = _to_decimal(request.amount)
        if approve:
            entry = WalletTransaction(
                wallet_id=request.wallet_id,
                amount=amount,
                type=TransactionType.DEBIT.value,
                status=TransactionStatus.SUCCESS.value,
                reference=request.reference,
                description=f"{request.description} - Approved",
            )
            self.db.add(entry)
            self.db.flush()
            self._apply(request.wallet_id, -amount, floor=amount)
        else:
            suffix = f" - Rejected: {rejection_reason}" if rejection_reason else " - Rejected"
            entry = WalletTransaction(
                wallet_id=request.wallet_id,
                amount=amount,
                type=TransactionType.DEBIT.value,
                status=TransactionStatus.FAILED.value,
                reference=request.reference,
                description=f"{request.description}{suffix}",
            )
            self.db.add(entry)
            self.db.flush()

        logger.info("Payout %s %s", request.reference, entry.status)
        return entry

    def list_payouts(self) -> List[Tuple[WalletTransaction, str]]:
        """Every payout request with its current state."""
        requests_ = (
            self.db.query(WalletTransaction)
            .filter(
                and_(
                    WalletTransaction.type == TransactionType.DEBIT.value,
                    WalletTransaction.status == TransactionStatus.PENDING.value,
                )
            )
            .order_by(WalletTransaction.created_at.desc())
            .all()
        )
        resolved = self._resolutions(r.reference for r in requests_)
        return [(r, resolved.get(r.reference, TransactionStatus.PENDING.value)) for r in requests_]
