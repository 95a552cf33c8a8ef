import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from core.db import Base, build_engine, unit_of_work
from core.exceptions import (
    InsufficientBalanceError,
    InvalidArgumentError,
    LedgerInconsistencyError,
    PayoutNotFoundError,
    PayoutStateError,
)
from models.business import ManagerProfile
from models.user import User, UserRole
from models.wallet import TransactionStatus, TransactionType, Wallet, WalletTransaction
from services.ledger import WalletLedger


def _credit(db, manager_id, amount, reference):
    with unit_of_work(db):
        return WalletLedger(db).credit(manager_id, Decimal(amount), reference, f"Revenue {reference}")


class TestCredits:
    """Test cases for WalletLedger.credit"""

    def test_first_credit_creates_wallet(self, db, manager):
        assert WalletLedger(db).get_wallet(manager.id) is None

        entry = _credit(db, manager.id, "30.00", "ref-1")

        wallet = WalletLedger(db).get_wallet(manager.id)
        assert wallet is not None
        assert wallet.balance == Decimal("30.00")
        assert wallet.currency == "NGN"
        assert entry.wallet_id == wallet.id
        assert entry.type == TransactionType.CREDIT.value
        assert entry.status == TransactionStatus.SUCCESS.value
        assert entry.reference == "ref-1"

    def test_balance_equals_sum_of_successful_entries(self, db, manager):
        _credit(db, manager.id, "30.00", "ref-1")
        _credit(db, manager.id, "45.50", "ref-2")

        ledger = WalletLedger(db)
        wallet = ledger.get_wallet(manager.id)
        assert wallet.balance == Decimal("75.50")
        assert ledger.ledger_balance(wallet.id) == Decimal("75.50")
        assert ledger.verify_balance(wallet) == Decimal("75.50")
        assert len(ledger.recent_transactions(wallet)) == 2

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_non_positive_amount_rejected(self, db, manager, amount):
        with pytest.raises(InvalidArgumentError):
            _credit(db, manager.id, amount, "ref-bad")

        assert db.query(WalletTransaction).count() == 0

    def test_same_reference_cannot_credit_twice(self, db, manager):
        """A second CREDIT for one payment reference violates the ledger's uniqueness"""
        _credit(db, manager.id, "30.00", "ref-1")
        with pytest.raises(IntegrityError):
            _credit(db, manager.id, "30.00", "ref-1")

        wallet = WalletLedger(db).get_wallet(manager.id)
        db.refresh(wallet)
        assert wallet.balance == Decimal("30.00")

    def test_unsupported_dialect_refuses_to_create_wallet(self):
        """Wallet creation relies on an atomic insert-if-absent"""
        session = Mock()
        session.get_bind.return_value.dialect.name = "mysql"

        with pytest.raises(RuntimeError):
            WalletLedger(session).get_or_create_wallet("m1")

        session.execute.assert_not_called()
        session.add.assert_not_called()

    def test_get_or_create_wallet_is_idempotent(self, db, manager):
        ledger = WalletLedger(db)
        with unit_of_work(db):
            first = ledger.get_or_create_wallet(manager.id)
        with unit_of_work(db):
            second = ledger.get_or_create_wallet(manager.id)

        assert first.id == second.id
        assert db.query(Wallet).count() == 1

    def test_verify_balance_detects_drift(self, db, manager):
        _credit(db, manager.id, "30.00", "ref-1")
        ledger = WalletLedger(db)
        wallet = ledger.get_wallet(manager.id)

        db.execute(update(Wallet).where(Wallet.id == wallet.id).values(balance=Decimal("99.00")))
        db.commit()

        with pytest.raises(LedgerInconsistencyError):
            ledger.verify_balance(wallet)


class TestConcurrentCredits:
    """Two settlements crediting one wallet at the same moment"""

    @pytest.fixture
    def file_engine(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        Base.metadata.create_all(bind=engine)
        yield engine
        engine.dispose()

    def test_no_lost_update(self, file_engine):
        Session = sessionmaker(bind=file_engine, autocommit=False, autoflush=False, expire_on_commit=False)
        with Session() as setup:
            setup.add(User(id="mu1", name="Mo", email="mo@example.com", role=UserRole.MANAGER.value))
            setup.add(ManagerProfile(id="m1", user_id="mu1"))
            setup.commit()
            with unit_of_work(setup):
                WalletLedger(setup).get_or_create_wallet("m1")

        barrier = threading.Barrier(2)

        def settle(reference, amount):
            with Session() as session:
                barrier.wait()
                with unit_of_work(session):
                    WalletLedger(session).credit("m1", Decimal(amount), reference, "Booking Revenue")

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(settle, "ref-a", "30.00"), pool.submit(settle, "ref-b", "45.00")]
            for future in futures:
                future.result()

        with Session() as check:
            ledger = WalletLedger(check)
            wallet = ledger.get_wallet("m1")
            assert wallet.balance == Decimal("75.00")
            assert check.query(WalletTransaction).filter(WalletTransaction.wallet_id == wallet.id).count() == 2
            assert ledger.verify_balance(wallet) == Decimal("75.00")


class TestPayouts:
    """Test cases for payout requests and their resolution"""

    def _request(self, db, manager_id, amount):
        with unit_of_work(db):
            return WalletLedger(db).request_payout(manager_id, Decimal(amount))

    def _process(self, db, transaction_id, approve, reason=None):
        with unit_of_work(db):
            return WalletLedger(db).process_payout(transaction_id, approve, reason)

    def test_request_without_wallet(self, db, manager):
        with pytest.raises(InsufficientBalanceError):
            self._request(db, manager.id, "10.00")

    def test_request_holds_funds_without_touching_balance(self, db, manager):
        _credit(db, manager.id, "100.00", "ref-1")

        entry = self._request(db, manager.id, "60.00")

        ledger = WalletLedger(db)
        wallet = ledger.get_wallet(manager.id)
        assert entry.type == TransactionType.DEBIT.value
        assert entry.status == TransactionStatus.PENDING.value
        assert entry.reference.startswith("payout-")
        assert wallet.balance == Decimal("100.00")
        assert ledger.available_balance(wallet) == Decimal("40.00")

        with pytest.raises(InsufficientBalanceError):
            self._request(db, manager.id, "50.00")

    def test_approve_debits_balance(self, db, manager):
        _credit(db, manager.id, "100.00", "ref-1")
        request = self._request(db, manager.id, "60.00")

        entry = self._process(db, request.id, approve=True)

        ledger = WalletLedger(db)
        wallet = ledger.get_wallet(manager.id)
        assert entry.status == TransactionStatus.SUCCESS.value
        assert entry.reference == request.reference
        assert entry.description == "Payout Request - Approved"
        assert wallet.balance == Decimal("40.00")
        assert ledger.available_balance(wallet) == Decimal("40.00")
        assert ledger.verify_balance(wallet) == Decimal("40.00")
        assert [state for _, state in ledger.list_payouts()] == ["SUCCESS"]

        # The request entry itself is never rewritten
        db.refresh(request)
        assert request.status == TransactionStatus.PENDING.value

    def test_reject_releases_hold(self, db, manager):
        _credit(db, manager.id, "100.00", "ref-1")
        request = self._request(db, manager.id, "60.00")

        entry = self._process(db, request.id, approve=False, reason="Bank details invalid")

        ledger = WalletLedger(db)
        wallet = ledger.get_wallet(manager.id)
        assert entry.status == TransactionStatus.FAILED.value
        assert entry.description == "Payout Request - Rejected: Bank details invalid"
        assert wallet.balance == Decimal("100.00")
        assert ledger.available_balance(wallet) == Decimal("100.00")
        assert [state for _, state in ledger.list_payouts()] == ["FAILED"]

    def test_payout_resolves_once(self, db, manager):
        _credit(db, manager.id, "100.00", "ref-1")
        request = self._request(db, manager.id, "60.00")
        self._process(db, request.id, approve=True)

        with pytest.raises(PayoutStateError):
            self._process(db, request.id, approve=False)

        assert WalletLedger(db).get_wallet(manager.id).balance == Decimal("40.00")

    def test_unknown_payout(self, db, manager):
        with pytest.raises(PayoutNotFoundError):
            self._process(db, "does-not-exist", approve=True)

    def test_credit_entry_is_not_a_payout(self, db, manager):
        credit = _credit(db, manager.id, "100.00", "ref-1")

        with pytest.raises(PayoutNotFoundError):
            self._process(db, credit.id, approve=True)
