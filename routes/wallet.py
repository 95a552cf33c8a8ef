from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.db import get_db, unit_of_work
from models.business import ManagerProfile
from models.user import User
from models.wallet import Wallet
from schemas.wallet import (
    LedgerCheckOut,
    PayoutOut,
    PayoutRequest,
    ProcessPayoutRequest,
    WalletOut,
    WalletTransactionOut,
)
from security.deps import get_current_manager, require_admin
from services.ledger import WalletLedger

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("", response_model=WalletOut)
def get_wallet(manager: ManagerProfile = Depends(get_current_manager), db: Session = Depends(get_db)):
    ledger = WalletLedger(db)
    with unit_of_work(db):
        wallet = ledger.get_or_create_wallet(manager.id)
    return WalletOut(
        id=wallet.id,
        manager_id=wallet.manager_id,
        balance=wallet.balance,
        available_balance=ledger.available_balance(wallet),
        currency=wallet.currency,
        transactions=[WalletTransactionOut.model_validate(t) for t in ledger.recent_transactions(wallet)],
    )


@router.post("/payout", response_model=WalletTransactionOut, status_code=201)
def request_payout(
    data: PayoutRequest,
    manager: ManagerProfile = Depends(get_current_manager),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        entry = WalletLedger(db).request_payout(manager.id, data.amount)
    return entry


@router.get("/admin/payouts", response_model=List[PayoutOut])
def list_payouts(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return [
        PayoutOut(
            id=entry.id,
            wallet_id=entry.wallet_id,
            amount=entry.amount,
            reference=entry.reference,
            description=entry.description,
            state=state,
            created_at=entry.created_at,
        )
        for entry, state in WalletLedger(db).list_payouts()
    ]


@router.put("/admin/payouts/{transaction_id}")
def process_payout(
    transaction_id: str,
    data: ProcessPayoutRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    approve = data.status == "SUCCESS"
    with unit_of_work(db):
        WalletLedger(db).process_payout(transaction_id, approve, data.rejection_reason)
    return {"message": f"Payout {'approved' if approve else 'rejected'} successfully"}


@router.get("/admin/wallets/{wallet_id}/reconcile", response_model=LedgerCheckOut)
def reconcile_wallet(wallet_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    wallet = db.get(Wallet, wallet_id)
    if not wallet:
        raise HTTPException(status_code=404, detail="Wallet not found")
    balance = WalletLedger(db).verify_balance(wallet)
    return LedgerCheckOut(wallet_id=wallet.id, balance=balance, consistent=True)
