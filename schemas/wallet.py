from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class WalletTransactionOut(BaseModel):
    id: str
    amount: Decimal
    type: str
    status: str
    reference: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class WalletOut(BaseModel):
    id: str
    manager_id: str
    balance: Decimal
    available_balance: Decimal
    currency: str
    transactions: List[WalletTransactionOut]


class PayoutRequest(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)


class PayoutOut(BaseModel):
    id: str
    wallet_id: str
    amount: Decimal
    reference: str
    description: Optional[str] = None
    state: str
    created_at: datetime


class ProcessPayoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["SUCCESS", "FAILED"]
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason", max_length=200)


class LedgerCheckOut(BaseModel):
    wallet_id: str
    balance: Decimal
    consistent: bool
