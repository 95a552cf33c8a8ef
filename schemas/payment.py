from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from core.exceptions import InvalidPurposeError


class _Purpose(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: Optional[str] = Field(default=None, alias="userId")

    @property
    def target_id(self) -> Optional[str]:
        return None


class AccessKeyPurpose(_Purpose):
    purpose: Literal["ACCESS_KEY"] = "ACCESS_KEY"


class BookingPurpose(_Purpose):
    purpose: Literal["BOOKING"]
    booking_id: str = Field(alias="bookingId", min_length=1)

    @property
    def target_id(self) -> Optional[str]:
        return self.booking_id


class OrderPurpose(_Purpose):
    purpose: Literal["ORDER"]
    order_id: str = Field(alias="orderId", min_length=1)

    @property
    def target_id(self) -> Optional[str]:
        return self.order_id


SettlementPurpose = Annotated[
    Union[AccessKeyPurpose, BookingPurpose, OrderPurpose],
    Field(discriminator="purpose"),
]

_purpose_adapter = TypeAdapter(SettlementPurpose)


def parse_purpose(metadata: Optional[Dict[str, Any]]) -> SettlementPurpose:
    """Turn the caller's metadata into exactly one purpose variant.

    Legacy clients that omit ``purpose`` are buying an access key.
    """
    data = dict(metadata or {})
    if data.get("purpose") is None:
        data["purpose"] = "ACCESS_KEY"
    try:
        return _purpose_adapter.validate_python(data)
    except ValidationError as exc:
        fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
        raise InvalidPurposeError(
            "Invalid payment purpose",
            {"purpose": data.get("purpose"), "fields": fields},
        ) from exc


class PaymentVerifyRequest(BaseModel):
    reference: str = Field(min_length=1)
    email: Optional[str] = None
    amount: Decimal
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentVerifyResponse(BaseModel):
    message: str
    code: Optional[str] = None


class PaymentOut(BaseModel):
    id: str
    reference: str
    amount: Decimal
    currency: str
    status: str
    purpose: str
    target_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
