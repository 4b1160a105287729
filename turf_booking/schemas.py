from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
import datetime


class BookingCreate(BaseModel):
    # user_id will come from the JWT token
    slot_id: int


class OrderHandle(BaseModel):
    order_id: str
    amount: Decimal
    currency: str
    key_id: Optional[str] = None


class BookingCreated(BaseModel):
    booking_id: int
    order_handle: OrderHandle


class BookingRead(BaseModel):
    id: int
    slot_id: int
    user_id: str
    status: str
    created_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentVerify(BaseModel):
    order_id: str = Field(min_length=1)
    payment_id: str = Field(min_length=1)
    signature: str = Field(min_length=1)


class PaymentVerified(BaseModel):
    ok: bool = True
    booking_id: int
    status: str


class CancellationRead(BaseModel):
    message: str
    booking_id: int
    status: str
    refund_amount: Optional[Decimal] = None
    refund_issued: bool = False


class ConversationEligibility(BaseModel):
    owner_id: str
    player_id: str
    allowed: bool
