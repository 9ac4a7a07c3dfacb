"""
Order records. Every record is an immutable snapshot; the lifecycle engine returns replacements
rather than mutating in place, so a rejected mutation can never leave a half-applied order behind.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from app.order_state import OrderStatus, ReturnType

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PaymentMethod(str, Enum):
    COD = "Cash on Delivery"
    PREPAID = "Prepaid"
    PARTIAL = "Partial Payment"


class RefundStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"


class RefundMethod(str, Enum):
    ORIGINAL_SOURCE = "Original Payment Source"
    MANUAL_UPI = "Manual UPI Transfer"
    MANUAL_BANK = "Manual Bank Transfer"
    CASH = "Cash"


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: NonEmptyStr
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0)


class Customer(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_name: NonEmptyStr
    mobile_number: str
    email: str | None = None
    address: str | None = None


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    timestamp: datetime
    note: str | None = None


class ReturnRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str
    type: ReturnType
    remarks: str | None = None
    pickup_date: str | None = None
    pickup_time: str | None = None
    tracking_url: str | None = None
    refund_status: RefundStatus = RefundStatus.PENDING
    refund_method: RefundMethod | None = None


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    customer: Customer
    items: tuple[LineItem, ...]
    total_amount: Decimal
    advance_amount: Decimal = Decimal("0")
    balance_amount: Decimal
    payment_method: PaymentMethod
    current_status: OrderStatus
    history: tuple[HistoryEntry, ...] = Field(..., min_length=1)
    created_at: datetime
    updated_at: datetime
    admin_notes: str = ""
    expected_delivery_date: str | None = None
    expected_delivery_time: str | None = None
    courier_tracking_url: str | None = None
    return_details: ReturnRequest | None = None

    @property
    def has_return_request(self) -> bool:
        return self.return_details is not None

    @property
    def return_type(self) -> ReturnType | None:
        return self.return_details.type if self.return_details else None

    def public_view(self) -> dict:
        """What the customer tracking page may see: everything except internal notes."""
        return self.model_dump(mode="json", exclude={"admin_notes"})


class OrderPatch(BaseModel):
    """Partial edit. Only fields the caller explicitly sets are applied."""
    customer: Customer | None = None
    items: tuple[LineItem, ...] | None = None
    payment_method: PaymentMethod | None = None
    admin_notes: str | None = None
    expected_delivery_date: str | None = None
    expected_delivery_time: str | None = None
    courier_tracking_url: str | None = None
    advance_amount: Decimal | None = Field(default=None, ge=0)
    pickup_date: str | None = None
    pickup_time: str | None = None
    return_tracking_url: str | None = None
    refund_method: RefundMethod | None = None
