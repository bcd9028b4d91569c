"""Payment and bank webhook schemas."""

from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from restopos.models.payment import PaymentMethod

Money = Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]


class PaymentCreate(BaseModel):
    session_id: Optional[int] = Field(None, gt=0)
    order_id: Optional[int] = Field(None, gt=0)
    subtotal: Money
    tax: Money
    discount: Money = Decimal("0")
    total_amount: Money
    method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_target(self) -> "PaymentCreate":
        if (self.session_id is None) == (self.order_id is None):
            raise ValueError("Provide exactly one of session_id or order_id")
        return self


class PaymentProcess(BaseModel):
    transaction_id: Optional[str] = Field(None, max_length=12)
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentRefund(BaseModel):
    # Blank reasons are rejected by the service with a domain error
    reason: str = Field(..., max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentFail(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class SepayWebhook(BaseModel):
    """Transfer notification posted by SePay."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    gateway: str
    transaction_date: str = Field(..., alias="transactionDate")
    account_number: Optional[str] = Field(None, alias="accountNumber")
    code: Optional[str] = None
    content: Optional[str] = None
    transfer_type: str = Field(..., alias="transferType")
    transfer_amount: Decimal = Field(..., alias="transferAmount", ge=0)
    accumulated: Optional[Decimal] = None
    sub_account: Optional[str] = Field(None, alias="subAccount")
    reference_code: Optional[str] = Field(None, alias="referenceCode")
    description: Optional[str] = None
