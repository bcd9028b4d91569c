"""Order schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from restopos.models.order import OrderItemStatus, OrderStatus, OrderType
from restopos.services.order_service import ItemRequest


class OrderItemIn(BaseModel):
    menu_item_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1, le=100)
    notes: Optional[str] = Field(None, max_length=500)

    def to_request(self) -> ItemRequest:
        return ItemRequest(menu_item_id=self.menu_item_id, quantity=self.quantity, notes=self.notes)


class OrderCreate(BaseModel):
    order_type: OrderType = OrderType.DINE_IN
    session_id: Optional[int] = Field(None, gt=0)
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_phone: Optional[str] = Field(None, min_length=6, max_length=30)
    items: List[OrderItemIn] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=1000)
    auto_confirm: bool = False

    @model_validator(mode="after")
    def check_order_target(self) -> "OrderCreate":
        if self.order_type == OrderType.DINE_IN and self.session_id is None:
            raise ValueError("session_id is required for dine-in orders")
        if self.order_type == OrderType.TAKEAWAY and not (self.customer_name and self.customer_phone):
            raise ValueError("customer_name and customer_phone are required for takeaway orders")
        return self


class CustomerOrderCreate(BaseModel):
    """Order placed from the table; the session comes from the table credentials."""

    items: List[OrderItemIn] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=1000)


class AddItemsRequest(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)


class OrderItemUpdate(BaseModel):
    quantity: Optional[int] = Field(None, ge=1, le=100)
    notes: Optional[str] = Field(None, max_length=500)


class OrderItemStatusUpdate(BaseModel):
    status: OrderItemStatus
    reason: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)


class OrderCancel(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
