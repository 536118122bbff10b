from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import date, datetime, time
from decimal import Decimal
from app.core.enums import OrderStatus, PaymentStatus, DeliveryType, CallbackOutcome
from app.schemas.pricing import LineItem, MAX_AMOUNT


class OrderCreate(BaseModel):
    client_id: Optional[int] = None
    menu_items: List[LineItem] = Field(default_factory=list)
    discount_fixed: Decimal = Field(Decimal("0"), ge=0, le=MAX_AMOUNT)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    delivery_cost: Decimal = Field(Decimal("0"), ge=0, le=MAX_AMOUNT)
    delivery_date: Optional[date] = None
    delivery_time: Optional[time] = None
    delivery_type: DeliveryType = DeliveryType.DELIVERY
    delivery_address: Optional[str] = Field(None, max_length=500)
    comment: Optional[str] = None
    special_instructions: Optional[str] = None
    status: OrderStatus = OrderStatus.SUBMITTED

    @field_validator("status")
    @classmethod
    def initial_status(cls, value: OrderStatus) -> OrderStatus:
        if value not in (OrderStatus.DRAFT, OrderStatus.SUBMITTED):
            raise ValueError("new orders start as draft or submitted")
        return value


class OrderUpdate(BaseModel):
    menu_items: Optional[List[LineItem]] = None
    discount_fixed: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT)
    discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    delivery_cost: Optional[Decimal] = Field(None, ge=0, le=MAX_AMOUNT)
    delivery_date: Optional[date] = None
    delivery_time: Optional[time] = None
    delivery_type: Optional[DeliveryType] = None
    delivery_address: Optional[str] = Field(None, max_length=500)
    comment: Optional[str] = None
    special_instructions: Optional[str] = None
    status: Optional[OrderStatus] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    comment: Optional[str] = None


class OrderOut(BaseModel):
    id: int
    client_id: int
    coordinator_id: Optional[int] = None
    application_id: Optional[int] = None
    menu_items: List[LineItem]
    items_total: Decimal
    discount_fixed: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    delivery_cost: Decimal
    final_amount: Decimal
    delivery_date: Optional[date] = None
    delivery_time: Optional[time] = None
    delivery_type: DeliveryType
    delivery_address: Optional[str] = None
    status: OrderStatus
    payment_status: PaymentStatus
    payment_attempts: int
    payment_url: Optional[str] = None
    payment_created_at: Optional[datetime] = None
    payment_completed_at: Optional[datetime] = None
    comment: Optional[str] = None
    special_instructions: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class OrderStatistics(BaseModel):
    total: int
    by_status: dict
    total_amount: Decimal


class PaymentSessionOut(BaseModel):
    order_id: int
    payment_url: str
    attempts: int
    gateway_order_id: str


class PaymentCallbackIn(BaseModel):
    outcome: CallbackOutcome


class PaymentInfoOut(BaseModel):
    order_id: int
    payment_status: str
    order_status: OrderStatus
    amount: Decimal
    amount_charged: Decimal
    amount_refunded: Decimal
    attempts: int
    can_retry: bool
    payment_url: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SweepOut(BaseModel):
    processing_count: int
    completed_count: int
    failed_count: int = 0
