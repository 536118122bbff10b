from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime, time
from decimal import Decimal
from app.core.enums import ApplicationStatus, DeliveryType
from app.schemas.pricing import LineItem, MAX_AMOUNT
from app.schemas.order import OrderOut


class ApplicationCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: Optional[str] = Field(None, max_length=40)
    message: Optional[str] = Field(None, max_length=1000)
    cart_items: List[LineItem] = Field(default_factory=list)
    event_date: Optional[date] = None
    event_time: Optional[time] = None
    event_address: Optional[str] = Field(None, max_length=500)


class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus
    coordinator_comment: Optional[str] = None


class ApplicationConvert(BaseModel):
    """Coordinator overrides applied when turning an application into an order."""
    client_id: Optional[int] = None
    menu_items: Optional[List[LineItem]] = None
    discount_fixed: Decimal = Field(Decimal("0"), ge=0, le=MAX_AMOUNT)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    delivery_cost: Decimal = Field(Decimal("0"), ge=0, le=MAX_AMOUNT)
    delivery_date: Optional[date] = None
    delivery_time: Optional[time] = None
    delivery_type: DeliveryType = DeliveryType.DELIVERY
    delivery_address: Optional[str] = Field(None, max_length=500)
    comment: Optional[str] = None
    special_instructions: Optional[str] = None


class ApplicationOut(BaseModel):
    id: int
    first_name: str
    last_name: Optional[str] = None
    email: str
    phone: Optional[str] = None
    message: Optional[str] = None
    cart_items: List[LineItem]
    event_date: Optional[date] = None
    event_time: Optional[time] = None
    event_address: Optional[str] = None
    status: ApplicationStatus
    client_id: Optional[int] = None
    coordinator_id: Optional[int] = None
    coordinator_comment: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ConversionOut(BaseModel):
    order: OrderOut
    application: ApplicationOut
    client_created: bool = False
