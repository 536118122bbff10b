from decimal import Decimal

from sqlalchemy import (
    Column, String, Integer, Numeric, Date, Time, DateTime, Text, JSON, ForeignKey, Enum, CheckConstraint,
)
from sqlalchemy.orm import relationship
from app.models.base import BaseModel
from app.models.user import ClientUser, StaffUser
from app.models.application import Application
from app.core.enums import OrderStatus, PaymentStatus, DeliveryType

MONEY = Numeric(12, 2)


class Order(BaseModel):
    __tablename__ = "orders"

    client_id = Column(ForeignKey("users.id"), nullable=False, index=True)
    coordinator_id = Column(ForeignKey("users.id"), nullable=True)
    application_id = Column(ForeignKey("applications.id"), nullable=True, unique=True)

    client = relationship(ClientUser, foreign_keys=[client_id], lazy="joined")
    coordinator = relationship(StaffUser, foreign_keys=[coordinator_id])
    application = relationship(Application, foreign_keys=[application_id])

    menu_items = Column(JSON, nullable=False, default=list)
    items_total = Column(MONEY, nullable=False, default=Decimal("0.00"))
    discount_fixed = Column(MONEY, nullable=False, default=Decimal("0.00"))
    discount_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    discount_amount = Column(MONEY, nullable=False, default=Decimal("0.00"))
    delivery_cost = Column(MONEY, nullable=False, default=Decimal("0.00"))
    final_amount = Column(MONEY, nullable=False, default=Decimal("0.00"))

    delivery_date = Column(Date, nullable=True, index=True)
    delivery_time = Column(Time, nullable=True)
    delivery_type = Column(Enum(DeliveryType), nullable=False, default=DeliveryType.DELIVERY)
    delivery_address = Column(String(500), nullable=True)

    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.DRAFT, index=True)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.NONE)
    payment_attempts = Column(Integer, nullable=False, default=0)
    gateway_order_id = Column(String(128), nullable=True, index=True)
    payment_url = Column(String(1024), nullable=True)
    payment_created_at = Column(DateTime(timezone=True), nullable=True)
    payment_completed_at = Column(DateTime(timezone=True), nullable=True)

    comment = Column(Text, nullable=True)
    special_instructions = Column(Text, nullable=True)

    # optimistic lock, bumped by the ORM on every UPDATE
    version_id = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("payment_attempts >= 0 AND payment_attempts <= 3", name="check_payment_attempts_range"),
        CheckConstraint("final_amount >= 0", name="check_final_amount_non_negative"),
        CheckConstraint("discount_amount <= items_total", name="check_discount_within_total"),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, status='{self.status}', payment_status='{self.payment_status}')>"
