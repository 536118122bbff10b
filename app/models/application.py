from sqlalchemy import Column, String, Date, Time, DateTime, Text, JSON, ForeignKey, Enum
from sqlalchemy.orm import relationship
from app.models.base import BaseModel
from app.models.user import ClientUser, StaffUser
from app.core.enums import ApplicationStatus


class Application(BaseModel):
    __tablename__ = "applications"

    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(40), nullable=True)
    message = Column(Text, nullable=True)

    cart_items = Column(JSON, nullable=False, default=list)
    event_date = Column(Date, nullable=True)
    event_time = Column(Time, nullable=True)
    event_address = Column(String(500), nullable=True)

    status = Column(Enum(ApplicationStatus), nullable=False, default=ApplicationStatus.NEW, index=True)
    client_id = Column(ForeignKey("users.id"), nullable=True)
    coordinator_id = Column(ForeignKey("users.id"), nullable=True)
    coordinator_comment = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    client = relationship(ClientUser, foreign_keys=[client_id])
    coordinator = relationship(StaffUser, foreign_keys=[coordinator_id])
