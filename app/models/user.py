from sqlalchemy import Column, String, Boolean, Enum
from app.models.base import BaseModel
from app.core.enums import UserKind, StaffRole, ClientCategory


class User(BaseModel):
    """Shared identity for staff and clients; `kind` selects the variant."""
    __tablename__ = "users"

    kind = Column(Enum(UserKind), nullable=False)
    username = Column(String(120), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)

    __mapper_args__ = {"polymorphic_on": kind}

    @property
    def is_staff(self) -> bool:
        return self.kind == UserKind.STAFF

    @property
    def is_client(self) -> bool:
        return self.kind == UserKind.CLIENT


class StaffUser(User):
    staff_role = Column(Enum(StaffRole), nullable=True, default=StaffRole.COORDINATOR)

    __mapper_args__ = {"polymorphic_identity": UserKind.STAFF}


class ClientUser(User):
    client_category = Column(Enum(ClientCategory), nullable=True, default=ClientCategory.ONE_TIME)
    email = Column(String(255), nullable=True, unique=True, index=True)
    phone = Column(String(40), nullable=True)
    company_name = Column(String(255), nullable=True)

    __mapper_args__ = {"polymorphic_identity": UserKind.CLIENT}

    @property
    def is_corporate(self) -> bool:
        return self.client_category == ClientCategory.CORPORATE
