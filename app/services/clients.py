"""Client registry: lookup by email and creation with a temporary credential."""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.enums import ClientCategory
from app.core.errors import DomainStateError, NotFoundError, ValidationError
from app.core.optimistic_lock import flush_or_raise
from app.core.security import generate_temporary_password, hash_password
from app.models.user import ClientUser, User

logger = logging.getLogger(__name__)

EMAIL_TAKEN = "A user with this email already exists"


@dataclass
class ResolvedClient:
    client: ClientUser
    created: bool = False
    temporary_password: Optional[str] = None


async def get_client(db: AsyncSession, client_id: int) -> ClientUser:
    res = await db.execute(select(ClientUser).where(ClientUser.id == client_id))
    client = res.scalars().first()
    if client is None:
        raise NotFoundError("Client", client_id)
    return client


async def find_client_by_email(db: AsyncSession, email: str) -> Optional[ClientUser]:
    res = await db.execute(select(ClientUser).where(ClientUser.email == email.strip().lower()))
    return res.scalars().first()


async def create_client_with_temporary_credential(
    db: AsyncSession,
    *,
    email: str,
    first_name: str = "",
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
    category: ClientCategory = ClientCategory.ONE_TIME,
) -> ResolvedClient:
    """
    Add a new client to the session (flushed, not committed) with a random password.
    The email doubles as the login name, so it must not be taken by any user, staff included.
    """
    normalized = email.strip().lower()
    taken = await db.execute(select(User.id).where(User.username == normalized))
    if taken.scalars().first() is not None:
        raise DomainStateError(EMAIL_TAKEN, details={"email": normalized})

    password = generate_temporary_password()
    name = " ".join(part for part in (first_name, last_name) if part).strip()
    client = ClientUser(
        username=normalized,
        email=normalized,
        name=name or normalized,
        phone=phone,
        client_category=category,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.add(client)
    await flush_or_raise(db, "create_client", EMAIL_TAKEN)
    logger.info(f"Created client {client.id} for {normalized} with a temporary credential")
    return ResolvedClient(client=client, created=True, temporary_password=password)


async def find_or_create_client(
    db: AsyncSession,
    *,
    email: Optional[str],
    first_name: str = "",
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> ResolvedClient:
    if not email:
        raise ValidationError("Email is required to register a client", details={"field": "email"})

    existing = await find_client_by_email(db, email)
    if existing is not None:
        return ResolvedClient(client=existing)

    return await create_client_with_temporary_credential(
        db, email=email, first_name=first_name, last_name=last_name, phone=phone,
    )
