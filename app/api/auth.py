from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.schemas.auth import TokenOut
from app.models.user import User
from app.db.session import get_db
from app.core.security import create_access_token, verify_password
from app.core.audit_log import log_login

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenOut)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_db)):
    res = await db.execute(select(User).where(User.username == form_data.username))
    user = res.scalars().first()
    if not user or not user.is_active or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    user_id, kind = user.id, str(user.kind)
    await log_login(db, user_id, form_data.username)

    token = create_access_token(str(user_id), kind)
    return {"access_token": token, "kind": kind}
