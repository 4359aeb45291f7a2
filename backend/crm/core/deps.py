from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.db import get_session
from crm.core.logging import user_code_ctx_var
from crm.core.security import decode_access_token
from crm.models.user import User


async def get_optional_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> Optional[User]:
    """Resolve the bearer token to an active user, or ``None`` when absent/invalid."""

    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        return None
    token = auth.split(" ", 1)[1]
    try:
        user_code = decode_access_token(token)
    except JWTError:
        return None

    user = (
        await session.execute(select(User).where(User.user_code == user_code))
    ).scalar_one_or_none()
    if not user or user.active_flag != "Y":
        return None
    request.state.user_code = user.user_code
    user_code_ctx_var.set(user.user_code)
    session.expunge(user)
    return user


async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    return user
