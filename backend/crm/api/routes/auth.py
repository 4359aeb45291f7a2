from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.audit import client_addr, log_audit
from crm.core.config import settings
from crm.core.db import get_session
from crm.core.deps import get_optional_user
from crm.core.logging import user_code_ctx_var
from crm.core.security import create_access_token, verify_password_async
from crm.models.user import User
from crm.schemas.auth import CurrentUserOut, LoginRequest, LoginResponse, UserOut

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    user = (
        await session.execute(select(User).where(User.user_name == payload.username))
    ).scalar_one_or_none()

    if (
        not user
        or user.active_flag != "Y"
        or not await verify_password_async(payload.password, user.password_hash)
    ):
        if user:
            await log_audit(
                session,
                user.user_code,
                "auth",
                None,
                "LOGIN_FAILED",
                details={"reason": "invalid_credentials"},
                remote_addr=client_addr(request),
            )
            await session.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials"
        )

    await session.execute(
        update(User)
        .where(User.user_code == user.user_code)
        .values(last_login_at=datetime.now())
    )
    request.state.user_code = user.user_code
    user_code_ctx_var.set(user.user_code)

    await log_audit(
        session,
        user.user_code,
        "auth",
        None,
        "LOGIN",
        details=None,
        remote_addr=client_addr(request),
    )
    await session.commit()
    return LoginResponse(
        access_token=create_access_token(user.user_code),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user_code=user.user_code,
        display_name=user.display_name,
    )


@router.get("/current_user", response_model=CurrentUserOut)
async def current_user(user: Optional[User] = Depends(get_optional_user)) -> CurrentUserOut:
    """Report who the bearer token belongs to; never fails for anonymous callers."""

    if user is None:
        return CurrentUserOut(is_authenticated=False, user=None)
    return CurrentUserOut(is_authenticated=True, user=UserOut.model_validate(user))


@router.get("/logout")
async def logout(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
):
    # Access tokens are stateless; the client discards its token.
    if user is not None:
        await log_audit(
            None,
            user.user_code,
            "auth",
            None,
            "LOGOUT",
            details=None,
            remote_addr=client_addr(request),
            independent_txn=True,
        )
    return {"success": True}
