"""
Authentication router for session-scoped user profile retrieval.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.credits import CreditLedger
from services.stores import UserCreditStore

router = APIRouter()


class CurrentUserResponse(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None
    credits: int
    tier: str


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Get current user profile with spendable credits and tier."""
    user = await UserCreditStore(db).ensure_user(auth.user_id, auth.email)
    email, name = user.email, user.name
    balance = await CreditLedger.for_session(db).check_balance(auth.user_id)

    return CurrentUserResponse(
        user_id=auth.user_id,
        email=email,
        name=name,
        credits=balance.credits,
        tier=balance.tier,
    )


@router.post("/logout")
async def logout(_auth: AuthContext = Depends(get_auth_context)):
    """Frontend-managed logout acknowledgment endpoint."""
    return {"message": "Logged out successfully"}
