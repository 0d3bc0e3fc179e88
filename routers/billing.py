"""Billing and credits router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.credit_transaction import TransactionType
from models.user import User
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context, require_admin
from routers.rate_limit import rate_limit
from services.credits import CreditLedger
from services.stores import UserCreditStore

router = APIRouter()
logger = logging.getLogger(__name__)


class CreditTopUpRequest(BaseModel):
    user_id: Optional[str] = None
    credits: int = Field(ge=1, le=10000)
    billing_reference: Optional[str] = None


class CreditAdjustmentRequest(BaseModel):
    user_id: str
    credits: int = Field(ge=1, le=100000)
    reason: str = Field(min_length=1, max_length=300)


@router.get("/credits")
async def credits_summary(
    user_id: Optional[str] = Query(default=None),
    limit: int = Query(default=30, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await UserCreditStore(db).ensure_user(scoped_user_id, auth.email)
    return await CreditLedger.for_session(db).summary(scoped_user_id, limit=limit)


@router.get("/credits/check")
async def credits_check(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await UserCreditStore(db).ensure_user(scoped_user_id, auth.email)
    check = await CreditLedger.for_session(db).check_balance(scoped_user_id)
    return check.to_dict()


@router.post("/topup")
async def manual_topup(
    request: CreditTopUpRequest,
    _rate_limit: None = Depends(rate_limit("billing_topup", limit=30, window_seconds=3600)),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Record a purchase settled outside the API; users cannot mint credits for themselves."""
    admin_id = admin.id
    target_user_id = request.user_id or admin_id
    if await UserCreditStore(db).find_by_id(target_user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")

    billing_reference = request.billing_reference or f"manual:{request.credits}"
    balance_after = await CreditLedger.for_session(db).add(
        target_user_id,
        request.credits,
        transaction_type=TransactionType.ADD,
        description=f"Credit top-up: {request.credits} credits",
        metadata={"provider": "manual", "billing_reference": billing_reference, "recorded_by": admin_id},
    )
    logger.info("Admin %s recorded %s purchased credits for user %s", admin_id, request.credits, target_user_id)
    return {
        "ok": True,
        "user_id": target_user_id,
        "credits_added": request.credits,
        "balance_after": balance_after,
    }


@router.post("/adjust")
async def admin_adjustment(
    request: CreditAdjustmentRequest,
    _rate_limit: None = Depends(rate_limit("billing_adjust", limit=60, window_seconds=3600)),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    admin_id = admin.id
    target = await UserCreditStore(db).find_by_id(request.user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")

    balance_after = await CreditLedger.for_session(db).add(
        request.user_id,
        request.credits,
        transaction_type=TransactionType.ADMIN_ADJUSTMENT,
        description=f"Admin adjustment: {request.reason}",
        metadata={"admin_user_id": admin_id, "reason": request.reason},
    )
    logger.info("Admin %s granted %s credits to user %s", admin_id, request.credits, request.user_id)
    return {
        "ok": True,
        "user_id": request.user_id,
        "credits_added": request.credits,
        "balance_after": balance_after,
    }
