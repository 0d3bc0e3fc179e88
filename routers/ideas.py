"""Idea intake and listing router."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.idea import Idea
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.domain_errors import http_error
from routers.rate_limit import rate_limit
from services.errors import DomainError, IdeaNotFoundError, UnauthorizedAccessError, ValidationError
from services.stores import IdeaStore, UserCreditStore

router = APIRouter()


class CreateIdeaRequest(BaseModel):
    user_id: Optional[str] = None
    idea_text: str = Field(min_length=1, max_length=20000)
    source: str = Field(default="manual", max_length=50)


def _serialize_idea(idea: Idea) -> Dict[str, Any]:
    return {
        "id": idea.id,
        "user_id": idea.user_id,
        "idea_text": idea.idea_text,
        "name": idea.display_name,
        "source": idea.source,
        "project_status": idea.project_status,
        "created_at": idea.created_at.isoformat() if idea.created_at else None,
    }


@router.post("", status_code=201)
async def create_idea(
    request: CreateIdeaRequest,
    _rate_limit: None = Depends(rate_limit("ideas_create", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    idea_text = request.idea_text.strip()
    if not idea_text:
        raise http_error(ValidationError("idea_text must not be blank"))
    try:
        await UserCreditStore(db).ensure_user(scoped_user_id, auth.email)
        idea = await IdeaStore(db).create(scoped_user_id, idea_text, source=request.source)
    except DomainError as exc:
        raise http_error(exc) from exc
    return _serialize_idea(idea)


@router.get("")
async def list_ideas(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ideas = await IdeaStore(db).list_for_user(auth.user_id)
    return {"ideas": [_serialize_idea(idea) for idea in ideas], "count": len(ideas)}


@router.get("/{idea_id}")
async def get_idea(
    idea_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    idea = await IdeaStore(db).find_by_id(idea_id)
    if idea is None:
        raise http_error(IdeaNotFoundError(idea_id))
    if not idea.belongs_to_user(auth.user_id):
        raise http_error(UnauthorizedAccessError(auth.user_id, idea_id))
    return _serialize_idea(idea)
