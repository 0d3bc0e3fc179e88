"""Kiro setup export router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.domain_errors import http_error
from routers.rate_limit import rate_limit
from services.errors import DomainError
from services.export import DocumentValidator
from services.export.types import ExportFormat
from services.kiro_export import EXPORT_VALIDATION_FAILED, KiroExportService, load_export_documents
from services.stores import IdeaStore

router = APIRouter()


class KiroExportRequest(BaseModel):
    format: ExportFormat = "zip"
    idea_name: Optional[str] = None


def get_export_service() -> KiroExportService:
    return KiroExportService()


@router.get("/{idea_id}/validate")
async def validate_export(
    idea_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    service: KiroExportService = Depends(get_export_service),
):
    try:
        documents = await load_export_documents(db, idea_id, auth.user_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    result = service.validate_for_export(documents)
    return {
        **result.to_dict(),
        "message": DocumentValidator.get_validation_message(result),
    }


@router.post("/{idea_id}/kiro")
async def export_kiro_setup(
    idea_id: str,
    request: Optional[KiroExportRequest] = None,
    _rate_limit: None = Depends(rate_limit("export_kiro", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    service: KiroExportService = Depends(get_export_service),
):
    options = request or KiroExportRequest()
    try:
        documents = await load_export_documents(db, idea_id, auth.user_id)
    except DomainError as exc:
        raise http_error(exc) from exc

    idea_name = options.idea_name
    if not idea_name:
        idea = await IdeaStore(db).find_by_id(idea_id)
        idea_name = idea.display_name if idea else "Untitled Idea"

    outcome = service.export(idea_id, idea_name, options.format, documents)
    if not outcome.success:
        status_code = 422 if outcome.error_code == EXPORT_VALIDATION_FAILED else 500
        raise HTTPException(status_code=status_code, detail=outcome.error_detail())

    package = outcome.package
    if options.format == "zip":
        return Response(
            content=package.archive,
            media_type="application/zip",
            headers={
                "Content-Disposition": f'attachment; filename="{package.filename}"',
                "X-Export-File-Count": str(outcome.file_count),
                "X-Export-Size": str(outcome.package_size),
            },
        )
    return {
        "filename": package.filename,
        "file_count": outcome.file_count,
        "size_bytes": outcome.package_size,
        "files": [{"name": item.name, "path": item.path, "content": item.content} for item in package.files or []],
        "warnings": outcome.warnings,
    }
