"""Document generation, editing and version history router."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.document import DocumentType
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.domain_errors import http_error, unwrap
from routers.rate_limit import rate_limit
from services.credits import CreditLedger
from services.document_generator import DocumentGenerator, get_document_generator
from services.documents import DocumentService, serialize_document
from services.errors import ValidationError
from services.stores import UserCreditStore

router = APIRouter()


class GenerateDocumentRequest(BaseModel):
    idea_id: str
    document_type: str
    user_id: Optional[str] = None


class UpdateDocumentRequest(BaseModel):
    content: Any
    document_id: Optional[str] = None


class RegenerateDocumentRequest(BaseModel):
    document_id: Optional[str] = None


class RestoreVersionRequest(BaseModel):
    version: int = Field(ge=1)


def _document_type(value: str) -> DocumentType:
    try:
        return DocumentType.from_value(value)
    except ValueError as exc:
        raise http_error(ValidationError(str(exc), {"document_type": value})) from exc


async def _service(db: AsyncSession, generator: DocumentGenerator, auth: AuthContext) -> DocumentService:
    await UserCreditStore(db).ensure_user(auth.user_id, auth.email)
    return DocumentService(db, CreditLedger.for_session(db), generator)


@router.post("/generate", status_code=201)
async def generate_document(
    request: GenerateDocumentRequest,
    _rate_limit: None = Depends(rate_limit("documents_generate", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: DocumentGenerator = Depends(get_document_generator),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    doc_type = _document_type(request.document_type)
    service = await _service(db, generator, auth)
    result = await service.generate(request.idea_id, scoped_user_id, doc_type)
    return serialize_document(unwrap(result))


@router.get("/idea/{idea_id}")
async def list_idea_documents(
    idea_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: DocumentGenerator = Depends(get_document_generator),
):
    service = DocumentService(db, CreditLedger.for_session(db), generator)
    documents = unwrap(await service.list_documents(idea_id, auth.user_id))
    return {"documents": [serialize_document(doc) for doc in documents], "count": len(documents)}


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: DocumentGenerator = Depends(get_document_generator),
):
    service = DocumentService(db, CreditLedger.for_session(db), generator)
    return serialize_document(unwrap(await service.get_document(document_id, auth.user_id)))


@router.get("/{document_id}/export")
async def export_document(
    document_id: str,
    export_format: str = Query(default="markdown", alias="format"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: DocumentGenerator = Depends(get_document_generator),
):
    service = DocumentService(db, CreditLedger.for_session(db), generator)
    export = unwrap(await service.export_document(document_id, auth.user_id, export_format))
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{export.filename}"',
            "X-Document-Version": str(export.metadata["version"]),
        },
    )


@router.put("/{idea_id}/{document_type}")
async def update_document(
    idea_id: str,
    document_type: str,
    request: UpdateDocumentRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: DocumentGenerator = Depends(get_document_generator),
):
    doc_type = _document_type(document_type)
    service = DocumentService(db, CreditLedger.for_session(db), generator)
    result = await service.update(idea_id, auth.user_id, doc_type, request.content, document_id=request.document_id)
    return serialize_document(unwrap(result))


@router.post("/{idea_id}/{document_type}/regenerate")
async def regenerate_document(
    idea_id: str,
    document_type: str,
    request: Optional[RegenerateDocumentRequest] = None,
    _rate_limit: None = Depends(rate_limit("documents_regenerate", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: DocumentGenerator = Depends(get_document_generator),
):
    doc_type = _document_type(document_type)
    service = await _service(db, generator, auth)
    result = await service.regenerate(
        idea_id,
        auth.user_id,
        doc_type,
        document_id=request.document_id if request else None,
    )
    return serialize_document(unwrap(result))


@router.get("/{idea_id}/{document_type}/versions")
async def list_versions(
    idea_id: str,
    document_type: str,
    limit: Optional[int] = Query(default=None, ge=1),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: DocumentGenerator = Depends(get_document_generator),
):
    doc_type = _document_type(document_type)
    service = DocumentService(db, CreditLedger.for_session(db), generator)
    cap = min(limit or settings.DOCUMENT_VERSION_HISTORY_LIMIT, settings.DOCUMENT_VERSION_HISTORY_LIMIT)
    versions = unwrap(await service.get_versions(idea_id, auth.user_id, doc_type, limit=cap))
    return {
        "document_type": doc_type.value,
        "versions": [serialize_document(doc) for doc in versions],
        "count": len(versions),
    }


@router.post("/{idea_id}/{document_type}/restore")
async def restore_version(
    idea_id: str,
    document_type: str,
    request: RestoreVersionRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    generator: DocumentGenerator = Depends(get_document_generator),
):
    doc_type = _document_type(document_type)
    service = DocumentService(db, CreditLedger.for_session(db), generator)
    result = await service.restore_version(idea_id, auth.user_id, doc_type, request.version)
    return serialize_document(unwrap(result))
