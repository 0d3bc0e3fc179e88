"""Document generation, editing and version history for ideas."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models.document import Document, DocumentType, content_markdown
from models.idea import Idea
from services.credits import CreditLedger, credit_cost
from services.document_generator import DocumentGenerator, GenerationContext
from services.errors import (
    DocumentAlreadyExistsError,
    DocumentNotFoundError,
    DomainError,
    IdeaNotFoundError,
    OperationResult,
    UnauthorizedAccessError,
    ValidationError,
)
from services.stores import DocumentVersionStore, IdeaStore

logger = logging.getLogger(__name__)

EXPORT_MEDIA_TYPES = {"markdown": "text/markdown"}
EXPORT_EXTENSIONS = {"markdown": "md"}


@dataclass
class DocumentExport:
    content: str
    filename: str
    media_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def is_blank_content(content: Any) -> bool:
    """None, whitespace, empty containers and `{"markdown": ""}` all count as no content."""
    if content is None:
        return True
    if isinstance(content, dict) and "markdown" in content:
        return not str(content.get("markdown") or "").strip()
    if isinstance(content, str):
        return not content.strip()
    if isinstance(content, (dict, list)):
        return not content
    return False


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def build_generation_context(idea_text: str, documents: Iterable[Document]) -> GenerationContext:
    """Collect analysis results and the latest sibling documents as AI context.

    Each document type contributes its own latest version, independent of how
    many versions the other types have.
    """
    latest: Dict[str, Document] = {}
    for document in documents:
        current = latest.get(document.document_type)
        if current is None or int(document.version) > int(current.version):
            latest[document.document_type] = document

    context = GenerationContext(idea_text=idea_text)

    analysis = next(
        (doc for key, doc in latest.items() if DocumentType.from_value(key).is_analysis),
        None,
    )
    if analysis is not None and isinstance(analysis.content, dict):
        content = analysis.content
        score = _number(content.get("score"))
        if score is None:
            score = _number(content.get("finalScore"))
        if score is not None:
            context.analysis_scores = {"overall": score}
        feedback = content.get("feedback")
        if not isinstance(feedback, str):
            feedback = content.get("detailedSummary")
        if isinstance(feedback, str):
            context.analysis_feedback = feedback

    prd = latest.get(DocumentType.PRD.value)
    if prd is not None:
        context.existing_prd = content_markdown(prd.content)
    technical_design = latest.get(DocumentType.TECHNICAL_DESIGN.value)
    if technical_design is not None:
        context.existing_technical_design = content_markdown(technical_design.content)
    architecture = latest.get(DocumentType.ARCHITECTURE.value)
    if architecture is not None:
        context.existing_architecture = content_markdown(architecture.content)
    return context


class DocumentService:
    """Coordinates ownership checks, credit charges, AI generation and versioned saves."""

    def __init__(self, db: AsyncSession, ledger: CreditLedger, generator: DocumentGenerator):
        self.ideas = IdeaStore(db)
        self.documents = DocumentVersionStore(db)
        self.ledger = ledger
        self.generator = generator

    async def _load_owned_idea(self, idea_id: str, user_id: str) -> Idea:
        idea = await self.ideas.find_by_id(idea_id)
        if idea is None:
            raise IdeaNotFoundError(idea_id)
        if not idea.belongs_to_user(user_id):
            raise UnauthorizedAccessError(user_id, idea_id)
        return idea

    async def _refund(
        self,
        user_id: str,
        amount: int,
        error: Exception,
        description: str,
        metadata: Dict[str, Any],
    ) -> None:
        reason = str(error) or error.__class__.__name__
        logger.warning("Refunding %s credits to user %s after failure: %s", amount, user_id, reason)
        try:
            await self.ledger.refund(user_id, amount, reason=reason, description=description, metadata=metadata)
        except Exception as refund_exc:
            logger.warning("Credit refund failed for user %s: %s", user_id, refund_exc)

    @staticmethod
    def _failure(operation: str, exc: Exception) -> OperationResult:
        if not isinstance(exc, DomainError):
            logger.exception("Unexpected error during %s", operation)
        return OperationResult.fail(exc)

    async def generate(self, idea_id: str, user_id: str, document_type) -> OperationResult[Document]:
        doc_type = DocumentType.from_value(document_type)
        logger.info("Starting document generation idea=%s user=%s type=%s", idea_id, user_id, doc_type.value)
        charged = 0
        metadata = {"documentType": doc_type.value, "ideaId": idea_id}
        try:
            idea = await self._load_owned_idea(idea_id, user_id)
            idea_text = idea.idea_text
            if await self.documents.find_latest_version(idea_id, doc_type) is not None:
                raise DocumentAlreadyExistsError(idea_id, doc_type.value)
            siblings = await self.documents.find_by_idea(idea_id)

            charged = await self.ledger.deduct(
                user_id,
                credit_cost(doc_type),
                description=f"Document generation: {doc_type.display_name}",
                metadata=metadata,
            )

            context = build_generation_context(idea_text, siblings)
            logger.info("Generating %s with context %s", doc_type.value, context.summary())
            markdown = await self.generator.generate_document(doc_type, context)

            document = Document(
                idea_id=idea_id,
                user_id=user_id,
                document_type=doc_type.value,
                title=f"{doc_type.display_name} - {datetime.now(timezone.utc).strftime('%Y-%m-%d')}",
                content={"markdown": markdown},
                version=1,
            )
            saved = await self.documents.save(document)
            logger.info("Document generated id=%s type=%s version=%s", saved.id, doc_type.value, saved.version)
            return OperationResult.ok(saved)
        except Exception as exc:
            if charged:
                await self._refund(user_id, charged, exc, "Refund for failed document generation", metadata)
            return self._failure("document generation", exc)

    async def update(
        self,
        idea_id: str,
        user_id: str,
        document_type,
        new_content: Any,
        document_id: Optional[str] = None,
    ) -> OperationResult[Document]:
        doc_type = DocumentType.from_value(document_type)
        try:
            if is_blank_content(new_content):
                raise ValidationError("Document content must not be empty.", {"document_type": doc_type.value})
            latest = await self.documents.find_latest_version(idea_id, doc_type)
            if latest is None:
                raise DocumentNotFoundError(f"{idea_id}/{doc_type.value}")
            if not latest.belongs_to_user(user_id):
                raise UnauthorizedAccessError(user_id, latest.id)
            if document_id and document_id != latest.id:
                raise DocumentNotFoundError(document_id)

            saved = await self.documents.save(latest.update_content(new_content))
            logger.info("Document updated id=%s type=%s version=%s", saved.id, doc_type.value, saved.version)
            return OperationResult.ok(saved)
        except Exception as exc:
            return self._failure("document update", exc)

    async def regenerate(
        self,
        idea_id: str,
        user_id: str,
        document_type,
        document_id: Optional[str] = None,
    ) -> OperationResult[Document]:
        doc_type = DocumentType.from_value(document_type)
        logger.info("Starting document regeneration idea=%s user=%s type=%s", idea_id, user_id, doc_type.value)
        charged = 0
        metadata: Dict[str, Any] = {"documentType": doc_type.value, "ideaId": idea_id}
        try:
            idea = await self._load_owned_idea(idea_id, user_id)
            idea_text = idea.idea_text
            latest = await self.documents.find_latest_version(idea_id, doc_type)
            if latest is None:
                raise DocumentNotFoundError(f"{idea_id}/{doc_type.value}")
            if not latest.belongs_to_user(user_id):
                raise UnauthorizedAccessError(user_id, latest.id)
            if document_id and document_id != latest.id:
                raise DocumentNotFoundError(document_id)
            metadata["previousVersion"] = int(latest.version)
            siblings = await self.documents.find_by_idea(idea_id)

            charged = await self.ledger.deduct(
                user_id,
                credit_cost(doc_type),
                description=f"Document regeneration: {doc_type.display_name}",
                metadata=metadata,
            )

            context = build_generation_context(idea_text, siblings)
            markdown = await self.generator.generate_document(doc_type, context)
            saved = await self.documents.save(latest.update_content({"markdown": markdown}))
            logger.info("Document regenerated id=%s type=%s version=%s", saved.id, doc_type.value, saved.version)
            return OperationResult.ok(saved)
        except Exception as exc:
            if charged:
                await self._refund(user_id, charged, exc, "Refund for failed document regeneration", metadata)
            return self._failure("document regeneration", exc)

    async def restore_version(
        self,
        idea_id: str,
        user_id: str,
        document_type,
        target_version: int,
    ) -> OperationResult[Document]:
        doc_type = DocumentType.from_value(document_type)
        try:
            await self._load_owned_idea(idea_id, user_id)
            versions = await self.documents.find_all_versions(idea_id, doc_type)
            if not versions:
                raise DocumentNotFoundError(f"{idea_id}/{doc_type.value}")
            latest = versions[0]
            if not latest.belongs_to_user(user_id):
                raise UnauthorizedAccessError(user_id, latest.id)
            target = next((doc for doc in versions if int(doc.version) == int(target_version)), None)
            if target is None:
                raise DocumentNotFoundError(f"{idea_id}/{doc_type.value}@v{target_version}")

            restored = latest.update_content(copy.deepcopy(target.content))
            saved = await self.documents.save(restored)
            logger.info(
                "Restored %s v%s as v%s for idea=%s", doc_type.value, target_version, saved.version, idea_id
            )
            return OperationResult.ok(saved)
        except Exception as exc:
            return self._failure("version restore", exc)

    async def get_versions(
        self,
        idea_id: str,
        user_id: str,
        document_type,
        limit: Optional[int] = None,
    ) -> OperationResult[List[Document]]:
        doc_type = DocumentType.from_value(document_type)
        try:
            await self._load_owned_idea(idea_id, user_id)
            versions = await self.documents.find_all_versions(idea_id, doc_type)
            if limit:
                versions = versions[: max(int(limit), 1)]
            return OperationResult.ok(versions)
        except Exception as exc:
            return self._failure("version listing", exc)

    async def get_document(self, document_id: str, user_id: str) -> OperationResult[Document]:
        try:
            document = await self.documents.find_by_id(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            if not document.belongs_to_user(user_id):
                raise UnauthorizedAccessError(user_id, document_id)
            return OperationResult.ok(document)
        except Exception as exc:
            return self._failure("document lookup", exc)

    async def list_documents(self, idea_id: str, user_id: str) -> OperationResult[List[Document]]:
        try:
            await self._load_owned_idea(idea_id, user_id)
            documents = await self.documents.find_by_idea(idea_id)
            documents.sort(key=lambda doc: doc.document_type)
            return OperationResult.ok(documents)
        except Exception as exc:
            return self._failure("document listing", exc)

    async def export_document(
        self,
        document_id: str,
        user_id: str,
        export_format: str = "markdown",
        now: Optional[datetime] = None,
    ) -> OperationResult[DocumentExport]:
        """Render one stored version as a downloadable file with a metadata header. Free of charge."""
        export_format = (export_format or "").strip().lower()
        logger.info("Starting document export id=%s format=%s user=%s", document_id, export_format, user_id)
        try:
            if export_format not in EXPORT_MEDIA_TYPES:
                raise ValidationError(
                    f"Unsupported export format: {export_format}",
                    {"format": export_format, "supported": sorted(EXPORT_MEDIA_TYPES)},
                )
            document = await self.documents.find_by_id(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            if not document.belongs_to_user(user_id):
                raise UnauthorizedAccessError(user_id, document_id)

            exported_at = now or datetime.now(timezone.utc)
            metadata = export_metadata(document, exported_at)
            export = DocumentExport(
                content=f"{export_header(metadata)}\n\n{export_body(document.content)}",
                filename=export_filename(document, exported_at, EXPORT_EXTENSIONS[export_format]),
                media_type=EXPORT_MEDIA_TYPES[export_format],
                metadata=metadata,
            )
            logger.info("Document exported id=%s filename=%s", document_id, export.filename)
            return OperationResult.ok(export)
        except Exception as exc:
            return self._failure("document export", exc)


def serialize_document(document: Document) -> Dict[str, Any]:
    return {
        "id": document.id,
        "idea_id": document.idea_id,
        "user_id": document.user_id,
        "document_type": document.document_type,
        "title": document.title,
        "content": document.content,
        "version": document.version,
        "created_at": document.created_at.isoformat() if document.created_at else None,
    }


def export_metadata(document: Document, exported_at: datetime) -> Dict[str, Any]:
    display_name = DocumentType.from_value(document.document_type).display_name
    return {
        "title": document.title or display_name,
        "version": int(document.version),
        "exportDate": exported_at.isoformat(),
        "documentType": display_name,
    }


def export_header(metadata: Dict[str, Any]) -> str:
    return "\n".join(
        [
            "---",
            f"title: {metadata['title']}",
            f"type: {metadata['documentType']}",
            f"version: {metadata['version']}",
            f"exported: {metadata['exportDate']}",
            "---",
        ]
    )


def export_body(content: Any) -> str:
    """Stored markdown, or pretty JSON for structured payloads without a markdown field."""
    markdown = content_markdown(content)
    if markdown is not None:
        return markdown
    return json.dumps(content, indent=2, ensure_ascii=False, default=str)


def export_filename(document: Document, exported_at: datetime, extension: str) -> str:
    stem = re.sub(r"[^a-z0-9]", "_", (document.title or document.document_type).lower())
    return f"{stem}_v{int(document.version)}_{exported_at.strftime('%Y-%m-%d')}.{extension}"
