"""Kiro setup export: validate source documents, generate the file tree, package it."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models.document import DocumentType
from services.errors import IdeaNotFoundError, UnauthorizedAccessError
from services.export import (
    DocumentInput,
    DocumentValidationResult,
    DocumentValidator,
    ExportPackager,
    FileGenerator,
    GeneratedFiles,
    PackageResult,
    SourceDocuments,
)
from services.export.types import ExportDocumentKey, ExportFormat
from services.stores import DocumentVersionStore, IdeaStore

logger = logging.getLogger(__name__)

EXPORT_VALIDATION_FAILED = "EXPORT_VALIDATION_FAILED"
EXPORT_GENERATION_FAILED = "EXPORT_GENERATION_FAILED"
EXPORT_PACKAGING_FAILED = "EXPORT_PACKAGING_FAILED"

EXPORT_SOURCE_TYPES: Dict[ExportDocumentKey, DocumentType] = {
    "prd": DocumentType.PRD,
    "design": DocumentType.TECHNICAL_DESIGN,
    "techArchitecture": DocumentType.ARCHITECTURE,
    "roadmap": DocumentType.ROADMAP,
}


@dataclass
class ExportOutcome:
    success: bool
    package: Optional[PackageResult] = None
    validation: Optional[DocumentValidationResult] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    stage: Optional[str] = None
    file_count: int = 0
    package_size: int = 0
    duration_ms: int = 0
    warnings: List[str] = field(default_factory=list)

    def error_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.error_message,
            "stage": self.stage,
        }
        if self.validation is not None:
            detail["details"] = self.validation.to_dict()
        return detail


class KiroExportService:
    """Stateless export orchestration; never touches the ledger or the document store."""

    def __init__(
        self,
        validator: Optional[DocumentValidator] = None,
        generator: Optional[FileGenerator] = None,
        packager: Optional[ExportPackager] = None,
    ):
        self.validator = validator or DocumentValidator()
        self.generator = generator or FileGenerator()
        self.packager = packager or ExportPackager()

    def validate_for_export(self, documents: Mapping[str, Optional[DocumentInput]]) -> DocumentValidationResult:
        return self.validator.validate(documents)

    def export(
        self,
        idea_id: str,
        idea_name: str,
        export_format: ExportFormat,
        documents: Mapping[str, Optional[DocumentInput]],
        now: Optional[datetime] = None,
    ) -> ExportOutcome:
        started = time.perf_counter()

        validation = self.validate_for_export(documents)
        if not validation.is_valid:
            message = DocumentValidator.get_validation_message(validation)
            logger.warning("Export validation failed for idea %s: %s", idea_id, message)
            return ExportOutcome(
                success=False,
                validation=validation,
                error_code=EXPORT_VALIDATION_FAILED,
                error_message=message,
                stage="validation",
                duration_ms=_elapsed_ms(started),
            )

        sources = SourceDocuments(
            prd=documents["prd"].content or "",
            design=documents["design"].content or "",
            tech_architecture=documents["techArchitecture"].content or "",
            roadmap=documents["roadmap"].content or "",
        )
        try:
            files = self.generator.generate(idea_name, sources, now=now)
        except Exception as exc:
            logger.exception("Export file generation failed for idea %s", idea_id)
            return ExportOutcome(
                success=False,
                validation=validation,
                error_code=EXPORT_GENERATION_FAILED,
                error_message=str(exc) or "Failed to generate export files",
                stage="generation",
                duration_ms=_elapsed_ms(started),
            )

        warnings = self._reference_warnings(files) + self._structure_warnings(files)
        package_size = self.packager.calculate_package_size(files)
        package = self.packager.package(files, idea_name, export_format, timestamp=now)
        file_count = self.generator.count_files(files)
        duration_ms = _elapsed_ms(started)
        if not package.success:
            logger.warning("Export packaging failed for idea %s: %s", idea_id, package.error)
            return ExportOutcome(
                success=False,
                package=package,
                validation=validation,
                error_code=EXPORT_PACKAGING_FAILED,
                error_message=package.error or "Failed to package export files",
                stage="packaging",
                file_count=file_count,
                package_size=package_size,
                duration_ms=duration_ms,
                warnings=warnings,
            )

        logger.info(
            "Kiro export completed idea=%s format=%s files=%s bytes=%s duration_ms=%s",
            idea_id,
            export_format,
            file_count,
            package_size,
            duration_ms,
        )
        return ExportOutcome(
            success=True,
            package=package,
            validation=validation,
            file_count=file_count,
            package_size=package_size,
            duration_ms=duration_ms,
            warnings=warnings,
        )

    def _structure_warnings(self, files: GeneratedFiles) -> List[str]:
        complete, issues = self.packager.validate_structure(files)
        if not complete:
            logger.info("Export tree is incomplete: %s", "; ".join(issues))
        return issues

    def _reference_warnings(self, files: GeneratedFiles) -> List[str]:
        references = self.generator.extract_file_references(files)
        valid, invalid = self.generator.validate_file_references(files, references)
        if valid:
            return []
        logger.warning("Generated files reference missing paths: %s", ", ".join(invalid))
        return [f"Unresolved file reference: {path}" for path in invalid]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


async def load_export_documents(db: AsyncSession, idea_id: str, user_id: str) -> Dict[str, DocumentInput]:
    """Latest markdown for each export source, keyed by export document name."""
    idea = await IdeaStore(db).find_by_id(idea_id)
    if idea is None:
        raise IdeaNotFoundError(idea_id)
    if not idea.belongs_to_user(user_id):
        raise UnauthorizedAccessError(user_id, idea_id)

    store = DocumentVersionStore(db)
    documents: Dict[str, DocumentInput] = {}
    for key, doc_type in EXPORT_SOURCE_TYPES.items():
        latest = await store.find_latest_version(idea_id, doc_type)
        if latest is None:
            documents[key] = DocumentInput(content=None, exists=False)
        else:
            documents[key] = DocumentInput(content=latest.markdown_text() or "", exists=True)
    return documents
