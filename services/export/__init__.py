"""Kiro setup export pipeline: parse, extract, template, generate, package."""

from services.export.extractor import ContentExtractor
from services.export.generator import FileGenerator
from services.export.packager import ExportPackager, sanitize_idea_name
from services.export.parser import DocumentParser
from services.export.roadmap import RoadmapParser
from services.export.templates import TemplateEngine
from services.export.types import (
    ExportedFile,
    GeneratedFiles,
    PackageResult,
    ParsedDocument,
    ParsedRoadmap,
    RoadmapItem,
    SourceDocuments,
)
from services.export.validator import DocumentInput, DocumentValidationResult, DocumentValidator

__all__ = [
    "ContentExtractor",
    "DocumentInput",
    "DocumentParser",
    "DocumentValidationResult",
    "DocumentValidator",
    "ExportPackager",
    "ExportedFile",
    "FileGenerator",
    "GeneratedFiles",
    "PackageResult",
    "ParsedDocument",
    "ParsedRoadmap",
    "RoadmapItem",
    "RoadmapParser",
    "SourceDocuments",
    "TemplateEngine",
    "sanitize_idea_name",
]
