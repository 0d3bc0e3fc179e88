"""Export readiness checks for the four source documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional


REQUIRED_DOCUMENTS = ("prd", "design", "techArchitecture", "roadmap")

DISPLAY_NAMES: Dict[str, str] = {
    "prd": "PRD",
    "design": "Design Document",
    "techArchitecture": "Tech Architecture",
    "roadmap": "Roadmap",
}


@dataclass(frozen=True)
class DocumentInput:
    content: Optional[str]
    exists: bool


@dataclass
class DocumentValidationResult:
    is_valid: bool
    missing_documents: List[str] = field(default_factory=list)
    empty_documents: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "missing_documents": list(self.missing_documents),
            "empty_documents": list(self.empty_documents),
        }


class DocumentValidator:
    """A document that exists but holds only whitespace is reported as empty, not missing."""

    def validate(self, documents: Mapping[str, Optional[DocumentInput]]) -> DocumentValidationResult:
        missing: List[str] = []
        empty: List[str] = []
        for key in REQUIRED_DOCUMENTS:
            document = documents.get(key)
            if document is None or not document.exists:
                missing.append(key)
            elif not (document.content or "").strip():
                empty.append(key)
        return DocumentValidationResult(is_valid=not missing and not empty, missing_documents=missing, empty_documents=empty)

    @staticmethod
    def get_display_name(key: str) -> str:
        return DISPLAY_NAMES.get(key, key)

    @classmethod
    def get_validation_message(cls, result: DocumentValidationResult) -> str:
        if result.is_valid:
            return "All required documents are available"
        issues: List[str] = []
        if result.missing_documents:
            issues.append("Missing: " + ", ".join(cls.get_display_name(key) for key in result.missing_documents))
        if result.empty_documents:
            issues.append("Empty: " + ", ".join(cls.get_display_name(key) for key in result.empty_documents))
        return ". ".join(issues)
