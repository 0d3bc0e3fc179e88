"""Document model and document type catalogue."""

from enum import Enum
from typing import Any, Dict, Optional
import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class DocumentType(str, Enum):
    """Kinds of documents an idea can own."""

    STARTUP_ANALYSIS = "startup_analysis"
    HACKATHON_ANALYSIS = "hackathon_analysis"
    PRD = "prd"
    TECHNICAL_DESIGN = "technical_design"
    ARCHITECTURE = "architecture"
    ROADMAP = "roadmap"

    @classmethod
    def from_value(cls, value: Any) -> "DocumentType":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        allowed = ", ".join(member.value for member in cls)
        raise ValueError(f"Invalid document type '{value}'. Must be one of: {allowed}.")

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def is_analysis(self) -> bool:
        return self in (DocumentType.STARTUP_ANALYSIS, DocumentType.HACKATHON_ANALYSIS)


_DISPLAY_NAMES: Dict[DocumentType, str] = {
    DocumentType.STARTUP_ANALYSIS: "Startup Analysis",
    DocumentType.HACKATHON_ANALYSIS: "Hackathon Analysis",
    DocumentType.PRD: "PRD",
    DocumentType.TECHNICAL_DESIGN: "Technical Design",
    DocumentType.ARCHITECTURE: "Architecture",
    DocumentType.ROADMAP: "Roadmap",
}


class Document(Base):
    """Immutable version of a generated document; edits insert a new row."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("idea_id", "document_type", "version", name="uq_documents_idea_type_version"),
        CheckConstraint("version >= 1", name="ck_documents_version_positive"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    idea_id = Column(String, ForeignKey("ideas.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    document_type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=True)
    content = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    idea = relationship("Idea", back_populates="documents")
    user = relationship("User", back_populates="documents")

    def belongs_to_user(self, user_id: str) -> bool:
        return bool(user_id) and self.user_id == user_id

    def update_content(self, new_content: Any) -> "Document":
        """Return the next version carrying new_content; self is left untouched."""
        return Document(
            id=str(uuid.uuid4()),
            idea_id=self.idea_id,
            user_id=self.user_id,
            document_type=self.document_type,
            title=self.title,
            content=new_content,
            version=int(self.version) + 1,
        )

    def markdown_text(self) -> Optional[str]:
        return content_markdown(self.content)


def content_markdown(content: Any) -> Optional[str]:
    """Plain markdown carried by a document payload, if any."""
    if isinstance(content, str):
        return content
    if isinstance(content, dict) and "markdown" in content:
        value = content.get("markdown")
        return "" if value is None else str(value)
    return None
