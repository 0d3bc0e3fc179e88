"""Idea model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Idea(Base):
    """User-submitted startup or hackathon concept that owns documents."""

    __tablename__ = "ideas"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    idea_text = Column(Text, nullable=False)
    source = Column(String, nullable=False, default="manual")
    project_status = Column(String, nullable=False, default="idea")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="ideas")
    documents = relationship("Document", back_populates="idea", cascade="all, delete-orphan")

    def belongs_to_user(self, user_id: str) -> bool:
        return bool(user_id) and self.user_id == user_id

    @property
    def display_name(self) -> str:
        """First line of the idea text, trimmed for use in titles and filenames."""
        first_line = (self.idea_text or "").strip().splitlines()[0] if (self.idea_text or "").strip() else ""
        return first_line[:80].strip() or "Untitled Idea"
