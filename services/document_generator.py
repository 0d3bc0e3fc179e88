"""AI document generation with a deterministic offline fallback."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from config import settings
from models.document import DocumentType
from services.errors import GenerationError

logger = logging.getLogger(__name__)

ROLE_CONTEXT = {
    DocumentType.PRD: (
        "You are an expert product manager with 15+ years of experience writing Product Requirements "
        "Documents for successful startups. Your PRDs are clear, actionable and grounded in user needs."
    ),
    DocumentType.TECHNICAL_DESIGN: (
        "You are a senior software engineer who writes technical design documents that turn product "
        "requirements into concrete, buildable plans."
    ),
    DocumentType.ARCHITECTURE: (
        "You are a principal architect who designs pragmatic, scalable systems and documents them for "
        "the engineers who will build them."
    ),
    DocumentType.ROADMAP: (
        "You are a startup advisor and delivery lead who turns product and technical plans into a "
        "phased, dependency-aware MVP roadmap."
    ),
    DocumentType.STARTUP_ANALYSIS: (
        "You are a venture analyst who evaluates startup ideas candidly across market, problem and execution risk."
    ),
    DocumentType.HACKATHON_ANALYSIS: (
        "You are a hackathon judge who evaluates project ideas for originality, feasibility and demo potential."
    ),
}

SECTIONS = {
    DocumentType.PRD: [
        "Vision",
        "Problem Statement",
        "Target Users & Personas",
        "User Stories",
        "Features & Requirements",
        "Value Proposition",
        "Success Metrics",
        "Constraints & Out of Scope",
        "Assumptions & Dependencies",
    ],
    DocumentType.TECHNICAL_DESIGN: [
        "Architecture Overview",
        "Technology Stack",
        "Data Models & Database Schema",
        "API Specifications",
        "Security Considerations",
        "Scalability & Performance",
        "Deployment Strategy",
        "Third-party Integrations",
    ],
    DocumentType.ARCHITECTURE: [
        "Architectural Patterns",
        "Layer Responsibilities",
        "Code Organization",
        "Naming Conventions",
        "Import Patterns",
        "Data Flow",
        "Infrastructure Requirements",
        "Monitoring & Observability",
    ],
    DocumentType.ROADMAP: [
        "Phase 1: Foundation",
        "Phase 2: Core MVP",
        "Phase 3: MVP Complete",
        "Phase 4: Post-MVP",
    ],
    DocumentType.STARTUP_ANALYSIS: ["Summary", "Market", "Risks", "Recommendations"],
    DocumentType.HACKATHON_ANALYSIS: ["Summary", "Originality", "Feasibility", "Recommendations"],
}


@dataclass
class GenerationContext:
    idea_text: str
    analysis_scores: Optional[Dict[str, float]] = None
    analysis_feedback: Optional[str] = None
    existing_prd: Optional[str] = None
    existing_technical_design: Optional[str] = None
    existing_architecture: Optional[str] = None

    def summary(self) -> Dict[str, bool]:
        return {
            "has_analysis": bool(self.analysis_scores or self.analysis_feedback),
            "has_prd": bool(self.existing_prd),
            "has_technical_design": bool(self.existing_technical_design),
            "has_architecture": bool(self.existing_architecture),
        }


def get_openai_client(api_key: str) -> Optional[OpenAI]:
    """Get OpenAI client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return OpenAI(api_key=api_key, timeout=float(settings.OPENAI_TIMEOUT_SECONDS))


def build_prompt(document_type: DocumentType, context: GenerationContext) -> str:
    doc_type = DocumentType.from_value(document_type)
    parts = [
        "=== ROLE CONTEXT ===",
        ROLE_CONTEXT[doc_type],
        "",
        "=== TASK ===",
        f"Generate a {doc_type.display_name} in Markdown for the following idea.",
        "",
        "IDEA:",
        context.idea_text.strip(),
    ]
    if context.analysis_scores:
        parts += ["", "ANALYSIS SCORES:", json.dumps(context.analysis_scores, indent=2)]
    if context.analysis_feedback:
        parts += ["", "ANALYSIS FEEDBACK:", context.analysis_feedback]
    if context.existing_prd and doc_type != DocumentType.PRD:
        parts += ["", "EXISTING PRD:", context.existing_prd]
    if context.existing_technical_design and doc_type in (DocumentType.ARCHITECTURE, DocumentType.ROADMAP):
        parts += ["", "EXISTING TECHNICAL DESIGN:", context.existing_technical_design]
    if context.existing_architecture and doc_type == DocumentType.ROADMAP:
        parts += ["", "EXISTING ARCHITECTURE:", context.existing_architecture]

    parts += ["", "=== OUTPUT FORMAT ===", f"Start with a single H1 title, then use these H2 sections in order:"]
    parts += [f"- {section}" for section in SECTIONS[doc_type]]
    if doc_type == DocumentType.ROADMAP:
        parts += [
            "",
            "Within each phase list the features as H3 headings. For each feature give a one-paragraph description,",
            "a **Goals** bullet list, an **Acceptance Criteria** bullet list and a **Dependencies** bullet list.",
        ]
    parts += [
        "",
        "=== GUIDELINES ===",
        "1. Be specific and concrete; avoid vague language.",
        "2. Stay consistent with any existing documents provided above.",
        "3. Balance ambition with realistic scope for an MVP.",
        "",
        f"Generate the {doc_type.display_name} now:",
    ]
    return "\n".join(parts)


def _idea_title(idea_text: str) -> str:
    lines = [line.strip() for line in (idea_text or "").splitlines() if line.strip()]
    return (lines[0] if lines else "Untitled Idea")[:80]


def deterministic_document(document_type: DocumentType, context: GenerationContext) -> str:
    """Offline markdown with the same section layout the prompts request."""
    doc_type = DocumentType.from_value(document_type)
    title = _idea_title(context.idea_text)
    lines: List[str] = [f"# {doc_type.display_name}: {title}", ""]
    if doc_type == DocumentType.ROADMAP:
        lines += _deterministic_roadmap(title)
        return "\n".join(lines).rstrip() + "\n"

    for section in SECTIONS[doc_type]:
        lines += [f"## {section}", "", f"{section} for {title}: {context.idea_text.strip()[:240]}", ""]
    if context.analysis_feedback:
        lines += ["## Analysis Notes", "", context.analysis_feedback.strip(), ""]
    return "\n".join(lines).rstrip() + "\n"


def _deterministic_roadmap(title: str) -> List[str]:
    return [
        "## Phase 1: Foundation",
        "",
        f"Set up the project skeleton and core data model for {title}.",
        "",
        "**Goals:**",
        "- Repository, CI and environment configuration",
        "- Core data model persisted",
        "",
        "**Acceptance Criteria:**",
        "- The application boots locally with one command",
        "- Core entities can be created and read back",
        "",
        "## Phase 2: Core MVP",
        "",
        "Deliver the primary user workflow end to end.",
        "",
        "**Goals:**",
        "- Primary workflow usable by a first user",
        "",
        "**Dependencies:**",
        "- Foundation",
        "",
        "## Phase 3: MVP Complete",
        "",
        "Polish, onboarding and launch readiness.",
        "",
        "**Goals:**",
        "- Onboarding flow",
        "- Basic analytics",
        "",
    ]


class DocumentGenerator:
    """Generates document markdown from idea context."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Any = None):
        self.model = model or settings.OPENAI_MODEL
        self.client = client if client is not None else get_openai_client(
            settings.OPENAI_API_KEY if api_key is None else api_key
        )

    @property
    def provider(self) -> str:
        return "openai" if self.client is not None else "deterministic"

    async def generate_document(self, document_type: DocumentType, context: GenerationContext) -> str:
        doc_type = DocumentType.from_value(document_type)
        if self.client is None:
            return deterministic_document(doc_type, context)

        prompt = build_prompt(doc_type, context)
        try:
            response = await asyncio.to_thread(
                self.client.chat.completions.create,
                model=self.model,
                messages=[
                    {"role": "system", "content": ROLE_CONTEXT[doc_type]},
                    {"role": "user", "content": prompt},
                ],
            )
        except Exception as exc:
            logger.warning("OpenAI generation failed for %s: %s", doc_type.value, exc)
            raise GenerationError(f"AI generation failed: {exc}") from exc

        content = (response.choices[0].message.content or "").strip()
        if not content:
            raise GenerationError("AI generation returned empty content")
        return content


def get_document_generator() -> DocumentGenerator:
    """FastAPI dependency; tests override it to force failures."""
    return DocumentGenerator()
