"""Keyword-driven extraction of steering content from source documents."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence

from services.export.parser import DocumentParser
from services.export.roadmap import RoadmapParser
from services.export.types import (
    ArchitectureContent,
    DocumentSection,
    ExtractedContent,
    ParsedDocument,
    ProductContent,
    RoadmapContent,
    SourceDocuments,
    TechContent,
)


# Ordered synonyms per field; the first heading match wins.
PRODUCT_KEYWORDS: Dict[str, List[str]] = {
    "vision": ["vision", "product vision", "our vision"],
    "mission": ["mission", "product mission", "our mission"],
    "targetUsers": ["target users", "users", "target audience", "audience", "who is this for"],
    "personas": ["personas", "user personas", "customer personas", "user profiles"],
    "metrics": ["metrics", "success metrics", "kpis", "key performance indicators", "measurements", "goals"],
    "constraints": ["constraints", "limitations", "boundaries", "restrictions", "non-goals"],
    "valueProposition": ["value proposition", "value prop", "unique value", "why us", "benefits", "core value"],
}

TECH_KEYWORDS: Dict[str, List[str]] = {
    "stack": ["technology stack", "tech stack", "stack", "technologies", "tools"],
    "dependencies": ["dependencies", "packages", "libraries", "external dependencies"],
    "frameworkVersions": ["framework versions", "versions", "framework", "runtime"],
    "setupInstructions": [
        "setup",
        "setup instructions",
        "installation",
        "getting started",
        "development setup",
        "environment setup",
    ],
    "buildConfig": ["build", "build configuration", "build config", "compilation", "bundling"],
    "technicalConstraints": [
        "technical constraints",
        "constraints",
        "limitations",
        "requirements",
        "system requirements",
    ],
}

ARCHITECTURE_KEYWORDS: Dict[str, List[str]] = {
    "patterns": ["patterns", "architectural patterns", "design patterns", "architecture"],
    "layerResponsibilities": [
        "layer responsibilities",
        "layers",
        "layer",
        "responsibilities",
        "separation of concerns",
    ],
    "codeOrganization": [
        "code organization",
        "organization",
        "structure",
        "folder structure",
        "directory structure",
        "project structure",
    ],
    "namingConventions": ["naming conventions", "naming", "conventions", "style guide"],
    "importPatterns": ["import patterns", "imports", "module imports", "dependencies"],
}


class ContentExtractor:
    """Maps PRD, tech architecture, design and roadmap markdown onto steering fields."""

    def __init__(
        self,
        document_parser: Optional[DocumentParser] = None,
        roadmap_parser: Optional[RoadmapParser] = None,
    ):
        self.document_parser = document_parser or DocumentParser()
        self.roadmap_parser = roadmap_parser or RoadmapParser(self.document_parser)

    def extract(self, documents: SourceDocuments) -> ExtractedContent:
        return ExtractedContent(
            product=self.extract_product(documents.prd),
            tech=self.extract_tech(documents.tech_architecture),
            architecture=self.extract_architecture(documents.design),
            roadmap=self.extract_roadmap(documents.roadmap),
        )

    def extract_product(self, prd_markdown: str) -> ProductContent:
        parsed = self.document_parser.parse(prd_markdown)
        return ProductContent(**self._extract_fields(parsed, PRODUCT_KEYWORDS))

    def extract_tech(self, tech_markdown: str) -> TechContent:
        parsed = self.document_parser.parse(tech_markdown)
        return TechContent(**self._extract_fields(parsed, TECH_KEYWORDS))

    def extract_architecture(self, design_markdown: str) -> ArchitectureContent:
        parsed = self.document_parser.parse(design_markdown)
        return ArchitectureContent(**self._extract_fields(parsed, ARCHITECTURE_KEYWORDS))

    def extract_roadmap(self, roadmap_markdown: str) -> RoadmapContent:
        parsed = self.roadmap_parser.parse(roadmap_markdown)
        return RoadmapContent(items=parsed.items, raw_content=roadmap_markdown)

    def _extract_fields(self, document: ParsedDocument, keywords: Dict[str, List[str]]) -> Dict[str, str]:
        return {name: self.section_content(document, synonyms) for name, synonyms in keywords.items()}

    def section_content(self, document: ParsedDocument, keywords: Sequence[str]) -> str:
        for keyword in keywords:
            section = self.document_parser.find_section(document, keyword)
            if section is not None:
                return self._format_section(section)
        return self._search_document(document, keywords)

    def _format_section(self, section: DocumentSection) -> str:
        content = section.content.strip()
        for subsection in section.subsections:
            nested = self.document_parser.get_section_with_subsections(subsection)
            if nested:
                content += f"\n\n### {subsection.heading}\n\n{nested}"
        return content.strip()

    def _search_document(self, document: ParsedDocument, keywords: Sequence[str]) -> str:
        # Fallback heuristic: keep only paragraphs that mention the keyword; may pull in loosely related prose.
        found = [text for text in (self._search_section(section, keywords) for section in document.sections) if text]
        return "\n\n".join(found).strip()

    def _search_section(self, section: DocumentSection, keywords: Sequence[str]) -> Optional[str]:
        heading = section.heading.lower()
        body = section.content.lower()
        for keyword in keywords:
            lowered = keyword.lower()
            if lowered in heading or lowered in body:
                return self._relevant_paragraphs(section.content, lowered)
        for subsection in section.subsections:
            found = self._search_section(subsection, keywords)
            if found:
                return found
        return None

    @staticmethod
    def _relevant_paragraphs(content: str, keyword: str) -> str:
        paragraphs = re.split(r"\n\n+", content)
        return "\n\n".join(p.strip() for p in paragraphs if keyword in p.lower())
