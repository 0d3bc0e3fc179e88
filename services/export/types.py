"""Export pipeline data contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


ExportFormat = Literal["zip", "individual"]
ExportDocumentKey = Literal["prd", "design", "techArchitecture", "roadmap"]


@dataclass
class DocumentSection:
    heading: str
    level: int
    content: str = ""
    subsections: List["DocumentSection"] = field(default_factory=list)


@dataclass
class ParsedDocument:
    title: str
    sections: List[DocumentSection]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RoadmapItem:
    title: str
    description: str = ""
    goals: List[str] = field(default_factory=list)
    acceptance_criteria: Optional[List[str]] = None
    dependencies: Optional[List[str]] = None


@dataclass
class ParsedRoadmap:
    items: List[RoadmapItem]
    first_item: Optional[RoadmapItem] = None


@dataclass
class ProductContent:
    vision: str = ""
    mission: str = ""
    targetUsers: str = ""
    personas: str = ""
    metrics: str = ""
    constraints: str = ""
    valueProposition: str = ""


@dataclass
class TechContent:
    stack: str = ""
    dependencies: str = ""
    frameworkVersions: str = ""
    setupInstructions: str = ""
    buildConfig: str = ""
    technicalConstraints: str = ""


@dataclass
class ArchitectureContent:
    patterns: str = ""
    layerResponsibilities: str = ""
    codeOrganization: str = ""
    namingConventions: str = ""
    importPatterns: str = ""


@dataclass
class RoadmapContent:
    items: List[RoadmapItem]
    raw_content: str


@dataclass
class ExtractedContent:
    product: ProductContent
    tech: TechContent
    architecture: ArchitectureContent
    roadmap: RoadmapContent


@dataclass(frozen=True)
class SourceDocuments:
    prd: str
    tech_architecture: str
    design: str
    roadmap: str


@dataclass
class GeneratedFiles:
    steering: Dict[str, str]
    specs: Dict[str, Dict[str, str]]
    docs: Dict[str, str]
    readme: str


@dataclass(frozen=True)
class ExportedFile:
    name: str
    content: str
    path: str


@dataclass
class PackageResult:
    success: bool
    archive: Optional[bytes] = None
    files: Optional[List[ExportedFile]] = None
    filename: Optional[str] = None
    error: Optional[str] = None
