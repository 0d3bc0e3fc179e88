"""Builds the Kiro setup file tree from source documents."""

from __future__ import annotations

from datetime import datetime, timezone
import re
from typing import Dict, List, Optional, Tuple

from services.export.extractor import ContentExtractor
from services.export.templates import TemplateEngine, first_item_spec
from services.export.types import ExtractedContent, GeneratedFiles, SourceDocuments


FILE_REFERENCE_PATTERN = re.compile(r"#\[\[file:[^\]]+\]\]")
FILE_REFERENCE_PATH_PATTERN = re.compile(r"#\[\[file:(.+?)\]\]")
STEERING_FILES = ("product.md", "tech.md", "architecture.md", "spec-generation.md")
DOC_FILES = ("roadmap.md", "PRD.md", "tech-architecture.md", "design.md")
SPEC_FILES = ("requirements.md", "design.md", "tasks.md")


def format_timestamp(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S") + " UTC"


class FileGenerator:
    def __init__(
        self,
        template_engine: Optional[TemplateEngine] = None,
        content_extractor: Optional[ContentExtractor] = None,
    ):
        self.template_engine = template_engine or TemplateEngine()
        self.content_extractor = content_extractor or ContentExtractor()

    def generate(
        self,
        idea_name: str,
        documents: SourceDocuments,
        now: Optional[datetime] = None,
    ) -> GeneratedFiles:
        content = self.content_extractor.extract(documents)
        return GeneratedFiles(
            steering=self._steering(idea_name, content),
            specs=first_item_spec(
                self.template_engine,
                content.roadmap.items[0] if content.roadmap.items else None,
                idea_name,
            ),
            docs={
                "roadmap.md": content.roadmap.raw_content,
                "PRD.md": documents.prd,
                "tech-architecture.md": documents.tech_architecture,
                "design.md": documents.design,
            },
            readme=self.template_engine.generate_readme(idea_name, format_timestamp(now)),
        )

    def _steering(self, idea_name: str, content: ExtractedContent) -> Dict[str, str]:
        engine = self.template_engine
        return {
            "product.md": engine.generate_product_steering(content.product, idea_name),
            "tech.md": engine.generate_tech_steering(content.tech, idea_name),
            "architecture.md": engine.generate_architecture_steering(content.architecture, idea_name),
            "spec-generation.md": engine.generate_spec_generation_steering(idea_name),
        }

    @staticmethod
    def existing_paths(files: GeneratedFiles) -> List[str]:
        paths = [f"steering/{name}" for name in STEERING_FILES]
        for spec_name in files.specs:
            paths.extend(f"specs/{spec_name}/{name}" for name in SPEC_FILES)
        paths.extend(f"docs/{name}" for name in DOC_FILES)
        paths.append("README.md")
        return paths

    def extract_file_references(self, files: GeneratedFiles) -> List[str]:
        """Unique `#[[file:...]]` references in first-seen order."""
        seen: Dict[str, None] = {}
        for _, content in self.get_all_files_flat(files):
            for reference in FILE_REFERENCE_PATTERN.findall(content):
                seen.setdefault(reference, None)
        return list(seen)

    def validate_file_references(self, files: GeneratedFiles, references: List[str]) -> Tuple[bool, List[str]]:
        existing = set(self.existing_paths(files))
        invalid: List[str] = []
        for reference in references:
            match = FILE_REFERENCE_PATH_PATTERN.search(reference)
            if match and match.group(1) not in existing:
                invalid.append(match.group(1))
        return not invalid, invalid

    @staticmethod
    def get_all_files_flat(files: GeneratedFiles) -> List[Tuple[str, str]]:
        result = [(f"steering/{name}", content) for name, content in files.steering.items()]
        for spec_name, spec_files in files.specs.items():
            result.extend((f"specs/{spec_name}/{name}", content) for name, content in spec_files.items())
        result.extend((f"docs/{name}", content) for name, content in files.docs.items())
        result.append(("README.md", files.readme))
        return result

    @staticmethod
    def count_files(files: GeneratedFiles) -> int:
        return (
            len(files.steering)
            + sum(len(spec_files) for spec_files in files.specs.values())
            + len(files.docs)
            + 1
        )

    @staticmethod
    def first_spec_feature_name(files: GeneratedFiles) -> Optional[str]:
        return next(iter(files.specs), None)
