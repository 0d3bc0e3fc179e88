"""Markdown section tree parsing."""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from services.export.types import DocumentSection, ParsedDocument


HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$")


class DocumentParser:
    """Splits markdown into a heading hierarchy with optional frontmatter."""

    def parse(self, content: str) -> ParsedDocument:
        if not content or not content.strip():
            return ParsedDocument(title="", sections=[], metadata={})

        lines = content.split("\n")
        return ParsedDocument(
            title=self._extract_title(lines),
            sections=self._extract_sections(lines),
            metadata=self._extract_metadata(content),
        )

    def _extract_title(self, lines: List[str]) -> str:
        for line in lines:
            stripped = line.strip()
            if stripped.startswith("# "):
                return stripped[2:].strip()
        return ""

    def _extract_sections(self, lines: List[str]) -> List[DocumentSection]:
        sections: List[DocumentSection] = []
        current: Optional[DocumentSection] = None
        buffer: List[str] = []
        skip_first_h1 = True

        for line in lines:
            match = HEADING_PATTERN.match(line)
            if match:
                level = len(match.group(1))
                heading = match.group(2).strip()
                # First H1 is the document title.
                if level == 1 and skip_first_h1:
                    skip_first_h1 = False
                    continue
                if current is not None:
                    current.content = "\n".join(buffer).strip()
                    self._attach(sections, current)
                current = DocumentSection(heading=heading, level=level)
                buffer = []
            elif current is not None:
                buffer.append(line)

        if current is not None:
            current.content = "\n".join(buffer).strip()
            self._attach(sections, current)
        return sections

    def _attach(self, sections: List[DocumentSection], section: DocumentSection) -> None:
        parent = self._find_parent(sections, section.level)
        if parent is not None:
            parent.subsections.append(section)
        else:
            sections.append(section)

    def _find_parent(self, sections: List[DocumentSection], level: int) -> Optional[DocumentSection]:
        for candidate in reversed(sections):
            if candidate.level < level:
                return self._find_parent(candidate.subsections, level) or candidate
        return None

    def _extract_metadata(self, content: str) -> Dict[str, str]:
        metadata: Dict[str, str] = {}
        if not content.startswith("---"):
            return metadata
        end = content.find("---", 3)
        if end == -1:
            return metadata
        for line in content[3:end].strip().split("\n"):
            key, sep, value = line.partition(":")
            if not sep:
                continue
            metadata[key.strip()] = re.sub(r"^[\"']|[\"']$", "", value.strip())
        return metadata

    def find_section(self, document: ParsedDocument, heading: str) -> Optional[DocumentSection]:
        """Depth-first search for the first heading containing the given text, ignoring case."""
        return self._find_section(document.sections, heading.lower())

    def _find_section(self, sections: List[DocumentSection], heading: str) -> Optional[DocumentSection]:
        for section in sections:
            if heading in section.heading.lower():
                return section
            found = self._find_section(section.subsections, heading)
            if found is not None:
                return found
        return None

    def get_sections_at_level(self, document: ParsedDocument, level: int) -> List[DocumentSection]:
        return self._collect_at_level(document.sections, level)

    def _collect_at_level(self, sections: List[DocumentSection], level: int) -> List[DocumentSection]:
        result: List[DocumentSection] = []
        for section in sections:
            if section.level == level:
                result.append(section)
            result.extend(self._collect_at_level(section.subsections, level))
        return result

    def get_section_with_subsections(self, section: DocumentSection) -> str:
        """Section body followed by every nested subsection, headings restored."""
        content = section.content
        for subsection in section.subsections:
            prefix = "#" * subsection.level
            content += f"\n\n{prefix} {subsection.heading}\n\n{self.get_section_with_subsections(subsection)}"
        return content.strip()
