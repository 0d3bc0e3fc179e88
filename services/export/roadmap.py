"""Roadmap item extraction from free-form markdown."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence

from services.export.parser import DocumentParser
from services.export.types import DocumentSection, ParsedRoadmap, RoadmapItem


SKIP_HEADINGS = ("introduction", "overview", "summary", "table of contents", "glossary", "appendix")
GOAL_LABELS = ("goals", "objectives", "targets")
CRITERIA_LABELS = ("acceptance criteria", "requirements", "success criteria")
DEPENDENCY_LABELS = ("dependencies", "depends on", "prerequisites", "blockers")

PREFIX_PATTERN = re.compile(
    r"^(?:(?:phase|milestone|sprint|week|month|quarter)\b|q(?=\d))\s*\d*[:\-\s]*", re.IGNORECASE
)
NUMBERING_PATTERN = re.compile(r"^\d+[.)\-\s]+")
BULLET_PATTERN = re.compile(r"^[-*•]\s+(.+)$")
NUMBERED_PATTERN = re.compile(r"^\d+[.)]\s+(.+)$")
BOLD_ITEM_PATTERN = re.compile(r"^[-*•]\s+\*\*(.+?)\*\*[:\s]*(.*)$")
NESTED_ITEM_PATTERN = re.compile(r"^\s+[-*•]\s+(.+)$")


class RoadmapParser:
    """Finds roadmap items at H2, then H3, then in bold-led bullet lists."""

    def __init__(self, document_parser: Optional[DocumentParser] = None):
        self.document_parser = document_parser or DocumentParser()

    def parse(self, content: str) -> ParsedRoadmap:
        if not content or not content.strip():
            return ParsedRoadmap(items=[], first_item=None)
        items = self._extract_items(content)
        return ParsedRoadmap(items=items, first_item=items[0] if items else None)

    def _extract_items(self, content: str) -> List[RoadmapItem]:
        parsed = self.document_parser.parse(content)
        for level in (2, 3):
            items = [
                item
                for item in (
                    self._item_from_section(section)
                    for section in self.document_parser.get_sections_at_level(parsed, level)
                )
                if item is not None
            ]
            if items:
                return items
        return self._items_from_lists(content)

    def _item_from_section(self, section: DocumentSection) -> Optional[RoadmapItem]:
        heading = section.heading.lower()
        if any(skip in heading for skip in SKIP_HEADINGS):
            return None

        title = self.clean_title(section.heading)
        description = self._description(section.content)
        goals = self._goals(section.content, section.subsections)
        criteria = self._acceptance_criteria(section.content, section.subsections)
        dependencies = self._dependencies(section.content)

        if not title or (not description and not goals):
            return None
        return RoadmapItem(
            title=title,
            description=description,
            goals=goals,
            acceptance_criteria=criteria or None,
            dependencies=dependencies or None,
        )

    @staticmethod
    def clean_title(heading: str) -> str:
        title = PREFIX_PATTERN.sub("", heading)
        title = NUMBERING_PATTERN.sub("", title)
        return title.strip()

    @staticmethod
    def _description(content: str) -> str:
        lines: List[str] = []
        for line in content.split("\n"):
            stripped = line.strip()
            if stripped.startswith(("-", "*", "#")):
                break
            if stripped:
                lines.append(stripped)
            elif lines:
                break
        return " ".join(lines).strip()

    def _goals(self, content: str, subsections: Sequence[DocumentSection]) -> List[str]:
        goals: List[str] = []
        for sub in subsections:
            if "goal" in sub.heading.lower():
                goals.extend(self.list_items(sub.content))

        block = self.find_labeled_block(content, GOAL_LABELS)
        if block:
            goals.extend(self.list_items(block))

        if not goals:
            for item in self.list_items(content):
                lowered = item.lower()
                if len(item) < 200 and "when" not in lowered and "shall" not in lowered:
                    goals.append(item)
        return goals

    def _acceptance_criteria(self, content: str, subsections: Sequence[DocumentSection]) -> List[str]:
        criteria: List[str] = []
        for sub in subsections:
            heading = sub.heading.lower()
            if "acceptance" in heading or "criteria" in heading or "requirements" in heading:
                criteria.extend(self.list_items(sub.content))

        block = self.find_labeled_block(content, CRITERIA_LABELS)
        if block:
            criteria.extend(self.list_items(block))
        return criteria

    def _dependencies(self, content: str) -> List[str]:
        block = self.find_labeled_block(content, DEPENDENCY_LABELS)
        return self.list_items(block) if block else []

    @staticmethod
    def find_labeled_block(content: str, keywords: Sequence[str]) -> Optional[str]:
        """Lines after a `Label:` or `**Label**` line, up to the next such label."""
        capturing = False
        captured: List[str] = []
        for line in content.split("\n"):
            lowered = line.strip().lower()
            is_label = lowered.endswith(":") or lowered.startswith("**")
            if not capturing and is_label and any(keyword in lowered for keyword in keywords):
                capturing = True
                continue
            if capturing and is_label:
                break
            if capturing:
                captured.append(line)
        return "\n".join(captured) if captured else None

    @staticmethod
    def list_items(content: str) -> List[str]:
        items: List[str] = []
        for line in content.split("\n"):
            stripped = line.strip()
            match = BULLET_PATTERN.match(stripped) or NUMBERED_PATTERN.match(stripped)
            if match:
                item = match.group(1).strip()
                if item:
                    items.append(item)
        return items

    def _items_from_lists(self, content: str) -> List[RoadmapItem]:
        items: List[RoadmapItem] = []
        current: Optional[RoadmapItem] = None
        for line in content.split("\n"):
            nested = NESTED_ITEM_PATTERN.match(line)
            if nested and current is not None:
                current.goals.append(nested.group(1).strip())
                continue
            main = BOLD_ITEM_PATTERN.match(line.strip())
            if main:
                if current is not None and current.title:
                    items.append(current)
                current = RoadmapItem(title=main.group(1).strip(), description=main.group(2).strip())
        if current is not None and current.title:
            items.append(current)
        return items
