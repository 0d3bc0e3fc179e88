"""Jinja2 templates for Kiro steering files, README and example specs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import re
from typing import Any, Dict, List, Optional

from jinja2 import DictLoader, Environment, TemplateNotFound

from services.export.types import ArchitectureContent, ProductContent, RoadmapItem, TechContent


def format_file_reference(path: str) -> str:
    return f"#[[file:{path}]]"


TECH_ARCHITECTURE_REFERENCE = format_file_reference("docs/tech-architecture.md")


PRODUCT_TEMPLATE = """# Product Context - {{ ideaName }}

This steering file provides product context for Kiro to understand the product vision, target users, and success metrics.

## Vision
{% if vision is filled %}
{{ vision }}
{% endif %}

## Mission
{% if mission is filled %}
{{ mission }}
{% endif %}

## Target Users
{% if targetUsers is filled %}
{{ targetUsers }}
{% endif %}

## User Personas
{% if personas is filled %}
{{ personas }}
{% endif %}

## Success Metrics & KPIs
{% if metrics is filled %}
{{ metrics }}
{% endif %}

## Constraints
{% if constraints is filled %}
{{ constraints }}
{% endif %}

## Core Value Proposition
{% if valueProposition is filled %}
{{ valueProposition }}
{% endif %}
"""

TECH_TEMPLATE = """# Technology Context - {{ ideaName }}

This steering file provides technology context for Kiro to understand the tech stack, dependencies, and development environment.

## Technology Stack
{% if stack is filled %}
{{ stack }}
{% endif %}

## Dependencies
{% if dependencies is filled %}
{{ dependencies }}
{% endif %}

## Framework Versions & Requirements
{% if frameworkVersions is filled %}
{{ frameworkVersions }}
{% endif %}

## Development Environment Setup
{% if setupInstructions is filled %}
{{ setupInstructions }}
{% endif %}

## Build Configuration
{% if buildConfig is filled %}
{{ buildConfig }}
{% endif %}

## Technical Constraints
{% if technicalConstraints is filled %}
{{ technicalConstraints }}
{% endif %}
"""

ARCHITECTURE_TEMPLATE = """# Architecture Context - {{ ideaName }}

This steering file provides architectural context for Kiro to follow established patterns and code organization standards.

## Architectural Patterns
{% if patterns is filled %}
{{ patterns }}
{% endif %}

## Layer Responsibilities & Boundaries
{% if layerResponsibilities is filled %}
{{ layerResponsibilities }}
{% endif %}

## Code Organization
{% if codeOrganization is filled %}
{{ codeOrganization }}
{% endif %}

## Naming Conventions
{% if namingConventions is filled %}
{{ namingConventions }}
{% endif %}

## Import Patterns
{% if importPatterns is filled %}
{{ importPatterns }}
{% endif %}
"""

SPEC_GENERATION_TEMPLATE = """---
inclusion: manual
---

# Spec Generation Guide - {{ ideaName }}

Use this guide to generate Kiro specs from your MVP roadmap. Each feature in your roadmap can become a complete spec with requirements, design, and tasks.

## Quick Start

**To generate a spec, copy this prompt and replace [FEATURE_NAME]:**

```
Create a new spec for "[FEATURE_NAME]" based on the roadmap at #[[file:docs/roadmap.md]].

Use the PRD at #[[file:docs/PRD.md]] for product context and the tech architecture at #[[file:docs/tech-architecture.md]] for technical guidance.

Generate three files in .kiro/specs/[feature-slug]/:
1. requirements.md - User story and acceptance criteria
2. design.md - Technical approach and component design
3. tasks.md - Implementation checklist
```

## Spec Structure

```
.kiro/specs/[feature-name]/
├── requirements.md   # What to build (user story, acceptance criteria)
├── design.md         # How to build it (technical approach, components)
└── tasks.md          # Step-by-step implementation checklist
```

## Generating Specs by Phase

Your roadmap is organized into build phases. Generate specs in order:

### Phase 1: Foundation (Start Here)
These features have no dependencies. Generate and implement them first.

### Phase 2: Core MVP
These depend on Phase 1. Generate after foundation is complete.

### Phase 3: MVP Complete
These round out the MVP. Generate after core features work.

### Phase 4: Post-MVP (Optional)
Nice-to-have features. Generate only after MVP validation.

## Detailed Prompts

### Generate Requirements Only
```
Generate requirements.md for "[FEATURE_NAME]" based on #[[file:docs/roadmap.md]].
Include the user story and convert acceptance criteria to EARS format.
Reference relevant sections from #[[file:docs/PRD.md]].
```

### Generate Design Only
```
Generate design.md for "[FEATURE_NAME]".
Use the tech stack from #[[file:docs/tech-architecture.md]].
Include technical approach, component design, and error handling.
```

### Generate Tasks Only
```
Generate tasks.md for "[FEATURE_NAME]".
Break down the acceptance criteria into implementable tasks.
Each task should be small enough to complete in one session.
Add a checkpoint task to verify the feature works.
```

## After Generating a Spec

1. Review the generated files in `.kiro/specs/[feature-name]/`
2. Edit if needed
3. Open `tasks.md` and start on the first task
4. Review each change before accepting it
5. Mark tasks complete as you go
"""

README_TEMPLATE = """# Kiro Setup - {{ ideaName }}

Your project documentation has been exported and is ready to use with Kiro IDE.

**Generated:** {{ timestamp }}

---

## What To Do Next

### Step 1: Set Up Your Project

1. Create a new project folder (or use an existing one)
2. Extract this package into your project root
3. Copy files to Kiro's config folder:

```bash
mkdir -p .kiro/steering .kiro/specs docs
cp steering/*.md .kiro/steering/
cp -r specs/* .kiro/specs/ 2>/dev/null || true
cp docs/*.md docs/
```

### Step 2: Open in Kiro IDE

Open your project folder in Kiro. The steering files are detected automatically.

### Step 3: Generate Your First Spec

Type `#spec-generation` in Kiro chat to include the spec generation guide, then ask for a spec for your first Phase 1 feature.

---

## What's Included

### Steering Files (`steering/`)

| File | Purpose |
|------|---------|
| `product.md` | Product vision, target users, success metrics |
| `tech.md` | Technology stack, dependencies, setup |
| `architecture.md` | Code patterns, organization, conventions |
| `spec-generation.md` | Guide for generating specs (manual inclusion) |

### Documentation (`docs/`)

| File | Purpose |
|------|---------|
| `roadmap.md` | MVP roadmap with all features by phase |
| `PRD.md` | Product requirements document |
| `tech-architecture.md` | Technical architecture details |
| `design.md` | System design document |

---

## Quick Reference

- Roadmap: `#[[file:docs/roadmap.md]]`
- PRD: `#[[file:docs/PRD.md]]`
- Tech: `#[[file:docs/tech-architecture.md]]`
"""

EXAMPLE_REQUIREMENTS_TEMPLATE = """# Requirements - {{ featureName }}

## User Story

{{ userStory }}

## Acceptance Criteria

{% for criterion in acceptanceCriteria %}
{{ loop.index }}. {{ criterion }}
{% endfor %}

## References

- PRD: #[[file:docs/PRD.md]]
- Roadmap: #[[file:docs/roadmap.md]]
"""

EXAMPLE_DESIGN_TEMPLATE = """# Design - {{ featureName }}

## Overview

This document describes the technical design for implementing "{{ featureName }}".

## Technical Approach

{{ technicalApproach }}

## References

- Tech Architecture: #[[file:docs/tech-architecture.md]]
- Requirements: #[[file:specs/{{ featureName }}/requirements.md]]
"""

EXAMPLE_TASKS_TEMPLATE = """# Implementation Tasks - {{ featureName }}

## Tasks

{% for task in tasks %}
- [ ] {{ task }}
{% endfor %}

## Checkpoint

- [ ] Ensure all tests pass, ask the user if questions arise.
"""

TEMPLATES: Dict[str, str] = {
    "product.md": PRODUCT_TEMPLATE,
    "tech.md": TECH_TEMPLATE,
    "architecture.md": ARCHITECTURE_TEMPLATE,
    "spec-generation.md": SPEC_GENERATION_TEMPLATE,
    "README.md": README_TEMPLATE,
    "example-spec/requirements.md": EXAMPLE_REQUIREMENTS_TEMPLATE,
    "example-spec/design.md": EXAMPLE_DESIGN_TEMPLATE,
    "example-spec/tasks.md": EXAMPLE_TASKS_TEMPLATE,
}


@dataclass
class ExampleSpecData:
    featureName: str
    userStory: str
    acceptanceCriteria: List[str] = field(default_factory=list)
    technicalApproach: str = ""
    tasks: List[str] = field(default_factory=list)


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


def is_filled(value: Any) -> bool:
    """`is filled` test: blank strings, empty collections, None and undefined are all empty."""
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


def _blank_none(value: Any) -> Any:
    return "" if value is None else value


def build_environment() -> Environment:
    environment = Environment(
        loader=DictLoader(TEMPLATES),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        finalize=_blank_none,
    )
    environment.tests["filled"] = is_filled
    return environment


class TemplateEngine:
    """Renders the bundled templates; loops expose `loop.index0`, `loop.first` and `loop.last`."""

    def __init__(self, environment: Optional[Environment] = None):
        self.environment = environment or build_environment()

    def populate(self, template: str, data: Dict[str, Any]) -> str:
        return self.environment.from_string(template).render(**data)

    def generate_file(self, name: str, data: Dict[str, Any]) -> str:
        try:
            template = self.environment.get_template(name)
        except TemplateNotFound:
            raise ValueError(f"Template not found: {name}") from None
        return template.render(**data)

    def generate_product_steering(self, product: ProductContent, idea_name: str) -> str:
        return self.generate_file("product.md", {**asdict(product), "ideaName": idea_name})

    def generate_tech_steering(self, tech: TechContent, idea_name: str) -> str:
        return self.generate_file("tech.md", {**asdict(tech), "ideaName": idea_name})

    def generate_architecture_steering(self, architecture: ArchitectureContent, idea_name: str) -> str:
        return self.generate_file("architecture.md", {**asdict(architecture), "ideaName": idea_name})

    def generate_spec_generation_steering(self, idea_name: str) -> str:
        return self.generate_file("spec-generation.md", {"ideaName": idea_name})

    def generate_readme(self, idea_name: str, timestamp: str) -> str:
        return self.generate_file("README.md", {"ideaName": idea_name, "timestamp": timestamp})

    def generate_example_spec(self, spec: ExampleSpecData, idea_name: str) -> Dict[str, str]:
        data = {**asdict(spec), "ideaName": idea_name}
        return {
            "requirements.md": self.generate_file("example-spec/requirements.md", data),
            "design.md": self.generate_file("example-spec/design.md", data),
            "tasks.md": self.generate_file("example-spec/tasks.md", data),
        }

    def create_example_spec_from_roadmap_item(self, item: RoadmapItem) -> ExampleSpecData:
        criteria = list(item.acceptance_criteria or item.goals)
        return ExampleSpecData(
            featureName=slugify(item.title),
            userStory=item.description or f"Implement {item.title}",
            acceptanceCriteria=criteria,
            technicalApproach=self._technical_approach(item),
            tasks=[f"{index}. {criterion}" for index, criterion in enumerate(criteria, start=1)],
        )

    @staticmethod
    def _technical_approach(item: RoadmapItem) -> str:
        parts = [f'This feature implements "{item.title}".']
        if item.description:
            parts.append(f"\n\n{item.description}")
        if item.dependencies:
            parts.append("\n\n**Dependencies:**\n" + "\n".join(f"- {dep}" for dep in item.dependencies))
        parts.append(f"\n\nRefer to the Tech Architecture document for implementation details: {TECH_ARCHITECTURE_REFERENCE}")
        return "".join(parts)


def first_item_spec(engine: TemplateEngine, item: Optional[RoadmapItem], idea_name: str) -> Dict[str, Dict[str, str]]:
    """Example spec folder for the first roadmap item, keyed by feature slug."""
    if item is None:
        return {}
    spec = engine.create_example_spec_from_roadmap_item(item)
    if not spec.featureName:
        return {}
    return {spec.featureName: engine.generate_example_spec(spec, idea_name)}
