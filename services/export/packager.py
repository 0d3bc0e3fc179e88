"""Packages generated files as a zip archive or individual downloads."""

from __future__ import annotations

from datetime import datetime, timezone
import io
import logging
import re
from typing import Dict, List, Optional, Tuple
import zipfile

from services.export.generator import DOC_FILES, SPEC_FILES, STEERING_FILES
from services.export.types import ExportedFile, ExportFormat, GeneratedFiles, PackageResult

logger = logging.getLogger(__name__)

ROOT_FOLDER = "kiro-setup"
SUBFOLDERS: Dict[str, str] = {"steering": "steering", "specs": "specs", "docs": "docs"}


def sanitize_idea_name(idea_name: str) -> str:
    """Lowercase slug: special characters dropped, whitespace runs become single hyphens."""
    slug = (idea_name or "").lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y%m%d-%H%M%S")


class ExportPackager:
    def package(
        self,
        files: GeneratedFiles,
        idea_name: str,
        export_format: ExportFormat = "zip",
        timestamp: Optional[datetime] = None,
    ) -> PackageResult:
        try:
            if export_format == "zip":
                return self.package_as_zip(files, idea_name, timestamp)
            if export_format == "individual":
                return self.package_as_individual_files(files, idea_name, timestamp)
            return PackageResult(success=False, error=f"Unsupported export format: {export_format}")
        except (OSError, ValueError, zipfile.BadZipFile) as exc:
            logger.warning("Export packaging failed: %s", exc)
            return PackageResult(success=False, error=str(exc) or "Unknown error during packaging")

    def _entries(self, files: GeneratedFiles) -> List[Tuple[str, str, str]]:
        """(download name, archive path, content) for every file in layout order."""
        entries: List[Tuple[str, str, str]] = []
        steering, specs, docs = SUBFOLDERS["steering"], SUBFOLDERS["specs"], SUBFOLDERS["docs"]
        for name, content in files.steering.items():
            entries.append((f"{steering}-{name}", f"{ROOT_FOLDER}/{steering}/{name}", content))
        for spec_name, spec_files in files.specs.items():
            for name, content in spec_files.items():
                entries.append((f"{specs}-{spec_name}-{name}", f"{ROOT_FOLDER}/{specs}/{spec_name}/{name}", content))
        for name, content in files.docs.items():
            entries.append((f"{docs}-{name}", f"{ROOT_FOLDER}/{docs}/{name}", content))
        entries.append((f"{ROOT_FOLDER}-README.md", f"{ROOT_FOLDER}/README.md", files.readme))
        return entries

    def package_as_zip(
        self,
        files: GeneratedFiles,
        idea_name: str,
        timestamp: Optional[datetime] = None,
    ) -> PackageResult:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for folder in self.get_folder_structure():
                archive.writestr(f"{folder}/", "")
            for spec_name in files.specs:
                archive.writestr(f"{ROOT_FOLDER}/{SUBFOLDERS['specs']}/{spec_name}/", "")
            for _, path, content in self._entries(files):
                archive.writestr(path, content or "")
        return PackageResult(
            success=True,
            archive=buffer.getvalue(),
            filename=self.generate_filename(idea_name, timestamp),
        )

    def package_as_individual_files(
        self,
        files: GeneratedFiles,
        idea_name: str,
        timestamp: Optional[datetime] = None,
    ) -> PackageResult:
        exported = [ExportedFile(name=name, content=content, path=path) for name, path, content in self._entries(files)]
        return PackageResult(success=True, files=exported, filename=self.generate_filename(idea_name, timestamp))

    def generate_filename(self, idea_name: str, timestamp: Optional[datetime] = None) -> str:
        moment = timestamp or datetime.now(timezone.utc)
        return f"kiro-setup-{sanitize_idea_name(idea_name)}-{format_timestamp(moment)}.zip"

    @staticmethod
    def get_folder_structure() -> List[str]:
        return [ROOT_FOLDER] + [f"{ROOT_FOLDER}/{folder}" for folder in SUBFOLDERS.values()]

    def validate_structure(self, files: GeneratedFiles) -> Tuple[bool, List[str]]:
        issues: List[str] = []
        issues.extend(f"Missing steering file: {name}" for name in STEERING_FILES if name not in files.steering)
        issues.extend(f"Missing docs file: {name}" for name in DOC_FILES if name not in files.docs)
        if not files.readme:
            issues.append("Missing README.md")
        if not files.specs:
            issues.append("No spec folders found")
        for spec_name, spec_files in files.specs.items():
            issues.extend(
                f"Missing spec file in {spec_name}: {name}" for name in SPEC_FILES if name not in spec_files
            )
        return not issues, issues

    def calculate_package_size(self, files: GeneratedFiles) -> int:
        return sum(len((content or "").encode("utf-8")) for _, _, content in self._entries(files))

    def count_files(self, files: GeneratedFiles) -> int:
        return len(self._entries(files))
