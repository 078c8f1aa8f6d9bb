"""Tech stack report assembly on top of the individual detectors."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stackscan.analysis.dependencies import DependencySummary, parse_dependencies
from stackscan.analysis.frameworks import (
    DetectedFramework,
    detect_build_tools,
    detect_databases,
    detect_frameworks,
    detect_package_manager,
)
from stackscan.analysis.languages import LanguageShare, detect_languages, primary_language

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.7
SUMMARY_LANGUAGES = 3

ProgressCallback = Callable[[str, str], None]


@dataclass(slots=True)
class TechStackReport:
    languages: list[LanguageShare]
    primary_language: str | None
    frameworks: list[DetectedFramework]
    databases: list[str]
    build_tools: list[str]
    package_manager: str | None
    dependencies: DependencySummary = field(default_factory=DependencySummary)

    @property
    def has_database(self) -> bool:
        return bool(self.databases)

    def analysis_dict(self) -> dict[str, Any]:
        return {
            "languages": [share.to_dict() for share in self.languages],
            "primary_language": self.primary_language,
            "frameworks": [framework.to_dict() for framework in self.frameworks],
            "has_database": self.has_database,
            "databases": list(self.databases),
            "build_tools": list(self.build_tools),
            "package_manager": self.package_manager,
        }

    def to_dict(self) -> dict[str, Any]:
        return {"analysis": self.analysis_dict(), "dependencies": self.dependencies.to_dict()}


def analyze_repository(root: Path, *, progress: ProgressCallback | None = None) -> TechStackReport:
    """Detect languages, dependencies, frameworks, databases and tooling under ``root``.

    ``progress`` receives ``(level, message)`` pairs as each stage finishes.
    """

    if not root.is_dir():
        raise FileNotFoundError(f"Project path does not exist: {root}")

    def report(message: str, level: str = "info") -> None:
        logger.info("%s: %s", root.name, message)
        if progress is not None:
            progress(level, message)

    report("Starting code analysis...")
    languages = detect_languages(root)
    primary = primary_language(languages)
    report(f"Detected {len(languages)} languages. Primary: {primary or 'None'}")

    dependencies = parse_dependencies(root)
    report(
        f"Found {dependencies.total_count} dependencies across {len(dependencies.files)} files",
    )

    frameworks = detect_frameworks(root, dependencies)
    report(f"Detected {len(frameworks)} frameworks")

    databases = detect_databases(dependencies)
    if databases:
        report(f"Detected databases: {', '.join(databases)}")

    build_tools = detect_build_tools(root, dependencies)
    if build_tools:
        report(f"Detected build tools: {', '.join(build_tools)}")

    package_manager = detect_package_manager(root)
    if package_manager:
        report(f"Package manager: {package_manager}")

    report("Code analysis completed successfully", "success")
    return TechStackReport(
        languages=languages,
        primary_language=primary,
        frameworks=frameworks,
        databases=databases,
        build_tools=build_tools,
        package_manager=package_manager,
        dependencies=dependencies,
    )


def tech_stack_summary(analysis: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Condense a stored ``analysis`` dict to the headline facts."""

    if not analysis:
        return None
    return {
        "primary_language": analysis.get("primary_language"),
        "languages": [
            {"name": language["name"], "percentage": language["percentage"]}
            for language in (analysis.get("languages") or [])[:SUMMARY_LANGUAGES]
        ],
        "frameworks": [
            framework["name"]
            for framework in analysis.get("frameworks") or []
            if framework.get("confidence", 0) >= HIGH_CONFIDENCE
        ],
        "databases": list(analysis.get("databases") or []),
        "has_database": bool(analysis.get("has_database")),
        "build_tools": list(analysis.get("build_tools") or []),
        "package_manager": analysis.get("package_manager"),
    }


def validate_analysis_result(result: Any) -> bool:
    if not isinstance(result, Mapping):
        return False
    analysis = result.get("analysis")
    dependencies = result.get("dependencies")
    if not isinstance(analysis, Mapping) or not isinstance(analysis.get("languages"), list):
        return False
    total = dependencies.get("total_count") if isinstance(dependencies, Mapping) else None
    return isinstance(total, int) and not isinstance(total, bool)
