"""Manifest parsers for the package ecosystems we recognise."""

from __future__ import annotations

import json
import logging
import re
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from defusedxml import ElementTree

logger = logging.getLogger(__name__)

_REQUIREMENT_RE = re.compile(
    r"^([A-Za-z0-9_.\-]+)(?:\[[^\]]*\])?\s*(==|>=|<=|~=|!=|>|<)?\s*([^;#\s]+)?",
)
_GRADLE_RE = re.compile(r"implementation\s+['\"](.+?)['\"]")
_GO_REQUIRE_RE = re.compile(r"^\s*(?:require\s+)?([^\s()]+)\s+v([^\s]+)", re.MULTILINE)
_GEM_RE = re.compile(r"""gem\s+['"]([^'"]+)['"]\s*,?\s*['"]?([^'"]*)['"]?""")


@dataclass(slots=True, frozen=True)
class Dependency:
    name: str
    version: str
    ecosystem: str
    scope: str = "runtime"

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "version": self.version,
            "ecosystem": self.ecosystem,
            "type": self.scope,
        }


@dataclass(slots=True)
class ManifestDependencies:
    """Dependencies declared by one manifest file."""

    file: str
    runtime: list[Dependency] = field(default_factory=list)
    development: list[Dependency] = field(default_factory=list)


@dataclass(slots=True)
class DependencySummary:
    """Combined dependencies across every manifest found in a repository."""

    files: list[str] = field(default_factory=list)
    runtime: list[Dependency] = field(default_factory=list)
    development: list[Dependency] = field(default_factory=list)
    ecosystems: list[str] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.runtime) + len(self.development)

    def all_names(self) -> list[str]:
        return [dep.name for dep in (*self.runtime, *self.development)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": list(self.files),
            "runtime": [dep.to_dict() for dep in self.runtime],
            "development": [dep.to_dict() for dep in self.development],
            "total_count": self.total_count,
            "ecosystems": list(self.ecosystems),
        }


def strip_range_prefix(version: str) -> str:
    """Drop a leading ``^`` or ``~`` (npm / composer ranges)."""

    return re.sub(r"^[\^~]", "", str(version))


def parse_package_json(root: Path) -> ManifestDependencies | None:
    data = _read_json(root / "package.json")
    if data is None:
        return None
    return ManifestDependencies(
        file="package.json",
        runtime=_from_mapping(data.get("dependencies"), "npm", "runtime"),
        development=_from_mapping(data.get("devDependencies"), "npm", "development"),
    )


def parse_python(root: Path) -> ManifestDependencies | None:
    """``requirements.txt`` first, then ``pyproject.toml``."""

    path = root / "requirements.txt"
    if not path.is_file():
        return parse_pyproject(root)

    runtime: list[Dependency] = []
    for line in path.read_text("utf-8", errors="replace").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "-")):
            continue
        match = _REQUIREMENT_RE.match(stripped)
        if match:
            runtime.append(
                Dependency(
                    name=match.group(1),
                    version=match.group(3) or "latest",
                    ecosystem="pip",
                ),
            )
    return ManifestDependencies(file="requirements.txt", runtime=runtime)


def parse_pyproject(root: Path) -> ManifestDependencies | None:
    """PEP 621 ``[project]`` tables, falling back to Poetry's."""

    path = root / "pyproject.toml"
    if not path.is_file():
        return None
    try:
        data = tomllib.loads(path.read_text("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as error:
        logger.warning("Error parsing %s: %s", path, error)
        return None

    result = ManifestDependencies(file="pyproject.toml")
    project = data.get("project") or {}
    for requirement in project.get("dependencies") or []:
        dep = _from_requirement(requirement, "runtime")
        if dep is not None:
            result.runtime.append(dep)
    for extra in (project.get("optional-dependencies") or {}).values():
        for requirement in extra:
            dep = _from_requirement(requirement, "development")
            if dep is not None:
                result.development.append(dep)

    poetry = (data.get("tool") or {}).get("poetry") or {}
    for name, spec in (poetry.get("dependencies") or {}).items():
        if name.lower() == "python":
            continue
        result.runtime.append(
            Dependency(name=name, version=_poetry_version(spec), ecosystem="pip"),
        )
    dev_tables = [poetry.get("dev-dependencies") or {}]
    dev_tables.extend(
        (group.get("dependencies") or {}) for group in (poetry.get("group") or {}).values()
    )
    for table in dev_tables:
        for name, spec in table.items():
            result.development.append(
                Dependency(
                    name=name,
                    version=_poetry_version(spec),
                    ecosystem="pip",
                    scope="development",
                ),
            )
    return result


def parse_maven(root: Path) -> ManifestDependencies | None:
    """``pom.xml`` with test scope counted as development, else ``build.gradle``."""

    path = root / "pom.xml"
    if not path.is_file():
        return parse_gradle(root)
    try:
        document = ElementTree.fromstring(path.read_bytes())
    except ElementTree.ParseError as error:
        logger.warning("Error parsing %s: %s", path, error)
        return parse_gradle(root)

    result = ManifestDependencies(file="pom.xml")
    for element in document.iter():
        if _local_name(element.tag) != "dependency":
            continue
        group_id = _child_text(element, "groupId")
        artifact_id = _child_text(element, "artifactId")
        if not group_id or not artifact_id:
            continue
        is_test = _child_text(element, "scope") == "test"
        dep = Dependency(
            name=f"{group_id}:{artifact_id}",
            version=_child_text(element, "version") or "unknown",
            ecosystem="maven",
            scope="development" if is_test else "runtime",
        )
        (result.development if is_test else result.runtime).append(dep)
    return result


def parse_gradle(root: Path) -> ManifestDependencies | None:
    path = root / "build.gradle"
    if not path.is_file():
        return None
    runtime: list[Dependency] = []
    for coordinate in _GRADLE_RE.findall(path.read_text("utf-8", errors="replace")):
        parts = coordinate.split(":")
        group = parts[0]
        artifact = parts[1] if len(parts) > 1 else ""
        version = parts[2] if len(parts) > 2 else "latest"
        runtime.append(Dependency(name=f"{group}:{artifact}", version=version, ecosystem="gradle"))
    return ManifestDependencies(file="build.gradle", runtime=runtime)


def parse_go_mod(root: Path) -> ManifestDependencies | None:
    path = root / "go.mod"
    if not path.is_file():
        return None
    runtime = [
        Dependency(name=name, version=version, ecosystem="go")
        for name, version in _GO_REQUIRE_RE.findall(path.read_text("utf-8", errors="replace"))
        if name not in {"module", "go"}
    ]
    return ManifestDependencies(file="go.mod", runtime=runtime)


def parse_gemfile(root: Path) -> ManifestDependencies | None:
    path = root / "Gemfile"
    if not path.is_file():
        return None
    result = ManifestDependencies(file="Gemfile")
    in_dev_group = False
    for line in path.read_text("utf-8", errors="replace").splitlines():
        stripped = line.strip()
        if stripped.startswith("group :development"):
            in_dev_group = True
            continue
        if stripped == "end":
            in_dev_group = False
            continue
        match = _GEM_RE.search(stripped)
        if not match:
            continue
        dep = Dependency(
            name=match.group(1),
            version=match.group(2) or "latest",
            ecosystem="gem",
            scope="development" if in_dev_group else "runtime",
        )
        (result.development if in_dev_group else result.runtime).append(dep)
    return result


def parse_composer_json(root: Path) -> ManifestDependencies | None:
    data = _read_json(root / "composer.json")
    if data is None:
        return None
    return ManifestDependencies(
        file="composer.json",
        runtime=_from_mapping(data.get("require"), "composer", "runtime"),
        development=_from_mapping(data.get("require-dev"), "composer", "development"),
    )


MANIFEST_PARSERS: tuple[tuple[str, Callable[[Path], ManifestDependencies | None]], ...] = (
    ("Node.js", parse_package_json),
    ("Python", parse_python),
    ("Java", parse_maven),
    ("Go", parse_go_mod),
    ("Ruby", parse_gemfile),
    ("PHP", parse_composer_json),
)


def parse_dependencies(root: Path) -> DependencySummary:
    """Run every manifest parser; a parser that blows up only loses its ecosystem."""

    summary = DependencySummary()
    for label, parser in MANIFEST_PARSERS:
        try:
            parsed = parser(root)
        except Exception as error:  # noqa: BLE001
            logger.warning("Skipping %s dependencies in %s: %s", label, root, error)
            continue
        if parsed is None:
            continue
        summary.files.append(parsed.file)
        summary.runtime.extend(parsed.runtime)
        summary.development.extend(parsed.development)
        for dep in (*parsed.runtime, *parsed.development):
            if dep.ecosystem not in summary.ecosystems:
                summary.ecosystems.append(dep.ecosystem)
    return summary


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        logger.warning("Error parsing %s: %s", path, error)
        return None
    return data if isinstance(data, dict) else None


def _from_mapping(mapping: Any, ecosystem: str, scope: str) -> list[Dependency]:
    if not isinstance(mapping, dict):
        return []
    return [
        Dependency(
            name=str(name),
            version=strip_range_prefix(version),
            ecosystem=ecosystem,
            scope=scope,
        )
        for name, version in mapping.items()
    ]


def _from_requirement(requirement: str, scope: str) -> Dependency | None:
    match = _REQUIREMENT_RE.match(requirement.strip())
    if not match:
        return None
    return Dependency(
        name=match.group(1),
        version=match.group(3) or "latest",
        ecosystem="pip",
        scope=scope,
    )


def _poetry_version(spec: Any) -> str:
    if isinstance(spec, dict):
        spec = spec.get("version", "latest")
    return strip_range_prefix(spec) if spec else "latest"


def _child_text(element: ElementTree.Element, name: str) -> str | None:
    for child in element:
        if _local_name(child.tag) == name and child.text and child.text.strip():
            return child.text.strip()
    return None


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1]
    return tag
