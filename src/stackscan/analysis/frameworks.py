"""Framework, database, build tool and package manager heuristics."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from stackscan.analysis.dependencies import DependencySummary

DEPENDENCY_WEIGHT = 0.7
FILE_WEIGHT = 0.3
DETECTION_THRESHOLD = 0.5


@dataclass(slots=True, frozen=True)
class FrameworkRule:
    name: str
    type: str
    ecosystem: str
    dependencies: tuple[str, ...] = ()
    files: tuple[str, ...] = ()


@dataclass(slots=True)
class DetectedFramework:
    name: str
    type: str
    ecosystem: str
    confidence: float
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "type": self.type, "confidence": self.confidence}


FRAMEWORK_RULES: tuple[FrameworkRule, ...] = (
    FrameworkRule("Express.js", "backend", "npm", dependencies=("express",)),
    FrameworkRule("React", "frontend", "npm", dependencies=("react",)),
    FrameworkRule(
        "Next.js",
        "fullstack",
        "npm",
        dependencies=("next",),
        files=("next.config.js", "next.config.mjs"),
    ),
    FrameworkRule("Vue.js", "frontend", "npm", dependencies=("vue",)),
    FrameworkRule(
        "Nuxt.js",
        "fullstack",
        "npm",
        dependencies=("nuxt",),
        files=("nuxt.config.js", "nuxt.config.ts"),
    ),
    FrameworkRule(
        "Angular",
        "frontend",
        "npm",
        dependencies=("@angular/core",),
        files=("angular.json",),
    ),
    FrameworkRule(
        "NestJS",
        "backend",
        "npm",
        dependencies=("@nestjs/core",),
        files=("nest-cli.json",),
    ),
    FrameworkRule("Fastify", "backend", "npm", dependencies=("fastify",)),
    FrameworkRule("Django", "fullstack", "pip", dependencies=("django",), files=("manage.py",)),
    FrameworkRule("Flask", "backend", "pip", dependencies=("flask",)),
    FrameworkRule("FastAPI", "backend", "pip", dependencies=("fastapi",)),
    FrameworkRule("Spring Boot", "backend", "maven", dependencies=("spring-boot",)),
    FrameworkRule(
        "Ruby on Rails",
        "fullstack",
        "gem",
        dependencies=("rails",),
        files=("config/routes.rb",),
    ),
    FrameworkRule(
        "Laravel",
        "fullstack",
        "composer",
        dependencies=("laravel/framework",),
        files=("artisan",),
    ),
    FrameworkRule("Symfony", "fullstack", "composer", dependencies=("symfony/framework-bundle",)),
    FrameworkRule("Gin", "backend", "go", dependencies=("github.com/gin-gonic/gin",)),
    FrameworkRule("Echo", "backend", "go", dependencies=("github.com/labstack/echo",)),
)

DATABASE_PATTERNS: dict[str, tuple[str, ...]] = {
    "MongoDB": ("mongodb", "mongoose"),
    "PostgreSQL": ("pg", "postgresql", "psycopg2"),
    "MySQL": ("mysql", "mysql2", "pymysql", "mysqlclient"),
    "SQLite": ("sqlite", "sqlite3"),
    "Redis": ("redis", "ioredis"),
    "MariaDB": ("mariadb",),
    "SQL Server": ("mssql", "pyodbc"),
    "Oracle": ("oracledb", "cx_oracle"),
}

# An indicator containing a dot is a file at the repository root, otherwise an
# exact dependency name.
BUILD_TOOL_INDICATORS: dict[str, tuple[str, ...]] = {
    "Webpack": ("webpack", "webpack.config.js"),
    "Vite": ("vite", "vite.config.js", "vite.config.ts"),
    "Rollup": ("rollup", "rollup.config.js"),
    "Parcel": ("parcel",),
    "esbuild": ("esbuild",),
    "Gradle": ("build.gradle", "build.gradle.kts"),
    "Maven": ("pom.xml",),
    "npm": ("package.json",),
    "Yarn": ("yarn.lock",),
    "pnpm": ("pnpm-lock.yaml",),
}

LOCK_FILES: tuple[tuple[str, str], ...] = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
    ("bun.lockb", "bun"),
)


def detect_frameworks(root: Path, dependencies: DependencySummary) -> list[DetectedFramework]:
    names = [name.lower() for name in dependencies.all_names()]
    detected: list[DetectedFramework] = []
    for rule in FRAMEWORK_RULES:
        confidence = 0.0
        reasons: list[str] = []
        for pattern in rule.dependencies:
            if any(pattern.lower() in name for name in names):
                confidence += DEPENDENCY_WEIGHT
                reasons.append(f"Dependency: {pattern}")
        for file_name in rule.files:
            if (root / file_name).exists():
                confidence += FILE_WEIGHT
                reasons.append(f"File: {file_name}")
        if confidence >= DETECTION_THRESHOLD:
            detected.append(
                DetectedFramework(
                    name=rule.name,
                    type=rule.type,
                    ecosystem=rule.ecosystem,
                    confidence=round(min(confidence, 1.0), 2),
                    reasons=reasons,
                ),
            )
    detected.sort(key=lambda framework: framework.confidence, reverse=True)
    return detected


def detect_databases(dependencies: DependencySummary) -> list[str]:
    names = [name.lower() for name in dependencies.all_names()]
    return [
        database
        for database, patterns in DATABASE_PATTERNS.items()
        if any(pattern in name for pattern in patterns for name in names)
    ]


def detect_build_tools(root: Path, dependencies: DependencySummary) -> list[str]:
    names = set(dependencies.all_names())
    tools: list[str] = []
    for tool, indicators in BUILD_TOOL_INDICATORS.items():
        for indicator in indicators:
            found = (root / indicator).exists() if "." in indicator else indicator in names
            if found:
                tools.append(tool)
                break
    return tools


def detect_package_manager(root: Path) -> str | None:
    for lock_file, manager in LOCK_FILES:
        if (root / lock_file).exists():
            return manager
    if (root / "package.json").exists():
        return "npm"
    return None
