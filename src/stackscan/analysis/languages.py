"""Extension-based language detection for a checked-out repository."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

LANGUAGE_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "JavaScript": (".js", ".jsx", ".mjs", ".cjs"),
    "TypeScript": (".ts", ".tsx"),
    "Python": (".py", ".pyw"),
    "Java": (".java",),
    "Go": (".go",),
    "Ruby": (".rb",),
    "PHP": (".php",),
    "C#": (".cs",),
    "C++": (".cpp", ".cc", ".cxx", ".h", ".hpp"),
    "C": (".c", ".h"),
    "Rust": (".rs",),
    "Swift": (".swift",),
    "Kotlin": (".kt", ".kts"),
    "Scala": (".scala",),
    "HTML": (".html", ".htm"),
    "CSS": (".css", ".scss", ".sass", ".less"),
    "SQL": (".sql",),
    "Shell": (".sh", ".bash", ".zsh"),
    "YAML": (".yml", ".yaml"),
    "JSON": (".json",),
    "Markdown": (".md", ".markdown"),
    "XML": (".xml",),
}

# Later entries win for shared extensions, so ``.h`` counts as C.
EXTENSION_TO_LANGUAGE: dict[str, str] = {
    extension: language
    for language, extensions in LANGUAGE_EXTENSIONS.items()
    for extension in extensions
}

IGNORE_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        ".next",
        "dist",
        "build",
        "target",
        "bin",
        "obj",
        ".gradle",
        "vendor",
        "__pycache__",
        ".pytest_cache",
        ".venv",
        "venv",
        "env",
        ".idea",
        ".vscode",
        "coverage",
        ".nuxt",
        "out",
    },
)

NON_PRIMARY_LANGUAGES = frozenset({"HTML", "CSS", "JSON", "YAML", "XML", "Markdown"})

MAX_SCAN_DEPTH = 10


@dataclass(slots=True, frozen=True)
class LanguageShare:
    name: str
    file_count: int
    percentage: float

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "percentage": self.percentage, "file_count": self.file_count}


def count_files_by_language(root: Path, *, max_depth: int = MAX_SCAN_DEPTH) -> dict[str, int]:
    """Count recognised source files per language, skipping vendored and build dirs."""

    counts: dict[str, int] = {}
    _scan(root, counts, depth=0, max_depth=max_depth)
    return counts


def detect_languages(root: Path, *, max_depth: int = MAX_SCAN_DEPTH) -> list[LanguageShare]:
    """Return languages sorted by file count, percentages rounded to one decimal."""

    counts = count_files_by_language(root, max_depth=max_depth)
    total = sum(counts.values())
    if total == 0:
        return []
    shares = [
        LanguageShare(name=name, file_count=count, percentage=round(count / total * 100, 1))
        for name, count in counts.items()
    ]
    shares.sort(key=lambda share: share.file_count, reverse=True)
    return shares


def primary_language(languages: list[LanguageShare]) -> str | None:
    for share in languages:
        if share.name not in NON_PRIMARY_LANGUAGES:
            return share.name
    return None


def _scan(directory: Path, counts: dict[str, int], *, depth: int, max_depth: int) -> None:
    if depth >= max_depth:
        return
    try:
        entries = list(os.scandir(directory))
    except OSError as error:
        logger.error("Error scanning directory %s: %s", directory, error)
        return

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            if entry.name not in IGNORE_DIRS:
                _scan(Path(entry.path), counts, depth=depth + 1, max_depth=max_depth)
        elif entry.is_file(follow_symlinks=False):
            language = EXTENSION_TO_LANGUAGE.get(Path(entry.name).suffix.lower())
            if language is not None:
                counts[language] = counts.get(language, 0) + 1
