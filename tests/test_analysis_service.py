from __future__ import annotations

from pathlib import Path

import allure
import pytest

from stackscan.analysis import analyze_repository, tech_stack_summary, validate_analysis_result

pytestmark = [
    allure.epic("Analysis"),
    allure.feature("Tech Stack Report"),
]


def test_analyze_repository_assembles_report(sample_project_dir: Path) -> None:
    progress: list[tuple[str, str]] = []

    report = analyze_repository(
        sample_project_dir,
        progress=lambda level, message: progress.append((level, message)),
    )
    analysis = report.analysis_dict()

    assert analysis["primary_language"] == "JavaScript"
    assert analysis["languages"][0] == {"name": "JavaScript", "percentage": 33.3, "file_count": 2}
    assert analysis["frameworks"] == [{"name": "Express.js", "type": "backend", "confidence": 0.7}]
    assert analysis["has_database"] is True
    assert analysis["databases"] == ["MongoDB"]
    assert analysis["build_tools"] == ["Vite", "npm", "Yarn"]
    assert analysis["package_manager"] == "yarn"
    assert report.dependencies.total_count == 3

    assert progress[0] == ("info", "Starting code analysis...")
    assert progress[-1] == ("success", "Code analysis completed successfully")
    assert ("info", "Detected databases: MongoDB") in progress


def test_report_dict_passes_validation(sample_project_dir: Path) -> None:
    result = analyze_repository(sample_project_dir).to_dict()

    assert set(result) == {"analysis", "dependencies"}
    assert validate_analysis_result(result) is True


@pytest.mark.parametrize(
    "result",
    [
        None,
        [],
        {"analysis": {"languages": []}},
        {"analysis": {"languages": "js"}, "dependencies": {"total_count": 1}},
        {"analysis": {"languages": []}, "dependencies": {"total_count": True}},
    ],
)
def test_validate_rejects_malformed_results(result: object) -> None:
    assert validate_analysis_result(result) is False


def test_missing_directory_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Project path does not exist"):
        analyze_repository(tmp_path / "absent")


def test_tech_stack_summary_keeps_headline_facts() -> None:
    analysis = {
        "primary_language": "Python",
        "languages": [
            {"name": "Python", "percentage": 60.0, "file_count": 6},
            {"name": "Shell", "percentage": 20.0, "file_count": 2},
            {"name": "YAML", "percentage": 10.0, "file_count": 1},
            {"name": "Markdown", "percentage": 10.0, "file_count": 1},
        ],
        "frameworks": [
            {"name": "Django", "type": "fullstack", "confidence": 1.0},
            {"name": "Maybe", "type": "backend", "confidence": 0.5},
        ],
        "has_database": True,
        "databases": ["PostgreSQL"],
        "build_tools": [],
        "package_manager": None,
    }

    summary = tech_stack_summary(analysis)

    assert summary is not None
    assert [language["name"] for language in summary["languages"]] == ["Python", "Shell", "YAML"]
    assert summary["frameworks"] == ["Django"]
    assert summary["databases"] == ["PostgreSQL"]
    assert tech_stack_summary(None) is None
