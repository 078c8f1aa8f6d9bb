"""Static tech stack analysis of a checked-out repository."""

from stackscan.analysis.service import (
    TechStackReport,
    analyze_repository,
    tech_stack_summary,
    validate_analysis_result,
)

__all__ = [
    "TechStackReport",
    "analyze_repository",
    "tech_stack_summary",
    "validate_analysis_result",
]
