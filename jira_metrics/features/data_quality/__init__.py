"""Data quality feature module: anomaly findings that qualify every other metric."""

from jira_metrics.features.data_quality.context import (
    DataQualityEntry,
    DataQualityProblem,
    DataQualityReport,
    ProblemKey,
    build_data_quality_report,
    report_to_dataframe,
)

__all__ = [
    "DataQualityEntry",
    "DataQualityProblem",
    "DataQualityReport",
    "ProblemKey",
    "build_data_quality_report",
    "report_to_dataframe",
]
