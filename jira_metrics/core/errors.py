"""Fatal error types. Data anomalies are reported, never raised."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Invalid or ambiguous run configuration; aborts the run."""


class StatusCategoryConflictError(ConfigurationError):
    pass


class StatusNotFoundError(ConfigurationError, LookupError):
    def __init__(self, name_or_id, known: list[str]):
        self.name_or_id = name_or_id
        self.known = known
        super().__init__(f"Status not found: {name_or_id}. Possible statuses are: {', '.join(known)}")


class UnexpectedActionError(ValueError):
    pass
