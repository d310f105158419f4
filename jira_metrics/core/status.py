"""Status taxonomy: known statuses, their categories and project scoping.

Boards describe their logical "to do / in progress / done" buckets in terms
of this taxonomy rather than exact status lists, so the lookup and filtering
rules here are shared by every scanner and chart.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator

from .config import CATEGORY_DONE, CATEGORY_IN_PROGRESS, CATEGORY_TODO
from .errors import StatusCategoryConflictError, StatusNotFoundError
from .models import Status


class StatusTaxonomy:
    """Registry of statuses visible to one project.

    Parameters
    ----------
    project_id : int | str | None
        Project the taxonomy is scoped to. Project-scoped statuses belonging
        to any other project are ignored on registration.
    """

    def __init__(self, project_id: int | str | None = None, statuses: Iterable[Status] = ()):
        self.project_id = project_id
        self._list: list[Status] = []
        for status in statuses:
            self.register(status)

    def register(self, status: Status) -> None:
        """Add a status, applying the global/project-scoped precedence rules.

        Raises
        ------
        StatusCategoryConflictError
            If a status with the same name and id is already known with a
            different category.
        """
        if status.project_id is not None and str(status.project_id) != str(self.project_id):
            return

        for existing in self._list:
            if existing.name == status.name and existing.id == status.id and (
                existing.category_name != status.category_name
            ):
                raise StatusCategoryConflictError(
                    f"Redefining status category for {status.name!r}:{status.id!r}"
                    f" from {existing.category_name!r} to {status.category_name!r}"
                )

        for index, existing in enumerate(self._list):
            if existing.name != status.name:
                continue
            if existing.is_global and not status.is_global:
                self._list[index] = status
                return
            if not existing.is_global and status.is_global:
                return
            if existing == status:
                return
        self._list.append(status)

    def resolve(self, name_or_id) -> Status | None:
        """Exact lookup, first by name and then by id."""
        for status in self._list:
            if status.name == name_or_id:
                return status
        for status in self._list:
            if status.id is not None and (status.id == name_or_id or str(status.id) == str(name_or_id)):
                return status
        return None

    def find_by_name(self, name: str) -> Status | None:
        for status in self._list:
            if status.name == name:
                return status
        return None

    def expand(self, names_or_ids, on_missing: Callable[[object], None] | None = None) -> list[Status]:
        """Resolve a list of names or ids, preserving order and dropping duplicates.

        When an entry can't be resolved ``on_missing`` is invoked with it; without
        a callback a ``StatusNotFoundError`` enumerating every known status is raised.
        """
        result: list[Status] = []
        if names_or_ids is None:
            return result
        if isinstance(names_or_ids, str | int):
            names_or_ids = [names_or_ids]

        for name_or_id in names_or_ids:
            status = self.resolve(name_or_id)
            if status is None:
                if on_missing is None:
                    raise StatusNotFoundError(name_or_id, self.known_labels())
                on_missing(name_or_id)
                continue
            if status not in result:
                result.append(status)
        return result

    def known_labels(self) -> list[str]:
        return sorted({f'"{s.name}":"{s.id}"' for s in self._list})

    def filter_by_category(self, category_name: str, *, including=None, excluding=None) -> list[str]:
        """Status names in ``category_name`` plus ``including`` minus ``excluding``."""
        included = {s.name for s in self.expand(including)}
        excluded = {s.name for s in self.expand(excluding)}
        names: list[str] = []
        for status in self._list:
            keep = status.category_name == category_name or status.name in included
            if keep and status.name not in excluded and status.name not in names:
                names.append(status.name)
        return names

    def todo(self, *, including=None, excluding=None) -> list[str]:
        return self.filter_by_category(CATEGORY_TODO, including=including, excluding=excluding)

    def in_progress(self, *, including=None, excluding=None) -> list[str]:
        return self.filter_by_category(CATEGORY_IN_PROGRESS, including=including, excluding=excluding)

    def done(self, *, including=None, excluding=None) -> list[str]:
        return self.filter_by_category(CATEGORY_DONE, including=including, excluding=excluding)

    def category_name_for(self, status_name: str | None) -> str | None:
        status = self.find_by_name(status_name) if status_name is not None else None
        return status.category_name if status else None

    def __iter__(self) -> Iterator[Status]:
        return iter(list(self._list))

    def __len__(self) -> int:
        return len(self._list)

    def __contains__(self, name_or_id) -> bool:
        return self.resolve(name_or_id) is not None

    def __repr__(self) -> str:
        return f"StatusTaxonomy(project_id={self.project_id!r}, statuses={len(self._list)})"
