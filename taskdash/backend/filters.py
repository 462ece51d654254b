"""Dashboard filter state, passed explicitly into every computation."""

from pydantic import BaseModel, ConfigDict, field_validator

from . import config


def _or_all(value) -> str:
    if value is None:
        return config.ALL
    return str(value).strip() or config.ALL


class FilterState(BaseModel):
    """Current search box and select values.

    ``time_range`` is an opaque token: it is forwarded to the data loader and
    never interpreted by the filtering code.
    """

    model_config = ConfigDict(frozen=True)

    search_term: str = ""
    status_filter: str = config.ALL
    project_filter: str = config.ALL
    time_range: str = config.ALL
    table_time_filter: str = config.DEFAULT_TABLE_TIME_FILTER
    intervention_status_filter: str = config.ALL

    @field_validator("search_term", mode="before")
    @classmethod
    def _search(cls, v):
        return "" if v is None else str(v)

    @field_validator("project_filter", "time_range", mode="before")
    @classmethod
    def _default_all(cls, v):
        return _or_all(v)

    @field_validator("status_filter", mode="before")
    @classmethod
    def _status(cls, v):
        v = _or_all(v).lower()
        if v != config.ALL and v not in config.TASK_STATUSES:
            raise ValueError(f"unknown status filter: {v}")
        return v

    @field_validator("table_time_filter", mode="before")
    @classmethod
    def _table_time(cls, v):
        v = _or_all(v) if v is not None else config.DEFAULT_TABLE_TIME_FILTER
        if v not in config.TABLE_TIME_FILTERS:
            raise ValueError(f"unknown table time filter: {v}")
        return v

    @field_validator("intervention_status_filter", mode="before")
    @classmethod
    def _intervention_status(cls, v):
        v = _or_all(v)
        if v not in config.INTERVENTION_STATUS_FILTERS:
            raise ValueError(f"unknown intervention status filter: {v}")
        return v

    def is_identity(self) -> bool:
        """True when the task filter keeps every task."""
        return (
            not self.search_term
            and self.status_filter == config.ALL
            and self.project_filter == config.ALL
        )
