from __future__ import annotations

import re
from typing import Any, FrozenSet, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, field_validator

Direction = Literal["asc", "desc"]
FilterOp = Literal["eq", "neq", "gt", "gte", "lt", "lte", "in", "nin"]

FILTER_OPERATORS: Tuple[str, ...] = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "nin")

# Field names end up as column identifiers, so only plain identifiers are accepted.
SAFE_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _field_names(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
        raise ValueError("field names must be a list of strings")
    names: list[str] = []
    for item in value:
        if not isinstance(item, str) or not SAFE_FIELD_RE.fullmatch(item):
            raise ValueError(f"unsafe field name: {item!r}")
        if item not in names:
            names.append(item)
    return names


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: StrictBool = False


class PaginationOptions(_Section):
    page_param: StrictStr = Field(default="page", min_length=1)
    per_param: StrictStr = Field(default="size", min_length=1)
    default_per: StrictInt = Field(default=10, ge=1)
    max_per: StrictInt = Field(default=100, ge=1)


class SortingOptions(_Section):
    sort_param: StrictStr = Field(default="sort", min_length=1)
    default_direction: Direction = "asc"
    allowed_fields: FrozenSet[str] = frozenset()

    @field_validator("allowed_fields", mode="before")
    @classmethod
    def _check_allowed_fields(cls, value: Any) -> frozenset[str]:
        return frozenset(_field_names(value))


class SearchingOptions(_Section):
    search_param: StrictStr = Field(default="q", min_length=1)
    searchable_fields: Tuple[str, ...] = ()

    @field_validator("searchable_fields", mode="before")
    @classmethod
    def _check_searchable_fields(cls, value: Any) -> tuple[str, ...]:
        return tuple(_field_names(value))


class FilteringOptions(_Section):
    filter_param: StrictStr = Field(default="filter", min_length=1)
    filterable_fields: FrozenSet[str] = frozenset()

    @field_validator("filterable_fields", mode="before")
    @classmethod
    def _check_filterable_fields(cls, value: Any) -> frozenset[str]:
        return frozenset(_field_names(value))


class MetaOptions(_Section):
    enabled: StrictBool = True
    rows_key: StrictStr = Field(default="rows", min_length=1)
    total_key: StrictStr = Field(default="total", min_length=1)


class QueryConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    pagination: PaginationOptions = PaginationOptions()
    sorting: SortingOptions = SortingOptions()
    searching: SearchingOptions = SearchingOptions()
    filtering: FilteringOptions = FilteringOptions()
    meta: MetaOptions = MetaOptions()

    def field_names(self) -> set[str]:
        """Every column name this config may hand to the store."""
        return (
            set(self.sorting.allowed_fields)
            | set(self.searching.searchable_fields)
            | set(self.filtering.filterable_fields)
        )


class FilterCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: FilterOp
    value: Any
