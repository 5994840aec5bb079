"""Schemas for query validation endpoints."""

from typing import Any

from pydantic import BaseModel


class QueryBody(BaseModel):
    """A client query submission.

    Item shapes are left loose on purpose: the blueprint validator reports
    problems with a precise path instead of a generic 422.
    """

    filter: dict[str, Any] | None = None
    select: list[Any] | None = None
    sort: list[Any] | None = None


class SortEntry(BaseModel):
    field: str
    direction: str


class ValidatedQueryRead(BaseModel):
    blueprint: str
    filter: dict[str, Any] | None = None
    select: list[str]
    sort: list[SortEntry]
