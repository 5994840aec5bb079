"""Query validation endpoint: run the enforcement guard without executing."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends

from querygate.core.deps import validate_query
from querygate.schemas.query import QueryBody, ValidatedQueryRead
from querygate.services.filter_validator import ValidatedQuery

router = APIRouter(prefix="/query", tags=["query"])


@router.post("/{blueprint_name}/validate", response_model=dict)
async def validate_query_body(
    blueprint_name: str,
    validated: Annotated[ValidatedQuery | None, Depends(validate_query())],
    # Documents the request shape; the guard reads the raw body itself.
    _body: Annotated[QueryBody | None, Body()] = None,
):
    """Validate a filter/select/sort body against a blueprint.

    Returns the normalized query, or ``data: null`` when the body carries
    nothing to enforce.
    """
    if validated is None:
        return {"success": True, "data": None}
    data = ValidatedQueryRead.model_validate(validated.to_dict())
    return {"success": True, "data": data.model_dump(mode="json")}
