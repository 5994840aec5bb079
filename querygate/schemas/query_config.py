"""Pydantic schemas for query configurations."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class QueryConfigCreate(BaseModel):
    key: str = Field(min_length=1, max_length=200)
    value: dict[str, Any]
    # Admins may create the system default instead of a personal override.
    system: bool = False


class QueryConfigUpdate(BaseModel):
    value: dict[str, Any]


class QueryConfigRead(BaseModel):
    id: uuid.UUID
    key: str
    value: dict[str, Any]
    user_id: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EffectiveConfigRead(BaseModel):
    key: str
    value: dict[str, Any]
