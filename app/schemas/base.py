"""
Base Pydantic schemas with common patterns.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# Деньги храним Decimal, наружу отдаём числом
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        use_enum_values=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseSchema):
    """Input payloads: unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


class BaseUpdateSchema(BaseSchema):
    """Partial updates: only explicitly sent fields are applied."""

    model_config = ConfigDict(extra="ignore")

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class BaseResponseSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: Optional[datetime] = None


class OkResponse(BaseModel):
    ok: bool = Field(..., description="Whether the operation succeeded")


class ErrorResponse(BaseModel):
    """Problem+json body (see app.core.exceptions)."""

    type: str
    title: str
    status: int
    detail: Optional[str] = None
    code: Optional[str] = None
    request_id: Optional[str] = None
