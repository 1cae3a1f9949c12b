from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error body returned for every failed request."""

    error: str = Field(..., min_length=1)
    reset_time: Optional[int] = Field(
        default=None,
        alias="resetTime",
        description="Epoch milliseconds after which a rate-limited caller may retry",
    )

    model_config = ConfigDict(populate_by_name=True)

    def to_content(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class AIQueryRequest(BaseModel):
    """Documented request body for ``POST /ai-query``.

    The route reads the raw body itself so that authentication runs before
    any body validation; this model only feeds the OpenAPI schema.
    """

    query: str = Field(..., min_length=1, max_length=500)


class AIQueryResponse(BaseModel):
    response: str


class ProfileResponse(BaseModel):
    id: str
    email: Optional[str] = None
    role: str
    can_access_vet_features: bool = Field(..., alias="canAccessVetFeatures")

    model_config = ConfigDict(populate_by_name=True)

