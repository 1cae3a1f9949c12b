from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from vetintel.api.schemas import AIQueryRequest, AIQueryResponse, ErrorResponse, ProfileResponse
from vetintel.logging import get_logger
from vetintel.service.auth import CredentialVerifier
from vetintel.service.gateway import QueryGateway
from vetintel.service.runtime import get_runtime
from vetintel.storage.models import can_access_vet_features

logger = get_logger(__name__)

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

_ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 401, 429, 500, 503)
}


def get_gateway() -> QueryGateway:
    return get_runtime().gateway


def get_verifier() -> CredentialVerifier:
    return get_runtime().verifier


def client_address(request: Request) -> str:
    """First hop of ``X-Forwarded-For``, else the socket peer, else ``unknown``."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@router.options("/ai-query", include_in_schema=False)
async def ai_query_preflight() -> Response:
    return Response(status_code=204, headers=CORS_HEADERS)


@router.post(
    "/ai-query",
    response_model=AIQueryResponse,
    responses=_ERROR_RESPONSES,
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": AIQueryRequest.model_json_schema()}},
        }
    },
)
async def ai_query(
    request: Request,
    response: Response,
    authorization: Optional[str] = Header(None),
    gateway: QueryGateway = Depends(get_gateway),
) -> AIQueryResponse:
    body = await request.body()
    result = await gateway.handle(authorization, body, client_ip=client_address(request))
    response.headers["X-RateLimit-Remaining"] = str(max(0, result.remaining))
    return AIQueryResponse(response=result.response)


@router.get("/me", response_model=ProfileResponse, responses={401: {"model": ErrorResponse}})
async def me(
    authorization: Optional[str] = Header(None),
    verifier: CredentialVerifier = Depends(get_verifier),
) -> ProfileResponse:
    identity = await verifier.verify(authorization)
    role = await verifier.fetch_role(identity)
    return ProfileResponse(
        id=identity.user_id,
        email=identity.email,
        role=role.value,
        can_access_vet_features=can_access_vet_features(role),
    )
