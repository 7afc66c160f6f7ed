"""Admin endpoints: token state and manual token replacement.

Protected by HTTP Basic auth. For the operator only: this is where a fresh
Netatmo token pair goes after the refresh token has been revoked.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from rainfall.api.dependencies import get_service
from rainfall.api.schemas import AdminStatusResponse, StatusEntry, TokenUpdate
from rainfall.core.auth import require_admin
from rainfall.core.errors import AuthError
from rainfall.services.rainfall_service import RainfallService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get(
    "/status",
    response_model=AdminStatusResponse,
    summary="Token state and system markers",
)
async def get_status(
    service: RainfallService = Depends(get_service),
) -> AdminStatusResponse:
    status = await service.get_admin_status()
    return AdminStatusResponse(
        token=status["token"],
        system=[StatusEntry.model_validate(m) for m in status["system"]],
    )


@router.post(
    "/tokens",
    summary="Replace the Netatmo token pair",
    description=(
        "The access token is tested against the Netatmo station list first; "
        "the pair is stored only if that call succeeds."
    ),
)
async def update_tokens(
    body: TokenUpdate,
    service: RainfallService = Depends(get_service),
) -> dict:
    try:
        await service.update_tokens(body.access_token, body.refresh_token)
    except AuthError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_TOKENS", "message": str(exc)},
        ) from exc
    logger.info("Tokens updated via admin panel")
    return {"success": True, "message": "Tokens updated successfully"}
