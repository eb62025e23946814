from fastapi import APIRouter, Depends, HTTPException, Query, status
from services.live_map import LoadState
from services.map_tokens import map_sdk_loader, validate_map_token
from utils.auth_dependency import AuthUser, get_current_user
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/maps", tags=["Maps"])

@router.get("/validate-mappls")
async def validate_mappls(token: str = Query("")):
    """Check a map SDK token against the provider"""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"valid": False, "error": "Token is required"}
        )
    return await validate_map_token(token)

@router.get("/sdk")
async def map_sdk(retry: bool = False, current_user: AuthUser = Depends(get_current_user)):
    """
    Load state of the shared map SDK. The first caller triggers validation;
    retry=true clears a failed load and tries again.
    """
    if retry and map_sdk_loader.state == LoadState.FAILED:
        map_sdk_loader.reset()
    if map_sdk_loader.state in (LoadState.UNLOADED, LoadState.LOADING):
        try:
            await map_sdk_loader.ensure_loaded()
        except Exception as e:
            logger.warning(f"Map SDK unavailable: {e}")
    return {**map_sdk_loader.snapshot(), "value": map_sdk_loader.value}
